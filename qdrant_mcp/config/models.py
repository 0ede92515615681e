"""Config models and loader.

This module defines Pydantic models for file- and environment-based
configuration. Cluster profiles can come from a JSON config file
(``QDRANT_MCP_CONFIG``) and from the ``QDRANT_CLUSTER_PROFILES`` environment
variable; both are parsed into :class:`ClusterProfileConfig` candidates that
the cluster registry normalizes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional

import orjson
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class ClusterProfileConfig(BaseModel):
    """One cluster profile candidate as written by an operator.

    Attributes
    ----------
    name: Optional[str]
        Registry key. Candidates without a name are dropped.
    url: Optional[str]
        Qdrant base URL. Candidates without a URL are dropped.
    api_key: str
        Qdrant API key; empty means unauthenticated calls.
    description: str
        Free text shown in listings.
    read_only: bool
        Advisory flag surfaced in metadata.
    labels: List[str]
        Advisory tags surfaced in metadata.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: Optional[str] = None
    url: Optional[str] = None
    api_key: str = Field(
        "", validation_alias=AliasChoices("api_key", "apiKey")
    )
    description: str = ""
    read_only: bool = Field(
        False, validation_alias=AliasChoices("read_only", "readOnly")
    )
    labels: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("labels", "tags")
    )


class AppConfig(BaseModel):
    """Top-level file configuration.

    Attributes
    ----------
    clusters: List[ClusterProfileConfig]
        Static cluster profile candidates.
    default_cluster: Optional[str]
        Requested active profile name.
    """

    clusters: List[ClusterProfileConfig] = Field(default_factory=list)
    default_cluster: Optional[str] = None

    @staticmethod
    def load(path: Path) -> "AppConfig":
        """Load application config from a JSON file."""
        return AppConfig.model_validate(orjson.loads(path.read_bytes()))


class EnvSettings(BaseSettings):
    """Environment-driven settings and .env support.

    Variable names match the ones existing Qdrant MCP deployments already
    export, so no prefix is applied.

    Attributes
    ----------
    QDRANT_URL: str
        Base URL of the fallback ``default`` profile.
    QDRANT_API_KEY: str
        API key of the fallback profile.
    QDRANT_CLUSTER_PROFILES: Optional[str]
        Raw JSON array of profile candidates, parsed by
        :func:`parse_cluster_profiles`.
    QDRANT_DEFAULT_CLUSTER: Optional[str]
        Requested active profile.
    QDRANT_MCP_CONFIG: Optional[str]
        Path to a JSON :class:`AppConfig` file.
    MCP_RATE_LIMIT_WINDOW_MS / MCP_RATE_LIMIT_MAX_REQUESTS: int
        Sliding window applied per ``tool:cluster`` key.
    QDRANT_MCP_CURSOR_SECRET: Optional[str]
        When set, scroll cursors are HMAC-signed and verified.
    APPROVAL_POLICY: Optional[str]
        ``never`` marks destructive tools as disabled in metadata.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = Field("INFO")

    QDRANT_URL: str = Field("http://localhost:6333")
    QDRANT_API_KEY: str = Field("")
    QDRANT_CLUSTER_PROFILES: Optional[str] = None
    QDRANT_DEFAULT_CLUSTER: Optional[str] = None
    QDRANT_MCP_CONFIG: Optional[str] = None
    QDRANT_TIMEOUT_SECONDS: float = Field(30.0, gt=0)
    QDRANT_MAX_RETRIES: int = Field(2, ge=0)
    QDRANT_BACKOFF_INITIAL_MS: int = Field(200, ge=0)
    QDRANT_BACKOFF_MULTIPLIER: float = Field(2.0, ge=1.0)

    MCP_RATE_LIMIT_ENABLED: bool = Field(True)
    MCP_RATE_LIMIT_WINDOW_MS: int = Field(1000, ge=1)
    MCP_RATE_LIMIT_MAX_REQUESTS: int = Field(10, ge=1)

    QDRANT_MCP_CURSOR_SECRET: Optional[str] = None
    QDRANT_MCP_HTTP_TOKEN: Optional[str] = None
    QDRANT_MCP_CORS_ORIGINS: Optional[str] = None
    APPROVAL_POLICY: Optional[str] = None

    HOST: str = Field("0.0.0.0")
    PORT: int = Field(3000, ge=1, le=65535)

    @property
    def destructive_tools_disabled(self) -> bool:
        return (self.APPROVAL_POLICY or "").strip().lower() == "never"

    def cluster_candidates(self) -> List[ClusterProfileConfig]:
        """Profile candidates from the config file, then from the env var."""
        candidates: List[ClusterProfileConfig] = []
        if self.QDRANT_MCP_CONFIG:
            candidates.extend(AppConfig.load(Path(self.QDRANT_MCP_CONFIG)).clusters)
        candidates.extend(parse_cluster_profiles(self.QDRANT_CLUSTER_PROFILES))
        return candidates

    def default_cluster(self) -> Optional[str]:
        if self.QDRANT_DEFAULT_CLUSTER:
            return self.QDRANT_DEFAULT_CLUSTER
        if self.QDRANT_MCP_CONFIG:
            return AppConfig.load(Path(self.QDRANT_MCP_CONFIG)).default_cluster
        return None


def parse_cluster_profiles(raw: Optional[str]) -> List[ClusterProfileConfig]:
    """Parse ``QDRANT_CLUSTER_PROFILES``.

    A malformed value is logged and ignored rather than aborting startup; the
    registry still provides the fallback profile. Individual entries that are
    not objects are skipped.
    """
    if raw is None or not raw.strip():
        return []
    try:
        data: Any = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        logger.warning(
            "config.cluster_profiles.invalid_json", extra={"error": str(exc)}
        )
        return []
    if not isinstance(data, list):
        logger.warning(
            "config.cluster_profiles.not_a_list",
            extra={"type": type(data).__name__},
        )
        return []

    profiles: List[ClusterProfileConfig] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            logger.warning(
                "config.cluster_profiles.entry_skipped", extra={"index": index}
            )
            continue
        try:
            profiles.append(ClusterProfileConfig.model_validate(entry))
        except ValidationError as exc:
            logger.warning(
                "config.cluster_profiles.entry_invalid",
                extra={"index": index, "error": str(exc)},
            )
    return profiles
