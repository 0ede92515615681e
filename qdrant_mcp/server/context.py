"""Process-wide server state, built once at startup.

The cluster registry and rate limiter are shared by every tool invocation.
They live in a :class:`ServerContext` that the transports create and hand to
the tool dispatcher, instead of module-level singletons.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from ..adapters.qdrant import QdrantAdapter
from ..clusters.registry import ClientFactory, ClusterProfile, ClusterRegistry
from ..config.models import EnvSettings
from .rate_limiter import RateLimitConfig, RateLimiter


@dataclass
class ServerContext:
    settings: EnvSettings
    registry: ClusterRegistry
    limiter: RateLimiter
    cursor_secret: Optional[bytes] = None

    @property
    def destructive_tools_disabled(self) -> bool:
        return self.settings.destructive_tools_disabled

    @classmethod
    def from_settings(
        cls,
        settings: Optional[EnvSettings] = None,
        *,
        client_factory: Optional[ClientFactory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ServerContext":
        """Build registry and limiter from environment settings.

        Parameters
        ----------
        client_factory: Optional[ClientFactory]
            Overrides backend client construction entirely.
        transport: Optional[httpx.AsyncBaseTransport]
            Keeps the default Qdrant adapter but routes its HTTP traffic
            through this transport (tests use ``httpx.MockTransport``).
        """
        settings = settings or EnvSettings()
        factory = client_factory or qdrant_client_factory(settings, transport)
        registry = ClusterRegistry(
            settings.QDRANT_URL,
            settings.QDRANT_API_KEY,
            settings.cluster_candidates(),
            settings.default_cluster(),
            client_factory=factory,
        )
        limiter = RateLimiter(
            RateLimitConfig(
                window_ms=settings.MCP_RATE_LIMIT_WINDOW_MS,
                max_requests=settings.MCP_RATE_LIMIT_MAX_REQUESTS,
                enable_rate_limiting=settings.MCP_RATE_LIMIT_ENABLED,
            )
        )
        secret = settings.QDRANT_MCP_CURSOR_SECRET
        return cls(
            settings=settings,
            registry=registry,
            limiter=limiter,
            cursor_secret=secret.encode("utf-8") if secret else None,
        )


def qdrant_client_factory(
    settings: EnvSettings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> ClientFactory:
    def build(profile: ClusterProfile) -> QdrantAdapter:
        return QdrantAdapter(
            profile.url,
            profile.api_key or None,
            timeout=settings.QDRANT_TIMEOUT_SECONDS,
            max_retries=settings.QDRANT_MAX_RETRIES,
            backoff_initial_ms=settings.QDRANT_BACKOFF_INITIAL_MS,
            backoff_multiplier=settings.QDRANT_BACKOFF_MULTIPLIER,
            transport=transport,
        )

    return build
