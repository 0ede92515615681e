"""
MCP Resources for cluster introspection.

Each registered cluster profile is exposed as ``qdrant://clusters/{name}``.
Listing returns profile metadata only; reading a resource also includes a
best-effort collections preview, the rate limit settings and the safety
flags. API keys are never included.
"""

import logging
from typing import Any, Dict, List, Optional

import orjson

from ..clusters.registry import ClusterProfile
from ..errors import BackendError, BackendUnavailableError
from .context import ServerContext

logger = logging.getLogger(__name__)

URI_PREFIX = "qdrant://clusters/"
URI_TEMPLATE = URI_PREFIX + "{name}"
MIME_TYPE = "application/json"


class ClusterResource:
    """
    MCP resource view of one cluster profile.

    Attributes:
        profile: The cluster profile this resource describes
        active: Whether the profile is the active cluster
    """

    def __init__(self, profile: ClusterProfile, active: bool):
        self.profile = profile
        self.active = active

    @property
    def uri(self) -> str:
        return f"{URI_PREFIX}{self.profile.name}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert resource to MCP resource list format (metadata only)."""
        return {
            "uri": self.uri,
            "name": self.profile.name,
            "description": (
                self.profile.description or f"Qdrant cluster {self.profile.name}"
            ),
            "mimeType": MIME_TYPE,
            "metadata": {
                "read_only": self.profile.read_only,
                "labels": list(self.profile.labels),
                "active": self.active,
            },
        }


class ClusterResourceRegistry:
    """Lists and reads cluster resources from the live cluster registry."""

    def __init__(self, context: ServerContext):
        self.context = context

    def list_resources(self) -> List[ClusterResource]:
        active = self.context.registry.get_active()
        return [
            ClusterResource(profile, profile.name == active)
            for profile in self.context.registry.list_profiles()
        ]

    def list_templates(self) -> List[Dict[str, Any]]:
        return [
            {
                "uriTemplate": URI_TEMPLATE,
                "name": "qdrant-cluster",
                "description": "Qdrant cluster profile and collections preview",
                "mimeType": MIME_TYPE,
            }
        ]

    @staticmethod
    def name_from_uri(uri: str) -> Optional[str]:
        if not uri.startswith(URI_PREFIX):
            return None
        name = uri[len(URI_PREFIX):].strip("/")
        return name or None

    async def read(self, uri: str) -> Dict[str, Any]:
        """
        Build the resource payload for ``uri``.

        Raises:
            UnknownClusterError: the URI names no registered cluster
            KeyError: the URI is not a cluster resource
        """
        name = self.name_from_uri(uri)
        if name is None:
            raise KeyError(uri)
        registry = self.context.registry
        profile = registry.resolve(name)
        return {
            "cluster": profile.public_dict(),
            "active": registry.get_active() == profile.name,
            "collections": await self._collections_preview(profile),
            "rate_limit": self.context.limiter.describe(),
            "safety": {
                "destructive_tools_disabled": self.context.destructive_tools_disabled,
            },
        }

    async def read_text(self, uri: str) -> str:
        payload = await self.read(uri)
        return orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode("utf-8")

    async def _collections_preview(self, profile: ClusterProfile) -> List[str]:
        try:
            client = self.context.registry.get_client(profile.name)
            result = await client.list_collections()
        except (BackendError, BackendUnavailableError) as exc:
            logger.warning(
                "resources.collections_preview.failed",
                extra={"cluster_name": profile.name, "detail": exc.message},
            )
            return []
        return [c.get("name") for c in (result or {}).get("collections", [])]

