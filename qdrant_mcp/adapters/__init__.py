"""Vector backend interface.

The tool layer talks to backends only through :class:`VectorBackend`, so the
cluster registry can cache any implementation (the Qdrant REST adapter in
production, an in-memory fake in tests).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Union

PointId = Union[int, str]


class VectorBackend(Protocol):
    """Protocol for vector database adapters.

    Methods return the backend's unwrapped ``result`` payload as plain JSON
    data. Failures raise :class:`~qdrant_mcp.errors.BackendError` or
    :class:`~qdrant_mcp.errors.BackendUnavailableError`.
    """

    # ---------------- Collections ----------------
    async def list_collections(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def get_collection(self, collection_name: str) -> Dict[str, Any]:
        raise NotImplementedError

    async def collection_exists(self, collection_name: str) -> bool:
        raise NotImplementedError

    async def create_collection(
        self,
        collection_name: str,
        config: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Any:
        raise NotImplementedError

    async def update_collection(
        self,
        collection_name: str,
        config: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Any:
        raise NotImplementedError

    async def delete_collection(
        self, collection_name: str, *, timeout: Optional[int] = None
    ) -> Any:
        raise NotImplementedError

    async def get_collection_cluster_info(self, collection_name: str) -> Any:
        """Shard placement of a collection across cluster peers."""
        raise NotImplementedError

    # ---------------- Points ----------------
    async def upsert_points(
        self,
        collection_name: str,
        points: List[Dict[str, Any]],
        *,
        wait: Optional[bool] = None,
        ordering: Optional[str] = None,
    ) -> Any:
        raise NotImplementedError

    async def search_points(
        self,
        collection_name: str,
        request: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Any:
        raise NotImplementedError

    async def scroll_points(
        self,
        collection_name: str,
        request: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Dict[str, Any]:
        """One page of points plus ``next_page_offset`` (null at the end)."""
        raise NotImplementedError

    async def count_points(
        self,
        collection_name: str,
        request: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def recommend_points(
        self,
        collection_name: str,
        request: Dict[str, Any],
        *,
        timeout: Optional[int] = None,
    ) -> Any:
        raise NotImplementedError

    async def get_point(self, collection_name: str, point_id: PointId) -> Any:
        raise NotImplementedError

    async def delete_points(
        self,
        collection_name: str,
        selector: Dict[str, Any],
        *,
        wait: Optional[bool] = None,
        ordering: Optional[str] = None,
    ) -> Any:
        raise NotImplementedError

    # ---------------- Payload ----------------
    async def set_payload(
        self, collection_name: str, body: Dict[str, Any], *, wait: Optional[bool] = None
    ) -> Any:
        raise NotImplementedError

    async def overwrite_payload(
        self, collection_name: str, body: Dict[str, Any], *, wait: Optional[bool] = None
    ) -> Any:
        raise NotImplementedError

    async def delete_payload(
        self, collection_name: str, body: Dict[str, Any], *, wait: Optional[bool] = None
    ) -> Any:
        raise NotImplementedError

    async def clear_payload(
        self, collection_name: str, body: Dict[str, Any], *, wait: Optional[bool] = None
    ) -> Any:
        raise NotImplementedError

    async def aclose(self) -> None:
        raise NotImplementedError
