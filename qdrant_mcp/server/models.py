"""Pydantic models for tool arguments and HTTP responses.

Argument models accept unknown keys: anything beyond the fields declared
here is forwarded to Qdrant untouched (``search_points`` parameters,
collection configuration, point selectors, and so on).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..adapters import PointId


class ClusterSelector(BaseModel):
    """Cluster selection shared by every tool except ``switch_cluster``.

    ``cluster`` names a registered profile; ``cluster_url`` (with an optional
    ``cluster_api_key``) targets an ad-hoc cluster. At most one of
    ``cluster`` and ``cluster_url`` may be given.
    """

    model_config = ConfigDict(extra="allow")

    cluster: Optional[str] = None
    cluster_url: Optional[str] = None
    cluster_api_key: Optional[str] = None

    def passthrough(self) -> Dict[str, Any]:
        """Undeclared arguments, as a Qdrant request body."""
        return dict(self.model_extra or {})


class CollectionArgs(ClusterSelector):
    collection_name: str = Field(..., min_length=1)


class TimedCollectionArgs(CollectionArgs):
    timeout: Optional[int] = Field(None, ge=1, description="Seconds")


class WriteArgs(CollectionArgs):
    wait: Optional[bool] = None
    ordering: Optional[str] = None


class UpsertPointsArgs(WriteArgs):
    points: List[Dict[str, Any]] = Field(..., min_length=1)


class PointArgs(CollectionArgs):
    point_id: PointId


class DeletePointArgs(PointArgs):
    wait: Optional[bool] = None


class PayloadArgs(CollectionArgs):
    wait: Optional[bool] = None


class ScrollPaginatedArgs(ClusterSelector):
    """Arguments of ``scroll_points_paginated``.

    Either ``cursor`` (resume) or ``collection_name`` (fresh scan) is needed.
    When a cursor is present its stored request wins over the fresh fields.
    """

    cursor: Optional[str] = None
    collection_name: Optional[str] = None
    offset: Optional[PointId] = None
    limit: Optional[int] = Field(None, ge=1)
    filter: Optional[Dict[str, Any]] = None
    with_payload: Optional[Union[bool, List[str], Dict[str, Any]]] = None
    with_vector: Optional[Union[bool, List[str]]] = None
    timeout: Optional[int] = Field(None, ge=1)


class CountUniqueArgs(CollectionArgs):
    field_name: str = Field(..., min_length=1)
    filter: Optional[Dict[str, Any]] = None
    include_breakdown: bool = False
    limit: int = Field(100, ge=1)


class SwitchClusterArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cluster: Optional[str] = None


class HealthResponse(BaseModel):
    status: str


class ErrorResponse(BaseModel):
    """Structured error body returned by tool endpoints.

    Attributes
    ----------
    detail: str
        Human-readable message naming the offending cluster, key or cursor.
    error_type: str
        Stable code, e.g. ``unknown_cluster`` or ``rate_limited``.
    available_options: Optional[List[str]]
        Valid alternatives when known (cluster names, tool names).
    retryable: bool
        Whether repeating the call later can succeed.
    """

    detail: str
    error_type: str
    available_options: Optional[List[str]] = None
    retryable: bool = False
    status_code: Optional[int] = None


class CapabilitiesResponse(BaseModel):
    name: str
    version: str
    transports: List[str]
    http_auth: str
    tools: List[str]
    clusters: List[Dict[str, Any]]
    active_cluster: str
    rate_limit: Dict[str, Any]
    cursor_signing: bool
    destructive_tools_disabled: bool
