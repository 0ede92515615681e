"""Tool definitions exposed over MCP and the REST surface.

Each definition carries its JSON schema. Cluster selector properties are
merged into every tool except ``switch_cluster`` when the schema is built,
so individual definitions only describe their own arguments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

CLUSTER_PROPERTIES: Dict[str, Any] = {
    "cluster": {
        "type": "string",
        "description": (
            "Name of a configured cluster profile. Defaults to the active "
            "cluster. Mutually exclusive with cluster_url."
        ),
    },
    "cluster_url": {
        "type": "string",
        "description": (
            "Base URL of an ad-hoc Qdrant cluster, registered on first use "
            "under a stable dynamic-<hash> name."
        ),
    },
    "cluster_api_key": {
        "type": "string",
        "description": (
            "API key for cluster_url. Only the key given on first "
            "registration of a URL is used."
        ),
    },
}

_COLLECTION = {"type": "string", "description": "Collection name"}
_POINT_ID = {
    "type": ["integer", "string"],
    "description": "Point id (unsigned integer or UUID)",
}
_FILTER = {"type": "object", "description": "Qdrant filter (must/should/must_not)"}
_WAIT = {"type": "boolean", "description": "Wait until the change is applied"}
_ORDERING = {"type": "string", "enum": ["weak", "medium", "strong"]}
_TIMEOUT = {"type": "integer", "minimum": 1, "description": "Backend timeout (s)"}
_WITH_PAYLOAD = {
    "description": "true/false or a list of payload keys to include",
    "oneOf": [{"type": "boolean"}, {"type": "array", "items": {"type": "string"}}],
}
_WITH_VECTOR = {
    "description": "true/false or a list of named vectors to include",
    "oneOf": [{"type": "boolean"}, {"type": "array", "items": {"type": "string"}}],
}


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    properties: Dict[str, Any] = field(default_factory=dict)
    required: Tuple[str, ...] = ()
    destructive: bool = False
    cluster_aware: bool = True

    def input_schema(self) -> Dict[str, Any]:
        properties = dict(self.properties)
        if self.cluster_aware:
            properties.update(CLUSTER_PROPERTIES)
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": properties,
            "additionalProperties": True,
        }
        if self.required:
            schema["required"] = list(self.required)
        return schema


TOOL_DEFINITIONS: Tuple[ToolDefinition, ...] = (
    ToolDefinition(
        "list_collections",
        "List all collections in the cluster.",
    ),
    ToolDefinition(
        "get_collection",
        "Get configuration, status and point counts of a collection.",
        {"collection_name": _COLLECTION},
        ("collection_name",),
    ),
    ToolDefinition(
        "create_collection",
        "Create a collection. Extra arguments (vectors, shard_number, "
        "hnsw_config, ...) are sent as the collection configuration.",
        {
            "collection_name": _COLLECTION,
            "vectors": {"type": "object", "description": "Vector params"},
            "timeout": _TIMEOUT,
        },
        ("collection_name", "vectors"),
        destructive=True,
    ),
    ToolDefinition(
        "update_collection",
        "Update collection parameters (optimizers_config, params, ...).",
        {"collection_name": _COLLECTION, "timeout": _TIMEOUT},
        ("collection_name",),
        destructive=True,
    ),
    ToolDefinition(
        "delete_collection",
        "Delete a collection and all of its points.",
        {"collection_name": _COLLECTION, "timeout": _TIMEOUT},
        ("collection_name",),
        destructive=True,
    ),
    ToolDefinition(
        "upsert_points",
        "Insert or update points (id, vector, payload).",
        {
            "collection_name": _COLLECTION,
            "points": {"type": "array", "items": {"type": "object"}},
            "wait": _WAIT,
            "ordering": _ORDERING,
        },
        ("collection_name", "points"),
        destructive=True,
    ),
    ToolDefinition(
        "search_points",
        "Vector similarity search. Extra arguments (vector, limit, filter, "
        "with_payload, score_threshold, ...) form the search request.",
        {
            "collection_name": _COLLECTION,
            "vector": {"description": "Query vector or named vector object"},
            "limit": {"type": "integer", "minimum": 1},
            "filter": _FILTER,
            "with_payload": _WITH_PAYLOAD,
            "with_vector": _WITH_VECTOR,
            "timeout": _TIMEOUT,
        },
        ("collection_name", "vector"),
    ),
    ToolDefinition(
        "scroll_points",
        "Fetch one page of points. Returns Qdrant's next_page_offset.",
        {
            "collection_name": _COLLECTION,
            "offset": _POINT_ID,
            "limit": {"type": "integer", "minimum": 1},
            "filter": _FILTER,
            "with_payload": _WITH_PAYLOAD,
            "with_vector": _WITH_VECTOR,
            "timeout": _TIMEOUT,
        },
        ("collection_name",),
    ),
    ToolDefinition(
        "scroll_points_paginated",
        "Scroll a collection page by page. Pass collection_name to start; "
        "pass the returned cursor to continue. No cursor means the scan is "
        "complete. A cursor from a cluster_url scan needs the same "
        "cluster_url again.",
        {
            "cursor": {"type": "string", "description": "Cursor from a previous page"},
            "collection_name": _COLLECTION,
            "offset": _POINT_ID,
            "limit": {"type": "integer", "minimum": 1},
            "filter": _FILTER,
            "with_payload": _WITH_PAYLOAD,
            "with_vector": _WITH_VECTOR,
            "timeout": _TIMEOUT,
        },
    ),
    ToolDefinition(
        "count_points",
        "Count points, optionally matching a filter.",
        {
            "collection_name": _COLLECTION,
            "filter": _FILTER,
            "exact": {"type": "boolean"},
            "timeout": _TIMEOUT,
        },
        ("collection_name",),
    ),
    ToolDefinition(
        "recommend_points",
        "Recommend points similar to positive and unlike negative examples.",
        {
            "collection_name": _COLLECTION,
            "positive": {"type": "array", "items": _POINT_ID},
            "negative": {"type": "array", "items": _POINT_ID},
            "limit": {"type": "integer", "minimum": 1},
            "filter": _FILTER,
            "with_payload": _WITH_PAYLOAD,
            "timeout": _TIMEOUT,
        },
        ("collection_name", "positive"),
    ),
    ToolDefinition(
        "get_point",
        "Retrieve a single point by id.",
        {"collection_name": _COLLECTION, "point_id": _POINT_ID},
        ("collection_name", "point_id"),
    ),
    ToolDefinition(
        "describe_point",
        "Retrieve a point together with its collection description and the "
        "collection's shard placement.",
        {"collection_name": _COLLECTION, "point_id": _POINT_ID},
        ("collection_name", "point_id"),
    ),
    ToolDefinition(
        "delete_point",
        "Delete a single point by id.",
        {"collection_name": _COLLECTION, "point_id": _POINT_ID, "wait": _WAIT},
        ("collection_name", "point_id"),
        destructive=True,
    ),
    ToolDefinition(
        "delete_points",
        "Delete points selected by ids (points) or by filter.",
        {
            "collection_name": _COLLECTION,
            "points": {"type": "array", "items": _POINT_ID},
            "filter": _FILTER,
            "wait": _WAIT,
            "ordering": _ORDERING,
        },
        ("collection_name",),
        destructive=True,
    ),
    ToolDefinition(
        "set_payload",
        "Merge payload keys into the selected points.",
        {
            "collection_name": _COLLECTION,
            "payload": {"type": "object"},
            "points": {"type": "array", "items": _POINT_ID},
            "filter": _FILTER,
            "wait": _WAIT,
        },
        ("collection_name", "payload"),
        destructive=True,
    ),
    ToolDefinition(
        "overwrite_payload",
        "Replace the whole payload of the selected points.",
        {
            "collection_name": _COLLECTION,
            "payload": {"type": "object"},
            "points": {"type": "array", "items": _POINT_ID},
            "filter": _FILTER,
            "wait": _WAIT,
        },
        ("collection_name", "payload"),
        destructive=True,
    ),
    ToolDefinition(
        "delete_payload",
        "Remove payload keys from the selected points.",
        {
            "collection_name": _COLLECTION,
            "keys": {"type": "array", "items": {"type": "string"}},
            "points": {"type": "array", "items": _POINT_ID},
            "filter": _FILTER,
            "wait": _WAIT,
        },
        ("collection_name", "keys"),
        destructive=True,
    ),
    ToolDefinition(
        "clear_payload",
        "Remove the entire payload of the selected points.",
        {
            "collection_name": _COLLECTION,
            "points": {"type": "array", "items": _POINT_ID},
            "filter": _FILTER,
            "wait": _WAIT,
        },
        ("collection_name",),
        destructive=True,
    ),
    ToolDefinition(
        "count_unique_by_field",
        "Count distinct values of a payload field across a collection, "
        "optionally with a per-value breakdown.",
        {
            "collection_name": _COLLECTION,
            "field_name": {"type": "string"},
            "filter": _FILTER,
            "include_breakdown": {"type": "boolean", "default": False},
            "limit": {
                "type": "integer",
                "minimum": 1,
                "default": 100,
                "description": "Max breakdown entries",
            },
        },
        ("collection_name", "field_name"),
    ),
    ToolDefinition(
        "switch_cluster",
        "Show the active cluster, or make another configured cluster active.",
        {"cluster": {"type": "string", "description": "Cluster to activate"}},
        cluster_aware=False,
    ),
)

_BY_NAME: Dict[str, ToolDefinition] = {t.name: t for t in TOOL_DEFINITIONS}


def get_tool_definition(name: str) -> Optional[ToolDefinition]:
    return _BY_NAME.get(name)


def tool_names() -> List[str]:
    return [t.name for t in TOOL_DEFINITIONS]
