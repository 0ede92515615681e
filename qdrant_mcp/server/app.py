"""Tool dispatch for the Qdrant MCP server.

:class:`QdrantMCPServer` is the single entry point both transports call. For
each invocation it:

1. looks up the tool and validates its arguments;
2. resolves the cluster (named profile, active profile, the cluster a
   cursor was issued on, or a dynamic registration of ``cluster_url``);
3. admits the call through the rate limiter under
   ``"<tool>:<resolved cluster name>"``;
4. runs the backend operation and wraps the result as
   ``{"cluster": <name>, ...}``.

Every failure is converted into a :class:`ToolResult` with ``is_error`` set;
nothing raised while serving a tool escapes to the transport.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

import orjson
from pydantic import BaseModel, ValidationError

from ..adapters import VectorBackend
from ..clusters.registry import ClusterProfile
from ..errors import (
    BackendError,
    ConflictingClusterSelectorsError,
    InvalidArgumentsError,
    InvalidCursorError,
    QdrantMCPError,
    UnknownToolError,
    UnsupportedCursorBackendError,
)
from ..utils.correlation import ensure_request_id
from .context import ServerContext
from .cursor import ScrollCursor, ScrollPageRequest, decode_cursor, encode_cursor
from .models import (
    ClusterSelector,
    CollectionArgs,
    CountUniqueArgs,
    DeletePointArgs,
    PayloadArgs,
    PointArgs,
    ScrollPaginatedArgs,
    SwitchClusterArgs,
    TimedCollectionArgs,
    UpsertPointsArgs,
    WriteArgs,
)
from .tools import get_tool_definition, tool_names

logger = logging.getLogger(__name__)

ArgsT = TypeVar("ArgsT", bound=BaseModel)

# Page size used when scanning a whole collection for count_unique_by_field
UNIQUE_SCAN_BATCH = 1000

# Tool being served in the current invocation; part of the limiter key
_current_tool: ContextVar[str] = ContextVar("current_tool", default="")


@dataclass
class ToolResult:
    payload: Dict[str, Any]
    is_error: bool = False
    status_code: int = 200

    @property
    def text(self) -> str:
        if self.is_error:
            return f"Error: {self.payload.get('detail', '')}\n" + _dumps(self.payload)
        return _dumps(self.payload)


def _dumps(data: Any) -> str:
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode("utf-8")


def _parse(model: Type[ArgsT], arguments: Dict[str, Any]) -> ArgsT:
    try:
        return model.model_validate(arguments)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidArgumentsError(f"Invalid arguments: {problems}") from exc


class QdrantMCPServer:
    """Tool dispatcher bound to one :class:`ServerContext`."""

    def __init__(self, context: ServerContext) -> None:
        self.context = context
        self._started: bool = False
        self._handlers: Dict[
            str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]
        ] = {
            "list_collections": self._list_collections,
            "get_collection": self._get_collection,
            "create_collection": self._create_collection,
            "update_collection": self._update_collection,
            "delete_collection": self._delete_collection,
            "upsert_points": self._upsert_points,
            "search_points": self._search_points,
            "scroll_points": self._scroll_points,
            "scroll_points_paginated": self._scroll_points_paginated,
            "count_points": self._count_points,
            "recommend_points": self._recommend_points,
            "get_point": self._get_point,
            "describe_point": self._describe_point,
            "delete_point": self._delete_point,
            "delete_points": self._delete_points,
            "set_payload": self._set_payload,
            "overwrite_payload": self._overwrite_payload,
            "delete_payload": self._delete_payload,
            "clear_payload": self._clear_payload,
            "count_unique_by_field": self._count_unique_by_field,
            "switch_cluster": self._switch_cluster,
        }

    async def start(self) -> None:
        """Mark the server as started. Idempotent."""
        if self._started:
            logger.debug("server.start no-op: already started")
            return
        self._started = True
        logger.info(
            "server.started",
            extra={
                "clusters": self.context.registry.names(),
                "active_cluster": self.context.registry.get_active(),
            },
        )

    async def stop(self) -> None:
        """Close cached backend clients. Idempotent."""
        if not self._started:
            logger.debug("server.stop no-op: not started")
            return
        self._started = False
        await self.context.registry.aclose()
        logger.info("server.stopped")

    # ------------------------------------------------------------------
    # Dispatch boundary
    # ------------------------------------------------------------------
    async def call_tool(
        self, name: str, arguments: Optional[Dict[str, Any]] = None
    ) -> ToolResult:
        """Run one tool invocation and report its outcome.

        Never raises: caller errors, rate limiting and backend failures come
        back as ``ToolResult(is_error=True)`` with a structured payload.
        """
        arguments = dict(arguments or {})
        req_id = ensure_request_id()
        started = time.perf_counter()
        token = _current_tool.set(name)
        try:
            handler = self._handlers.get(name)
            if handler is None or get_tool_definition(name) is None:
                raise UnknownToolError(name, tool_names())
            payload = await handler(arguments)
        except QdrantMCPError as exc:
            log = logger.warning if exc.retryable else logger.info
            log(
                "tool.error",
                extra={
                    "req_id": req_id,
                    "tool": name,
                    "error_type": exc.error_type,
                    "detail": exc.message,
                    "duration_ms": _elapsed_ms(started),
                },
            )
            return ToolResult(
                exc.to_dict(), is_error=True, status_code=exc.http_status
            )
        except Exception:
            logger.exception(
                "tool.internal_error",
                extra={
                    "req_id": req_id,
                    "tool": name,
                    "duration_ms": _elapsed_ms(started),
                },
            )
            return ToolResult(
                {
                    "error_type": "internal_error",
                    "detail": f"Internal error while running '{name}'",
                    "available_options": None,
                    "retryable": False,
                },
                is_error=True,
                status_code=500,
            )
        finally:
            _current_tool.reset(token)
        logger.info(
            "tool.success",
            extra={
                "req_id": req_id,
                "tool": name,
                "cluster": payload.get("cluster"),
                "duration_ms": _elapsed_ms(started),
            },
        )
        return ToolResult(payload)

    def _admit(self, profile: ClusterProfile) -> None:
        """Consume one limiter slot for the running tool on ``profile``.

        Runs after the cluster is resolved and before any backend call, so
        the key always names the cluster that is actually contacted and
        unknown names never reach the limiter.
        """
        self.context.limiter.consume(f"{_current_tool.get()}:{profile.name}")

    def _select_cluster(
        self, args: ClusterSelector
    ) -> Tuple[ClusterProfile, VectorBackend]:
        """Resolve the selector, admit the call and return the cached client."""
        registry = self.context.registry
        if args.cluster and args.cluster_url:
            raise ConflictingClusterSelectorsError(args.cluster, args.cluster_url)
        if args.cluster_url:
            name = registry.register_dynamic(args.cluster_url, args.cluster_api_key)
        else:
            name = args.cluster or None
        profile = registry.resolve(name)
        self._admit(profile)
        return profile, registry.get_client(profile.name)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------
    async def _list_collections(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(ClusterSelector, arguments)
        profile, client = self._select_cluster(args)
        result = await client.list_collections()
        return {"cluster": profile.name, **(result or {"collections": []})}

    async def _get_collection(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(CollectionArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.get_collection(args.collection_name)
        return {
            "cluster": profile.name,
            "collection_name": args.collection_name,
            "collection": result,
        }

    async def _create_collection(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(TimedCollectionArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.create_collection(
            args.collection_name, args.passthrough(), timeout=args.timeout
        )
        return {
            "cluster": profile.name,
            "collection_name": args.collection_name,
            "result": result,
        }

    async def _update_collection(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(TimedCollectionArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.update_collection(
            args.collection_name, args.passthrough(), timeout=args.timeout
        )
        return {
            "cluster": profile.name,
            "collection_name": args.collection_name,
            "result": result,
        }

    async def _delete_collection(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(TimedCollectionArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.delete_collection(
            args.collection_name, timeout=args.timeout
        )
        return {
            "cluster": profile.name,
            "collection_name": args.collection_name,
            "result": result,
        }

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------
    async def _upsert_points(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(UpsertPointsArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.upsert_points(
            args.collection_name, args.points, wait=args.wait, ordering=args.ordering
        )
        return {"cluster": profile.name, "result": result}

    async def _search_points(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(TimedCollectionArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.search_points(
            args.collection_name, args.passthrough(), timeout=args.timeout
        )
        return {"cluster": profile.name, "results": result}

    async def _scroll_points(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(TimedCollectionArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.scroll_points(
            args.collection_name, args.passthrough(), timeout=args.timeout
        )
        return {"cluster": profile.name, **(result or {})}

    async def _scroll_points_paginated(
        self, arguments: Dict[str, Any]
    ) -> Dict[str, Any]:
        args = _parse(ScrollPaginatedArgs, arguments)
        secret = self.context.cursor_secret

        if args.cursor:
            state = decode_cursor(args.cursor, secret=secret)
            profile, client = self._resume_cluster(state, args)
            collection_name = state.collection_name
            request = state.request
        else:
            if not args.collection_name:
                raise InvalidArgumentsError(
                    "collection_name is required when cursor is not provided"
                )
            profile, client = self._select_cluster(args)
            collection_name = args.collection_name
            request = ScrollPageRequest(
                offset=args.offset,
                limit=args.limit,
                filter=args.filter,
                with_payload=args.with_payload,
                with_vector=args.with_vector,
            )

        result = await client.scroll_points(
            collection_name, request.to_body(), timeout=args.timeout
        )
        result = result or {}
        next_offset = result.get("next_page_offset")
        cursor = None
        if next_offset is not None:
            cursor = encode_cursor(
                ScrollCursor(
                    backend_name=profile.name,
                    collection_name=collection_name,
                    dynamic=profile.is_dynamic,
                    request=request.model_copy(update={"offset": next_offset}),
                ),
                secret=secret,
            )
        return {
            "cluster": profile.name,
            "collection_name": collection_name,
            "points": result.get("points", []),
            "next_page_offset": next_offset,
            "cursor": cursor,
        }

    def _resume_cluster(
        self, state: ScrollCursor, args: ScrollPaginatedArgs
    ) -> Tuple[ClusterProfile, VectorBackend]:
        """Cluster a cursor continues on.

        A named cluster is taken from the cursor; ``cluster`` in the
        arguments is ignored. A dynamic cluster is only accepted when the
        caller passes ``cluster_url`` again and it derives the same name as
        the one recorded in the cursor. The call is admitted against the
        cursor's cluster.
        """
        registry = self.context.registry
        if not state.dynamic:
            profile = registry.resolve(state.backend_name)
            self._admit(profile)
            return profile, registry.get_client(profile.name)
        if not args.cluster_url:
            raise UnsupportedCursorBackendError(
                f"cursor belongs to dynamic cluster '{state.backend_name}'; pass "
                "the same cluster_url again to resume, or restart the scan"
            )
        name = registry.register_dynamic(args.cluster_url, args.cluster_api_key)
        if name != state.backend_name:
            raise InvalidCursorError(
                f"cursor belongs to cluster '{state.backend_name}' but "
                f"cluster_url resolves to '{name}'"
            )
        profile = registry.resolve(name)
        self._admit(profile)
        return profile, registry.get_client(name)

    async def _count_points(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(TimedCollectionArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.count_points(
            args.collection_name, args.passthrough(), timeout=args.timeout
        )
        return {"cluster": profile.name, **(result or {})}

    async def _recommend_points(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(TimedCollectionArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.recommend_points(
            args.collection_name, args.passthrough(), timeout=args.timeout
        )
        return {"cluster": profile.name, "results": result}

    async def _get_point(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(PointArgs, arguments)
        profile, client = self._select_cluster(args)
        point = await client.get_point(args.collection_name, args.point_id)
        return {"cluster": profile.name, "point": point}

    async def _describe_point(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(PointArgs, arguments)
        profile, client = self._select_cluster(args)
        point = await client.get_point(args.collection_name, args.point_id)
        collection = await client.get_collection(args.collection_name)
        try:
            cluster_info = await client.get_collection_cluster_info(
                args.collection_name
            )
        except BackendError as exc:
            # Shard info is unavailable on single-node deployments
            logger.debug(
                "describe_point.cluster_info_unavailable",
                extra={"cluster": profile.name, "detail": exc.message},
            )
            cluster_info = None
        return {
            "cluster": profile.name,
            "collection_name": args.collection_name,
            "point": point,
            "collection": collection,
            "cluster_info": cluster_info,
        }

    async def _delete_point(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(DeletePointArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.delete_points(
            args.collection_name, {"points": [args.point_id]}, wait=args.wait
        )
        return {"cluster": profile.name, "result": result}

    async def _delete_points(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(WriteArgs, arguments)
        selector = args.passthrough()
        if "points" not in selector and "filter" not in selector:
            raise InvalidArgumentsError(
                "delete_points needs either 'points' or 'filter'"
            )
        profile, client = self._select_cluster(args)
        result = await client.delete_points(
            args.collection_name, selector, wait=args.wait, ordering=args.ordering
        )
        return {"cluster": profile.name, "result": result}

    # ------------------------------------------------------------------
    # Payload
    # ------------------------------------------------------------------
    async def _set_payload(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(PayloadArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.set_payload(
            args.collection_name, args.passthrough(), wait=args.wait
        )
        return {"cluster": profile.name, "result": result}

    async def _overwrite_payload(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(PayloadArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.overwrite_payload(
            args.collection_name, args.passthrough(), wait=args.wait
        )
        return {"cluster": profile.name, "result": result}

    async def _delete_payload(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(PayloadArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.delete_payload(
            args.collection_name, args.passthrough(), wait=args.wait
        )
        return {"cluster": profile.name, "result": result}

    async def _clear_payload(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(PayloadArgs, arguments)
        profile, client = self._select_cluster(args)
        result = await client.clear_payload(
            args.collection_name, args.passthrough(), wait=args.wait
        )
        return {"cluster": profile.name, "result": result}

    # ------------------------------------------------------------------
    # Aggregates and cluster management
    # ------------------------------------------------------------------
    async def _count_unique_by_field(
        self, arguments: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Scan the whole collection and count distinct values of a field.

        Values are compared by their string form, so ``1`` and ``"1"`` land
        in the same bucket and an explicit ``null`` counts as ``"null"``.
        Points without the field are not counted.
        """
        args = _parse(CountUniqueArgs, arguments)
        profile, client = self._select_cluster(args)

        counts: Counter = Counter()
        total_points = 0
        points_with_field = 0
        offset: Any = None
        while True:
            request: Dict[str, Any] = {
                "limit": UNIQUE_SCAN_BATCH,
                "with_payload": True,
                "with_vector": False,
            }
            if args.filter:
                request["filter"] = args.filter
            if offset is not None:
                request["offset"] = offset
            page = await client.scroll_points(args.collection_name, request) or {}
            for point in page.get("points", []):
                total_points += 1
                payload = point.get("payload") or {}
                if args.field_name not in payload:
                    continue
                points_with_field += 1
                counts[_stringify(payload[args.field_name])] += 1
            offset = page.get("next_page_offset")
            if offset is None:
                break

        response: Dict[str, Any] = {
            "cluster": profile.name,
            "collection_name": args.collection_name,
            "field_name": args.field_name,
            "total_points": total_points,
            "points_with_field": points_with_field,
            "unique_count": len(counts),
        }
        if args.include_breakdown:
            ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
            response["breakdown"] = [
                {"value": value, "count": count}
                for value, count in ranked[: args.limit]
            ]
            response["breakdown_truncated"] = len(ranked) > args.limit
        return response

    async def _switch_cluster(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = _parse(SwitchClusterArgs, arguments)
        registry = self.context.registry
        profile = registry.resolve(args.cluster or None)
        self._admit(profile)
        if args.cluster:
            previous = registry.get_active()
            profile = registry.set_active(profile.name)
            changed = previous != profile.name
        else:
            changed = False
        return {
            "cluster": profile.name,
            "active": profile.public_dict(),
            "changed": changed,
            "available_clusters": registry.names(),
        }


def _stringify(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return orjson.dumps(value, option=orjson.OPT_SORT_KEYS).decode("utf-8")
    return str(value)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
