"""Pytest configuration for test suite.

Ensures the project root is on ``sys.path`` so ``import qdrant_mcp``
resolves regardless of the working directory pytest chooses, and provides
an in-memory Qdrant served through ``httpx.MockTransport``.
"""

from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import pytest


def _ensure_project_root_on_syspath() -> None:
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)
    if project_root_str not in sys.path:
        # Prepend to prefer local sources over site-packages
        sys.path.insert(0, project_root_str)


_ensure_project_root_on_syspath()

from qdrant_mcp.config.models import EnvSettings  # noqa: E402
from qdrant_mcp.server.context import ServerContext  # noqa: E402

_ROUTE = re.compile(r"^/collections(?:/(?P<collection>[^/]+)(?P<rest>/.*)?)?$")


def _ok(result: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code, json={"result": result, "status": "ok", "time": 0.001}
    )


def _error(status_code: int, message: str) -> httpx.Response:
    return httpx.Response(
        status_code, json={"status": {"error": message}, "time": 0.001}
    )


def _parse_id(raw: str) -> Any:
    return int(raw) if raw.isdigit() else raw


class FakeQdrant:
    """Minimal Qdrant REST server kept in memory.

    Every host is served by the same instance; ``requests`` records what
    was sent so tests can assert on routing, headers and query params.
    """

    def __init__(self) -> None:
        self.collections: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self.requests: List[httpx.Request] = []
        self.fail_with: Optional[Tuple[int, str]] = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def add_collection(
        self,
        name: str,
        count: int = 0,
        payload: Optional[Callable[[int], Dict[str, Any]]] = None,
    ) -> None:
        make_payload = payload or (lambda i: {"n": i})
        self.collections[name] = {
            i: {"id": i, "vector": [float(i), 0.0], "payload": make_payload(i)}
            for i in range(1, count + 1)
        }

    def requests_to(self, host: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    # ---------------- request handling ----------------
    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return _error(*self.fail_with)

        path = request.url.raw_path.decode("ascii").split("?", 1)[0]
        match = _ROUTE.match(path)
        if match is None:
            return _error(404, f"Unknown path {path}")
        name = match.group("collection")
        if name is not None:
            name = unquote(name)
        rest = match.group("rest") or ""
        method = request.method
        body = request.read()
        data: Dict[str, Any] = json.loads(body) if body else {}

        if name is None:
            return _ok(
                {"collections": [{"name": n} for n in sorted(self.collections)]}
            )

        if rest == "" and method == "PUT":
            if name in self.collections:
                return _error(409, f"Wrong input: Collection `{name}` already exists!")
            self.collections[name] = {}
            return _ok(True)
        if rest == "/exists":
            return _ok({"exists": name in self.collections})

        points = self.collections.get(name)
        if points is None:
            return _error(404, f"Not found: Collection `{name}` doesn't exist!")

        if rest == "":
            if method == "GET":
                return _ok(
                    {
                        "status": "green",
                        "points_count": len(points),
                        "config": {"params": {"vectors": {"size": 2}}},
                    }
                )
            if method == "PATCH":
                return _ok(True)
            if method == "DELETE":
                del self.collections[name]
                return _ok(True)
        if rest == "/cluster":
            return _ok({"peer_id": 1, "shard_count": 1, "local_shards": []})
        if rest == "/points" and method == "PUT":
            for point in data.get("points", []):
                points[point["id"]] = {
                    "id": point["id"],
                    "vector": point.get("vector"),
                    "payload": point.get("payload") or {},
                }
            return _ok({"operation_id": 1, "status": "completed"})
        if rest == "/points/scroll":
            return _ok(self._scroll(points, data))
        if rest == "/points/count":
            return _ok({"count": len(self._filtered(points, data.get("filter")))})
        if rest in ("/points/search", "/points/recommend"):
            hits = self._filtered(points, data.get("filter"))[: data.get("limit", 10)]
            return _ok(
                [
                    {"id": p["id"], "score": 1.0 / (1 + i), "payload": p["payload"]}
                    for i, p in enumerate(hits)
                ]
            )
        if rest == "/points/delete":
            for point_id in data.get("points", []):
                points.pop(point_id, None)
            return _ok({"operation_id": 2, "status": "completed"})
        if rest.startswith("/points/payload"):
            return self._payload(points, rest, method, data)
        if rest.startswith("/points/") and method == "GET":
            point_id = _parse_id(rest[len("/points/"):])
            if point_id not in points:
                return _error(404, f"Not found: No point with id {point_id} found")
            return _ok(points[point_id])
        return _error(404, f"Unsupported {method} {request.url.path}")

    @staticmethod
    def _filtered(
        points: Dict[Any, Dict[str, Any]], flt: Optional[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        ordered = [points[k] for k in sorted(points)]
        if not flt:
            return ordered
        conditions = flt.get("must", [])
        return [
            p
            for p in ordered
            if all(
                p["payload"].get(c["key"]) == c["match"]["value"] for c in conditions
            )
        ]

    def _scroll(
        self, points: Dict[Any, Dict[str, Any]], data: Dict[str, Any]
    ) -> Dict[str, Any]:
        ordered = self._filtered(points, data.get("filter"))
        offset = data.get("offset")
        if offset is not None:
            ordered = [p for p in ordered if p["id"] >= offset]
        limit = data.get("limit", 10)
        page, remainder = ordered[:limit], ordered[limit:]
        with_payload = data.get("with_payload", True)
        with_vector = data.get("with_vector", False)
        out = []
        for p in page:
            item: Dict[str, Any] = {"id": p["id"]}
            if with_payload:
                item["payload"] = p["payload"]
            if with_vector:
                item["vector"] = p["vector"]
            out.append(item)
        return {
            "points": out,
            "next_page_offset": remainder[0]["id"] if remainder else None,
        }

    @staticmethod
    def _payload(
        points: Dict[Any, Dict[str, Any]], rest: str, method: str, data: Dict[str, Any]
    ) -> httpx.Response:
        targets = [points[i] for i in data.get("points", []) if i in points]
        for p in targets:
            if rest == "/points/payload" and method == "POST":
                p["payload"].update(data.get("payload", {}))
            elif rest == "/points/payload" and method == "PUT":
                p["payload"] = dict(data.get("payload", {}))
            elif rest == "/points/payload/delete":
                for key in data.get("keys", []):
                    p["payload"].pop(key, None)
            elif rest == "/points/payload/clear":
                p["payload"] = {}
        return _ok({"operation_id": 3, "status": "completed"})


def build_settings(**overrides: Any) -> EnvSettings:
    """Settings isolated from the developer's environment and .env file."""
    values: Dict[str, Any] = {
        "QDRANT_URL": "http://qdrant.test:6333",
        "QDRANT_API_KEY": "",
        "QDRANT_CLUSTER_PROFILES": None,
        "QDRANT_DEFAULT_CLUSTER": None,
        "QDRANT_MCP_CONFIG": None,
        "QDRANT_MAX_RETRIES": 0,
        "QDRANT_BACKOFF_INITIAL_MS": 0,
        "MCP_RATE_LIMIT_ENABLED": True,
        "MCP_RATE_LIMIT_WINDOW_MS": 1000,
        "MCP_RATE_LIMIT_MAX_REQUESTS": 1000,
        "QDRANT_MCP_CURSOR_SECRET": None,
        "QDRANT_MCP_HTTP_TOKEN": None,
        "QDRANT_MCP_CORS_ORIGINS": None,
        "APPROVAL_POLICY": None,
    }
    values.update(overrides)
    return EnvSettings(_env_file=None, **values)


@pytest.fixture
def make_settings() -> Callable[..., EnvSettings]:
    return build_settings


@pytest.fixture
def fake_qdrant() -> FakeQdrant:
    return FakeQdrant()


@pytest.fixture
def make_context(fake_qdrant: FakeQdrant) -> Callable[..., ServerContext]:
    """Factory for contexts whose clients talk to ``fake_qdrant``."""

    def _make(**overrides: Any) -> ServerContext:
        return ServerContext.from_settings(
            build_settings(**overrides), transport=fake_qdrant.transport
        )

    return _make
