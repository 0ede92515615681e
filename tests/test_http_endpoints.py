"""Test HTTP endpoint functionality."""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from qdrant_mcp.server.http import create_app

PROFILES = json.dumps([{"name": "prod", "url": "http://prod.test:6333"}])


@pytest.fixture
def make_client(make_context):
    """Build a test client around a context wired to the fake Qdrant."""

    def _make(**overrides):
        overrides.setdefault("QDRANT_CLUSTER_PROFILES", PROFILES)
        return TestClient(create_app(make_context(**overrides)))

    return _make


@pytest.fixture
def client(make_client):
    return make_client()


def test_health_and_ready(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/ready").json() == {"status": "ready"}


def test_probes_never_require_auth(make_client):
    client = make_client(QDRANT_MCP_HTTP_TOKEN="test-token")

    assert client.get("/health").status_code == 200
    assert client.get("/ready").status_code == 200


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"x-correlation-id": "abc123"})

    assert response.headers["x-correlation-id"] == "abc123"
    assert client.get("/health").headers["x-correlation-id"]


def test_capabilities(make_client):
    client = make_client(
        MCP_RATE_LIMIT_MAX_REQUESTS=5,
        QDRANT_MCP_CURSOR_SECRET="s",
        APPROVAL_POLICY="never",
    )

    body = client.get("/capabilities").json()

    assert body["name"] == "qdrant-mcp-server"
    assert body["active_cluster"] == "default"
    assert [c["name"] for c in body["clusters"]] == ["default", "prod"]
    assert all("api_key" not in c for c in body["clusters"])
    assert "scroll_points_paginated" in body["tools"]
    assert body["rate_limit"]["max_requests"] == 5
    assert body["cursor_signing"] is True
    assert body["destructive_tools_disabled"] is True
    assert body["http_auth"] == "disabled"


def test_tool_invocation(client, fake_qdrant):
    fake_qdrant.add_collection("docs", count=3)

    response = client.post("/tools/count_points", json={"collection_name": "docs"})

    assert response.status_code == 200
    assert response.json() == {"cluster": "default", "count": 3}


def test_tool_invocation_without_body(client):
    response = client.post("/tools/list_collections")

    assert response.status_code == 200
    assert response.json() == {"cluster": "default", "collections": []}


def test_tool_requires_token_when_configured(make_client):
    client = make_client(QDRANT_MCP_HTTP_TOKEN="test-token")

    assert client.post("/tools/list_collections", json={}).status_code == 401
    wrong = client.post(
        "/tools/list_collections",
        json={},
        headers={"Authorization": "Bearer nope"},
    )
    assert wrong.status_code == 403
    ok = client.post(
        "/tools/list_collections",
        json={},
        headers={"Authorization": "Bearer test-token"},
    )
    assert ok.status_code == 200


def test_unknown_cluster_returns_404_with_options(client):
    response = client.post("/tools/list_collections", json={"cluster": "staging"})

    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["error_type"] == "unknown_cluster"
    assert detail["available_options"] == ["default", "prod"]


def test_unknown_tool_returns_404(client):
    response = client.post("/tools/not_a_tool", json={})

    assert response.status_code == 404
    assert response.json()["detail"]["error_type"] == "unknown_tool"


def test_rate_limited_returns_429(make_client):
    client = make_client(MCP_RATE_LIMIT_MAX_REQUESTS=1)

    assert client.post("/tools/list_collections", json={}).status_code == 200
    response = client.post("/tools/list_collections", json={})

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["error_type"] == "rate_limited"
    assert detail["retryable"] is True


def test_backend_error_returns_502(client):
    response = client.post("/tools/get_collection", json={"collection_name": "nope"})

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["error_type"] == "backend_error"
    assert detail["status_code"] == 404


def test_backend_error_status_is_reported(client, fake_qdrant):
    fake_qdrant.fail_with = (503, "service unavailable")

    response = client.post("/tools/list_collections", json={})

    assert response.status_code == 502
    assert response.json()["detail"]["status_code"] == 503


def test_invalid_body_returns_400(client):
    response = client.post(
        "/tools/list_collections",
        content=b"[1, 2",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["error_type"] == "validation_error"


def test_resources_listing(client):
    body = client.get("/resources").json()

    uris = [r["uri"] for r in body["resources"]]
    assert uris == ["qdrant://clusters/default", "qdrant://clusters/prod"]
    default = body["resources"][0]
    assert default["metadata"]["active"] is True
    assert body["resource_templates"][0]["uriTemplate"] == "qdrant://clusters/{name}"


def test_resource_read_includes_collections(client, fake_qdrant):
    fake_qdrant.add_collection("docs")

    body = client.get("/resources/clusters/prod").json()

    content = body["contents"][0]
    assert content["uri"] == "qdrant://clusters/prod"
    data = json.loads(content["text"])
    assert data["cluster"]["name"] == "prod"
    assert data["active"] is False
    assert data["collections"] == ["docs"]
    assert data["rate_limit"]["window_ms"] == 1000


def test_resource_read_survives_backend_failure(client, fake_qdrant):
    fake_qdrant.fail_with = (500, "boom")

    body = client.get("/resources/clusters/default").json()

    assert json.loads(body["contents"][0]["text"])["collections"] == []


def test_resource_read_unknown_cluster(client):
    response = client.get("/resources/clusters/staging")

    assert response.status_code == 404
    assert response.json()["detail"]["error_type"] == "unknown_cluster"


def test_mcp_endpoint_without_lifespan_is_unavailable(client):
    response = client.post("/mcp", json={})

    assert response.status_code == 503


def test_mcp_over_http_lists_tools(make_context):
    app = create_app(make_context())
    headers = {
        "accept": "application/json, text/event-stream",
        "content-type": "application/json",
    }

    with TestClient(app) as client:
        response = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {}},
            headers=headers,
        )

    assert response.status_code == 200
    tools = response.json()["result"]["tools"]
    assert len(tools) == 21
    assert {t["name"] for t in tools} >= {"scroll_points_paginated", "switch_cluster"}
