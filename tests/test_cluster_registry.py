"""Tests for the cluster registry: profiles, active cluster and client cache."""

from __future__ import annotations

import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from qdrant_mcp.clusters import DEFAULT_PROFILE_NAME, ClusterRegistry
from qdrant_mcp.config.models import ClusterProfileConfig
from qdrant_mcp.errors import UnknownClusterError


def _profile(name, url="http://qdrant.test:6333", **kwargs):
    return ClusterProfileConfig(name=name, url=url, **kwargs)


def _registry(profiles=(), default_cluster=None, factory=None):
    return ClusterRegistry(
        "http://fallback.test:6333",
        "fallback-key",
        profiles,
        default_cluster,
        client_factory=factory or (lambda profile: MagicMock(name=profile.name)),
    )


def test_fallback_profile_added_when_missing():
    registry = _registry([_profile("prod")])

    assert registry.names() == ["default", "prod"]
    fallback = registry.resolve(DEFAULT_PROFILE_NAME)
    assert fallback.url == "http://fallback.test:6333"
    assert fallback.api_key == "fallback-key"
    assert registry.get_active() == DEFAULT_PROFILE_NAME


def test_configured_default_profile_is_not_replaced():
    registry = _registry([_profile("default", url="http://configured.test:6333")])

    assert registry.names() == ["default"]
    assert registry.resolve("default").url == "http://configured.test:6333"


def test_empty_configuration_still_has_default():
    registry = _registry()

    assert registry.names() == ["default"]
    assert registry.resolve().name == "default"


def test_profiles_without_name_or_url_are_dropped(caplog):
    caplog.set_level("WARNING")
    registry = _registry(
        [
            ClusterProfileConfig(name="no-url"),
            ClusterProfileConfig(url="http://nameless.test"),
            _profile("   "),
            _profile("ok"),
        ]
    )

    assert registry.names() == ["default", "ok"]
    assert any(r.message == "registry.profile.dropped" for r in caplog.records)


def test_invalid_profile_url_is_dropped():
    registry = _registry([_profile("bad", url="ftp://files.test"), _profile("ok")])

    assert registry.names() == ["default", "ok"]


def test_duplicate_profile_names_first_wins():
    registry = _registry(
        [
            _profile("prod", url="http://first.test"),
            _profile("prod", url="http://second.test"),
        ]
    )

    assert registry.resolve("prod").url == "http://first.test"


def test_profile_metadata_is_preserved():
    registry = _registry(
        [
            ClusterProfileConfig.model_validate(
                {
                    "name": "analytics",
                    "url": "https://analytics.test",
                    "apiKey": "secret",
                    "description": "Reporting cluster",
                    "readOnly": True,
                    "tags": ["reporting"],
                }
            )
        ]
    )

    profile = registry.resolve("analytics")
    assert profile.api_key == "secret"
    assert profile.read_only is True
    assert profile.labels == ("reporting",)
    public = profile.public_dict()
    assert public["has_api_key"] is True
    assert "api_key" not in public


def test_default_cluster_selects_active():
    registry = _registry([_profile("prod")], default_cluster="prod")

    assert registry.get_active() == "prod"
    assert registry.resolve().name == "prod"


def test_unknown_default_cluster_falls_back(caplog):
    caplog.set_level("WARNING")
    registry = _registry([_profile("prod")], default_cluster="staging")

    assert registry.get_active() == "default"
    assert any(
        r.message == "registry.default_cluster.unknown" for r in caplog.records
    )


def test_unknown_cluster_lists_every_name():
    registry = _registry([_profile("prod"), _profile("analytics")])

    with pytest.raises(UnknownClusterError) as exc_info:
        registry.resolve("staging")

    err = exc_info.value
    assert err.available_options == ["analytics", "default", "prod"]
    assert "staging" in err.message
    for name in ("analytics", "default", "prod"):
        assert name in err.message
    assert err.to_dict()["error_type"] == "unknown_cluster"


def test_set_active_switches_and_rejects_unknown():
    registry = _registry([_profile("prod")])

    profile = registry.set_active("prod")
    assert profile.name == "prod"
    assert registry.get_active() == "prod"

    with pytest.raises(UnknownClusterError):
        registry.set_active("missing")
    assert registry.get_active() == "prod"


def test_get_client_is_cached_per_name():
    factory = MagicMock(side_effect=lambda profile: MagicMock(name=profile.name))
    registry = _registry([_profile("prod")], factory=factory)

    first = registry.get_client("prod")
    second = registry.get_client("prod")
    default_client = registry.get_client()

    assert first is second
    assert default_client is not first
    assert factory.call_count == 2


def test_get_client_unknown_name_does_not_call_factory():
    factory = MagicMock()
    registry = _registry(factory=factory)

    with pytest.raises(UnknownClusterError):
        registry.get_client("nope")
    factory.assert_not_called()


def test_concurrent_get_client_creates_one_client():
    created = []
    gate = threading.Barrier(8)

    def factory(profile):
        client = MagicMock(name=profile.name)
        created.append(client)
        return client

    registry = _registry([_profile("prod")], factory=factory)
    results = []

    def worker():
        gate.wait()
        results.append(registry.get_client("prod"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(created) == 1
    assert all(r is created[0] for r in results)


@pytest.mark.asyncio
async def test_aclose_closes_cached_clients():
    clients = {}

    def factory(profile):
        client = MagicMock()
        client.aclose = AsyncMock()
        clients[profile.name] = client
        return client

    registry = _registry([_profile("prod")], factory=factory)
    registry.get_client("prod")
    registry.get_client("default")

    await registry.aclose()

    for client in clients.values():
        client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_aclose_continues_past_a_failing_client(caplog):
    caplog.set_level("WARNING")
    clients = {}

    def factory(profile):
        client = MagicMock()
        client.aclose = AsyncMock(
            side_effect=RuntimeError("socket gone") if profile.name == "default" else None
        )
        clients[profile.name] = client
        return client

    registry = _registry([_profile("prod"), _profile("staging")], factory=factory)
    for name in ("default", "prod", "staging"):
        registry.get_client(name)

    await registry.aclose()

    for client in clients.values():
        client.aclose.assert_awaited_once()
    record = next(r for r in caplog.records if r.message == "cluster.client.close_failed")
    assert record.cluster_name == "default"
    assert "socket gone" in record.error
