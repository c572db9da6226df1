"""
Cache and enrichment tests.

Uses an injectable clock for TTL expiry and AsyncMocks for the Redis client
and tool API clients.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ─────────────────────────────────────────────────────────────────────────────
# ReadThroughCache
# ─────────────────────────────────────────────────────────────────────────────

class TestReadThroughCache:

    @pytest.mark.asyncio
    async def test_loads_once_then_hits(self):
        from normalizer.storage.redis_cache import ReadThroughCache
        loader = AsyncMock(return_value="value")
        cache = ReadThroughCache("test", loader, ttl=60, clock=FakeClock())

        assert await cache.get_or_load("k") == "value"
        assert await cache.get_or_load("k") == "value"
        loader.assert_awaited_once_with("k")
        assert cache.stats()["hits"] == 1
        assert cache.stats()["loads"] == 1

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self):
        from normalizer.storage.redis_cache import ReadThroughCache
        clock = FakeClock()
        loader = AsyncMock(side_effect=["old", "new"])
        cache = ReadThroughCache("test", loader, ttl=60, clock=clock)

        assert await cache.get_or_load("k") == "old"
        clock.now += 61
        assert cache.get("k") is None
        assert await cache.get_or_load("k") == "new"
        assert loader.await_count == 2

    @pytest.mark.asyncio
    async def test_none_is_not_cached(self):
        from normalizer.storage.redis_cache import ReadThroughCache
        loader = AsyncMock(return_value=None)
        cache = ReadThroughCache("test", loader, clock=FakeClock())

        assert await cache.get_or_load("k") is None
        assert await cache.get_or_load("k") is None
        assert loader.await_count == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_force_refresh_reloads(self):
        from normalizer.storage.redis_cache import ReadThroughCache
        loader = AsyncMock(side_effect=["v1", "v2"])
        cache = ReadThroughCache("test", loader, clock=FakeClock())

        assert await cache.get_or_load("k") == "v1"
        assert await cache.get_or_load("k", force_refresh=True) == "v2"
        assert cache.get("k") == "v2"

    @pytest.mark.asyncio
    async def test_concurrent_readers_share_one_load(self):
        from normalizer.storage.redis_cache import ReadThroughCache
        calls = []

        async def slow_loader(key):
            calls.append(key)
            await asyncio.sleep(0.01)
            return "value"

        cache = ReadThroughCache("test", slow_loader, clock=FakeClock())
        results = await asyncio.gather(*(cache.get_or_load("k") for _ in range(5)))
        assert results == ["value"] * 5
        assert calls == ["k"]
        assert cache._locks == {}

    @pytest.mark.asyncio
    async def test_key_locks_released_after_load(self):
        from normalizer.storage.redis_cache import ReadThroughCache
        loader = AsyncMock(side_effect=lambda key: f"value-{key}")
        cache = ReadThroughCache("test", loader, clock=FakeClock())

        for i in range(100):
            await cache.get_or_load(i)
        await cache.get_or_load(7, force_refresh=True)
        assert cache._locks == {}
        assert cache._lock_users == {}

    @pytest.mark.asyncio
    async def test_key_lock_released_when_loader_fails(self):
        from normalizer.storage.redis_cache import ReadThroughCache
        loader = AsyncMock(side_effect=RuntimeError("api down"))
        cache = ReadThroughCache("test", loader, clock=FakeClock())

        with pytest.raises(RuntimeError):
            await cache.get_or_load("k")
        assert cache._locks == {}

    def test_put_prunes_expired_entries(self):
        from normalizer.storage.redis_cache import ReadThroughCache
        clock = FakeClock()
        cache = ReadThroughCache("test", AsyncMock(), ttl=60, clock=clock)

        for i in range(10):
            cache.put(i, "value")
        clock.now += 61
        cache.put("fresh", "value")

        assert len(cache) == 1
        assert cache.get("fresh") == "value"


# ─────────────────────────────────────────────────────────────────────────────
# Tool caches
# ─────────────────────────────────────────────────────────────────────────────

class TestTacticalRmmCache:

    @pytest.mark.asyncio
    async def test_agent_found_in_cached_list(self):
        from normalizer.tool_cache import TacticalRmmCache
        client = MagicMock()
        client.get_all_agents = AsyncMock(return_value=[
            {"pk": 1, "agent_id": "uuid-1"},
            {"pk": 2, "agent_id": "uuid-2"},
        ])
        cache = TacticalRmmCache(client)

        assert await cache.get_agent_id_by_primary_key(2) == "uuid-2"
        assert await cache.get_agent_id_by_primary_key(1) == "uuid-1"
        client.get_all_agents.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_miss_forces_one_refresh(self):
        from normalizer.tool_cache import TacticalRmmCache
        client = MagicMock()
        client.get_all_agents = AsyncMock(side_effect=[
            [{"pk": 1, "agent_id": "uuid-1"}],
            [{"pk": 1, "agent_id": "uuid-1"}, {"pk": 3, "agent_id": "uuid-3"}],
        ])
        cache = TacticalRmmCache(client)

        assert await cache.get_agent_id_by_primary_key(3) == "uuid-3"
        assert client.get_all_agents.await_count == 2

    @pytest.mark.asyncio
    async def test_unknown_agent_after_refresh(self):
        from normalizer.tool_cache import TacticalRmmCache
        client = MagicMock()
        client.get_all_agents = AsyncMock(return_value=[{"pk": 1, "agent_id": "uuid-1"}])
        cache = TacticalRmmCache(client)

        assert await cache.get_agent_id_by_primary_key(99) is None
        assert client.get_all_agents.await_count == 2

    @pytest.mark.asyncio
    async def test_script_name(self):
        from normalizer.tool_cache import TacticalRmmCache
        client = MagicMock()
        client.get_script = AsyncMock(return_value={"id": 12, "name": "Cleanup"})
        cache = TacticalRmmCache(client)

        assert await cache.get_script_name(12) == "Cleanup"
        assert await cache.get_script_name(12) == "Cleanup"
        client.get_script.assert_awaited_once_with(12)


class TestFleetMdmCache:

    @pytest.mark.asyncio
    async def test_host_uuid(self):
        from normalizer.tool_cache import FleetMdmCache
        client = MagicMock()
        client.get_host = AsyncMock(return_value={"id": 5, "uuid": "host-uuid"})
        client.get_query = AsyncMock(return_value=None)
        cache = FleetMdmCache(client)

        assert await cache.get_agent_id(5) == "host-uuid"
        assert await cache.get_agent_id(5) == "host-uuid"
        client.get_host.assert_awaited_once_with(5)

    @pytest.mark.asyncio
    async def test_missing_query_retried_once(self):
        from normalizer.tool_cache import FleetMdmCache
        client = MagicMock()
        client.get_host = AsyncMock(return_value=None)
        client.get_query = AsyncMock(side_effect=[None, {"name": "Q", "query": "SELECT 1;"}])
        cache = FleetMdmCache(client)

        assert await cache.get_query(3) == {"name": "Q", "query": "SELECT 1;"}
        assert client.get_query.await_count == 2


# ─────────────────────────────────────────────────────────────────────────────
# Redis device directory and enrichment
# ─────────────────────────────────────────────────────────────────────────────

def _redis(values):
    from normalizer.storage.redis_cache import RedisCache
    client = MagicMock()
    client.get = AsyncMock(side_effect=lambda key: values.get(key))
    client.ping = AsyncMock(return_value=True)
    return RedisCache(client=client), client


class TestRedisCache:

    @pytest.mark.asyncio
    async def test_machine_and_organization(self):
        cache, client = _redis({
            "machine:agent-1": json.dumps({"machineId": "m-1", "hostname": "ws01"}),
            "organization:org-1": json.dumps({"name": "Acme"}),
        })
        assert await cache.get_machine("agent-1") == {"machineId": "m-1", "hostname": "ws01"}
        assert await cache.get_organization("org-1") == {"name": "Acme"}
        assert await cache.get_machine("agent-2") is None
        client.get.assert_any_await("machine:agent-1")

    @pytest.mark.asyncio
    async def test_redis_failure_returns_none(self):
        from normalizer.storage.redis_cache import RedisCache
        client = MagicMock()
        client.get = AsyncMock(side_effect=ConnectionError("down"))
        cache = RedisCache(client=client)
        assert await cache.get_machine("agent-1") is None

    @pytest.mark.asyncio
    async def test_health_check(self):
        cache, _ = _redis({})
        health = await cache.health_check()
        assert health["connected"] is True


class TestContextEnricher:

    @pytest.mark.asyncio
    async def test_full_context(self):
        from normalizer.enrichment import ContextEnricher
        directory, _ = _redis({
            "machine:agent-1": json.dumps({
                "machineId": "m-1", "hostname": "ws01", "organizationId": "org-1"
            }),
            "organization:org-1": json.dumps({"name": "Acme"}),
        })
        context = await ContextEnricher(directory).lookup("agent-1")
        assert context.machine_id == "m-1"
        assert context.hostname == "ws01"
        assert context.organization_id == "org-1"
        assert context.organization_name == "Acme"

    @pytest.mark.asyncio
    async def test_unknown_agent_gives_empty_context(self):
        from normalizer.enrichment import ContextEnricher
        from normalizer.event_schema import EnrichmentContext
        directory, _ = _redis({})
        assert await ContextEnricher(directory).lookup("nobody") == EnrichmentContext()

    @pytest.mark.asyncio
    async def test_no_agent_id_skips_lookup(self):
        from normalizer.enrichment import ContextEnricher
        directory = MagicMock()
        directory.get_machine = AsyncMock()
        context = await ContextEnricher(directory).lookup(None)
        assert context.machine_id is None
        directory.get_machine.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lookup_never_raises(self):
        from normalizer.enrichment import ContextEnricher
        directory = MagicMock()
        directory.get_machine = AsyncMock(side_effect=RuntimeError("boom"))
        context = await ContextEnricher(directory).lookup("agent-1")
        assert context.machine_id is None

    @pytest.mark.asyncio
    async def test_context_is_cached(self):
        from normalizer.enrichment import ContextEnricher
        directory = MagicMock()
        directory.get_machine = AsyncMock(return_value={"machineId": "m-1"})
        directory.get_organization = AsyncMock(return_value=None)
        enricher = ContextEnricher(directory)

        await enricher.lookup("agent-1")
        await enricher.lookup("agent-1")
        directory.get_machine.assert_awaited_once_with("agent-1")
