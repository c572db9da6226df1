"""
Tool-specific lookup caches.

Source rows reference agents, hosts, scripts and queries by the tool's own
numeric ids. These caches translate them into stable agent ids and display
names, refreshing once from the tool API when a lookup misses.
"""

import logging
from typing import Any, Dict, List, Optional

from .config import config
from .storage.redis_cache import ReadThroughCache

logger = logging.getLogger("normalizer.tool_cache")

ALL_AGENTS_KEY = "all"


class TacticalRmmCache:
    """Agent primary key -> agent UUID, script id -> script name."""

    def __init__(self, client, ttl: float = config.TOOL_CACHE_TTL):
        self.client = client
        self.agents = ReadThroughCache("tactical.agents", self._load_agents, ttl=ttl)
        self.scripts = ReadThroughCache("tactical.scripts", self._load_script_name, ttl=ttl)

    async def _load_agents(self, _key) -> Optional[List[Dict[str, Any]]]:
        logger.debug("Fetching all agents from Tactical RMM")
        agents = await self.client.get_all_agents()
        # An empty list is not cached so the next lookup retries
        return agents or None

    async def _load_script_name(self, script_id: int) -> Optional[str]:
        logger.debug(f"Fetching script name for script ID: {script_id}")
        script = await self.client.get_script(script_id)
        return script.get("name") if script else None

    @staticmethod
    def _find_agent_id(agents: Optional[List[Dict[str, Any]]], primary_key: int) -> Optional[str]:
        for agent in agents or []:
            if agent.get("pk") == primary_key:
                return agent.get("agent_id")
        return None

    async def get_agent_id_by_primary_key(self, primary_key: int) -> Optional[str]:
        """Agent UUID for a numeric agent primary key, or None."""
        agents = await self.agents.get_or_load(ALL_AGENTS_KEY)
        agent_id = self._find_agent_id(agents, primary_key)
        if agent_id is not None:
            return agent_id

        logger.debug(f"Agent not found in cache for PK: {primary_key}, refreshing cache")
        agents = await self.agents.get_or_load(ALL_AGENTS_KEY, force_refresh=True)
        agent_id = self._find_agent_id(agents, primary_key)
        if agent_id is not None:
            logger.info(f"Agent found after cache refresh: PK={primary_key}, agent_id={agent_id}")
        return agent_id

    async def get_script_name(self, script_id: int) -> Optional[str]:
        return await self.scripts.get_or_load(script_id)

    def stats(self) -> Dict[str, Any]:
        return {"agents": self.agents.stats(), "scripts": self.scripts.stats()}


class FleetMdmCache:
    """Host id -> host UUID, query id -> query definition ({name, query, ...})."""

    def __init__(self, client, ttl: float = config.TOOL_CACHE_TTL):
        self.client = client
        self.hosts = ReadThroughCache("fleet.hosts", self._load_host_uuid, ttl=ttl)
        self.queries = ReadThroughCache("fleet.queries", self.client.get_query, ttl=ttl)

    async def _load_host_uuid(self, host_id: int) -> Optional[str]:
        logger.debug(f"Fetching agent ID for host: {host_id}")
        host = await self.client.get_host(host_id)
        return host.get("uuid") if host else None

    async def _lookup(self, cache: ReadThroughCache, key: int):
        value = await cache.get_or_load(key)
        if value is None:
            value = await cache.get_or_load(key, force_refresh=True)
        return value

    async def get_agent_id(self, host_id: int) -> Optional[str]:
        return await self._lookup(self.hosts, host_id)

    async def get_query(self, query_id: int) -> Optional[Dict[str, Any]]:
        return await self._lookup(self.queries, query_id)

    def stats(self) -> Dict[str, Any]:
        return {"hosts": self.hosts.stats(), "queries": self.queries.stats()}
