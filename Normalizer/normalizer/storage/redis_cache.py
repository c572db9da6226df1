"""
Cache module for the Normalizer.

Responsibilities:
- In-process read-through caching with TTL (ReadThroughCache)
- Device directory lookups in Redis: machine and organization records

NOT responsible for:
- Writing the device directory (agent registration owns it)
- Caching negative lookups (a miss must be retried next time)
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

import redis.asyncio as redis

logger = logging.getLogger("normalizer.redis_cache")

Loader = Callable[[Hashable], Awaitable[Optional[Any]]]


class ReadThroughCache:
    """
    TTL cache in front of an async loader.

    `get_or_load` serializes loads per key with an asyncio.Lock, so an
    evict-then-refetch (force_refresh=True) is never interleaved with another
    reader's load of the same key. Loader results of None are not stored.
    """

    def __init__(self, name: str, loader: Loader, ttl: float = 300,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.loader = loader
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._lock_users: Dict[Hashable, int] = {}
        self._next_prune = 0.0

        self.hits = 0
        self.misses = 0
        self.loads = 0

    def get(self, key: Hashable) -> Optional[Any]:
        """Cached value if present and fresh, else None. Never loads."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def put(self, key: Hashable, value: Any):
        if value is None:
            return
        now = self._clock()
        if now >= self._next_prune:
            self._prune(now)
            self._next_prune = now + self.ttl
        self._entries[key] = (value, now + self.ttl)

    def _prune(self, now: float):
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]

    def invalidate(self, key: Hashable):
        self._entries.pop(key, None)

    def clear(self):
        self._entries.clear()

    async def get_or_load(self, key: Hashable, force_refresh: bool = False) -> Optional[Any]:
        """
        Cached value, loading it on a miss.

        With force_refresh=True the entry is evicted and reloaded even if it
        is present.
        """
        if not force_refresh:
            value = self.get(key)
            if value is not None:
                self.hits += 1
                return value

        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                return await self._load(key, force_refresh)
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                # Last holder or waiter for this key
                del self._lock_users[key]
                del self._locks[key]

    async def _load(self, key: Hashable, force_refresh: bool) -> Optional[Any]:
        if force_refresh:
            self.invalidate(key)
        else:
            # Another reader may have loaded it while we waited
            value = self.get(key)
            if value is not None:
                self.hits += 1
                return value

        self.misses += 1
        self.loads += 1
        value = await self.loader(key)
        self.put(key, value)
        return value

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "loads": self.loads,
            "ttl_seconds": self.ttl,
        }

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """
    Read-only client for the device directory kept in Redis.

    Keys:
        machine:<agentId>        -> {"machineId", "hostname", "organizationId", ...}
        organization:<orgId>     -> {"organizationId", "name", ...}
    """

    MACHINE_PREFIX = "machine"
    ORGANIZATION_PREFIX = "organization"

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client=None
    ):
        self.client = client or redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            decode_responses=True
        )
        self.host = host
        self.port = port

        logger.info(f"✅ Redis cache initialized (host={host}, port={port})")

    async def _get_json(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            data = await self.client.get(key)
            if data:
                logger.debug(f"[CACHE] Cache hit: {key}")
                return json.loads(data)
            logger.debug(f"[CACHE] Cache miss: {key}")
            return None

        except Exception as e:
            logger.error(f"[CACHE] Failed to retrieve {key}: {e}")
            return None

    async def get_machine(self, agent_id: str) -> Optional[Dict[str, Any]]:
        """Machine record registered for an agent id."""
        return await self._get_json(f"{self.MACHINE_PREFIX}:{agent_id}")

    async def get_organization(self, organization_id: str) -> Optional[Dict[str, Any]]:
        """Organization record by id."""
        return await self._get_json(f"{self.ORGANIZATION_PREFIX}:{organization_id}")

    async def health_check(self) -> Dict[str, Any]:
        """Check Redis connection health."""
        try:
            await self.client.ping()
            return {
                "connected": True,
                "host": self.host,
                "port": self.port
            }
        except Exception as e:
            return {
                "connected": False,
                "error": str(e)
            }

    async def close(self):
        await self.client.close()
