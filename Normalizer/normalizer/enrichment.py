"""
Context Enricher - resolve agent id -> device and organization context.
"""

import logging
from typing import Optional

from .config import config
from .event_schema import EnrichmentContext
from .storage.redis_cache import ReadThroughCache

logger = logging.getLogger("normalizer.enrichment")


class ContextEnricher:
    """
    Device directory lookups with an in-process cache in front of Redis.

    `lookup` never raises. A missing agent id, an unknown machine or a Redis
    failure all give an empty EnrichmentContext.
    """

    def __init__(self, directory, ttl: float = config.DEVICE_CACHE_TTL):
        self.directory = directory
        self.cache = ReadThroughCache("device.context", self._load, ttl=ttl)

    async def _load(self, agent_id: str) -> Optional[EnrichmentContext]:
        machine = await self.directory.get_machine(agent_id)
        if not machine:
            logger.warning(f"⚠️ No machine registered for agent {agent_id}")
            return None

        context = EnrichmentContext(
            machine_id=machine.get("machineId"),
            hostname=machine.get("hostname"),
            organization_id=machine.get("organizationId"),
        )

        if context.organization_id:
            organization = await self.directory.get_organization(context.organization_id)
            if organization:
                context.organization_name = organization.get("name")
            else:
                logger.debug(f"Organization {context.organization_id} not found for agent {agent_id}")

        return context

    async def lookup(self, agent_id: Optional[str]) -> EnrichmentContext:
        if not agent_id:
            return EnrichmentContext()

        try:
            context = await self.cache.get_or_load(agent_id)
        except Exception as e:
            logger.error(f"❌ Enrichment lookup failed for agent {agent_id}: {e}")
            return EnrichmentContext()

        return context or EnrichmentContext()
