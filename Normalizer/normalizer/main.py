"""
Normalizer Service - CDC Normalization & Fan-out

Philosophy: Normalize, don't interpret. Deliver, don't decide.

Consumes change records from the CDC_EVENTS JetStream stream, maps them
onto the unified event taxonomy, enriches them with device context and
fans them out to TimescaleDB and the integrated tool events stream.

The HTTP surface is health and metrics only.
"""

import asyncio
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
import uvicorn

from normalizer.config import config
from normalizer.correlator import ActivityJoiner
from normalizer.deserializer import build_deserializers
from normalizer.dispatcher import MessageDispatcher
from normalizer.enrichment import ContextEnricher
from normalizer.event_schema import Destination
from normalizer.logging_config import setup_logging
from normalizer.metrics import get_metrics
from normalizer.nats_publisher import NATSPublisher, create_publisher
from normalizer.nats_subscriber import CDCSubscriber
from normalizer.storage.redis_cache import RedisCache
from normalizer.taxonomy import TaxonomyRegistry, build_default_registry
from normalizer.timescale_writer import TimescaleWriter, create_writer
from normalizer.tool_cache import FleetMdmCache, TacticalRmmCache
from normalizer.tool_clients import FleetMdmClient, TacticalRmmClient

logger = setup_logging(config.LOG_LEVEL)

app = FastAPI(
    title="Normalizer - Unified Tool Event Pipeline",
    description="CDC normalization, enrichment and fan-out for integrated endpoint tools",
    version=config.VERSION
)

# Global state (initialized on startup)
registry: Optional[TaxonomyRegistry] = None
redis_cache: Optional[RedisCache] = None
tactical_client: Optional[TacticalRmmClient] = None
fleet_client: Optional[FleetMdmClient] = None
tactical_cache: Optional[TacticalRmmCache] = None
fleet_cache: Optional[FleetMdmCache] = None
timescale_writer: Optional[TimescaleWriter] = None
nats_publisher: Optional[NATSPublisher] = None
dispatcher: Optional[MessageDispatcher] = None
joiner: Optional[ActivityJoiner] = None
subscriber: Optional[CDCSubscriber] = None
joiner_task: Optional[asyncio.Task] = None


@app.on_event("startup")
async def startup_event():
    """Initialize Normalizer components on startup."""
    global registry, redis_cache, tactical_client, fleet_client, tactical_cache, fleet_cache
    global timescale_writer, nats_publisher, dispatcher, joiner, subscriber, joiner_task

    logger.info("🚀 Starting Normalizer service...")
    metrics = get_metrics()

    registry = build_default_registry()

    redis_cache = RedisCache(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        db=config.REDIS_DB,
        password=config.REDIS_PASSWORD
    )
    health = await redis_cache.health_check()
    if health.get("connected"):
        logger.info(f"✅ Redis connected: {health.get('host')}:{health.get('port')}")
    else:
        logger.error(f"❌ Redis connection failed: {health.get('error', 'unknown error')}")

    tactical_client = TacticalRmmClient()
    fleet_client = FleetMdmClient()
    await tactical_client.initialize()
    await fleet_client.initialize()
    tactical_cache = TacticalRmmCache(tactical_client)
    fleet_cache = FleetMdmCache(fleet_client)

    timescale_writer = create_writer()
    try:
        await timescale_writer.connect()
    except Exception as e:
        logger.warning(f"⚠️ TimescaleDB unavailable, log store writes will be redelivered: {e}")

    nats_publisher = create_publisher()
    dispatcher = MessageDispatcher(
        build_deserializers(registry, tactical_cache, fleet_cache),
        {
            Destination.LOG_STORE: timescale_writer,
            Destination.MESSAGE_BUS: nats_publisher,
        },
        enricher=ContextEnricher(redis_cache),
        metrics=metrics,
    )
    dispatcher.validate()

    subscriber = CDCSubscriber(dispatcher, metrics=metrics)
    joiner = ActivityJoiner(
        emit=subscriber.publish_joined,
        window_seconds=config.JOIN_WINDOW_SECONDS,
        metrics=metrics,
    )
    subscriber.joiner = joiner
    joiner_task = asyncio.create_task(joiner.run())

    subscriber_connected = await subscriber.connect()
    if subscriber_connected:
        try:
            await nats_publisher.connect(nc=subscriber.connection)
        except Exception as e:
            logger.warning(f"⚠️ Event bus publishing unavailable: {e}")
        await subscriber.subscribe()
    else:
        logger.warning("⚠️ NATS unavailable, no CDC records will be consumed")

    logger.info("✅ Normalizer service ready")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop consuming, flush the join buffer, then close the shared NATS connection and sinks."""
    logger.info("🛑 Shutting down Normalizer service...")

    if subscriber:
        await subscriber.unsubscribe()

    if joiner:
        joiner.stop()
        if joiner_task:
            joiner_task.cancel()
            try:
                await joiner_task
            except asyncio.CancelledError:
                pass
        flushed = await joiner.flush()
        if flushed:
            logger.info(f"💾 Flushed {flushed} buffered activities unenriched")

    if subscriber:
        await subscriber.close()
    if nats_publisher:
        await nats_publisher.disconnect()
    if timescale_writer:
        await timescale_writer.disconnect()
    for client in (tactical_client, fleet_client):
        if client:
            await client.shutdown()
    if redis_cache:
        await redis_cache.close()

    logger.info("✅ Normalizer service stopped")


@app.get("/")
async def root():
    """Root endpoint - service info."""
    return {
        "service": config.SERVICE_NAME,
        "version": config.VERSION,
        "philosophy": "Normalize, don't interpret. Deliver, don't decide.",
        "status": "consuming" if subscriber and subscriber.is_connected else "idle",
        "endpoints": {
            "health": "/health",
            "metrics": "/metrics"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    redis_health = await redis_cache.health_check() if redis_cache else {"connected": False}
    timescale_health = await timescale_writer.health_check() if timescale_writer else {"connected": False}
    nats_health = {
        "consumer_connected": subscriber.is_connected if subscriber else False,
        "publisher_connected": nats_publisher.is_connected if nats_publisher else False,
    }

    healthy = (
        redis_health.get("connected")
        and timescale_health.get("connected")
        and nats_health["consumer_connected"]
        and nats_health["publisher_connected"]
    )

    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "components": {
            "redis": redis_health,
            "timescale": timescale_health,
            "nats": nats_health,
            "join_buffer": joiner.pending() if joiner else {}
        }
    }


@app.get("/metrics")
async def metrics_endpoint():
    """Pipeline counters, cache statistics and taxonomy coverage."""
    summary = get_metrics().get_summary()
    summary["caches"] = {}
    if tactical_cache:
        summary["caches"]["tactical"] = tactical_cache.stats()
    if fleet_cache:
        summary["caches"]["fleet"] = fleet_cache.stats()
    if dispatcher and dispatcher.enricher:
        summary["caches"]["device_context"] = dispatcher.enricher.cache.stats()
    summary["taxonomy"] = registry.summary() if registry else {}
    return summary


def main():
    uvicorn.run(
        "normalizer.main:app",
        host=config.HOST,
        port=config.PORT,
        log_level=config.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    main()
