"""
Normalizer Configuration - Environment-driven configuration management.
"""

import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _csv(name: str, default: str = "") -> List[str]:
    """Read a comma-separated environment variable into a list."""
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class NormalizerConfig:
    """Central configuration for the Normalizer service."""

    # Service identity
    SERVICE_NAME = "Normalizer"
    VERSION = "1.0.0"
    HOST = os.getenv("NORMALIZER_HOST", "0.0.0.0")
    PORT = int(os.getenv("NORMALIZER_PORT", 5010))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # NATS JetStream (inbound CDC records)
    NATS_URL = os.getenv("NATS_URL", "nats://localhost:4222")
    NATS_CDC_STREAM = os.getenv("NATS_CDC_STREAM", "CDC_EVENTS")
    NATS_CDC_SUBJECT = os.getenv("NATS_CDC_SUBJECT", "cdc.>")
    NATS_DURABLE_NAME = os.getenv("NATS_DURABLE_NAME", "normalizer-durable")
    NATS_CONSUMER_NAME = "normalizer-consumer"
    NATS_MAX_DELIVER = int(os.getenv("NATS_MAX_DELIVER", 50))
    NATS_ACK_WAIT_SECONDS = int(os.getenv("NATS_ACK_WAIT_SECONDS", 30))
    MESSAGE_TYPE_HEADER = os.getenv("MESSAGE_TYPE_HEADER", "message-type")
    NATS_JOINED_ACTIVITY_SUBJECT = os.getenv("NATS_JOINED_ACTIVITY_SUBJECT", "cdc.fleet.events")

    # NATS JetStream (outbound summaries)
    NATS_OUTBOUND_STREAM = os.getenv("NATS_OUTBOUND_STREAM", "INTEGRATED_TOOL_EVENTS")
    NATS_OUTBOUND_SUBJECT_PREFIX = os.getenv("NATS_OUTBOUND_SUBJECT_PREFIX", "integrated-tool-events")

    # Redis (device directory)
    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
    REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
    REDIS_DB = int(os.getenv("REDIS_DB", 0))

    # TimescaleDB (append-only log store)
    TIMESCALE_HOST = os.getenv("TIMESCALE_HOST", "localhost")
    TIMESCALE_PORT = int(os.getenv("TIMESCALE_PORT", 5432))
    TIMESCALE_DB = os.getenv("TIMESCALE_DB", "unified_events")
    TIMESCALE_USER = os.getenv("TIMESCALE_USER", "normalizer")
    TIMESCALE_PASSWORD = os.getenv("TIMESCALE_PASSWORD", "")
    TIMESCALE_TABLE = os.getenv("TIMESCALE_TABLE", "unified_log_events")

    # Integrated tool APIs (used by the lookup caches)
    TACTICAL_API_URL = os.getenv("TACTICAL_API_URL", "http://localhost:8000")
    TACTICAL_API_KEY = os.getenv("TACTICAL_API_KEY")
    FLEET_API_URL = os.getenv("FLEET_API_URL", "http://localhost:8070")
    FLEET_API_TOKEN = os.getenv("FLEET_API_TOKEN")
    TOOL_API_TIMEOUT_SECONDS = float(os.getenv("TOOL_API_TIMEOUT_SECONDS", 10.0))

    # Caches
    DEVICE_CACHE_TTL = int(os.getenv("DEVICE_CACHE_TTL", 300))  # 5 minutes
    TOOL_CACHE_TTL = int(os.getenv("TOOL_CACHE_TTL", 3600))  # 1 hour

    # Stream correlation
    JOIN_WINDOW_SECONDS = float(os.getenv("JOIN_WINDOW_SECONDS", 5.0))

    # Per-tool event filters (source event types)
    FLEET_SKIP_EVENTS = _csv("FLEET_SKIP_EVENTS")
    FLEET_INVISIBLE_EVENTS = _csv("FLEET_INVISIBLE_EVENTS")
    TACTICAL_SKIP_EVENTS = _csv("TACTICAL_SKIP_EVENTS")
    TACTICAL_INVISIBLE_EVENTS = _csv(
        "TACTICAL_INVISIBLE_EVENTS",
        "agent.execute_script,agent.execute_command",
    )
    MESHCENTRAL_SKIP_EVENTS = _csv("MESHCENTRAL_SKIP_EVENTS", "servertimelinestats")
    MESHCENTRAL_INVISIBLE_EVENTS = _csv("MESHCENTRAL_INVISIBLE_EVENTS")


config = NormalizerConfig()
