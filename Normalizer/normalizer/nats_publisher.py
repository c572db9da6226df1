"""
NATS Publisher for the Normalizer.

Publishes normalized event summaries to NATS JetStream for downstream
consumers. Each message carries Nats-Msg-Id = "<toolEventId>:<eventType>",
so redelivered records are dropped by the stream's duplicate window while
the started and finished phases of one agent history row both get through.
"""

import json
import logging
from typing import Any, Dict, Optional

import nats
from nats.js import JetStreamContext
from nats.js.api import RetentionPolicy, StorageType, StreamConfig
from nats.js.errors import NotFoundError

from .config import config
from .errors import SinkWriteError
from .event_schema import Destination, EnrichmentContext, NormalizedEvent
from .sink_handler import SinkHandler, message_key

logger = logging.getLogger("normalizer.nats_publisher")

MESSAGE_KEY_HEADER = "message-key"


class NATSPublisher(SinkHandler):
    """
    Message bus sink.

    Philosophy:
    - Only visible events are published
    - Publish failures raise so the source record is redelivered
    - Summaries only; full details live in the log store
    """

    destination = Destination.MESSAGE_BUS

    def __init__(
        self,
        nats_url: str = "nats://localhost:4222",
        stream_name: str = "INTEGRATED_TOOL_EVENTS",
        subject_prefix: str = "integrated-tool-events",
        duplicate_window_seconds: int = 120
    ):
        self.nats_url = nats_url
        self.stream_name = stream_name
        self.subject_prefix = subject_prefix
        self.duplicate_window_seconds = duplicate_window_seconds

        self.nc: Optional[nats.NATS] = None
        self.js: Optional[JetStreamContext] = None
        self._connected = False
        self._owns_connection = False

    async def connect(self, nc=None):
        """Initialize NATS connection (or reuse `nc`) and create the stream if needed."""
        try:
            if nc is None:
                self.nc = await nats.connect(self.nats_url, name="normalizer-publisher")
                self._owns_connection = True
            else:
                self.nc = nc
            self.js = self.nc.jetstream()

            try:
                await self.js.stream_info(self.stream_name)
                logger.info(f"✅ NATS stream '{self.stream_name}' exists")
            except NotFoundError:
                stream_config = StreamConfig(
                    name=self.stream_name,
                    subjects=[f"{self.subject_prefix}.>"],
                    retention=RetentionPolicy.LIMITS,
                    max_age=86400 * 7,  # 7 days
                    max_bytes=1024 * 1024 * 1024,  # 1GB
                    storage=StorageType.FILE,
                    duplicate_window=self.duplicate_window_seconds
                )
                await self.js.add_stream(stream_config)
                logger.info(f"✅ Created NATS stream '{self.stream_name}'")

            self._connected = True
            logger.info(f"✅ NATS publisher connected: {self.nats_url}")

        except Exception as e:
            logger.error(f"❌ Failed to connect to NATS: {e}")
            self._connected = False
            raise

    def is_valid(self, event: NormalizedEvent, context: EnrichmentContext) -> bool:
        return event.is_visible

    def transform(self, event: NormalizedEvent, context: EnrichmentContext) -> Dict[str, Any]:
        return {
            "toolEventId": event.tool_event_id,
            "userId": context.user_id,
            "deviceId": context.machine_id,
            "ingestDay": event.ingest_day,
            "toolType": event.tool_type.name,
            "eventType": event.unified_event_type.value,
            "severity": event.severity.value,
            "summary": event.summary,
            "eventTimestamp": event.event_timestamp,
        }

    def subject_for(self, event: NormalizedEvent) -> str:
        return f"{self.subject_prefix}.{event.tool_type.name.lower()}"

    async def write(self, record: Dict[str, Any], event: NormalizedEvent):
        if not self._connected or not self.js:
            raise SinkWriteError(self.destination.value, "NATS not connected")

        subject = self.subject_for(event)
        payload = json.dumps(record, default=str).encode("utf-8")
        headers = {
            "Nats-Msg-Id": f"{record['toolEventId']}:{record['eventType']}",
            MESSAGE_KEY_HEADER: message_key(record["deviceId"], record["userId"], record["toolType"]),
        }

        try:
            ack = await self.js.publish(subject, payload, headers=headers)
        except Exception as e:
            logger.error(f"❌ Failed to publish to NATS: {e}")
            raise SinkWriteError(self.destination.value, str(e)) from e

        if getattr(ack, "duplicate", False):
            logger.debug(f"Duplicate publish ignored by stream: {record['toolEventId']}")
        logger.debug(f"📤 Published to NATS: {subject} ({len(payload)} bytes)")

    async def disconnect(self):
        """Gracefully disconnect from NATS."""
        if self.nc and self._owns_connection:
            try:
                await self.nc.drain()
                logger.info("✅ NATS publisher disconnected")
            except Exception as e:
                logger.error(f"❌ Error disconnecting from NATS: {e}")

        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected


def create_publisher() -> NATSPublisher:
    return NATSPublisher(
        nats_url=config.NATS_URL,
        stream_name=config.NATS_OUTBOUND_STREAM,
        subject_prefix=config.NATS_OUTBOUND_SUBJECT_PREFIX,
    )
