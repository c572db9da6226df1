"""
Normalizer NATS Subscriber - Consumes captured changes from the CDC_EVENTS stream.

Subject pattern: cdc.{tool}.{table}
Message type comes from the `message-type` header, falling back to the
subject. Each message is acked only after every sink accepted it; failures
are nak'ed for redelivery until the final delivery attempt.

Fleet activities and host activities are handed to the activity joiner
still unacknowledged. The joined record is published back onto the stream
as a FLEET_MDM_EVENT and only then are its source messages acked.
"""

import logging
from typing import Optional

import nats
from nats.aio.client import Client as NATSClient
from nats.errors import NotJSMessageError
from nats.js.api import AckPolicy, ConsumerConfig, DeliverPolicy

from .config import config
from .errors import MissingHandlerError, UnsupportedMessageTypeError
from .event_schema import CapturedChange, MessageType

logger = logging.getLogger("normalizer.nats")

SUBJECT_MESSAGE_TYPES = {
    "cdc.fleet.activities": MessageType.FLEET_MDM_ACTIVITY,
    "cdc.fleet.host_activities": MessageType.FLEET_MDM_HOST_ACTIVITY,
    "cdc.fleet.query_results": MessageType.FLEET_MDM_QUERY_RESULT_EVENT,
    config.NATS_JOINED_ACTIVITY_SUBJECT: MessageType.FLEET_MDM_EVENT,
    "cdc.tactical.auditlog": MessageType.TACTICAL_RMM_AUDIT_EVENT,
    "cdc.tactical.agenthistory": MessageType.TACTICAL_RMM_AGENT_HISTORY_EVENT,
    "cdc.meshcentral.events": MessageType.MESHCENTRAL_EVENT,
}


def resolve_message_type(subject: str, headers: Optional[dict],
                         header_name: str = config.MESSAGE_TYPE_HEADER) -> Optional[MessageType]:
    """Message type from the header if it names a known type, else from the subject."""
    tag = (headers or {}).get(header_name)
    if tag:
        try:
            return MessageType(tag.strip())
        except ValueError:
            logger.warning(f"⚠️ Unknown message-type header '{tag}' on {subject}")
    return SUBJECT_MESSAGE_TYPES.get(subject)


class JetStreamDelivery:
    """Deferred acknowledgment for a message held by the activity joiner."""

    def __init__(self, subscriber: "CDCSubscriber", msg, last_attempt: bool):
        self.subscriber = subscriber
        self.msg = msg
        self.last_attempt = last_attempt

    async def ack(self):
        try:
            await self.msg.ack()
        except Exception as e:
            logger.error(f"❌ Failed to ack message on {self.msg.subject}: {e}")

    async def reject(self, error: Exception):
        if self.last_attempt:
            logger.critical(f"🚨 Joined activity from {self.msg.subject} failed on final delivery attempt, "
                            f"acknowledging: {error}")
            await self.ack()
            return
        await self.subscriber._nak(self.msg)


class CDCSubscriber:
    """
    JetStream push consumer for the CDC_EVENTS stream.

    Subscribes to cdc.> with a durable, explicit-ack consumer.
    """

    def __init__(self, dispatcher, joiner=None, metrics=None,
                 max_deliver: int = config.NATS_MAX_DELIVER,
                 ack_wait_seconds: int = config.NATS_ACK_WAIT_SECONDS):
        self.dispatcher = dispatcher
        self.joiner = joiner
        self.metrics = metrics
        self.max_deliver = max_deliver
        self.ack_wait_seconds = ack_wait_seconds

        self._nc: Optional[NATSClient] = None
        self._js = None
        self._sub = None
        self._connected = False

    async def connect(self) -> bool:
        """Connect to NATS."""
        try:
            self._nc = await nats.connect(
                config.NATS_URL,
                name=config.NATS_CONSUMER_NAME,
                max_reconnect_attempts=5,
                reconnect_time_wait=2,
            )
            self._js = self._nc.jetstream()
            self._connected = True
            logger.info(f"✅ NATS connected: {config.NATS_URL}")
            return True
        except Exception as e:
            logger.error(f"❌ NATS connection failed: {e}")
            self._connected = False
            return False

    @property
    def connection(self) -> Optional[NATSClient]:
        return self._nc

    def consumer_config(self) -> ConsumerConfig:
        return ConsumerConfig(
            durable_name=config.NATS_DURABLE_NAME,
            ack_policy=AckPolicy.EXPLICIT,
            deliver_policy=DeliverPolicy.ALL,
            max_deliver=self.max_deliver,
            ack_wait=self.ack_wait_seconds,
        )

    async def subscribe(self) -> bool:
        """Durable JetStream subscription on the CDC subjects."""
        if not self._connected or not self._js:
            logger.warning("⚠️ Cannot subscribe: NATS not connected")
            return False

        try:
            self._sub = await self._js.subscribe(
                config.NATS_CDC_SUBJECT,
                stream=config.NATS_CDC_STREAM,
                durable=config.NATS_DURABLE_NAME,
                cb=self.handle_message,
                manual_ack=True,
                config=self.consumer_config(),
            )
            logger.info(
                f"✅ JetStream subscribe: {config.NATS_CDC_SUBJECT} "
                f"(stream={config.NATS_CDC_STREAM}, durable={config.NATS_DURABLE_NAME}, "
                f"max_deliver={self.max_deliver})"
            )
            return True
        except Exception as e:
            logger.error(f"❌ JetStream subscribe failed: {e}")
            return False

    def _is_last_attempt(self, msg) -> bool:
        try:
            return msg.metadata.num_delivered >= self.max_deliver
        except NotJSMessageError:
            # Core NATS messages are never redelivered
            return True

    async def _nak(self, msg):
        if self.metrics:
            self.metrics.record_redelivery()
        try:
            await msg.nak()
        except Exception as e:
            logger.error(f"❌ Failed to nak message on {msg.subject}: {e}")

    async def handle_message(self, msg):
        """JetStream message handler with acknowledgment."""
        message_type = resolve_message_type(msg.subject, msg.headers)
        if message_type is None:
            logger.error(f"❌ No message type for subject {msg.subject}, dropping record")
            await msg.ack()
            return

        last_attempt = self._is_last_attempt(msg)
        if last_attempt and self.metrics:
            self.metrics.record_last_attempt()

        try:
            record = CapturedChange.from_bytes(msg.data)
        except (ValueError, TypeError) as e:
            if self.metrics:
                self.metrics.record_error("malformed_envelope", str(e))
            if last_attempt:
                logger.critical(f"🚨 Malformed CDC envelope on {msg.subject} on final delivery attempt, "
                                f"acknowledging: {e}")
                await msg.ack()
                return
            logger.error(f"❌ Malformed CDC envelope on {msg.subject}, requesting redelivery: {e}")
            await self._nak(msg)
            return

        logger.debug(f"📨 CDC record received: {message_type.value} via {msg.subject}")

        if message_type == MessageType.FLEET_MDM_ACTIVITY and self.joiner:
            # The joiner acks or rejects once the joined record is published
            await self.joiner.on_parent(record, JetStreamDelivery(self, msg, last_attempt))
            return
        if message_type == MessageType.FLEET_MDM_HOST_ACTIVITY:
            if self.joiner:
                await self.joiner.on_satellite(record, JetStreamDelivery(self, msg, last_attempt))
            else:
                await msg.ack()
            return
        if message_type == MessageType.FLEET_MDM_ACTIVITY:
            message_type = MessageType.FLEET_MDM_EVENT

        try:
            await self.dispatcher.process(record, message_type, last_attempt=last_attempt)
        except (UnsupportedMessageTypeError, MissingHandlerError) as e:
            logger.error(f"❌ Unroutable {message_type.value} record dropped: {e}")
            await msg.ack()
            return
        except Exception as e:
            if last_attempt:
                logger.critical(f"🚨 {message_type.value} record failed on final delivery attempt, "
                                f"acknowledging: {e}", exc_info=True)
                await msg.ack()
                return
            logger.error(f"❌ Error processing {message_type.value} record, requesting redelivery: {e}")
            await self._nak(msg)
            return

        await msg.ack()

    async def publish_joined(self, record: CapturedChange, message_type: MessageType):
        """
        Publish a joined activity back onto the CDC stream.

        It is consumed again as `message_type` through handle_message, so the
        sinks see it with the normal redelivery policy. Raises on failure.
        """
        if not self._connected or not self._js:
            raise ConnectionError("NATS not connected")

        headers = {config.MESSAGE_TYPE_HEADER: message_type.value}
        if isinstance(record.after, dict) and record.after.get("id") is not None:
            headers["Nats-Msg-Id"] = f"{record.table}:{record.after['id']}:{message_type.value}"

        await self._js.publish(
            config.NATS_JOINED_ACTIVITY_SUBJECT,
            record.to_bytes(),
            stream=config.NATS_CDC_STREAM,
            headers=headers,
        )
        logger.debug(f"📤 Joined activity published to {config.NATS_JOINED_ACTIVITY_SUBJECT}")

    async def unsubscribe(self):
        """Stop receiving new messages; the connection stays open for publishing and acks."""
        if self._sub:
            try:
                await self._sub.unsubscribe()
            except Exception as e:
                logger.warning(f"⚠️ Unsubscribe failed: {e}")
            self._sub = None

    async def close(self):
        """Drain and close the connection."""
        if self._nc:
            try:
                await self._nc.drain()
            except Exception as e:
                logger.warning(f"⚠️ NATS drain failed: {e}")
        self._connected = False
        logger.info("NATS subscriber disconnected")

    async def disconnect(self):
        """Clean shutdown."""
        await self.unsubscribe()
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self._connected
