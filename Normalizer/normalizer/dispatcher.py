"""
Message Dispatcher - route one captured change through normalization and fan-out.

Pipeline per record:
    deserialize -> (skip?) -> enrich -> all destination handlers concurrently

A record is only safe to acknowledge when `process` returns. Any handler
failure raises SinkDispatchError so the broker redelivers the record,
except on the final delivery attempt, where failures are logged at
critical and swallowed so the record can be acknowledged.
"""

import asyncio
import logging
import time
from typing import Dict, Optional

from .errors import MissingHandlerError, SinkDispatchError, UnsupportedMessageTypeError
from .event_schema import (
    CapturedChange,
    Destination,
    EnrichmentContext,
    MessageType,
    NormalizedEvent,
    UnifiedEventType,
)
from .logging_config import CorrelatedLogger
from .sink_handler import SinkHandler

logger = logging.getLogger("normalizer.dispatcher")


class MessageDispatcher:
    def __init__(self, deserializers: Dict, handlers: Dict[Destination, SinkHandler],
                 enricher=None, metrics=None):
        self.deserializers = deserializers
        self.handlers = handlers
        self.enricher = enricher
        self.metrics = metrics

    def validate(self):
        """Fail fast if any message type routes to a destination without a handler."""
        for message_type in self.deserializers:
            for destination in message_type.destinations:
                if destination not in self.handlers:
                    raise MissingHandlerError(
                        f"No handler for destination {destination.value} "
                        f"(required by {message_type.value})"
                    )
        logger.info(f"✅ Dispatcher validated: {len(self.deserializers)} message types, "
                    f"{len(self.handlers)} handlers")

    def _handler_for(self, destination: Destination, message_type: MessageType) -> SinkHandler:
        handler = self.handlers.get(destination)
        if handler is None:
            raise MissingHandlerError(
                f"No handler for destination {destination.value} (required by {message_type.value})"
            )
        return handler

    async def _enrich(self, event: NormalizedEvent) -> EnrichmentContext:
        if self.enricher is None:
            return EnrichmentContext()
        return await self.enricher.lookup(event.agent_id)

    async def process(self, record: CapturedChange, message_type: MessageType,
                      last_attempt: bool = False) -> Optional[NormalizedEvent]:
        """
        Normalize and fan out one record.

        Returns the dispatched event, or None when the record was a deletion
        or its event type is on the skip list.
        """
        log = CorrelatedLogger(message_type.value)
        started = time.perf_counter()

        deserializer = self.deserializers.get(message_type)
        if deserializer is None:
            raise UnsupportedMessageTypeError(f"No deserializer for message type {message_type.value}")

        if self.metrics:
            self.metrics.record_received(message_type.value)

        try:
            event = await deserializer.deserialize(record)
        except Exception as e:
            if not last_attempt:
                raise
            log.critical(f"Deserialization failed on final attempt, using best-effort event: {e}",
                         stage="DESERIALIZE", exc_info=True)
            event = deserializer.deserialize_best_effort(record)

        if event is None:
            log.debug("Record has no 'after' document (deletion), nothing to dispatch", stage="DESERIALIZE")
            if self.metrics:
                self.metrics.record_deleted()
            return None

        log.bind(event.tool_event_id)
        if self.metrics:
            self.metrics.record_normalized(event.unified_event_type == UnifiedEventType.UNKNOWN)

        if event.skip_processing:
            log.debug(f"Skipping event type {event.source_event_type}", stage="DISPATCH")
            if self.metrics:
                self.metrics.record_skipped()
            return None

        context = await self._enrich(event)

        destinations = message_type.destinations
        handlers = [self._handler_for(d, message_type) for d in destinations]
        results = await asyncio.gather(
            *(handler.handle(event, context) for handler in handlers),
            return_exceptions=True,
        )

        failures = {}
        for destination, result in zip(destinations, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failures[destination.value] = result
                log.error(f"Sink {destination.value} failed: {result}", stage="SINK")
                if self.metrics:
                    self.metrics.record_sink_write(success=False)
                    self.metrics.record_error("sink_write", str(result), event.tool_event_id)
            elif self.metrics:
                self.metrics.record_sink_write(success=True, filtered=result is False)

        if failures:
            if not last_attempt:
                raise SinkDispatchError(event.tool_event_id, failures)
            log.critical(f"Final delivery attempt, giving up on sinks: {', '.join(sorted(failures))}",
                         stage="SINK")

        if self.metrics:
            self.metrics.record_latency((time.perf_counter() - started) * 1000)

        log.debug(f"{event.unified_event_type.value} dispatched to "
                  f"{', '.join(d.value for d in destinations)}", stage="DISPATCH")
        return event
