"""
Dispatcher tests.

Sink handlers are in-memory fakes; the deserializers are the real ones with
mocked tool caches.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest


class RecordingSink:
    """Sink handler fake that records what it was asked to write."""

    def __init__(self, destination, fail=False, delay=0.0, visible_only=False):
        self.destination = destination
        self.fail = fail
        self.delay = delay
        self.visible_only = visible_only
        self.handled = []
        self.started = asyncio.Event()

    async def handle(self, event, context):
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            from normalizer.errors import SinkWriteError
            raise SinkWriteError(self.destination.value, "write failed")
        if self.visible_only and not event.is_visible:
            return False
        self.handled.append((event, context))
        return True


def _dispatcher(log_store=None, message_bus=None, enricher=None, metrics=None):
    from normalizer.deserializer import build_deserializers
    from normalizer.dispatcher import MessageDispatcher
    from normalizer.event_schema import Destination
    from normalizer.taxonomy import build_default_registry

    tactical_cache = MagicMock()
    tactical_cache.get_agent_id_by_primary_key = AsyncMock(return_value="agent-uuid")
    tactical_cache.get_script_name = AsyncMock(return_value="Cleanup")
    fleet_cache = MagicMock()
    fleet_cache.get_agent_id = AsyncMock(return_value="host-uuid")
    fleet_cache.get_query = AsyncMock(return_value=None)

    handlers = {}
    if log_store is not None:
        handlers[Destination.LOG_STORE] = log_store
    if message_bus is not None:
        handlers[Destination.MESSAGE_BUS] = message_bus

    return MessageDispatcher(
        build_deserializers(build_default_registry(), tactical_cache, fleet_cache),
        handlers,
        enricher=enricher,
        metrics=metrics,
    )


def _sinks(**kwargs):
    from normalizer.event_schema import Destination
    log_kwargs = kwargs.get("log_store", {})
    bus_kwargs = kwargs.get("message_bus", {})
    return (RecordingSink(Destination.LOG_STORE, **log_kwargs),
            RecordingSink(Destination.MESSAGE_BUS, **bus_kwargs))


def _audit_record(**after):
    from normalizer.event_schema import CapturedChange
    values = {"id": 100, "agentid": "agent-1", "object_type": "user", "action": "login",
              "entry_time": "2024-01-15T10:30:00Z"}
    values.update(after)
    return CapturedChange(after=values, table="logs_auditlog")


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────

class TestValidate:

    def test_all_handlers_present(self):
        log_store, bus = _sinks()
        _dispatcher(log_store, bus).validate()

    def test_missing_handler_fails_fast(self):
        from normalizer.errors import MissingHandlerError
        log_store, _ = _sinks()
        with pytest.raises(MissingHandlerError):
            _dispatcher(log_store=log_store).validate()


# ─────────────────────────────────────────────────────────────────────────────
# Processing
# ─────────────────────────────────────────────────────────────────────────────

class TestProcess:

    @pytest.mark.asyncio
    async def test_fans_out_to_every_destination(self):
        from normalizer.event_schema import MessageType, UnifiedEventType
        log_store, bus = _sinks()
        event = await _dispatcher(log_store, bus).process(_audit_record(), MessageType.TACTICAL_RMM_AUDIT_EVENT)

        assert event.unified_event_type == UnifiedEventType.LOGIN
        assert len(log_store.handled) == 1
        assert len(bus.handled) == 1
        assert log_store.handled[0][0] is bus.handled[0][0]

    @pytest.mark.asyncio
    async def test_handlers_run_concurrently(self):
        from normalizer.event_schema import MessageType
        log_store, bus = _sinks(log_store={"delay": 0.05})
        dispatcher = _dispatcher(log_store, bus)

        task = asyncio.ensure_future(dispatcher.process(_audit_record(), MessageType.TACTICAL_RMM_AUDIT_EVENT))
        await asyncio.wait_for(bus.started.wait(), timeout=1)
        # The bus sink started while the log store write was still sleeping
        assert not log_store.handled
        await task
        assert log_store.handled

    @pytest.mark.asyncio
    async def test_sink_failure_raises_dispatch_error(self):
        from normalizer.errors import SinkDispatchError
        from normalizer.event_schema import MessageType
        log_store, bus = _sinks(message_bus={"fail": True})

        with pytest.raises(SinkDispatchError) as exc_info:
            await _dispatcher(log_store, bus).process(_audit_record(), MessageType.TACTICAL_RMM_AUDIT_EVENT)

        assert set(exc_info.value.failures) == {"message_bus"}
        # The other sink still completed
        assert len(log_store.handled) == 1

    @pytest.mark.asyncio
    async def test_sink_failure_on_last_attempt_is_swallowed(self):
        from normalizer.event_schema import MessageType
        from normalizer.metrics import NormalizerMetrics
        metrics = NormalizerMetrics()
        log_store, bus = _sinks(log_store={"fail": True})

        event = await _dispatcher(log_store, bus, metrics=metrics).process(
            _audit_record(), MessageType.TACTICAL_RMM_AUDIT_EVENT, last_attempt=True
        )
        assert event is not None
        assert metrics.sink_writes_failed == 1
        assert metrics.sink_writes_success == 1

    @pytest.mark.asyncio
    async def test_deletion_dispatches_nothing(self):
        from normalizer.event_schema import CapturedChange, MessageType
        log_store, bus = _sinks()
        result = await _dispatcher(log_store, bus).process(
            CapturedChange(after=None, table="logs_auditlog"), MessageType.TACTICAL_RMM_AUDIT_EVENT
        )
        assert result is None
        assert not log_store.handled and not bus.handled

    @pytest.mark.asyncio
    async def test_skipped_event_dispatches_nothing(self):
        import json
        from normalizer.event_schema import CapturedChange, MessageType
        log_store, bus = _sinks()
        record = CapturedChange(after=json.dumps({"_id": "1", "action": "servertimelinestats"}),
                                collection="events")
        assert await _dispatcher(log_store, bus).process(record, MessageType.MESHCENTRAL_EVENT) is None
        assert not log_store.handled and not bus.handled

    @pytest.mark.asyncio
    async def test_invisible_event_still_logged(self):
        from normalizer.event_schema import MessageType
        log_store, bus = _sinks(message_bus={"visible_only": True})
        record = _audit_record(object_type="agent", action="execute_script")

        event = await _dispatcher(log_store, bus).process(record, MessageType.TACTICAL_RMM_AUDIT_EVENT)
        assert not event.is_visible
        assert len(log_store.handled) == 1
        assert not bus.handled

    @pytest.mark.asyncio
    async def test_unsupported_message_type(self):
        from normalizer.errors import UnsupportedMessageTypeError
        from normalizer.event_schema import MessageType
        log_store, bus = _sinks()
        with pytest.raises(UnsupportedMessageTypeError):
            await _dispatcher(log_store, bus).process(_audit_record(), MessageType.FLEET_MDM_HOST_ACTIVITY)

    @pytest.mark.asyncio
    async def test_deserialization_error_propagates(self):
        from normalizer.errors import DeserializationError
        from normalizer.event_schema import CapturedChange, MessageType
        log_store, bus = _sinks()
        with pytest.raises(DeserializationError):
            await _dispatcher(log_store, bus).process(
                CapturedChange(after=42, table="logs_auditlog"), MessageType.TACTICAL_RMM_AUDIT_EVENT
            )

    @pytest.mark.asyncio
    async def test_deserialization_error_on_last_attempt_uses_best_effort(self):
        from normalizer.event_schema import CapturedChange, MessageType, UnifiedEventType
        log_store, bus = _sinks()
        dispatcher = _dispatcher(log_store, bus)
        deserializer = dispatcher.deserializers[MessageType.TACTICAL_RMM_AUDIT_EVENT]
        deserializer.extractor.extract = AsyncMock(side_effect=RuntimeError("extractor bug"))

        event = await dispatcher.process(_audit_record(), MessageType.TACTICAL_RMM_AUDIT_EVENT,
                                         last_attempt=True)
        assert event.unified_event_type == UnifiedEventType.UNKNOWN
        assert len(log_store.handled) == 1

    @pytest.mark.asyncio
    async def test_enrichment_context_passed_to_sinks(self):
        from normalizer.event_schema import EnrichmentContext, MessageType
        enricher = MagicMock()
        enricher.lookup = AsyncMock(return_value=EnrichmentContext(machine_id="m-1", hostname="ws01"))
        log_store, bus = _sinks()

        await _dispatcher(log_store, bus, enricher=enricher).process(
            _audit_record(), MessageType.TACTICAL_RMM_AUDIT_EVENT
        )
        enricher.lookup.assert_awaited_once_with("agent-1")
        assert log_store.handled[0][1].machine_id == "m-1"

    @pytest.mark.asyncio
    async def test_metrics_recorded(self):
        from normalizer.event_schema import MessageType
        from normalizer.metrics import NormalizerMetrics
        metrics = NormalizerMetrics()
        log_store, bus = _sinks()

        await _dispatcher(log_store, bus, metrics=metrics).process(
            _audit_record(), MessageType.TACTICAL_RMM_AUDIT_EVENT
        )
        summary = metrics.get_summary()
        assert summary["records_received"] == 1
        assert summary["events_normalized"] == 1
        assert summary["sink_writes_success"] == 2
        assert summary["by_message_type"] == {"TACTICAL_RMM_AUDIT_EVENT": 1}
