"""
Deserializer tests.

Identity, determinism, details assembly and the per-tool skip and
visibility lists.
"""

import hashlib
import json
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest


def _registry():
    from normalizer.taxonomy import build_default_registry
    return build_default_registry()


def _tactical_cache(agent_id="agent-uuid"):
    cache = MagicMock()
    cache.get_agent_id_by_primary_key = AsyncMock(return_value=agent_id)
    cache.get_script_name = AsyncMock(return_value="Cleanup")
    return cache


def _fleet_cache():
    cache = MagicMock()
    cache.get_agent_id = AsyncMock(return_value="host-uuid")
    cache.get_query = AsyncMock(return_value={"name": "Q", "query": "SELECT 1;"})
    return cache


def _deserializers():
    from normalizer.deserializer import build_deserializers
    return build_deserializers(_registry(), _tactical_cache(), _fleet_cache())


# ─────────────────────────────────────────────────────────────────────────────
# Identity
# ─────────────────────────────────────────────────────────────────────────────

class TestToolEventId:

    def test_name_uuid_is_version_3_md5(self):
        from normalizer.deserializer import name_uuid
        value = uuid.UUID(name_uuid("fleet_activities_id_42"))
        assert value.version == 3
        assert value.variant == uuid.RFC_4122

        digest = bytearray(hashlib.md5(b"fleet_activities_id_42").digest())
        # Only the version and variant bits differ from the raw digest
        assert value.bytes[:6] == bytes(digest[:6])
        assert value.bytes[9:] == bytes(digest[9:])

    def test_natural_key_composite(self):
        from normalizer.deserializer import generate_tool_event_id, name_uuid
        from normalizer.event_schema import ToolType
        assert generate_tool_event_id(ToolType.TACTICAL, "logs_auditlog", "100", {}) == \
            name_uuid("tactical_logs_auditlog_id_100")

    def test_hash_fallback_is_deterministic(self):
        from normalizer.deserializer import content_hash, generate_tool_event_id, name_uuid
        from normalizer.event_schema import ToolType
        after = {"b": 2, "a": 1}
        first = generate_tool_event_id(ToolType.FLEET, "activities", None, after)
        second = generate_tool_event_id(ToolType.FLEET, "activities", "  ", {"a": 1, "b": 2})
        assert first == second
        assert first == name_uuid(f"fleet_activities_hash_{content_hash('fleet', 'activities', after)}")
        assert len(content_hash("fleet", "activities", after)) == 16

    def test_hash_fallback_differs_by_content(self):
        from normalizer.deserializer import generate_tool_event_id
        from normalizer.event_schema import ToolType
        assert generate_tool_event_id(ToolType.FLEET, "t", None, {"a": 1}) != \
            generate_tool_event_id(ToolType.FLEET, "t", None, {"a": 2})

    def test_table_name_resolution(self):
        from normalizer.deserializer import resolve_table_name
        from normalizer.event_schema import CapturedChange
        assert resolve_table_name(CapturedChange(after={}, table=" activities ")) == "activities"
        assert resolve_table_name(CapturedChange(after={}, table="  ", collection="events")) == "events"
        assert resolve_table_name(CapturedChange(after={})) == "events"


# ─────────────────────────────────────────────────────────────────────────────
# Details
# ─────────────────────────────────────────────────────────────────────────────

class TestBuildDetails:

    def test_empty_inputs(self):
        from normalizer.deserializer import build_details
        assert build_details(None, "", "{}") == {}

    def test_error_result_and_additional(self):
        from normalizer.deserializer import build_details
        details = build_details('{"code": 1}', '[1, 2]', '{"k": "v"}')
        assert details == {"error": {"code": 1}, "result": [1, 2], "additional_info": {"k": "v"}}

    def test_malformed_error_kept_as_text(self):
        from normalizer.deserializer import build_details
        assert build_details("boom", None, None) == {"error": "boom"}

    def test_non_object_additional_dropped(self):
        from normalizer.deserializer import build_details
        assert build_details(None, None, "[1, 2]") == {}
        assert build_details(None, None, "not json") == {}


# ─────────────────────────────────────────────────────────────────────────────
# EventDeserializer
# ─────────────────────────────────────────────────────────────────────────────

class TestEventDeserializer:

    @pytest.mark.asyncio
    async def test_fleet_login_scenario(self):
        from normalizer.deserializer import name_uuid
        from normalizer.event_schema import CapturedChange, MessageType, ToolType, UnifiedEventType
        record = CapturedChange(
            after={"id": 42, "activity_type": "user_logged_in",
                   "created_at": "2024-01-15T10:30:00Z", "agentId": "17"},
            table="activities",
        )
        event = await _deserializers()[MessageType.FLEET_MDM_EVENT].deserialize(record)

        assert event.tool_type == ToolType.FLEET
        assert event.unified_event_type == UnifiedEventType.LOGIN
        assert event.source_event_type == "user_logged_in"
        assert event.tool_event_id == name_uuid("fleet_activities_id_42")
        assert event.ingest_day == "2024-01-15"
        assert event.event_timestamp == 1705314600000
        assert event.agent_id == "17"
        assert event.summary == "User logged in"
        assert event.details == {}
        assert event.is_visible
        assert not event.skip_processing
        assert json.loads(event.raw_payload)["id"] == 42

    @pytest.mark.asyncio
    async def test_redelivery_yields_same_event(self):
        from normalizer.event_schema import CapturedChange, MessageType
        record = CapturedChange(
            after={"id": 100, "agentid": "a", "object_type": "user", "action": "login",
                   "entry_time": "2024-01-15T10:30:00Z"},
            table="logs_auditlog",
        )
        deserializer = _deserializers()[MessageType.TACTICAL_RMM_AUDIT_EVENT]
        first = await deserializer.deserialize(record)
        second = await deserializer.deserialize(record)
        assert first == second

    @pytest.mark.asyncio
    async def test_deletion_returns_none(self):
        from normalizer.event_schema import CapturedChange, MessageType
        record = CapturedChange(after=None, table="activities")
        assert await _deserializers()[MessageType.FLEET_MDM_EVENT].deserialize(record) is None

    @pytest.mark.asyncio
    async def test_structurally_broken_after_raises(self):
        from normalizer.errors import DeserializationError
        from normalizer.event_schema import CapturedChange, MessageType
        record = CapturedChange(after=[1, 2, 3], table="activities")
        with pytest.raises(DeserializationError):
            await _deserializers()[MessageType.FLEET_MDM_EVENT].deserialize(record)

    @pytest.mark.asyncio
    async def test_unmapped_type_is_unknown_not_error(self):
        from normalizer.event_schema import CapturedChange, MessageType, UnifiedEventType
        record = CapturedChange(after={"id": 1, "activity_type": "something_new"}, table="activities",
                                timestamp_ms=1705314600000)
        event = await _deserializers()[MessageType.FLEET_MDM_EVENT].deserialize(record)
        assert event.unified_event_type == UnifiedEventType.UNKNOWN
        assert event.summary == "Unknown event"

    @pytest.mark.asyncio
    async def test_missing_event_type_becomes_unknown_source(self):
        from normalizer.event_schema import CapturedChange, MessageType, UnifiedEventType
        record = CapturedChange(after={"id": 1}, table="activities")
        event = await _deserializers()[MessageType.FLEET_MDM_EVENT].deserialize(record)
        assert event.source_event_type == "unknown"
        assert event.unified_event_type == UnifiedEventType.UNKNOWN

    @pytest.mark.asyncio
    async def test_timestamp_falls_back_to_capture_time(self):
        from normalizer.event_schema import CapturedChange, MessageType
        record = CapturedChange(after={"id": 1, "activity_type": "user_logged_in"},
                                table="activities", timestamp_ms=1705314600000)
        event = await _deserializers()[MessageType.FLEET_MDM_EVENT].deserialize(record)
        assert event.event_timestamp == 1705314600000
        assert event.ingest_day == "2024-01-15"

    @pytest.mark.asyncio
    async def test_no_timestamp_at_all_uses_epoch(self):
        from normalizer.event_schema import CapturedChange, MessageType
        record = CapturedChange(after={"id": 1}, table="activities")
        event = await _deserializers()[MessageType.FLEET_MDM_EVENT].deserialize(record)
        assert event.event_timestamp == 0
        assert event.ingest_day == "1970-01-01"

    @pytest.mark.asyncio
    async def test_command_run_phases(self):
        from normalizer.event_schema import CapturedChange, MessageType, UnifiedEventType
        deserializer = _deserializers()[MessageType.TACTICAL_RMM_AGENT_HISTORY_EVENT]
        base = {"id": 7, "agent_id": 3, "type": "cmd_run", "command": "ipconfig",
                "time": "2024-01-15T10:30:00Z"}

        started = await deserializer.deserialize(CapturedChange(after=dict(base), table="agents_agenthistory"))
        finished = await deserializer.deserialize(
            CapturedChange(after=dict(base, results="Windows IP Configuration"), table="agents_agenthistory")
        )

        assert started.unified_event_type == UnifiedEventType.COMMAND_RUN_STARTED
        assert finished.unified_event_type == UnifiedEventType.COMMAND_RUN_FINISHED
        assert started.agent_id == "agent-uuid"
        assert started.tool_event_id == finished.tool_event_id
        assert finished.details == {"additional_info": {"results": "Windows IP Configuration"}}
        assert finished.summary == "Command 'ipconfig' completed"

    @pytest.mark.asyncio
    async def test_tactical_script_execution_is_invisible(self):
        from normalizer.event_schema import CapturedChange, MessageType
        record = CapturedChange(
            after={"id": 5, "object_type": "agent", "action": "execute_script",
                   "entry_time": "2024-01-15T10:30:00Z"},
            table="logs_auditlog",
        )
        event = await _deserializers()[MessageType.TACTICAL_RMM_AUDIT_EVENT].deserialize(record)
        assert not event.is_visible
        assert not event.skip_processing

    @pytest.mark.asyncio
    async def test_meshcentral_timeline_stats_skipped(self):
        from normalizer.event_schema import CapturedChange, MessageType, UnifiedEventType
        record = CapturedChange(
            after=json.dumps({"_id": "x1", "action": "servertimelinestats", "time": 1705314600000}),
            collection="events",
        )
        event = await _deserializers()[MessageType.MESHCENTRAL_EVENT].deserialize(record)
        assert event.source_event_type == "servertimelinestats"
        assert event.unified_event_type == UnifiedEventType.SYSTEM_MONITORING
        assert event.skip_processing

    @pytest.mark.asyncio
    async def test_custom_skip_and_invisible_lists(self):
        from normalizer.adapters import FleetActivityExtractor
        from normalizer.deserializer import EventDeserializer
        from normalizer.event_schema import CapturedChange, MessageType
        deserializer = EventDeserializer(
            MessageType.FLEET_MDM_EVENT, FleetActivityExtractor(), _registry(),
            skip_events=["user_logged_in"], invisible_events=["created_policy"],
        )
        skipped = await deserializer.deserialize(
            CapturedChange(after={"id": 1, "activity_type": "user_logged_in"}, table="activities"))
        hidden = await deserializer.deserialize(
            CapturedChange(after={"id": 2, "activity_type": "created_policy"}, table="activities"))
        assert skipped.skip_processing
        assert not hidden.is_visible

    def test_best_effort_event(self):
        from normalizer.deserializer import name_uuid
        from normalizer.event_schema import CapturedChange, MessageType, UnifiedEventType
        record = CapturedChange(after={"id": 9, "junk": object()}, table="activities",
                                timestamp_ms=1705314600000)
        event = _deserializers()[MessageType.FLEET_MDM_EVENT].deserialize_best_effort(record)
        assert event.unified_event_type == UnifiedEventType.UNKNOWN
        assert event.source_event_type == "unknown"
        assert event.tool_event_id == name_uuid("fleet_activities_id_9")
        assert event.details == {}

    def test_best_effort_deletion(self):
        from normalizer.event_schema import CapturedChange, MessageType
        record = CapturedChange(after=None, table="activities")
        assert _deserializers()[MessageType.FLEET_MDM_EVENT].deserialize_best_effort(record) is None
