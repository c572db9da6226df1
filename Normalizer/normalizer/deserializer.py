"""
Deserialization Layer - one captured change in, at most one normalized event out.

Combines a field extractor, the taxonomy registry and the per-tool skip and
invisible lists. The tool event id is a name-based UUID of the source
table's natural key, so redelivered records always get the same id.
"""

import hashlib
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from .adapters import (
    FleetActivityExtractor,
    FleetQueryResultExtractor,
    MeshCentralExtractor,
    TacticalAgentHistoryExtractor,
    TacticalAuditExtractor,
)
from .adapters.base import FieldExtractor, is_blank
from .config import config
from .errors import DeserializationError
from .event_schema import CapturedChange, MessageType, NormalizedEvent, ToolType, UnifiedEventType
from .taxonomy import TaxonomyRegistry

logger = logging.getLogger("normalizer.deserializer")

DEFAULT_TABLE_NAME = "events"
UNKNOWN_SOURCE_EVENT_TYPE = "unknown"


def resolve_table_name(record: CapturedChange) -> str:
    """Trimmed source table, else collection, else "events"."""
    for name in (record.table, record.collection):
        if name and name.strip():
            return name.strip()
    return DEFAULT_TABLE_NAME


def canonical_json(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def content_hash(tool_name: str, table_name: str, after: Any) -> str:
    """First 16 hex chars of sha256 over tool, table and the document."""
    digest = hashlib.sha256()
    for part in (tool_name, table_name, canonical_json(after)):
        digest.update(part.encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()[:16]


def generate_tool_event_id(tool_type: ToolType, table_name: str,
                           natural_key: Optional[str], after: Any) -> str:
    """
    Deterministic UUID (v3, MD5 name-based) for one source row.

    Composite key is "<tool>_<table>_id_<key>", or
    "<tool>_<table>_hash_<content hash>" when the row has no natural key.
    """
    tool_name = tool_type.name.lower()
    if natural_key is not None and natural_key.strip():
        composite = f"{tool_name}_{table_name}_id_{natural_key}"
    else:
        logger.warning(f"⚠️ Event missing primary key from {tool_name}.{table_name} - "
                       f"using content hash fallback")
        composite = f"{tool_name}_{table_name}_hash_{content_hash(tool_name, table_name, after)}"

    return name_uuid(composite)


def name_uuid(name: str) -> str:
    """MD5 name-based UUID of the raw name bytes (no namespace prefix)."""
    digest = bytearray(hashlib.md5(name.encode("utf-8")).digest())
    digest[6] = (digest[6] & 0x0F) | 0x30  # version 3
    digest[8] = (digest[8] & 0x3F) | 0x80  # IETF variant
    return str(uuid.UUID(bytes=bytes(digest)))


def format_ingest_day(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def _parse_detail(name: str, text: Optional[str]) -> Any:
    """Decoded JSON for an error/result detail, or the raw text if malformed."""
    try:
        return json.loads(text)
    except ValueError:
        logger.warning(f"⚠️ Failed to parse {name} JSON, storing as-is: {text}")
        return text


def build_details(error: Optional[str], result: Optional[str],
                  extra_details: Optional[str]) -> Dict[str, Any]:
    """
    Assemble the details object from the optional extractor outputs.

    Blank and "{}" values are left out. Additional details must decode to a
    JSON object; anything else is dropped with a warning.
    """
    details: Dict[str, Any] = {}

    if not is_blank(error) and error.strip() != "{}":
        details["error"] = _parse_detail("error", error)

    if not is_blank(result) and result.strip() != "{}":
        details["result"] = _parse_detail("result", result)

    if not is_blank(extra_details) and extra_details.strip() != "{}":
        try:
            additional = json.loads(extra_details)
        except ValueError:
            logger.warning(f"⚠️ Failed to parse additional details JSON: {extra_details}")
            additional = None
        if isinstance(additional, dict):
            details["additional_info"] = additional
        elif additional is not None:
            logger.warning(f"⚠️ Additional details are not a JSON object, dropping: {extra_details}")

    return details


class EventDeserializer:
    """Turns captured changes of one message type into normalized events."""

    def __init__(self, message_type: MessageType, extractor: FieldExtractor,
                 registry: TaxonomyRegistry, skip_events: Iterable[str] = (),
                 invisible_events: Iterable[str] = ()):
        self.message_type = message_type
        self.tool_type = message_type.tool_type
        self.extractor = extractor
        self.registry = registry
        self.skip_events = frozenset(skip_events)
        self.invisible_events = frozenset(invisible_events)

    def _effective_timestamp(self, extracted_ms: Optional[int], record: CapturedChange) -> int:
        if extracted_ms is not None:
            return extracted_ms
        if record.timestamp_ms is not None:
            return record.timestamp_ms
        logger.warning(f"⚠️ [{self.message_type.value}] No event or capture timestamp, using epoch 0")
        return 0

    @staticmethod
    def _check_after(after: Any):
        if not isinstance(after, (dict, str)):
            raise DeserializationError(
                f"'after' must be a JSON object or document string, got {type(after).__name__}"
            )

    async def deserialize(self, record: CapturedChange) -> Optional[NormalizedEvent]:
        """
        Normalize one captured change.

        Returns None for deletions (no `after` document). Raises
        DeserializationError when the record is structurally broken.
        """
        after = record.after
        if after is None:
            return None
        self._check_after(after)

        fields = await self.extractor.extract(after)

        timestamp = self._effective_timestamp(fields.event_timestamp, record)
        source_event_type = fields.source_event_type or UNKNOWN_SOURCE_EVENT_TYPE
        table_name = resolve_table_name(record)

        return NormalizedEvent(
            tool_type=self.tool_type,
            source_event_type=source_event_type,
            unified_event_type=self.registry.map_to_unified_type(self.tool_type, source_event_type),
            tool_event_id=generate_tool_event_id(self.tool_type, table_name, fields.natural_key, after),
            ingest_day=format_ingest_day(timestamp),
            event_timestamp=timestamp,
            details=build_details(fields.error, fields.result, fields.extra_details),
            agent_id=fields.agent_id,
            message=fields.message,
            raw_payload=canonical_json(after),
            skip_processing=source_event_type in self.skip_events,
            is_visible=source_event_type not in self.invisible_events,
        )

    def deserialize_best_effort(self, record: CapturedChange) -> Optional[NormalizedEvent]:
        """
        Minimal UNKNOWN event built without extractors or lookups.

        Used on the final delivery attempt after normal deserialization has
        failed, so the record still leaves a trace in the sinks.
        """
        after = record.after
        if after is None:
            return None

        table_name = resolve_table_name(record)
        natural_key = None
        if isinstance(after, dict):
            value = after.get("id")
            natural_key = str(value) if value is not None else None

        timestamp = record.timestamp_ms if record.timestamp_ms is not None else 0
        return NormalizedEvent(
            tool_type=self.tool_type,
            source_event_type=UNKNOWN_SOURCE_EVENT_TYPE,
            unified_event_type=UnifiedEventType.UNKNOWN,
            tool_event_id=generate_tool_event_id(self.tool_type, table_name, natural_key, after),
            ingest_day=format_ingest_day(timestamp),
            event_timestamp=timestamp,
            details={},
            raw_payload=canonical_json(after),
        )


def build_deserializers(registry: TaxonomyRegistry, tactical_cache, fleet_cache,
                        cfg=config) -> Dict[MessageType, EventDeserializer]:
    """One deserializer per dispatchable message type."""
    return {
        MessageType.FLEET_MDM_EVENT: EventDeserializer(
            MessageType.FLEET_MDM_EVENT,
            FleetActivityExtractor(),
            registry,
            skip_events=cfg.FLEET_SKIP_EVENTS,
            invisible_events=cfg.FLEET_INVISIBLE_EVENTS,
        ),
        MessageType.FLEET_MDM_QUERY_RESULT_EVENT: EventDeserializer(
            MessageType.FLEET_MDM_QUERY_RESULT_EVENT,
            FleetQueryResultExtractor(fleet_cache),
            registry,
        ),
        MessageType.TACTICAL_RMM_AUDIT_EVENT: EventDeserializer(
            MessageType.TACTICAL_RMM_AUDIT_EVENT,
            TacticalAuditExtractor(),
            registry,
            skip_events=cfg.TACTICAL_SKIP_EVENTS,
            invisible_events=cfg.TACTICAL_INVISIBLE_EVENTS,
        ),
        MessageType.TACTICAL_RMM_AGENT_HISTORY_EVENT: EventDeserializer(
            MessageType.TACTICAL_RMM_AGENT_HISTORY_EVENT,
            TacticalAgentHistoryExtractor(tactical_cache),
            registry,
        ),
        MessageType.MESHCENTRAL_EVENT: EventDeserializer(
            MessageType.MESHCENTRAL_EVENT,
            MeshCentralExtractor(),
            registry,
            skip_events=cfg.MESHCENTRAL_SKIP_EVENTS,
            invisible_events=cfg.MESHCENTRAL_INVISIBLE_EVENTS,
        ),
    }
