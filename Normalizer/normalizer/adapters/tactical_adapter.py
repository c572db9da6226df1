"""
Tactical RMM Adapter - field extraction for audit log and agent history rows.
"""

import json
import logging
from typing import Any, Dict, Optional

from .base import (
    ExtractedFields,
    FieldExtractor,
    dotted_type,
    parse_iso8601,
    parse_json_or_text,
    parse_string_field,
)
from ..taxonomy import SourceEventTypes

logger = logging.getLogger("normalizer.adapters.tactical")


class TacticalAuditExtractor(FieldExtractor):
    """Rows of `logs_auditlog`."""

    def agent_id(self, after: Dict[str, Any]) -> Optional[str]:
        return parse_string_field(after, "agentid")

    def source_event_type(self, after: Dict[str, Any]) -> Optional[str]:
        return dotted_type(
            parse_string_field(after, "object_type"),
            parse_string_field(after, "action"),
        )

    def natural_key(self, after: Dict[str, Any]) -> Optional[str]:
        return parse_string_field(after, "id")

    def message(self, after: Dict[str, Any]) -> Optional[str]:
        return parse_string_field(after, "message")

    def event_timestamp(self, after: Dict[str, Any]) -> Optional[int]:
        return parse_iso8601(parse_string_field(after, "entry_time"))

    def extra_details(self, after: Dict[str, Any]) -> Optional[str]:
        return parse_string_field(after, "after_value")


class TacticalAgentHistoryExtractor(FieldExtractor):
    """
    Rows of `agents_agenthistory` (command and script runs).

    A row is written when a run starts and updated with its results when it
    finishes, so the phase is derived from whether any results are present.
    The agent id column is the agent's numeric primary key and is resolved
    to the agent UUID through the Tactical RMM cache.
    """

    def __init__(self, tactical_cache):
        self.tactical_cache = tactical_cache

    @staticmethod
    def _has_results(after: Dict[str, Any]) -> bool:
        return (parse_string_field(after, "results") is not None
                or parse_string_field(after, "script_results") is not None)

    def source_event_type(self, after: Dict[str, Any]) -> Optional[str]:
        run_type = parse_string_field(after, "type")
        if run_type is None:
            return None
        phase = "finished" if self._has_results(after) else "started"
        return f"{run_type}.{phase}"

    def natural_key(self, after: Dict[str, Any]) -> Optional[str]:
        return parse_string_field(after, "id")

    def event_timestamp(self, after: Dict[str, Any]) -> Optional[int]:
        return parse_iso8601(parse_string_field(after, "time"))

    def extra_details(self, after: Dict[str, Any]) -> Optional[str]:
        script_results = parse_string_field(after, "script_results")
        if script_results is not None:
            return json.dumps({"script_results": parse_json_or_text(script_results)})

        results = parse_string_field(after, "results")
        if results is not None:
            return json.dumps({"results": results})
        return "{}"

    async def resolve_agent_id(self, after: Dict[str, Any]) -> Optional[str]:
        raw = parse_string_field(after, "agent_id")
        if raw is None:
            logger.error("❌ Agent history row has no agent_id")
            return None

        try:
            primary_key = int(raw)
        except ValueError:
            logger.error(f"❌ Invalid agent_id format: {raw}")
            return None

        return await self.tactical_cache.get_agent_id_by_primary_key(primary_key)

    async def compose_message(self, after: Dict[str, Any]) -> Optional[str]:
        run_type = parse_string_field(after, "type")

        if run_type == SourceEventTypes.Tactical.CMD_RUN:
            command = parse_string_field(after, "command") or "unknown command"
            if parse_string_field(after, "results") is not None:
                return f"Command '{command}' completed"
            return f"Command '{command}' started"

        if run_type == SourceEventTypes.Tactical.SCRIPT_RUN:
            raw_script_id = parse_string_field(after, "script_id")
            if raw_script_id is None:
                return "Script execution event (script ID not found)"
            try:
                script_id = int(raw_script_id)
            except ValueError:
                logger.error(f"❌ Invalid script_id format: {raw_script_id}")
                return "Script execution event (invalid script ID format)"

            script_name = await self.tactical_cache.get_script_name(script_id)
            if script_name is None:
                script_name = f"Unknown Script (ID: {script_id})"

            if parse_string_field(after, "script_results") is not None:
                return f"Script '{script_name}' completed"
            return f"Script '{script_name}' started"

        return None

    async def extract(self, after: Any) -> ExtractedFields:
        after = self.prepare(after)
        return ExtractedFields(
            agent_id=await self.resolve_agent_id(after),
            source_event_type=self.source_event_type(after),
            natural_key=self.natural_key(after),
            message=await self.compose_message(after),
            event_timestamp=self.event_timestamp(after),
            extra_details=self.extra_details(after),
        )
