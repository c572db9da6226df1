"""
Fleet MDM Adapter - field extraction for Fleet activities and query results.

Activities arrive already joined with their host activity (see
correlator.ActivityJoiner), so the agent id is read from `agentId`.
Query results need two cached lookups (host uuid, query definition),
which is why that extractor overrides `extract`.
"""

import json
import logging
from typing import Any, Dict, Optional

from .activity_messages import activity_message
from .base import (
    ExtractedFields,
    FieldExtractor,
    parse_iso8601,
    parse_json_or_text,
    parse_string_field,
)
from ..taxonomy import SourceEventTypes

logger = logging.getLogger("normalizer.adapters.fleet")


class FleetActivityExtractor(FieldExtractor):
    """Rows of the Fleet `activities` table."""

    def agent_id(self, after: Dict[str, Any]) -> Optional[str]:
        return parse_string_field(after, "agentId")

    def source_event_type(self, after: Dict[str, Any]) -> Optional[str]:
        return parse_string_field(after, "activity_type")

    def natural_key(self, after: Dict[str, Any]) -> Optional[str]:
        return parse_string_field(after, "id")

    def message(self, after: Dict[str, Any]) -> Optional[str]:
        activity_type = self.source_event_type(after)
        phrase = activity_message(activity_type)
        if phrase is not None:
            return phrase

        if activity_type:
            logger.warning(f"⚠️ No message catalogued for Fleet activity type: {activity_type}")
        return parse_string_field(after, "details")

    def event_timestamp(self, after: Dict[str, Any]) -> Optional[int]:
        return parse_iso8601(parse_string_field(after, "created_at"))

    def extra_details(self, after: Dict[str, Any]) -> Optional[str]:
        return parse_string_field(after, "details") or "{}"


class FleetQueryResultExtractor(FieldExtractor):
    """Rows of the Fleet `query_results` table (scheduled query output per host)."""

    def __init__(self, fleet_cache):
        self.fleet_cache = fleet_cache

    def source_event_type(self, after: Dict[str, Any]) -> Optional[str]:
        return SourceEventTypes.Fleet.EXECUTE_SCHEDULED_QUERY

    def natural_key(self, after: Dict[str, Any]) -> Optional[str]:
        return parse_string_field(after, "id")

    def event_timestamp(self, after: Dict[str, Any]) -> Optional[int]:
        return parse_iso8601(parse_string_field(after, "last_fetched"))

    async def resolve_agent_id(self, after: Dict[str, Any]) -> Optional[str]:
        host_id = parse_string_field(after, "host_id")
        if host_id is None:
            return None

        try:
            host_uuid = await self.fleet_cache.get_agent_id(int(host_id))
        except ValueError:
            logger.error(f"❌ Invalid host_id format: {host_id}")
            return host_id

        return host_uuid or host_id

    async def resolve_query(self, after: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        query_id = parse_string_field(after, "query_id")
        if query_id is None:
            return None

        try:
            query = await self.fleet_cache.get_query(int(query_id))
        except ValueError:
            logger.error(f"❌ Invalid query_id format: {query_id}")
            return None

        if query is None:
            logger.debug(f"Query not found in cache for query_id: {query_id}")
        return query

    @staticmethod
    def compose_message(after: Dict[str, Any], query: Optional[Dict[str, Any]]) -> str:
        name = (query or {}).get("name")
        error = parse_string_field(after, "error")
        if error is not None:
            if name:
                return f"Query '{name}' execution failed: {error}"
            return f"Query execution failed: {error}"

        if parse_string_field(after, "data") is not None:
            if name:
                return f"Query '{name}' executed successfully"
            return "Query executed successfully on host"

        if name:
            return f"Query '{name}' result received"
        return "Query result received"

    @staticmethod
    def _output_json(text: Optional[str], query: Optional[Dict[str, Any]]) -> Optional[str]:
        if text is None:
            return None

        body = {"output": parse_json_or_text(text)}
        sql = (query or {}).get("query")
        if sql:
            body["query"] = sql
        return json.dumps(body)

    async def extract(self, after: Any) -> ExtractedFields:
        after = self.prepare(after)
        query = await self.resolve_query(after)
        data = parse_string_field(after, "data")
        if data is not None and parse_json_or_text(data) is data:
            logger.warning("⚠️ Query result data is not valid JSON, storing as plain text")

        return ExtractedFields(
            agent_id=await self.resolve_agent_id(after),
            source_event_type=self.source_event_type(after),
            natural_key=self.natural_key(after),
            message=self.compose_message(after, query),
            event_timestamp=self.event_timestamp(after),
            error=self._output_json(parse_string_field(after, "error"), query),
            result=self._output_json(data, query),
            extra_details=None,
        )
