"""
MeshCentral Adapter - field extraction for MeshCentral event documents.

MeshCentral stores events in a document collection; the CDC connector
delivers `after` as a JSON-encoded string, which is decoded once per record.
"""

import logging
from typing import Any, Dict, Optional

from .base import (
    FieldExtractor,
    dotted_type,
    parse_iso8601,
    parse_json_object,
    parse_string_field,
)

logger = logging.getLogger("normalizer.adapters.meshcentral")


class MeshCentralExtractor(FieldExtractor):
    """Documents of the MeshCentral `events` collection."""

    def prepare(self, after: Any) -> Optional[Dict[str, Any]]:
        doc = parse_json_object(after)
        if doc is None:
            logger.error("❌ MeshCentral event document is not a JSON object")
        return doc

    def agent_id(self, after: Optional[Dict[str, Any]]) -> Optional[str]:
        return parse_string_field(after, "nodeid")

    def source_event_type(self, after: Optional[Dict[str, Any]]) -> Optional[str]:
        return dotted_type(
            parse_string_field(after, "etype"),
            parse_string_field(after, "action"),
        )

    def natural_key(self, after: Optional[Dict[str, Any]]) -> Optional[str]:
        if not after:
            return None

        doc_id = after.get("_id")
        if isinstance(doc_id, dict):
            return parse_string_field(doc_id, "$oid")
        return parse_string_field(after, "_id")

    def message(self, after: Optional[Dict[str, Any]]) -> Optional[str]:
        return parse_string_field(after, "msg")

    def event_timestamp(self, after: Optional[Dict[str, Any]]) -> Optional[int]:
        if not after:
            return None

        value = after.get("time")
        # Extended JSON dates: {"$date": <epoch ms>} or {"$date": "<iso>"}
        if isinstance(value, dict):
            value = value.get("$date")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
        if isinstance(value, str):
            return parse_iso8601(value)
        return None

    def extra_details(self, after: Optional[Dict[str, Any]]) -> Optional[str]:
        return "{}"
