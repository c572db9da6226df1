"""
Field Extractor base - shared parsing helpers and the extractor contract.

An extractor knows where one tool keeps each normalized field inside the
`after` document of a captured change. Extraction never raises for a
missing or malformed field: the field is simply None.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("normalizer.adapters")

_FRACTION = re.compile(r"\.(\d+)")


def parse_string_field(node: Optional[Dict[str, Any]], name: str) -> Optional[str]:
    """
    Read a field as text.

    None, missing and blank values give None. Scalars are stringified,
    nested objects and arrays are JSON-encoded.
    """
    if not isinstance(node, dict):
        return None

    value = node.get(name)
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"

    text = str(value)
    return text if text.strip() else None


def parse_iso8601(text: Optional[str]) -> Optional[int]:
    """
    Parse an ISO-8601 timestamp into epoch milliseconds.

    Accepts a trailing Z, explicit offsets, a space instead of T and any
    number of fractional digits. Naive timestamps are taken as UTC.
    """
    if not text or not isinstance(text, str) or not text.strip():
        return None

    value = text.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"

    # fromisoformat only takes 3 or 6 fractional digits on older interpreters
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.debug(f"Unparseable timestamp: {text}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def parse_json_or_text(text: Optional[str]) -> Any:
    """Decoded JSON value, or the text itself if it is not JSON."""
    if text is None:
        return None
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return text


def parse_json_object(value: Any) -> Optional[Dict[str, Any]]:
    """Coerce a document that may arrive as a JSON string into a dict."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except ValueError as e:
            logger.error(f"❌ Failed to parse JSON document: {e}")
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


@dataclass
class ExtractedFields:
    """Everything an extractor can pull from one `after` document."""

    agent_id: Optional[str] = None
    source_event_type: Optional[str] = None
    natural_key: Optional[str] = None
    message: Optional[str] = None
    event_timestamp: Optional[int] = None
    error: Optional[str] = None
    result: Optional[str] = None
    extra_details: Optional[str] = None


class FieldExtractor:
    """
    Per-source field extraction.

    Subclasses override the accessors that apply to their source; the
    defaults return None. Extractors that need cached lookups override
    `extract` and await them there.
    """

    def agent_id(self, after: Dict[str, Any]) -> Optional[str]:
        return None

    def source_event_type(self, after: Dict[str, Any]) -> Optional[str]:
        return None

    def natural_key(self, after: Dict[str, Any]) -> Optional[str]:
        return None

    def message(self, after: Dict[str, Any]) -> Optional[str]:
        return None

    def event_timestamp(self, after: Dict[str, Any]) -> Optional[int]:
        return None

    def error(self, after: Dict[str, Any]) -> Optional[str]:
        return None

    def result(self, after: Dict[str, Any]) -> Optional[str]:
        return None

    def extra_details(self, after: Dict[str, Any]) -> Optional[str]:
        return None

    def prepare(self, after: Any) -> Optional[Dict[str, Any]]:
        """Turn the raw `after` value into the document the accessors read."""
        if isinstance(after, dict):
            return after
        return parse_json_object(after)

    async def extract(self, after: Any) -> ExtractedFields:
        doc = self.prepare(after)
        return ExtractedFields(
            agent_id=self.agent_id(doc),
            source_event_type=self.source_event_type(doc),
            natural_key=self.natural_key(doc),
            message=self.message(doc),
            event_timestamp=self.event_timestamp(doc),
            error=self.error(doc),
            result=self.result(doc),
            extra_details=self.extra_details(doc),
        )


def dotted_type(first: Optional[str], second: Optional[str]) -> Optional[str]:
    """Join as "first.second" when both exist, otherwise whichever one does."""
    if first and second:
        return f"{first}.{second}"
    return first or second
