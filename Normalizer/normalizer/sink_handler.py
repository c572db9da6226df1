"""
Sink Handler base - filter, transform and write one normalized event.

Each destination in event_schema.Destination has exactly one handler.
`handle` returns False when the handler filtered the event out and raises
SinkWriteError when the write itself failed.
"""

import logging
from typing import Any, Dict, Optional

from .errors import SinkWriteError
from .event_schema import Destination, EnrichmentContext, NormalizedEvent

logger = logging.getLogger("normalizer.sink_handler")


class SinkHandler:
    destination: Destination

    def is_valid(self, event: NormalizedEvent, context: EnrichmentContext) -> bool:
        return True

    def transform(self, event: NormalizedEvent, context: EnrichmentContext) -> Dict[str, Any]:
        raise NotImplementedError

    async def write(self, record: Dict[str, Any], event: NormalizedEvent):
        raise NotImplementedError

    async def handle(self, event: NormalizedEvent, context: EnrichmentContext) -> bool:
        if not self.is_valid(event, context):
            logger.debug(f"[{self.destination.value}] Filtered out {event.tool_event_id}")
            return False

        record = self.transform(event, context)
        try:
            await self.write(record, event)
        except SinkWriteError:
            raise
        except Exception as e:
            raise SinkWriteError(self.destination.value, str(e)) from e
        return True


def message_key(device_id: Optional[str], user_id: Optional[str], tool_type: str) -> str:
    """Partition key for bus records: device, else user, else tool only."""
    if device_id:
        return f"{device_id}-{tool_type}"
    if user_id:
        return f"{user_id}-{tool_type}"
    return tool_type
