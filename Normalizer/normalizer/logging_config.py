"""
Normalizer Structured Logging - Per-record correlation and stage logging.
Follows Observer/Basal patterns.
"""

import logging
from typing import Optional


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure structured logging for the Normalizer."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    return logging.getLogger("normalizer")


class CorrelatedLogger:
    """
    Logger that prefixes every line with the record being processed.

    The prefix is the message type and, once known, the tool event id, so
    every stage of one record (deserialize, enrich, sink) can be grepped
    together across redeliveries.
    """

    def __init__(self, message_type: str, tool_event_id: Optional[str] = None, component: str = "dispatcher"):
        self.message_type = message_type
        self.tool_event_id = tool_event_id
        self._logger = logging.getLogger(f"normalizer.{component}")

    def bind(self, tool_event_id: str) -> "CorrelatedLogger":
        self.tool_event_id = tool_event_id
        return self

    def _prefix(self, stage: Optional[str] = None) -> str:
        parts = [f"[{self.message_type}]"]
        if self.tool_event_id:
            parts.append(f"[{self.tool_event_id[:8]}]")
        if stage:
            parts.append(f"[{stage}]")
        return " ".join(parts)

    def info(self, msg: str, stage: Optional[str] = None):
        self._logger.info(f"{self._prefix(stage)} {msg}")

    def warning(self, msg: str, stage: Optional[str] = None):
        self._logger.warning(f"{self._prefix(stage)} {msg}")

    def error(self, msg: str, stage: Optional[str] = None, exc_info: bool = False):
        self._logger.error(f"{self._prefix(stage)} {msg}", exc_info=exc_info)

    def critical(self, msg: str, stage: Optional[str] = None, exc_info: bool = False):
        self._logger.critical(f"{self._prefix(stage)} {msg}", exc_info=exc_info)

    def debug(self, msg: str, stage: Optional[str] = None):
        self._logger.debug(f"{self._prefix(stage)} {msg}")
