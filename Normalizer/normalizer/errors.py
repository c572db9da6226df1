"""
Normalizer exceptions.

Only hard failures live here. Soft failures (malformed optional field,
unmapped event type, enrichment miss) are recovered where they happen and
never surface as exceptions.
"""


class NormalizerError(Exception):
    """Base class for all Normalizer errors."""
    pass


class DeserializationError(NormalizerError):
    """Captured-change record is structurally broken; the record should be redelivered."""
    pass


class UnsupportedMessageTypeError(NormalizerError):
    """No deserializer is registered for the message type."""
    pass


class MissingHandlerError(NormalizerError):
    """A destination declared for a message type has no sink handler."""
    pass


class SinkWriteError(NormalizerError):
    """A sink handler could not write its record."""

    def __init__(self, destination: str, message: str):
        super().__init__(f"{destination}: {message}")
        self.destination = destination


class SinkDispatchError(NormalizerError):
    """One or more destinations failed for a record; the record must stay unacknowledged."""

    def __init__(self, tool_event_id: str, failures: dict):
        names = ", ".join(sorted(failures))
        super().__init__(f"Sink dispatch failed for {tool_event_id}: {names}")
        self.tool_event_id = tool_event_id
        self.failures = failures


class DuplicateMappingError(NormalizerError):
    """The same (tool, source event type) pair was registered twice in a strict taxonomy."""
    pass
