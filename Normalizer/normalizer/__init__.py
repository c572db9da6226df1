"""
Normalizer - CDC Event Normalization & Fan-out

Philosophy: Normalize, don't interpret. Deliver, don't decide.

Consumes change-data-capture records from the integrated endpoint tools
(Fleet MDM, Tactical RMM, MeshCentral), maps them onto one unified event
taxonomy with idempotent identifiers, enriches them with device and
organization context, and fans them out to the log store and the event bus.
"""

__version__ = "1.0.0"
__entity__ = "Normalizer"

from .event_schema import (
    CapturedChange,
    Destination,
    EnrichmentContext,
    MessageType,
    NormalizedEvent,
    Severity,
    ToolType,
    UnifiedEventType,
)
from .taxonomy import TaxonomyRegistry, build_default_registry
from .deserializer import EventDeserializer
from .dispatcher import MessageDispatcher
from .correlator import ActivityJoiner

__all__ = [
    "CapturedChange",
    "Destination",
    "EnrichmentContext",
    "MessageType",
    "NormalizedEvent",
    "Severity",
    "ToolType",
    "UnifiedEventType",
    "TaxonomyRegistry",
    "build_default_registry",
    "EventDeserializer",
    "MessageDispatcher",
    "ActivityJoiner",
]
