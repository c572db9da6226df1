"""
Source adapters: one field extractor per integrated-tool message type.
"""

from .base import ExtractedFields, FieldExtractor, parse_iso8601, parse_string_field
from .fleet_adapter import FleetActivityExtractor, FleetQueryResultExtractor
from .meshcentral_adapter import MeshCentralExtractor
from .tactical_adapter import TacticalAgentHistoryExtractor, TacticalAuditExtractor

__all__ = [
    "ExtractedFields",
    "FieldExtractor",
    "parse_iso8601",
    "parse_string_field",
    "FleetActivityExtractor",
    "FleetQueryResultExtractor",
    "MeshCentralExtractor",
    "TacticalAgentHistoryExtractor",
    "TacticalAuditExtractor",
]
