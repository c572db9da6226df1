"""
Unified Event Schema - Pure Data Structures

This module defines the captured-change envelope, the unified event
taxonomy enums and the canonical normalized event produced for every
integrated tool.
NO I/O. NO lookups. Just data shapes.
"""

import json
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class ToolType(str, Enum):
    """Integrated tools that emit CDC records. Values are the tool db names."""
    FLEET = "fleet"
    TACTICAL = "tactical-rmm"
    MESHCENTRAL = "meshcentral"

    @property
    def db_name(self) -> str:
        return self.value


class Severity(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Destination(str, Enum):
    """Downstream sinks a normalized event can be fanned out to."""
    LOG_STORE = "log_store"      # TimescaleDB append-only table
    MESSAGE_BUS = "message_bus"  # NATS JetStream summaries


class UnifiedEventType(str, Enum):
    """Closed taxonomy shared by every integrated tool."""

    # Authentication
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILED = "LOGIN_FAILED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"

    # Users
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_ROLE_CHANGED = "USER_ROLE_CHANGED"
    USER_LOGIN_TOKEN_ADDED = "USER_LOGIN_TOKEN_ADDED"
    USER_LOGIN_TOKEN_CHANGED = "USER_LOGIN_TOKEN_CHANGED"
    USER_UI_CUSTOM_EVENT = "USER_UI_CUSTOM_EVENT"
    USER_SESSION_ENDED = "USER_SESSION_ENDED"
    USER_GROUP_CREATED = "USER_GROUP_CREATED"
    USER_GROUP_CHANGED = "USER_GROUP_CHANGED"
    USER_GROUP_DELETED = "USER_GROUP_DELETED"

    # Groups (teams, meshes, clients, sites)
    GROUP_CREATED = "GROUP_CREATED"
    GROUP_UPDATED = "GROUP_UPDATED"
    GROUP_DELETED = "GROUP_DELETED"

    # Devices
    DEVICE_REGISTERED = "DEVICE_REGISTERED"
    DEVICE_UPDATED = "DEVICE_UPDATED"
    DEVICE_DELETED = "DEVICE_DELETED"
    DEVICE_DISCOVERY = "DEVICE_DISCOVERY"
    DEVICE_SESSIONS_UPDATED = "DEVICE_SESSIONS_UPDATED"
    DEVICE_SYSINFO_UPDATED = "DEVICE_SYSINFO_UPDATED"
    DEVICE_OOB_ACTIVATION_REQUESTED = "DEVICE_OOB_ACTIVATION_REQUESTED"
    DEVICE_DIAGNOSTIC = "DEVICE_DIAGNOSTIC"
    HOST_LOCKED = "HOST_LOCKED"
    HOST_UNLOCKED = "HOST_UNLOCKED"
    HOST_WIPED = "HOST_WIPED"

    # MDM
    MDM_ENROLLED = "MDM_ENROLLED"
    MDM_UNENROLLED = "MDM_UNENROLLED"
    MDM_ENABLED = "MDM_ENABLED"
    MDM_DISABLED = "MDM_DISABLED"
    DISK_ENCRYPTION_ENABLED = "DISK_ENCRYPTION_ENABLED"
    DISK_ENCRYPTION_DISABLED = "DISK_ENCRYPTION_DISABLED"
    DISK_ENCRYPTION_KEY_READ = "DISK_ENCRYPTION_KEY_READ"
    DISK_ENCRYPTION_KEY_ESCROWED = "DISK_ENCRYPTION_KEY_ESCROWED"
    PROFILE_CREATED = "PROFILE_CREATED"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    PROFILE_DELETED = "PROFILE_DELETED"
    PROFILE_APPLIED = "PROFILE_APPLIED"

    # Configuration
    CONFIGURATION_CREATED = "CONFIGURATION_CREATED"
    CONFIGURATION_UPDATED = "CONFIGURATION_UPDATED"
    CONFIGURATION_DELETED = "CONFIGURATION_DELETED"
    AUTOMATION_ENABLED = "AUTOMATION_ENABLED"
    AUTOMATION_UPDATED = "AUTOMATION_UPDATED"
    AUTOMATION_DISABLED = "AUTOMATION_DISABLED"
    INTEGRATION_ADDED = "INTEGRATION_ADDED"
    INTEGRATION_UPDATED = "INTEGRATION_UPDATED"
    INTEGRATION_DELETED = "INTEGRATION_DELETED"

    # Policies, packs, queries
    POLICY_APPLIED = "POLICY_APPLIED"
    COMPLIANCE_CHECK = "COMPLIANCE_CHECK"
    PACK_CREATED = "PACK_CREATED"
    PACK_UPDATED = "PACK_UPDATED"
    PACK_DELETED = "PACK_DELETED"
    PACK_APPLIED = "PACK_APPLIED"
    QUERY_CREATED = "QUERY_CREATED"
    QUERY_UPDATED = "QUERY_UPDATED"
    QUERY_DELETED = "QUERY_DELETED"
    QUERY_EXECUTED = "QUERY_EXECUTED"

    # Scripts & commands
    SCRIPT_CREATED = "SCRIPT_CREATED"
    SCRIPT_UPDATED = "SCRIPT_UPDATED"
    SCRIPT_EXECUTION_STARTED = "SCRIPT_EXECUTION_STARTED"
    SCRIPT_EXECUTED = "SCRIPT_EXECUTED"
    SCRIPT_FAILED = "SCRIPT_FAILED"
    COMMAND_RUN_STARTED = "COMMAND_RUN_STARTED"
    COMMAND_RUN_FINISHED = "COMMAND_RUN_FINISHED"
    BATCH_OPERATION_STARTED = "BATCH_OPERATION_STARTED"
    BATCH_OPERATION_COMPLETED = "BATCH_OPERATION_COMPLETED"
    BATCH_OPERATION_CANCELED = "BATCH_OPERATION_CANCELED"

    # Software
    SOFTWARE_CREATED = "SOFTWARE_CREATED"
    SOFTWARE_UPDATED = "SOFTWARE_UPDATED"
    SOFTWARE_DELETED = "SOFTWARE_DELETED"
    SOFTWARE_INSTALLED = "SOFTWARE_INSTALLED"
    SOFTWARE_UNINSTALLED = "SOFTWARE_UNINSTALLED"
    SOFTWARE_INSTALLATION_CANCELED = "SOFTWARE_INSTALLATION_CANCELED"

    # Monitoring
    MONITORING_CHECK_CREATED = "MONITORING_CHECK_CREATED"
    ALERT_TRIGGERED = "ALERT_TRIGGERED"
    ALERT_RESOLVED = "ALERT_RESOLVED"

    # Remote access
    REMOTE_SESSION_START = "REMOTE_SESSION_START"
    REMOTE_SESSION_EVENT = "REMOTE_SESSION_EVENT"
    REMOTE_SESSION_STATS_UPDATED = "REMOTE_SESSION_STATS_UPDATED"
    REMOTE_RECORDING_COMPLETED = "REMOTE_RECORDING_COMPLETED"
    SESSION_COUNT_UPDATED = "SESSION_COUNT_UPDATED"
    FILE_OPERATION = "FILE_OPERATION"
    FILE_BATCH_UPLOAD = "FILE_BATCH_UPLOAD"

    # System
    SYSTEM_START = "SYSTEM_START"
    SYSTEM_SHUTDOWN = "SYSTEM_SHUTDOWN"
    SYSTEM_STATUS = "SYSTEM_STATUS"
    SYSTEM_MONITORING = "SYSTEM_MONITORING"

    UNKNOWN = "UNKNOWN"

    @property
    def severity(self) -> Severity:
        return _EVENT_TYPE_META[self][0]

    @property
    def summary(self) -> str:
        return _EVENT_TYPE_META[self][1]


_E = UnifiedEventType
_S = Severity

# (severity, default human summary) per unified event type
_EVENT_TYPE_META: Dict[UnifiedEventType, Tuple[Severity, str]] = {
    _E.LOGIN: (_S.INFO, "User logged in"),
    _E.LOGOUT: (_S.INFO, "User logged out"),
    _E.LOGIN_FAILED: (_S.WARNING, "Login attempt failed"),
    _E.PASSWORD_CHANGED: (_S.INFO, "Password changed"),

    _E.USER_CREATED: (_S.INFO, "User created"),
    _E.USER_UPDATED: (_S.INFO, "User updated"),
    _E.USER_DELETED: (_S.WARNING, "User deleted"),
    _E.USER_ROLE_CHANGED: (_S.WARNING, "User role changed"),
    _E.USER_LOGIN_TOKEN_ADDED: (_S.INFO, "User login token added"),
    _E.USER_LOGIN_TOKEN_CHANGED: (_S.INFO, "User login token changed"),
    _E.USER_UI_CUSTOM_EVENT: (_S.DEBUG, "User interface custom event"),
    _E.USER_SESSION_ENDED: (_S.INFO, "User session ended"),
    _E.USER_GROUP_CREATED: (_S.INFO, "User group created"),
    _E.USER_GROUP_CHANGED: (_S.INFO, "User group changed"),
    _E.USER_GROUP_DELETED: (_S.WARNING, "User group deleted"),

    _E.GROUP_CREATED: (_S.INFO, "Group created"),
    _E.GROUP_UPDATED: (_S.INFO, "Group updated"),
    _E.GROUP_DELETED: (_S.WARNING, "Group deleted"),

    _E.DEVICE_REGISTERED: (_S.INFO, "Device registered"),
    _E.DEVICE_UPDATED: (_S.INFO, "Device updated"),
    _E.DEVICE_DELETED: (_S.WARNING, "Device deleted"),
    _E.DEVICE_DISCOVERY: (_S.INFO, "Device discovered"),
    _E.DEVICE_SESSIONS_UPDATED: (_S.DEBUG, "Device sessions updated"),
    _E.DEVICE_SYSINFO_UPDATED: (_S.DEBUG, "Device system information updated"),
    _E.DEVICE_OOB_ACTIVATION_REQUESTED: (_S.INFO, "Out-of-band activation requested"),
    _E.DEVICE_DIAGNOSTIC: (_S.INFO, "Device diagnostic collected"),
    _E.HOST_LOCKED: (_S.WARNING, "Host locked"),
    _E.HOST_UNLOCKED: (_S.INFO, "Host unlocked"),
    _E.HOST_WIPED: (_S.CRITICAL, "Host wiped"),

    _E.MDM_ENROLLED: (_S.INFO, "Device enrolled in MDM"),
    _E.MDM_UNENROLLED: (_S.WARNING, "Device unenrolled from MDM"),
    _E.MDM_ENABLED: (_S.INFO, "MDM enabled"),
    _E.MDM_DISABLED: (_S.WARNING, "MDM disabled"),
    _E.DISK_ENCRYPTION_ENABLED: (_S.INFO, "Disk encryption enabled"),
    _E.DISK_ENCRYPTION_DISABLED: (_S.WARNING, "Disk encryption disabled"),
    _E.DISK_ENCRYPTION_KEY_READ: (_S.WARNING, "Disk encryption key read"),
    _E.DISK_ENCRYPTION_KEY_ESCROWED: (_S.INFO, "Disk encryption key escrowed"),
    _E.PROFILE_CREATED: (_S.INFO, "Profile created"),
    _E.PROFILE_UPDATED: (_S.INFO, "Profile updated"),
    _E.PROFILE_DELETED: (_S.WARNING, "Profile deleted"),
    _E.PROFILE_APPLIED: (_S.INFO, "Profile applied"),

    _E.CONFIGURATION_CREATED: (_S.INFO, "Configuration created"),
    _E.CONFIGURATION_UPDATED: (_S.INFO, "Configuration updated"),
    _E.CONFIGURATION_DELETED: (_S.WARNING, "Configuration deleted"),
    _E.AUTOMATION_ENABLED: (_S.INFO, "Automation enabled"),
    _E.AUTOMATION_UPDATED: (_S.INFO, "Automation updated"),
    _E.AUTOMATION_DISABLED: (_S.WARNING, "Automation disabled"),
    _E.INTEGRATION_ADDED: (_S.INFO, "Integration added"),
    _E.INTEGRATION_UPDATED: (_S.INFO, "Integration updated"),
    _E.INTEGRATION_DELETED: (_S.WARNING, "Integration deleted"),

    _E.POLICY_APPLIED: (_S.INFO, "Policy applied"),
    _E.COMPLIANCE_CHECK: (_S.INFO, "Compliance check ran"),
    _E.PACK_CREATED: (_S.INFO, "Query pack created"),
    _E.PACK_UPDATED: (_S.INFO, "Query pack updated"),
    _E.PACK_DELETED: (_S.WARNING, "Query pack deleted"),
    _E.PACK_APPLIED: (_S.INFO, "Query pack applied"),
    _E.QUERY_CREATED: (_S.INFO, "Query created"),
    _E.QUERY_UPDATED: (_S.INFO, "Query updated"),
    _E.QUERY_DELETED: (_S.WARNING, "Query deleted"),
    _E.QUERY_EXECUTED: (_S.INFO, "Query executed"),

    _E.SCRIPT_CREATED: (_S.INFO, "Script created"),
    _E.SCRIPT_UPDATED: (_S.INFO, "Script updated"),
    _E.SCRIPT_EXECUTION_STARTED: (_S.INFO, "Script execution started"),
    _E.SCRIPT_EXECUTED: (_S.INFO, "Script executed"),
    _E.SCRIPT_FAILED: (_S.ERROR, "Script execution failed"),
    _E.COMMAND_RUN_STARTED: (_S.INFO, "Command started"),
    _E.COMMAND_RUN_FINISHED: (_S.INFO, "Command finished"),
    _E.BATCH_OPERATION_STARTED: (_S.INFO, "Batch operation started"),
    _E.BATCH_OPERATION_COMPLETED: (_S.INFO, "Batch operation completed"),
    _E.BATCH_OPERATION_CANCELED: (_S.WARNING, "Batch operation canceled"),

    _E.SOFTWARE_CREATED: (_S.INFO, "Software added"),
    _E.SOFTWARE_UPDATED: (_S.INFO, "Software updated"),
    _E.SOFTWARE_DELETED: (_S.WARNING, "Software deleted"),
    _E.SOFTWARE_INSTALLED: (_S.INFO, "Software installed"),
    _E.SOFTWARE_UNINSTALLED: (_S.INFO, "Software uninstalled"),
    _E.SOFTWARE_INSTALLATION_CANCELED: (_S.WARNING, "Software installation canceled"),

    _E.MONITORING_CHECK_CREATED: (_S.INFO, "Monitoring check configured"),
    _E.ALERT_TRIGGERED: (_S.ERROR, "Alert triggered"),
    _E.ALERT_RESOLVED: (_S.INFO, "Alert resolved"),

    _E.REMOTE_SESSION_START: (_S.INFO, "Remote session started"),
    _E.REMOTE_SESSION_EVENT: (_S.INFO, "Remote session activity"),
    _E.REMOTE_SESSION_STATS_UPDATED: (_S.DEBUG, "Remote session statistics updated"),
    _E.REMOTE_RECORDING_COMPLETED: (_S.INFO, "Remote session recording completed"),
    _E.SESSION_COUNT_UPDATED: (_S.DEBUG, "Session count updated"),
    _E.FILE_OPERATION: (_S.INFO, "File operation"),
    _E.FILE_BATCH_UPLOAD: (_S.INFO, "Batch file upload"),

    _E.SYSTEM_START: (_S.INFO, "System started"),
    _E.SYSTEM_SHUTDOWN: (_S.WARNING, "System shut down"),
    _E.SYSTEM_STATUS: (_S.INFO, "System settings changed"),
    _E.SYSTEM_MONITORING: (_S.DEBUG, "System monitoring sample"),

    _E.UNKNOWN: (_S.INFO, "Unknown event"),
}


class MessageType(str, Enum):
    """
    Transport tag carried in the message-type header.

    Selects the deserializer and the destination set for a record.
    """
    FLEET_MDM_EVENT = "FLEET_MDM_EVENT"
    FLEET_MDM_QUERY_RESULT_EVENT = "FLEET_MDM_QUERY_RESULT_EVENT"
    TACTICAL_RMM_AUDIT_EVENT = "TACTICAL_RMM_AUDIT_EVENT"
    TACTICAL_RMM_AGENT_HISTORY_EVENT = "TACTICAL_RMM_AGENT_HISTORY_EVENT"
    MESHCENTRAL_EVENT = "MESHCENTRAL_EVENT"

    # Correlator inputs; never dispatched directly
    FLEET_MDM_ACTIVITY = "FLEET_MDM_ACTIVITY"
    FLEET_MDM_HOST_ACTIVITY = "FLEET_MDM_HOST_ACTIVITY"

    @property
    def tool_type(self) -> ToolType:
        return _MESSAGE_TYPE_ROUTES[self][0]

    @property
    def destinations(self) -> List[Destination]:
        return list(_MESSAGE_TYPE_ROUTES[self][1])


_BOTH = (Destination.LOG_STORE, Destination.MESSAGE_BUS)

_MESSAGE_TYPE_ROUTES: Dict[MessageType, Tuple[ToolType, Tuple[Destination, ...]]] = {
    MessageType.FLEET_MDM_EVENT: (ToolType.FLEET, _BOTH),
    MessageType.FLEET_MDM_QUERY_RESULT_EVENT: (ToolType.FLEET, _BOTH),
    MessageType.TACTICAL_RMM_AUDIT_EVENT: (ToolType.TACTICAL, _BOTH),
    MessageType.TACTICAL_RMM_AGENT_HISTORY_EVENT: (ToolType.TACTICAL, _BOTH),
    MessageType.MESHCENTRAL_EVENT: (ToolType.MESHCENTRAL, _BOTH),
    MessageType.FLEET_MDM_ACTIVITY: (ToolType.FLEET, ()),
    MessageType.FLEET_MDM_HOST_ACTIVITY: (ToolType.FLEET, ()),
}


@dataclass(frozen=True)
class CapturedChange:
    """
    One captured change as emitted by the CDC connector.

    `after` is the row/document as it now exists (None for deletions). It is
    kept exactly as received: a JSON object for relational sources, and
    usually a JSON-encoded string for document sources.
    """

    after: Optional[Union[Dict[str, Any], str]]
    table: Optional[str] = None
    collection: Optional[str] = None
    timestamp_ms: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CapturedChange":
        """Parse the `{payload: {after, source, ts_ms}}` envelope (payload wrapper optional)."""
        if not isinstance(data, dict):
            raise TypeError(f"CDC envelope must be an object, got {type(data).__name__}")

        payload = data.get("payload", data)
        if not isinstance(payload, dict):
            raise TypeError("CDC payload must be an object")

        source = payload.get("source") or {}
        if not isinstance(source, dict):
            source = {}

        timestamp = payload.get("ts_ms", payload.get("timestamp"))
        return cls(
            after=payload.get("after"),
            table=source.get("table"),
            collection=source.get("collection"),
            timestamp_ms=int(timestamp) if timestamp is not None else None,
            raw=data,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "CapturedChange":
        return cls.from_dict(json.loads(data.decode("utf-8")))

    def to_envelope(self) -> Dict[str, Any]:
        """The `{payload: {after, source, ts_ms}}` envelope that `from_dict` reads back."""
        source = {}
        if self.table is not None:
            source["table"] = self.table
        if self.collection is not None:
            source["collection"] = self.collection
        return {"payload": {"after": self.after, "source": source, "ts_ms": self.timestamp_ms}}

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_envelope(), default=str).encode("utf-8")

    def with_after(self, after: Dict[str, Any]) -> "CapturedChange":
        """Copy of this record with a replaced `after` document."""
        return CapturedChange(
            after=after,
            table=self.table,
            collection=self.collection,
            timestamp_ms=self.timestamp_ms,
            raw=self.raw,
        )


@dataclass
class EnrichmentContext:
    """Device/organization context resolved from an agent id. Every field may be None."""

    machine_id: Optional[str] = None
    hostname: Optional[str] = None
    organization_id: Optional[str] = None
    organization_name: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NormalizedEvent:
    """Canonical event produced from one captured change."""

    tool_type: ToolType
    source_event_type: str
    unified_event_type: UnifiedEventType
    tool_event_id: str
    ingest_day: str
    event_timestamp: int
    details: Dict[str, Any] = field(default_factory=dict)
    agent_id: Optional[str] = None
    message: Optional[str] = None
    raw_payload: Optional[str] = None
    skip_processing: bool = False
    is_visible: bool = True

    @property
    def severity(self) -> Severity:
        return self.unified_event_type.severity

    @property
    def summary(self) -> str:
        """Extractor message when present, taxonomy summary otherwise."""
        if self.message and self.message.strip():
            return self.message
        return self.unified_event_type.summary

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "tool_type": self.tool_type.name,
            "source_event_type": self.source_event_type,
            "unified_event_type": self.unified_event_type.value,
            "severity": self.severity.value,
            "tool_event_id": self.tool_event_id,
            "agent_id": self.agent_id,
            "ingest_day": self.ingest_day,
            "event_timestamp": self.event_timestamp,
            "message": self.message,
            "details": self.details,
            "raw_payload": self.raw_payload,
            "skip_processing": self.skip_processing,
            "is_visible": self.is_visible,
        }
