"""
Taxonomy Registry - (tool, source event type) -> unified event type.

The registry is built once at startup and injected wherever events are
normalized. It is read-only after construction, so concurrent lookups need
no locking.
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

from .errors import DuplicateMappingError
from .event_schema import ToolType, UnifiedEventType

logger = logging.getLogger("normalizer.taxonomy")

Mapping = Tuple[ToolType, str, UnifiedEventType]


class TaxonomyRegistry:
    """Immutable lookup table keyed by "<tool db name>:<source event type>"."""

    def __init__(self, mappings: Optional[Dict[str, UnifiedEventType]] = None):
        self._mappings: Dict[str, UnifiedEventType] = dict(mappings or {})

    @staticmethod
    def key(tool_type: ToolType, source_event_type: str) -> str:
        return f"{tool_type.db_name}:{source_event_type}"

    @classmethod
    def from_mappings(cls, mappings: Iterable[Mapping], strict: bool = False) -> "TaxonomyRegistry":
        """
        Build a registry from (tool, source type, unified type) triples.

        Later triples overwrite earlier ones for the same key. With
        strict=True a repeated key raises DuplicateMappingError instead.
        """
        table: Dict[str, UnifiedEventType] = {}
        for tool_type, source_event_type, unified_type in mappings:
            key = cls.key(tool_type, source_event_type)
            if key in table:
                if strict:
                    raise DuplicateMappingError(
                        f"Duplicate taxonomy mapping for {key}: "
                        f"{table[key].value} vs {unified_type.value}"
                    )
                logger.warning(f"⚠️ Overwriting taxonomy mapping for {key}: "
                               f"{table[key].value} -> {unified_type.value}")
            table[key] = unified_type
        return cls(table)

    def map_to_unified_type(self, tool_type: ToolType, source_event_type: Optional[str]) -> UnifiedEventType:
        """Unified type for a source event, UNKNOWN when unmapped."""
        if source_event_type is None:
            return UnifiedEventType.UNKNOWN

        key = self.key(tool_type, source_event_type)
        unified = self._mappings.get(key)
        if unified is None:
            logger.debug(f"No taxonomy mapping for {key}, using UNKNOWN")
            return UnifiedEventType.UNKNOWN
        return unified

    def source_types_for(self, tool_type: ToolType):
        """All registered source event types for one tool."""
        prefix = f"{tool_type.db_name}:"
        return sorted(k[len(prefix):] for k in self._mappings if k.startswith(prefix))

    def summary(self) -> Dict[str, int]:
        """Mapping count per tool."""
        counts: Dict[str, int] = {}
        for key in self._mappings:
            tool = key.split(":", 1)[0]
            counts[tool] = counts.get(tool, 0) + 1
        return counts

    def __contains__(self, key: str) -> bool:
        return key in self._mappings

    def __len__(self) -> int:
        return len(self._mappings)


class SourceEventTypes:
    """Source event type strings that code outside the table refers to."""

    class MeshCentral:
        SERVER_TIMELINE_STATS = "servertimelinestats"

    class Tactical:
        AGENT_EXECUTE_SCRIPT = "agent.execute_script"
        AGENT_EXECUTE_COMMAND = "agent.execute_command"
        CMD_RUN = "cmd_run"
        SCRIPT_RUN = "script_run"

    class Fleet:
        USER_LOGGED_IN = "user_logged_in"
        EXECUTE_SCHEDULED_QUERY = "execute_scheduled_query"


E = UnifiedEventType

MESHCENTRAL_MAPPINGS = [
    # Server
    ("server.started", E.SYSTEM_START),
    ("server.stopped", E.SYSTEM_SHUTDOWN),

    # Users
    ("user.login", E.LOGIN),
    ("user.logout", E.LOGOUT),
    ("user.passchange", E.PASSWORD_CHANGED),
    ("user.accountcreate", E.USER_CREATED),
    ("user.accountremove", E.USER_DELETED),
    ("user.accountchange", E.USER_UPDATED),
    ("user.loginTokenChanged", E.USER_LOGIN_TOKEN_CHANGED),
    ("user.loginTokenAdded", E.USER_LOGIN_TOKEN_ADDED),
    ("user.uicustomevent", E.USER_UI_CUSTOM_EVENT),
    ("user.endsession", E.USER_SESSION_ENDED),

    # Device groups
    ("mesh.deletemesh", E.GROUP_DELETED),
    ("mesh.meshchange", E.GROUP_UPDATED),
    ("mesh.createmesh", E.GROUP_CREATED),

    # Devices
    ("node.addnode", E.DEVICE_REGISTERED),
    ("node.changenode", E.DEVICE_UPDATED),
    ("node.removenode", E.DEVICE_DELETED),
    ("node.devicesessions", E.DEVICE_SESSIONS_UPDATED),
    ("node.sysinfohash", E.DEVICE_SYSINFO_UPDATED),
    ("node.amtactivate", E.DEVICE_OOB_ACTIVATION_REQUESTED),
    ("node.diagnostic", E.DEVICE_DIAGNOSTIC),
    ("node.agentlog", E.FILE_OPERATION),
    ("node.batchupload", E.FILE_BATCH_UPLOAD),
    ("node.sessioncompression", E.REMOTE_SESSION_STATS_UPDATED),

    # Relay
    ("relay.relaylog", E.REMOTE_SESSION_EVENT),
    ("relay.recording", E.REMOTE_RECORDING_COMPLETED),

    # User groups
    ("ugrp.usergroupchange", E.USER_GROUP_CHANGED),
    ("ugrp.createusergroup", E.USER_GROUP_CREATED),
    ("ugrp.deleteusergroup", E.USER_GROUP_DELETED),

    # Events without an etype
    ("scanamtdevice", E.DEVICE_DISCOVERY),
    (SourceEventTypes.MeshCentral.SERVER_TIMELINE_STATS, E.SYSTEM_MONITORING),
    ("wssessioncount", E.SESSION_COUNT_UPDATED),
]

TACTICAL_MAPPINGS = [
    # Authentication
    ("user.login", E.LOGIN),
    ("user.failed_login", E.LOGIN_FAILED),

    # Agents
    ("agent.add", E.DEVICE_REGISTERED),
    ("agent.modify", E.DEVICE_UPDATED),
    ("agent.delete", E.DEVICE_DELETED),
    ("agent.agent_install", E.DEVICE_REGISTERED),
    ("agent.remote_session", E.REMOTE_SESSION_START),

    # Users & roles
    ("user.add", E.USER_CREATED),
    ("user.modify", E.USER_UPDATED),
    ("user.delete", E.USER_DELETED),
    ("role.add", E.USER_ROLE_CHANGED),
    ("role.modify", E.USER_ROLE_CHANGED),

    # Scripts & commands ("scxript" is what Tactical RMM actually writes)
    ("scxript.add", E.SCRIPT_CREATED),
    ("script.modify", E.SCRIPT_UPDATED),
    (SourceEventTypes.Tactical.AGENT_EXECUTE_SCRIPT, E.SCRIPT_EXECUTED),
    (SourceEventTypes.Tactical.AGENT_EXECUTE_COMMAND, E.COMMAND_RUN_STARTED),
    ("cmd_run.started", E.COMMAND_RUN_STARTED),
    ("cmd_run.finished", E.COMMAND_RUN_FINISHED),
    ("script_run.started", E.SCRIPT_EXECUTION_STARTED),
    ("script_run.finished", E.SCRIPT_EXECUTED),
    ("task_run.started", E.SCRIPT_EXECUTION_STARTED),
    ("task_run.finished", E.SCRIPT_EXECUTED),
    ("automatedtask.add", E.SCRIPT_CREATED),
    ("automatedtask.modify", E.SCRIPT_UPDATED),
    ("automatedtask.task_run", E.SCRIPT_EXECUTED),

    # Policies
    ("policy.add", E.POLICY_APPLIED),
    ("policy.modify", E.POLICY_APPLIED),
    ("winupdatepolicy.add", E.POLICY_APPLIED),
    ("winupdatepolicy.modify", E.POLICY_APPLIED),

    # Checks & alerts
    ("check.add", E.MONITORING_CHECK_CREATED),
    ("check.modify", E.MONITORING_CHECK_CREATED),
    ("check.check_run", E.COMPLIANCE_CHECK),
    ("alerttemplate.add", E.ALERT_TRIGGERED),
    ("alerttemplate.modify", E.ALERT_RESOLVED),

    # Settings
    ("coresettings.modify", E.SYSTEM_STATUS),
    ("bulk.bulk_action", E.SYSTEM_STATUS),

    # Clients & sites
    ("client.add", E.GROUP_CREATED),
    ("client.modify", E.GROUP_UPDATED),
    ("client.delete", E.GROUP_DELETED),
    ("site.add", E.GROUP_CREATED),
    ("site.modify", E.GROUP_UPDATED),
    ("site.delete", E.GROUP_DELETED),
]

FLEET_MAPPINGS = [
    # Authentication & users
    (SourceEventTypes.Fleet.USER_LOGGED_IN, E.LOGIN),
    ("user_failed_login", E.LOGIN_FAILED),
    ("user_added_by_sso", E.USER_CREATED),
    ("created_user", E.USER_CREATED),
    ("deleted_user", E.USER_DELETED),
    ("changed_user_global_role", E.USER_ROLE_CHANGED),
    ("deleted_user_global_role", E.USER_ROLE_CHANGED),
    ("changed_user_team_role", E.USER_ROLE_CHANGED),
    ("deleted_user_team_role", E.USER_ROLE_CHANGED),

    # Enrollment
    ("fleet_enrolled", E.DEVICE_REGISTERED),
    ("mdm_enrolled", E.MDM_ENROLLED),
    ("mdm_unenrolled", E.MDM_UNENROLLED),

    # Activity automations
    ("enabled_activity_automations", E.AUTOMATION_ENABLED),
    ("edited_activity_automations", E.AUTOMATION_UPDATED),
    ("disabled_activity_automations", E.AUTOMATION_DISABLED),

    # Packs
    ("created_pack", E.PACK_CREATED),
    ("edited_pack", E.PACK_UPDATED),
    ("deleted_pack", E.PACK_DELETED),
    ("applied_spec_pack", E.PACK_APPLIED),

    # Policies
    ("created_policy", E.POLICY_APPLIED),
    ("edited_policy", E.POLICY_APPLIED),
    ("deleted_policy", E.POLICY_APPLIED),
    ("applied_spec_policy", E.POLICY_APPLIED),

    # Saved queries
    ("created_saved_query", E.QUERY_CREATED),
    ("edited_saved_query", E.QUERY_UPDATED),
    ("deleted_saved_query", E.QUERY_DELETED),
    ("deleted_multiple_saved_query", E.QUERY_DELETED),
    ("applied_spec_saved_query", E.QUERY_UPDATED),
    ("live_query", E.QUERY_EXECUTED),
    (SourceEventTypes.Fleet.EXECUTE_SCHEDULED_QUERY, E.QUERY_EXECUTED),

    # Teams
    ("created_team", E.GROUP_CREATED),
    ("deleted_team", E.GROUP_DELETED),
    ("applied_spec_team", E.GROUP_UPDATED),
    ("transferred_hosts", E.DEVICE_UPDATED),

    # Settings
    ("edited_agent_options", E.CONFIGURATION_UPDATED),
    ("edited_macos_min_version", E.CONFIGURATION_UPDATED),
    ("edited_ios_min_version", E.CONFIGURATION_UPDATED),
    ("edited_ipados_min_version", E.CONFIGURATION_UPDATED),
    ("edited_windows_updates", E.CONFIGURATION_UPDATED),
    ("changed_macos_setup_assistant", E.CONFIGURATION_UPDATED),
    ("deleted_macos_setup_assistant", E.CONFIGURATION_DELETED),
    ("enabled_macos_setup_end_user_auth", E.CONFIGURATION_UPDATED),
    ("disabled_macos_setup_end_user_auth", E.CONFIGURATION_UPDATED),
    ("enabled_gitops_mode", E.CONFIGURATION_UPDATED),
    ("disabled_gitops_mode", E.CONFIGURATION_UPDATED),
    ("added_bootstrap_package", E.CONFIGURATION_CREATED),
    ("deleted_bootstrap_package", E.CONFIGURATION_DELETED),
    ("enabled_vpp", E.CONFIGURATION_UPDATED),
    ("disabled_vpp", E.CONFIGURATION_UPDATED),
    ("created_custom_variable", E.CONFIGURATION_CREATED),
    ("deleted_custom_variable", E.CONFIGURATION_DELETED),
    ("edited_setup_experience_software", E.CONFIGURATION_UPDATED),

    # Disk encryption
    ("read_host_disk_encryption_key", E.DISK_ENCRYPTION_KEY_READ),
    ("enabled_macos_disk_encryption", E.DISK_ENCRYPTION_ENABLED),
    ("disabled_macos_disk_encryption", E.DISK_ENCRYPTION_DISABLED),
    ("escrowed_disk_encryption_key", E.DISK_ENCRYPTION_KEY_ESCROWED),

    # MDM platforms
    ("enabled_windows_mdm", E.MDM_ENABLED),
    ("disabled_windows_mdm", E.MDM_DISABLED),
    ("enabled_android_mdm", E.MDM_ENABLED),
    ("disabled_android_mdm", E.MDM_DISABLED),
    ("enabled_windows_mdm_migration", E.MDM_ENABLED),
    ("disabled_windows_mdm_migration", E.MDM_DISABLED),

    # Profiles
    ("created_macos_profile", E.PROFILE_CREATED),
    ("edited_macos_profile", E.PROFILE_UPDATED),
    ("deleted_macos_profile", E.PROFILE_DELETED),
    ("created_windows_profile", E.PROFILE_CREATED),
    ("edited_windows_profile", E.PROFILE_UPDATED),
    ("deleted_windows_profile", E.PROFILE_DELETED),
    ("created_declaration_profile", E.PROFILE_CREATED),
    ("edited_declaration_profile", E.PROFILE_UPDATED),
    ("deleted_declaration_profile", E.PROFILE_DELETED),
    ("resent_configuration_profile", E.PROFILE_APPLIED),
    ("resent_configuration_profile_batch", E.BATCH_OPERATION_COMPLETED),

    # Scripts
    ("ran_script", E.SCRIPT_EXECUTED),
    ("added_script", E.SCRIPT_CREATED),
    ("edited_script", E.SCRIPT_UPDATED),
    ("updated_script", E.SCRIPT_UPDATED),
    ("deleted_script", E.SCRIPT_UPDATED),
    ("canceled_run_script", E.SCRIPT_FAILED),
    ("ran_script_batch", E.BATCH_OPERATION_COMPLETED),
    ("scheduled_script_batch", E.BATCH_OPERATION_STARTED),
    ("canceled_script_batch", E.BATCH_OPERATION_CANCELED),

    # Host actions
    ("locked_host", E.HOST_LOCKED),
    ("unlocked_host", E.HOST_UNLOCKED),
    ("wiped_host", E.HOST_WIPED),

    # Software
    ("installed_software", E.SOFTWARE_INSTALLED),
    ("uninstalled_software", E.SOFTWARE_UNINSTALLED),
    ("added_software", E.SOFTWARE_CREATED),
    ("edited_software", E.SOFTWARE_UPDATED),
    ("deleted_software", E.SOFTWARE_DELETED),
    ("canceled_install_software", E.SOFTWARE_INSTALLATION_CANCELED),
    ("canceled_uninstall_software", E.SOFTWARE_INSTALLATION_CANCELED),
    ("added_app_store_app", E.SOFTWARE_CREATED),
    ("edited_app_store_app", E.SOFTWARE_UPDATED),
    ("deleted_app_store_app", E.SOFTWARE_DELETED),
    ("installed_app_store_app", E.SOFTWARE_INSTALLED),
    ("canceled_install_app_store_app", E.SOFTWARE_INSTALLATION_CANCELED),

    # Integrations
    ("added_ndes_scep_proxy", E.INTEGRATION_ADDED),
    ("edited_ndes_scep_proxy", E.INTEGRATION_UPDATED),
    ("deleted_ndes_scep_proxy", E.INTEGRATION_DELETED),
    ("added_custom_scep_proxy", E.INTEGRATION_ADDED),
    ("edited_custom_scep_proxy", E.INTEGRATION_UPDATED),
    ("deleted_custom_scep_proxy", E.INTEGRATION_DELETED),
    ("added_digicert", E.INTEGRATION_ADDED),
    ("edited_digicert", E.INTEGRATION_UPDATED),
    ("deleted_digicert", E.INTEGRATION_DELETED),
    ("added_hydrant", E.INTEGRATION_ADDED),
    ("edited_hydrant", E.INTEGRATION_UPDATED),
    ("deleted_hydrant", E.INTEGRATION_DELETED),
    ("added_conditional_access_integration_microsoft", E.INTEGRATION_ADDED),
    ("deleted_conditional_access_integration_microsoft", E.INTEGRATION_DELETED),
    ("enabled_conditional_access_automations", E.AUTOMATION_ENABLED),
    ("disabled_conditional_access_automations", E.AUTOMATION_DISABLED),
]


def default_mappings():
    """Every built-in mapping as (tool, source type, unified type) triples."""
    for source, unified in MESHCENTRAL_MAPPINGS:
        yield ToolType.MESHCENTRAL, source, unified
    for source, unified in TACTICAL_MAPPINGS:
        yield ToolType.TACTICAL, source, unified
    for source, unified in FLEET_MAPPINGS:
        yield ToolType.FLEET, source, unified


def build_default_registry() -> TaxonomyRegistry:
    """Registry with all built-in tool mappings. Raises on duplicate keys."""
    registry = TaxonomyRegistry.from_mappings(default_mappings(), strict=True)
    logger.info(f"✅ Taxonomy registry built: {registry.summary()}")
    return registry
