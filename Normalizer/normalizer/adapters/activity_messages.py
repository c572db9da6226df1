"""
Fleet MDM activity phrases.

Human-readable message for each Fleet activity type code. Used when a Fleet
activity row is normalized; codes missing here fall back to the row's own
details text.
"""

from typing import Dict, Optional

ACTIVITY_MESSAGES: Dict[str, str] = {
    "enabled_activity_automations": "Enabled activity automations",
    "edited_activity_automations": "Edited activity automations",
    "disabled_activity_automations": "Disabled activity automations",
    "created_pack": "Created pack",
    "edited_pack": "Edited pack",
    "deleted_pack": "Deleted pack",
    "applied_spec_pack": "Applied pack spec",
    "created_policy": "Created policy",
    "edited_policy": "Edited policy",
    "deleted_policy": "Deleted policy",
    "applied_spec_policy": "Applied policy spec",
    "created_saved_query": "Created saved query",
    "edited_saved_query": "Edited saved query",
    "deleted_saved_query": "Deleted saved query",
    "deleted_multiple_saved_query": "Deleted multiple saved queries",
    "applied_spec_saved_query": "Applied saved query spec",
    "created_team": "Created team",
    "deleted_team": "Deleted team",
    "applied_spec_team": "Applied team spec",
    "transferred_hosts": "Transferred hosts to team",
    "edited_agent_options": "Edited agent options",
    "live_query": "Ran live query",
    "user_added_by_sso": "User added by SSO",
    "user_logged_in": "User logged in",
    "user_failed_login": "User failed login",
    "created_user": "Created user",
    "deleted_user": "Deleted user",
    "changed_user_global_role": "Changed user's global role",
    "deleted_user_global_role": "Deleted user's global role",
    "changed_user_team_role": "Changed user's team role",
    "deleted_user_team_role": "Deleted user's team role",
    "fleet_enrolled": "Enrolled into Fleet",
    "mdm_enrolled": "Device enrolled to MDM",
    "mdm_unenrolled": "Device unenrolled from MDM",
    "edited_macos_min_version": "Edited macOS minimum version",
    "edited_ios_min_version": "Edited iOS minimum version",
    "edited_ipados_min_version": "Edited iPadOS minimum version",
    "edited_windows_updates": "Edited Windows updates settings",
    "read_host_disk_encryption_key": "Read host disk encryption key",
    "enabled_macos_disk_encryption": "Enabled macOS disk encryption",
    "disabled_macos_disk_encryption": "Disabled macOS disk encryption",
    "escrowed_disk_encryption_key": "Escrowed disk encryption key",
    "created_macos_profile": "Created macOS profile",
    "edited_macos_profile": "Edited macOS profile",
    "deleted_macos_profile": "Deleted macOS profile",
    "changed_macos_setup_assistant": "Changed macOS Setup Assistant",
    "deleted_macos_setup_assistant": "Deleted macOS Setup Assistant",
    "enabled_macos_setup_end_user_auth": "Enabled macOS setup end-user auth",
    "disabled_macos_setup_end_user_auth": "Disabled macOS setup end-user auth",
    "enabled_gitops_mode": "Enabled GitOps mode",
    "disabled_gitops_mode": "Disabled GitOps mode",
    "added_bootstrap_package": "Added bootstrap package",
    "deleted_bootstrap_package": "Deleted bootstrap package",
    "enabled_windows_mdm": "Enabled Windows MDM",
    "disabled_windows_mdm": "Disabled Windows MDM",
    "enabled_android_mdm": "Enabled Android MDM",
    "disabled_android_mdm": "Disabled Android MDM",
    "enabled_windows_mdm_migration": "Enabled Windows MDM migration",
    "disabled_windows_mdm_migration": "Disabled Windows MDM migration",
    "ran_script": "Ran script",
    "added_script": "Added script",
    "edited_script": "Edited script",
    "updated_script": "Updated script",
    "deleted_script": "Deleted script",
    "canceled_run_script": "Canceled script run",
    "ran_script_batch": "Ran script batch",
    "scheduled_script_batch": "Scheduled script batch",
    "canceled_script_batch": "Canceled script batch",
    "created_windows_profile": "Created Windows profile",
    "edited_windows_profile": "Edited Windows profile",
    "deleted_windows_profile": "Deleted Windows profile",
    "locked_host": "Locked host",
    "unlocked_host": "Unlocked host",
    "wiped_host": "Wiped host",
    "created_declaration_profile": "Created declaration profile",
    "edited_declaration_profile": "Edited declaration profile",
    "deleted_declaration_profile": "Deleted declaration profile",
    "resent_configuration_profile": "Resent configuration profile",
    "resent_configuration_profile_batch": "Resent configuration profiles (batch)",
    "installed_software": "Installed software",
    "uninstalled_software": "Uninstalled software",
    "added_software": "Added software",
    "edited_software": "Edited software",
    "deleted_software": "Deleted software",
    "canceled_install_software": "Canceled software installation",
    "canceled_uninstall_software": "Canceled software uninstallation",
    "enabled_vpp": "Enabled VPP",
    "disabled_vpp": "Disabled VPP",
    "added_app_store_app": "Added App Store app",
    "edited_app_store_app": "Edited App Store app",
    "deleted_app_store_app": "Deleted App Store app",
    "installed_app_store_app": "Installed App Store app",
    "canceled_install_app_store_app": "Canceled App Store app installation",
    "added_ndes_scep_proxy": "Added NDES SCEP proxy",
    "edited_ndes_scep_proxy": "Edited NDES SCEP proxy",
    "deleted_ndes_scep_proxy": "Deleted NDES SCEP proxy",
    "added_custom_scep_proxy": "Added custom SCEP proxy",
    "edited_custom_scep_proxy": "Edited custom SCEP proxy",
    "deleted_custom_scep_proxy": "Deleted custom SCEP proxy",
    "added_digicert": "Added DigiCert integration",
    "edited_digicert": "Edited DigiCert integration",
    "deleted_digicert": "Deleted DigiCert integration",
    "added_hydrant": "Added Hydrant integration",
    "edited_hydrant": "Edited Hydrant integration",
    "deleted_hydrant": "Deleted Hydrant integration",
    "added_conditional_access_integration_microsoft": "Added Microsoft conditional access integration",
    "deleted_conditional_access_integration_microsoft": "Deleted Microsoft conditional access integration",
    "enabled_conditional_access_automations": "Enabled conditional access automations",
    "disabled_conditional_access_automations": "Disabled conditional access automations",
    "created_custom_variable": "Created custom variable",
    "deleted_custom_variable": "Deleted custom variable",
    "edited_setup_experience_software": "Edited setup experience software",
}


def activity_message(activity_type: Optional[str]) -> Optional[str]:
    """Phrase for an activity type code, or None if the code is not catalogued."""
    if not activity_type:
        return None
    return ACTIVITY_MESSAGES.get(activity_type)
