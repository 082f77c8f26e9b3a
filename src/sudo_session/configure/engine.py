#!/usr/bin/env python3
"""
Setup Engine - Applies the WinRM, CredSSP and delegation policy changes a
sudo session needs, recording each one in a change-log.
"""

import logging
from typing import Dict, List, Any, Optional

from ..changelog.manager import ChangeLog
from ..errors import RegistryError, ServiceError, SetupError
from ..system.registry import RegistryEditor
from ..system.wsman import WSManConfigurator


DELEGATION_KEY = r'HKEY_LOCAL_MACHINE\SOFTWARE\Policies\Microsoft\Windows\CredentialsDelegation'

# Subkey name -> policy flags set on the parent key
DELEGATION_LISTS = {
    'AllowFreshCredentials': ['AllowFreshCredentials', 'ConcatenateDefaults_AllowFresh'],
    'AllowFreshCredentialsWhenNTLMOnly': ['AllowFreshCredentialsWhenNTLMOnly',
                                          'ConcatenateDefaults_AllowFreshNTLMOnly'],
}


class SetupEngine:
    """Applies and records the configuration a sudo session depends on.

    Runs in an elevated process. Every change is recorded before the next
    one is attempted, so a failure leaves an accurate partial change-log.
    """

    def __init__(self, registry: Optional[RegistryEditor] = None,
                 wsman: Optional[WSManConfigurator] = None):
        """Initialize setup engine."""
        self.registry = registry or RegistryEditor()
        self.wsman = wsman or WSManConfigurator()
        self.logger = logging.getLogger(__name__)

    def apply(self, delegate_computers: List[str],
              description: str = "Sudo session setup") -> ChangeLog:
        """Apply the session configuration and return what was changed."""
        if not delegate_computers:
            raise SetupError("At least one computer to delegate credentials to is required")

        changelog = ChangeLog(description=description)
        self.logger.info(f"Applying sudo session configuration ({changelog.changelog_id})")

        try:
            self._ensure_remoting(changelog)
            self._ensure_credssp('server', changelog)
            self._ensure_credssp('client', changelog)
            self._ensure_delegation(delegate_computers, changelog)
        except (RegistryError, ServiceError) as e:
            self.logger.error(f"Sudo session setup failed: {e}")
            raise SetupError(f"Sudo session setup failed: {e}", changelog)

        self.logger.info(
            f"Sudo session configuration applied, {len(changelog.pending_steps())} changes recorded"
        )
        return changelog

    def _ensure_remoting(self, changelog: ChangeLog) -> None:
        if self.wsman.remoting_enabled():
            self.logger.debug("PowerShell remoting already enabled")
            return

        changelog.winrm_original_startup = self.wsman.get_winrm_startup()
        self.wsman.enable_remoting()
        changelog.winrm_state_change = True

    def _ensure_credssp(self, role: str, changelog: ChangeLog) -> None:
        if self.wsman.get_credssp(role):
            self.logger.debug(f"{role} CredSSP already enabled")
            return

        self.wsman.set_credssp(role, True)
        if role == 'server':
            changelog.wsman_server_credssp_change = True
        else:
            changelog.wsman_client_credssp_change = True

    def _ensure_key(self, key: str, changelog: ChangeLog) -> bool:
        """Create ``key`` if needed. Returns True when it already existed."""
        if self.registry.create_key(key):
            changelog.record_registry_key(key)
            self.logger.info(f"Created registry key {key}")
            return False
        return True

    def _ensure_delegation(self, delegate_computers: List[str], changelog: ChangeLog) -> None:
        parent_existed = self._ensure_key(DELEGATION_KEY, changelog)

        for subkey, flags in DELEGATION_LISTS.items():
            for flag in flags:
                self._set_flag(DELEGATION_KEY, flag, parent_existed, changelog)

            list_key = f"{DELEGATION_KEY}\\{subkey}"
            list_existed = self._ensure_key(list_key, changelog)
            self._add_delegates(list_key, delegate_computers, list_existed, changelog)

    def _set_flag(self, key: str, name: str, key_existed: bool, changelog: ChangeLog) -> None:
        current = self.registry.get_value(key, name)
        if current == 1:
            return

        self.registry.set_value(key, name, 1, 'REG_DWORD')
        # Values under a key we created go away with the key
        if key_existed:
            changelog.record_registry_property(key, name, current)
            if current is not None:
                self.logger.info(f"Overwrote {key}\\{name} (was {current!r})")

    def _add_delegates(self, key: str, delegate_computers: List[str], key_existed: bool,
                       changelog: ChangeLog) -> None:
        existing: Dict[str, Any] = self.registry.list_values(key)
        present = {str(v).lower() for v in existing.values()}

        for computer in delegate_computers:
            entry = f"WSMAN/{computer}"
            if entry.lower() in present:
                self.logger.debug(f"{entry} already delegated in {key}")
                continue

            name = self._next_value_name(existing)
            self.registry.set_value(key, name, entry, 'REG_SZ')
            existing[name] = entry
            present.add(entry.lower())
            self.logger.info(f"Delegating fresh credentials to {entry} ({key}\\{name})")

            if key_existed:
                changelog.record_registry_property(key, name)

    @staticmethod
    def _next_value_name(existing: Dict[str, Any]) -> str:
        """Delegation lists use consecutive numeric value names starting at 1."""
        index = 1
        while str(index) in existing:
            index += 1
        return str(index)
