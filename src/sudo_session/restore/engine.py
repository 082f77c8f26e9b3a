#!/usr/bin/env python3
"""
Restore Engine - Undoes the configuration changes recorded in a change-log.
"""

import logging
from typing import Dict, List, Any, Optional

from ..changelog.manager import ChangeLog
from ..errors import RegistryError, RestoreError, ServiceError
from ..system.registry import RegistryEditor
from ..system.wsman import WSManConfigurator


class RestoreResult:
    """Outcome of a restore: which steps were undone and by which path."""

    def __init__(self, changelog_id: str, method: str, undone: Optional[List[str]] = None,
                 error: Optional[str] = None):
        self.changelog_id = changelog_id
        self.method = method
        self.undone: List[str] = list(undone or [])
        self.error = error

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'changelog_id': self.changelog_id,
            'method': self.method,
            'undone': list(self.undone),
            'error': self.error
        }

    def __repr__(self) -> str:
        return (f"RestoreResult(changelog_id={self.changelog_id!r}, method={self.method!r}, "
                f"undone={self.undone!r}, error={self.error!r})")


class RestoreEngine:
    """Applies the recorded reverse operations in the current process.

    The caller must already hold administrator rights.
    """

    METHOD = 'in_process'

    def __init__(self, registry: Optional[RegistryEditor] = None,
                 wsman: Optional[WSManConfigurator] = None):
        """Initialize restore engine."""
        self.registry = registry or RegistryEditor()
        self.wsman = wsman or WSManConfigurator()
        self.logger = logging.getLogger(__name__)

    def apply(self, changelog: ChangeLog) -> RestoreResult:
        """Undo every recorded change, stopping at the first failure."""
        result = RestoreResult(changelog.changelog_id, self.METHOD)
        steps = changelog.pending_steps()

        self.logger.info(f"Restoring {len(steps)} recorded changes from {changelog.changelog_id}")

        for step in steps:
            try:
                self._undo_step(step)
            except (RegistryError, ServiceError) as e:
                result.error = f"{step['label']}: {e}"
                self.logger.error(f"Restore of {changelog.changelog_id} stopped at {step['label']}: {e}")
                raise RestoreError(f"Failed to undo {step['label']}: {e}", result)

            result.undone.append(step['label'])

        self.logger.info(f"Restored {len(result.undone)} changes from {changelog.changelog_id}")
        return result

    def _undo_step(self, step: Dict[str, Any]) -> None:
        kind = step['kind']

        if kind == 'wsman_server_credssp':
            self._disable_credssp('server')
        elif kind == 'wsman_client_credssp':
            self._disable_credssp('client')
        elif kind == 'registry_key':
            if not self.registry.delete_key_tree(step['key']):
                self.logger.debug(f"Registry key already absent: {step['key']}")
        elif kind == 'registry_property' and step.get('previous') is not None:
            self._write_back(step['key'], step['name'], step['previous'])
        elif kind == 'registry_property':
            if not self.registry.delete_value(step['key'], step['name']):
                self.logger.debug(f"Registry value already absent: {step['key']}\\{step['name']}")
        elif kind == 'winrm':
            self.wsman.disable_remoting(step.get('startup'))
        else:
            raise ValueError(f"Unknown restore step: {kind}")

    def _write_back(self, key: str, name: str, previous: Any) -> None:
        if not self.registry.key_exists(key):
            self.logger.debug(f"Registry key already absent: {key}")
            return
        value_type = 'REG_DWORD' if isinstance(previous, int) else 'REG_SZ'
        self.registry.set_value(key, name, previous, value_type)
        self.logger.info(f"Wrote back {key}\\{name} = {previous!r}")

    def _disable_credssp(self, role: str) -> None:
        if self.wsman.get_credssp(role):
            self.wsman.set_credssp(role, False)
        else:
            self.logger.debug(f"{role} CredSSP already disabled")
