#!/usr/bin/env python3
"""
Change-log Manager - Records the system changes made for a sudo session.

A change-log is a flat record of which WSMan settings and registry
keys/values were created when a sudo session was set up. Restoring replays
it in reverse.
"""

import os
import json
import socket
import getpass
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Any, Optional

from ..errors import ChangeLogError


class ChangeLog:
    """Flat record of configuration changes made by session setup."""

    def __init__(self, changelog_id: Optional[str] = None, timestamp: Optional[str] = None,
                 hostname: Optional[str] = None, username: Optional[str] = None,
                 description: str = ""):
        """Initialize an empty change-log."""
        now = datetime.now()
        self.changelog_id = changelog_id or f"sudo_session_{now.strftime('%Y%m%d_%H%M%S_%f')}"
        self.timestamp = timestamp or now.isoformat()
        self.hostname = hostname or socket.gethostname()
        self.username = username or _current_username()
        self.description = description

        self.winrm_state_change = False
        self.winrm_original_startup = 'manual'
        self.wsman_server_credssp_change = False
        self.wsman_client_credssp_change = False
        self.registry_keys_created: List[str] = []
        self.registry_properties_created: List[Dict[str, Any]] = []
        self.restored_at: Optional[str] = None

    @property
    def is_restored(self) -> bool:
        return self.restored_at is not None

    def record_registry_key(self, key: str) -> None:
        if key not in self.registry_keys_created:
            self.registry_keys_created.append(key)

    def record_registry_property(self, key: str, name: str, previous: Any = None) -> None:
        """Record a value set on a pre-existing key.

        ``previous`` is the data it held before, or None when setup added it.
        """
        for entry in self.registry_properties_created:
            if entry['key'] == key and entry['name'] == name:
                return

        entry = {'key': key, 'name': name}
        if previous is not None:
            entry['previous'] = previous
        self.registry_properties_created.append(entry)

    def has_changes(self) -> bool:
        """Check whether anything was recorded."""
        return bool(
            self.winrm_state_change
            or self.wsman_server_credssp_change
            or self.wsman_client_credssp_change
            or self.registry_keys_created
            or self.registry_properties_created
        )

    def pending_steps(self) -> List[Dict[str, Any]]:
        """Return the undo steps in the order they must be applied.

        Created keys are removed deepest first. Properties set on
        pre-existing keys go after the keys (deleted, or written back when
        they had a previous value), and WinRM goes last because
        it carries the remoting transport.
        """
        steps = []

        if self.wsman_server_credssp_change:
            steps.append({'kind': 'wsman_server_credssp', 'label': 'wsman_server_credssp'})

        if self.wsman_client_credssp_change:
            steps.append({'kind': 'wsman_client_credssp', 'label': 'wsman_client_credssp'})

        for key in sorted(self.registry_keys_created, key=lambda k: k.count('\\'), reverse=True):
            steps.append({'kind': 'registry_key', 'key': key, 'label': f"registry_key:{key}"})

        for prop in self.registry_properties_created:
            step = {
                'kind': 'registry_property',
                'key': prop['key'],
                'name': prop['name'],
                'label': f"registry_property:{prop['key']}::{prop['name']}"
            }
            if prop.get('previous') is not None:
                step['previous'] = prop['previous']
            steps.append(step)

        if self.winrm_state_change:
            steps.append({
                'kind': 'winrm',
                'startup': self.winrm_original_startup,
                'label': 'winrm'
            })

        return steps

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.changelog_id,
            'timestamp': self.timestamp,
            'hostname': self.hostname,
            'username': self.username,
            'description': self.description,
            'winrm_state_change': self.winrm_state_change,
            'winrm_original_startup': self.winrm_original_startup,
            'wsman_server_credssp_change': self.wsman_server_credssp_change,
            'wsman_client_credssp_change': self.wsman_client_credssp_change,
            'registry_keys_created': list(self.registry_keys_created),
            'registry_properties_created': [dict(p) for p in self.registry_properties_created],
            'restored_at': self.restored_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChangeLog':
        """Build a change-log from its serialized form."""
        if 'id' not in data:
            raise ChangeLogError("Change-log data has no 'id'")

        changelog = cls(
            changelog_id=data['id'],
            timestamp=data.get('timestamp'),
            hostname=data.get('hostname'),
            username=data.get('username'),
            description=data.get('description', '')
        )
        changelog.winrm_state_change = bool(data.get('winrm_state_change', False))
        changelog.winrm_original_startup = data.get('winrm_original_startup') or 'manual'
        changelog.wsman_server_credssp_change = bool(data.get('wsman_server_credssp_change', False))
        changelog.wsman_client_credssp_change = bool(data.get('wsman_client_credssp_change', False))
        changelog.registry_keys_created = list(data.get('registry_keys_created', []))

        for prop in data.get('registry_properties_created', []):
            if 'key' not in prop or 'name' not in prop:
                raise ChangeLogError(f"Malformed registry property entry in {data['id']}: {prop}")
            changelog.record_registry_property(prop['key'], prop['name'], prop.get('previous'))

        changelog.restored_at = data.get('restored_at')
        return changelog

    def __repr__(self) -> str:
        return (f"ChangeLog(id={self.changelog_id!r}, steps={len(self.pending_steps())}, "
                f"restored={self.is_restored})")


def _current_username() -> str:
    try:
        return getpass.getuser()
    except Exception:
        return os.environ.get('USERNAME', '')


class ChangeLogManager:
    """Stores change-logs as JSON documents on disk."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize change-log manager with configuration."""
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.location = Path(config.get('location', 'changelogs'))
        self.max_changelogs = config.get('max_changelogs', 20)

        self.location.mkdir(parents=True, exist_ok=True)

        self.logger.debug(f"Change-log manager initialized at {self.location}")

    def _path_for(self, changelog_id: str) -> Path:
        return self.location / f"{changelog_id}.json"

    def save(self, changelog: ChangeLog) -> Path:
        """Write a change-log to disk, replacing any previous version."""
        path = self._path_for(changelog.changelog_id)
        tmp_path = path.with_suffix('.json.tmp')

        with open(tmp_path, 'w') as f:
            json.dump(changelog.to_dict(), f, indent=2)
        os.replace(tmp_path, path)

        self.logger.debug(f"Saved change-log {changelog.changelog_id} to {path}")
        return path

    def load(self, changelog_id: str) -> ChangeLog:
        """Load a change-log by id."""
        return self.load_file(self._path_for(changelog_id))

    def load_file(self, path) -> ChangeLog:
        """Load a change-log from an explicit file path."""
        path = Path(path)
        if not path.exists():
            raise ChangeLogError(f"Change-log not found: {path}")

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ChangeLogError(f"Failed to read change-log {path}: {e}")

        return ChangeLog.from_dict(data)

    def list_changelogs(self) -> List[ChangeLog]:
        """List all change-logs, newest first."""
        changelogs = []

        for item in self.location.glob('*.json'):
            try:
                changelogs.append(self.load_file(item))
            except ChangeLogError as e:
                self.logger.warning(f"Skipping unreadable change-log {item.name}: {e}")

        changelogs.sort(key=lambda c: c.timestamp, reverse=True)
        return changelogs

    def latest(self, unrestored_only: bool = True) -> Optional[ChangeLog]:
        """Return the newest change-log, by default the newest one still applied."""
        for changelog in self.list_changelogs():
            if unrestored_only and changelog.is_restored:
                continue
            return changelog
        return None

    def mark_restored(self, changelog: ChangeLog) -> None:
        """Stamp a change-log as restored and persist it."""
        changelog.restored_at = datetime.now().isoformat()
        self.save(changelog)
        self.logger.info(f"Change-log {changelog.changelog_id} marked as restored")

    def delete(self, changelog_id: str) -> bool:
        """Delete a change-log file."""
        path = self._path_for(changelog_id)
        if not path.exists():
            self.logger.warning(f"Cannot delete unknown change-log: {changelog_id}")
            return False

        path.unlink()
        self.logger.info(f"Deleted change-log: {changelog_id}")
        return True

    def cleanup_old_changelogs(self) -> int:
        """Delete restored change-logs beyond the maximum limit.

        Unrestored change-logs are the only record of what must be undone,
        so they are never deleted here.
        """
        changelogs = self.list_changelogs()
        if len(changelogs) <= self.max_changelogs:
            return 0

        removed = 0
        for changelog in changelogs[self.max_changelogs:]:
            if not changelog.is_restored:
                continue
            if self.delete(changelog.changelog_id):
                removed += 1

        if removed:
            self.logger.info(f"Cleaned up {removed} old change-logs")
        return removed
