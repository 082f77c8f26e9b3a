#!/usr/bin/env python3
"""
Sudo Session Manager - Opens elevated remoting sessions to the local machine
and tears down the configuration they required.
"""

import logging
from typing import Dict, List, Any, Optional

from pypsrp.exceptions import AuthenticationError, WinRMError, WinRMTransportError
from pypsrp.powershell import PowerShell, RunspacePool
from pypsrp.wsman import WSMan
from requests.exceptions import RequestException

from ..changelog.manager import ChangeLog, ChangeLogManager
from ..configure.engine import SetupEngine
from ..elevation.launcher import ElevatedLauncher
from ..errors import RestoreError, SessionError, SetupError, SudoSessionError
from ..host.detector import HostDetector
from ..restore.engine import RestoreEngine, RestoreResult
from ..restore.script import parse_restore_report, render_restore_script
from ..system.powershell import PowerShellRunner
from ..system.registry import RegistryEditor
from ..system.wsman import WSManConfigurator


class Credentials:
    """User name and password used for the session and for elevation."""

    def __init__(self, username: str, password: str):
        self.username = username
        self.password = password

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


class SudoSession:
    """An elevated PowerShell remoting session to the local machine."""

    def __init__(self, hostname: str, credentials: Credentials, config: Optional[Dict[str, Any]] = None,
                 changelog: Optional[ChangeLog] = None):
        """Initialize session, not yet connected."""
        self.hostname = hostname
        self.credentials = credentials
        self.config = config or {}
        self.changelog = changelog
        self.logger = logging.getLogger(__name__)

        self._wsman: Optional[WSMan] = None
        self._pool: Optional[RunspacePool] = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self) -> None:
        """Connect and open the runspace pool."""
        if self.is_open:
            return

        self.logger.info(f"Opening sudo session to {self.hostname} as {self.credentials.username}")

        try:
            self._wsman = WSMan(
                self.hostname,
                username=self.credentials.username,
                password=self.credentials.password,
                auth=self.config.get('auth', 'credssp'),
                ssl=self.config.get('ssl', False),
                port=self.config.get('port', 5985),
                cert_validation=self.config.get('cert_validation', False),
                connection_timeout=self.config.get('connection_timeout', 30),
                operation_timeout=self.config.get('operation_timeout', 20)
            )
            pool = RunspacePool(self._wsman)
            pool.open()
        except AuthenticationError as e:
            self._wsman = None
            raise SessionError(f"Authentication to {self.hostname} failed: {e}")
        except (WinRMError, WinRMTransportError, RequestException) as e:
            self._wsman = None
            raise SessionError(f"Could not open sudo session to {self.hostname}: {e}")

        self._pool = pool
        self.logger.info(f"Sudo session to {self.hostname} opened")

    def invoke(self, script: str) -> List[str]:
        """Run script text in the session and return its output as strings."""
        if not self.is_open:
            raise SessionError("Sudo session is not open")

        ps = PowerShell(self._pool)
        ps.add_script(script)

        try:
            output = ps.invoke()
        except (WinRMError, WinRMTransportError, RequestException) as e:
            raise SessionError(f"Invocation in sudo session failed: {e}")

        if ps.had_errors:
            errors = "; ".join(str(err) for err in ps.streams.error)
            raise SessionError(f"Script reported errors: {errors}")

        return [str(item) for item in output if item is not None]

    def close(self) -> None:
        """Close the runspace pool. Safe to call more than once."""
        if self._pool is None:
            return

        try:
            self._pool.close()
            self.logger.info(f"Sudo session to {self.hostname} closed")
        except (WinRMError, WinRMTransportError, RequestException) as e:
            self.logger.warning(f"Error closing sudo session to {self.hostname}: {e}")
        finally:
            self._pool = None
            self._wsman = None

    def __enter__(self) -> 'SudoSession':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = 'open' if self.is_open else 'closed'
        return f"SudoSession(hostname={self.hostname!r}, user={self.credentials.username!r}, {state})"


class SudoSessionManager:
    """Creates sudo sessions and restores the original system configuration."""

    def __init__(self, config: Dict[str, Any], host_detector: Optional[HostDetector] = None,
                 changelog_manager: Optional[ChangeLogManager] = None,
                 setup_engine: Optional[SetupEngine] = None,
                 restore_engine: Optional[RestoreEngine] = None,
                 launcher: Optional[ElevatedLauncher] = None,
                 config_path: Optional[str] = None):
        """Initialize manager, building any component not supplied."""
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.host_detector = host_detector or HostDetector(config.get('elevation', {}))
        self.changelog_manager = changelog_manager or ChangeLogManager(config.get('changelog', {}))

        if setup_engine is None or restore_engine is None:
            registry = RegistryEditor()
            wsman = WSManConfigurator(PowerShellRunner(config.get('elevation', {})), self.host_detector)
            setup_engine = setup_engine or SetupEngine(registry, wsman)
            restore_engine = restore_engine or RestoreEngine(registry, wsman)

        self.setup_engine = setup_engine
        self.restore_engine = restore_engine
        self.launcher = launcher or ElevatedLauncher(config.get('elevation', {}), config_path=config_path)

    def _delegate_computers(self, delegate_computers: Optional[List[str]]) -> List[str]:
        computers = list(delegate_computers or self.config.get('setup', {}).get('delegate_computers') or [])
        if not computers:
            host = self.host_detector.detect()
            computers = [host['fqdn'], host['hostname']]

        unique = []
        for computer in computers:
            if computer and computer.lower() not in [c.lower() for c in unique]:
                unique.append(computer)
        return unique

    def new_sudo_session(self, credentials: Credentials,
                         delegate_computers: Optional[List[str]] = None) -> SudoSession:
        """Configure the machine for an elevated session and open one."""
        computers = self._delegate_computers(delegate_computers)
        host = self.host_detector.detect()

        try:
            if self.host_detector.is_elevated():
                self.logger.info("Process is elevated, applying session configuration in-process")
                changelog = self.setup_engine.apply(computers)
            else:
                changelog = self.launcher.run_setup(computers, credentials)
        except SetupError as e:
            if e.changelog is not None and e.changelog.has_changes():
                self.changelog_manager.save(e.changelog)
                self.logger.error(
                    f"Setup failed part way, partial change-log saved as {e.changelog.changelog_id}"
                )
            raise

        self.changelog_manager.save(changelog)

        session = SudoSession(host['fqdn'], credentials, self.config.get('session', {}), changelog)
        try:
            session.open()
        except SessionError:
            self.logger.error("Could not open sudo session, restoring original configuration")
            try:
                self.restore_original_system_config(changelog, credentials=credentials)
            except SudoSessionError as restore_error:
                self.logger.critical(
                    f"Original configuration NOT restored ({changelog.changelog_id}): {restore_error}"
                )
            raise

        self.changelog_manager.cleanup_old_changelogs()
        return session

    def restore_original_system_config(self, changelog: ChangeLog,
                                       sudo_session: Optional[SudoSession] = None,
                                       credentials: Optional[Credentials] = None) -> RestoreResult:
        """Undo the changes recorded in ``changelog``.

        Runs in-process when this process is elevated, otherwise inside
        ``sudo_session`` when it is open, otherwise in a new elevated
        process.
        """
        if changelog.is_restored:
            self.logger.info(f"Change-log {changelog.changelog_id} already restored at {changelog.restored_at}")
            return RestoreResult(changelog.changelog_id, 'none')

        if not changelog.has_changes():
            self.logger.info(f"Change-log {changelog.changelog_id} recorded no changes")
            self.changelog_manager.mark_restored(changelog)
            return RestoreResult(changelog.changelog_id, 'none')

        try:
            if self.host_detector.is_elevated():
                result = self.restore_engine.apply(changelog)
            elif sudo_session is not None and sudo_session.is_open:
                result = self._restore_via_session(changelog, sudo_session)
            else:
                result = self.launcher.run_restore(changelog, credentials)
        except RestoreError as e:
            self.logger.critical(f"Restore of {changelog.changelog_id} incomplete: {e}")
            raise

        if not result.success:
            self.logger.critical(
                f"Restore of {changelog.changelog_id} incomplete after {result.undone}: {result.error}"
            )
            raise RestoreError(f"Restore failed: {result.error}", result)

        self.logger.info(f"Restored original configuration via {result.method}: {result.undone}")
        self.changelog_manager.mark_restored(changelog)
        return result

    def _restore_via_session(self, changelog: ChangeLog, sudo_session: SudoSession) -> RestoreResult:
        self.logger.info(f"Restoring {changelog.changelog_id} through sudo session {sudo_session.hostname}")
        script = render_restore_script(changelog, defer_winrm=True)
        try:
            output = sudo_session.invoke(script)
        except SessionError as e:
            raise RestoreError(f"Restore through sudo session failed: {e}",
                               RestoreResult(changelog.changelog_id, 'session', error=str(e)))
        return parse_restore_report("\n".join(output), changelog.changelog_id, 'session')

    def remove_sudo_session(self, sudo_session: SudoSession, credentials: Optional[Credentials] = None,
                            restore: bool = True) -> Optional[RestoreResult]:
        """Restore the session's change-log, then close the session.

        The session is closed even if the restore fails; the restore error
        is raised afterwards.
        """
        result = None
        try:
            if restore and sudo_session.changelog is not None:
                result = self.restore_original_system_config(
                    sudo_session.changelog,
                    sudo_session=sudo_session,
                    credentials=credentials or sudo_session.credentials
                )
        finally:
            sudo_session.close()

        return result

    def invoke(self, sudo_session: SudoSession, script: str) -> List[str]:
        return sudo_session.invoke(script)
