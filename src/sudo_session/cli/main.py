#!/usr/bin/env python3
"""
SudoSession CLI - Command-line interface for elevated sessions and restores.
"""

import sys
import json
import getpass
import argparse
import logging
from typing import Dict, Any, Optional

from ..changelog.manager import ChangeLogManager
from ..config.loader import DEFAULT_CONFIG_PATH, load_config, setup_logging
from ..configure.engine import SetupEngine
from ..errors import SetupError, SudoSessionError
from ..host.detector import HostDetector
from ..session.manager import Credentials, SudoSessionManager
from ..system.powershell import PowerShellRunner
from ..system.registry import RegistryEditor
from ..system.wsman import WSManConfigurator


class SudoSessionCLI:
    """Command-line interface for SudoSession."""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        """Initialize CLI."""
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.logger: Optional[logging.Logger] = None

    def load(self, verbose: bool = False) -> None:
        self.config = load_config(self.config_path)
        self.logger = setup_logging(self.config, verbose)

    def _host_detector(self) -> HostDetector:
        return HostDetector(self.config.get('elevation', {}))

    def _changelog_manager(self) -> ChangeLogManager:
        return ChangeLogManager(self.config.get('changelog', {}))

    def _session_manager(self) -> SudoSessionManager:
        return SudoSessionManager(self.config, config_path=self.config_path)

    def _prompt_credentials(self, username: Optional[str]) -> Optional[Credentials]:
        if not username:
            return None
        password = getpass.getpass(f"Password for {username}: ")
        return Credentials(username, password)

    def cmd_status(self, args) -> int:
        """Show elevation, WinRM and CredSSP state."""
        detector = self._host_detector()
        info = detector.get_status_info()

        print("SudoSession Status")
        print("=" * 40)
        print(f"Host: {info['hostname']} ({info['fqdn']})")
        print(f"User: {info['username']}")
        print(f"Elevated: {'Yes' if info['elevated'] else 'No'}")

        winrm = info.get('winrm')
        if winrm:
            print(f"WinRM service: {winrm['status']} (start type: {winrm['start_type']})")
        else:
            print("WinRM service: not available")

        wsman = WSManConfigurator(PowerShellRunner(self.config.get('elevation', {})), detector)
        state = wsman.get_state()
        if 'error' in state:
            print(f"WSMan state: unavailable ({state['error']})")
        else:
            print(f"PS remoting enabled: {'Yes' if state['remoting_enabled'] else 'No'}")
            print(f"Server CredSSP: {'Yes' if state['server_credssp'] else 'No'}")
            print(f"Client CredSSP: {'Yes' if state['client_credssp'] else 'No'}")

        latest = self._changelog_manager().latest()
        if latest:
            print(f"Unrestored change-log: {latest.changelog_id} ({len(latest.pending_steps())} changes)")
        else:
            print("No unrestored change-logs")

        return 0

    def cmd_changelogs(self, args) -> int:
        """Manage recorded change-logs."""
        manager = self._changelog_manager()

        if args.changelog_action == 'list':
            changelogs = manager.list_changelogs()
            if not changelogs:
                print("No change-logs found")
                return 0

            print(f"{'ID':<40} {'Timestamp':<28} {'Changes':<8} {'Restored'}")
            print("-" * 90)
            for changelog in changelogs:
                print(f"{changelog.changelog_id:<40} {changelog.timestamp:<28} "
                      f"{len(changelog.pending_steps()):<8} {changelog.restored_at or 'no'}")
            return 0

        if not args.changelog_id:
            print("--changelog-id is required for this action")
            return 1

        if args.changelog_action == 'show':
            changelog = manager.load(args.changelog_id)
            print(json.dumps(changelog.to_dict(), indent=2))
            return 0

        if args.changelog_action == 'delete':
            return 0 if manager.delete(args.changelog_id) else 1

        print(f"Unknown change-log action: {args.changelog_action}")
        return 1

    def cmd_setup(self, args) -> int:
        """Apply the session configuration in this (elevated) process."""
        detector = self._host_detector()
        if not detector.is_elevated():
            print("The setup command must run elevated")
            return 1

        computers = args.delegate or self.config.get('setup', {}).get('delegate_computers') or []
        if not computers:
            host = detector.detect()
            computers = [host['fqdn'], host['hostname']]

        wsman = WSManConfigurator(PowerShellRunner(self.config.get('elevation', {})), detector)
        engine = SetupEngine(RegistryEditor(), wsman)

        error = None
        try:
            changelog = engine.apply(computers)
        except SetupError as e:
            if e.changelog is None and not args.record:
                raise
            changelog = e.changelog
            error = str(e)

        if args.record:
            # The exit status only reports whether the record was written
            record = {'changelog': changelog.to_dict() if changelog else None, 'error': error}
            with open(args.record, 'w') as f:
                json.dump(record, f, indent=2)
            return 0

        self._changelog_manager().save(changelog)
        print(f"Recorded change-log: {changelog.changelog_id}")
        if error:
            print(f"Setup failed: {error}")
            return 1
        return 0

    def cmd_restore(self, args) -> int:
        """Restore the original system configuration from a change-log."""
        manager = self._session_manager()
        changelogs = manager.changelog_manager

        if args.changelog_id:
            changelog = changelogs.load(args.changelog_id)
        else:
            changelog = changelogs.latest()
            if changelog is None:
                print("No unrestored change-logs found")
                return 0

        credentials = self._prompt_credentials(args.username)
        result = manager.restore_original_system_config(changelog, credentials=credentials)

        print(f"Restored {changelog.changelog_id} via {result.method}")
        for step in result.undone:
            print(f"  undone: {step}")
        return 0

    def cmd_run(self, args) -> int:
        """Open a sudo session, run one command, then remove the session."""
        parts = list(args.run_command)
        if parts and parts[0] == '--':
            parts = parts[1:]
        command = ' '.join(parts).strip()
        if not command:
            print("A command to run is required")
            return 1

        credentials = self._prompt_credentials(args.username)
        manager = self._session_manager()

        session = manager.new_sudo_session(credentials, args.delegate)
        try:
            for line in manager.invoke(session, command):
                print(line)
        except BaseException:
            try:
                manager.remove_sudo_session(session, credentials)
            except SudoSessionError as e:
                self.logger.error(f"Failed to remove sudo session after command failure: {e}")
            raise

        manager.remove_sudo_session(session, credentials)

        return 0


def main(argv=None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="SudoSession - elevated local PowerShell sessions with recorded, reversible setup"
    )

    parser.add_argument(
        '--config',
        default=DEFAULT_CONFIG_PATH,
        help='Configuration file path'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('status', help='Show elevation, WinRM and CredSSP state')

    changelog_parser = subparsers.add_parser('changelogs', help='Manage recorded change-logs')
    changelog_parser.add_argument(
        'changelog_action',
        choices=['list', 'show', 'delete'],
        help='Change-log action to perform'
    )
    changelog_parser.add_argument('--changelog-id', help='Change-log ID for show/delete')

    setup_parser = subparsers.add_parser('setup', help='Apply session configuration (elevated)')
    setup_parser.add_argument('--record', help='Write the change-log to this file instead of the store')
    setup_parser.add_argument('--delegate', action='append', help='Computer to delegate credentials to')

    restore_parser = subparsers.add_parser('restore', help='Restore original system configuration')
    restore_parser.add_argument('--changelog-id', help='Change-log to restore (default: latest unrestored)')
    restore_parser.add_argument('--username', help='Administrator account used for elevation')

    run_parser = subparsers.add_parser('run', help='Run a command in a temporary sudo session')
    run_parser.add_argument('--username', required=True, help='Administrator account for the session')
    run_parser.add_argument('--delegate', action='append', help='Computer to delegate credentials to')
    run_parser.add_argument('run_command', nargs=argparse.REMAINDER, help='PowerShell command to run')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    cli = SudoSessionCLI(args.config)

    command_handlers = {
        'status': cli.cmd_status,
        'changelogs': cli.cmd_changelogs,
        'setup': cli.cmd_setup,
        'restore': cli.cmd_restore,
        'run': cli.cmd_run
    }

    handler = command_handlers.get(args.command)
    if not handler:
        print(f"Unknown command: {args.command}")
        return 1

    try:
        cli.load(args.verbose)
        return handler(args)
    except SudoSessionError as e:
        if cli.logger:
            cli.logger.error(str(e))
        print(f"Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
