#!/usr/bin/env python3
"""
Tests for the command-line interface.
"""

import io
import os
import json
import shutil
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest.mock import MagicMock, patch

import yaml

from sudo_session.changelog.manager import ChangeLog, ChangeLogManager
from sudo_session.cli.main import main
from sudo_session.errors import RestoreError, SessionError, SetupError
from sudo_session.restore.engine import RestoreResult


class TestCLI(unittest.TestCase):
    """Test cases for CLI commands."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.changelog_dir = os.path.join(self.temp_dir, 'changelogs')
        self.config_path = os.path.join(self.temp_dir, 'config.yaml')
        with open(self.config_path, 'w') as f:
            yaml.dump({
                'global': {'log_level': 'INFO', 'log_file': os.path.join(self.temp_dir, 'sudo.log')},
                'changelog': {'location': self.changelog_dir, 'max_changelogs': 5}
            }, f)

        self.changelogs = ChangeLogManager({'location': self.changelog_dir})

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def run_cli(self, *argv):
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(['--config', self.config_path] + list(argv))
        return code, out.getvalue()

    def test_no_command_prints_help(self):
        code, _ = self.run_cli()
        self.assertEqual(code, 1)

    def test_changelogs_list_and_show(self):
        changelog = ChangeLog(changelog_id='log1', timestamp='2026-01-01T10:00:00')
        changelog.wsman_server_credssp_change = True
        self.changelogs.save(changelog)

        code, output = self.run_cli('changelogs', 'list')
        self.assertEqual(code, 0)
        self.assertIn('log1', output)

        code, output = self.run_cli('changelogs', 'show', '--changelog-id', 'log1')
        self.assertEqual(code, 0)
        self.assertTrue(json.loads(output)['wsman_server_credssp_change'])

    def test_changelogs_show_unknown_is_error(self):
        code, output = self.run_cli('changelogs', 'show', '--changelog-id', 'missing')
        self.assertEqual(code, 1)
        self.assertIn('Error', output)

    def test_setup_requires_elevation(self):
        with patch('sudo_session.cli.main.HostDetector') as mock_detector:
            mock_detector.return_value.is_elevated.return_value = False
            code, output = self.run_cli('setup')

        self.assertEqual(code, 1)
        self.assertIn('elevated', output)

    def test_setup_record_writes_partial_changelog(self):
        partial = ChangeLog(changelog_id='partial')
        partial.winrm_state_change = True
        record_path = os.path.join(self.temp_dir, 'record.json')

        with patch('sudo_session.cli.main.HostDetector') as mock_detector, \
                patch('sudo_session.cli.main.SetupEngine') as mock_engine:
            mock_detector.return_value.is_elevated.return_value = True
            mock_engine.return_value.apply.side_effect = SetupError("server CredSSP failed", partial)
            code, _ = self.run_cli('setup', '--record', record_path, '--delegate', 'WS01')

        self.assertEqual(code, 0)
        mock_engine.return_value.apply.assert_called_once_with(['WS01'])
        with open(record_path) as f:
            record = json.load(f)
        self.assertEqual(record['changelog']['id'], 'partial')
        self.assertEqual(record['error'], 'server CredSSP failed')

    def test_setup_record_written_when_nothing_changed(self):
        record_path = os.path.join(self.temp_dir, 'record.json')

        with patch('sudo_session.cli.main.HostDetector') as mock_detector, \
                patch('sudo_session.cli.main.SetupEngine') as mock_engine:
            mock_detector.return_value.is_elevated.return_value = True
            mock_engine.return_value.apply.side_effect = SetupError("remoting check failed")
            code, _ = self.run_cli('setup', '--record', record_path, '--delegate', 'WS01')

        self.assertEqual(code, 0)
        with open(record_path) as f:
            record = json.load(f)
        self.assertIsNone(record['changelog'])
        self.assertEqual(record['error'], 'remoting check failed')

    def test_broken_config_is_reported(self):
        with open(self.config_path, 'w') as f:
            f.write("session: [unclosed\n")

        code, output = self.run_cli('status')

        self.assertEqual(code, 1)
        self.assertIn('Error:', output)

    def test_run_keeps_command_error_when_removal_fails(self):
        session = MagicMock()
        with patch('sudo_session.cli.main.SudoSessionManager') as mock_manager_cls, \
                patch('sudo_session.cli.main.getpass.getpass', return_value='pw'):
            manager = mock_manager_cls.return_value
            manager.new_sudo_session.return_value = session
            manager.invoke.side_effect = SessionError("Get-Foo is not recognized")
            manager.remove_sudo_session.side_effect = RestoreError("winrm: denied")
            code, output = self.run_cli('run', '--username', 'admin', '--', 'Get-Foo')

        self.assertEqual(code, 1)
        self.assertIn('Get-Foo is not recognized', output)
        manager.remove_sudo_session.assert_called_once()

    def test_restore_latest(self):
        changelog = ChangeLog(changelog_id='log1')
        changelog.winrm_state_change = True
        self.changelogs.save(changelog)

        with patch('sudo_session.cli.main.SudoSessionManager') as mock_manager_cls:
            manager = mock_manager_cls.return_value
            manager.changelog_manager = self.changelogs
            manager.restore_original_system_config.return_value = RestoreResult(
                'log1', 'elevated_process', ['winrm'])
            code, output = self.run_cli('restore')

        self.assertEqual(code, 0)
        self.assertIn('undone: winrm', output)
        restored = manager.restore_original_system_config.call_args[0][0]
        self.assertEqual(restored.changelog_id, 'log1')

    def test_restore_failure_exit_code(self):
        changelog = ChangeLog(changelog_id='log1')
        changelog.winrm_state_change = True
        self.changelogs.save(changelog)

        with patch('sudo_session.cli.main.SudoSessionManager') as mock_manager_cls:
            manager = mock_manager_cls.return_value
            manager.changelog_manager = self.changelogs
            manager.restore_original_system_config.side_effect = RestoreError("winrm: denied")
            code, output = self.run_cli('restore', '--changelog-id', 'log1')

        self.assertEqual(code, 1)
        self.assertIn('winrm: denied', output)

    def test_run_opens_invokes_and_removes(self):
        session = MagicMock()
        with patch('sudo_session.cli.main.SudoSessionManager') as mock_manager_cls, \
                patch('sudo_session.cli.main.getpass.getpass', return_value='pw'):
            manager = mock_manager_cls.return_value
            manager.new_sudo_session.return_value = session
            manager.invoke.return_value = ['nt authority\\system']
            code, output = self.run_cli('run', '--username', 'admin', '--', 'whoami')

        self.assertEqual(code, 0)
        self.assertIn('nt authority', output)
        manager.invoke.assert_called_once_with(session, 'whoami')
        manager.remove_sudo_session.assert_called_once()
        credentials = manager.new_sudo_session.call_args[0][0]
        self.assertEqual(credentials.username, 'admin')


if __name__ == '__main__':
    unittest.main()
