#!/usr/bin/env python3
"""
Tests for PowerShellRunner and WSManConfigurator.
"""

import base64
import subprocess
import unittest
from unittest.mock import MagicMock, patch

from sudo_session.errors import PowerShellError, ServiceError
from sudo_session.system.powershell import PowerShellRunner, encode_command, quote
from sudo_session.system.wsman import WSManConfigurator, startup_type


class TestPowerShellHelpers(unittest.TestCase):
    """Test cases for encoding and quoting helpers."""

    def test_encode_command_is_utf16_base64(self):
        encoded = encode_command("Write-Output 'hi'")
        self.assertEqual(base64.b64decode(encoded).decode('utf-16-le'), "Write-Output 'hi'")

    def test_quote(self):
        self.assertEqual(quote("plain"), "'plain'")
        self.assertEqual(quote("it's"), "'it''s'")
        self.assertEqual(quote(5985), "'5985'")


class TestPowerShellRunner(unittest.TestCase):
    """Test cases for PowerShellRunner."""

    def setUp(self):
        """Set up test fixtures."""
        self.runner = PowerShellRunner({'powershell_path': 'pwsh-test.exe', 'timeout': 42})

    @patch('subprocess.run')
    def test_run_returns_stdout(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout='true\n', stderr='')

        output = self.runner.run('Get-Date', input_text='secret\n')

        self.assertEqual(output, 'true\n')
        command = mock_run.call_args[0][0]
        self.assertEqual(command[0], 'pwsh-test.exe')
        self.assertIn('-NonInteractive', command)
        self.assertEqual(command[-2], '-EncodedCommand')
        self.assertEqual(mock_run.call_args[1]['timeout'], 42)
        self.assertEqual(mock_run.call_args[1]['input'], 'secret\n')

    @patch('subprocess.run')
    def test_run_nonzero_exit(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout='', stderr='Access is denied.\n')

        with self.assertRaises(PowerShellError) as ctx:
            self.runner.run('Set-Item x')

        self.assertEqual(ctx.exception.returncode, 1)
        self.assertEqual(ctx.exception.stderr, 'Access is denied.')

    @patch('subprocess.run')
    def test_run_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd='powershell', timeout=42)

        with self.assertRaises(PowerShellError):
            self.runner.run('Start-Sleep 100')

    @patch('subprocess.run')
    def test_run_missing_executable(self, mock_run):
        mock_run.side_effect = FileNotFoundError('pwsh-test.exe')

        with self.assertRaises(PowerShellError):
            self.runner.run('Get-Date')


class TestWSManConfigurator(unittest.TestCase):
    """Test cases for WSManConfigurator."""

    def setUp(self):
        """Set up test fixtures."""
        self.runner = MagicMock()
        self.host = MagicMock()
        self.wsman = WSManConfigurator(self.runner, self.host)

    def test_get_credssp(self):
        self.runner.run.return_value = 'true\r\n'
        self.assertTrue(self.wsman.get_credssp('server'))
        self.assertIn(r'WSMan:\localhost\Service\Auth\CredSSP', self.runner.run.call_args[0][0])

        self.runner.run.return_value = 'false\r\n'
        self.assertFalse(self.wsman.get_credssp('client'))
        self.assertIn(r'WSMan:\localhost\Client\Auth\CredSSP', self.runner.run.call_args[0][0])

    def test_unknown_role(self):
        with self.assertRaises(ValueError):
            self.wsman.get_credssp('proxy')

    def test_set_credssp(self):
        self.wsman.set_credssp('client', False)
        self.assertIn('-Value $false', self.runner.run.call_args[0][0])

    def test_powershell_failure_becomes_service_error(self):
        self.runner.run.side_effect = PowerShellError("WinRM client cannot process the request")
        with self.assertRaises(ServiceError):
            self.wsman.remoting_enabled()

    def test_disable_remoting_sets_startup_type(self):
        self.wsman.disable_remoting('automatic')
        script = self.runner.run.call_args[0][0]
        self.assertIn('Disable-PSRemoting -Force', script)
        self.assertIn('Set-Service -Name WinRM -StartupType Automatic', script)

    def test_get_winrm_startup(self):
        self.host.winrm_service_info.return_value = {'start_type': 'disabled'}
        self.assertEqual(self.wsman.get_winrm_startup(), 'disabled')

        self.host.winrm_service_info.return_value = None
        self.assertEqual(self.wsman.get_winrm_startup(), 'manual')

    def test_get_state_reports_errors(self):
        self.runner.run.side_effect = PowerShellError("boom")
        state = self.wsman.get_state()
        self.assertIn('error', state)

    def test_startup_type_mapping(self):
        self.assertEqual(startup_type('disabled'), 'Disabled')
        self.assertEqual(startup_type(None), 'Manual')
        self.assertEqual(startup_type('something-else'), 'Manual')


if __name__ == '__main__':
    unittest.main()
