#!/usr/bin/env python3
"""
Tests for restore script rendering and report parsing.
"""

import base64
import unittest

from sudo_session.changelog.manager import ChangeLog
from sudo_session.errors import RestoreError
from sudo_session.restore.script import (
    DEFERRED_WINRM_LABEL,
    parse_restore_report,
    render_restore_script,
)


DELEGATION = r'HKEY_LOCAL_MACHINE\SOFTWARE\Policies\Microsoft\Windows\CredentialsDelegation'


def decode(encoded: str) -> str:
    return base64.b64decode(encoded).decode('utf-16-le')


class TestRenderRestoreScript(unittest.TestCase):
    """Test cases for render_restore_script."""

    def setUp(self):
        """Set up test fixtures."""
        self.changelog = ChangeLog(changelog_id='log1', hostname='WS01', username='jdoe')
        self.changelog.winrm_state_change = True
        self.changelog.wsman_server_credssp_change = True
        self.changelog.record_registry_key(DELEGATION)
        self.changelog.record_registry_property(r"HKEY_LOCAL_MACHINE\SOFTWARE\O'Brien", '1')

    def test_script_contains_each_step(self):
        script = render_restore_script(self.changelog)

        self.assertIn("$ErrorActionPreference = 'Stop'", script)
        self.assertIn(r"WSMan:\localhost\Service\Auth\CredSSP", script)
        self.assertNotIn(r"WSMan:\localhost\Client\Auth\CredSSP", script)
        self.assertIn(f"Remove-Item -LiteralPath 'Registry::{DELEGATION}' -Recurse -Force", script)
        self.assertIn("Disable-PSRemoting -Force", script)
        self.assertIn("Write-Output $report", script)

    def test_steps_are_labelled_in_order(self):
        script = render_restore_script(self.changelog)
        positions = [script.index(f"$step = '{label}'") for label in (
            'wsman_server_credssp',
            f'registry_key:{DELEGATION}',
            'winrm',
        )]
        self.assertEqual(positions, sorted(positions))

    def test_single_quotes_are_escaped(self):
        script = render_restore_script(self.changelog)
        self.assertIn(r"'Registry::HKEY_LOCAL_MACHINE\SOFTWARE\O''Brien'", script)

    def test_result_path_writes_file(self):
        script = render_restore_script(self.changelog, result_path=r'C:\Temp\result.json')

        self.assertIn(r"Set-Content -LiteralPath 'C:\Temp\result.json' -Value $report", script)
        self.assertNotIn("Write-Output $report", script)

    def test_deferred_winrm_runs_detached(self):
        script = render_restore_script(self.changelog, defer_winrm=True)

        self.assertIn(f"$step = '{DEFERRED_WINRM_LABEL}'", script)

        encoded = script.split("-EncodedCommand ")[1].split("'")[0].strip()
        delayed = decode(encoded)
        self.assertTrue(delayed.startswith("Start-Sleep -Seconds"))
        self.assertIn("Stop-Service -Name WinRM -Force", delayed)
        self.assertIn("Set-Service -Name WinRM -StartupType Manual", delayed)

    def test_deferred_winrm_outlives_the_session(self):
        """The delayed WinRM teardown is spawned by WMI, not as a child of the shell."""
        script = render_restore_script(self.changelog, defer_winrm=True)
        winrm_line = script.split(f"$step = '{DEFERRED_WINRM_LABEL}'")[1].splitlines()[1]

        self.assertIn("Invoke-CimMethod -ClassName Win32_Process -MethodName Create", winrm_line)
        self.assertIn("$spawn.ReturnValue -ne 0", winrm_line)
        self.assertNotIn("Start-Process", script)
        self.assertNotIn("Disable-PSRemoting", script)

    def test_inline_winrm_without_defer(self):
        script = render_restore_script(self.changelog)
        self.assertNotIn("Win32_Process", script)

    def test_overwritten_value_is_written_back(self):
        changelog = ChangeLog(changelog_id='log2')
        changelog.record_registry_property(DELEGATION, 'AllowFreshCredentials', previous=0)

        script = render_restore_script(changelog)

        self.assertIn(f"New-ItemProperty -LiteralPath 'Registry::{DELEGATION}' "
                      "-Name 'AllowFreshCredentials' -PropertyType DWord -Value '0' -Force", script)
        self.assertNotIn("Remove-ItemProperty", script)

    def test_empty_changelog_renders_report_only(self):
        script = render_restore_script(ChangeLog(changelog_id='empty'))

        self.assertNotIn("$undone.Add", script)
        self.assertIn("ConvertTo-Json", script)


class TestParseRestoreReport(unittest.TestCase):
    """Test cases for parse_restore_report."""

    def test_parse_success(self):
        result = parse_restore_report('{"undone":["winrm"],"error":null}', 'log1', 'session')

        self.assertTrue(result.success)
        self.assertEqual(result.undone, ['winrm'])
        self.assertEqual(result.method, 'session')

    def test_parse_failure_with_noise_and_bom(self):
        text = 'WARNING: something\n\ufeff{"undone":["wsman_server_credssp"],"error":"registry_key:X: denied"}\n'
        result = parse_restore_report(text, 'log1', 'elevated_process')

        self.assertFalse(result.success)
        self.assertEqual(result.undone, ['wsman_server_credssp'])
        self.assertEqual(result.error, 'registry_key:X: denied')

    def test_parse_single_string_undone(self):
        result = parse_restore_report('{"undone":"winrm","error":null}', 'log1', 'session')
        self.assertEqual(result.undone, ['winrm'])

    def test_parse_missing_report(self):
        with self.assertRaises(RestoreError):
            parse_restore_report('no json here', 'log1', 'session')


if __name__ == '__main__':
    unittest.main()
