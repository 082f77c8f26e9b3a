#!/usr/bin/env python3
"""
Elevated Launcher - Runs generated PowerShell script text in a new elevated
process and collects its result.

A non-elevated process cannot raise its own token. The script is written
to a temporary file and started through ``Start-Process -Verb RunAs``.
When other credentials are supplied, an outer ``Start-Process
-Credential`` hop runs the elevation request as that user.
"""

import os
import sys
import json
import shutil
import logging
import tempfile
from contextlib import contextmanager
from typing import Dict, List, Any, Optional, Iterator

from ..changelog.manager import ChangeLog
from ..errors import ChangeLogError, ElevationError, PowerShellError, SetupError
from ..restore.engine import RestoreResult
from ..restore.script import parse_restore_report, render_restore_script
from ..system.powershell import PowerShellRunner, encode_command, quote


class ElevatedLauncher:
    """Runs scripts in an elevated powershell.exe and waits for them."""

    METHOD = 'elevated_process'

    def __init__(self, config: Dict[str, Any], runner: Optional[PowerShellRunner] = None,
                 config_path: Optional[str] = None):
        """Initialize launcher."""
        self.config = config
        self.runner = runner or PowerShellRunner(config)
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)

        self.timeout = config.get('timeout', 300)
        self.powershell_path = config.get('powershell_path', 'powershell.exe')
        self.python_executable = config.get('python_executable') or sys.executable

    @contextmanager
    def _workspace(self) -> Iterator[str]:
        """Temporary directory for the script and its result, always removed."""
        work_dir = tempfile.mkdtemp(prefix='sudo_session_')
        try:
            yield work_dir
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    def _elevate_command(self, script_path: str) -> str:
        arguments = ','.join(quote(a) for a in [
            '-NoProfile', '-NonInteractive', '-ExecutionPolicy', 'Bypass', '-File', f'"{script_path}"'
        ])
        return "\n".join([
            "$ErrorActionPreference = 'Stop'",
            f"$proc = Start-Process -FilePath {quote(self.powershell_path)} -Verb RunAs -Wait -PassThru "
            f"-WindowStyle Hidden -ArgumentList {arguments}",
            "exit $proc.ExitCode",
        ])

    def build_launcher(self, script_path: str, credentials=None) -> str:
        """Build the non-elevated launcher script for ``script_path``."""
        elevate = self._elevate_command(script_path)
        if credentials is None:
            return elevate

        # Password arrives on stdin so it never shows on a command line
        arguments = ','.join([quote('-NoProfile'), quote('-NonInteractive'),
                              quote('-EncodedCommand'), quote(encode_command(elevate))])
        return "\n".join([
            "$ErrorActionPreference = 'Stop'",
            "$password = [Console]::In.ReadLine() | ConvertTo-SecureString -AsPlainText -Force",
            "$credential = New-Object System.Management.Automation.PSCredential("
            f"{quote(credentials.username)}, $password)",
            f"$proc = Start-Process -FilePath {quote(self.powershell_path)} -Credential $credential "
            "-WorkingDirectory $env:SystemRoot -Wait -PassThru -WindowStyle Hidden "
            f"-ArgumentList {arguments}",
            "exit $proc.ExitCode",
        ])

    def run_script(self, script_text: str, work_dir: str, credentials=None) -> None:
        """Write ``script_text`` into ``work_dir`` and run it elevated."""
        script_path = os.path.join(work_dir, 'elevated.ps1')
        with open(script_path, 'w', encoding='utf-8-sig') as f:
            f.write(script_text)

        who = credentials.username if credentials is not None else 'current user'
        self.logger.info(f"Starting elevated PowerShell process as {who}")

        input_text = f"{credentials.password}\n" if credentials is not None else None
        try:
            self.runner.run(self.build_launcher(script_path, credentials),
                            timeout=self.timeout, input_text=input_text)
        except PowerShellError as e:
            raise ElevationError(f"Elevated process failed: {e}")

        self.logger.debug("Elevated PowerShell process finished")

    def _read_result(self, result_path: str) -> str:
        if not os.path.exists(result_path):
            raise ElevationError(
                "Elevated process produced no result (elevation declined or script failed)"
            )
        with open(result_path, 'r', encoding='utf-8-sig') as f:
            return f.read()

    def run_restore(self, changelog: ChangeLog, credentials=None) -> RestoreResult:
        """Undo ``changelog`` from a new elevated process."""
        with self._workspace() as work_dir:
            result_path = os.path.join(work_dir, 'result.json')
            script = render_restore_script(changelog, result_path=result_path)
            self.run_script(script, work_dir, credentials)
            report = self._read_result(result_path)

        return parse_restore_report(report, changelog.changelog_id, self.METHOD)

    def _setup_arguments(self, record_path: str, delegate_computers: List[str]) -> List[str]:
        arguments = ['-m', 'sudo_session']
        if self.config_path:
            arguments += ['--config', self.config_path]
        arguments += ['setup', '--record', record_path]
        for computer in delegate_computers:
            arguments += ['--delegate', computer]
        return arguments

    def run_setup(self, delegate_computers: List[str], credentials=None) -> ChangeLog:
        """Apply the session configuration from a new elevated process.

        The child is this package's own CLI. It writes the change-log,
        partial on failure, to a record file.
        """
        with self._workspace() as work_dir:
            record_path = os.path.join(work_dir, 'changelog.json')
            command = ' '.join(quote(a) for a in self._setup_arguments(record_path, delegate_computers))
            script = f"& {quote(self.python_executable)} {command}\nexit $LASTEXITCODE\n"
            self.run_script(script, work_dir, credentials)
            record_text = self._read_result(record_path)

        try:
            record = json.loads(record_text)
            if record['changelog'] is None and record.get('error'):
                # Failed before anything was changed
                raise SetupError(record['error'])
            changelog = ChangeLog.from_dict(record['changelog'])
        except (ValueError, KeyError, TypeError, ChangeLogError) as e:
            raise ElevationError(f"Unreadable setup record from elevated process: {e}")

        if record.get('error'):
            raise SetupError(record['error'], changelog)

        return changelog
