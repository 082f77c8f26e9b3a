#!/usr/bin/env python3
"""
PowerShell Runner - Executes PowerShell script text in a child process.
"""

import base64
import subprocess
import logging
from typing import Dict, List, Any, Optional

from ..errors import PowerShellError


def encode_command(script: str) -> str:
    """Encode script text for ``powershell.exe -EncodedCommand``."""
    return base64.b64encode(script.encode('utf-16-le')).decode('ascii')


def quote(value: Any) -> str:
    """Return ``value`` as a single-quoted PowerShell string literal."""
    return "'" + str(value).replace("'", "''") + "'"


class PowerShellRunner:
    """Runs PowerShell scripts through powershell.exe."""

    BASE_ARGS = ['-NoProfile', '-NonInteractive', '-ExecutionPolicy', 'Bypass']

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize runner."""
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        self.powershell_path = self.config.get('powershell_path', 'powershell.exe')
        self.default_timeout = self.config.get('timeout', 300)

    def build_command(self, script: str) -> List[str]:
        return [self.powershell_path] + self.BASE_ARGS + ['-EncodedCommand', encode_command(script)]

    def run(self, script: str, timeout: Optional[int] = None,
            input_text: Optional[str] = None) -> str:
        """Run a script and return its stdout.

        ``input_text`` is written to the child's stdin, which keeps secrets
        off the command line.
        """
        timeout = timeout or self.default_timeout
        command = self.build_command(script)

        self.logger.debug(f"Running PowerShell script ({len(script)} chars, timeout {timeout}s)")

        try:
            result = subprocess.run(
                command,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            raise PowerShellError(f"PowerShell timed out after {timeout}s")
        except OSError as e:
            raise PowerShellError(f"Failed to start {self.powershell_path}: {e}")

        if result.returncode != 0:
            stderr = (result.stderr or '').strip()
            raise PowerShellError(
                f"PowerShell exited with code {result.returncode}: {stderr}",
                returncode=result.returncode,
                stderr=stderr
            )

        return result.stdout or ''
