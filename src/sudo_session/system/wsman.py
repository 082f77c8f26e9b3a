#!/usr/bin/env python3
"""
WSMan Configurator - Reads and changes WinRM/WSMan settings.

The PowerShell snippets built here are shared with the restore script
renderer so that the in-process and scripted paths do the same thing.
"""

import logging
from typing import Dict, Any, Optional

from .powershell import PowerShellRunner, quote
from ..errors import PowerShellError, ServiceError


CREDSSP_PATHS = {
    'server': r'WSMan:\localhost\Service\Auth\CredSSP',
    'client': r'WSMan:\localhost\Client\Auth\CredSSP',
}

LISTENER_PATH = r'WSMan:\localhost\Listener'

# psutil start types -> Set-Service -StartupType values
STARTUP_TYPES = {
    'automatic': 'Automatic',
    'auto': 'Automatic',
    'manual': 'Manual',
    'disabled': 'Disabled',
}


def credssp_path(role: str) -> str:
    if role not in CREDSSP_PATHS:
        raise ValueError(f"Unknown CredSSP role: {role}")
    return CREDSSP_PATHS[role]


def startup_type(value: Optional[str]) -> str:
    """Map a recorded start type onto a Set-Service value, defaulting to Manual."""
    return STARTUP_TYPES.get((value or '').lower(), 'Manual')


def get_credssp_snippet(role: str) -> str:
    return f"(Get-Item -Path {quote(credssp_path(role))}).Value"


def set_credssp_snippet(role: str, enabled: bool) -> str:
    value = '$true' if enabled else '$false'
    return f"Set-Item -Path {quote(credssp_path(role))} -Value {value} -Force"


def disable_credssp_if_enabled_snippet(role: str) -> str:
    return (f"if (({get_credssp_snippet(role)}) -eq 'true') "
            f"{{ {set_credssp_snippet(role, False)} }}")


def remoting_enabled_snippet() -> str:
    return (
        "$svc = Get-Service -Name WinRM -ErrorAction SilentlyContinue; "
        "if ($svc -and $svc.Status -eq 'Running' -and "
        f"@(Get-ChildItem -Path {quote(LISTENER_PATH)} -ErrorAction SilentlyContinue).Count -gt 0) "
        "{ 'true' } else { 'false' }"
    )


def enable_remoting_snippet() -> str:
    return "Enable-PSRemoting -Force -SkipNetworkProfileCheck | Out-Null"


def disable_remoting_snippet(startup: Optional[str]) -> str:
    """Undo Enable-PSRemoting: drop the endpoints and listeners and stop WinRM."""
    return "; ".join([
        "$svc = Get-Service -Name WinRM -ErrorAction SilentlyContinue",
        "if ($svc -and $svc.Status -eq 'Running') { "
        "Disable-PSRemoting -Force -WarningAction SilentlyContinue; "
        f"Get-ChildItem -Path {quote(LISTENER_PATH)} | Remove-Item -Recurse -Force; "
        "Stop-Service -Name WinRM -Force }",
        f"if ($svc) {{ Set-Service -Name WinRM -StartupType {startup_type(startup)} }}",
    ])


class WSManConfigurator:
    """Applies WSMan and WinRM changes through PowerShell."""

    def __init__(self, runner: Optional[PowerShellRunner] = None, host_detector=None):
        """Initialize configurator."""
        self.runner = runner or PowerShellRunner()
        self.host_detector = host_detector
        self.logger = logging.getLogger(__name__)

    def _run(self, script: str, action: str) -> str:
        try:
            return self.runner.run(script)
        except PowerShellError as e:
            raise ServiceError(f"Failed to {action}: {e}")

    def get_credssp(self, role: str) -> bool:
        """Return whether CredSSP auth is enabled for the server or client role."""
        output = self._run(get_credssp_snippet(role), f"read {role} CredSSP setting")
        return output.strip().lower() == 'true'

    def set_credssp(self, role: str, enabled: bool) -> None:
        self.logger.info(f"Setting {role} CredSSP authentication to {enabled}")
        self._run(set_credssp_snippet(role, enabled), f"set {role} CredSSP setting")

    def remoting_enabled(self) -> bool:
        """Check that WinRM is running and has at least one listener."""
        output = self._run(remoting_enabled_snippet(), "check PowerShell remoting state")
        return output.strip().lower() == 'true'

    def get_winrm_startup(self) -> str:
        """Return the WinRM start type ('manual' when unknown)."""
        info = self.host_detector.winrm_service_info() if self.host_detector else None
        if not info or info.get('start_type') not in STARTUP_TYPES:
            return 'manual'
        return info['start_type']

    def enable_remoting(self) -> None:
        self.logger.info("Enabling PowerShell remoting")
        self._run(enable_remoting_snippet(), "enable PowerShell remoting")

    def disable_remoting(self, startup: Optional[str] = 'manual') -> None:
        self.logger.info(f"Disabling PowerShell remoting (WinRM start type -> {startup_type(startup)})")
        self._run(disable_remoting_snippet(startup), "disable PowerShell remoting")

    def get_state(self) -> Dict[str, Any]:
        """Collect current WSMan state for status reporting."""
        state: Dict[str, Any] = {}
        try:
            state['remoting_enabled'] = self.remoting_enabled()
            state['server_credssp'] = self.get_credssp('server')
            state['client_credssp'] = self.get_credssp('client')
        except ServiceError as e:
            self.logger.warning(f"Could not read WSMan state: {e}")
            state['error'] = str(e)
        return state
