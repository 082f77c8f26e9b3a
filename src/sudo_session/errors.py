#!/usr/bin/env python3
"""
Exception hierarchy for SudoSession.
"""

from typing import Optional


class SudoSessionError(RuntimeError):
    """Base exception for all SudoSession failures."""


class ConfigError(SudoSessionError):
    """Raised when the configuration file cannot be parsed."""


class ChangeLogError(SudoSessionError):
    """Raised when a change-log is missing or unreadable."""


class PowerShellError(SudoSessionError):
    """Raised when a PowerShell invocation fails or times out."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class RegistryError(SudoSessionError):
    """Raised for registry access failures."""


class ServiceError(SudoSessionError):
    """Raised when a WinRM/WSMan setting or service operation fails."""


class SetupError(SudoSessionError):
    """Raised when applying the session configuration fails part way.

    ``changelog`` holds whatever was changed before the failure.
    """

    def __init__(self, message: str, changelog=None):
        super().__init__(message)
        self.changelog = changelog


class RestoreError(SudoSessionError):
    """Raised when a restore stops on its first failed step.

    ``result`` lists the steps that were undone before the failure.
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class ElevationError(SudoSessionError):
    """Raised when an elevated child process cannot be run."""


class SessionError(SudoSessionError):
    """Raised for sudo session transport or invocation failures."""
