"""
SudoSession - Elevated local PowerShell remoting sessions for Windows.

Temporarily reconfigures WinRM/WSMan, CredSSP and the credential delegation
policy so a non-elevated user can run commands with administrator rights,
records every change, and reverts exactly those changes afterwards.
"""

__version__ = "1.0.0"

from .changelog.manager import ChangeLog, ChangeLogManager
from .restore.engine import RestoreEngine, RestoreResult
from .session.manager import Credentials, SudoSession, SudoSessionManager

__all__ = [
    "ChangeLog",
    "ChangeLogManager",
    "Credentials",
    "RestoreEngine",
    "RestoreResult",
    "SudoSession",
    "SudoSessionManager"
]
