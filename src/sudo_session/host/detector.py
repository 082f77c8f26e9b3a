#!/usr/bin/env python3
"""
Host Detector - Detects the local Windows host and the privilege level of
the current process.
"""

import os
import sys
import ctypes
import shutil
import socket
import getpass
import logging
import platform
import psutil
from typing import Dict, Optional, Any


class HostDetector:
    """Detects host information and the elevation state of this process."""

    WINRM_SERVICE = 'WinRM'

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize host detector."""
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        # Cached detection result
        self._cached_info: Optional[Dict[str, str]] = None

        self.logger.debug("Host detector initialized")

    def detect(self) -> Dict[str, str]:
        """Detect the local host."""
        if self._cached_info:
            return self._cached_info

        hostname = socket.gethostname()
        try:
            fqdn = socket.getfqdn() or hostname
        except OSError:
            fqdn = hostname

        self._cached_info = {
            'hostname': hostname,
            'fqdn': fqdn,
            'system': platform.system(),
            'version': platform.version(),
            'release': platform.release(),
            'powershell_path': self._find_powershell(),
            'username': self._current_username()
        }

        self.logger.debug(f"Detected host: {self._cached_info}")
        return self._cached_info

    def _find_powershell(self) -> str:
        """Locate Windows PowerShell, falling back to the configured name."""
        configured = self.config.get('powershell_path', 'powershell.exe')
        found = shutil.which(configured)
        if found:
            return found

        system_root = os.environ.get('SystemRoot', r'C:\Windows')
        candidate = os.path.join(system_root, 'System32', 'WindowsPowerShell', 'v1.0', 'powershell.exe')
        if os.path.exists(candidate):
            return candidate

        return configured

    def _current_username(self) -> str:
        try:
            return getpass.getuser()
        except Exception:
            return os.environ.get('USERNAME', 'unknown')

    def is_windows(self) -> bool:
        return sys.platform == 'win32'

    def is_elevated(self) -> bool:
        """Determine whether the current process token has administrative rights."""
        if not self.is_windows():
            return False

        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except Exception as e:
            self.logger.debug(f"IsUserAnAdmin check failed: {e}")
            return False

    def winrm_service_info(self) -> Optional[Dict[str, str]]:
        """Return status and start type of the WinRM service, if it exists."""
        if not hasattr(psutil, 'win_service_get'):
            return None

        try:
            service = psutil.win_service_get(self.WINRM_SERVICE)
            info = service.as_dict()
        except psutil.NoSuchProcess:
            self.logger.warning("WinRM service is not installed")
            return None
        except (psutil.AccessDenied, OSError) as e:
            self.logger.warning(f"Cannot query WinRM service: {e}")
            return None

        return {
            'name': info.get('name', self.WINRM_SERVICE),
            'status': info.get('status', 'unknown'),
            'start_type': info.get('start_type', 'unknown')
        }

    def get_status_info(self) -> Dict[str, Any]:
        """Collect a summary used by the CLI status command."""
        info = dict(self.detect())
        info['elevated'] = self.is_elevated()
        info['winrm'] = self.winrm_service_info()
        return info
