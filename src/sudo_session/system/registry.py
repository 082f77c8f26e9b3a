#!/usr/bin/env python3
"""
Registry Editor - Thin wrapper over winreg for the keys SudoSession touches.

Keys are addressed by full path, e.g.
``HKEY_LOCAL_MACHINE\\SOFTWARE\\Policies\\Microsoft\\Windows\\CredentialsDelegation``.
"""

import logging
from typing import Dict, Any, Optional, Tuple

try:
    import winreg
except ImportError:  # not on Windows
    winreg = None

from ..errors import RegistryError


HIVE_ALIASES = {
    'HKLM': 'HKEY_LOCAL_MACHINE',
    'HKEY_LOCAL_MACHINE': 'HKEY_LOCAL_MACHINE',
    'HKCU': 'HKEY_CURRENT_USER',
    'HKEY_CURRENT_USER': 'HKEY_CURRENT_USER',
    'HKU': 'HKEY_USERS',
    'HKEY_USERS': 'HKEY_USERS',
}


def parse_key(path: str) -> Tuple[str, str]:
    """Split a full key path into canonical hive name and subkey.

    Accepts short hive names, PowerShell drive form (``HKLM:\\...``) and
    the ``Registry::`` provider prefix.
    """
    cleaned = path.strip()
    if cleaned.lower().startswith('registry::'):
        cleaned = cleaned[len('registry::'):]

    hive, _, subkey = cleaned.replace('/', '\\').partition('\\')
    hive = hive.rstrip(':').upper()

    if hive not in HIVE_ALIASES:
        raise RegistryError(f"Unsupported registry hive in {path!r}")

    subkey = subkey.strip('\\')
    if not subkey:
        raise RegistryError(f"Refusing to operate on a hive root: {path!r}")

    return HIVE_ALIASES[hive], subkey


def normalize_key(path: str) -> str:
    """Return the canonical ``HKEY_...\\subkey`` form of a key path."""
    hive, subkey = parse_key(path)
    return f"{hive}\\{subkey}"


class RegistryEditor:
    """Creates and removes registry keys and values."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def _require_winreg(self):
        if winreg is None:
            raise RegistryError("The Windows registry is not available on this platform")
        return winreg

    def _hive(self, hive_name: str):
        reg = self._require_winreg()
        return getattr(reg, hive_name)

    def key_exists(self, path: str) -> bool:
        hive_name, subkey = parse_key(path)
        reg = self._require_winreg()
        try:
            key = reg.OpenKey(self._hive(hive_name), subkey, 0, reg.KEY_READ)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise RegistryError(f"Failed to open {path}: {e}")
        reg.CloseKey(key)
        return True

    def create_key(self, path: str) -> bool:
        """Create a key. Returns True if it did not exist before."""
        if self.key_exists(path):
            return False

        hive_name, subkey = parse_key(path)
        reg = self._require_winreg()
        try:
            key = reg.CreateKeyEx(self._hive(hive_name), subkey, 0, reg.KEY_WRITE)
            reg.CloseKey(key)
        except OSError as e:
            raise RegistryError(f"Failed to create {path}: {e}")

        self.logger.debug(f"Created registry key {path}")
        return True

    def delete_key_tree(self, path: str) -> bool:
        """Delete a key and all its subkeys. Returns False if it was absent."""
        if not self.key_exists(path):
            return False

        hive_name, subkey = parse_key(path)
        reg = self._require_winreg()
        hive = self._hive(hive_name)

        try:
            key = reg.OpenKey(hive, subkey, 0, reg.KEY_ALL_ACCESS)
            try:
                while True:
                    try:
                        child = reg.EnumKey(key, 0)
                    except OSError:
                        break
                    self.delete_key_tree(f"{hive_name}\\{subkey}\\{child}")
            finally:
                reg.CloseKey(key)
            reg.DeleteKey(hive, subkey)
        except OSError as e:
            raise RegistryError(f"Failed to delete {path}: {e}")

        self.logger.debug(f"Deleted registry key {path}")
        return True

    def get_value(self, path: str, name: str) -> Optional[Any]:
        """Return the data of a value, or None when the key or value is absent."""
        hive_name, subkey = parse_key(path)
        reg = self._require_winreg()
        try:
            key = reg.OpenKey(self._hive(hive_name), subkey, 0, reg.KEY_READ)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise RegistryError(f"Failed to open {path}: {e}")

        try:
            data, _ = reg.QueryValueEx(key, name)
            return data
        except FileNotFoundError:
            return None
        except OSError as e:
            raise RegistryError(f"Failed to read {path}\\{name}: {e}")
        finally:
            reg.CloseKey(key)

    def value_exists(self, path: str, name: str) -> bool:
        return self.get_value(path, name) is not None

    def list_values(self, path: str) -> Dict[str, Any]:
        """Return all values of a key as a name -> data mapping."""
        hive_name, subkey = parse_key(path)
        reg = self._require_winreg()
        values: Dict[str, Any] = {}
        try:
            key = reg.OpenKey(self._hive(hive_name), subkey, 0, reg.KEY_READ)
        except FileNotFoundError:
            return values
        except OSError as e:
            raise RegistryError(f"Failed to open {path}: {e}")

        try:
            index = 0
            while True:
                try:
                    name, data, _ = reg.EnumValue(key, index)
                except OSError:
                    break
                values[name] = data
                index += 1
        finally:
            reg.CloseKey(key)

        return values

    def set_value(self, path: str, name: str, data: Any, value_type: str = 'REG_SZ') -> None:
        hive_name, subkey = parse_key(path)
        reg = self._require_winreg()
        try:
            key = reg.CreateKeyEx(self._hive(hive_name), subkey, 0, reg.KEY_SET_VALUE)
            try:
                reg.SetValueEx(key, name, 0, getattr(reg, value_type), data)
            finally:
                reg.CloseKey(key)
        except OSError as e:
            raise RegistryError(f"Failed to set {path}\\{name}: {e}")

        self.logger.debug(f"Set registry value {path}\\{name} = {data!r}")

    def delete_value(self, path: str, name: str) -> bool:
        """Delete a value. Returns False if the key or value was absent."""
        hive_name, subkey = parse_key(path)
        reg = self._require_winreg()
        try:
            key = reg.OpenKey(self._hive(hive_name), subkey, 0, reg.KEY_SET_VALUE)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise RegistryError(f"Failed to open {path}: {e}")

        try:
            reg.DeleteValue(key, name)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise RegistryError(f"Failed to delete {path}\\{name}: {e}")
        finally:
            reg.CloseKey(key)

        self.logger.debug(f"Deleted registry value {path}\\{name}")
        return True

