"""PowerShell, registry and WSMan primitives."""

from .powershell import PowerShellRunner, encode_command, quote
from .registry import RegistryEditor, normalize_key, parse_key
from .wsman import WSManConfigurator

__all__ = [
    "PowerShellRunner",
    "RegistryEditor",
    "WSManConfigurator",
    "encode_command",
    "normalize_key",
    "parse_key",
    "quote",
]
