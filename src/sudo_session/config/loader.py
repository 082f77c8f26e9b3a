#!/usr/bin/env python3
"""
Configuration loading and logging setup for SudoSession.
"""

import os
import sys
import copy
import logging
import yaml
from typing import Dict, Any, Optional

from ..errors import ConfigError


DEFAULT_CONFIG_PATH = os.path.join(
    os.environ.get('PROGRAMDATA', r'C:\ProgramData'), 'SudoSession', 'config.yaml'
)


def get_default_config() -> Dict[str, Any]:
    """Return default configuration."""
    return {
        'global': {
            'log_level': 'INFO',
            'log_file': r'%PROGRAMDATA%\SudoSession\sudo-session.log'
        },
        'changelog': {
            'location': r'%PROGRAMDATA%\SudoSession\changelogs',
            'max_changelogs': 20
        },
        'session': {
            'port': 5985,
            'ssl': False,
            'auth': 'credssp',
            'cert_validation': False,
            'connection_timeout': 30,
            'operation_timeout': 20
        },
        'elevation': {
            'powershell_path': 'powershell.exe',
            'timeout': 300,
            'python_executable': None
        },
        'setup': {
            'delegate_computers': []
        }
    }


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _expand_paths(config: Dict[str, Any]) -> Dict[str, Any]:
    """Expand environment variables in the path settings."""
    config['global']['log_file'] = os.path.expandvars(config['global']['log_file'])
    config['changelog']['location'] = os.path.expandvars(config['changelog']['location'])
    return config


def load_config(config_path: Optional[str] = None, create: bool = True) -> Dict[str, Any]:
    """Load configuration from YAML file, falling back to the defaults.

    When the file does not exist and ``create`` is set, the defaults are
    written out so they can be edited later.
    """
    config_path = config_path or DEFAULT_CONFIG_PATH
    defaults = get_default_config()

    try:
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except FileNotFoundError:
        if create:
            _create_default_config_file(config_path, defaults)
        return _expand_paths(defaults)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing configuration file {config_path}: {e}")

    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    return _expand_paths(_merge(defaults, loaded))


def _create_default_config_file(config_path: str, config: Dict[str, Any]) -> None:
    """Create default configuration file."""
    logger = logging.getLogger(__name__)
    try:
        config_dir = os.path.dirname(config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        with open(config_path, 'w') as f:
            yaml.dump(config, f, default_flow_style=False, indent=2)
    except OSError as e:
        # Read-only locations are fine, the defaults are still used
        logger.debug(f"Could not write default configuration to {config_path}: {e}")


def setup_logging(config: Dict[str, Any], verbose: bool = False) -> logging.Logger:
    """Setup logging configuration."""
    level_name = 'DEBUG' if verbose else config['global'].get('log_level', 'INFO')
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    log_file = config['global'].get('log_file')

    handlers = [logging.StreamHandler(sys.stderr)]
    file_error = None
    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            file_error = e

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    logger = logging.getLogger('sudo_session')
    if file_error:
        logger.warning(f"Logging to console only, cannot open {log_file}: {file_error}")
    return logger
