"""Configuration module for loading and managing listener settings"""
from typing import Dict, Any, Optional

from .lib.load_settings_conf import (
    Collection,
    DEFAULT_COLLECTIONS,
    SettingsError,
    load_settings_conf,
    validate_settings,
)

__all__ = [
    'Collection',
    'DEFAULT_COLLECTIONS',
    'SettingsError',
    'load_config',
    'load_settings_conf',
    'validate_settings',
]


def load_config(settings_path: Optional[str] = None) -> Dict[str, Any]:
    """Load and validate configuration.

    Args:
        settings_path: Optional directory containing settings.conf. If not provided,
                    will look in the current directory.

    Returns:
        Validated settings dictionary

    Raises:
        SettingsError: If a required credential is missing or a value is invalid
    """
    return validate_settings(load_settings_conf(settings_path or '.'))
