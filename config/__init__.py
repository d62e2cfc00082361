"""Configuration module for loading and managing application settings"""
import os
from typing import Dict, Any

from .lib.load_settings_conf import (
    load_settings_conf,
    validate_settings,
    SettingsError,
    DEFAULTS,
)

__all__ = ['settings_conf', 'load_config', 'SettingsError', 'DEFAULTS']

SETTINGS_DIR_ENV = 'MARKETPLACE_SETTINGS_DIR'


def load_config(settings_path: str = None) -> Dict[str, Any]:
    """Load configuration from settings.conf.

    Args:
        settings_path: Optional directory holding settings.conf. Defaults to
                       $MARKETPLACE_SETTINGS_DIR or the current directory.

    Returns:
        Validated settings dictionary
    """
    path = settings_path or os.environ.get(SETTINGS_DIR_ENV, '.')
    return load_settings_conf(path)


try:
    settings_conf: Dict[str, Any] = load_config()
except SettingsError as e:
    # Re-raise the error but provide more context
    raise type(e)(
        f"Configuration Error\n"
        "=================\n\n"
        f"{str(e)}\n\n"
        "Please ensure settings.conf is properly configured.\n"
        "See settings.conf.example for the available keys."
    )
