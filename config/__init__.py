"""Configuration module for loading and managing application settings"""
from typing import Dict, Any
from .lib.load_settings_conf import load_settings_conf, validate_settings, SettingsError
from .lib.load_policy_conf import load_policy_conf, PolicyError

__all__ = [
    'settings_conf',
    'load_settings_conf',
    'validate_settings',
    'load_policy_conf',
    'SettingsError',
    'PolicyError',
]

try:
    settings_conf: Dict[str, Any] = load_settings_conf()
    
except SettingsError as e:
    # Re-raise the error but provide more context
    raise SettingsError(
        f"Configuration Error\n"
        "=================\n\n"
        f"{str(e)}\n\n"
        "Please ensure settings.conf is properly configured.\n"
        "See settings.conf.example for the accepted keys."
    )
