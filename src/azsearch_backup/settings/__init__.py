"""Public interface for backup/restore configuration settings."""

from .config import ENV_VAR_NAME, PROJECT_ROOT, ConfigurationError, Settings, get_settings, reload_settings

__all__ = [
    "ConfigurationError",
    "Settings",
    "get_settings",
    "reload_settings",
    "PROJECT_ROOT",
    "ENV_VAR_NAME",
]
