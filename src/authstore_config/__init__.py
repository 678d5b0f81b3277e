"""Shared configuration package."""

from .settings import (
    BackendName,
    Settings,
    clear_settings_cache,
    get_config_dir,
    get_settings,
    redact_url,
)

__all__ = [
    "BackendName",
    "Settings",
    "clear_settings_cache",
    "get_config_dir",
    "get_settings",
    "redact_url",
]
