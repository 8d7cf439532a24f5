"""Configuration package."""

from .settings import (
    AppSettings,
    BackendSettings,
    StreamSettings,
    PrivacySettings,
    get_settings,
    reload_settings,
)

__all__ = [
    "AppSettings",
    "BackendSettings",
    "StreamSettings",
    "PrivacySettings",
    "get_settings",
    "reload_settings",
]
