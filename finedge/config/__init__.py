"""Configuration package."""

from finedge.config.settings import (
    AppSettings,
    LimitsSettings,
    MongoSettings,
    SecuritySettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "LimitsSettings",
    "MongoSettings",
    "SecuritySettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
