"""Configuration package."""

from pocket.config.settings import (
    AppSettings,
    CloudinarySettings,
    GeminiSettings,
    GoogleSheetsSettings,
    MindeeSettings,
    PluggySettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CloudinarySettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "MindeeSettings",
    "PluggySettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
