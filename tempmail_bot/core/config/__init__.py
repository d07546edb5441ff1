"""Configuration management."""

from .settings import TempMailSettings, get_settings, reset_settings

__all__ = ["TempMailSettings", "get_settings", "reset_settings"]
