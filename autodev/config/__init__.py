"""Configuration module for autodev."""

from autodev.config.settings import Settings, get_settings, load_settings_from_yaml

__all__ = ["Settings", "get_settings", "load_settings_from_yaml"]
