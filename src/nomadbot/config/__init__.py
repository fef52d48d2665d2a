"""
config/ — Runtime settings.

    from nomadbot.config import load_settings, Settings, ConfigError
"""

from nomadbot.config.settings import ConfigError, Settings, get_settings, load_settings

__all__ = ["Settings", "ConfigError", "load_settings", "get_settings"]
