"""
Core configuration module for the Pathfinder project.

Provides centralized configuration management with support for directory paths, queue and routing settings,
environment variable overrides and INI defaults.
"""

from pathfinder.core.config.config import Config, CoreConfig, CoreSettings, SettingsLike, get_config

__all__ = ["Config", "CoreConfig", "CoreSettings", "SettingsLike", "get_config"]
