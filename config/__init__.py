"""
Configuration module for ivfflat.

This module provides configuration management including
loading settings from YAML files and environment variables.

Example:
    >>> from config import Settings, load_config
    >>> 
    >>> # Load default config
    >>> settings = load_config()
    >>> 
    >>> # Access settings
    >>> print(settings.dimension)
    >>> print(settings.build.cluster_count)
"""

from .settings import (
    Settings,
    LayoutConfig,
    BuildConfig,
    SearchConfig,
    load_config,
    save_config,
    get_default_config_path,
)

__all__ = [
    "Settings",
    "LayoutConfig",
    "BuildConfig",
    "SearchConfig",
    "load_config",
    "save_config",
    "get_default_config_path",
]
