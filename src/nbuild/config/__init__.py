"""
Configuration for nbuild.

This module resolves the per-invocation build configuration and renders the
api-daemon configuration file.
"""

from .build_config import (
    BuildConfig,
    BuildConfigResolver,
    BuildProfile,
    ConfigOverrides,
    DeviceType,
    PackageFormat,
    parse_screen_size,
    validate_config,
)
from .daemon_config import render_daemon_config, write_daemon_config

__all__ = [
    "BuildConfig",
    "BuildConfigResolver",
    "BuildProfile",
    "ConfigOverrides",
    "DeviceType",
    "PackageFormat",
    "parse_screen_size",
    "validate_config",
    "render_daemon_config",
    "write_daemon_config",
]
