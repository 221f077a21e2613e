"""
Build output components for nbuild.

This module provides:
- App discovery and packaging (application.zip, webapps.json)
- Packaging backends (raw install tree, Debian package)
"""

from .apps import AppPackager, LocalApp, discover_apps, load_packaged_apps
from .packaging import (
    NativePackageBackend,
    Package,
    PackagingBackend,
    RawInstallBackend,
    create_backend,
)

__all__ = [
    "AppPackager",
    "LocalApp",
    "discover_apps",
    "load_packaged_apps",
    "NativePackageBackend",
    "Package",
    "PackagingBackend",
    "RawInstallBackend",
    "create_backend",
]
