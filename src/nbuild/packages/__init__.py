"""Prebuilt artifact management for nbuild.

This module handles resolving, downloading, caching and installing the
prebuilt host binaries nbuild depends on.
"""

from .cache import ArtifactCache
from .downloader import PackageDownloader
from .manifest import ArtifactDescriptor, ArtifactManifest, ManifestEntry
from .prebuilts import PREBUILT_NAMES, detect_host_platform, install_prebuilts, resolve_prebuilts
from .store import ArtifactStoreClient

__all__ = [
    "ArtifactCache",
    "ArtifactDescriptor",
    "ArtifactManifest",
    "ArtifactStoreClient",
    "ManifestEntry",
    "PackageDownloader",
    "PREBUILT_NAMES",
    "detect_host_platform",
    "install_prebuilts",
    "resolve_prebuilts",
]
