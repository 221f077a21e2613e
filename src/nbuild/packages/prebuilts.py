"""Prebuilt host binaries (api-daemon, b2ghald, appscmd).

Prebuilts are resolved for the host platform from the prebuilts manifest,
fetched through the artifact store and installed into
``<output_root>/prebuilts/<name>``.

Supported host platforms:
    - linux-x86_64, linux-aarch64, linux-armhf
    - macos-x86_64, macos-arm64
"""

import logging
import platform
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from nbuild.build.build_utils import make_executable, safe_rmtree
from nbuild.errors import ConfigurationError, FileSystemError
from nbuild.packages.downloader import PackageDownloader
from nbuild.packages.manifest import ArtifactDescriptor
from nbuild.packages.store import ArtifactStoreClient

logger = logging.getLogger(__name__)

PREBUILT_NAMES = ["api-daemon", "b2ghald", "appscmd"]

ARCHIVE_SUFFIXES = (".zip", ".tar.gz", ".tar.bz2", ".tar.xz", ".tgz")


def detect_host_platform(system: Optional[str] = None, machine: Optional[str] = None) -> str:
    """Detect the host platform identifier used in the prebuilts manifest.

    Raises:
        ConfigurationError: If the host platform is unsupported
    """
    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()

    if system == "linux":
        if "aarch64" in machine or "arm64" in machine:
            return "linux-aarch64"
        elif "arm" in machine:
            return "linux-armhf"
        elif machine in ("x86_64", "amd64"):
            return "linux-x86_64"
    elif system == "darwin":
        if "arm64" in machine or "aarch64" in machine:
            return "macos-arm64"
        return "macos-x86_64"
    raise ConfigurationError([f"unsupported host platform: {system} {machine}"])


def resolve_prebuilts(store: ArtifactStoreClient, host_platform: str, names: Optional[List[str]] = None) -> List[ArtifactDescriptor]:
    """Resolve the latest version of every prebuilt for host_platform."""
    return [store.resolve(name, None, host_platform) for name in (names or PREBUILT_NAMES)]


def install_prebuilt(artifact: Path, target_dir: Path, downloader: Optional[PackageDownloader] = None) -> Path:
    """Install a fetched artifact into target_dir, replacing its content.

    Archives are extracted; a plain file is copied and made executable.

    Raises:
        FileSystemError: If installation fails
    """
    downloader = downloader or PackageDownloader()
    try:
        safe_rmtree(target_dir)
        if artifact.name.endswith(ARCHIVE_SUFFIXES):
            downloader.extract_archive(artifact, target_dir, show_progress=False)
        else:
            target_dir.mkdir(parents=True, exist_ok=True)
            installed = target_dir / artifact.name
            shutil.copy2(artifact, installed)
            make_executable(installed)
    except OSError as e:
        raise FileSystemError(f"Failed to install {artifact.name} into {target_dir}: {e}") from e
    logger.info(f"Installed {artifact.name} into {target_dir}")
    return target_dir


def install_prebuilts(fetched: Dict[str, Path], prebuilts_dir: Path, downloader: Optional[PackageDownloader] = None) -> Dict[str, Path]:
    """Install fetched prebuilts, one directory per name."""
    return {name: install_prebuilt(path, prebuilts_dir / name, downloader) for name, path in sorted(fetched.items())}
