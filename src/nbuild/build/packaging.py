"""Packaging backends.

This module defines the interface for output formats and its two variants:

- RawInstallBackend: lays the build out as a directory tree, the way it is
  installed on a device (packaged apps, api-daemon and its config)
- NativePackageBackend: wraps a raw install tree into a Debian package
  (desktop only)

The backend is chosen from the configuration with :func:`create_backend`.
"""

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from nbuild import __version__
from nbuild.build.apps import APP_MANIFEST, PACKAGE_NAME, WEBAPPS_MANIFEST, AppPackager, LocalApp, discover_apps
from nbuild.build.build_utils import copy_tree, safe_rmtree
from nbuild.config.build_config import BuildConfig, BuildProfile, DeviceType, PackageFormat
from nbuild.config.daemon_config import write_daemon_config
from nbuild.errors import BuildError, ConfigurationError, ErrorKind, FileSystemError

logger = logging.getLogger(__name__)

DEB_INSTALL_PREFIX = Path("/opt/b2gos")
DEB_DAEMON_PORT = 8081
DEB_PACKAGE_NAME = "b2gos"


@dataclass
class Package:
    """A build output ready for deployment.

    Attributes:
        format: Output format
        output_path: Root of the install tree
        apps: Packaged apps by id
        artifact: The installable file, for formats that produce one
        unpacked: Apps are linked from their sources instead of zipped
    """

    format: PackageFormat
    output_path: Path
    apps: Dict[str, LocalApp] = field(default_factory=dict)
    artifact: Optional[Path] = None
    unpacked: bool = False

    @property
    def webapps_dir(self) -> Path:
        return self.output_path / "webapps"

    def required_files(self) -> List[Path]:
        """Files that must exist for the package to be complete."""
        files = [self.webapps_dir / WEBAPPS_MANIFEST, self.output_path / "api-daemon" / "config.toml"]
        app_file = APP_MANIFEST if self.unpacked else PACKAGE_NAME
        files += [self.webapps_dir / app_id / app_file for app_id in sorted(self.apps)]
        if self.artifact is not None:
            files.append(self.artifact)
        return files


class PackagingBackend(ABC):
    """Interface for output formats."""

    format: PackageFormat

    @abstractmethod
    def build(self, config: BuildConfig, output_dir: Path) -> Package:
        """Produce a package from the configured sources.

        Raises:
            BuildError: BUILD_TOOL_MISSING or BUILD_FAILED
            FileSystemError: If writing the output fails
        """
        pass

    def validate(self, package: Package) -> None:
        """Check the package is structurally complete.

        Raises:
            BuildError: INVALID_PACKAGE listing every missing file
        """
        missing = [str(p) for p in package.required_files() if not p.is_file()]
        if missing:
            raise BuildError(ErrorKind.INVALID_PACKAGE, f"Package in {package.output_path} is incomplete, missing: {', '.join(missing)}")


class RawInstallBackend(PackagingBackend):
    """Lays out the build as an installed directory tree."""

    format = PackageFormat.RAW

    def __init__(
        self,
        packager: Optional[AppPackager] = None,
        runtime_root: Optional[Path] = None,
        unpacked_apps: Optional[bool] = None,
    ):
        """Initialize backend.

        Args:
            packager: App packager (a default one if None)
            runtime_root: Where the tree will live when it runs (default: the output dir)
            unpacked_apps: Link apps from their sources instead of zipping them
                (default: only for the dev profile)
        """
        self.packager = packager or AppPackager()
        self.runtime_root = runtime_root
        self.unpacked_apps = unpacked_apps

    def build(self, config: BuildConfig, output_dir: Path) -> Package:
        output_dir = Path(output_dir)
        apps = discover_apps(config.apps_root)
        unpacked = self.unpacked_apps if self.unpacked_apps is not None else config.profile == BuildProfile.DEV
        if unpacked:
            logger.info(f"Linking {len(apps)} apps from {config.apps_root} into {output_dir}")
            packaged = self.packager.link(apps, output_dir / "webapps")
        else:
            logger.info(f"Packaging {len(apps)} apps from {config.apps_root} into {output_dir}")
            packaged = self.packager.package(apps, output_dir / "webapps")

        if config.api_daemon_root.is_dir():
            try:
                copy_tree(config.api_daemon_root, output_dir / "api-daemon")
            except (OSError, shutil.Error) as e:
                raise FileSystemError(f"Failed to copy api-daemon from {config.api_daemon_root}: {e}") from e
        else:
            logger.warning(f"api-daemon not found in {config.api_daemon_root}, run 'nbuild update-prebuilts'")

        # after the copy: prebuilts may ship their own config.toml
        write_daemon_config(config, output_dir, self.runtime_root)

        return Package(format=self.format, output_path=output_dir, apps=packaged, unpacked=unpacked)


def _control_file(version: str, architecture: str) -> str:
    return (
        f"Package: {DEB_PACKAGE_NAME}\n"
        f"Version: {version}\n"
        f"Architecture: {architecture}\n"
        "Maintainer: nbuild\n"
        "Section: misc\n"
        "Priority: optional\n"
        "Description: b2gos desktop runtime and web apps\n"
    )


class NativePackageBackend(PackagingBackend):
    """Builds a Debian package around a raw install tree."""

    format = PackageFormat.DEB

    def __init__(self, packager: Optional[AppPackager] = None, architecture: str = "amd64", version: str = __version__):
        self.packager = packager
        self.architecture = architecture
        self.version = version

    def build(self, config: BuildConfig, output_dir: Path) -> Package:
        if config.device_type != DeviceType.DESKTOP:
            raise ConfigurationError([f"debian packages can only be built for 'desktop', not '{config.device_type.value}'"])

        dpkg_deb = shutil.which("dpkg-deb")
        if dpkg_deb is None:
            raise BuildError(ErrorKind.BUILD_TOOL_MISSING, "dpkg-deb not found, install the dpkg package")

        output_dir = Path(output_dir)
        staging = output_dir / "debian"
        install_root = staging / DEB_INSTALL_PREFIX.relative_to("/")
        try:
            safe_rmtree(staging)
        except OSError as e:
            raise FileSystemError(str(e)) from e

        deb_config = config.derive(daemon_port=DEB_DAEMON_PORT, output_path=install_root)
        raw = RawInstallBackend(self.packager, runtime_root=DEB_INSTALL_PREFIX, unpacked_apps=False).build(deb_config, install_root)

        control = staging / "DEBIAN" / "control"
        try:
            control.parent.mkdir(parents=True, exist_ok=True)
            control.write_text(_control_file(self.version, self.architecture), encoding="utf-8")
        except OSError as e:
            raise FileSystemError(f"Failed to write {control}: {e}") from e

        artifact = output_dir / f"{DEB_PACKAGE_NAME}_{self.version}_{self.architecture}.deb"
        cmd = [dpkg_deb, "--root-owner-group", "--build", str(staging), str(artifact)]
        logger.info(f"Running: {' '.join(cmd)}")
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise BuildError(ErrorKind.BUILD_FAILED, f"dpkg-deb failed: {(result.stderr or result.stdout).strip()}")

        return Package(format=self.format, output_path=install_root, apps=raw.apps, artifact=artifact)


def create_backend(config: BuildConfig, packager: Optional[AppPackager] = None) -> PackagingBackend:
    """Select the backend matching config.package_format."""
    if config.package_format == PackageFormat.DEB:
        return NativePackageBackend(packager)
    return RawInstallBackend(packager)
