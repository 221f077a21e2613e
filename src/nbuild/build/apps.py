"""Local web app discovery and packaging.

An app is a directory below the apps root holding a ``manifest.webmanifest``.
Packaging zips each app into ``<webapps>/<app>/application.zip`` and lists
the packaged apps in ``<webapps>/webapps.json``.

The build stamp of an app is the newest modification time (whole seconds)
of its source files. The packaged zip gets that stamp as its own mtime, which
``adb push`` carries over to the device, so comparing stamps tells whether
the device copy is outdated.

An app is re-zipped when its newest mtime moved past the packaged stamp or
when its content fingerprint, stored as the zip comment, changed. Deleting
or renaming a file leaves the newest mtime unchanged, so in that case the
stamp is bumped one second past the previous one and the device still sees
a newer package.
"""

import hashlib
import json
import logging
import os
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional

from nbuild.errors import FileSystemError

logger = logging.getLogger(__name__)

APP_MANIFEST = "manifest.webmanifest"
WEBAPPS_MANIFEST = "webapps.json"
PACKAGE_NAME = "application.zip"
FINGERPRINT_PREFIX = b"nbuild-sha256:"


@dataclass(frozen=True)
class LocalApp:
    """An app in the local build output, zipped or linked unpacked."""

    app_id: str
    package_path: Path
    build_stamp: int


def _iter_files(root: Path) -> Iterable[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            if not filename.startswith("."):
                yield Path(dirpath) / filename


def source_stamp(app_dir: Path) -> int:
    """Newest modification time of the app's source files, in whole seconds."""
    stamps = [int(p.stat().st_mtime) for p in _iter_files(app_dir)]
    return max(stamps) if stamps else int(app_dir.stat().st_mtime)


def source_fingerprint(app_dir: Path) -> str:
    """sha256 over the relative path and content of every packaged file."""
    digest = hashlib.sha256()
    for path in _iter_files(app_dir):
        digest.update(path.relative_to(app_dir).as_posix().encode("utf-8"))
        digest.update(b"\0")
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                digest.update(chunk)
        digest.update(b"\0")
    return digest.hexdigest()


def _packaged_fingerprint(package: Path) -> Optional[str]:
    if not package.is_file():
        return None
    try:
        with zipfile.ZipFile(package) as archive:
            comment = archive.comment
    except zipfile.BadZipFile:
        return None
    if not comment.startswith(FINGERPRINT_PREFIX):
        return None
    return comment[len(FINGERPRINT_PREFIX) :].decode("ascii", errors="replace")


def discover_apps(apps_root: Path) -> Dict[str, Path]:
    """Find app source directories.

    Returns:
        Mapping of app id to source directory

    Raises:
        FileSystemError: If apps_root is not a directory
    """
    apps_root = Path(apps_root)
    if not apps_root.is_dir():
        raise FileSystemError(f"Apps root not found: {apps_root}")
    return {
        entry.name: entry
        for entry in sorted(apps_root.iterdir())
        if entry.is_dir() and (entry / APP_MANIFEST).is_file()
    }


def load_packaged_apps(webapps_dir: Path) -> Dict[str, LocalApp]:
    """List the apps that have an application.zip in a webapps directory."""
    apps = {}
    if not webapps_dir.is_dir():
        return apps
    for entry in sorted(webapps_dir.iterdir()):
        package = entry / PACKAGE_NAME
        if package.is_file():
            apps[entry.name] = LocalApp(entry.name, package, int(package.stat().st_mtime))
    return apps


def write_webapps_manifest(webapps_dir: Path, app_ids: Iterable[str]) -> Path:
    """Write the webapps.json listing the given apps."""
    entries = [
        {
            "name": app_id,
            "manifest_url": f"http://{app_id}.localhost/{APP_MANIFEST}",
            "removable": False,
        }
        for app_id in sorted(app_ids)
    ]
    target = webapps_dir / WEBAPPS_MANIFEST
    target.write_text(json.dumps(entries, indent=2) + "\n", encoding="utf-8")
    return target


def _clear_app_dir(app_dir: Path) -> None:
    if app_dir.is_symlink() or app_dir.is_file():
        app_dir.unlink()
    elif app_dir.is_dir():
        shutil.rmtree(app_dir)


class AppPackager:
    """Zips app source directories into a webapps tree."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def _write_archive(self, source_dir: Path, target: Path, fingerprint: str) -> None:
        temp = target.with_suffix(".zip.tmp")
        with zipfile.ZipFile(temp, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in _iter_files(source_dir):
                archive.write(path, path.relative_to(source_dir).as_posix())
            archive.comment = FINGERPRINT_PREFIX + fingerprint.encode("ascii")
        os.replace(temp, target)

    def package_app(self, app_id: str, source_dir: Path, webapps_dir: Path) -> LocalApp:
        app_dir = webapps_dir / app_id
        target = app_dir / PACKAGE_NAME
        # a dev build leaves the app linked to its sources
        if app_dir.is_symlink():
            app_dir.unlink()

        fingerprint = source_fingerprint(source_dir)
        stamp = source_stamp(source_dir)
        if target.is_file():
            packaged_stamp = int(target.stat().st_mtime)
            if _packaged_fingerprint(target) == fingerprint and stamp <= packaged_stamp:
                logger.debug(f"{app_id} is up to date")
                return LocalApp(app_id, target, packaged_stamp)
            stamp = max(stamp, packaged_stamp + 1)

        app_dir.mkdir(parents=True, exist_ok=True)
        self._write_archive(source_dir, target, fingerprint)
        os.utime(target, (stamp, stamp))
        if self.verbose:
            print(f"  Packaged {app_id}")
        logger.info(f"Packaged {app_id} into {target}")
        return LocalApp(app_id, target, stamp)

    def package(self, apps: Dict[str, Path], webapps_dir: Path, only: Optional[Iterable[str]] = None) -> Dict[str, LocalApp]:
        """Package apps into webapps_dir.

        webapps.json lists every known app that has a package on disk after
        this run, including ones packaged by earlier runs.

        Args:
            apps: Mapping of app id to source directory
            webapps_dir: Output webapps directory
            only: Restrict packaging to these app ids

        Returns:
            Mapping of app id to LocalApp, for every packaged app

        Raises:
            FileSystemError: If writing the output fails
        """
        wanted = set(only) if only is not None else None
        try:
            webapps_dir.mkdir(parents=True, exist_ok=True)
            packaged = {}
            for app_id, source_dir in apps.items():
                if wanted is not None and app_id not in wanted:
                    continue
                packaged[app_id] = self.package_app(app_id, source_dir, webapps_dir)
            on_disk = load_packaged_apps(webapps_dir)
            write_webapps_manifest(webapps_dir, [app_id for app_id in apps if app_id in on_disk])
        except OSError as e:
            raise FileSystemError(f"Failed to package apps into {webapps_dir}: {e}") from e
        return packaged

    def link(self, apps: Dict[str, Path], webapps_dir: Path) -> Dict[str, LocalApp]:
        """Place apps unpacked into webapps_dir, for development builds.

        Each ``<webapps>/<app>`` becomes a symlink to the app's sources so
        edits show up without rebuilding. Where symlinks cannot be created
        the sources are copied instead.

        Raises:
            FileSystemError: If writing the output fails
        """
        try:
            webapps_dir.mkdir(parents=True, exist_ok=True)
            linked = {}
            for app_id, source_dir in apps.items():
                app_dir = webapps_dir / app_id
                _clear_app_dir(app_dir)
                try:
                    app_dir.symlink_to(Path(source_dir).resolve(), target_is_directory=True)
                except OSError as e:
                    logger.debug(f"Cannot link {app_id} ({e}), copying its sources")
                    shutil.copytree(source_dir, app_dir)
                linked[app_id] = LocalApp(app_id, app_dir, source_stamp(source_dir))
                logger.info(f"Linked {app_id} into {app_dir}")
            write_webapps_manifest(webapps_dir, linked)
        except OSError as e:
            raise FileSystemError(f"Failed to link apps into {webapps_dir}: {e}") from e
        return linked
