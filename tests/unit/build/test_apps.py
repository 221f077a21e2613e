"""Unit tests for app discovery and packaging."""

import json
import os
import zipfile
from unittest.mock import patch

import pytest

from nbuild.build.apps import (
    AppPackager,
    discover_apps,
    load_packaged_apps,
    source_fingerprint,
    source_stamp,
)
from nbuild.errors import FileSystemError


def make_app(apps_root, app_id, stamp=1_700_000_000, files=None):
    app_dir = apps_root / app_id
    app_dir.mkdir(parents=True)
    files = files or {"manifest.webmanifest": "{}", "index.html": "<html></html>"}
    for name, content in files.items():
        path = app_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        os.utime(path, (stamp, stamp))
    return app_dir


class TestDiscovery:
    """Tests for discover_apps and source_stamp."""

    def test_discover_apps(self, tmp_path):
        make_app(tmp_path, "clock")
        make_app(tmp_path, "calculator")
        (tmp_path / "not-an-app").mkdir()
        (tmp_path / "README.md").write_text("hello")

        apps = discover_apps(tmp_path)

        assert list(apps) == ["calculator", "clock"]
        assert apps["clock"] == tmp_path / "clock"

    def test_missing_apps_root(self, tmp_path):
        with pytest.raises(FileSystemError):
            discover_apps(tmp_path / "missing")

    def test_source_stamp_is_newest_file(self, tmp_path):
        app_dir = make_app(tmp_path, "clock", stamp=100)
        newer = app_dir / "js" / "main.js"
        newer.parent.mkdir()
        newer.write_text("")
        os.utime(newer, (250.7, 250.7))

        assert source_stamp(app_dir) == 250

    def test_source_stamp_ignores_dotfiles(self, tmp_path):
        app_dir = make_app(tmp_path, "clock", stamp=100)
        hidden = app_dir / ".swp"
        hidden.write_text("")
        os.utime(hidden, (999, 999))

        assert source_stamp(app_dir) == 100


class TestAppPackager:
    """Tests for AppPackager."""

    def test_package(self, tmp_path):
        apps_root = tmp_path / "apps"
        make_app(apps_root, "clock", stamp=1000, files={"manifest.webmanifest": "{}", "style/main.css": "", ".hidden": ""})
        make_app(apps_root, "calculator", stamp=2000)
        webapps = tmp_path / "out" / "webapps"

        packaged = AppPackager().package(discover_apps(apps_root), webapps)

        clock = packaged["clock"]
        assert clock.package_path == webapps / "clock" / "application.zip"
        assert clock.build_stamp == 1000
        assert int(clock.package_path.stat().st_mtime) == 1000
        with zipfile.ZipFile(clock.package_path) as archive:
            assert sorted(archive.namelist()) == ["manifest.webmanifest", "style/main.css"]

        entries = json.loads((webapps / "webapps.json").read_text())
        assert [e["name"] for e in entries] == ["calculator", "clock"]
        assert entries[1]["manifest_url"] == "http://clock.localhost/manifest.webmanifest"

    def test_up_to_date_app_is_not_rezipped(self, tmp_path):
        apps_root = tmp_path / "apps"
        make_app(apps_root, "clock", stamp=1000)
        webapps = tmp_path / "webapps"
        packager = AppPackager()
        packager.package(discover_apps(apps_root), webapps)

        with patch.object(AppPackager, "_write_archive") as mock_write:
            packaged = packager.package(discover_apps(apps_root), webapps)
            mock_write.assert_not_called()
        assert packaged["clock"].build_stamp == 1000

    def test_changed_app_is_rezipped(self, tmp_path):
        apps_root = tmp_path / "apps"
        app_dir = make_app(apps_root, "clock", stamp=1000)
        webapps = tmp_path / "webapps"
        packager = AppPackager()
        packager.package(discover_apps(apps_root), webapps)

        os.utime(app_dir / "index.html", (3000, 3000))
        packaged = packager.package(discover_apps(apps_root), webapps)

        assert packaged["clock"].build_stamp == 3000
        assert int(packaged["clock"].package_path.stat().st_mtime) == 3000

    def test_only_restricts_packaging(self, tmp_path):
        apps_root = tmp_path / "apps"
        make_app(apps_root, "clock")
        make_app(apps_root, "calculator")

        packaged = AppPackager().package(discover_apps(apps_root), tmp_path / "webapps", only=["clock"])

        assert list(packaged) == ["clock"]
        assert not (tmp_path / "webapps" / "calculator").exists()
        entries = json.loads((tmp_path / "webapps" / "webapps.json").read_text())
        assert [e["name"] for e in entries] == ["clock"]

    def test_manifest_keeps_apps_packaged_earlier(self, tmp_path):
        apps_root = tmp_path / "apps"
        make_app(apps_root, "clock")
        make_app(apps_root, "calculator")
        webapps = tmp_path / "webapps"
        packager = AppPackager()
        packager.package(discover_apps(apps_root), webapps, only=["calculator"])

        packager.package(discover_apps(apps_root), webapps, only=["clock"])

        entries = json.loads((webapps / "webapps.json").read_text())
        assert [e["name"] for e in entries] == ["calculator", "clock"]

    def test_write_failure_is_filesystem_error(self, tmp_path):
        apps_root = tmp_path / "apps"
        make_app(apps_root, "clock")

        with patch("nbuild.build.apps.zipfile.ZipFile", side_effect=OSError(28, "No space left on device")):
            with pytest.raises(FileSystemError):
                AppPackager().package(discover_apps(apps_root), tmp_path / "webapps")

    def test_load_packaged_apps(self, tmp_path):
        apps_root = tmp_path / "apps"
        make_app(apps_root, "clock", stamp=1234)
        webapps = tmp_path / "webapps"
        AppPackager().package(discover_apps(apps_root), webapps)

        loaded = load_packaged_apps(webapps)

        assert list(loaded) == ["clock"]
        assert loaded["clock"].build_stamp == 1234

    def test_load_packaged_apps_missing_dir(self, tmp_path):
        assert load_packaged_apps(tmp_path / "nothing") == {}

    def test_deleted_file_is_dropped_from_package(self, tmp_path):
        apps_root = tmp_path / "apps"
        app_dir = make_app(
            apps_root,
            "clock",
            stamp=1000,
            files={"manifest.webmanifest": "{}", "index.html": "<html></html>", "old.js": ""},
        )
        webapps = tmp_path / "webapps"
        packager = AppPackager()
        packager.package(discover_apps(apps_root), webapps)

        (app_dir / "old.js").unlink()
        packaged = packager.package(discover_apps(apps_root), webapps)

        with zipfile.ZipFile(packaged["clock"].package_path) as archive:
            assert sorted(archive.namelist()) == ["index.html", "manifest.webmanifest"]
        # the newest mtime did not move, the stamp still has to
        assert packaged["clock"].build_stamp == 1001
        assert int(packaged["clock"].package_path.stat().st_mtime) == 1001

    def test_content_change_without_mtime_change_is_rezipped(self, tmp_path):
        apps_root = tmp_path / "apps"
        app_dir = make_app(apps_root, "clock", stamp=1000)
        webapps = tmp_path / "webapps"
        packager = AppPackager()
        packager.package(discover_apps(apps_root), webapps)

        index = app_dir / "index.html"
        index.write_text("<html>new</html>")
        os.utime(index, (1000, 1000))
        packaged = packager.package(discover_apps(apps_root), webapps)

        with zipfile.ZipFile(packaged["clock"].package_path) as archive:
            assert archive.read("index.html") == b"<html>new</html>"
        assert packaged["clock"].build_stamp == 1001

    def test_replaces_linked_app(self, tmp_path):
        apps_root = tmp_path / "apps"
        make_app(apps_root, "clock")
        webapps = tmp_path / "webapps"
        packager = AppPackager()
        packager.link(discover_apps(apps_root), webapps)

        packaged = packager.package(discover_apps(apps_root), webapps)

        assert not (webapps / "clock").is_symlink()
        assert packaged["clock"].package_path.is_file()
        assert sorted(p.name for p in (apps_root / "clock").iterdir()) == ["index.html", "manifest.webmanifest"]


class TestSourceFingerprint:
    """Tests for source_fingerprint."""

    def test_stable_for_same_content(self, tmp_path):
        app_dir = make_app(tmp_path, "clock")
        assert source_fingerprint(app_dir) == source_fingerprint(app_dir)

    def test_changes_on_rename(self, tmp_path):
        app_dir = make_app(tmp_path, "clock")
        before = source_fingerprint(app_dir)
        (app_dir / "index.html").rename(app_dir / "main.html")
        assert source_fingerprint(app_dir) != before

    def test_ignores_dotfiles(self, tmp_path):
        app_dir = make_app(tmp_path, "clock")
        before = source_fingerprint(app_dir)
        (app_dir / ".swp").write_text("scratch")
        assert source_fingerprint(app_dir) == before
