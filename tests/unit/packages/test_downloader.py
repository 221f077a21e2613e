"""Unit tests for the package downloader."""

import errno
import hashlib
import tarfile
import zipfile
from unittest.mock import MagicMock, patch

import pytest
import requests

from nbuild.errors import ArtifactError, ErrorKind, FileSystemError
from nbuild.packages.downloader import PackageDownloader

PAYLOAD = b"prebuilt binary content" * 100
PAYLOAD_SHA = hashlib.sha256(PAYLOAD).hexdigest()


def make_response(payload=PAYLOAD, status=200):
    response = MagicMock()
    response.headers = {"content-length": str(len(payload))}
    response.iter_content.return_value = [payload[i : i + 512] for i in range(0, len(payload), 512)]
    if status >= 400:
        http_response = MagicMock(status_code=status)
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error", response=http_response)
    return response


class TestDownload:
    """Tests for PackageDownloader.download."""

    def test_download_verified(self, tmp_path):
        dest = tmp_path / "cache" / "api-daemon.tar.gz"
        with patch("nbuild.packages.downloader.requests.get", return_value=make_response()):
            result = PackageDownloader().download("https://example.com/api-daemon.tar.gz", dest, PAYLOAD_SHA, show_progress=False)

        assert result == dest
        assert dest.read_bytes() == PAYLOAD
        assert not dest.with_suffix(".gz.tmp").exists()

    def test_checksum_mismatch_discards_download(self, tmp_path):
        dest = tmp_path / "api-daemon.tar.gz"
        temp = tmp_path / "api-daemon.tar.gz.tmp"
        with patch("nbuild.packages.downloader.requests.get", return_value=make_response()):
            with pytest.raises(ArtifactError) as exc_info:
                PackageDownloader().download("https://example.com/a.tar.gz", dest, "0" * 64, show_progress=False, temp_path=temp)

        assert exc_info.value.kind == ErrorKind.CHECKSUM_MISMATCH
        assert not exc_info.value.retryable
        assert not dest.exists()
        assert not temp.exists()

    def test_mismatch_never_overwrites_verified_file(self, tmp_path):
        dest = tmp_path / "api-daemon.tar.gz"
        dest.write_bytes(b"verified")
        with patch("nbuild.packages.downloader.requests.get", return_value=make_response()):
            with pytest.raises(ArtifactError):
                PackageDownloader().download("https://example.com/a.tar.gz", dest, "0" * 64, show_progress=False)
        assert dest.read_bytes() == b"verified"

    def test_not_found(self, tmp_path):
        with patch("nbuild.packages.downloader.requests.get", return_value=make_response(status=404)):
            with pytest.raises(ArtifactError) as exc_info:
                PackageDownloader().download("https://example.com/a.tar.gz", tmp_path / "a.tar.gz", show_progress=False)
        assert exc_info.value.kind == ErrorKind.NOT_FOUND

    def test_server_error_is_retryable(self, tmp_path):
        with patch("nbuild.packages.downloader.requests.get", return_value=make_response(status=503)):
            with pytest.raises(ArtifactError) as exc_info:
                PackageDownloader().download("https://example.com/a.tar.gz", tmp_path / "a.tar.gz", show_progress=False)
        assert exc_info.value.kind == ErrorKind.NETWORK
        assert exc_info.value.retryable

    def test_connection_error(self, tmp_path):
        with patch("nbuild.packages.downloader.requests.get", side_effect=requests.ConnectionError("reset")):
            with pytest.raises(ArtifactError) as exc_info:
                PackageDownloader().download("https://example.com/a.tar.gz", tmp_path / "a.tar.gz", show_progress=False)
        assert exc_info.value.kind == ErrorKind.NETWORK

    def test_disk_full(self, tmp_path):
        with (
            patch("nbuild.packages.downloader.requests.get", return_value=make_response()),
            patch("builtins.open", side_effect=OSError(errno.ENOSPC, "No space left on device")),
        ):
            with pytest.raises(ArtifactError) as exc_info:
                PackageDownloader().download("https://example.com/a.tar.gz", tmp_path / "a.tar.gz", show_progress=False)
        assert exc_info.value.kind == ErrorKind.DISK_FULL
        assert not exc_info.value.retryable

    def test_progress_bar(self, tmp_path):
        with (
            patch("nbuild.packages.downloader.requests.get", return_value=make_response()),
            patch("nbuild.packages.downloader.tqdm") as mock_tqdm,
        ):
            PackageDownloader().download("https://example.com/a.tar.gz", tmp_path / "a.tar.gz", show_progress=True)
        mock_tqdm.assert_called_once()
        mock_tqdm.return_value.close.assert_called_once()


class TestExtract:
    """Tests for PackageDownloader.extract_archive."""

    def test_extract_zip(self, tmp_path):
        archive = tmp_path / "tool.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("bin/tool", "#!/bin/sh\n")
        dest = PackageDownloader().extract_archive(archive, tmp_path / "out", show_progress=False)
        assert (dest / "bin" / "tool").is_file()

    def test_extract_tar(self, tmp_path):
        source = tmp_path / "api-daemon"
        source.write_text("binary")
        archive = tmp_path / "api-daemon.tar.gz"
        with tarfile.open(archive, "w:gz") as tf:
            tf.add(source, arcname="api-daemon")
        dest = PackageDownloader().extract_archive(archive, tmp_path / "out", show_progress=False)
        assert (dest / "api-daemon").read_text() == "binary"

    def test_unsupported_format(self, tmp_path):
        archive = tmp_path / "tool.rar"
        archive.write_bytes(b"rar")
        with pytest.raises(FileSystemError):
            PackageDownloader().extract_archive(archive, tmp_path / "out", show_progress=False)

    def test_missing_archive(self, tmp_path):
        with pytest.raises(FileSystemError):
            PackageDownloader().extract_archive(tmp_path / "missing.zip", tmp_path / "out", show_progress=False)
