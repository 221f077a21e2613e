"""Artifact downloader with progress tracking and checksum verification.

This module handles downloading artifacts from URLs, verifying their
integrity with SHA256 checksums, and extracting archives.

Downloads are streamed into a temporary file and hashed on the fly. Only a
verified file is moved to its destination, with an atomic rename, so a
partially downloaded or corrupt file is never visible at the destination.
"""

import errno
import hashlib
import logging
import os
import tarfile
import zipfile
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests
from tqdm import tqdm

from nbuild.errors import ArtifactError, ErrorKind, FileSystemError

logger = logging.getLogger(__name__)


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove temporary file {path}: {e}")


class PackageDownloader:
    """Downloads and extracts artifacts with progress tracking."""

    def __init__(self, chunk_size: int = 8192, timeout: float = 30):
        """Initialize downloader.

        Args:
            chunk_size: Size of chunks for downloading and hashing
            timeout: Connect/read timeout for HTTP requests, in seconds
        """
        self.chunk_size = chunk_size
        self.timeout = timeout

    def download(
        self,
        url: str,
        dest_path: Path,
        checksum: Optional[str] = None,
        show_progress: bool = True,
        temp_path: Optional[Path] = None,
    ) -> Path:
        """Download a file from a URL.

        Args:
            url: URL to download from
            dest_path: Destination file path
            checksum: Optional SHA256 checksum for verification
            show_progress: Whether to show progress bar
            temp_path: Where to write while downloading (default: dest + .tmp)

        Returns:
            Path to the downloaded file

        Raises:
            ArtifactError: NOT_FOUND, NETWORK, CHECKSUM_MISMATCH or DISK_FULL
            FileSystemError: For other local write failures
        """
        dest_path = Path(dest_path)
        temp_file = Path(temp_path) if temp_path else dest_path.with_suffix(dest_path.suffix + ".tmp")

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            temp_file.parent.mkdir(parents=True, exist_ok=True)

            response = requests.get(url, stream=True, timeout=self.timeout)
            response.raise_for_status()

            total_size = int(response.headers.get("content-length", 0))

            progress_bar = None
            if show_progress and total_size > 0:
                filename = Path(urlparse(url).path).name
                progress_bar = tqdm(
                    total=total_size,
                    unit="B",
                    unit_scale=True,
                    unit_divisor=1024,
                    desc=f"Downloading {filename}",
                )

            sha256 = hashlib.sha256()
            try:
                with open(temp_file, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if chunk:
                            f.write(chunk)
                            sha256.update(chunk)
                            if progress_bar:
                                progress_bar.update(len(chunk))
            finally:
                if progress_bar:
                    progress_bar.close()

            if checksum:
                actual_checksum = sha256.hexdigest()
                if actual_checksum.lower() != checksum.lower():
                    _discard(temp_file)
                    raise ArtifactError(
                        ErrorKind.CHECKSUM_MISMATCH,
                        f"Checksum mismatch for {url}\n" + f"Expected: {checksum}\n" + f"Got: {actual_checksum}",
                    )

            os.replace(temp_file, dest_path)
            return dest_path

        except requests.HTTPError as e:
            _discard(temp_file)
            status = e.response.status_code if e.response is not None else None
            kind = ErrorKind.NOT_FOUND if status in (404, 410) else ErrorKind.NETWORK
            raise ArtifactError(kind, f"Failed to download {url}: {e}") from e

        except requests.RequestException as e:
            _discard(temp_file)
            raise ArtifactError(ErrorKind.NETWORK, f"Failed to download {url}: {e}") from e

        except OSError as e:
            _discard(temp_file)
            if e.errno == errno.ENOSPC:
                raise ArtifactError(ErrorKind.DISK_FULL, f"No space left while downloading {url}") from e
            raise FileSystemError(f"Failed to write {dest_path}: {e}") from e

    def extract_archive(self, archive_path: Path, dest_dir: Path, show_progress: bool = True) -> Path:
        """Extract an archive file.

        Supports .tar.gz, .tar.bz2, .tar.xz, .tgz and .zip formats.

        Args:
            archive_path: Path to the archive file
            dest_dir: Destination directory for extraction
            show_progress: Whether to show progress information

        Returns:
            Path to the extracted directory

        Raises:
            FileSystemError: If extraction fails
        """
        archive_path = Path(archive_path)
        dest_dir = Path(dest_dir)

        if not archive_path.exists():
            raise FileSystemError(f"Archive not found: {archive_path}")

        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            if show_progress:
                print(f"Extracting {archive_path.name}...")

            if archive_path.suffix == ".zip":
                with zipfile.ZipFile(archive_path, "r") as zip_file:
                    zip_file.extractall(dest_dir)
            elif archive_path.name.endswith((".tar.gz", ".tar.bz2", ".tar.xz", ".tgz")):
                with tarfile.open(archive_path, "r:*") as tar:
                    tar.extractall(dest_dir)
            else:
                raise FileSystemError(f"Unsupported archive format: {archive_path.name}")

            return dest_dir

        except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
            raise FileSystemError(f"Failed to extract {archive_path}: {e}") from e

