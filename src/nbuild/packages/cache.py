"""Artifact cache for nbuild prebuilts.

Cache Structure:
    ~/.nbuild/cache/                    # or $NBUILD_CACHE_DIR
    └── {name}/
        └── {version}/
            ├── .lock                   # writer lock for this name/version
            └── {sha256[:16]}/
                └── {filename}          # verified download

Entries are addressed by name, version and checksum, so two artifacts with
the same name and version but different checksums never share a path. Files
only appear in an entry directory after their checksum has been verified, so
readers never need a lock.
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Tuple

from nbuild.packages.manifest import ArtifactDescriptor

logger = logging.getLogger(__name__)

# fcntl is Unix-only; without it only in-process writers are serialized
try:
    import fcntl

    HAS_FCNTL = True
except ImportError:
    HAS_FCNTL = False


class ArtifactCache:
    """Manages the on-disk artifact cache shared across invocations."""

    def __init__(self, cache_root: Path):
        """Initialize cache manager.

        Args:
            cache_root: Root directory of the cache
        """
        self.cache_root = Path(cache_root).resolve()
        self._locks_lock = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}

    @staticmethod
    def checksum_dir_name(checksum: str) -> str:
        """Directory name for a checksum (first 16 hex characters)."""
        return checksum.lower()[:16]

    def version_dir(self, name: str, version: str) -> Path:
        return self.cache_root / name / version

    def entry_path(self, name: str, version: str, checksum: str, filename: str) -> Path:
        """Get the path a verified artifact is stored at.

        Args:
            name: Artifact name
            version: Exact version
            checksum: SHA256 checksum (hex)
            filename: Downloaded file name

        Returns:
            Path of the cached file
        """
        return self.version_dir(name, version) / self.checksum_dir_name(checksum) / filename

    def temp_path(self, descriptor: ArtifactDescriptor) -> Path:
        """Temporary download location, next to the final entry."""
        return descriptor.cache_path.with_name(descriptor.cache_path.name + ".tmp")

    def is_cached(self, descriptor: ArtifactDescriptor) -> bool:
        """Check if a verified copy of the artifact is present."""
        return descriptor.cache_path.is_file()

    def _thread_lock(self, key: Tuple[str, str]) -> threading.Lock:
        with self._locks_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def writer_lock(self, descriptor: ArtifactDescriptor) -> Iterator[None]:
        """Hold the exclusive writer lock for a name/version.

        Serializes writers across threads of this process and, where fcntl
        is available, across processes sharing the cache directory.
        """
        thread_lock = self._thread_lock(descriptor.key)
        with thread_lock:
            if not HAS_FCNTL:
                yield
                return

            version_dir = self.version_dir(descriptor.name, descriptor.version)
            version_dir.mkdir(parents=True, exist_ok=True)
            with open(version_dir / ".lock", "a") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

