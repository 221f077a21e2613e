"""Artifact store client.

Resolves artifact names against a manifest, fetches them into the local
cache and answers cache hit queries. Fetches of distinct artifacts may run
in parallel; fetches of the same name/version are serialized so that a
second request waits for the first one and then finds the cached file.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from nbuild.packages.cache import ArtifactCache
from nbuild.packages.downloader import PackageDownloader
from nbuild.packages.manifest import ArtifactDescriptor, ArtifactManifest

logger = logging.getLogger(__name__)


class ArtifactStoreClient:
    """Fetches and caches versioned prebuilt artifacts."""

    def __init__(
        self,
        manifest: ArtifactManifest,
        cache: ArtifactCache,
        downloader: Optional[PackageDownloader] = None,
        show_progress: bool = True,
    ):
        """Initialize store client.

        Args:
            manifest: Manifest listing the available artifacts
            cache: Local artifact cache
            downloader: Downloader to use (a default one if None)
            show_progress: Whether to show download progress bars
        """
        self.manifest = manifest
        self.cache = cache
        self.downloader = downloader or PackageDownloader()
        self.show_progress = show_progress

    def resolve(self, name: str, constraint: Optional[str] = None, platform: Optional[str] = None) -> ArtifactDescriptor:
        """Resolve a name and version constraint to a descriptor.

        Raises:
            ArtifactError: NOT_FOUND or AMBIGUOUS_VERSION
        """
        entry = self.manifest.select(name, constraint, platform)
        return ArtifactDescriptor(
            name=entry.name,
            version=entry.version,
            checksum=entry.sha256,
            uri=entry.url,
            cache_path=self.cache.entry_path(entry.name, entry.version, entry.sha256, entry.filename),
        )

    def is_cached(self, descriptor: ArtifactDescriptor) -> bool:
        return self.cache.is_cached(descriptor)

    def fetch(self, descriptor: ArtifactDescriptor) -> Path:
        """Return the local path of a verified artifact, downloading it if needed.

        Raises:
            ArtifactError: NETWORK, NOT_FOUND, CHECKSUM_MISMATCH or DISK_FULL
            FileSystemError: For other local write failures
        """
        if self.cache.is_cached(descriptor):
            logger.debug(f"Cache hit for {descriptor.name}@{descriptor.version}")
            return descriptor.cache_path

        with self.cache.writer_lock(descriptor):
            # Another writer may have completed the fetch while we waited.
            if self.cache.is_cached(descriptor):
                logger.debug(f"Cache hit for {descriptor.name}@{descriptor.version} after waiting")
                return descriptor.cache_path

            logger.info(f"Fetching {descriptor.name}@{descriptor.version} from {descriptor.uri}")
            return self.downloader.download(
                descriptor.uri,
                descriptor.cache_path,
                checksum=descriptor.checksum,
                show_progress=self.show_progress,
                temp_path=self.cache.temp_path(descriptor),
            )

    def fetch_all(self, descriptors: Iterable[ArtifactDescriptor], max_workers: int = 4) -> Dict[Tuple[str, str], Path]:
        """Fetch several artifacts in parallel.

        Two versions of one artifact are kept apart, so results are keyed by
        name and version.

        Returns:
            Mapping of (name, version) to local path

        Raises:
            The first error encountered, after every fetch has finished
        """
        descriptors = list(descriptors)
        results: Dict[Tuple[str, str], Path] = {}
        errors: List[Exception] = []

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            futures = {executor.submit(self.fetch, d): d for d in descriptors}
            for future, descriptor in futures.items():
                try:
                    results[descriptor.key] = future.result()
                except KeyboardInterrupt as ke:
                    from nbuild.interrupt_utils import handle_keyboard_interrupt_properly

                    handle_keyboard_interrupt_properly(ke)
                except Exception as e:
                    logger.error(f"Failed to fetch {descriptor.name}@{descriptor.version}: {e}")
                    errors.append(e)

        if errors:
            raise errors[0]
        return results
