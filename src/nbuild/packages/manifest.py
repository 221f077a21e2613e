"""Prebuilt artifact manifest.

A manifest lists, for each artifact name, the versions that can be fetched:

    {
      "artifacts": {
        "api-daemon": [
          {"version": "0.4.9", "platform": "linux-x86_64",
           "sha256": "…", "url": "https://…/api-daemon-0.4.9-x86_64.tar.gz"}
        ]
      }
    }

``platform`` is optional; entries without it match every host.
"""

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import requests

from nbuild.errors import ArtifactError, ConfigurationError, ErrorKind


@dataclass(frozen=True)
class ManifestEntry:
    """One downloadable version of an artifact."""

    name: str
    version: str
    sha256: str
    url: str
    platform: Optional[str] = None

    @property
    def filename(self) -> str:
        return Path(self.url.split("?", 1)[0]).name or f"{self.name}-{self.version}"


@dataclass(frozen=True)
class ArtifactDescriptor:
    """A resolved prebuilt dependency.

    Attributes:
        name: Artifact name (e.g. 'api-daemon')
        version: Exact version
        checksum: Expected SHA256 (hex)
        uri: Download URL
        cache_path: Where the verified file lives once fetched
    """

    name: str
    version: str
    checksum: str
    uri: str
    cache_path: Path

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name, self.version)


def version_key(version: str) -> Tuple[Tuple[int, Any], ...]:
    """Sort key that compares numeric components numerically."""
    parts = re.split(r"[.\-+_]", version)
    return tuple((0, int(p)) if p.isdigit() else (1, p) for p in parts)


def matches_constraint(version: str, constraint: Optional[str]) -> bool:
    """Check a version against a constraint.

    Supported constraints: exact ("1.2.3"), prefix ("1.2" or "1.2.*"),
    and any version ("", "*" or "latest").
    """
    if constraint is None or constraint.strip() in ("", "*", "latest"):
        return True
    constraint = constraint.strip()
    if constraint.endswith(".*"):
        constraint = constraint[:-2]
    return version == constraint or version.startswith(constraint + ".") or version.startswith(constraint + "-")


class ArtifactManifest:
    """In-memory view of a prebuilts manifest."""

    def __init__(self, entries: List[ManifestEntry]):
        self.entries = entries

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArtifactManifest":
        """Create a manifest from its parsed JSON form.

        Raises:
            ConfigurationError: If an entry misses a required field
        """
        artifacts = data.get("artifacts")
        if not isinstance(artifacts, dict):
            raise ConfigurationError(["prebuilts manifest has no 'artifacts' table"])

        entries = []
        problems = []
        for name, versions in artifacts.items():
            for index, item in enumerate(versions or []):
                missing = [k for k in ("version", "sha256", "url") if not item.get(k)]
                if missing:
                    problems.append(f"artifact '{name}' entry {index} is missing {', '.join(missing)}")
                    continue
                entries.append(
                    ManifestEntry(
                        name=name,
                        version=str(item["version"]),
                        sha256=str(item["sha256"]).lower(),
                        url=item["url"],
                        platform=item.get("platform"),
                    )
                )
        if problems:
            raise ConfigurationError(problems)
        return cls(entries)

    @classmethod
    def load(cls, location: str, timeout: float = 30) -> "ArtifactManifest":
        """Load a manifest from a local path or an http(s) URL.

        Raises:
            ArtifactError: NOT_FOUND or NETWORK if the manifest cannot be read
            ConfigurationError: If the manifest is malformed
        """
        if location.startswith(("http://", "https://")):
            try:
                response = requests.get(location, timeout=timeout)
                response.raise_for_status()
                data = response.json()
            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                kind = ErrorKind.NOT_FOUND if status == 404 else ErrorKind.NETWORK
                raise ArtifactError(kind, f"Failed to fetch manifest {location}: {e}") from e
            except ValueError as e:
                raise ConfigurationError([f"prebuilts manifest {location} is not valid JSON: {e}"]) from e
            except requests.RequestException as e:
                raise ArtifactError(ErrorKind.NETWORK, f"Failed to fetch manifest {location}: {e}") from e
        else:
            path = Path(location)
            if not path.exists():
                raise ArtifactError(ErrorKind.NOT_FOUND, f"Prebuilts manifest not found: {path}")
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise ConfigurationError([f"prebuilts manifest {path} is not valid JSON: {e}"]) from e
        return cls.from_dict(data)

    def names(self) -> List[str]:
        return sorted({e.name for e in self.entries})

    def select(self, name: str, constraint: Optional[str] = None, platform: Optional[str] = None) -> ManifestEntry:
        """Pick the highest version of name matching constraint.

        Raises:
            ArtifactError: NOT_FOUND if nothing matches, AMBIGUOUS_VERSION if
                the selected version is listed with conflicting checksums
        """
        candidates = [
            e
            for e in self.entries
            if e.name == name
            and matches_constraint(e.version, constraint)
            and (e.platform is None or platform is None or e.platform == platform)
        ]
        if not candidates:
            wanted = f"{name}@{constraint}" if constraint else name
            if platform:
                wanted += f" for {platform}"
            raise ArtifactError(ErrorKind.NOT_FOUND, f"No artifact matches {wanted}")

        best_version = max((e.version for e in candidates), key=version_key)
        best = [e for e in candidates if e.version == best_version]
        # A platform-specific entry wins over a generic one.
        specific = [e for e in best if e.platform is not None]
        if specific:
            best = specific
        if len({e.sha256 for e in best}) > 1:
            raise ArtifactError(
                ErrorKind.AMBIGUOUS_VERSION,
                f"{name}@{best_version} is listed {len(best)} times with different checksums",
            )
        return best[0]
