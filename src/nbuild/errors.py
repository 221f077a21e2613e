"""Error taxonomy for nbuild.

Every component wraps the low-level failures it sees (subprocess, requests,
OSError) into one of the domain errors below, so callers only have to deal
with a small, uniform set of exception types:

- ConfigurationError: invalid or missing settings (aggregated)
- DeviceError: unreachable device, adb protocol failures, permissions
- ArtifactError: prebuilt lookup, checksum and network failures
- FileSystemError: local filesystem failures
- BuildError: packaging backend failures

Each error carries a ``kind`` and a ``retryable`` flag. The retry scheduler
only looks at ``retryable``; it never inspects exception types.
"""

from enum import Enum
from typing import Iterable, List


class ErrorKind(Enum):
    """Fine-grained error kind, shared across all error domains."""

    # Configuration
    INVALID_SETTING = "invalid_setting"
    UNKNOWN_APP = "unknown_app"

    # Device link
    DEVICE_NOT_FOUND = "device_not_found"
    PERMISSION_DENIED = "permission_denied"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"
    IO = "io"

    # Artifact store
    NOT_FOUND = "not_found"
    AMBIGUOUS_VERSION = "ambiguous_version"
    NETWORK = "network"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    DISK_FULL = "disk_full"

    # Packaging
    BUILD_TOOL_MISSING = "build_tool_missing"
    INVALID_PACKAGE = "invalid_package"
    BUILD_FAILED = "build_failed"


RETRYABLE_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.IO, ErrorKind.NETWORK})


class NbuildError(Exception):
    """Base exception for all nbuild errors."""

    domain = "nbuild"

    def __init__(self, kind: ErrorKind, message: str, retryable: bool = False):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retryable = retryable

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class ConfigurationError(NbuildError):
    """Raised when settings are invalid.

    All violated rules are collected in ``violations`` so the operator can
    fix everything in a single pass.
    """

    domain = "configuration"

    def __init__(self, violations: Iterable[str], kind: ErrorKind = ErrorKind.INVALID_SETTING):
        self.violations: List[str] = list(violations)
        message = "; ".join(self.violations) if self.violations else "invalid configuration"
        super().__init__(kind, message, retryable=False)


class DeviceError(NbuildError):
    """Raised by the device link."""

    domain = "device"

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(kind, message, retryable=kind in RETRYABLE_KINDS)


class ArtifactError(NbuildError):
    """Raised by the artifact store client."""

    domain = "artifact"

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(kind, message, retryable=kind in RETRYABLE_KINDS)


class FileSystemError(NbuildError):
    """Raised for local filesystem failures."""

    domain = "filesystem"

    def __init__(self, message: str):
        super().__init__(ErrorKind.IO, message, retryable=False)


class BuildError(NbuildError):
    """Raised by packaging backends."""

    domain = "build"

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(kind, message, retryable=False)
