"""
Deployment operations.

A deployment plan is an ordered list of :class:`DeploymentOperation`. Each
operation carries its own lifecycle, which only ever moves forward:

    PENDING -> IN_PROGRESS(1) -> IN_PROGRESS(2) ... -> SUCCEEDED | FAILED

A retry bumps the attempt counter of the same operation; it never creates a
new operation, and a terminal operation cannot be reopened.
"""

import itertools
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Tuple

from nbuild.packages.manifest import ArtifactDescriptor

DEVICE_WEBAPPS_DIR = "/system/b2g/webapps"
DEVICE_STAGING_DIR = "/data/local/tmp"

# Start order; services are stopped in reverse order.
FULL_RESTART = ("api-daemon", "b2g")
RUNTIME_RESTART = ("b2g",)

_op_ids = itertools.count(1)


class OperationKind(Enum):
    """Type of device-facing work."""

    PUSH_FILE = "push_file"
    PUSH_APP = "push_app"
    RESET_DATA = "reset_data"
    RESET_TIME = "reset_time"
    RESTART = "restart"
    INSTALL_AT_PATH = "install_at_path"
    FETCH_ARTIFACTS = "fetch_artifacts"


class OperationState(Enum):
    """Lifecycle state of an operation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationState.SUCCEEDED, OperationState.FAILED)


class OperationStateError(Exception):
    """Raised on an illegal lifecycle transition."""

    pass


@dataclass(eq=False)
class DeploymentOperation:
    """One unit of device-facing work.

    Attributes:
        kind: What to do
        src: Local file to transfer (PUSH_FILE, PUSH_APP)
        dst: Remote destination path (PUSH_FILE, PUSH_APP)
        unpack_to: Remote directory to unpack a pushed archive into (PUSH_FILE)
        app_id: Application identifier (PUSH_APP)
        services: Services to restart, in start order (RESTART)
        path: Local install directory (INSTALL_AT_PATH)
        artifacts: Artifacts to fetch (FETCH_ARTIFACTS)
        op_id: Identity, stable across retries
        state: Current lifecycle state
        attempt: Number of attempts started so far
        failure: Reason of the failure once FAILED
    """

    kind: OperationKind
    src: Optional[Path] = None
    dst: Optional[str] = None
    unpack_to: Optional[str] = None
    app_id: Optional[str] = None
    services: Tuple[str, ...] = ()
    path: Optional[Path] = None
    artifacts: Tuple[ArtifactDescriptor, ...] = ()
    op_id: str = field(default_factory=lambda: f"op-{next(_op_ids)}")
    state: OperationState = OperationState.PENDING
    attempt: int = 0
    failure: Optional[str] = None

    @classmethod
    def push_file(cls, src: Path, dst: str, unpack_to: Optional[str] = None) -> "DeploymentOperation":
        return cls(OperationKind.PUSH_FILE, src=Path(src), dst=dst, unpack_to=unpack_to)

    @classmethod
    def push_app(cls, app_id: str, src: Path, remote_root: str = DEVICE_WEBAPPS_DIR) -> "DeploymentOperation":
        return cls(OperationKind.PUSH_APP, src=Path(src), dst=f"{remote_root}/{app_id}/application.zip", app_id=app_id)

    @classmethod
    def reset_data(cls) -> "DeploymentOperation":
        return cls(OperationKind.RESET_DATA)

    @classmethod
    def reset_time(cls) -> "DeploymentOperation":
        return cls(OperationKind.RESET_TIME)

    @classmethod
    def restart(cls, services: Tuple[str, ...] = FULL_RESTART) -> "DeploymentOperation":
        return cls(OperationKind.RESTART, services=tuple(services))

    @classmethod
    def install_at_path(cls, path: Path) -> "DeploymentOperation":
        return cls(OperationKind.INSTALL_AT_PATH, path=Path(path))

    @classmethod
    def fetch_artifacts(cls, artifacts: Tuple[ArtifactDescriptor, ...]) -> "DeploymentOperation":
        return cls(OperationKind.FETCH_ARTIFACTS, artifacts=tuple(artifacts))

    @property
    def is_restart(self) -> bool:
        return self.kind == OperationKind.RESTART

    def describe(self) -> str:
        """Short human-readable description."""
        if self.kind == OperationKind.PUSH_APP:
            return f"push app {self.app_id}"
        if self.kind == OperationKind.PUSH_FILE:
            suffix = f" (unpack into {self.unpack_to})" if self.unpack_to else ""
            return f"push {self.src} -> {self.dst}{suffix}"
        if self.kind == OperationKind.RESTART:
            return f"restart {', '.join(self.services)}"
        if self.kind == OperationKind.INSTALL_AT_PATH:
            return f"install into {self.path}"
        if self.kind == OperationKind.FETCH_ARTIFACTS:
            return f"fetch {', '.join(f'{a.name}@{a.version}' for a in self.artifacts)}"
        return self.kind.value.replace("_", " ")

    def _require(self, state: OperationState, action: str) -> None:
        if self.state != state:
            raise OperationStateError(f"Cannot {action} {self.op_id} ({self.describe()}) in state {self.state.value}")

    def begin(self) -> None:
        """PENDING -> IN_PROGRESS, first attempt."""
        self._require(OperationState.PENDING, "start")
        self.state = OperationState.IN_PROGRESS
        self.attempt = 1

    def retry(self) -> None:
        """Start another attempt of an in-progress operation."""
        self._require(OperationState.IN_PROGRESS, "retry")
        self.attempt += 1

    def succeed(self) -> None:
        self._require(OperationState.IN_PROGRESS, "complete")
        self.state = OperationState.SUCCEEDED

    def fail(self, reason: str) -> None:
        self._require(OperationState.IN_PROGRESS, "fail")
        self.state = OperationState.FAILED
        self.failure = reason

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "op_id": self.op_id,
            "kind": self.kind.value,
            "description": self.describe(),
            "state": self.state.value,
            "attempt": self.attempt,
            "failure": self.failure,
        }
