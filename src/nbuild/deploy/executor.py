"""Executes single deployment operations against the device link and artifact store.

One call to :meth:`OperationExecutor.execute` is one attempt. Errors are
raised as they come; whether to try again is decided by the scheduler.
"""

import logging
import shlex
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from nbuild.deploy.operations import DeploymentOperation, OperationKind
from nbuild.device.adb import AdbDeviceLink
from nbuild.errors import ConfigurationError, DeviceError, ErrorKind
from nbuild.packages.store import ArtifactStoreClient

logger = logging.getLogger(__name__)

DEVICE_DATA_DIRS = ("/data/b2g/mozilla", "/data/local/service")


def _quote(path: str) -> str:
    return shlex.quote(path)


class OperationExecutor:
    """Runs one attempt of a deployment operation."""

    def __init__(
        self,
        link: Optional[AdbDeviceLink] = None,
        store: Optional[ArtifactStoreClient] = None,
        installer: Optional[Callable[[Path], None]] = None,
        restart_timeout: float = 60.0,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize executor.

        Args:
            link: Device link, required for device operations
            store: Artifact store, required for FETCH_ARTIFACTS
            installer: Callable installing the build output into a path
            restart_timeout: Seconds to wait for services to come back
            poll_interval: Seconds between readiness polls after a restart
            sleep: Sleep function used while polling
            clock: Monotonic clock for the readiness deadline
        """
        self.link = link
        self.store = store
        self.installer = installer
        self.restart_timeout = restart_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def _device(self) -> AdbDeviceLink:
        if self.link is None:
            raise ConfigurationError(["no device link configured"])
        return self.link

    def _shell(self, command: str) -> str:
        result = self._device().exec_shell(command)
        if not result.ok:
            raise DeviceError(ErrorKind.IO, f"'{command}' exited with status {result.exit_code}: {result.stdout.strip()}")
        return result.stdout

    def execute(self, operation: DeploymentOperation) -> None:
        """Run one attempt of operation."""
        handler = {
            OperationKind.PUSH_FILE: self._push_file,
            OperationKind.PUSH_APP: self._push_app,
            OperationKind.RESET_DATA: self._reset_data,
            OperationKind.RESET_TIME: self._reset_time,
            OperationKind.RESTART: self._restart,
            OperationKind.INSTALL_AT_PATH: self._install_at_path,
            OperationKind.FETCH_ARTIFACTS: self._fetch_artifacts,
        }[operation.kind]
        handler(operation)

    def _push_file(self, op: DeploymentOperation) -> None:
        link = self._device()
        if op.unpack_to:
            link.remount()
        link.push(op.src, op.dst)
        if op.unpack_to:
            self._shell(f"cd {_quote(op.unpack_to)} && tar xf {_quote(op.dst)} && rm {_quote(op.dst)}")

    def _push_app(self, op: DeploymentOperation) -> None:
        link = self._device()
        link.remount()
        remote_dir = op.dst.rsplit("/", 1)[0]
        self._shell(f"mkdir -p {_quote(remote_dir)}")
        link.push(op.src, op.dst)

    def _reset_data(self, op: DeploymentOperation) -> None:
        self._shell("stop b2g; stop api-daemon")
        self._shell("rm -rf " + " ".join(_quote(d) for d in DEVICE_DATA_DIRS))

    def _reset_time(self, op: DeploymentOperation) -> None:
        now = datetime.now(timezone.utc)
        self._shell(f"date -u {now.strftime('%m%d%H%M%Y.%S')}")

    def _restart(self, op: DeploymentOperation) -> None:
        for service in reversed(op.services):
            self._shell(f"stop {service}")
        for service in op.services:
            self._shell(f"start {service}")

        link = self._device()
        link.wait_reachable(self.restart_timeout, self.poll_interval)
        if "b2g" in op.services:
            self._wait_for_process("b2g")

    def _wait_for_process(self, name: str) -> None:
        deadline = self._clock() + self.restart_timeout
        while True:
            if self._device().exec_shell(f"pidof {name}").ok:
                logger.debug(f"{name} is running")
                return
            if self._clock() >= deadline:
                raise DeviceError(ErrorKind.TIMEOUT, f"{name} did not start within {self.restart_timeout}s")
            self._sleep(self.poll_interval)

    def _install_at_path(self, op: DeploymentOperation) -> None:
        if self.installer is None:
            raise ConfigurationError(["no installer configured"])
        self.installer(op.path)

    def _fetch_artifacts(self, op: DeploymentOperation) -> None:
        if self.store is None:
            raise ConfigurationError(["no artifact store configured"])
        self.store.fetch_all(op.artifacts)
