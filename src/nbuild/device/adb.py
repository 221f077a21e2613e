"""
adb device link.

This module is the only place that talks to a device. Every public call makes
exactly one attempt: retrying is the scheduler's job. Failures are mapped to
:class:`~nbuild.errors.DeviceError` kinds:

- TIMEOUT, IO: transient, retryable by the caller
- PROTOCOL: unexpected or malformed adb output, never retried
- DEVICE_NOT_FOUND, PERMISSION_DENIED: fatal

Connection validity is an explicit flag on the :class:`DeviceSession`. A
failed command invalidates the session; the next command first runs an
explicit, logged reconnection step.
"""

import logging
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import psutil

from nbuild.errors import DeviceError, ErrorKind, FileSystemError

logger = logging.getLogger(__name__)

EXIT_MARKER = "__NBUILD_EXIT__"

# (substring of adb output, error kind). First match wins.
ADB_ERROR_PATTERNS: List[Tuple[str, ErrorKind]] = [
    ("insufficient permissions", ErrorKind.PERMISSION_DENIED),
    ("no permissions", ErrorKind.PERMISSION_DENIED),
    ("unauthorized", ErrorKind.PERMISSION_DENIED),
    ("permission denied", ErrorKind.PERMISSION_DENIED),
    ("read-only file system", ErrorKind.PERMISSION_DENIED),
    ("protocol fault", ErrorKind.PROTOCOL),
    ("device offline", ErrorKind.IO),
    ("no devices/emulators found", ErrorKind.IO),
    ("not found", ErrorKind.IO),
    ("connection reset", ErrorKind.IO),
    ("broken pipe", ErrorKind.IO),
    ("closed", ErrorKind.IO),
]

INVALIDATING_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.IO, ErrorKind.DEVICE_NOT_FOUND})


@dataclass
class DeviceSession:
    """One connected device.

    Attributes:
        identifier: adb serial number
        reachable: False once a command failed; reconnect before reuse
        last_contact: Unix timestamp of the last successful command
    """

    identifier: str
    reachable: bool = True
    last_contact: float = field(default_factory=time.time)

    def touch(self) -> None:
        """Record a successful exchange with the device."""
        self.reachable = True
        self.last_contact = time.time()

    def invalidate(self) -> None:
        """Mark the session as unusable until reconnected."""
        self.reachable = False


@dataclass
class ShellOutput:
    """Result of a remote shell command."""

    stdout: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def classify_adb_failure(output: str) -> ErrorKind:
    """Map adb error output to an error kind.

    Unrecognized failures are treated as transient IO errors.
    """
    lowered = output.lower()
    for pattern, kind in ADB_ERROR_PATTERNS:
        if pattern in lowered:
            return kind
    return ErrorKind.IO


def kill_process_tree(pid: int) -> None:
    """Terminate a process and all of its children."""
    try:
        root = psutil.Process(pid)
        processes = root.children(recursive=True) + [root]
    except psutil.NoSuchProcess:
        return

    for proc in processes:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _gone, alive = psutil.wait_procs(processes, timeout=3)
    for proc in alive:
        try:
            proc.kill()
            logger.warning(f"Force killed stubborn process {proc.pid}")
        except psutil.NoSuchProcess:
            pass


def parse_devices_output(output: str) -> List[Tuple[str, str]]:
    """Parse ``adb devices`` output into (serial, state) pairs.

    Raises:
        DeviceError: PROTOCOL if the listing header is missing
    """
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    # The adb server may print "* daemon started successfully" first.
    lines = [line for line in lines if not line.startswith("*")]
    if not lines or not lines[0].startswith("List of devices attached"):
        raise DeviceError(ErrorKind.PROTOCOL, f"Unexpected 'adb devices' output: {output!r}")

    devices = []
    for line in lines[1:]:
        parts = line.split(None, 1)
        if len(parts) != 2:
            raise DeviceError(ErrorKind.PROTOCOL, f"Malformed device line: {line!r}")
        devices.append((parts[0], parts[1]))
    return devices


class AdbDeviceLink:
    """Executes commands and file transfers on a device through adb."""

    def __init__(
        self,
        adb_binary: str = "adb",
        serial: Optional[str] = None,
        command_timeout: float = 60.0,
        push_timeout: float = 600.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize device link.

        Args:
            adb_binary: adb executable
            serial: Device serial (first attached device if None)
            command_timeout: Timeout for shell and control commands, in seconds
            push_timeout: Timeout for file transfers, in seconds
            sleep: Sleep function used while polling
            clock: Monotonic clock the polling deadline is measured on
        """
        self.adb_binary = adb_binary
        self.serial = serial
        self.command_timeout = command_timeout
        self.push_timeout = push_timeout
        self._sleep = sleep
        self._clock = clock
        self.session: Optional[DeviceSession] = None

    def _adb(self, args: List[str], timeout: float, target_device: bool = True) -> Tuple[int, str]:
        """Run one adb invocation.

        Returns:
            (return code, combined stdout and stderr)

        Raises:
            DeviceError: TIMEOUT if the command did not finish in time, or
                DEVICE_NOT_FOUND if adb itself cannot be started
        """
        cmd = [self.adb_binary]
        if target_device and self.serial:
            cmd += ["-s", self.serial]
        cmd += args
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as e:
            raise DeviceError(ErrorKind.DEVICE_NOT_FOUND, f"adb executable not found: {self.adb_binary}") from e
        except OSError as e:
            raise DeviceError(ErrorKind.IO, f"Failed to start adb: {e}") from e

        try:
            output, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            kill_process_tree(proc.pid)
            proc.communicate()
            self._invalidate()
            raise DeviceError(ErrorKind.TIMEOUT, f"'adb {' '.join(args)}' timed out after {timeout}s") from e

        return proc.returncode, output or ""

    def _invalidate(self) -> None:
        if self.session is not None and self.session.reachable:
            logger.info(f"Device session {self.session.identifier} invalidated")
            self.session.invalidate()

    def _fail(self, args: List[str], output: str) -> DeviceError:
        kind = classify_adb_failure(output)
        if kind in INVALIDATING_KINDS:
            self._invalidate()
        return DeviceError(kind, f"'adb {' '.join(args)}' failed: {output.strip()}")

    def _require_session(self) -> DeviceSession:
        if self.session is None or not self.session.reachable:
            if self.session is not None:
                logger.info(f"Reconnecting to device {self.session.identifier}")
            return self.connect()
        return self.session

    def connect(self) -> DeviceSession:
        """Establish a session, or reuse a reachable one.

        Returns:
            The active DeviceSession

        Raises:
            DeviceError: DEVICE_NOT_FOUND or PERMISSION_DENIED
        """
        if self.session is not None and self.session.reachable:
            return self.session

        code, output = self._adb(["devices"], self.command_timeout, target_device=False)
        if code != 0:
            raise self._fail(["devices"], output)

        devices = parse_devices_output(output)
        if self.serial:
            devices = [d for d in devices if d[0] == self.serial]

        if not devices:
            wanted = f"'{self.serial}'" if self.serial else "any device"
            raise DeviceError(ErrorKind.DEVICE_NOT_FOUND, f"No device found ({wanted})")

        ready = [serial for serial, state in devices if state == "device"]
        if not ready:
            serial, state = devices[0]
            if "unauthorized" in state or "permissions" in state:
                raise DeviceError(ErrorKind.PERMISSION_DENIED, f"Device {serial} refused access: {state}")
            raise DeviceError(ErrorKind.DEVICE_NOT_FOUND, f"Device {serial} is not ready: {state}")

        if len(ready) > 1 and not self.serial:
            logger.warning(f"Several devices attached ({', '.join(ready)}), using {ready[0]}")

        if self.session is not None and self.session.identifier == ready[0]:
            self.session.touch()
        else:
            self.session = DeviceSession(identifier=ready[0])
        self.serial = ready[0]
        logger.info(f"Connected to device {self.serial}")
        return self.session

    def push(self, local_path: Path, remote_path: str) -> None:
        """Copy a local file to the device, overwriting the destination.

        A failure leaves the destination in an unknown state.

        Raises:
            FileSystemError: If the local file does not exist
            DeviceError: TIMEOUT, PROTOCOL, IO or PERMISSION_DENIED
        """
        local_path = Path(local_path)
        if not local_path.exists():
            raise FileSystemError(f"Cannot push missing file {local_path}")

        session = self._require_session()
        args = ["push", str(local_path), remote_path]
        code, output = self._adb(args, self.push_timeout)
        if code != 0:
            raise self._fail(args, output)
        session.touch()
        logger.debug(f"Pushed {local_path} -> {remote_path}")

    def exec_shell(self, command: str) -> ShellOutput:
        """Run a shell command on the device.

        A non-zero exit code of the remote command is returned, not raised.

        Raises:
            DeviceError: If adb fails or the reply is malformed
        """
        session = self._require_session()
        args = ["shell", f"{command}; echo {EXIT_MARKER}$?"]
        code, output = self._adb(args, self.command_timeout)

        marker_at = output.rfind(EXIT_MARKER)
        if marker_at < 0:
            if code != 0:
                raise self._fail(["shell", command], output)
            raise DeviceError(ErrorKind.PROTOCOL, f"Missing exit status in reply to '{command}': {output!r}")

        status_text = output[marker_at + len(EXIT_MARKER):].strip()
        try:
            exit_code = int(status_text)
        except ValueError as e:
            raise DeviceError(ErrorKind.PROTOCOL, f"Malformed exit status {status_text!r} for '{command}'") from e

        session.touch()
        return ShellOutput(stdout=output[:marker_at], exit_code=exit_code)

    def wait_reachable(self, timeout: float, poll_interval: float = 1.0) -> DeviceSession:
        """Poll until the device answers, or give up after timeout seconds.

        Raises:
            DeviceError: TIMEOUT if the device did not come back in time
        """
        deadline = self._clock() + timeout
        last_state = "unknown"
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            try:
                code, output = self._adb(["get-state"], min(self.command_timeout, max(remaining, 1.0)))
                last_state = output.strip() or last_state
                if code == 0 and last_state == "device":
                    self._invalidate()
                    return self.connect()
            except DeviceError as e:
                if e.kind == ErrorKind.DEVICE_NOT_FOUND:
                    raise
                last_state = str(e)
            self._sleep(poll_interval)

        self._invalidate()
        raise DeviceError(ErrorKind.TIMEOUT, f"Device not reachable after {timeout}s (last state: {last_state})")

    def reboot(self) -> None:
        """Reboot the device. The session stays invalid until reconnected."""
        self._require_session()
        code, output = self._adb(["reboot"], self.command_timeout)
        if code != 0:
            raise self._fail(["reboot"], output)
        self._invalidate()

    def remount(self) -> None:
        """Remount /system read-write."""
        session = self._require_session()
        code, output = self._adb(["remount"], self.command_timeout)
        if code != 0:
            raise self._fail(["remount"], output)
        session.touch()
