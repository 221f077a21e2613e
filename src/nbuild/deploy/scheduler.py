"""
Retry/progress scheduler.

Runs a deployment plan strictly in order, one operation at a time, driving
each operation through its lifecycle:

    PENDING -> IN_PROGRESS(attempt 1..n) -> SUCCEEDED | FAILED

Only errors flagged ``retryable`` are retried, with exponential backoff up to
the policy's attempt ceiling. The first operation that fails for good stops
the run; operations already applied stay applied, and the report tells how
far the plan got.

Progress is reported to an optional observer through :class:`Heartbeat`
objects, emitted after every attempt and periodically while an attempt is
running. Heartbeats are advisory: observer failures are logged and ignored.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from nbuild.deploy.executor import OperationExecutor
from nbuild.deploy.operations import DeploymentOperation
from nbuild.errors import FileSystemError, NbuildError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling and exponential backoff."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt following attempt number ``attempt``."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


@dataclass(frozen=True)
class Heartbeat:
    """Progress report for one operation attempt."""

    operation: DeploymentOperation
    attempt: int
    elapsed: float
    finished: bool = False


@dataclass
class DeploymentReport:
    """Outcome of running a plan.

    Attributes:
        completed: Operations that succeeded, in order
        failed: The operation that stopped the run, if any
        error: The error of the failed operation
        skipped: Operations never attempted
        cancelled: True if the run stopped on a cancellation request
    """

    completed: List[DeploymentOperation] = field(default_factory=list)
    failed: Optional[DeploymentOperation] = None
    error: Optional[NbuildError] = None
    skipped: List[DeploymentOperation] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.failed is None and not self.cancelled

    def summary(self) -> str:
        total = len(self.completed) + len(self.skipped) + (1 if self.failed else 0)
        if self.success:
            return f"Deployment completed ({len(self.completed)}/{total} operations)"
        if self.cancelled:
            return f"Deployment cancelled after {len(self.completed)}/{total} operations"
        return (
            f"Deployment failed at '{self.failed.describe()}' after {len(self.completed)}/{total} "
            f"operations (attempt {self.failed.attempt}): {self.error}"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "cancelled": self.cancelled,
            "completed": [op.to_dict() for op in self.completed],
            "failed": self.failed.to_dict() if self.failed else None,
            "error": str(self.error) if self.error else None,
            "skipped": [op.to_dict() for op in self.skipped],
        }


class _PeriodicHeartbeat:
    """Emits heartbeats from a timer thread while an attempt runs."""

    def __init__(self, interval: float, emit: Callable[[float], None]):
        self.interval = interval
        self.emit = emit
        self.started_at = time.monotonic()
        self._timer: Optional[threading.Timer] = None
        self._stopped = threading.Event()
        self._lock = threading.Lock()

    def _tick(self) -> None:
        if self._stopped.is_set():
            return
        self.emit(time.monotonic() - self.started_at)
        self._schedule()

    def _schedule(self) -> None:
        with self._lock:
            if self._stopped.is_set():
                return
            self._timer = threading.Timer(self.interval, self._tick)
            self._timer.daemon = True
            self._timer.start()

    def __enter__(self) -> "_PeriodicHeartbeat":
        if self.interval > 0:
            self._schedule()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        with self._lock:
            self._stopped.set()
            if self._timer is not None:
                self._timer.cancel()


class RetryScheduler:
    """Executes deployment plans with retries and progress heartbeats."""

    def __init__(
        self,
        executor: OperationExecutor,
        policy: Optional[RetryPolicy] = None,
        heartbeat_interval: float = 5.0,
        observer: Optional[Callable[[Heartbeat], None]] = None,
        cancel_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize scheduler.

        Args:
            executor: Runs one attempt of an operation
            policy: Retry policy (default: 3 attempts, 1s doubling up to 8s)
            heartbeat_interval: Seconds between heartbeats during an attempt (0 disables)
            observer: Called with every Heartbeat
            cancel_event: Set to request cancellation between operations
            sleep: Sleep function used for backoff delays
        """
        self.executor = executor
        self.policy = policy or RetryPolicy()
        self.heartbeat_interval = heartbeat_interval
        self.observer = observer
        self.cancel_event = cancel_event or threading.Event()
        self._sleep = sleep

    def _notify(self, heartbeat: Heartbeat) -> None:
        if self.observer is None:
            return
        try:
            self.observer(heartbeat)
        except Exception as e:
            logger.warning(f"Progress observer failed: {e}")

    def _attempt(self, operation: DeploymentOperation) -> Optional[NbuildError]:
        """Run one attempt; return the error, or None on success."""
        attempt = operation.attempt

        def emit(elapsed: float) -> None:
            self._notify(Heartbeat(operation, attempt, elapsed))

        started = time.monotonic()
        error: Optional[NbuildError] = None
        with _PeriodicHeartbeat(self.heartbeat_interval, emit):
            try:
                self.executor.execute(operation)
            except NbuildError as e:
                error = e
            except OSError as e:
                error = FileSystemError(f"{operation.describe()}: {e}")
        self._notify(Heartbeat(operation, attempt, time.monotonic() - started, finished=True))
        return error

    def _run_operation(self, operation: DeploymentOperation) -> Optional[NbuildError]:
        """Drive one operation to a terminal state.

        Returns:
            None on success, the last error otherwise. An operation left
            IN_PROGRESS after a None-error return was cancelled between
            attempts.
        """
        operation.begin()
        while True:
            logger.info(f"[{operation.op_id}] {operation.describe()} (attempt {operation.attempt}/{self.policy.max_attempts})")
            error = self._attempt(operation)
            if error is None:
                operation.succeed()
                return None

            if not error.retryable or operation.attempt >= self.policy.max_attempts:
                operation.fail(str(error))
                logger.error(f"[{operation.op_id}] {operation.describe()} failed: {error}")
                return error

            delay = self.policy.delay_for(operation.attempt)
            logger.warning(f"[{operation.op_id}] attempt {operation.attempt} failed: {error}; retrying in {delay:.1f}s")
            self._sleep(delay)
            if self.cancel_event.is_set():
                operation.fail("cancelled")
                return error
            operation.retry()

    def run(self, plan: List[DeploymentOperation]) -> DeploymentReport:
        """Execute plan in order and report how far it got."""
        report = DeploymentReport()
        for index, operation in enumerate(plan):
            if self.cancel_event.is_set():
                logger.warning("Cancellation requested, stopping deployment")
                report.cancelled = True
                report.skipped = list(plan[index:])
                return report

            error = self._run_operation(operation)
            if error is None:
                report.completed.append(operation)
                continue

            report.failed = operation
            report.error = error
            report.skipped = list(plan[index + 1:])
            report.cancelled = operation.failure == "cancelled"
            return report

        return report
