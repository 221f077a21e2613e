"""Utilities for handling KeyboardInterrupt during deployments.

A deployment must not be torn down in the middle of a device command. The
first Ctrl-C therefore only requests cancellation, which the scheduler
observes between operations; a second Ctrl-C interrupts immediately.
"""

import _thread
import logging
import signal
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


def handle_keyboard_interrupt_properly(ke: KeyboardInterrupt) -> None:
    """Forward a KeyboardInterrupt caught off the main thread, then re-raise it.

    Used where worker results are collected (parallel artifact fetches), so
    that Ctrl-C stops the whole CLI and not a single worker.
    """
    _thread.interrupt_main()
    raise ke


@contextmanager
def cancel_on_interrupt(cancel_event: Optional[threading.Event] = None) -> Iterator[threading.Event]:
    """Turn the first SIGINT into a cancellation request.

    Yields:
        The event that is set on the first SIGINT

    Outside the main thread signal handlers cannot be installed, and SIGINT
    keeps its default behavior.
    """
    event = cancel_event or threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield event
        return

    def handler(signum, frame):
        if event.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received, stopping after the current operation (press Ctrl-C again to abort)")
        event.set()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield event
    finally:
        signal.signal(signal.SIGINT, previous)
