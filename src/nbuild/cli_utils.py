"""CLI utility functions for nbuild.

This module provides common utilities used across CLI commands including:
- Logging setup (console and rotating log file)
- Error handling and formatting
- Banners and progress display
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Tuple

from nbuild.deploy.scheduler import Heartbeat
from nbuild.errors import ConfigurationError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "nbuild.log"


def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> Optional[Path]:
    """Setup logging for the CLI.

    The console only shows warnings unless verbose is set; the rotating log
    file in log_dir always records INFO and above.

    Returns:
        Path of the log file, or None if it could not be created
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root.addHandler(console_handler)

    if log_dir is None:
        return None

    log_file = log_dir / LOG_FILE_NAME
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(log_file),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=3,
        )
    except OSError as e:
        root.warning(f"Cannot write log file {log_file}: {e}")
        return None
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(file_handler)
    return log_file


class ErrorFormatter:
    """Colored status lines and the exit paths of the CLI."""

    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @classmethod
    def _colored(cls, color: str, mark: str, text: str) -> str:
        return f"{color}{mark} {text}{cls.RESET}"

    @staticmethod
    def print_error(title: str, message: str) -> None:
        """Print a failure headline followed by its details.

        Args:
            title: One-line summary (e.g. "Push failed: ...")
            message: Details, may be empty or span several lines
        """
        print()
        print(ErrorFormatter._colored(ErrorFormatter.RED, "✗", title))
        if message:
            print()
            print(message)
        print()

    @staticmethod
    def print_success(message: str) -> None:
        print()
        print(ErrorFormatter._colored(ErrorFormatter.GREEN, "✓", message))

    @staticmethod
    def print_warning(message: str) -> None:
        print()
        print(ErrorFormatter._colored(ErrorFormatter.YELLOW, "!", message))

    @staticmethod
    def handle_configuration_error(error: ConfigurationError) -> None:
        """Print every violated rule and exit."""
        ErrorFormatter.print_error("Invalid configuration", "\n".join(f"  - {v}" for v in error.violations))
        sys.exit(1)

    @staticmethod
    def handle_file_not_found(error: FileNotFoundError) -> None:
        ErrorFormatter.print_error("File not found", str(error))
        sys.exit(1)

    @staticmethod
    def handle_permission_error(error: PermissionError) -> None:
        ErrorFormatter.print_error("Permission denied", str(error))
        sys.exit(1)

    @staticmethod
    def handle_keyboard_interrupt() -> None:
        ErrorFormatter.print_warning("Interrupted, the device may be partially updated")
        sys.exit(130)  # 128 + SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> None:
        """Report an error no command handled, with a traceback when verbose."""
        ErrorFormatter.print_error("Unexpected error", f"{type(error).__name__}: {error}")
        if verbose:
            import traceback

            print(traceback.format_exc())
        sys.exit(1)


class BannerFormatter:
    """Bordered blocks of text for settings and summaries."""

    WIDTH = 80
    BORDER = "="

    @staticmethod
    def format_banner(message: str, width: int = WIDTH, border_char: str = BORDER, center: bool = True) -> str:
        """Frame message between two border lines.

        Lines are centered in width, or indented by two spaces when center is
        False. Lines longer than width are kept whole.
        """
        rule = border_char * width
        if center:
            body = [" " * ((width - len(line)) // 2) + line for line in message.split("\n")]
        else:
            body = ["  " + line for line in message.split("\n")]
        return "\n".join([rule, *body, rule])

    @staticmethod
    def format_settings(title: str, settings: List[Tuple[str, object]]) -> str:
        """Format name/value pairs as an aligned block under a title."""
        lines = [f"{title}:"]
        # wide enough for the longest environment variable name
        lines += [f"{name:26} = {value}" for name, value in settings]
        return "\n".join(lines)

    @staticmethod
    def print_banner(message: str, width: int = WIDTH, center: bool = True) -> None:
        print()
        print(BannerFormatter.format_banner(message, width=width, center=center))


class HeartbeatPrinter:
    """Prints scheduler heartbeats as one status line per attempt."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def __call__(self, heartbeat: Heartbeat) -> None:
        op = heartbeat.operation
        if heartbeat.finished:
            print(f"  [{op.op_id}] {op.describe()} (attempt {heartbeat.attempt}, {heartbeat.elapsed:.1f}s)")
        elif self.verbose:
            print(f"  [{op.op_id}] {op.describe()} still running ({heartbeat.elapsed:.0f}s)")
