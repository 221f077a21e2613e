"""Unit tests for CLI utilities."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from nbuild.cli_utils import BannerFormatter, ErrorFormatter, HeartbeatPrinter, setup_logging
from nbuild.deploy.operations import DeploymentOperation
from nbuild.deploy.scheduler import Heartbeat
from nbuild.errors import ConfigurationError


@pytest.fixture
def root_logger():
    """Restore the root logger after a test installs handlers."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestBannerFormatter:
    """Tests for BannerFormatter class."""

    def test_format_banner_single_line_centered(self):
        result = BannerFormatter.format_banner("Hello World", width=20, center=True)
        lines = result.split("\n")

        assert len(lines) == 3
        assert lines[0] == "=" * 20
        assert lines[2] == "=" * 20
        assert lines[1].strip() == "Hello World"

    def test_format_banner_multi_line(self):
        """Test formatting a multi-line banner."""
        result = BannerFormatter.format_banner("Line 1\nLine 2\nLine 3", width=30, center=False)
        lines = result.split("\n")

        assert len(lines) == 5  # 2 borders + 3 content lines
        assert lines[1:4] == ["  Line 1", "  Line 2", "  Line 3"]

    def test_format_banner_custom_border_char(self):
        result = BannerFormatter.format_banner("Test", width=10, border_char="-", center=False)
        lines = result.split("\n")

        assert lines[0] == "-" * 10
        assert lines[2] == "-" * 10

    def test_format_banner_very_long_line(self):
        """The long line is kept even if it overflows."""
        long_text = "x" * 100
        lines = BannerFormatter.format_banner(long_text, width=20, center=False).split("\n")
        assert lines[1] == "  " + long_text

    def test_format_settings(self):
        result = BannerFormatter.format_settings(
            "Environment",
            [("NUTRIA_OUTPUT_ROOT", "/tmp/out"), ("NUTRIA_API_DAEMON_PORT", "")],
        )
        lines = result.split("\n")

        assert lines[0] == "Environment:"
        assert lines[1] == "NUTRIA_OUTPUT_ROOT".ljust(26) + " = /tmp/out"
        assert lines[2].startswith("NUTRIA_API_DAEMON_PORT")
        assert lines[1].index("=") == lines[2].index("=")

    def test_print_banner(self, capsys):
        BannerFormatter.print_banner("Test Message", width=30, center=False)
        output_lines = capsys.readouterr().out.strip().split("\n")

        assert output_lines == ["=" * 30, "  Test Message", "=" * 30]


class TestErrorFormatter:
    """Tests for ErrorFormatter class."""

    def test_configuration_error_lists_every_violation(self, capsys):
        error = ConfigurationError(["daemon port 0 is outside the range 1-65535", "screen size must look like 800x600, got 'big'"])

        with pytest.raises(SystemExit) as exc_info:
            ErrorFormatter.handle_configuration_error(error)

        assert exc_info.value.code == 1
        out = capsys.readouterr().out
        assert "Invalid configuration" in out
        assert "  - daemon port 0 is outside the range 1-65535" in out
        assert "  - screen size must look like 800x600, got 'big'" in out

    def test_keyboard_interrupt_exit_code(self):
        with pytest.raises(SystemExit) as exc_info:
            ErrorFormatter.handle_keyboard_interrupt()
        assert exc_info.value.code == 130

    def test_unexpected_error(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            ErrorFormatter.handle_unexpected_error(ValueError("boom"))
        assert exc_info.value.code == 1
        assert "ValueError: boom" in capsys.readouterr().out


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_log_file_created(self, tmp_path, root_logger):
        log_file = setup_logging(verbose=False, log_dir=tmp_path / "logs")

        assert log_file == tmp_path / "logs" / "nbuild.log"
        file_handlers = [h for h in root_logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 10 * 1024 * 1024
        assert file_handlers[0].backupCount == 3

        logging.getLogger("nbuild.test").info("written to file")
        file_handlers[0].flush()
        assert "written to file" in log_file.read_text()

    def test_console_only(self, root_logger):
        assert setup_logging(verbose=True) is None
        assert root_logger.level == logging.DEBUG

    def test_unwritable_log_dir(self, tmp_path, root_logger):
        blocker = tmp_path / "file"
        blocker.write_text("")
        assert setup_logging(log_dir=blocker / "logs") is None


class TestHeartbeatPrinter:
    """Tests for HeartbeatPrinter."""

    def test_finished_attempt_is_printed(self, capsys):
        op = DeploymentOperation.push_app("clock", Path("/out/clock/application.zip"))
        HeartbeatPrinter()(Heartbeat(op, 2, 1.25, finished=True))
        out = capsys.readouterr().out
        assert "push app clock" in out
        assert "attempt 2, 1.2s" in out or "attempt 2, 1.3s" in out

    def test_running_heartbeat_only_when_verbose(self, capsys):
        op = DeploymentOperation.restart()
        HeartbeatPrinter()(Heartbeat(op, 1, 5.0))
        assert capsys.readouterr().out == ""
        HeartbeatPrinter(verbose=True)(Heartbeat(op, 1, 5.0))
        assert "still running (5s)" in capsys.readouterr().out
