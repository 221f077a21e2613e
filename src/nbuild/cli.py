"""
Command-line interface for nbuild.

This module provides the `nbuild` CLI tool for building b2gos and
deploying it to devices.
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from nbuild import __version__, commands
from nbuild.cli_utils import BannerFormatter, ErrorFormatter, HeartbeatPrinter, setup_logging
from nbuild.commands import CommandContext, CommandOutcome
from nbuild.config.build_config import BuildConfig, BuildConfigResolver, ConfigOverrides
from nbuild.device.adb import AdbDeviceLink
from nbuild.errors import ConfigurationError
from nbuild.interrupt_utils import cancel_on_interrupt


@dataclass
class BuildArgs:
    """Arguments for the dev and prod commands."""

    profile: str
    device_type: Optional[str] = None
    screen_size: Optional[str] = None


@dataclass
class PushArgs:
    """Arguments for the push command."""

    apps: Optional[str] = None
    force: bool = False


@dataclass
class PushB2gArgs:
    """Arguments for the push-b2g command."""

    path: Path


@dataclass
class InstallArgs:
    """Arguments for the install command."""

    path: Path


@dataclass
class DebArgs:
    """Arguments for the deb command."""

    device: str = "desktop"


def build_overrides(parsed_args: argparse.Namespace) -> ConfigOverrides:
    """Map command line arguments to configuration overrides."""
    overrides = ConfigOverrides()
    command = parsed_args.command
    if command in ("dev", "prod"):
        build_args = BuildArgs(profile=command, device_type=parsed_args.type, screen_size=parsed_args.size)
        overrides.profile = build_args.profile
        overrides.device_type = build_args.device_type
        overrides.screen_size = build_args.screen_size
    elif command == "push":
        # devices run packaged apps, keep them apart from the linked dev tree
        overrides.profile = "prod"
    elif command == "install":
        overrides.output_path = str(InstallArgs(path=parsed_args.path).path)
    elif command == "deb":
        deb_args = DebArgs(device=parsed_args.device)
        overrides.profile = "prod"
        overrides.output_name = "deb"
        overrides.device_type = deb_args.device
        overrides.package_format = "deb"
    elif command == "push-b2g":
        overrides.b2g_package = str(PushB2gArgs(path=parsed_args.path).path)
    return overrides


def print_settings(resolver: BuildConfigResolver, config: Optional[BuildConfig]) -> None:
    """Print the environment and, when resolved, the configuration banner."""
    sections = [BannerFormatter.format_settings("Environment", resolver.describe_environment())]
    if config is not None:
        sections.append(BannerFormatter.format_settings("Configuration", list(config.to_dict().items())))
    BannerFormatter.print_banner("\n\n".join(sections), center=False)


def dispatch(parsed_args: argparse.Namespace) -> Callable[[CommandContext], CommandOutcome]:
    """Return the command function for the parsed arguments."""
    command = parsed_args.command
    if command in ("dev", "prod"):
        return commands.build_desktop
    if command == "push":
        args = PushArgs(apps=parsed_args.apps, force=parsed_args.force)
        return lambda ctx: commands.push_apps(ctx, args.apps, force=args.force)
    if command == "push-b2g":
        b2g_args = PushB2gArgs(path=parsed_args.path)
        return lambda ctx: commands.push_system(ctx, b2g_args.path)
    if command == "install":
        install_args = InstallArgs(path=parsed_args.path)
        return lambda ctx: commands.install(ctx, install_args.path)
    return {
        "reset-data": commands.reset_data,
        "reset-time": commands.reset_time,
        "restart": commands.restart,
        "deb": commands.package_deb,
        "clean": commands.clean,
        "update-prebuilts": commands.update_prebuilts,
    }[command]


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nbuild",
        description="nbuild - build and deploy b2gos",
    )
    parser.add_argument("--version", action="version", version=f"nbuild {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument("-s", "--serial", default=None, help="adb serial of the device (default: first device)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    for name, help_text in (
        ("dev", "Desktop: prepare a development tree"),
        ("prod", "Desktop: prepare a tree with packaged apps"),
    ):
        build_parser = subparsers.add_parser(name, help=help_text)
        build_parser.add_argument("--type", default=None, help="Device type to emulate: desktop, mobile or pinephone")
        build_parser.add_argument("--size", default=None, help="Screen size to emulate, such as 800x600")

    push_parser = subparsers.add_parser("push", help="Device: push the packaged apps")
    push_parser.add_argument("apps", nargs="?", default=None, help="Comma separated list of apps (default: all)")
    push_parser.add_argument("-f", "--force", action="store_true", help="Push apps even when unchanged")

    push_b2g_parser = subparsers.add_parser("push-b2g", help="Device: push a Gecko package")
    push_b2g_parser.add_argument("path", type=Path, help="Gecko package (e.g. b2g-98.0.en-US.linux-android-aarch64.tar.bz2)")

    subparsers.add_parser("reset-data", help="Device: reset the user data")
    subparsers.add_parser("reset-time", help="Device: set the device clock from the host")
    subparsers.add_parser("restart", help="Device: restart api-daemon and b2g")

    install_parser = subparsers.add_parser("install", help="Desktop: package the apps into a given directory")
    install_parser.add_argument("path", type=Path, help="Root path of the packaged apps, like /system/b2g/webapps")

    deb_parser = subparsers.add_parser("deb", help="Desktop: create a Debian package")
    deb_parser.add_argument("device", nargs="?", default="desktop", help="Device environment (default: desktop)")

    subparsers.add_parser("clean", help="Remove the build output")
    subparsers.add_parser("update-prebuilts", help="Download prebuilt versions of the needed binaries")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """nbuild - build and deploy b2gos."""
    parser = create_parser()
    parsed_args = parser.parse_args(argv)

    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    verbose = parsed_args.verbose
    try:
        resolver = BuildConfigResolver()
        try:
            config = resolver.resolve(build_overrides(parsed_args))
        except ConfigurationError as e:
            print_settings(resolver, None)
            ErrorFormatter.handle_configuration_error(e)
            return

        log_file = setup_logging(verbose, config.output_root)
        if verbose:
            print_settings(resolver, config)
            config.log()

        ctx = CommandContext(
            config=config,
            link=AdbDeviceLink(serial=parsed_args.serial),
            observer=HeartbeatPrinter(verbose),
            verbose=verbose,
        )
        command = dispatch(parsed_args)
        with cancel_on_interrupt(ctx.cancel_event):
            outcome = command(ctx)

        if outcome.success:
            ErrorFormatter.print_success(outcome.message)
            sys.exit(0)
        else:
            details = f"See {log_file} for details." if log_file else ""
            ErrorFormatter.print_error(outcome.message, details)
            sys.exit(1)

    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except PermissionError as e:
        ErrorFormatter.handle_permission_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, verbose)


if __name__ == "__main__":
    main()
