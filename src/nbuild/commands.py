"""
Top-level nbuild operations.

Each command takes a :class:`CommandContext` and returns a single
:class:`CommandOutcome`. Domain errors never escape a command: they are
logged and turned into a failed outcome with a human readable cause.
Details of a partially applied deployment are logged, the outcome only
carries the summary.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from nbuild.build.apps import AppPackager, discover_apps
from nbuild.build.build_utils import safe_rmtree
from nbuild.build.packaging import RawInstallBackend, create_backend
from nbuild.config.build_config import BuildConfig, BuildProfile
from nbuild.deploy.executor import OperationExecutor
from nbuild.deploy.inventory import fetch_device_apps
from nbuild.deploy.operations import DeploymentOperation
from nbuild.deploy.planner import AppSelection, DeploymentPlanner
from nbuild.deploy.scheduler import DeploymentReport, Heartbeat, RetryPolicy, RetryScheduler
from nbuild.device.adb import AdbDeviceLink
from nbuild.errors import FileSystemError, NbuildError
from nbuild.packages.cache import ArtifactCache
from nbuild.packages.manifest import ArtifactManifest
from nbuild.packages.prebuilts import detect_host_platform, install_prebuilts, resolve_prebuilts
from nbuild.packages.store import ArtifactStoreClient

logger = logging.getLogger(__name__)


@dataclass
class CommandOutcome:
    """Result of a top-level command."""

    success: bool
    message: str


@dataclass
class CommandContext:
    """Everything a command needs besides its own arguments.

    Attributes:
        config: Resolved configuration snapshot
        link: Device link (created on demand)
        store: Artifact store client (created on demand from the config)
        policy: Retry policy for deployments
        observer: Receives progress heartbeats
        cancel_event: Set to stop a deployment between operations
        show_progress: Whether to show download progress bars
        verbose: Whether to print per-app progress
        sleep: Sleep function for backoff and polling
    """

    config: BuildConfig
    link: Optional[AdbDeviceLink] = None
    store: Optional[ArtifactStoreClient] = None
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    observer: Optional[Callable[[Heartbeat], None]] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    show_progress: bool = True
    verbose: bool = False
    sleep: Callable[[float], None] = time.sleep

    def device(self) -> AdbDeviceLink:
        if self.link is None:
            self.link = AdbDeviceLink(sleep=self.sleep)
        return self.link

    def artifact_store(self) -> ArtifactStoreClient:
        if self.store is None:
            manifest = ArtifactManifest.load(self.config.prebuilts_manifest)
            self.store = ArtifactStoreClient(manifest, ArtifactCache(self.config.cache_root), show_progress=self.show_progress)
        return self.store

    def scheduler(self, executor: OperationExecutor) -> RetryScheduler:
        return RetryScheduler(
            executor,
            policy=self.policy,
            observer=self.observer,
            cancel_event=self.cancel_event,
            sleep=self.sleep,
        )


def _failure(action: str, error: Exception) -> CommandOutcome:
    logger.error(f"{action} failed: {error}")
    return CommandOutcome(False, f"{action} failed: {error}")


def _report_outcome(action: str, report: DeploymentReport) -> CommandOutcome:
    for op in report.completed:
        logger.info(f"  done     {op.describe()} (attempts: {op.attempt})")
    if report.failed is not None:
        logger.error(f"  failed   {report.failed.describe()} (attempts: {report.failed.attempt}): {report.error}")
    for op in report.skipped:
        logger.info(f"  skipped  {op.describe()}")
    if report.success:
        return CommandOutcome(True, f"{action}: {report.summary()}")
    return CommandOutcome(False, f"{action}: {report.summary()}")


def _run_device_plan(ctx: CommandContext, action: str, plan: List[DeploymentOperation]) -> CommandOutcome:
    executor = OperationExecutor(link=ctx.device(), sleep=ctx.sleep)
    report = ctx.scheduler(executor).run(plan)
    return _report_outcome(action, report)


def desktop_command_line(config: BuildConfig) -> List[str]:
    """Command line that starts the desktop runtime on a built output tree."""
    cmd = [str(config.b2g_binary or "b2g"), "--profile", str(config.output_path / "profile")]
    cmd += ["--type", config.device_type.value]
    if config.screen_size is not None:
        cmd += ["--screen", f"{config.screen_size[0]}x{config.screen_size[1]}"]
    return cmd


def build_desktop(ctx: CommandContext) -> CommandOutcome:
    """dev/prod: prepare the output tree for the desktop runtime."""
    config = ctx.config
    action = f"{config.profile.value} build"
    try:
        backend = create_backend(config)
        package = backend.build(config, config.output_path)
        backend.validate(package)
    except NbuildError as e:
        return _failure(action, e)

    command = " ".join(desktop_command_line(config))
    logger.info(f"Built {len(package.apps)} apps into {package.output_path}")
    if config.profile == BuildProfile.DEV:
        return CommandOutcome(True, f"Development tree ready in {package.output_path}, run: {command}")
    return CommandOutcome(True, f"Production tree ready in {package.output_path}, run: {command}")


def push_apps(ctx: CommandContext, apps: Optional[str] = None, force: bool = False) -> CommandOutcome:
    """push: package the apps and push the ones that changed."""
    config = ctx.config
    action = "Push"
    try:
        selection = AppSelection.from_string(apps)
        sources = discover_apps(config.apps_root)
        local_apps = AppPackager(verbose=ctx.verbose).package(sources, config.webapps_dir)
        device_apps = fetch_device_apps(ctx.device())
        plan = DeploymentPlanner().plan_push_apps(
            selection,
            local_apps,
            device_apps,
            force=force,
            webapps_manifest=config.webapps_dir / "webapps.json",
        )
    except NbuildError as e:
        return _failure(action, e)

    if not plan:
        return CommandOutcome(True, "All apps are up to date on the device")
    return _run_device_plan(ctx, action, plan)


def push_system(ctx: CommandContext, package_path: Optional[Path] = None) -> CommandOutcome:
    """push-b2g: push a Gecko package and restart the device services."""
    action = "Push b2g"
    path = package_path or ctx.config.b2g_package
    if path is None:
        return CommandOutcome(False, f"{action} failed: no package given and NUTRIA_B2G_PACKAGE is not set")
    path = Path(path)
    if not path.is_file():
        return _failure(action, FileSystemError(f"Package not found: {path}"))
    return _run_device_plan(ctx, action, DeploymentPlanner().plan_push_system(path))


def reset_data(ctx: CommandContext) -> CommandOutcome:
    return _run_device_plan(ctx, "Reset data", DeploymentPlanner().plan_reset_data())


def reset_time(ctx: CommandContext) -> CommandOutcome:
    return _run_device_plan(ctx, "Reset time", DeploymentPlanner().plan_reset_time())


def restart(ctx: CommandContext) -> CommandOutcome:
    return _run_device_plan(ctx, "Restart", DeploymentPlanner().plan_restart())


def install(ctx: CommandContext, path: Path) -> CommandOutcome:
    """install: package the apps into a given webapps directory."""
    config = ctx.config

    def installer(target: Path) -> None:
        sources = discover_apps(config.apps_root)
        AppPackager(verbose=ctx.verbose).package(sources, target)

    executor = OperationExecutor(installer=installer, sleep=ctx.sleep)
    report = ctx.scheduler(executor).run(DeploymentPlanner().plan_install(Path(path)))
    return _report_outcome("Install", report)


def package_deb(ctx: CommandContext) -> CommandOutcome:
    """deb: build a Debian package of the desktop runtime."""
    config = ctx.config
    action = "Debian package"
    try:
        backend = create_backend(config)
        package = backend.build(config, config.output_path)
        backend.validate(package)
    except NbuildError as e:
        return _failure(action, e)
    return CommandOutcome(True, f"Debian package created: {package.artifact}")


def clean(ctx: CommandContext) -> CommandOutcome:
    """clean: remove build output, keeping installed prebuilts."""
    config = ctx.config
    root = config.output_root
    if not root.exists():
        return CommandOutcome(True, f"Nothing to clean in {root}")
    try:
        for entry in sorted(root.iterdir()):
            if entry == config.prebuilts_dir:
                continue
            if entry.is_dir():
                safe_rmtree(entry)
            else:
                entry.unlink()
    except OSError as e:
        return _failure("Clean", FileSystemError(f"Failed to clean {root}: {e}"))
    return CommandOutcome(True, f"Cleaned {root}")


def update_prebuilts(ctx: CommandContext, host_platform: Optional[str] = None) -> CommandOutcome:
    """update-prebuilts: fetch and install api-daemon, b2ghald and appscmd."""
    config = ctx.config
    action = "Update prebuilts"
    try:
        store = ctx.artifact_store()
        descriptors = resolve_prebuilts(store, host_platform or detect_host_platform())
    except NbuildError as e:
        return _failure(action, e)

    plan = [DeploymentOperation.fetch_artifacts(tuple(descriptors))]
    report = ctx.scheduler(OperationExecutor(store=store, sleep=ctx.sleep)).run(plan)
    if not report.success:
        return _report_outcome(action, report)

    try:
        fetched = {d.name: d.cache_path for d in descriptors}
        install_prebuilts(fetched, config.prebuilts_dir, store.downloader)
    except NbuildError as e:
        return _failure(action, e)

    versions = ", ".join(f"{d.name} {d.version}" for d in descriptors)
    return CommandOutcome(True, f"Prebuilts updated in {config.prebuilts_dir}: {versions}")
