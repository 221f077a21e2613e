"""
Deployment planner.

Turns a request ("push these apps", "push this system package", ...) plus a
snapshot of the device into the minimal ordered list of operations. Planning
has no side effects: it never talks to the device or the network.

Every plan keeps transfers and installs ahead of restarts, so a service is
never restarted on top of a half-deployed system.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from nbuild.build.apps import LocalApp
from nbuild.deploy.inventory import DeviceAppInventory
from nbuild.deploy.operations import (
    DEVICE_STAGING_DIR,
    DEVICE_WEBAPPS_DIR,
    FULL_RESTART,
    RUNTIME_RESTART,
    DeploymentOperation,
)
from nbuild.errors import ConfigurationError, ErrorKind

logger = logging.getLogger(__name__)

ALL_APPS = "all"


@dataclass(frozen=True)
class AppSelection:
    """Which apps to push: every local app, or an explicit list."""

    app_ids: Optional[Tuple[str, ...]] = None

    @property
    def is_all(self) -> bool:
        return self.app_ids is None

    @classmethod
    def all(cls) -> "AppSelection":
        return cls(None)

    @classmethod
    def from_string(cls, value: Optional[str]) -> "AppSelection":
        """Parse a comma separated list of app ids; empty or "all" selects everything."""
        if value is None or value.strip() in ("", ALL_APPS):
            return cls.all()
        ids = [part.strip() for part in value.split(",") if part.strip()]
        if not ids:
            return cls.all()
        # Keep the order given, drop duplicates.
        return cls(tuple(dict.fromkeys(ids)))


def _restarts_last(plan: List[DeploymentOperation]) -> List[DeploymentOperation]:
    return sorted(plan, key=lambda op: op.is_restart)


class DeploymentPlanner:
    """Computes deployment plans."""

    def __init__(self, remote_webapps_dir: str = DEVICE_WEBAPPS_DIR):
        self.remote_webapps_dir = remote_webapps_dir

    def plan_push_apps(
        self,
        selection: AppSelection,
        local_apps: Dict[str, LocalApp],
        device_apps: DeviceAppInventory,
        force: bool = False,
        webapps_manifest: Optional[Path] = None,
    ) -> List[DeploymentOperation]:
        """Plan an incremental app push.

        An app is pushed when it is missing on the device, when its local
        build stamp is newer than the device copy, or when force is set.

        Args:
            selection: Apps to consider
            local_apps: Locally packaged apps by id
            device_apps: Apps installed on the device
            force: Push selected apps even when unchanged
            webapps_manifest: Local webapps.json, pushed along with any app

        Returns:
            Ordered operations; empty when the device is up to date

        Raises:
            ConfigurationError: UNKNOWN_APP listing every unknown app id
        """
        if selection.is_all:
            candidates = sorted(local_apps)
        else:
            unknown = [app_id for app_id in selection.app_ids if app_id not in local_apps]
            if unknown:
                raise ConfigurationError(
                    [f"unknown app '{app_id}'" for app_id in unknown],
                    kind=ErrorKind.UNKNOWN_APP,
                )
            candidates = list(selection.app_ids)

        plan: List[DeploymentOperation] = []
        for app_id in candidates:
            app = local_apps[app_id]
            device_stamp = device_apps.stamp_of(app_id)
            if force or device_stamp is None or app.build_stamp > device_stamp:
                plan.append(DeploymentOperation.push_app(app_id, app.package_path, self.remote_webapps_dir))
            else:
                logger.debug(f"{app_id} is up to date on device (stamp {device_stamp})")

        if not plan:
            return plan

        if webapps_manifest is not None and Path(webapps_manifest).is_file():
            plan.append(DeploymentOperation.push_file(Path(webapps_manifest), f"{self.remote_webapps_dir}/webapps.json"))
        plan.append(DeploymentOperation.restart(RUNTIME_RESTART))
        return _restarts_last(plan)

    def plan_push_system(self, package_path: Path) -> List[DeploymentOperation]:
        """Push a system (b2g) package, unpack it into /system, restart everything."""
        package_path = Path(package_path)
        staged = f"{DEVICE_STAGING_DIR}/{package_path.name}"
        plan = [
            DeploymentOperation.push_file(package_path, staged, unpack_to="/system"),
            DeploymentOperation.restart(FULL_RESTART),
        ]
        return _restarts_last(plan)

    def plan_reset_data(self) -> List[DeploymentOperation]:
        return _restarts_last([DeploymentOperation.reset_data(), DeploymentOperation.restart(FULL_RESTART)])

    def plan_reset_time(self) -> List[DeploymentOperation]:
        return [DeploymentOperation.reset_time()]

    def plan_restart(self) -> List[DeploymentOperation]:
        return [DeploymentOperation.restart(FULL_RESTART)]

    def plan_install(self, path: Path) -> List[DeploymentOperation]:
        return [DeploymentOperation.install_at_path(Path(path))]
