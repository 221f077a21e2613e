"""Deployment planning and execution."""

from nbuild.deploy.executor import OperationExecutor
from nbuild.deploy.inventory import DeviceAppInventory, fetch_device_apps
from nbuild.deploy.operations import (
    DeploymentOperation,
    OperationKind,
    OperationState,
    OperationStateError,
)
from nbuild.deploy.planner import AppSelection, DeploymentPlanner
from nbuild.deploy.scheduler import (
    DeploymentReport,
    Heartbeat,
    RetryPolicy,
    RetryScheduler,
)

__all__ = [
    "AppSelection",
    "DeploymentOperation",
    "DeploymentPlanner",
    "DeploymentReport",
    "DeviceAppInventory",
    "Heartbeat",
    "OperationExecutor",
    "OperationKind",
    "OperationState",
    "OperationStateError",
    "RetryPolicy",
    "RetryScheduler",
    "fetch_device_apps",
]
