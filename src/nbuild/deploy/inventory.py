"""Snapshot of the apps installed on a device."""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from nbuild.deploy.operations import DEVICE_WEBAPPS_DIR
from nbuild.device.adb import AdbDeviceLink
from nbuild.errors import DeviceError, ErrorKind

logger = logging.getLogger(__name__)

LIST_APPS_COMMAND = (
    f"for f in {DEVICE_WEBAPPS_DIR}/*/application.zip; do "
    '[ -f "$f" ] && echo "$f $(stat -c %Y "$f")"; '
    "done"
)


@dataclass
class DeviceAppInventory:
    """Build stamps of the apps found on the device, by app id."""

    stamps: Dict[str, int] = field(default_factory=dict)

    def stamp_of(self, app_id: str) -> Optional[int]:
        return self.stamps.get(app_id)

    def __contains__(self, app_id: str) -> bool:
        return app_id in self.stamps

    def __len__(self) -> int:
        return len(self.stamps)

    @classmethod
    def from_shell_output(cls, output: str) -> "DeviceAppInventory":
        """Parse lines of ``<path>/<app>/application.zip <mtime>``.

        Raises:
            DeviceError: PROTOCOL on a line that does not have that shape
        """
        stamps = {}
        prefix = DEVICE_WEBAPPS_DIR + "/"
        for raw in output.splitlines():
            line = raw.strip()
            if not line:
                continue
            path, _, stamp_text = line.rpartition(" ")
            if not path.startswith(prefix) or not path.endswith("/application.zip"):
                raise DeviceError(ErrorKind.PROTOCOL, f"Unexpected app listing line: {line!r}")
            try:
                stamp = int(stamp_text)
            except ValueError as e:
                raise DeviceError(ErrorKind.PROTOCOL, f"Malformed build stamp in line: {line!r}") from e
            app_id = path[len(prefix):-len("/application.zip")]
            stamps[app_id] = stamp
        return cls(stamps)


def fetch_device_apps(link: AdbDeviceLink) -> DeviceAppInventory:
    """List the apps installed on the device with their build stamps.

    Raises:
        DeviceError: If the device cannot be queried
    """
    result = link.exec_shell(LIST_APPS_COMMAND)
    inventory = DeviceAppInventory.from_shell_output(result.stdout)
    logger.debug(f"Device has {len(inventory)} apps installed")
    return inventory
