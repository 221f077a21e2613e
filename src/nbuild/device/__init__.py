"""
Device communication for nbuild.

This module provides the adb based link used for every device-facing operation.
"""

from .adb import AdbDeviceLink, DeviceSession, ShellOutput, classify_adb_failure, parse_devices_output

__all__ = [
    "AdbDeviceLink",
    "DeviceSession",
    "ShellOutput",
    "classify_adb_failure",
    "parse_devices_output",
]
