"""Custom exceptions for install operations.

Every failure the installer can detect is fatal. Each stage raises one of
these and the command-line driver reports it and exits with status 1.

Exception Hierarchy:
    InstallerError (base)
        ├── DependencyError
        │   ├── MissingDependencyError
        │   └── PermissionDeniedError
        ├── ConfigurationError
        │   └── UnsupportedPlatformError
        ├── DeviceError
        │   ├── DeviceNotFoundError
        │   ├── RootDeviceNotFoundError
        │   └── RunningFromTargetError
        ├── UUIDGenerationError
        ├── CommandError
        ├── PartitionError
        │   └── BootloaderWriteError
        ├── FormatError
        ├── MountError
        │   └── UnmountFailedError
        └── CopyError

Usage:
    from emmc_installer.storage.exceptions import RunningFromTargetError

    if (dev_dir / f"{root_disk}boot0").exists():
        raise RunningFromTargetError(root_disk)
"""

from __future__ import annotations

from typing import Sequence


class InstallerError(Exception):
    """Base exception for all install operations."""


class DependencyError(InstallerError):
    """Base exception for host prerequisites."""


class MissingDependencyError(DependencyError):
    """One or more required external tools are not installed."""

    def __init__(self, missing: Sequence[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required tools: {', '.join(self.missing)}")


class PermissionDeniedError(DependencyError):
    """The installer is not running as root."""

    def __init__(self, euid: int):
        self.euid = euid
        super().__init__(f"Must be run as root (effective uid is {euid})")


class ConfigurationError(InstallerError):
    """The platform descriptor is missing or invalid."""


class UnsupportedPlatformError(ConfigurationError):
    """The platform descriptor names a platform this installer does not handle."""

    def __init__(self, platform: str, expected: str):
        self.platform = platform
        self.expected = expected
        super().__init__(
            f"Unsupported platform '{platform or '(empty)'}', expected '{expected}'"
        )


class DeviceError(InstallerError):
    """Base exception for device discovery errors."""


class DeviceNotFoundError(DeviceError):
    """No usable target device was found."""

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(f"Device not found: {device_name}")


class RootDeviceNotFoundError(DeviceError):
    """The block device backing the live root filesystem could not be resolved."""

    def __init__(self, mountpoints: Sequence[str]):
        self.mountpoints = list(mountpoints)
        super().__init__(
            "Cannot determine the root device from mountpoints: "
            f"{', '.join(self.mountpoints)}"
        )


class RunningFromTargetError(DeviceError):
    """The live system is already running from the eMMC."""

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(
            f"The system is already running from eMMC ({device_name}), "
            "refusing to partition it"
        )


class UUIDGenerationError(InstallerError):
    """No UUID source produced an identifier."""


class CommandError(InstallerError):
    """An external tool exited with a non-zero status."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int | None = None,
        stderr: str = "",
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        message = stderr.strip() or "Command failed"
        super().__init__(f"Command failed ({' '.join(self.command)}): {message}")


class PartitionError(InstallerError):
    """Partition table creation failed."""

    def __init__(self, message: str, device: str | None = None):
        self.device = device
        super().__init__(message)


class BootloaderWriteError(PartitionError):
    """Writing a bootloader image to the reserved region failed."""

    def __init__(self, image: str, device: str, reason: str):
        self.image = image
        self.reason = reason
        super().__init__(f"Failed to write {image} to {device}: {reason}", device)


class FormatError(InstallerError):
    """Creating a filesystem failed."""

    def __init__(self, message: str, device: str | None = None):
        self.device = device
        super().__init__(message)


class MountError(InstallerError):
    """Base exception for mount-related errors."""


class UnmountFailedError(MountError):
    """Failed to unmount a partition or mountpoint."""

    def __init__(self, target: str, reason: str = ""):
        self.target = target
        self.reason = reason
        msg = f"Failed to unmount {target}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CopyError(InstallerError):
    """Copying files from the live system failed."""

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message)
