"""Mount helpers for the scratch directory.

Only one partition is ever mounted at the scratch directory. ``mounted()``
enforces that by refusing to mount over an active mountpoint and by
unmounting before the next stage runs; an unmount failure is fatal.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence

from emmc_installer.config import settings
from emmc_installer.logging import LoggerFactory
from emmc_installer.storage.commands import run_checked_command
from emmc_installer.storage.exceptions import CommandError, MountError, UnmountFailedError


log = LoggerFactory.for_system()


def _validate_device_path(device_path: str) -> None:
    if not isinstance(device_path, str) or not device_path.startswith("/dev/"):
        raise ValueError(f"Invalid device path: {device_path}")
    if any(char in device_path for char in [";", "&", "|", "$", "`", "\n", "\r", " "]):
        raise ValueError(f"Device path contains invalid characters: {device_path}")


def is_mountpoint_active(mountpoint: str, mounts_file: Path = settings.MOUNTS_FILE) -> bool:
    """Check if a mountpoint is currently active."""
    mountpoint = os.path.realpath(mountpoint)
    try:
        with open(mounts_file, "r", encoding="utf-8") as mounts:
            for line in mounts:
                parts = line.split()
                if len(parts) > 1 and parts[1].replace("\\040", " ") == mountpoint:
                    return True
    except FileNotFoundError:
        return os.path.ismount(mountpoint)
    return False


def device_mountpoints(device_path: str, mounts_file: Path = settings.MOUNTS_FILE) -> list[str]:
    """Every mountpoint where a block device is currently mounted."""
    mountpoints = []
    try:
        with open(mounts_file, "r", encoding="utf-8") as mounts:
            for line in mounts:
                parts = line.split()
                if len(parts) > 1 and parts[0] == device_path:
                    mountpoints.append(parts[1].replace("\\040", " "))
    except FileNotFoundError:
        return []
    return mountpoints


def mount_partition(
    partition: str,
    target: Path,
    fstype: Optional[str] = None,
    options: Optional[Sequence[str]] = None,
) -> None:
    """Mount a partition at target.

    Raises:
        ValueError: If the partition path is invalid
        MountError: If target is already a mountpoint or mount fails
    """
    _validate_device_path(partition)
    if is_mountpoint_active(str(target)):
        raise MountError(f"{target} is already mounted")
    command = ["mount"]
    if fstype:
        command.extend(["-t", fstype])
    if options:
        command.extend(["-o", ",".join(options)])
    command.extend([partition, str(target)])
    try:
        run_checked_command(command)
    except CommandError as error:
        raise MountError(f"Failed to mount {partition} to {target}: {error.stderr}") from error
    log.debug(f"Mounted {partition} at {target}")


def unmount(target: str) -> None:
    """Unmount a mountpoint or device node.

    Raises:
        UnmountFailedError: If umount fails
    """
    try:
        run_checked_command(["umount", target])
    except CommandError as error:
        raise UnmountFailedError(target, error.stderr.strip()) from error
    log.debug(f"Unmounted {target}")


def unmount_partition(partition: str) -> None:
    """Unmount every mountpoint of a partition; no-op when it is not mounted."""
    _validate_device_path(partition)
    for mountpoint in reversed(device_mountpoints(partition)):
        unmount(mountpoint)


@contextmanager
def mounted(
    partition: str,
    target: Path,
    fstype: Optional[str] = None,
    options: Optional[Sequence[str]] = None,
) -> Iterator[Path]:
    """Mount partition at target for the duration of the block.

    The partition is synced and unmounted when the block completes. If the
    body raises, the partition stays mounted for manual inspection. An
    unmount failure raises UnmountFailedError.
    """
    mount_partition(partition, target, fstype=fstype, options=options)
    yield target
    run_checked_command(["sync"])
    unmount(str(target))
