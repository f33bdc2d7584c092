"""Filesystem creation for the eMMC partitions.

Supported Filesystems:
    vfat:   FAT32 boot partition read by U-Boot
    btrfs:  Copy-on-write root and shared data partitions, single-device
            metadata and data profile, with a caller supplied UUID

Implementation Details:
    - Uses mkfs.vfat and mkfs.btrfs
    - Partitions are unmounted before formatting
    - Any mkfs failure raises FormatError
"""

from __future__ import annotations

from typing import Optional

from emmc_installer.logging import LoggerFactory
from emmc_installer.storage.commands import run_checked_command
from emmc_installer.storage.exceptions import CommandError, FormatError
from emmc_installer.storage.mount import unmount_partition


log = LoggerFactory.for_system()


def build_format_command(
    partition_path: str,
    filesystem: str,
    label: Optional[str] = None,
    fs_uuid: Optional[str] = None,
) -> list[str]:
    """Build the mkfs command line for a partition.

    Args:
        partition_path: Partition path (e.g., /dev/mmcblk2p1)
        filesystem: Filesystem type (vfat, btrfs)
        label: Optional volume label
        fs_uuid: Filesystem UUID (btrfs only)

    Raises:
        ValueError: For unsupported filesystems or a UUID on vfat
    """
    filesystem = filesystem.lower()

    if filesystem == "vfat":
        if fs_uuid:
            raise ValueError("vfat volumes take a serial number, not a UUID")
        command = ["mkfs.vfat", "-F", "32"]
        if label:
            command.extend(["-n", label])

    elif filesystem == "btrfs":
        command = ["mkfs.btrfs", "-f"]
        if fs_uuid:
            command.extend(["-U", fs_uuid])
        if label:
            command.extend(["-L", label])
        command.extend(["-m", "single", "-d", "single"])

    else:
        raise ValueError(f"Unsupported filesystem type: {filesystem}")

    command.append(partition_path)
    return command


def format_partition(
    partition_path: str,
    filesystem: str,
    label: Optional[str] = None,
    fs_uuid: Optional[str] = None,
) -> None:
    """Unmount (if mounted) and format a partition.

    Raises:
        UnmountFailedError: If the partition cannot be unmounted
        FormatError: If mkfs fails
    """
    command = build_format_command(partition_path, filesystem, label, fs_uuid)
    unmount_partition(partition_path)
    log.info("Formatting {} as {} ({})", partition_path, filesystem, label or "no label")
    try:
        run_checked_command(command)
    except CommandError as error:
        log.error(f"Command: {' '.join(command)}")
        log.error(f"Error output: {error.stderr.strip()}")
        raise FormatError(
            f"Failed to format {partition_path} as {filesystem}: {error.stderr.strip()}",
            device=partition_path,
        ) from error
    log.debug(f"Successfully formatted {partition_path} as {filesystem}")
