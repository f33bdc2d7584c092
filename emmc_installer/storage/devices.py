"""Block device discovery for the live system and the eMMC target.

Root Device Detection:
    The live system may run with an overlay root (OpenWrt), so the source of
    ``/`` is not always a block device. Mount metadata is checked for ``/``,
    then ``/overlay``, then ``/rom``; the first mountpoint backed by a
    ``/dev/...`` node wins. Kernel aliases such as ``/dev/root`` are mapped
    back to the real partition; a source that cannot be mapped is skipped
    so the root disk is never mistaken for a name like ``root``.

eMMC Detection:
    eMMC controllers expose hardware boot areas as ``mmcblkNboot0`` and
    ``mmcblkNboot1``. A disk with a ``boot0`` sibling is positively an eMMC.
    When none exposes one, any ``mmcblkN`` disk other than the live root disk
    is accepted.

Safety:
    If the live root disk itself has a ``boot0`` sibling the system is
    already running from the eMMC and nothing may be partitioned.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Iterable, Optional

from emmc_installer.config import settings
from emmc_installer.logging import LoggerFactory
from emmc_installer.storage.exceptions import (
    DeviceNotFoundError,
    RootDeviceNotFoundError,
    RunningFromTargetError,
)


log = LoggerFactory.for_system()

_MMC_DISK_RE = re.compile(r"^mmcblk\d+$")
_PARTITIONED_DISK_RE = re.compile(r"^((?:mmcblk|nvme\d+n|loop)\d+)p\d+$")
_PARTITION_NAME_RE = re.compile(r"^(?:mmcblk\d+p\d+|[hsv]d[a-z]+\d+|nvme\d+n\d+p\d+)$")


def read_mounts(mounts_file: Path = settings.MOUNTS_FILE) -> list[tuple[str, str, str]]:
    """Return (source, mountpoint, fstype) for each line of a mounts table."""
    entries = []
    with open(mounts_file, "r", encoding="utf-8") as handle:
        for line in handle:
            parts = line.split()
            if len(parts) >= 3:
                # /proc/mounts escapes spaces in paths as \040
                mountpoint = parts[1].replace("\\040", " ")
                entries.append((parts[0], mountpoint, parts[2]))
    return entries


def mount_source(mountpoint: str, mounts: Iterable[tuple[str, str, str]]) -> Optional[str]:
    # Later entries shadow earlier ones on the same mountpoint
    source = None
    for entry_source, entry_mountpoint, _ in mounts:
        if entry_mountpoint == mountpoint:
            source = entry_source
    return source


def is_partition_name(name: str) -> bool:
    return bool(_PARTITION_NAME_RE.match(name))


def _mount_device_number(mountpoint: str) -> int:
    return os.stat(mountpoint).st_dev


def resolve_partition(
    source: str,
    mountpoint: str,
    dev_dir: Path = settings.DEV_DIR,
    sys_block_dir: Path = settings.SYS_BLOCK_DIR,
) -> Optional[str]:
    """Map a ``/dev/...`` mount source to a real partition name.

    Aliases like ``/dev/root`` are followed as symlinks first, then looked
    up by the mountpoint's device number under ``/sys/dev/block``.
    Returns None when neither yields a partition name.
    """
    node = dev_dir / Path(source).relative_to("/dev")
    name = node.resolve().name if node.is_symlink() else node.name
    if is_partition_name(name):
        return name

    try:
        device = _mount_device_number(mountpoint)
    except OSError as error:
        log.debug(f"Cannot stat {mountpoint}: {error}")
        return None
    sys_entry = sys_block_dir / f"{os.major(device)}:{os.minor(device)}"
    if sys_entry.is_symlink():
        name = sys_entry.resolve().name
        if is_partition_name(name):
            log.debug(f"{source} resolved through {sys_entry}: {name}")
            return name
    return None


def detect_root_device(
    mounts_file: Path = settings.MOUNTS_FILE,
    mountpoints: Iterable[str] = settings.ROOT_MOUNTPOINTS,
    dev_dir: Path = settings.DEV_DIR,
    sys_block_dir: Path = settings.SYS_BLOCK_DIR,
) -> str:
    """Return the partition name backing the live root, e.g. ``mmcblk0p2``.

    Raises:
        RootDeviceNotFoundError: If no candidate mountpoint resolves to a partition
    """
    mountpoints = list(mountpoints)
    try:
        mounts = read_mounts(mounts_file)
    except OSError as error:
        log.debug(f"Cannot read {mounts_file}: {error}")
        mounts = []
    for mountpoint in mountpoints:
        source = mount_source(mountpoint, mounts)
        if source and source.startswith("/dev/"):
            name = resolve_partition(source, mountpoint, dev_dir, sys_block_dir)
            if name:
                log.debug(f"Root device resolved from {mountpoint}: {name}")
                return name
            log.debug(f"Mountpoint {mountpoint} source {source} is not a partition")
            continue
        log.debug(f"Mountpoint {mountpoint} is not backed by a block device ({source})")
    raise RootDeviceNotFoundError(mountpoints)


def disk_name(partition: str) -> str:
    """Strip the partition suffix: mmcblk0p2 -> mmcblk0, sda2 -> sda."""
    match = _PARTITIONED_DISK_RE.match(partition)
    if match:
        return match.group(1)
    if _MMC_DISK_RE.match(partition) or re.match(r"^nvme\d+n\d+$", partition):
        return partition
    base = partition.rstrip("0123456789")
    return base if base else partition


def has_boot0(disk: str, dev_dir: Path = settings.DEV_DIR) -> bool:
    return (dev_dir / f"{disk}boot0").exists()


def ensure_not_running_from_emmc(root_disk: str, dev_dir: Path = settings.DEV_DIR) -> None:
    """Raise RunningFromTargetError when the live root disk is an eMMC."""
    if has_boot0(root_disk, dev_dir):
        raise RunningFromTargetError(root_disk)


def list_mmc_disks(dev_dir: Path = settings.DEV_DIR) -> list[str]:
    disks = [path.name for path in dev_dir.glob("mmcblk*") if _MMC_DISK_RE.match(path.name)]
    return sorted(disks, key=lambda name: int(name[len("mmcblk"):]))


def find_emmc_device(root_disk: str, dev_dir: Path = settings.DEV_DIR) -> str:
    """Locate the eMMC disk to install onto.

    Raises:
        DeviceNotFoundError: If no candidate disk exists
    """
    candidates = list_mmc_disks(dev_dir)
    for disk in candidates:
        if disk != root_disk and has_boot0(disk, dev_dir):
            log.debug(f"eMMC found via boot0 partition: {disk}")
            return disk
    for disk in candidates:
        if disk != root_disk:
            log.debug(f"No boot0 partition found, falling back to {disk}")
            return disk
    raise DeviceNotFoundError("eMMC (no mmcblk device other than the root disk)")
