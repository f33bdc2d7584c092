"""Domain model for an eMMC install run.

The install is a single forward pipeline. State discovered by one stage
and consumed by later stages lives on ``InstallContext`` instead of
module globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from emmc_installer.config import settings


SECTOR_SIZE = 512
MIB = 1024 * 1024
SECTORS_PER_MIB = MIB // SECTOR_SIZE


# ==============================================================================
# Platform Domain
# ==============================================================================


@dataclass(frozen=True)
class PlatformDescriptor:
    """Board settings read from the release file."""

    platform: str  # e.g., "rockchip"
    fdtfile: str  # e.g., "rk3568-firefly-roc-pc.dtb"
    family: str  # e.g., "rockchip" (dtb subdirectory)
    bootloader_image: Path
    mainline_bootloader: Path | None = None
    extra: Mapping[str, str] = field(default_factory=dict)

    @property
    def fdt_path(self) -> str:
        """Device tree path relative to the boot partition."""
        return f"/dtb/{self.family}/{self.fdtfile}"

    @property
    def fdt_relative(self) -> str:
        """Device tree path relative to the dtb directory (U-Boot ``fdtfile``)."""
        return f"{self.family}/{self.fdtfile}"


# ==============================================================================
# Partition Domain
# ==============================================================================


@dataclass(frozen=True)
class PartitionSpec:
    """One primary partition of the fixed eMMC layout."""

    number: int
    label: str
    filesystem: str  # parted filesystem hint: "fat32" or "btrfs"
    start_sector: int
    end_sector: int | None  # inclusive; None runs to the end of the device

    @property
    def size_bytes(self) -> int | None:
        if self.end_sector is None:
            return None
        return (self.end_sector - self.start_sector + 1) * SECTOR_SIZE

    @property
    def parted_args(self) -> list[str]:
        end = "100%" if self.end_sector is None else f"{self.end_sector}s"
        return ["mkpart", "primary", self.filesystem, f"{self.start_sector}s", end]


def _mib(value: int) -> int:
    return value * SECTORS_PER_MIB


RESERVED_MIB = 16
BOOT_MIB = 256
ROOTFS_MIB = 960

_boot_start = _mib(RESERVED_MIB)
_rootfs1_start = _boot_start + _mib(BOOT_MIB)
_rootfs2_start = _rootfs1_start + _mib(ROOTFS_MIB)
_shared_start = _rootfs2_start + _mib(ROOTFS_MIB)

PARTITION_LAYOUT: tuple[PartitionSpec, ...] = (
    PartitionSpec(1, settings.BOOT_LABEL, "fat32", _boot_start, _rootfs1_start - 1),
    PartitionSpec(
        2, settings.ROOTFS1_LABEL, "btrfs", _rootfs1_start, _rootfs2_start - 1
    ),
    PartitionSpec(
        3, settings.ROOTFS2_LABEL, "btrfs", _rootfs2_start, _shared_start - 1
    ),
    PartitionSpec(4, settings.SHARED_LABEL, "btrfs", _shared_start, None),
)


def partition_name(disk: str, number: int) -> str:
    """Partition device name for a disk (mmcblk2 -> mmcblk2p1, sda -> sda1)."""
    suffix = "p" if disk[-1].isdigit() else ""
    return f"{disk}{suffix}{number}"


# ==============================================================================
# Install Run Domain
# ==============================================================================


@dataclass(frozen=True)
class FilesystemUUIDs:
    """Freshly generated filesystem identifiers for the btrfs partitions."""

    rootfs1: str
    rootfs2: str
    shared: str


@dataclass
class InstallContext:
    """State threaded through the install pipeline.

    Filled in by the environment stage; read by the partition and copy stages.
    """

    source_root: Path = settings.SOURCE_ROOT
    platform: PlatformDescriptor | None = None
    root_device: str | None = None  # partition, e.g., "mmcblk0p2"
    root_disk: str | None = None  # e.g., "mmcblk0"
    target_device: str | None = None  # e.g., "mmcblk2"
    uuids: FilesystemUUIDs | None = None
    scratch_dir: Path | None = None
    completed_stages: list[str] = field(default_factory=list)

    @property
    def target_path(self) -> str:
        return f"/dev/{self.target_device}"

    def partition_name(self, number: int) -> str:
        if not self.target_device:
            raise ValueError("Target device has not been selected")
        return partition_name(self.target_device, number)

    def partition_path(self, number: int) -> str:
        return f"/dev/{self.partition_name(number)}"
