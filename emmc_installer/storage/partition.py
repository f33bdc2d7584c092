"""Partition table and bootloader setup for the eMMC.

Layout (512 byte sectors, MSDOS label, four primary partitions):

    0      .. 16 MiB     reserved, zeroed, holds the bootloader
    16 MiB .. 272 MiB    p1 BOOT_EMMC     vfat   (256 MiB)
    272    .. 1232 MiB   p2 EMMC_ROOTFS1  btrfs  (960 MiB)
    1232   .. 2192 MiB   p3 EMMC_ROOTFS2  btrfs  (960 MiB)
    2192   .. end        p4 EMMC_SHARED   btrfs  (remainder)

Every step is destructive and fatal on failure. Nothing is rolled back.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from emmc_installer.config import settings
from emmc_installer.domain.models import (
    PARTITION_LAYOUT,
    InstallContext,
    PartitionSpec,
    PlatformDescriptor,
    partition_name,
)
from emmc_installer.logging import LoggerFactory
from emmc_installer.storage.commands import best_effort, run_checked_command
from emmc_installer.storage.exceptions import (
    BootloaderWriteError,
    CommandError,
    PartitionError,
)
from emmc_installer.storage.mount import unmount_partition


log = LoggerFactory.for_partition()


def list_partition_numbers(device_path: str) -> list[int]:
    """Partition numbers reported by ``parted print`` (empty for a blank disk)."""
    try:
        output = run_checked_command(["parted", "-s", device_path, "print"])
    except CommandError as error:
        # A disk without a label is expected on first install
        if "unrecognised disk label" in error.stderr.lower():
            return []
        raise PartitionError(
            f"Cannot read partition table of {device_path}: {error.stderr.strip()}",
            device=device_path,
        ) from error

    # Look for lines like " 1      16.8MB  285MB   268MB   primary  fat32"
    numbers = []
    for line in output.splitlines():
        fields = line.split()
        if fields and fields[0].isdigit():
            numbers.append(int(fields[0]))
    return numbers


def delete_partitions(disk: str) -> None:
    """Unmount and delete every existing partition on a disk."""
    device_path = f"/dev/{disk}"
    for number in list_partition_numbers(device_path):
        partition_path = f"/dev/{partition_name(disk, number)}"
        unmount_partition(partition_path)
        log.debug(f"Deleting partition {number} from {device_path}")
        try:
            run_checked_command(["parted", "-s", device_path, "rm", str(number)])
        except CommandError as error:
            raise PartitionError(
                f"Failed to delete partition {number} on {device_path}: "
                f"{error.stderr.strip()}",
                device=device_path,
            ) from error


def wipe_bootloader_region(device_path: str) -> None:
    log.debug(f"Zeroing the first 16 MiB of {device_path}")
    try:
        run_checked_command(
            [
                "dd",
                "if=/dev/zero",
                f"of={device_path}",
                "bs=1M",
                "count=16",
                "conv=fsync",
            ]
        )
    except CommandError as error:
        raise PartitionError(
            f"Failed to wipe bootloader region of {device_path}: {error.stderr.strip()}",
            device=device_path,
        ) from error


def create_partition_table(
    device_path: str, layout: Sequence[PartitionSpec] = PARTITION_LAYOUT
) -> None:
    """Create an MSDOS label and the fixed primary partitions."""
    commands = [["parted", "-s", device_path, "mklabel", "msdos"]]
    commands.extend(["parted", "-s", device_path, *spec.parted_args] for spec in layout)
    for command in commands:
        try:
            run_checked_command(command)
        except CommandError as error:
            log.error(f"parted failed: {error.stderr.strip()}")
            raise PartitionError(
                f"Failed to create partitions on {device_path}: {error.stderr.strip()}",
                device=device_path,
            ) from error
    log.debug(f"Created {len(layout)} partitions on {device_path}")


def settle(device_path: str) -> None:
    """Ask the kernel to re-read the table and wait for udev."""
    for command in (
        ["sync"],
        ["partprobe", device_path],
        ["udevadm", "settle", "--timeout=10"],
    ):
        best_effort(command)


def _dd_image(image: Path, device_path: str, seek: int) -> None:
    log.debug(f"Writing {image} to {device_path} at sector {seek}")
    try:
        run_checked_command(
            [
                "dd",
                f"if={image}",
                f"of={device_path}",
                "bs=512",
                f"seek={seek}",
                "conv=fsync,notrunc",
            ]
        )
    except CommandError as error:
        raise BootloaderWriteError(str(image), device_path, error.stderr.strip()) from error


def write_bootloader(device_path: str, platform: PlatformDescriptor) -> None:
    """Write the platform bootloader, then the mainline second stage if configured."""
    _dd_image(platform.bootloader_image, device_path, settings.BOOTLOADER_SEEK)
    if platform.mainline_bootloader is not None:
        _dd_image(
            platform.mainline_bootloader, device_path, settings.MAINLINE_BOOTLOADER_SEEK
        )


def partition_device(ctx: InstallContext) -> InstallContext:
    """Wipe the target, lay out the partitions and write the bootloader."""
    if ctx.target_device is None or ctx.platform is None:
        raise PartitionError("Install context is not initialized")
    device_path = ctx.target_path

    log.info(f"Deleting existing partitions on {device_path}")
    delete_partitions(ctx.target_device)
    wipe_bootloader_region(device_path)

    log.info(f"Creating partition table on {device_path}")
    create_partition_table(device_path)
    settle(device_path)

    log.info(f"Writing bootloader to {device_path}")
    write_bootloader(device_path, ctx.platform)
    settle(device_path)
    return ctx
