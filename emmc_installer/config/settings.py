"""Fixed installer settings.

Paths can be redirected through environment variables, which the test
suite and image builders use to point the installer at a staging tree.
"""

from __future__ import annotations

import os
from pathlib import Path


RELEASE_FILE = Path(
    os.environ.get("EMMC_INSTALLER_RELEASE_FILE", "/etc/flippy-openwrt-release")
)
BOOTLOADER_DIR = Path(os.environ.get("EMMC_INSTALLER_BOOTLOADER_DIR", "/lib/u-boot"))
WORK_DIR = Path(os.environ.get("EMMC_INSTALLER_WORK_DIR", "/tmp"))
DEV_DIR = Path("/dev")
MOUNTS_FILE = Path("/proc/mounts")
SYS_BLOCK_DIR = Path("/sys/dev/block")
KERNEL_UUID_SOURCE = Path("/proc/sys/kernel/random/uuid")
SOURCE_ROOT = Path("/")

EXPECTED_PLATFORM = "rockchip"
REQUIRED_RELEASE_KEYS = ("FDTFILE", "FAMILY", "BOOTLOADER_IMG")

# Mountpoints checked for the live root device, highest priority first
ROOT_MOUNTPOINTS = ("/", "/overlay", "/rom")

REQUIRED_TOOLS = (
    "btrfs",
    "dd",
    "mkfs.btrfs",
    "mkfs.vfat",
    "mount",
    "parted",
    "sync",
    "tar",
    "umount",
)

# Partition labels
BOOT_LABEL = "BOOT_EMMC"
ROOTFS1_LABEL = "EMMC_ROOTFS1"
ROOTFS2_LABEL = "EMMC_ROOTFS2"
SHARED_LABEL = "EMMC_SHARED"

ROOTFS_TYPE = "btrfs"
BTRFS_COMPRESSION = "compress=zstd:6"

# Bootloader placement, in 512 byte sectors
BOOTLOADER_SEEK = 64
MAINLINE_BOOTLOADER_SEEK = 16384

BOOT_COPY_EXCLUDES = ("System Volume Information",)
EMMC_BOOT_SCRIPTS = {
    "boot-emmc.scr": "boot.scr",
    "boot-emmc.cmd": "boot.cmd",
}

ROOT_SKELETON = (
    ".reserved",
    ".snapshots",
    "bin",
    "boot",
    "dev",
    "lib",
    "mnt",
    "opt",
    "overlay",
    "proc",
    "rom",
    "root",
    "run",
    "sbin",
    "sys",
    "tmp",
    "usr",
    "www",
)
ROOT_COPY_DIRS = ("bin", "etc", "lib", "opt", "root", "sbin", "usr", "www")
ROOT_SYMLINKS = (("lib64", "lib"), ("var", "/tmp"))

ETC_SUBVOLUME = "etc"
ETC_SNAPSHOT = ".snapshots/etc-000"
