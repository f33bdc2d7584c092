"""
Pytest configuration and shared fixtures for emmc-installer tests.

No test touches a real block device: every external command goes through
a mocked ``run_checked_command`` and device detection reads fixture files.
"""

from pathlib import Path
from typing import List

import pytest
from loguru import logger

from emmc_installer.domain.models import FilesystemUUIDs, InstallContext, PlatformDescriptor


ROOT_UUID = "3c2f1a9e-5d4b-4a61-9f0e-1b2c3d4e5f60"
ROOTFS2_UUID = "7a8b9c0d-1e2f-4a3b-8c4d-5e6f7a8b9c0d"
SHARED_UUID = "0f1e2d3c-4b5a-4968-8776-655443322110"


# ==============================================================================
# Platform Fixtures
# ==============================================================================


@pytest.fixture
def bootloader_dir(tmp_path) -> Path:
    """Directory holding fake bootloader images."""
    directory = tmp_path / "u-boot"
    (directory / "firefly-roc-pc").mkdir(parents=True)
    (directory / "firefly-roc-pc" / "idbloader.img").write_bytes(b"\0" * 512)
    (directory / "firefly-roc-pc" / "u-boot.itb").write_bytes(b"\0" * 512)
    return directory


@pytest.fixture
def release_file(tmp_path, bootloader_dir) -> Path:
    """A valid platform descriptor for a Rockchip board."""
    path = tmp_path / "flippy-openwrt-release"
    path.write_text(
        "# generated by the image build\n"
        "PLATFORM='rockchip'\n"
        "FAMILY='rockchip'\n"
        "FDTFILE='rk3568-firefly-roc-pc.dtb'\n"
        f"BOOTLOADER_IMG='{bootloader_dir}/firefly-roc-pc/idbloader.img'\n"
        f"MAINLINE_UBOOT='{bootloader_dir}/firefly-roc-pc/u-boot.itb'\n"
        "KERNEL_VERSION='6.1.50-flippy-85+'\n"
    )
    return path


@pytest.fixture
def platform(bootloader_dir) -> PlatformDescriptor:
    return PlatformDescriptor(
        platform="rockchip",
        fdtfile="rk3568-firefly-roc-pc.dtb",
        family="rockchip",
        bootloader_image=bootloader_dir / "firefly-roc-pc" / "idbloader.img",
        mainline_bootloader=bootloader_dir / "firefly-roc-pc" / "u-boot.itb",
    )


@pytest.fixture
def uuids() -> FilesystemUUIDs:
    return FilesystemUUIDs(rootfs1=ROOT_UUID, rootfs2=ROOTFS2_UUID, shared=SHARED_UUID)


# ==============================================================================
# Device Fixtures
# ==============================================================================


@pytest.fixture
def dev_dir(tmp_path) -> Path:
    """
    Fake /dev with an SD card (mmcblk0, live root) and an eMMC (mmcblk2).

    Only the eMMC exposes hardware boot partitions.
    """
    directory = tmp_path / "dev"
    directory.mkdir()
    for name in (
        "mmcblk0",
        "mmcblk0p1",
        "mmcblk0p2",
        "mmcblk2",
        "mmcblk2boot0",
        "mmcblk2boot1",
        "mmcblk2p1",
    ):
        (directory / name).touch()
    return directory


@pytest.fixture
def mounts_file(tmp_path) -> Path:
    """Mount table of an OpenWrt live system booted from the SD card."""
    path = tmp_path / "mounts"
    path.write_text(
        "/dev/root /rom squashfs ro,relatime 0 0\n"
        "proc /proc proc rw,nosuid,nodev,noexec,noatime 0 0\n"
        "sysfs /sys sysfs rw,nosuid,nodev,noexec,noatime 0 0\n"
        "/dev/mmcblk0p2 / btrfs rw,noatime,compress=zstd:6 0 0\n"
        "/dev/mmcblk0p1 /boot vfat rw,relatime 0 0\n"
        "tmpfs /tmp tmpfs rw,nosuid,nodev,noatime 0 0\n"
    )
    return path


@pytest.fixture
def install_context(tmp_path, platform, uuids) -> InstallContext:
    """Context as left by a successful init stage."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return InstallContext(
        source_root=tmp_path / "live",
        platform=platform,
        root_device="mmcblk0p2",
        root_disk="mmcblk0",
        target_device="mmcblk2",
        uuids=uuids,
        scratch_dir=scratch,
    )


@pytest.fixture
def live_root(tmp_path) -> Path:
    """A miniature live root filesystem."""
    root = tmp_path / "live"
    boot = root / "boot"
    (boot / "extlinux").mkdir(parents=True)
    (boot / "dtb" / "rockchip").mkdir(parents=True)
    (boot / "System Volume Information").mkdir()
    (boot / "System Volume Information" / "IndexerVolumeGuid").write_text("x")
    (boot / "dtb" / "rockchip" / "rk3568-firefly-roc-pc.dtb").write_bytes(b"\xd0\x0d")
    (boot / "uEnv.txt").write_text(
        "LINUX=/zImage\n"
        "INITRD=/uInitrd\n"
        "FDT=/dtb/rockchip/rk3568-old-board.dtb\n"
        "APPEND=root=UUID=11111111-2222-3333-4444-555555555555 rootfstype=ext4 "
        "rootflags=data=writeback console=ttyS2,1500000n8\n"
    )
    (boot / "boot.scr").write_bytes(b"sd-card script")
    (boot / "boot-emmc.scr").write_bytes(b"emmc script")
    (boot / "boot.cmd").write_text("sd-card cmd\n")
    (boot / "boot-emmc.cmd").write_text("emmc cmd\n")
    for name in ("bin", "etc/config", "lib", "sbin", "usr/bin", "opt/docker/overlay2"):
        (root / name).mkdir(parents=True, exist_ok=True)
    (root / "opt" / "docker" / "overlay2" / "layer.tar").write_bytes(b"layer")
    (root / "opt" / "tools.sh").write_text("#!/bin/sh\n")
    return root


# ==============================================================================
# Command Mock Fixtures
# ==============================================================================


class CommandRecorder:
    """Callable stand-in for run_checked_command that records every call."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.outputs: dict = {}

    def __call__(self, command, input_text=None):
        self.calls.append(list(command))
        return self.outputs.get(tuple(command), "")

    def commands_starting_with(self, *prefix: str) -> List[List[str]]:
        return [call for call in self.calls if call[: len(prefix)] == list(prefix)]


@pytest.fixture
def command_recorder() -> CommandRecorder:
    return CommandRecorder()


@pytest.fixture(autouse=True)
def reset_logging():
    """
    Auto-use fixture that drops every loguru sink after each test.

    Tests calling setup_logging() add file sinks under tmp_path; they must
    not keep receiving records from later tests.
    """
    yield
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "INSTALL"})
