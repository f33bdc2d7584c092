"""Dependency check and environment initialization.

Nothing in this module writes to a block device. Every check that can
refuse an install (missing tools, wrong platform, running from the eMMC)
runs here, before partitioning.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from emmc_installer.config import settings
from emmc_installer.config.release import load_platform
from emmc_installer.domain.models import FilesystemUUIDs, InstallContext
from emmc_installer.logging import LoggerFactory
from emmc_installer.storage import devices
from emmc_installer.storage.commands import require_tools, run_checked_command
from emmc_installer.storage.exceptions import (
    CommandError,
    DeviceNotFoundError,
    PermissionDeniedError,
    RunningFromTargetError,
    UUIDGenerationError,
)


log = LoggerFactory.for_install()


def check_dependencies(tools: Iterable[str] = settings.REQUIRED_TOOLS) -> None:
    """Abort with MissingDependencyError unless every tool is on PATH."""
    require_tools(tools)
    log.debug("All required tools are present")


def ensure_root_privileges() -> None:
    euid = os.geteuid()
    if euid != 0:
        raise PermissionDeniedError(euid)


def generate_uuid(kernel_source: Path = settings.KERNEL_UUID_SOURCE) -> str:
    """Return a random UUID from the kernel, falling back to ``uuidgen``.

    Raises:
        UUIDGenerationError: If neither source yields a value
    """
    try:
        value = kernel_source.read_text(encoding="ascii").strip()
    except OSError as error:
        log.debug(f"Kernel UUID source unavailable: {error}")
        value = ""
    if value:
        return value

    try:
        value = run_checked_command(["uuidgen"]).strip()
    except CommandError as error:
        log.debug(f"uuidgen unavailable: {error}")
        value = ""
    if not value:
        raise UUIDGenerationError(
            f"Cannot generate a UUID: {kernel_source} and uuidgen both unavailable"
        )
    return value


def generate_uuids(kernel_source: Path = settings.KERNEL_UUID_SOURCE) -> FilesystemUUIDs:
    uuids: list[str] = []
    while len(uuids) < 3:
        value = generate_uuid(kernel_source)
        if value in uuids:
            raise UUIDGenerationError(f"UUID source returned a duplicate value: {value}")
        uuids.append(value)
    return FilesystemUUIDs(rootfs1=uuids[0], rootfs2=uuids[1], shared=uuids[2])


def prepare_scratch_dir(work_dir: Path = settings.WORK_DIR) -> Path:
    work_dir.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix="emmc-install-", dir=work_dir))


def select_target(
    root_disk: str,
    requested: Optional[str] = None,
    dev_dir: Path = settings.DEV_DIR,
) -> str:
    """Return the eMMC disk name, honouring an explicit request."""
    if requested is None:
        return devices.find_emmc_device(root_disk, dev_dir)
    requested = Path(requested).name
    if devices.disk_name(requested) == root_disk:
        raise RunningFromTargetError(requested)
    if not (dev_dir / requested).exists():
        raise DeviceNotFoundError(requested)
    return requested


def initialize(
    ctx: InstallContext,
    *,
    release_file: Path = settings.RELEASE_FILE,
    target: Optional[str] = None,
    mounts_file: Path = settings.MOUNTS_FILE,
    dev_dir: Path = settings.DEV_DIR,
    work_dir: Path = settings.WORK_DIR,
    sys_block_dir: Path = settings.SYS_BLOCK_DIR,
) -> InstallContext:
    """Populate the install context from the live system."""
    ctx.platform = load_platform(release_file)
    log.info(
        "Platform {} ({}), device tree {}",
        ctx.platform.platform,
        ctx.platform.family,
        ctx.platform.fdtfile,
    )

    ctx.root_device = devices.detect_root_device(
        mounts_file, dev_dir=dev_dir, sys_block_dir=sys_block_dir
    )
    ctx.root_disk = devices.disk_name(ctx.root_device)
    log.info(f"Live system root: /dev/{ctx.root_device} (disk {ctx.root_disk})")

    devices.ensure_not_running_from_emmc(ctx.root_disk, dev_dir)

    ctx.target_device = select_target(ctx.root_disk, target, dev_dir)
    log.info(f"Installing to eMMC: {ctx.target_path}")

    ctx.uuids = generate_uuids()
    log.debug(
        "Generated UUIDs: rootfs1={} rootfs2={} shared={}",
        ctx.uuids.rootfs1,
        ctx.uuids.rootfs2,
        ctx.uuids.shared,
    )

    ctx.scratch_dir = prepare_scratch_dir(work_dir)
    log.debug(f"Scratch mount directory: {ctx.scratch_dir}")
    return ctx
