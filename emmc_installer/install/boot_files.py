"""Populate the eMMC boot partition from the live ``/boot``."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from emmc_installer.bootconfig import BootParameters, rewrite_boot_configs
from emmc_installer.config import settings
from emmc_installer.domain.models import InstallContext
from emmc_installer.logging import LoggerFactory
from emmc_installer.storage.exceptions import CopyError, InstallerError
from emmc_installer.storage.format import format_partition
from emmc_installer.storage.mount import mounted


log = LoggerFactory.for_boot()

BOOT_PARTITION = 1


def _raise(error: OSError) -> None:
    raise error


def copy_boot_tree(source: Path, destination: Path) -> None:
    """Copy the live boot tree onto the FAT32 partition.

    FAT has no owners, modes or symlinks, so only file contents are copied
    and symlinks are followed.
    """
    if not source.is_dir():
        raise CopyError(f"Boot directory not found: {source}", source=str(source))
    excludes = set(settings.BOOT_COPY_EXCLUDES)
    try:
        for dirpath, dirnames, filenames in os.walk(source, onerror=_raise, followlinks=True):
            dirnames[:] = [name for name in dirnames if name not in excludes]
            target_dir = destination / Path(dirpath).relative_to(source)
            target_dir.mkdir(parents=True, exist_ok=True)
            for name in filenames:
                if name not in excludes:
                    shutil.copyfile(Path(dirpath) / name, target_dir / name)
    except OSError as error:
        raise CopyError(f"Failed to copy {source}: {error}", source=str(source)) from error


def install_emmc_boot_scripts(boot_dir: Path) -> list[str]:
    """Rename eMMC-specific boot scripts over the generic ones."""
    renamed = []
    for emmc_name, generic_name in settings.EMMC_BOOT_SCRIPTS.items():
        emmc_script = boot_dir / emmc_name
        if emmc_script.is_file():
            emmc_script.replace(boot_dir / generic_name)
            renamed.append(generic_name)
    return renamed


def populate_boot_partition(ctx: InstallContext) -> InstallContext:
    """Format partition 1 as FAT32 and fill it from the live ``/boot``."""
    if ctx.uuids is None or ctx.platform is None or ctx.scratch_dir is None:
        raise InstallerError("Install context is not initialized")
    partition = ctx.partition_path(BOOT_PARTITION)

    format_partition(partition, "vfat", label=settings.BOOT_LABEL)

    with mounted(partition, ctx.scratch_dir, fstype="vfat") as boot_dir:
        log.info(f"Copying {ctx.source_root / 'boot'} to {partition}")
        copy_boot_tree(ctx.source_root / "boot", boot_dir)

        params = BootParameters.for_platform(ctx.uuids.rootfs1, ctx.platform)
        rewritten = rewrite_boot_configs(boot_dir, params)
        if rewritten:
            log.info(f"Updated boot configuration: {', '.join(rewritten)}")
        else:
            log.warning("No known boot configuration file found on the boot partition")

        for script in install_emmc_boot_scripts(boot_dir):
            log.debug(f"Installed eMMC boot script as {script}")

    return ctx
