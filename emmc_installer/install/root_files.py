"""Populate the eMMC root partition and format the spare partitions.

Partition 2 receives a copy of the live root filesystem. ``/etc`` lives in
its own btrfs subvolume and a read-only snapshot of it is taken once the
configuration is final, so the installed system can roll its
configuration back to the state of this install. Partitions 3 (second root
slot) and 4 (shared data, e.g. Docker storage) are formatted empty.
"""

from __future__ import annotations

import re
import shutil
from pathlib import Path

from emmc_installer.config import settings
from emmc_installer.domain.models import InstallContext, partition_name
from emmc_installer.logging import LoggerFactory
from emmc_installer.storage.commands import run_checked_command, run_pipeline
from emmc_installer.storage.exceptions import CommandError, CopyError, InstallerError
from emmc_installer.storage.format import format_partition
from emmc_installer.storage.mount import mounted


log = LoggerFactory.for_rootfs()

ROOTFS1_PARTITION = 2
ROOTFS2_PARTITION = 3
SHARED_PARTITION = 4

UCI_FSTAB_TEMPLATE = """\
config global
\toption anon_swap '0'
\toption anon_mount '1'
\toption auto_swap '0'
\toption auto_mount '1'
\toption delay_root '10'
\toption check_fs '0'

config mount
\toption target '/'
\toption uuid '{root_uuid}'
\toption enabled '1'
\toption enabled_fsck '1'
\toption fstype '{rootfstype}'
\toption options '{rootflags}'

config mount
\toption target '/boot'
\toption label '{boot_label}'
\toption enabled '1'
\toption enabled_fsck '1'
\toption fstype 'vfat'
"""


def render_fstab(root_uuid: str, boot_label: str = settings.BOOT_LABEL) -> str:
    """Return ``/etc/fstab`` with exactly one root and one boot entry active."""
    return (
        f"UUID={root_uuid} / {settings.ROOTFS_TYPE} {settings.BTRFS_COMPRESSION} 0 1\n"
        f"LABEL={boot_label} /boot vfat defaults 0 2\n"
        "#tmpfs /tmp tmpfs defaults,nosuid 0 0\n"
    )


def render_uci_fstab(root_uuid: str, boot_label: str = settings.BOOT_LABEL) -> str:
    """Return the OpenWrt ``/etc/config/fstab`` mount configuration."""
    return UCI_FSTAB_TEMPLATE.format(
        root_uuid=root_uuid,
        rootfstype=settings.ROOTFS_TYPE,
        rootflags=settings.BTRFS_COMPRESSION,
        boot_label=boot_label,
    )


def rewrite_docker_data_root(text: str, data_root: str) -> str:
    """Point the dockerd UCI ``data_root`` option at the shared partition."""
    pattern = re.compile(r"^([ \t]*option[ \t]+data_root[ \t]+).*$", re.MULTILINE)
    return pattern.sub(lambda match: f"{match.group(1)}'{data_root}'", text)


def _run(command: list[str], what: str) -> None:
    try:
        run_checked_command(command)
    except CommandError as error:
        raise InstallerError(f"Failed to {what}: {error.stderr.strip()}") from error


def create_skeleton(root: Path) -> None:
    for name in settings.ROOT_SKELETON:
        (root / name).mkdir(parents=True, exist_ok=True)


def copy_root_tree(source_root: Path, root: Path) -> None:
    """Stream the live top-level directories into the new root with tar.

    tar keeps ownership, modes, hard links, device nodes and extended
    attributes, which a plain recursive copy does not.
    """
    for name in settings.ROOT_COPY_DIRS:
        if not (source_root / name).exists():
            log.debug(f"Skipping {source_root / name}: not present on the live system")
            continue
        log.info(f"Copying {source_root / name}")
        try:
            run_pipeline(
                ["tar", "-C", str(source_root), "--xattrs", "-cf", "-", name],
                ["tar", "-C", str(root), "--xattrs", "-xpf", "-"],
            )
        except CommandError as error:
            raise CopyError(
                f"Failed to copy {source_root / name}: {error.stderr.strip()}",
                source=str(source_root / name),
            ) from error


def create_symlinks(root: Path) -> None:
    for link, target in settings.ROOT_SYMLINKS:
        path = root / link
        if path.is_symlink() or path.is_file():
            path.unlink()
        path.symlink_to(target)


def write_mount_config(root: Path, root_uuid: str) -> None:
    etc = root / "etc"
    etc.mkdir(parents=True, exist_ok=True)
    (etc / "fstab").write_text(render_fstab(root_uuid), encoding="utf-8")
    (etc / "config").mkdir(exist_ok=True)
    (etc / "config" / "fstab").write_text(render_uci_fstab(root_uuid), encoding="utf-8")


def configure_shared_storage(root: Path, target_device: str) -> None:
    """Create mountpoints for partitions 3 and 4 and move Docker onto partition 4."""
    mount_dirs = [
        root / "mnt" / partition_name(target_device, number)
        for number in (ROOTFS2_PARTITION, SHARED_PARTITION)
    ]
    for mount_dir in mount_dirs:
        mount_dir.mkdir(parents=True, exist_ok=True)

    docker_root = f"/mnt/{partition_name(target_device, SHARED_PARTITION)}/docker"
    docker_link = root / "opt" / "docker"
    if docker_link.is_symlink() or docker_link.is_file():
        docker_link.unlink()
    elif docker_link.is_dir():
        # Docker data copied from the live image; the new data root starts empty
        shutil.rmtree(docker_link)
    docker_link.symlink_to(docker_root)

    dockerd_config = root / "etc" / "config" / "dockerd"
    if dockerd_config.is_file():
        text = dockerd_config.read_text(encoding="utf-8")
        dockerd_config.write_text(
            rewrite_docker_data_root(text, f"{docker_root}/"), encoding="utf-8"
        )


def populate_root_partition(ctx: InstallContext) -> InstallContext:
    """Format partition 2 as btrfs and fill it from the live root."""
    if ctx.uuids is None or ctx.scratch_dir is None or ctx.target_device is None:
        raise InstallerError("Install context is not initialized")
    partition = ctx.partition_path(ROOTFS1_PARTITION)

    format_partition(
        partition, "btrfs", label=settings.ROOTFS1_LABEL, fs_uuid=ctx.uuids.rootfs1
    )

    with mounted(
        partition,
        ctx.scratch_dir,
        fstype="btrfs",
        options=[settings.BTRFS_COMPRESSION],
    ) as root:
        _run(
            ["btrfs", "subvolume", "create", str(root / settings.ETC_SUBVOLUME)],
            "create the /etc subvolume",
        )
        create_skeleton(root)
        copy_root_tree(ctx.source_root, root)
        create_symlinks(root)

        write_mount_config(root, ctx.uuids.rootfs1)
        configure_shared_storage(root, ctx.target_device)

        _run(
            [
                "btrfs",
                "subvolume",
                "snapshot",
                "-r",
                str(root / settings.ETC_SUBVOLUME),
                str(root / settings.ETC_SNAPSHOT),
            ],
            "snapshot /etc",
        )
        log.info(f"Created read-only snapshot {settings.ETC_SNAPSHOT}")

    return ctx


def format_spare_partitions(ctx: InstallContext) -> InstallContext:
    """Format the second root slot and the shared data partition, both empty."""
    if ctx.uuids is None:
        raise InstallerError("Install context is not initialized")
    format_partition(
        ctx.partition_path(ROOTFS2_PARTITION),
        "btrfs",
        label=settings.ROOTFS2_LABEL,
        fs_uuid=ctx.uuids.rootfs2,
    )
    format_partition(
        ctx.partition_path(SHARED_PARTITION),
        "btrfs",
        label=settings.SHARED_LABEL,
        fs_uuid=ctx.uuids.shared,
    )
    return ctx
