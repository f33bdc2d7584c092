"""Forward-only install pipeline.

    check -> init -> partition -> boot-copy -> root-copy -> done

Each stage takes the install context and returns it. The first failure
propagates to the caller; no stage is retried and nothing is rolled back,
so an aborted run leaves the eMMC partially provisioned.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from emmc_installer.config import settings
from emmc_installer.domain.models import InstallContext
from emmc_installer.install import boot_files, environment, root_files
from emmc_installer.logging import operation_context
from emmc_installer.storage.partition import partition_device


Stage = Callable[[InstallContext], InstallContext]


def _check(ctx: InstallContext) -> InstallContext:
    environment.check_dependencies()
    environment.ensure_root_privileges()
    return ctx


def _root_copy(ctx: InstallContext) -> InstallContext:
    ctx = root_files.populate_root_partition(ctx)
    return root_files.format_spare_partitions(ctx)


def build_stages(
    release_file: Path = settings.RELEASE_FILE,
    target: Optional[str] = None,
) -> list[tuple[str, Stage]]:
    def _init(ctx: InstallContext) -> InstallContext:
        return environment.initialize(ctx, release_file=release_file, target=target)

    return [
        ("check", _check),
        ("init", _init),
        ("partition", partition_device),
        ("boot-copy", boot_files.populate_boot_partition),
        ("root-copy", _root_copy),
    ]


def run_install(
    ctx: Optional[InstallContext] = None,
    stages: Optional[list[tuple[str, Stage]]] = None,
) -> InstallContext:
    """Run every stage in order and return the final context."""
    ctx = ctx or InstallContext()
    for name, stage in stages if stages is not None else build_stages():
        with operation_context(name):
            ctx = stage(ctx)
        ctx.completed_stages.append(name)
    return ctx
