"""Boot configuration rewriting for the eMMC boot partition.

The live boot partition carries one of three configuration formats. Each
is rewritten so the kernel mounts the new btrfs root by UUID and loads the
board's device tree:

    uEnv.txt                 environment-variable style
                             (``APPEND=root=... rootfstype=...``, ``FDT=...``)
    armbianEnv.txt           U-Boot environment text
                             (``rootdev=``, ``rootfstype=``, ``rootflags=``, ``fdtfile=``)
    extlinux/extlinux.conf   extlinux menu (``append ...``, ``fdt ...``)

Any existing ``root=`` value (UUID, LABEL, PARTUUID or device node) is
replaced, so no identifier of the source media survives.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from emmc_installer.config import settings
from emmc_installer.domain.models import PlatformDescriptor


@dataclass(frozen=True)
class BootParameters:
    """Values written into every boot configuration format."""

    root_uuid: str
    fdt_path: str  # e.g., /dtb/rockchip/rk3568-firefly-roc-pc.dtb
    fdt_relative: str  # e.g., rockchip/rk3568-firefly-roc-pc.dtb
    rootfstype: str = settings.ROOTFS_TYPE
    rootflags: str = settings.BTRFS_COMPRESSION

    @classmethod
    def for_platform(cls, root_uuid: str, platform: PlatformDescriptor) -> BootParameters:
        return cls(
            root_uuid=root_uuid,
            fdt_path=platform.fdt_path,
            fdt_relative=platform.fdt_relative,
        )

    @property
    def kernel_args(self) -> dict[str, str]:
        return {
            "root": f"UUID={self.root_uuid}",
            "rootfstype": self.rootfstype,
            "rootflags": self.rootflags,
        }


def rewrite_cmdline(cmdline: str, args: dict[str, str]) -> str:
    """Set ``key=value`` tokens on a kernel command line, appending missing ones."""
    result = []
    written = set()
    for token in cmdline.split():
        key = token.split("=", 1)[0]
        if key in args:
            # Later duplicates of a rewritten key are dropped
            if key in written:
                continue
            token = f"{key}={args[key]}"
            written.add(key)
        result.append(token)
    result.extend(f"{key}={value}" for key, value in args.items() if key not in written)
    return " ".join(result)


def _set_assignment(text: str, key: str, value: str, separator: str = "=") -> str:
    """Replace ``key<sep>...`` lines, or append one if the key is absent."""
    pattern = re.compile(rf"^([ \t]*){re.escape(key)}{re.escape(separator)}.*$", re.MULTILINE)
    replacement = f"{key}{separator}{value}"
    if pattern.search(text):
        return pattern.sub(lambda match: match.group(1) + replacement, text)
    if text and not text.endswith("\n"):
        text += "\n"
    return f"{text}{replacement}\n"


def rewrite_uenv(text: str, params: BootParameters) -> str:
    """Rewrite an environment-variable style ``uEnv.txt``."""
    append_re = re.compile(r"^([ \t]*APPEND=)(.*)$", re.MULTILINE)
    if append_re.search(text):
        text = append_re.sub(
            lambda match: match.group(1) + rewrite_cmdline(match.group(2), params.kernel_args),
            text,
        )
    else:
        text = _set_assignment(text, "APPEND", rewrite_cmdline("", params.kernel_args))
    return _set_assignment(text, "FDT", params.fdt_path)


def rewrite_armbian_env(text: str, params: BootParameters) -> str:
    """Rewrite a U-Boot environment text file such as ``armbianEnv.txt``."""
    text = _set_assignment(text, "rootdev", f"UUID={params.root_uuid}")
    text = _set_assignment(text, "rootfstype", params.rootfstype)
    text = _set_assignment(text, "rootflags", params.rootflags)
    return _set_assignment(text, "fdtfile", params.fdt_relative)


def rewrite_extlinux(text: str, params: BootParameters) -> str:
    """Rewrite every ``append`` and ``fdt`` line of an extlinux menu."""
    append_re = re.compile(r"^([ \t]*append[ \t]+)(.*)$", re.MULTILINE | re.IGNORECASE)
    text = append_re.sub(
        lambda match: match.group(1) + rewrite_cmdline(match.group(2), params.kernel_args),
        text,
    )
    fdt_re = re.compile(r"^([ \t]*fdt[ \t]+)\S+.*$", re.MULTILINE | re.IGNORECASE)
    return fdt_re.sub(lambda match: match.group(1) + params.fdt_path, text)


BOOT_CONFIG_REWRITERS: dict[str, Callable[[str, BootParameters], str]] = {
    "uEnv.txt": rewrite_uenv,
    "armbianEnv.txt": rewrite_armbian_env,
    "extlinux/extlinux.conf": rewrite_extlinux,
}


def rewrite_boot_configs(boot_dir: Path, params: BootParameters) -> list[str]:
    """Rewrite every known boot config present under boot_dir.

    Returns:
        Relative paths of the files that were rewritten
    """
    rewritten = []
    for relative, rewriter in BOOT_CONFIG_REWRITERS.items():
        path = boot_dir / relative
        if not path.is_file():
            continue
        original = path.read_text(encoding="utf-8", errors="surrogateescape")
        path.write_text(
            rewriter(original, params), encoding="utf-8", errors="surrogateescape"
        )
        rewritten.append(relative)
    return rewritten
