"""Platform descriptor parsing.

The release file is a shell fragment of ``KEY='value'`` lines written by
the image build, e.g.::

    PLATFORM='rockchip'
    FAMILY='rockchip'
    FDTFILE='rk3568-firefly-roc-pc.dtb'
    BOOTLOADER_IMG='firefly-roc-pc/idbloader.img'
    MAINLINE_UBOOT='firefly-roc-pc/u-boot.itb'
"""

from __future__ import annotations

import re
from pathlib import Path

from emmc_installer.config import settings
from emmc_installer.domain.models import PlatformDescriptor
from emmc_installer.storage.exceptions import (
    ConfigurationError,
    UnsupportedPlatformError,
)


_LINE_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    # Bare values end at the first unquoted comment
    return value.split(" #", 1)[0].strip()


def parse_release(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        match = _LINE_RE.match(line)
        if match:
            values[match.group(1)] = _unquote(match.group(2))
    return values


def _resolve_image(value: str, bootloader_dir: Path) -> Path:
    path = Path(value)
    if not path.is_absolute():
        path = bootloader_dir / path
    if not path.is_file():
        raise ConfigurationError(f"Bootloader image not found: {path}")
    return path


def load_platform(
    path: Path = settings.RELEASE_FILE,
    *,
    expected_platform: str = settings.EXPECTED_PLATFORM,
    bootloader_dir: Path = settings.BOOTLOADER_DIR,
) -> PlatformDescriptor:
    """Read and validate the platform descriptor.

    Raises:
        ConfigurationError: If the file is missing, a required field is empty,
            or a bootloader image does not exist
        UnsupportedPlatformError: If PLATFORM is not the expected platform
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as error:
        raise ConfigurationError(f"Release file not found: {path}") from error
    except OSError as error:
        raise ConfigurationError(f"Cannot read release file {path}: {error}") from error

    values = parse_release(text)

    platform = values.get("PLATFORM", "")
    if platform != expected_platform:
        raise UnsupportedPlatformError(platform, expected_platform)

    for key in settings.REQUIRED_RELEASE_KEYS:
        if not values.get(key):
            raise ConfigurationError(f"{key} is empty or missing in {path}")

    mainline = values.get("MAINLINE_UBOOT")
    return PlatformDescriptor(
        platform=platform,
        fdtfile=values["FDTFILE"],
        family=values["FAMILY"],
        bootloader_image=_resolve_image(values["BOOTLOADER_IMG"], bootloader_dir),
        mainline_bootloader=(
            _resolve_image(mainline, bootloader_dir) if mainline else None
        ),
        extra={
            key: value
            for key, value in values.items()
            if key
            not in ("PLATFORM", "FDTFILE", "FAMILY", "BOOTLOADER_IMG", "MAINLINE_UBOOT")
        },
    )
