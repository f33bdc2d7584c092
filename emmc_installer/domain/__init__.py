"""Domain models for eMMC install runs."""

from __future__ import annotations

from .models import (
    PARTITION_LAYOUT,
    FilesystemUUIDs,
    InstallContext,
    PartitionSpec,
    PlatformDescriptor,
    partition_name,
)


__all__ = [
    "PARTITION_LAYOUT",
    "FilesystemUUIDs",
    "InstallContext",
    "PartitionSpec",
    "PlatformDescriptor",
    "partition_name",
]
