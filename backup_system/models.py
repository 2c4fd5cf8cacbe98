"""
Data exchanged between the orchestrator and its gateways.
"""

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .compression import CompressionSetting


@dataclass
class BackingStore:
    """File that backs the loop device. Grows monotonically."""
    path: str
    size_bytes: int


@dataclass
class BlockDevice:
    """Loop device attached over a backing store."""
    name: str
    backing_store_path: str


@dataclass
class MountPoint:
    """Mounted btrfs filesystem of a block device."""
    path: str
    device: BlockDevice
    compression: Optional[CompressionSetting] = None


@dataclass
class StorageContainer:
    """A btrfs subvolume."""
    path: str
    name: str
    is_backup_root: bool = False

    @classmethod
    def from_path(cls, path: str, is_backup_root: bool = False) -> 'StorageContainer':
        path = path.rstrip('/')
        return cls(path=path, name=os.path.basename(path), is_backup_root=is_backup_root)


@dataclass
class ContainerMeta:
    """Size and identity information of a subvolume."""
    container: StorageContainer
    id: int
    created_at: datetime
    size_exclusive: int
    size_referenced: int


@dataclass
class FilesystemUsage:
    """Byte counts reported for a mounted filesystem."""
    device_size: int
    allocated: int
    unallocated: int
    used: int
    free: int


@dataclass
class DumpResult:
    """Outcome of a database dump."""
    path: str
    duration_seconds: float = 0.0
