"""Abstract contracts of the external collaborators used by the orchestrator."""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

from .compression import CompressionSetting
from .models import (
    BackingStore, BlockDevice, MountPoint, StorageContainer,
    ContainerMeta, FilesystemUsage, DumpResult
)


class StorageGateway(ABC):
    """Copy-on-write container and filesystem operations."""

    @abstractmethod
    def create_container(self, path: str) -> StorageContainer:
        raise NotImplementedError("create_container() not implemented")

    @abstractmethod
    def delete_container(self, container: StorageContainer) -> None:
        raise NotImplementedError("delete_container() not implemented")

    @abstractmethod
    def list_containers(self, root_path: str) -> List[StorageContainer]:
        """Containers directly below root_path."""
        raise NotImplementedError("list_containers() not implemented")

    @abstractmethod
    def container_meta(self, root_path: str) -> List[ContainerMeta]:
        raise NotImplementedError("container_meta() not implemented")

    @abstractmethod
    def filesystem_usage(self, mount_path: str) -> FilesystemUsage:
        raise NotImplementedError("filesystem_usage() not implemented")

    @abstractmethod
    def resize(self, mount_path: str, size: str = "max") -> None:
        raise NotImplementedError("resize() not implemented")

    @abstractmethod
    def set_property(self, container_path: str, key: str, value: str) -> None:
        raise NotImplementedError("set_property() not implemented")

    @abstractmethod
    def make_filesystem(self, backing_store: BackingStore) -> None:
        """Format a freshly created backing store."""
        raise NotImplementedError("make_filesystem() not implemented")


class BlockDeviceGateway(ABC):
    """Backing file, loop device and mount operations."""

    @abstractmethod
    def get_or_create_backing_file(self, path: str) -> Tuple[BackingStore, bool]:
        raise NotImplementedError("get_or_create_backing_file() not implemented")

    @abstractmethod
    def extend_by(self, backing_store: BackingStore, size_bytes: int) -> BackingStore:
        raise NotImplementedError("extend_by() not implemented")

    @abstractmethod
    def attach(self, backing_store: BackingStore) -> BlockDevice:
        raise NotImplementedError("attach() not implemented")

    @abstractmethod
    def detach(self, device: BlockDevice) -> None:
        raise NotImplementedError("detach() not implemented")

    @abstractmethod
    def mount(self, device: BlockDevice, target_path: str,
              compression: Optional[CompressionSetting] = None) -> MountPoint:
        raise NotImplementedError("mount() not implemented")

    @abstractmethod
    def unmount(self, mount_point: MountPoint) -> None:
        raise NotImplementedError("unmount() not implemented")


class DataTransferGateway(ABC):
    """Dump and restore of the source database."""

    @abstractmethod
    def dump(self, connection_params: Any, dump_options: Any, target_dir: str) -> DumpResult:
        raise NotImplementedError("dump() not implemented")

    @abstractmethod
    def restore(self, connection_params: Any, restore_options: Any, source_dir: str) -> None:
        raise NotImplementedError("restore() not implemented")


class DeduplicationGateway(ABC):
    """In-place block deduplication of a directory tree."""

    @abstractmethod
    def deduplicate(self, root_path: str, block_size: int) -> None:
        """Finding no candidates is success."""
        raise NotImplementedError("deduplicate() not implemented")
