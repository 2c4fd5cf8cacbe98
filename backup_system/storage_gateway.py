"""
btrfs Storage Gateway

Subvolume management, quota-based size reporting and filesystem resize,
implemented on top of the `btrfs` command line tool.
"""

import os
import logging
from typing import Dict, List
from datetime import datetime

from .command_runner import CommandRunner
from .errors import GatewayError
from .models import BackingStore, StorageContainer, ContainerMeta, FilesystemUsage
from .protocols import StorageGateway

logger = logging.getLogger(__name__)

CREATION_TIME_FORMAT = "%Y-%m-%d %H:%M:%S %z"


def parse_key_values(text: str) -> Dict[str, str]:
    """Parse `Key: value` lines; keys are lower-cased, first occurrence wins."""
    result = {}
    for line in text.splitlines():
        key, sep, value = line.partition(':')
        if not sep:
            continue
        key = key.strip().lower()
        if key and key not in result:
            result[key] = value.strip()
    return result


def _leading_int(value: str) -> int:
    return int(value.split()[0])


class BtrfsStorageGateway(StorageGateway):
    """Storage gateway backed by btrfs-progs."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def create_container(self, path: str) -> StorageContainer:
        self.runner.run(['btrfs', 'subvolume', 'create', path],
                        operation='create subvolume', path=path)
        logger.info(f"Created subvolume {path}")
        return StorageContainer.from_path(path)

    def delete_container(self, container: StorageContainer) -> None:
        self.runner.run(['btrfs', 'subvolume', 'delete', container.path],
                        operation='delete subvolume', path=container.path)
        logger.info(f"Deleted subvolume {container.path}")

    def list_containers(self, root_path: str) -> List[StorageContainer]:
        result = self.runner.run(['btrfs', 'subvolume', 'list', '-o', root_path],
                                 operation='list subvolumes', path=root_path)

        containers = []
        seen = set()
        for line in result.stdout.splitlines():
            words = line.split()
            if not words:
                continue
            path = os.path.join(root_path, os.path.basename(words[-1]))
            if path not in seen:
                seen.add(path)
                containers.append(StorageContainer.from_path(path))
        return containers

    def container_meta(self, root_path: str) -> List[ContainerMeta]:
        self.quota_enable(root_path)

        metas = []
        for container in self.list_containers(root_path):
            result = self.runner.run(['btrfs', 'subvolume', 'show', '-b', container.path],
                                     operation='show subvolume', path=container.path)
            metas.append(self.parse_container_meta(result.stdout, container))
        return metas

    @staticmethod
    def parse_container_meta(text: str, container: StorageContainer) -> ContainerMeta:
        """Build ContainerMeta from `btrfs subvolume show -b` output."""
        values = parse_key_values(text)

        def field(key, parse):
            try:
                return parse(values[key])
            except (KeyError, ValueError, IndexError) as e:
                raise GatewayError(
                    'show subvolume', f"failed to parse parameter `{key}`", path=container.path
                ) from e

        return ContainerMeta(
            container=container,
            id=field('subvolume id', _leading_int),
            created_at=field('creation time',
                             lambda v: datetime.strptime(v, CREATION_TIME_FORMAT)),
            size_exclusive=field('usage exclusive', _leading_int),
            size_referenced=field('usage referenced', _leading_int)
        )

    def filesystem_usage(self, mount_path: str) -> FilesystemUsage:
        result = self.runner.run(['btrfs', 'filesystem', 'usage', '-b', mount_path],
                                 operation='filesystem usage', path=mount_path)
        return self.parse_filesystem_usage(result.stdout, mount_path)

    @staticmethod
    def parse_filesystem_usage(text: str, mount_path: str = "") -> FilesystemUsage:
        """Build FilesystemUsage from `btrfs filesystem usage -b` output."""
        values = parse_key_values(text)
        keys = {
            'device_size': 'device size',
            'allocated': 'device allocated',
            'unallocated': 'device unallocated',
            'used': 'used',
            'free': 'free (estimated)'
        }

        parsed = {}
        for attr, key in keys.items():
            try:
                parsed[attr] = _leading_int(values[key])
            except (KeyError, ValueError, IndexError) as e:
                raise GatewayError(
                    'filesystem usage', f"failed to parse `{key}`", path=mount_path
                ) from e

        return FilesystemUsage(**parsed)

    def resize(self, mount_path: str, size: str = "max") -> None:
        self.runner.run(['btrfs', 'filesystem', 'resize', size, mount_path],
                        operation='resize filesystem', path=mount_path)
        logger.info(f"Resized filesystem at {mount_path} to {size}")

    def set_property(self, container_path: str, key: str, value: str) -> None:
        self.runner.run(['btrfs', 'property', 'set', container_path, key, value],
                        operation=f'set property {key}', path=container_path)

    def make_filesystem(self, backing_store: BackingStore) -> None:
        self.runner.run(['mkfs.btrfs', backing_store.path],
                        operation='initialize btrfs', path=backing_store.path)
        logger.info(f"Initialized btrfs in {backing_store.path}")

    def quota_enable(self, path: str) -> None:
        self.runner.run(['btrfs', 'quota', 'enable', path],
                        operation='enable quota', path=path)
