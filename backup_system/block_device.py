"""
Block Device Gateway

Backing file management, loop device attach/detach and mounting through
`losetup`, `mount` and `umount`.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Tuple

from .command_runner import CommandRunner
from .compression import CompressionSetting
from .errors import GatewayError, NegativeGrowthError
from .models import BackingStore, BlockDevice, MountPoint
from .protocols import BlockDeviceGateway

logger = logging.getLogger(__name__)

MIB = 1024 * 1024


def round_up_to_mib(size_bytes: int) -> int:
    """Round a byte count up to the next whole mebibyte."""
    return -(-size_bytes // MIB) * MIB


class LoopDeviceGateway(BlockDeviceGateway):
    """Block device gateway built on Linux loop devices."""

    def __init__(self, runner: CommandRunner, initial_size_bytes: int = 1024 * MIB):
        """
        Initialize the gateway.

        Args:
            runner: Command runner for losetup/mount/umount
            initial_size_bytes: Size of a newly created backing file
        """
        self.runner = runner
        self.initial_size_bytes = round_up_to_mib(initial_size_bytes)

    def get_or_create_backing_file(self, path: str) -> Tuple[BackingStore, bool]:
        backing_path = Path(path)
        if backing_path.exists():
            return BackingStore(path=str(backing_path), size_bytes=backing_path.stat().st_size), False

        backing_path.parent.mkdir(parents=True, exist_ok=True)
        with open(backing_path, 'wb') as f:
            f.truncate(self.initial_size_bytes)

        logger.info(f"Created backing file {backing_path} ({self.initial_size_bytes / MIB:.0f} MiB)")
        return BackingStore(path=str(backing_path), size_bytes=self.initial_size_bytes), True

    def extend_by(self, backing_store: BackingStore, size_bytes: int) -> BackingStore:
        """
        Grow the backing file by size_bytes rounded up to whole MiB.

        Raises:
            NegativeGrowthError: size_bytes is negative
        """
        if size_bytes < 0:
            raise NegativeGrowthError(
                f"cannot shrink backing store {backing_store.path} by {-size_bytes} bytes"
            )

        current_size = os.path.getsize(backing_store.path)
        new_size = current_size + round_up_to_mib(size_bytes)
        if new_size == current_size:
            return BackingStore(path=backing_store.path, size_bytes=current_size)

        with open(backing_store.path, 'r+b') as f:
            f.truncate(new_size)
            f.flush()
            os.fsync(f.fileno())

        logger.info(f"Extended backing file {backing_store.path}: {current_size} -> {new_size} bytes")
        return BackingStore(path=backing_store.path, size_bytes=new_size)

    def attach(self, backing_store: BackingStore) -> BlockDevice:
        result = self.runner.run(['losetup', '--find', '--show', '--partscan', backing_store.path],
                                 operation='attach loop device', path=backing_store.path)

        device_name = result.stdout.strip()
        if not device_name:
            device_name = self._find_device_for(backing_store.path)

        logger.info(f"Attached {backing_store.path} as {device_name}")
        return BlockDevice(name=device_name, backing_store_path=backing_store.path)

    def _find_device_for(self, backing_path: str) -> str:
        """Look the device up in `losetup --json`."""
        result = self.runner.run(['losetup', '--json'],
                                 operation='list loop devices', path=backing_path)
        try:
            devices = json.loads(result.stdout or '{}').get('loopdevices', [])
        except json.JSONDecodeError as e:
            raise GatewayError('list loop devices', 'cannot deserialize losetup output') from e

        for device in devices:
            if os.path.realpath(device.get('back-file', '')) == os.path.realpath(backing_path):
                return device['name']

        raise GatewayError('attach loop device', 'cannot find loop device', path=backing_path)

    def detach(self, device: BlockDevice) -> None:
        self.runner.run(['losetup', '-d', device.name],
                        operation='detach loop device', path=device.name)
        logger.info(f"Detached loop device {device.name}")

    def mount(self, device: BlockDevice, target_path: str,
              compression: Optional[CompressionSetting] = None) -> MountPoint:
        os.makedirs(target_path, exist_ok=True)

        args = ['mount']
        if compression:
            args += ['-o', compression.mount_option()]
        args += [device.name, target_path]

        self.runner.run(args, operation='mount', path=target_path)
        logger.info(f"Mounted {device.name} at {target_path}")
        return MountPoint(path=target_path, device=device, compression=compression)

    def unmount(self, mount_point: MountPoint) -> None:
        self.runner.run(['umount', mount_point.path],
                        operation='unmount', path=mount_point.path)
        logger.info(f"Unmounted {mount_point.path}")
