"""
Capacity Manager

Checks whether a pending backup fits into the managed volume and, when it
does not, runs the grow protocol:

    unmount -> detach -> extend backing file -> attach -> mount -> resize

Each step's failure aborts the protocol with CapacityGrowthFailure; no
rollback is attempted. The device may change identity during a grow, so
callers must continue with the mount point returned by ensure_capacity.
"""

import os
import math
import time
import logging
from typing import Optional

import psutil

from .block_device import round_up_to_mib
from .errors import BackupSystemError, CapacityGrowthFailure, NegativeGrowthError
from .models import BackingStore, MountPoint
from .protocols import StorageGateway, BlockDeviceGateway

logger = logging.getLogger(__name__)

METADATA_RESERVE_BYTES = 16 * 1024
DEFAULT_GROWTH_MULTIPLIER = 2.0
MAX_GROW_CYCLES = 3


class CapacityManager:
    """Keeps enough free space in the managed volume for the next backup."""

    def __init__(self, storage: StorageGateway, block_devices: BlockDeviceGateway,
                 metadata_reserve_bytes: int = METADATA_RESERVE_BYTES,
                 growth_multiplier: float = DEFAULT_GROWTH_MULTIPLIER,
                 check_host_space: bool = True,
                 max_grow_cycles: int = MAX_GROW_CYCLES):
        """
        Initialize the capacity manager.

        Args:
            storage: Storage gateway used for usage queries and resize
            block_devices: Block device gateway used by the grow protocol
            metadata_reserve_bytes: Free space kept back for subvolume metadata
            growth_multiplier: Factor applied to the shortfall to amortize future grows
            check_host_space: Verify the host filesystem can hold the extension first
            max_grow_cycles: Upper bound of grow cycles for a single request
        """
        if growth_multiplier < 1.0:
            raise ValueError("growth_multiplier must be >= 1.0")

        self.storage = storage
        self.block_devices = block_devices
        self.metadata_reserve_bytes = metadata_reserve_bytes
        self.growth_multiplier = growth_multiplier
        self.check_host_space = check_host_space
        self.max_grow_cycles = max_grow_cycles
        self.grow_cycles = 0

    def available_bytes(self, mount_point: MountPoint) -> int:
        """Free bytes usable for data after the metadata reserve."""
        usage = self.storage.filesystem_usage(mount_point.path)
        return usage.free - self.metadata_reserve_bytes

    def compute_extension(self, shortfall: int) -> int:
        """Bytes to add to the backing file for a given shortfall."""
        if shortfall <= 0:
            return 0
        return round_up_to_mib(math.ceil(shortfall * self.growth_multiplier))

    def ensure_capacity(self, mount_point: MountPoint, required_bytes: int) -> MountPoint:
        """
        Make sure required_bytes fit into the volume.

        Args:
            mount_point: Current mount point of the volume
            required_bytes: Size of the data about to be written

        Returns:
            The mount point to use from now on (new after a grow)
        """
        for _ in range(self.max_grow_cycles):
            available = self.available_bytes(mount_point)
            if available >= required_bytes:
                logger.info(
                    f"Capacity check passed: {required_bytes:,} bytes required, "
                    f"{available:,} bytes available"
                )
                return mount_point

            shortfall = required_bytes - available
            extend_by = self.compute_extension(shortfall)
            logger.info(
                f"Insufficient space: {required_bytes:,} bytes required, {available:,} available; "
                f"growing backing store by {extend_by:,} bytes"
            )
            mount_point = self.grow(mount_point, extend_by)

        available = self.available_bytes(mount_point)
        if available < required_bytes:
            raise CapacityGrowthFailure(
                'verify',
                f"{available:,} bytes available after {self.max_grow_cycles} grow cycles, "
                f"{required_bytes:,} required",
                mount_point=mount_point,
                device=mount_point.device
            )
        return mount_point

    def grow(self, mount_point: MountPoint, extend_by: int) -> MountPoint:
        """
        Run one full grow cycle and return the remounted mount point.

        Raises:
            CapacityGrowthFailure: A step failed; the exception carries the
                mount point and device that are still live at that moment
        """
        if extend_by < 0:
            raise NegativeGrowthError(f"cannot grow the backing store by {extend_by} bytes")

        backing_path = mount_point.device.backing_store_path
        mount_path = mount_point.path
        compression = mount_point.compression

        live_mount_point = mount_point
        live_device = mount_point.device
        try:
            if self.check_host_space:
                self._check_host_space(backing_path, extend_by)

            self._step('unmount', self.block_devices.unmount, mount_point)
            live_mount_point = None
            self._step('detach', self.block_devices.detach, mount_point.device)
            live_device = None

            backing_store = self._step('extend', self._extend_backing_file, backing_path, extend_by)

            device = self._step('attach', self.block_devices.attach, backing_store)
            live_device = device
            new_mount_point = self._step('mount', self.block_devices.mount, device, mount_path, compression)
            live_mount_point = new_mount_point
            self._step('resize', self.storage.resize, new_mount_point.path, 'max')
        except CapacityGrowthFailure as e:
            e.mount_point = live_mount_point
            e.device = live_device
            raise

        self.grow_cycles += 1
        logger.info(
            f"Grow cycle completed: backing store {backing_path} is now "
            f"{backing_store.size_bytes:,} bytes, device {device.name}"
        )
        return new_mount_point

    def _extend_backing_file(self, backing_path: str, extend_by: int) -> BackingStore:
        backing_store = BackingStore(path=backing_path, size_bytes=os.path.getsize(backing_path))
        return self.block_devices.extend_by(backing_store, extend_by)

    def _step(self, name: str, func, *args):
        start_time = time.time()
        try:
            result = func(*args)
        except (BackupSystemError, OSError) as e:
            logger.error(f"Grow protocol step '{name}' failed: {e}",
                         extra={'operation': f'grow:{name}'})
            raise CapacityGrowthFailure(name, str(e)) from e

        logger.debug(f"Grow protocol step '{name}' done",
                     extra={'operation': f'grow:{name}',
                            'duration_ms': round((time.time() - start_time) * 1000, 2)})
        return result

    def _check_host_space(self, backing_path: str, extend_by: int):
        """Fail before unmounting when the host cannot hold the extension."""
        host_dir = os.path.dirname(os.path.abspath(backing_path))
        try:
            host_free = psutil.disk_usage(host_dir).free
        except OSError as e:
            raise CapacityGrowthFailure('host space', f"cannot query free space of {host_dir}: {e}") from e

        if host_free < extend_by:
            raise CapacityGrowthFailure(
                'host space',
                f"host filesystem at {host_dir} has {host_free:,} bytes free, "
                f"{extend_by:,} needed"
            )
