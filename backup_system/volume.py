"""
Managed Volume Session

Brings the backup volume online for the duration of one command: takes the
advisory process lock, creates and formats the backing file on first use,
attaches the loop device and mounts it. On exit whatever is live at that
moment (it changes after a grow, and a failed grow may leave only a
device) is unmounted and detached; failures there are logged, not raised.
"""

import os
import fcntl
import logging
from typing import Optional

from .compression import CompressionSetting
from .errors import BackupInProgressError
from .models import BlockDevice, MountPoint
from .protocols import StorageGateway, BlockDeviceGateway

logger = logging.getLogger(__name__)


class ProcessLock:
    """Exclusive advisory lock on a file (fcntl.flock)."""

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        self._fd = None

    def acquire(self):
        os.makedirs(os.path.dirname(self.lock_path), exist_ok=True)
        fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise BackupInProgressError(
                f"another backup process holds the lock {self.lock_path}"
            )
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self._fd = fd
        logger.debug(f"Acquired lock {self.lock_path}")

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug(f"Released lock {self.lock_path}")

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class ManagedVolume:
    """The btrfs volume living inside the backing file."""

    def __init__(self, storage: StorageGateway, block_devices: BlockDeviceGateway,
                 backing_file_path: str, mount_path: str,
                 compression: Optional[CompressionSetting] = None,
                 lock_path: Optional[str] = None):
        """
        Initialize the volume session.

        Args:
            storage: Storage gateway (formats new backing files)
            block_devices: Block device gateway
            backing_file_path: Location of the backing file
            mount_path: Where the filesystem gets mounted
            compression: Mount-time compression setting
            lock_path: Advisory lock file; no locking if None
        """
        self.storage = storage
        self.block_devices = block_devices
        self.backing_file_path = backing_file_path
        self.mount_path = mount_path
        self.compression = compression
        self.lock = ProcessLock(lock_path) if lock_path else None
        self.mount_point: Optional[MountPoint] = None
        self.device: Optional[BlockDevice] = None

    def open(self) -> MountPoint:
        if self.lock:
            self.lock.acquire()

        try:
            backing_store, created = self.block_devices.get_or_create_backing_file(
                self.backing_file_path
            )
            if created:
                self.storage.make_filesystem(backing_store)

            device = self.block_devices.attach(backing_store)
            try:
                mount_point = self.block_devices.mount(device, self.mount_path, self.compression)
            except Exception:
                self._detach_quietly(device)
                raise
        except Exception:
            if self.lock:
                self.lock.release()
            raise

        self.adopt(mount_point, device)
        logger.info(f"Volume online at {mount_point.path} ({device.name})")
        return mount_point

    def adopt(self, mount_point: Optional[MountPoint], device: Optional[BlockDevice]):
        """
        Record what is live after the mount changed (e.g. after a grow).

        Either may be None when a grow stopped between unmount and remount.
        """
        self.mount_point = mount_point
        self.device = device

    def close(self):
        """Unmount the current mount point and detach the current device; best-effort."""
        mount_point, device = self.mount_point, self.device
        self.mount_point = None
        self.device = None

        try:
            if mount_point is not None:
                try:
                    self.block_devices.unmount(mount_point)
                except Exception as e:
                    logger.warning(f"Failed to unmount {mount_point.path}: {e}")
                    return
            if device is not None:
                self._detach_quietly(device)
        finally:
            if self.lock:
                self.lock.release()

    def _detach_quietly(self, device):
        try:
            self.block_devices.detach(device)
        except Exception as e:
            logger.warning(f"Failed to detach loop device {device.name}: {e}")

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
