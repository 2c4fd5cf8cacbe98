"""
Unit Tests for the Managed Volume Session
=========================================
"""

import unittest
import tempfile
import shutil
import os
import sys

# Add parent directories for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from backup_system.errors import BackupInProgressError, GatewayError
from backup_system.volume import ManagedVolume, ProcessLock
from backup_fakes import FakeStorageGateway, FakeBlockDeviceGateway


class TestManagedVolume(unittest.TestCase):
    """Test bringing the volume online and offline."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.storage = FakeStorageGateway()
        self.block_devices = FakeBlockDeviceGateway(self.storage)
        self.backing_path = os.path.join(self.test_dir, 'data.img')
        self.mount_path = os.path.join(self.test_dir, 'mnt')
        self.lock_path = os.path.join(self.test_dir, 'lock')

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def _volume(self, lock_path=None):
        return ManagedVolume(self.storage, self.block_devices, self.backing_path,
                             self.mount_path, lock_path=lock_path)

    def test_first_open_formats_backing_file(self):
        with self._volume() as volume:
            self.assertEqual(volume.mount_point.path, self.mount_path)
            self.assertIn(self.mount_path, self.block_devices.mounted)

        self.assertEqual(self.storage.formatted, [self.backing_path])
        self.assertEqual(self.block_devices.mounted, set())
        self.assertEqual(self.block_devices.attached, set())

    def test_existing_backing_file_not_formatted(self):
        with open(self.backing_path, 'wb') as f:
            f.truncate(1024)

        with self._volume():
            pass

        self.assertEqual(self.storage.formatted, [])

    def test_mount_failure_detaches(self):
        self.block_devices.fail_on.add('mount')

        with self.assertRaises(GatewayError):
            self._volume().open()

        self.assertEqual(self.block_devices.attached, set())

    def test_close_uses_current_mount_point(self):
        """After a grow the device differs from the one attached at open."""
        volume = self._volume()
        volume.open()
        device = self.block_devices.attach(self.block_devices.get_or_create_backing_file(self.backing_path)[0])
        volume.adopt(self.block_devices.mount(device, self.mount_path), device)

        volume.close()

        self.assertNotIn(device.name, self.block_devices.attached)

    def test_close_detaches_device_without_mount(self):
        """A grow that stopped after attach leaves a device but no mount point."""
        volume = self._volume()
        volume.open()
        self.block_devices.unmount(volume.mount_point)
        self.block_devices.detach(volume.device)
        device = self.block_devices.attach(self.block_devices.get_or_create_backing_file(self.backing_path)[0])
        volume.adopt(None, device)

        volume.close()

        self.assertEqual(self.block_devices.attached, set())
        self.assertEqual(self.storage.events.count('unmount'), 1)

    def test_close_keeps_device_when_unmount_fails(self):
        volume = self._volume()
        volume.open()
        self.block_devices.fail_on.add('unmount')

        volume.close()

        self.assertEqual(len(self.block_devices.attached), 1)
        self.assertIsNone(volume.device)

    def test_lock_excludes_second_session(self):
        with self._volume(self.lock_path):
            with self.assertRaises(BackupInProgressError):
                self._volume(self.lock_path).open()

        # released on close
        with self._volume(self.lock_path):
            pass

    def test_lock_released_when_open_fails(self):
        self.block_devices.fail_on.add('attach')

        with self.assertRaises(GatewayError):
            self._volume(self.lock_path).open()

        lock = ProcessLock(self.lock_path)
        lock.acquire()
        lock.release()


if __name__ == '__main__':
    unittest.main()
