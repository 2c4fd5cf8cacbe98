"""
Regression Tests for Crash Recovery
===================================

Simulates a process that dies at each stage of a backup attempt and
checks that a fresh orchestrator over the same data directory ends up with
exactly the completed backups.
"""

import unittest
import tempfile
import shutil
import os
import sys

# Add parent directories for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from backup_system.capacity_manager import CapacityManager
from backup_system.config import create_default_config
from backup_system.journal import MetadataJournal
from backup_system.orchestrator import BackupOrchestrator, BackupState
from backup_system.volume import ManagedVolume
from backup_fakes import (
    FakeStorageGateway, FakeBlockDeviceGateway, FakeDataTransferGateway,
    FakeDeduplicationGateway, MIB
)


class ProcessKilled(BaseException):
    """Stands in for SIGKILL: not an Exception, so nothing handles it."""


class TestCrashRecovery(unittest.TestCase):
    """Test recovery after an interruption in every backup state."""

    def setUp(self):
        """Set up test environment."""
        self.test_dir = tempfile.mkdtemp()
        self.config = create_default_config(self.test_dir)
        self.config.check_host_space = False
        self.storage = FakeStorageGateway(free_bytes=64 * MIB)
        self.block_devices = FakeBlockDeviceGateway(self.storage)
        self.volume = ManagedVolume(self.storage, self.block_devices,
                                    self.config.backing_file_path, self.config.mount_path)
        self.volume.open()
        self.timestamp = 1700000000

    def tearDown(self):
        """Clean up test environment."""
        self.volume.close()
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def new_orchestrator(self, deduplicator=None):
        """A fresh orchestrator, as after a process restart."""
        self.timestamp += 100
        timestamp = self.timestamp
        return BackupOrchestrator(
            config=self.config,
            volume=self.volume,
            journal=MetadataJournal(self.config.journal_path),
            capacity=CapacityManager(self.storage, self.block_devices, check_host_space=False),
            storage=self.storage,
            data_transfer=FakeDataTransferGateway(),
            deduplicator=deduplicator or FakeDeduplicationGateway(),
            clock=lambda: timestamp
        )

    def kill_in_state(self, orchestrator, state: BackupState):
        """Make the orchestrator die right after entering state."""
        original = orchestrator._set_state

        def set_state(new_state, path):
            original(new_state, path)
            if new_state == state:
                raise ProcessKilled()

        orchestrator._set_state = set_state

    def test_kill_in_each_state(self):
        survivor = self.new_orchestrator().create_backup(object())

        for state in (BackupState.DUMPING, BackupState.SIZING,
                      BackupState.CONTAINER_CREATED, BackupState.DATA_MOVED):
            with self.subTest(state=state):
                doomed = self.new_orchestrator()
                self.kill_in_state(doomed, state)
                with self.assertRaises(ProcessKilled):
                    doomed.create_backup(object())

                listings = self.new_orchestrator().list_backups()

                self.assertEqual([l.container.path for l in listings], [survivor.path])
                self.assertEqual(
                    [c.path for c in self.storage.list_containers(self.config.backups_path)],
                    [survivor.path]
                )
                self.assertEqual(os.listdir(self.config.tmp_path), [])

    def test_kill_after_completion_keeps_backup(self):
        doomed = self.new_orchestrator()
        self.kill_in_state(doomed, BackupState.COMPLETED)
        with self.assertRaises(ProcessKilled):
            doomed.create_backup(object())

        listings = self.new_orchestrator().list_backups()

        self.assertEqual(len(listings), 1)

    def test_incomplete_records_kept_until_pruned(self):
        doomed = self.new_orchestrator()
        self.kill_in_state(doomed, BackupState.DATA_MOVED)
        with self.assertRaises(ProcessKilled):
            doomed.create_backup(object())

        orchestrator = self.new_orchestrator()
        orchestrator.reconcile()
        self.assertEqual(len(orchestrator.journal.list_backups()), 1)

        pruned = orchestrator.prune_incomplete()

        self.assertEqual(len(pruned), 1)
        self.assertEqual(orchestrator.journal.list_backups(), [])


if __name__ == '__main__':
    unittest.main()
