"""
Backup Lifecycle Orchestrator

Coordinates a backup attempt end to end:

    start journal entry -> dump -> capacity check/grow -> create container
    -> move data in -> deduplicate -> mark journal entry complete

and also reconciliation (the journal is authoritative over the containers
on disk), listing and restore. Any failure before completion leaves the
journal entry incomplete and is raised to the caller; the next
reconciliation pass removes the orphaned container.

Assumes a single orchestrator process per backing store; ManagedVolume
enforces this with an advisory lock.
"""

import os
import time
import shutil
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass
from datetime import datetime

from .block_device import LoopDeviceGateway
from .capacity_manager import CapacityManager
from .command_runner import CommandRunner
from .compression import CompressionSetting
from .config import ToolConfig
from .data_transfer import create_transfer_gateway
from .deduplication import DuperemoveGateway
from .errors import BackupNotFoundError, CapacityGrowthFailure
from .journal import MetadataJournal, BackupRecord
from .models import StorageContainer, ContainerMeta
from .protocols import StorageGateway, DataTransferGateway, DeduplicationGateway
from .storage_gateway import BtrfsStorageGateway
from .volume import ManagedVolume

logger = logging.getLogger(__name__)

BACKUP_NAME_PREFIX = "backup_"
SCRATCH_NAME_PREFIX = "temp_backup_"


class BackupState(Enum):
    """Progress of a single backup attempt."""
    NOT_STARTED = "not_started"
    DUMPING = "dumping"
    SIZING = "sizing_and_maybe_growing"
    CONTAINER_CREATED = "container_created"
    DATA_MOVED = "data_moved"
    COMPLETED = "completed"


@dataclass
class BackupResult:
    """Result of a successful backup."""
    path: str
    state: BackupState
    started_at: datetime
    completed_at: Optional[datetime] = None
    size_bytes: int = 0
    grow_cycles: int = 0
    deduplicated: bool = False
    compression: Optional[str] = None
    processing_time: float = 0.0


@dataclass
class BackupListing:
    """A completed backup whose container exists."""
    index: int
    record: BackupRecord
    container: StorageContainer


def directory_size(path: str) -> int:
    """Total size in bytes of all files below path."""
    if not os.path.isdir(path):
        raise NotADirectoryError(f"{path} is not a directory")

    total_size = 0
    for dirpath, _, filenames in os.walk(path):
        for filename in filenames:
            total_size += os.lstat(os.path.join(dirpath, filename)).st_size
    return total_size


def move_directory_contents(source: str, target: str):
    """Move every entry of source into target."""
    for entry in sorted(os.listdir(source)):
        shutil.move(os.path.join(source, entry), os.path.join(target, entry))


class BackupOrchestrator:
    """Top-level controller of the backup lifecycle."""

    def __init__(self, config: ToolConfig, volume: ManagedVolume, journal: MetadataJournal,
                 capacity: CapacityManager, storage: StorageGateway,
                 data_transfer: DataTransferGateway, deduplicator: DeduplicationGateway,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the orchestrator.

        Args:
            config: Tool configuration
            volume: Online volume; its mount point is replaced after a grow
            journal: Metadata journal
            capacity: Capacity manager
            storage: Storage gateway
            data_transfer: Database dump/restore gateway
            deduplicator: Deduplication gateway
            clock: Source of unix timestamps for backup names
        """
        self.config = config
        self.volume = volume
        self.journal = journal
        self.capacity = capacity
        self.storage = storage
        self.data_transfer = data_transfer
        self.deduplicator = deduplicator
        self.clock = clock
        self.state = BackupState.NOT_STARTED

    @property
    def backups_path(self) -> str:
        return self.config.backups_path

    def get_or_create_backups_root(self) -> StorageContainer:
        """Look up the backups root subvolume, creating it if absent."""
        parent = os.path.dirname(self.backups_path)
        for container in self.storage.list_containers(parent):
            if container.path == self.backups_path:
                container.is_backup_root = True
                return container

        logger.info(f"Creating backups root subvolume {self.backups_path}")
        container = self.storage.create_container(self.backups_path)
        container.is_backup_root = True
        return container

    def reconcile(self) -> List[StorageContainer]:
        """
        Delete every container not backed by a completed journal record.

        Returns:
            The deleted containers
        """
        root = self.get_or_create_backups_root()
        return self._reconcile(root)

    def _reconcile(self, root: StorageContainer) -> List[StorageContainer]:
        completed_paths = {record.path for record in self.journal.list_completed_backups()}

        deleted = []
        for container in self.storage.list_containers(root.path):
            if container.path in completed_paths:
                continue
            logger.warning(f"Removing orphaned backup container {container.path}")
            self.storage.delete_container(container)
            deleted.append(container)

        self._purge_stale_scratch()

        if self.config.prune_incomplete_records:
            self.journal.prune_incomplete()

        if deleted:
            logger.info(f"Reconciliation removed {len(deleted)} container(s)")
        return deleted

    def _purge_stale_scratch(self):
        """Remove scratch directories left by interrupted runs."""
        if not os.path.isdir(self.config.tmp_path):
            return

        for entry in os.listdir(self.config.tmp_path):
            if not entry.startswith(SCRATCH_NAME_PREFIX):
                continue
            scratch_dir = os.path.join(self.config.tmp_path, entry)
            try:
                shutil.rmtree(scratch_dir)
                logger.info(f"Removed stale scratch directory {scratch_dir}")
            except OSError as e:
                logger.warning(f"Failed to remove stale scratch directory {scratch_dir}: {e}")

    def create_backup(self, connection_params: Any, dump_options: Any = None,
                      compression: Optional[CompressionSetting] = None,
                      deduplicate: bool = True) -> BackupResult:
        """
        Dump the source database into a new backup container.

        Args:
            connection_params: Data transfer connection parameters
            dump_options: Data transfer dump options
            compression: Compression applied to the new container (config default if None)
            deduplicate: Run deduplication across all backups afterwards

        Returns:
            BackupResult of the completed backup
        """
        start_time = time.time()
        compression = compression or self.config.compression
        self.state = BackupState.NOT_STARTED

        root = self.get_or_create_backups_root()
        self._reconcile(root)

        timestamp = int(self.clock())
        target_path = os.path.join(root.path, f"{BACKUP_NAME_PREFIX}{timestamp}")
        record = self.journal.start_backup(target_path)

        result = BackupResult(path=target_path, state=self.state, started_at=record.started_at,
                              compression=compression.mount_option() if compression else None)
        grow_cycles_before = self.capacity.grow_cycles
        scratch_dir = os.path.join(self.config.tmp_path, f"{SCRATCH_NAME_PREFIX}{timestamp}")

        try:
            self._set_state(BackupState.DUMPING, target_path)
            os.makedirs(scratch_dir, exist_ok=True)
            self.data_transfer.dump(connection_params, dump_options, scratch_dir)

            self._set_state(BackupState.SIZING, target_path)
            result.size_bytes = directory_size(scratch_dir)
            try:
                mount_point = self.capacity.ensure_capacity(self.volume.mount_point, result.size_bytes)
            except CapacityGrowthFailure as e:
                self.volume.adopt(e.mount_point, e.device)
                raise
            self.volume.adopt(mount_point, mount_point.device)
            result.grow_cycles = self.capacity.grow_cycles - grow_cycles_before

            self.storage.create_container(target_path)
            if compression:
                self.storage.set_property(target_path, 'compression', compression.property_value())
            self._set_state(BackupState.CONTAINER_CREATED, target_path)

            move_directory_contents(scratch_dir, target_path)
            self._set_state(BackupState.DATA_MOVED, target_path)

            if deduplicate:
                self.deduplicator.deduplicate(root.path, self.config.dedup_block_size)
                result.deduplicated = True

            finished = self.journal.finish_backup(target_path)
            self._set_state(BackupState.COMPLETED, target_path)

        except Exception as e:
            logger.error(f"Backup {target_path} failed in state {self.state.value}: {e}")
            raise

        self._remove_scratch(scratch_dir)

        result.state = self.state
        result.completed_at = finished.finished_at
        result.processing_time = time.time() - start_time
        logger.info(
            f"Backup completed: {target_path} ({result.size_bytes:,} bytes, "
            f"{result.grow_cycles} grow cycle(s), {result.processing_time:.2f}s)"
        )
        return result

    def _set_state(self, state: BackupState, path: str):
        self.state = state
        logger.debug(f"Backup {path}: {state.value}")

    def _remove_scratch(self, scratch_dir: str):
        try:
            shutil.rmtree(scratch_dir)
        except OSError as e:
            logger.warning(f"Failed to delete temporary backup directory {scratch_dir}: {e}")

    def normalize_backup_path(self, source_path: str) -> str:
        """Turn a backup name or path into an absolute path under the backups root."""
        path = source_path.strip()
        if not path.startswith('/'):
            path = '/' + path
        if not path.startswith(self.backups_path):
            path = self.backups_path + path
        return os.path.normpath(path)

    def restore(self, source_path: str, connection_params: Any, restore_options: Any = None):
        """
        Restore the source database from a completed backup.

        Raises:
            BackupNotFoundError: No such backup after reconciliation
        """
        backup_path = self.normalize_backup_path(source_path)
        root = self.get_or_create_backups_root()
        self._reconcile(root)

        if os.path.dirname(backup_path) != root.path:
            raise BackupNotFoundError(source_path)

        existing = {container.path for container in self.storage.list_containers(root.path)}
        if backup_path not in existing:
            raise BackupNotFoundError(source_path)

        logger.info(f"Restoring from backup {backup_path}")
        self.data_transfer.restore(connection_params, restore_options, backup_path)
        logger.info(f"Successfully restored from the backup `{source_path}`")

    def list_backups(self) -> List[BackupListing]:
        """Completed backups with an existing container, in journal order."""
        root = self.get_or_create_backups_root()
        self._reconcile(root)
        os.sync()

        containers = {c.path: c for c in self.storage.list_containers(root.path)}
        listings = []
        for index, record in enumerate(self.journal.list_completed_backups()):
            container = containers.get(record.path)
            if container is not None:
                listings.append(BackupListing(index=index, record=record, container=container))
        return listings

    def list_backup_sizes(self) -> List[ContainerMeta]:
        """Size information of completed backups, ordered by subvolume id."""
        root = self.get_or_create_backups_root()
        self._reconcile(root)
        os.sync()

        completed_paths = {record.path for record in self.journal.list_completed_backups()}
        metas = [meta for meta in self.storage.container_meta(root.path)
                 if meta.container.path in completed_paths]
        return sorted(metas, key=lambda meta: meta.id)

    def prune_incomplete(self) -> List[BackupRecord]:
        """Drop journal records of backups that never completed."""
        return self.journal.prune_incomplete()

    def get_status(self) -> Dict[str, Any]:
        """Summary of the journal and the volume."""
        records = self.journal.list_backups()
        completed = [r for r in records if r.completed]
        usage = self.storage.filesystem_usage(self.volume.mount_point.path)
        latest = completed[-1] if completed else None

        return {
            'timestamp': datetime.now().isoformat(),
            'total_records': len(records),
            'completed_backups': len(completed),
            'incomplete_records': len(records) - len(completed),
            'latest_backup': {
                'path': latest.path,
                'finished_at': latest.finished_at.isoformat() if latest.finished_at else None
            } if latest else None,
            'backing_file': self.config.backing_file_path,
            'backing_file_size_bytes': os.path.getsize(self.config.backing_file_path)
            if os.path.exists(self.config.backing_file_path) else 0,
            'device': self.volume.mount_point.device.name,
            'filesystem': {
                'device_size': usage.device_size,
                'used': usage.used,
                'free': usage.free
            }
        }


def create_volume(config: ToolConfig, runner: Optional[CommandRunner] = None) -> ManagedVolume:
    """Build the managed volume session with the command-line gateways."""
    runner = runner or CommandRunner(timeout=config.command_timeout, verbose=config.verbose)
    return ManagedVolume(
        storage=BtrfsStorageGateway(runner),
        block_devices=LoopDeviceGateway(runner, initial_size_bytes=config.initial_backing_size_bytes),
        backing_file_path=config.backing_file_path,
        mount_path=config.mount_path,
        compression=config.compression,
        lock_path=config.lock_path if config.use_lock else None
    )


def create_orchestrator(config: ToolConfig, volume: ManagedVolume,
                        runner: Optional[CommandRunner] = None) -> BackupOrchestrator:
    """Build an orchestrator over an opened volume."""
    runner = runner or CommandRunner(timeout=config.command_timeout, verbose=config.verbose)
    capacity = CapacityManager(
        volume.storage,
        volume.block_devices,
        metadata_reserve_bytes=config.metadata_reserve_bytes,
        growth_multiplier=config.growth_multiplier,
        check_host_space=config.check_host_space
    )
    return BackupOrchestrator(
        config=config,
        volume=volume,
        journal=MetadataJournal(config.journal_path),
        capacity=capacity,
        storage=volume.storage,
        data_transfer=create_transfer_gateway(config.driver, runner, timeout=config.transfer_timeout),
        deduplicator=DuperemoveGateway(runner, hashfile_path=config.hashfile_path,
                                       timeout=config.transfer_timeout)
    )
