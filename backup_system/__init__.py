"""
Database Backup System

Manages periodic backups of an external database onto a growable,
copy-on-write btrfs volume backed by a loop-device image file.

Modules:
    journal: Crash-consistent metadata journal of backup attempts
    capacity_manager: Free space measurement and the grow protocol
    orchestrator: Backup lifecycle, reconciliation and restore
    storage_gateway: btrfs subvolume and filesystem operations
    block_device: Backing file, loop device and mount operations
    data_transfer: Database dump/restore (YDB CLI, PostgreSQL)
    deduplication: Block-level deduplication across backups
    scheduler: Periodic backup scheduling
"""

__version__ = "1.0.0"
__author__ = "Backup Tool Team"

# Well-known locations
DEFAULT_PATHS = {
    "data_path": "/var/lib/ydb-backup-tool",
    "tmp_dir": "tmp",
    "hashfile": "hashfile",
    "backing_file": "data.img",
    "mount_dir": "mnt",
    "backups_dir": "backups",
    "journal_file": "meta.json",
    "lock_file": "lock"
}

# Capacity defaults
CAPACITY_CONFIG = {
    "initial_backing_size_bytes": 1024 * 1024 * 1024,  # 1 GiB
    "growth_multiplier": 2.0,
    "metadata_reserve_bytes": 16 * 1024
}

# External tool defaults
TOOL_CONFIG = {
    "command_timeout": 600,  # 10 minutes
    "transfer_timeout": 3600,  # 1 hour
    "dedup_block_size": 128 * 1024
}
