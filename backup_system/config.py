"""
Backup Tool Configuration

All settings are carried by an explicit ToolConfig passed to the
orchestrator at construction time.
"""

import os
import json
import logging
from typing import Dict, Optional, Any
from dataclasses import dataclass, field

from . import DEFAULT_PATHS, CAPACITY_CONFIG, TOOL_CONFIG
from .compression import CompressionSetting, create_compression
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class ToolConfig:
    """Configuration for the backup tool."""
    # Storage layout
    data_path: str = DEFAULT_PATHS['data_path']

    # Capacity management
    initial_backing_size_bytes: int = CAPACITY_CONFIG['initial_backing_size_bytes']
    growth_multiplier: float = CAPACITY_CONFIG['growth_multiplier']
    metadata_reserve_bytes: int = CAPACITY_CONFIG['metadata_reserve_bytes']
    check_host_space: bool = True

    # Compression / deduplication
    compression: Optional[CompressionSetting] = None
    dedup_block_size: int = TOOL_CONFIG['dedup_block_size']

    # External tools
    command_timeout: int = TOOL_CONFIG['command_timeout']
    transfer_timeout: int = TOOL_CONFIG['transfer_timeout']
    verbose: bool = False

    # Database
    driver: str = "ydb"
    ydb: Dict[str, Any] = field(default_factory=dict)
    postgres: Dict[str, Any] = field(default_factory=dict)
    dump_options: Dict[str, Any] = field(default_factory=dict)
    restore_options: Dict[str, Any] = field(default_factory=dict)

    # Journal and locking
    prune_incomplete_records: bool = False
    use_lock: bool = True

    # Scheduling
    schedule_every_minutes: Optional[int] = None
    schedule_daily_at: Optional[str] = None
    schedule_backup_type: str = "incremental"

    @property
    def tmp_path(self) -> str:
        return os.path.join(self.data_path, DEFAULT_PATHS['tmp_dir'])

    @property
    def hashfile_path(self) -> str:
        return os.path.join(self.data_path, DEFAULT_PATHS['hashfile'])

    @property
    def backing_file_path(self) -> str:
        return os.path.join(self.data_path, DEFAULT_PATHS['backing_file'])

    @property
    def mount_path(self) -> str:
        return os.path.join(self.data_path, DEFAULT_PATHS['mount_dir'])

    @property
    def backups_path(self) -> str:
        return os.path.join(self.mount_path, DEFAULT_PATHS['backups_dir'])

    @property
    def journal_path(self) -> str:
        return os.path.join(self.mount_path, DEFAULT_PATHS['journal_file'])

    @property
    def lock_path(self) -> str:
        return os.path.join(self.data_path, DEFAULT_PATHS['lock_file'])

    @property
    def connection_settings(self) -> Dict[str, Any]:
        return self.ydb if self.driver == 'ydb' else self.postgres

    def validate(self):
        """Raise ConfigurationError on inconsistent values."""
        if not os.path.isabs(self.data_path):
            raise ConfigurationError(f"data_path must be absolute: {self.data_path}")
        if self.growth_multiplier < 1.0:
            raise ConfigurationError("growth_multiplier must be >= 1.0")
        if self.metadata_reserve_bytes < 0:
            raise ConfigurationError("metadata_reserve_bytes must not be negative")
        if self.initial_backing_size_bytes <= 0:
            raise ConfigurationError("initial_backing_size_bytes must be positive")
        if self.dedup_block_size <= 0:
            raise ConfigurationError("dedup_block_size must be positive")
        if self.command_timeout <= 0 or self.transfer_timeout <= 0:
            raise ConfigurationError("timeouts must be positive")
        if self.driver not in ('ydb', 'postgres'):
            raise ConfigurationError(f"unknown database driver: {self.driver}")
        if self.schedule_backup_type not in ('full', 'incremental'):
            raise ConfigurationError(f"unknown backup type: {self.schedule_backup_type}")


def create_default_config(data_path: Optional[str] = None) -> ToolConfig:
    """Create default tool configuration."""
    config = ToolConfig()
    if data_path:
        config.data_path = data_path
    return config


def load_config(config_path: str, config: Optional[ToolConfig] = None) -> ToolConfig:
    """
    Overlay a JSON configuration file onto a ToolConfig.

    Args:
        config_path: Path of the JSON file
        config: Base configuration (defaults if None)

    Raises:
        ConfigurationError: File missing, not JSON, or with invalid values
    """
    config = config or create_default_config()

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"configuration file not found: {config_path}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"invalid JSON in configuration file {config_path}: {e}")

    storage = data.get('storage', {})
    config.data_path = storage.get('data_path', config.data_path)

    capacity = data.get('capacity', {})
    config.initial_backing_size_bytes = int(
        capacity.get('initial_backing_size_bytes', config.initial_backing_size_bytes))
    config.growth_multiplier = float(capacity.get('growth_multiplier', config.growth_multiplier))
    config.metadata_reserve_bytes = int(
        capacity.get('metadata_reserve_bytes', config.metadata_reserve_bytes))
    config.check_host_space = bool(capacity.get('check_host_space', config.check_host_space))

    compression = data.get('compression')
    if compression and compression.get('algorithm'):
        config.compression = create_compression(compression['algorithm'], compression.get('level'))

    dedup = data.get('deduplication', {})
    config.dedup_block_size = int(dedup.get('block_size', config.dedup_block_size))

    timeouts = data.get('timeouts', {})
    config.command_timeout = int(timeouts.get('command', config.command_timeout))
    config.transfer_timeout = int(timeouts.get('transfer', config.transfer_timeout))

    database = data.get('database', {})
    config.driver = database.get('driver', config.driver)
    config.dump_options = database.get('dump_options', config.dump_options)
    config.restore_options = database.get('restore_options', config.restore_options)
    config.ydb.update(data.get('ydb', {}))
    config.postgres.update(data.get('postgres', {}))

    journal = data.get('journal', {})
    config.prune_incomplete_records = bool(
        journal.get('prune_incomplete_records', config.prune_incomplete_records))
    config.use_lock = bool(journal.get('use_lock', config.use_lock))

    schedule = data.get('schedule', {})
    config.schedule_every_minutes = schedule.get('every_minutes', config.schedule_every_minutes)
    config.schedule_daily_at = schedule.get('daily_at', config.schedule_daily_at)
    config.schedule_backup_type = schedule.get('backup_type', config.schedule_backup_type)

    config.validate()
    logger.debug(f"Loaded configuration from {config_path}")
    return config


def sample_config() -> Dict[str, Any]:
    """Configuration document written by `create-config`."""
    return {
        "storage": {
            "data_path": DEFAULT_PATHS['data_path']
        },
        "capacity": {
            "initial_backing_size_bytes": CAPACITY_CONFIG['initial_backing_size_bytes'],
            "growth_multiplier": CAPACITY_CONFIG['growth_multiplier'],
            "metadata_reserve_bytes": CAPACITY_CONFIG['metadata_reserve_bytes'],
            "check_host_space": True
        },
        "compression": {
            "algorithm": "zstd",
            "level": 3
        },
        "deduplication": {
            "block_size": TOOL_CONFIG['dedup_block_size']
        },
        "timeouts": {
            "command": TOOL_CONFIG['command_timeout'],
            "transfer": TOOL_CONFIG['transfer_timeout']
        },
        "database": {
            "driver": "ydb",
            "dump_options": {},
            "restore_options": {}
        },
        "ydb": {
            "endpoint": "grpc://localhost:2136",
            "name": "/local"
        },
        "postgres": {
            "host": "localhost",
            "port": 5432,
            "user": "postgres",
            "password": "",
            "database": "postgres"
        },
        "journal": {
            "prune_incomplete_records": False,
            "use_lock": True
        },
        "schedule": {
            "every_minutes": None,
            "daily_at": "02:00",
            "backup_type": "incremental"
        }
    }
