"""
Data Transfer Gateways

Dump the source database into a directory and restore it back.

- YdbTransferGateway drives the `ydb tools dump/restore` CLI
- PostgresTransferGateway drives `pg_dump`/`pg_restore` in directory format,
  probing the server with psycopg2 first
"""

import os
import time
import logging
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field

import psycopg2

from .command_runner import CommandRunner
from .errors import ConfigurationError, GatewayUnavailable
from .models import DumpResult
from .protocols import DataTransferGateway

logger = logging.getLogger(__name__)


@dataclass
class YdbParams:
    """YDB connection parameters."""
    endpoint: str
    name: str
    yc_token_file: str = ""
    iam_token_file: str = ""
    sa_key_file: str = ""
    profile: str = ""
    use_metadata_credentials: bool = False

    def connection_args(self) -> List[str]:
        """Global `ydb` arguments; the first configured auth method wins."""
        args = ['-e', self.endpoint, '-d', self.name]
        if self.yc_token_file:
            args += ['--yc-token-file', self.yc_token_file]
        elif self.iam_token_file:
            args += ['--iam-token-file', self.iam_token_file]
        elif self.sa_key_file:
            args += ['--sa-key-file', self.sa_key_file]
        elif self.profile:
            args += ['-p', self.profile]
        elif self.use_metadata_credentials:
            args.append('--use-metadata-credentials')
        return args


@dataclass
class YdbDumpOptions:
    path: str = ""
    exclude: List[str] = field(default_factory=list)
    scheme_only: bool = False
    consistency_level: str = ""
    avoid_copy: bool = False

    def to_args(self) -> List[str]:
        args = []
        if self.path:
            args += ['--path', self.path]
        for pattern in self.exclude:
            args += ['--exclude', pattern]
        if self.scheme_only:
            args.append('--scheme-only')
        if self.consistency_level:
            if self.consistency_level not in ('database', 'table'):
                raise ConfigurationError(
                    f"consistency level must be 'database' or 'table', got {self.consistency_level}"
                )
            args += ['--consistency-level', self.consistency_level]
        if self.avoid_copy:
            args.append('--avoid-copy')
        return args


@dataclass
class YdbRestoreOptions:
    path: str = "."
    restore_data: bool = True
    restore_indexes: bool = True
    dry_run: bool = False

    def to_args(self) -> List[str]:
        args = ['-p', self.path,
                '--restore-data', '1' if self.restore_data else '0',
                '--restore-indexes', '1' if self.restore_indexes else '0']
        if self.dry_run:
            args.append('--dry-run')
        return args


class YdbTransferGateway(DataTransferGateway):
    """Dump/restore through the YDB CLI."""

    def __init__(self, runner: CommandRunner, timeout: Optional[int] = None):
        self.runner = runner
        self.timeout = timeout

    def dump(self, connection_params: YdbParams, dump_options: Optional[YdbDumpOptions],
             target_dir: str) -> DumpResult:
        options = dump_options or YdbDumpOptions()
        args = (['ydb'] + connection_params.connection_args()
                + ['tools', 'dump', '-o', target_dir] + options.to_args())

        start_time = time.time()
        logger.info(f"Dumping YDB database {connection_params.name} into {target_dir}")
        self.runner.run(args, operation='YDB dump', path=target_dir, timeout=self.timeout)

        return DumpResult(path=target_dir, duration_seconds=time.time() - start_time)

    def restore(self, connection_params: YdbParams, restore_options: Optional[YdbRestoreOptions],
                source_dir: str) -> None:
        options = restore_options or YdbRestoreOptions()
        args = (['ydb'] + connection_params.connection_args()
                + ['tools', 'restore', '-i', source_dir] + options.to_args())

        logger.info(f"Restoring YDB database {connection_params.name} from {source_dir}")
        self.runner.run(args, operation='YDB restore', path=source_dir, timeout=self.timeout)


@dataclass
class PostgresParams:
    """PostgreSQL connection parameters."""
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    database: str = "postgres"

    def connection_args(self, database: Optional[str] = None) -> List[str]:
        return ['-h', self.host, '-p', str(self.port), '-U', self.user,
                '-d', database or self.database, '--no-password']

    def env(self) -> Dict[str, str]:
        return {'PGPASSWORD': self.password or ''}


@dataclass
class PostgresDumpOptions:
    jobs: int = 1
    schema_only: bool = False
    exclude_tables: List[str] = field(default_factory=list)


@dataclass
class PostgresRestoreOptions:
    target_database: str = ""
    clean: bool = True
    jobs: int = 1


class PostgresTransferGateway(DataTransferGateway):
    """Dump/restore through pg_dump and pg_restore (directory format)."""

    def __init__(self, runner: CommandRunner, timeout: Optional[int] = None,
                 connect_timeout: int = 10):
        self.runner = runner
        self.timeout = timeout
        self.connect_timeout = connect_timeout

    def check_connection(self, params: PostgresParams, database: Optional[str] = None):
        """Verify the server accepts connections."""
        try:
            conn = psycopg2.connect(
                host=params.host,
                port=params.port,
                user=params.user,
                password=params.password,
                dbname=database or params.database,
                connect_timeout=self.connect_timeout
            )
            conn.close()
        except psycopg2.Error as e:
            raise GatewayUnavailable(
                'PostgreSQL connect', str(e).strip(), path=f"{params.host}:{params.port}"
            ) from e

    def dump(self, connection_params: PostgresParams, dump_options: Optional[PostgresDumpOptions],
             target_dir: str) -> DumpResult:
        options = dump_options or PostgresDumpOptions()
        self.check_connection(connection_params)

        # pg_dump -Fd creates the output directory itself
        output_dir = os.path.join(target_dir, connection_params.database)
        args = ['pg_dump'] + connection_params.connection_args() + ['-Fd', '-f', output_dir]
        if options.jobs > 1:
            args += ['-j', str(options.jobs)]
        if options.schema_only:
            args.append('--schema-only')
        for table in options.exclude_tables:
            args += ['--exclude-table', table]

        start_time = time.time()
        logger.info(f"Dumping PostgreSQL database {connection_params.database} into {output_dir}")
        self.runner.run(args, operation='pg_dump', path=output_dir,
                        timeout=self.timeout, env=connection_params.env())

        return DumpResult(path=target_dir, duration_seconds=time.time() - start_time)

    def restore(self, connection_params: PostgresParams,
                restore_options: Optional[PostgresRestoreOptions], source_dir: str) -> None:
        options = restore_options or PostgresRestoreOptions()
        target_db = options.target_database or connection_params.database
        self.check_connection(connection_params, target_db)

        input_dir = os.path.join(source_dir, connection_params.database)
        args = ['pg_restore'] + connection_params.connection_args(target_db)
        if options.clean:
            args += ['--clean', '--if-exists']
        if options.jobs > 1:
            args += ['-j', str(options.jobs)]
        args.append(input_dir)

        logger.info(f"Restoring PostgreSQL database {target_db} from {input_dir}")
        self.runner.run(args, operation='pg_restore', path=input_dir,
                        timeout=self.timeout, env=connection_params.env())


def create_transfer_gateway(driver: str, runner: CommandRunner,
                            timeout: Optional[int] = None) -> DataTransferGateway:
    """Build the data transfer gateway for a driver name."""
    if driver == 'ydb':
        return YdbTransferGateway(runner, timeout=timeout)
    if driver == 'postgres':
        return PostgresTransferGateway(runner, timeout=timeout)
    raise ConfigurationError(f"unknown database driver: {driver}")


def connection_params_from_config(driver: str, settings: Dict[str, Any]):
    """Build connection parameters for a driver from a config section."""
    if driver == 'ydb':
        if not settings.get('endpoint') or not settings.get('name'):
            raise ConfigurationError("YDB endpoint and database name are required")
        return YdbParams(
            endpoint=settings['endpoint'],
            name=settings['name'],
            yc_token_file=settings.get('yc_token_file', ''),
            iam_token_file=settings.get('iam_token_file', ''),
            sa_key_file=settings.get('sa_key_file', ''),
            profile=settings.get('profile', ''),
            use_metadata_credentials=bool(settings.get('use_metadata_credentials', False))
        )
    if driver == 'postgres':
        return PostgresParams(
            host=settings.get('host', 'localhost'),
            port=int(settings.get('port', 5432)),
            user=settings.get('user', 'postgres'),
            password=settings.get('password', ''),
            database=settings.get('database', 'postgres')
        )
    raise ConfigurationError(f"unknown database driver: {driver}")


def dump_options_from_config(driver: str, settings: Dict[str, Any]):
    """Build dump options for a driver from a config section."""
    settings = settings or {}
    if driver == 'ydb':
        return YdbDumpOptions(
            path=settings.get('path', ''),
            exclude=list(settings.get('exclude', [])),
            scheme_only=bool(settings.get('scheme_only', False)),
            consistency_level=settings.get('consistency_level', ''),
            avoid_copy=bool(settings.get('avoid_copy', False))
        )
    if driver == 'postgres':
        return PostgresDumpOptions(
            jobs=int(settings.get('jobs', 1)),
            schema_only=bool(settings.get('schema_only', False)),
            exclude_tables=list(settings.get('exclude_tables', []))
        )
    raise ConfigurationError(f"unknown database driver: {driver}")


def restore_options_from_config(driver: str, settings: Dict[str, Any]):
    """Build restore options for a driver from a config section."""
    settings = settings or {}
    if driver == 'ydb':
        return YdbRestoreOptions(
            path=settings.get('path', '.') or '.',
            restore_data=bool(settings.get('restore_data', True)),
            restore_indexes=bool(settings.get('restore_indexes', True)),
            dry_run=bool(settings.get('dry_run', False))
        )
    if driver == 'postgres':
        return PostgresRestoreOptions(
            target_database=settings.get('target_database', ''),
            clean=bool(settings.get('clean', True)),
            jobs=int(settings.get('jobs', 1))
        )
    raise ConfigurationError(f"unknown database driver: {driver}")
