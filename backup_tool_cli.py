#!/usr/bin/env python3
"""
Database Backup Tool CLI

Command-line interface for the database backup system.

Usage:
    python3 backup_tool_cli.py --help
    python3 backup_tool_cli.py backup create --ydb-endpoint grpc://localhost:2136 --ydb-name /local
    python3 backup_tool_cli.py backup list
    python3 backup_tool_cli.py backup restore --backup-id backup_1700000000
"""

import sys
import json
import argparse
import logging
from typing import Optional

from backup_system.compression import create_compression
from backup_system.config import ToolConfig, create_default_config, load_config, sample_config
from backup_system.data_transfer import (
    connection_params_from_config,
    dump_options_from_config,
    restore_options_from_config
)
from backup_system.errors import BackupSystemError
from backup_system.logging_config import setup_logging
from backup_system.orchestrator import create_volume, create_orchestrator, BackupResult
from backup_system.scheduler import (
    BackupScheduler,
    ScheduleConfig,
    ScheduleType,
    scheduled_backup_log_handler
)

logger = logging.getLogger(__name__)

KIB = 1024


def create_tool_config(args) -> ToolConfig:
    """Create tool configuration from the config file and command line arguments."""
    config = load_config(args.config) if args.config else create_default_config()

    if args.data_path:
        config.data_path = args.data_path
    if args.driver:
        config.driver = args.driver
    config.verbose = args.verbose

    # YDB connection
    ydb_overrides = {
        'endpoint': args.ydb_endpoint,
        'name': args.ydb_name,
        'yc_token_file': args.ydb_yc_token_file,
        'iam_token_file': args.ydb_iam_token_file,
        'sa_key_file': args.ydb_sa_key_file,
        'profile': args.ydb_profile
    }
    config.ydb.update({k: v for k, v in ydb_overrides.items() if v})
    if args.ydb_use_metadata_credentials:
        config.ydb['use_metadata_credentials'] = True

    # PostgreSQL connection
    pg_overrides = {
        'host': args.db_host,
        'port': args.db_port,
        'database': args.db_name,
        'user': args.db_user,
        'password': args.db_password
    }
    config.postgres.update({k: v for k, v in pg_overrides.items() if v})

    # Dump / restore options
    if args.dump_path:
        config.dump_options['path'] = args.dump_path
    if args.dump_exclude:
        config.dump_options['exclude'] = args.dump_exclude
    if args.dump_scheme_only:
        config.dump_options['scheme_only'] = True
    if args.dump_consistency_level:
        config.dump_options['consistency_level'] = args.dump_consistency_level
    if args.dump_avoid_copy:
        config.dump_options['avoid_copy'] = True
    if args.restore_path:
        config.restore_options['path'] = args.restore_path
    if args.restore_no_data:
        config.restore_options['restore_data'] = False
    if args.restore_no_indexes:
        config.restore_options['restore_indexes'] = False
    if args.restore_dry_run:
        config.restore_options['dry_run'] = True

    # Storage tuning
    if args.compress:
        config.compression = create_compression(args.compress, args.compress_level)
    if args.dedup_block_size:
        config.dedup_block_size = args.dedup_block_size

    config.validate()
    return config


def print_backup_result(result: BackupResult):
    print(f"✅ Backup created successfully")
    print(f"Path: {result.path}")
    print(f"Size: {result.size_bytes / (1024**2):.1f} MB")
    print(f"Grow cycles: {result.grow_cycles}")
    print(f"Deduplicated: {'yes' if result.deduplicated else 'no'}")
    if result.compression:
        print(f"Compression: {result.compression}")
    print(f"Duration: {result.processing_time:.2f} seconds")


def run_backup(config: ToolConfig, backup_type: str) -> BackupResult:
    """Bring the volume online, create one backup, take it offline."""
    params = connection_params_from_config(config.driver, config.connection_settings)
    dump_options = dump_options_from_config(config.driver, config.dump_options)

    with create_volume(config) as volume:
        orchestrator = create_orchestrator(config, volume)
        return orchestrator.create_backup(
            params,
            dump_options,
            compression=config.compression,
            deduplicate=(backup_type == 'incremental')
        )


def cmd_backup(args):
    """Backup lifecycle operations."""
    config = create_tool_config(args)

    if args.backup_action == 'create':
        print(f"💾 Creating {args.type} backup...")
        result = run_backup(config, args.type)
        print_backup_result(result)
        return 0

    with create_volume(config) as volume:
        orchestrator = create_orchestrator(config, volume)

        if args.backup_action == 'list':
            listings = orchestrator.list_backups()
            if not listings:
                print("Currently, there are no backups")
            for listing in listings:
                print(f"{listing.index} {listing.container.path}")

        elif args.backup_action == 'sizes':
            metas = orchestrator.list_backup_sizes()
            if not metas:
                print("Currently, there are no backups")
            else:
                print(f"{'Id':<6} {'Backup Name':<24} {'Usage referenced':>18} {'Usage exclusive':>18}")
                for meta in metas:
                    referenced = f"{meta.size_referenced / KIB:.2f}Kb"
                    exclusive = f"{meta.size_exclusive / KIB:.2f}Kb"
                    print(f"{meta.id:<6} {meta.container.name:<24} {referenced:>18} {exclusive:>18}")

        elif args.backup_action == 'restore':
            if not args.backup_id:
                print("❌ Backup ID required for restore operation")
                return 1

            params = connection_params_from_config(config.driver, config.connection_settings)
            restore_options = restore_options_from_config(config.driver, config.restore_options)
            print(f"Restoring from backup: {args.backup_id}")
            orchestrator.restore(args.backup_id, params, restore_options)
            print(f"✅ Successfully restored from the backup `{args.backup_id}`")

        elif args.backup_action == 'reconcile':
            deleted = orchestrator.reconcile()
            print(f"✅ Reconciliation removed {len(deleted)} orphaned container(s)")
            for container in deleted:
                print(f"  - {container.path}")

        elif args.backup_action == 'prune':
            pruned = orchestrator.prune_incomplete()
            print(f"✅ Pruned {len(pruned)} incomplete journal record(s)")
            for record in pruned:
                print(f"  - {record.path} (started {record.started_at.isoformat()})")

        elif args.backup_action == 'status':
            status = orchestrator.get_status()
            print(f"Completed Backups: {status['completed_backups']}")
            print(f"Incomplete Records: {status['incomplete_records']}")
            print(f"Backing File: {status['backing_file']} "
                  f"({status['backing_file_size_bytes'] / (1024**2):.1f} MB)")
            print(f"Device: {status['device']}")
            fs = status['filesystem']
            print(f"Filesystem: {fs['used'] / (1024**2):.1f} MB used, "
                  f"{fs['free'] / (1024**2):.1f} MB free of {fs['device_size'] / (1024**2):.1f} MB")
            if status['latest_backup']:
                print(f"Latest Backup: {status['latest_backup']['path']}")

    return 0


def cmd_schedule(args):
    """Run periodic backups in the foreground."""
    config = create_tool_config(args)

    every_minutes = args.every_minutes or config.schedule_every_minutes
    daily_at = args.daily_at or config.schedule_daily_at
    backup_type = args.type or config.schedule_backup_type

    if every_minutes:
        job = ScheduleConfig(name='periodic_backup', schedule_type=ScheduleType.INTERVAL,
                             interval_minutes=int(every_minutes), backup_type=backup_type)
    elif daily_at:
        job = ScheduleConfig(name='daily_backup', schedule_type=ScheduleType.DAILY,
                             daily_time=daily_at, backup_type=backup_type)
    else:
        print("❌ Either --every-minutes or --daily-at is required")
        return 1

    scheduler = BackupScheduler(lambda job_config: run_backup(config, job_config.backup_type))
    scheduler.add_notification_handler(scheduled_backup_log_handler)
    scheduler.add_scheduled_job(job)

    print(f"⏰ Backup scheduler running ({job.schedule_type.value}), press Ctrl+C to stop")
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        print("\n⏹️ Scheduler stopped")
    return 0


def create_sample_config(args):
    """Create a sample configuration file."""
    config_path = args.output or 'backup_tool_config.json'

    with open(config_path, 'w') as f:
        json.dump(sample_config(), f, indent=2)

    print(f"📄 Sample configuration created: {config_path}")
    print("Edit this file to customize your settings")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Database Backup Tool CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Incremental (deduplicated) backup of a YDB database
  python3 backup_tool_cli.py backup create --ydb-endpoint grpc://localhost:2136 --ydb-name /local

  # Full backup with zstd compression
  python3 backup_tool_cli.py backup create --type full --compress zstd --compress-level 5

  # PostgreSQL instead of YDB
  python3 backup_tool_cli.py --driver postgres --db-name mydb backup create

  # Listing and sizes
  python3 backup_tool_cli.py backup list
  python3 backup_tool_cli.py backup sizes

  # Restore
  python3 backup_tool_cli.py backup restore --backup-id backup_1700000000

  # Periodic backups
  python3 backup_tool_cli.py schedule --daily-at 02:00

  # Generate sample config
  python3 backup_tool_cli.py create-config --output my_config.json
        """
    )

    # Global arguments
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    parser.add_argument('--config', help='Configuration file path')
    parser.add_argument('--json-logs', action='store_true', help='Emit structured JSON logs')
    parser.add_argument('--log-file', help='Additional log file')
    parser.add_argument('--data-path', help='Tool data directory (default: /var/lib/ydb-backup-tool)')
    parser.add_argument('--driver', choices=['ydb', 'postgres'], help='Source database driver')

    # YDB connection arguments
    ydb_group = parser.add_argument_group('YDB connection')
    ydb_group.add_argument('--ydb-endpoint', help='YDB endpoint')
    ydb_group.add_argument('--ydb-name', help='YDB database name')
    ydb_group.add_argument('--ydb-yc-token-file', help='Yandex Cloud OAuth token file')
    ydb_group.add_argument('--ydb-iam-token-file', help='IAM token file')
    ydb_group.add_argument('--ydb-sa-key-file', help='Service account key file')
    ydb_group.add_argument('--ydb-profile', help='YDB CLI profile')
    ydb_group.add_argument('--ydb-use-metadata-credentials', action='store_true',
                           help='Use metadata service credentials')

    # Dump / restore options
    transfer_group = parser.add_argument_group('dump and restore')
    transfer_group.add_argument('--dump-path', help='Database path to dump')
    transfer_group.add_argument('--dump-exclude', action='append', help='Exclude pattern (repeatable)')
    transfer_group.add_argument('--dump-scheme-only', action='store_true', help='Dump schema only')
    transfer_group.add_argument('--dump-consistency-level', choices=['database', 'table'],
                                help='Dump consistency level')
    transfer_group.add_argument('--dump-avoid-copy', action='store_true',
                                help='Do not create a snapshot copy before dumping')
    transfer_group.add_argument('--restore-path', help='Database path to restore into')
    transfer_group.add_argument('--restore-no-data', action='store_true', help='Restore schema only')
    transfer_group.add_argument('--restore-no-indexes', action='store_true', help='Skip index restore')
    transfer_group.add_argument('--restore-dry-run', action='store_true', help='Validate restore only')

    # PostgreSQL connection arguments
    db_group = parser.add_argument_group('PostgreSQL connection')
    db_group.add_argument('--db-host', help='Database host')
    db_group.add_argument('--db-port', type=int, help='Database port')
    db_group.add_argument('--db-name', help='Database name')
    db_group.add_argument('--db-user', help='Database user')
    db_group.add_argument('--db-password', help='Database password')

    # Storage tuning
    storage_group = parser.add_argument_group('storage')
    storage_group.add_argument('--compress', choices=['zlib', 'lzo', 'zstd'],
                               help='Compression algorithm for new backups')
    storage_group.add_argument('--compress-level', type=int, help='Compression level')
    storage_group.add_argument('--dedup-block-size', type=int, help='Deduplication block size in bytes')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    backup_parser = subparsers.add_parser('backup', help='Backup lifecycle operations')
    backup_parser.add_argument(
        'backup_action',
        choices=['create', 'list', 'sizes', 'restore', 'reconcile', 'prune', 'status'],
        default='create',
        nargs='?',
        help='Backup action (default: create)'
    )
    backup_parser.add_argument('--backup-id', help='Backup name or path for restore')
    backup_parser.add_argument(
        '--type',
        choices=['full', 'incremental'],
        default='incremental',
        help='Backup type; incremental deduplicates against earlier backups (default: incremental)'
    )

    schedule_parser = subparsers.add_parser('schedule', help='Run periodic backups')
    schedule_parser.add_argument('--every-minutes', type=int, help='Backup interval in minutes')
    schedule_parser.add_argument('--daily-at', help='Daily backup time (HH:MM)')
    schedule_parser.add_argument('--type', choices=['full', 'incremental'], help='Backup type')

    config_parser = subparsers.add_parser('create-config', help='Create sample configuration file')
    config_parser.add_argument('--output', help='Output file path (default: backup_tool_config.json)')

    return parser


def main(argv: Optional[list] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, log_file=args.log_file, structured=args.json_logs)

    try:
        if args.command == 'backup':
            return cmd_backup(args)
        elif args.command == 'schedule':
            return cmd_schedule(args)
        elif args.command == 'create-config':
            return create_sample_config(args)
        else:
            parser.print_help()
            return 1
    except BackupSystemError as e:
        print(f"❌ {e}")
        return 1


def cli():
    """Console script entry point."""
    try:
        exit_code = main()
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\n⚠️  Operation cancelled by user")
        sys.exit(130)
    except Exception as e:
        print(f"\n❌ Unexpected error: {e}")
        logging.exception("Unexpected error in CLI")
        sys.exit(1)


if __name__ == '__main__':
    cli()
