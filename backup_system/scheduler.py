"""
Backup Scheduler

Runs backups periodically using the `schedule` library. Jobs execute one
at a time in the foreground loop, so two scheduled backups never overlap.
"""

import time
import schedule
import logging
from datetime import datetime
from typing import Dict, List, Optional, Callable
from dataclasses import dataclass
from enum import Enum

from .errors import ConfigurationError
from .orchestrator import BackupResult

logger = logging.getLogger(__name__)


class ScheduleType(Enum):
    """Types of scheduling patterns."""
    INTERVAL = "interval"
    DAILY = "daily"


@dataclass
class ScheduleConfig:
    """Configuration of a scheduled backup job."""
    name: str
    schedule_type: ScheduleType
    enabled: bool = True

    # Interval scheduling (for INTERVAL type)
    interval_minutes: Optional[int] = None

    # Daily scheduling (for DAILY type)
    daily_time: Optional[str] = None  # Format: "HH:MM"

    backup_type: str = "incremental"
    max_consecutive_failures: int = 3


@dataclass
class ScheduledBackupResult:
    """Result of a scheduled job execution."""
    job_name: str
    started_at: datetime
    completed_at: datetime
    success: bool
    backup_result: Optional[BackupResult] = None
    error_message: Optional[str] = None


class BackupScheduler:
    """Scheduler for periodic backups."""

    def __init__(self, backup_runner: Callable[[ScheduleConfig], BackupResult],
                 poll_seconds: int = 30):
        """
        Initialize the scheduler.

        Args:
            backup_runner: Performs one backup for a job and returns its result
            poll_seconds: How often pending jobs are checked
        """
        self.backup_runner = backup_runner
        self.poll_seconds = poll_seconds
        self.scheduler = schedule.Scheduler()
        self.scheduled_jobs: Dict[str, ScheduleConfig] = {}
        self.job_history: List[ScheduledBackupResult] = []
        self.failure_counts: Dict[str, int] = {}
        self.notification_handlers = []
        self.running = False

    def add_notification_handler(self, handler: Callable[[ScheduledBackupResult], None]):
        """Add notification handler for job results."""
        self.notification_handlers.append(handler)

    def add_scheduled_job(self, config: ScheduleConfig):
        """Register and schedule a job."""
        self._validate_schedule_config(config)

        self.scheduled_jobs[config.name] = config
        self.failure_counts[config.name] = 0
        self._setup_job_schedule(config)

        logger.info(f"Added scheduled job: {config.name} ({config.schedule_type.value})")

    def remove_scheduled_job(self, job_name: str):
        if job_name in self.scheduled_jobs:
            del self.scheduled_jobs[job_name]
            del self.failure_counts[job_name]
            self.scheduler.clear(job_name)
            logger.info(f"Removed scheduled job: {job_name}")

    def _validate_schedule_config(self, config: ScheduleConfig):
        if config.backup_type not in ('full', 'incremental'):
            raise ConfigurationError(f"unknown backup type for job {config.name}: {config.backup_type}")

        if config.schedule_type == ScheduleType.INTERVAL:
            if not config.interval_minutes or config.interval_minutes <= 0:
                raise ConfigurationError(f"job {config.name} needs a positive interval_minutes")
        elif config.schedule_type == ScheduleType.DAILY:
            try:
                datetime.strptime(config.daily_time or '', '%H:%M')
            except ValueError:
                raise ConfigurationError(f"job {config.name} needs daily_time as HH:MM")

    def _setup_job_schedule(self, config: ScheduleConfig):
        if not config.enabled:
            return

        job_func = lambda: self._execute_scheduled_job(config.name)

        if config.schedule_type == ScheduleType.INTERVAL:
            self.scheduler.every(config.interval_minutes).minutes.do(job_func).tag(config.name)
        elif config.schedule_type == ScheduleType.DAILY:
            self.scheduler.every().day.at(config.daily_time).do(job_func).tag(config.name)

    def _execute_scheduled_job(self, job_name: str) -> Optional[ScheduledBackupResult]:
        config = self.scheduled_jobs.get(job_name)
        if config is None or not config.enabled:
            return None

        logger.info(f"Executing scheduled backup job: {job_name}")
        started_at = datetime.now()

        try:
            backup_result = self.backup_runner(config)
            job_result = ScheduledBackupResult(
                job_name=job_name,
                started_at=started_at,
                completed_at=datetime.now(),
                success=True,
                backup_result=backup_result
            )
            self.failure_counts[job_name] = 0

        except Exception as e:
            logger.error(f"Scheduled backup job {job_name} failed: {e}")
            job_result = ScheduledBackupResult(
                job_name=job_name,
                started_at=started_at,
                completed_at=datetime.now(),
                success=False,
                error_message=str(e)
            )
            self.failure_counts[job_name] += 1

            if self.failure_counts[job_name] >= config.max_consecutive_failures:
                logger.error(
                    f"Disabling job {job_name} after {self.failure_counts[job_name]} consecutive failures"
                )
                config.enabled = False
                self.scheduler.clear(job_name)

        self.job_history.append(job_result)
        self._send_job_notifications(job_result)
        return job_result

    def _send_job_notifications(self, job_result: ScheduledBackupResult):
        for handler in self.notification_handlers:
            try:
                handler(job_result)
            except Exception as e:
                logger.warning(f"Notification handler failed: {e}")

    def run_forever(self):
        """Run jobs in the foreground until interrupted or stopped."""
        self.running = True
        logger.info("Backup scheduler started")
        try:
            while self.running:
                self.scheduler.run_pending()
                time.sleep(self.poll_seconds)
        finally:
            self.running = False
            logger.info("Backup scheduler stopped")

    def get_scheduler_status(self) -> Dict:
        return {
            'running': self.running,
            'jobs': {
                name: {
                    'enabled': config.enabled,
                    'type': config.schedule_type.value,
                    'backup_type': config.backup_type,
                    'consecutive_failures': self.failure_counts.get(name, 0)
                }
                for name, config in self.scheduled_jobs.items()
            },
            'next_run': self.scheduler.next_run.isoformat() if self.scheduler.next_run else None,
            'executions': len(self.job_history)
        }


def scheduled_backup_log_handler(result: ScheduledBackupResult):
    """Log the outcome of a scheduled backup."""
    if result.success and result.backup_result:
        logger.info(f"Scheduled backup {result.job_name} stored {result.backup_result.path}")
    else:
        logger.error(f"Scheduled backup {result.job_name} failed: {result.error_message}")
