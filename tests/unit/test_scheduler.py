"""
Unit Tests for the Backup Scheduler
===================================
"""

import unittest
import os
import sys
from unittest.mock import Mock, patch
from datetime import datetime

# Add parent directory for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from backup_system.errors import ConfigurationError, GatewayError
from backup_system.orchestrator import BackupResult, BackupState
from backup_system.scheduler import BackupScheduler, ScheduleConfig, ScheduleType


def backup_result():
    return BackupResult(path='/mnt/backups/backup_1', state=BackupState.COMPLETED,
                        started_at=datetime.now())


class TestBackupScheduler(unittest.TestCase):
    """Test job registration and execution bookkeeping."""

    def setUp(self):
        self.runner = Mock(return_value=backup_result())
        self.scheduler = BackupScheduler(self.runner, poll_seconds=1)

    def test_add_interval_job(self):
        self.scheduler.add_scheduled_job(ScheduleConfig(
            name='hourly', schedule_type=ScheduleType.INTERVAL, interval_minutes=60))

        status = self.scheduler.get_scheduler_status()
        self.assertIn('hourly', status['jobs'])
        self.assertEqual(len(self.scheduler.scheduler.get_jobs('hourly')), 1)
        self.assertIsNotNone(status['next_run'])

    def test_add_daily_job(self):
        self.scheduler.add_scheduled_job(ScheduleConfig(
            name='nightly', schedule_type=ScheduleType.DAILY, daily_time='02:00', backup_type='full'))

        self.assertEqual(len(self.scheduler.scheduler.get_jobs('nightly')), 1)

    def test_invalid_jobs_rejected(self):
        invalid = [
            ScheduleConfig(name='a', schedule_type=ScheduleType.INTERVAL, interval_minutes=0),
            ScheduleConfig(name='b', schedule_type=ScheduleType.DAILY, daily_time='25:99'),
            ScheduleConfig(name='c', schedule_type=ScheduleType.DAILY),
            ScheduleConfig(name='d', schedule_type=ScheduleType.INTERVAL, interval_minutes=5,
                           backup_type='differential')
        ]
        for config in invalid:
            with self.subTest(job=config.name):
                with self.assertRaises(ConfigurationError):
                    self.scheduler.add_scheduled_job(config)

    def test_remove_job(self):
        self.scheduler.add_scheduled_job(ScheduleConfig(
            name='hourly', schedule_type=ScheduleType.INTERVAL, interval_minutes=60))

        self.scheduler.remove_scheduled_job('hourly')

        self.assertEqual(self.scheduler.scheduler.get_jobs(), [])
        self.assertEqual(self.scheduler.get_scheduler_status()['jobs'], {})

    def test_successful_execution_notifies(self):
        handler = Mock()
        self.scheduler.add_notification_handler(handler)
        config = ScheduleConfig(name='hourly', schedule_type=ScheduleType.INTERVAL, interval_minutes=60)
        self.scheduler.add_scheduled_job(config)

        result = self.scheduler._execute_scheduled_job('hourly')

        self.assertTrue(result.success)
        self.runner.assert_called_once_with(config)
        handler.assert_called_once_with(result)
        self.assertEqual(len(self.scheduler.job_history), 1)

    def test_repeated_failures_disable_job(self):
        self.runner.side_effect = GatewayError('YDB dump', 'connection refused')
        self.scheduler.add_scheduled_job(ScheduleConfig(
            name='hourly', schedule_type=ScheduleType.INTERVAL, interval_minutes=60,
            max_consecutive_failures=2))

        first = self.scheduler._execute_scheduled_job('hourly')
        self.assertFalse(first.success)
        self.assertIn('connection refused', first.error_message)
        self.assertTrue(self.scheduler.scheduled_jobs['hourly'].enabled)

        self.scheduler._execute_scheduled_job('hourly')

        self.assertFalse(self.scheduler.scheduled_jobs['hourly'].enabled)
        self.assertEqual(self.scheduler.scheduler.get_jobs('hourly'), [])
        self.assertIsNone(self.scheduler._execute_scheduled_job('hourly'))

    def test_failing_handler_does_not_break_job(self):
        self.scheduler.add_notification_handler(Mock(side_effect=RuntimeError('smtp down')))
        self.scheduler.add_scheduled_job(ScheduleConfig(
            name='hourly', schedule_type=ScheduleType.INTERVAL, interval_minutes=60))

        result = self.scheduler._execute_scheduled_job('hourly')

        self.assertTrue(result.success)

    @patch('backup_system.scheduler.time.sleep')
    def test_run_forever_runs_due_jobs_until_stopped(self, mock_sleep):
        self.scheduler.add_scheduled_job(ScheduleConfig(
            name='hourly', schedule_type=ScheduleType.INTERVAL, interval_minutes=60))
        for job in self.scheduler.scheduler.get_jobs('hourly'):
            job.next_run = datetime.now()

        def stop_after_first_poll(seconds):
            self.assertTrue(self.scheduler.running)
            self.scheduler.running = False

        mock_sleep.side_effect = stop_after_first_poll

        self.scheduler.run_forever()

        mock_sleep.assert_called_once_with(self.scheduler.poll_seconds)
        self.assertFalse(self.scheduler.running)
        self.assertEqual(len(self.scheduler.job_history), 1)
        self.assertTrue(self.scheduler.job_history[0].success)

    @patch('backup_system.scheduler.time.sleep', side_effect=KeyboardInterrupt)
    def test_run_forever_interrupted(self, mock_sleep):
        with self.assertRaises(KeyboardInterrupt):
            self.scheduler.run_forever()

        self.assertFalse(self.scheduler.running)


if __name__ == '__main__':
    unittest.main()
