"""
Unit tests for scheduler (keepsake/scheduler.py).

Tests APScheduler configuration and job scheduling.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from keepsake import scheduler as scheduler_module


class TestSchedulerInitialization:
    """Test scheduler initialization."""

    def teardown_method(self):
        """Clean up after each test."""
        # Reset global scheduler
        scheduler_module.scheduler = None
        scheduler_module.flask_app = None

    @patch('keepsake.scheduler.BackgroundScheduler')
    def test_init_scheduler(self, mock_scheduler_class, app):
        """Test scheduler initialization."""
        mock_scheduler = MagicMock()
        mock_scheduler_class.return_value = mock_scheduler

        result = scheduler_module.init_scheduler(app)

        assert result == mock_scheduler
        assert scheduler_module.scheduler == mock_scheduler
        assert scheduler_module.flask_app == app

        call_kwargs = mock_scheduler_class.call_args[1]
        assert call_kwargs['timezone'] == 'UTC'
        assert call_kwargs['job_defaults']['max_instances'] == 1
        assert call_kwargs['job_defaults']['coalesce'] is True
        assert 'default' in call_kwargs['jobstores']
        assert 'default' in call_kwargs['executors']

    @patch('keepsake.scheduler.BackgroundScheduler')
    def test_init_scheduler_only_once(self, mock_scheduler_class, app):
        """Test scheduler is only initialized once."""
        mock_scheduler_class.return_value = MagicMock()

        result1 = scheduler_module.init_scheduler(app)
        result2 = scheduler_module.init_scheduler(app)

        assert result1 == result2
        mock_scheduler_class.assert_called_once()


class TestSchedulerLifecycle:
    """Test scheduler start/stop operations."""

    def setup_method(self):
        """Set up before each test."""
        self.mock_scheduler = MagicMock()
        self.mock_scheduler.running = False
        self.mock_scheduler.state = 0
        scheduler_module.scheduler = self.mock_scheduler

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.scheduler = None
        scheduler_module.flask_app = None

    def test_start_scheduler(self):
        self.mock_scheduler.get_jobs.return_value = []

        scheduler_module.start_scheduler()

        self.mock_scheduler.start.assert_called_once()

    def test_start_scheduler_not_initialized(self):
        scheduler_module.scheduler = None

        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.start_scheduler()

    def test_start_scheduler_already_running(self):
        self.mock_scheduler.running = True

        scheduler_module.start_scheduler()

        self.mock_scheduler.start.assert_not_called()

    def test_stop_scheduler_does_not_wait(self):
        """Stopping cancels future firings without waiting for a running cycle."""
        self.mock_scheduler.running = True

        scheduler_module.stop_scheduler()

        self.mock_scheduler.shutdown.assert_called_once_with(wait=False)

    def test_stop_scheduler_not_running(self):
        self.mock_scheduler.running = False

        scheduler_module.stop_scheduler()

        self.mock_scheduler.shutdown.assert_not_called()


class TestSyncSchedule:
    """Test syncing the backup job with the stored settings."""

    def setup_method(self):
        """Set up before each test."""
        self.mock_scheduler = MagicMock()
        self.mock_scheduler.timezone = 'UTC'
        self.mock_scheduler.get_jobs.return_value = []
        self.mock_scheduler.get_job.return_value = None
        scheduler_module.scheduler = self.mock_scheduler

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.scheduler = None
        scheduler_module.flask_app = None

    def test_sync_not_initialized(self, db):
        scheduler_module.scheduler = None

        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.sync_schedule()

    def test_sync_adds_backup_job(self, db, backup_settings):
        """Default settings carry a nightly schedule."""
        assert scheduler_module.sync_schedule() is True

        self.mock_scheduler.add_job.assert_called_once()
        call_kwargs = self.mock_scheduler.add_job.call_args[1]
        assert call_kwargs['id'] == scheduler_module.BACKUP_JOB_ID
        assert call_kwargs['args'] == ['backup', 'scheduled']
        assert call_kwargs['name'] == 'Backup: bk'
        assert isinstance(call_kwargs['trigger'], CronTrigger)

    def test_sync_reschedules_existing_job(self, db, backup_settings):
        backup_settings.schedule_cron = '30 4 * * 1'
        db.session.commit()
        existing = MagicMock()
        self.mock_scheduler.get_job.return_value = existing

        assert scheduler_module.sync_schedule() is True

        existing.reschedule.assert_called_once()
        self.mock_scheduler.add_job.assert_not_called()

    def test_sync_removes_job_when_disabled(self, db, backup_settings):
        backup_settings.enabled = False
        db.session.commit()
        self.mock_scheduler.get_job.return_value = MagicMock()

        assert scheduler_module.sync_schedule() is False

        self.mock_scheduler.remove_job.assert_called_once_with(scheduler_module.BACKUP_JOB_ID)
        self.mock_scheduler.add_job.assert_not_called()

    def test_sync_without_schedule(self, db, backup_settings):
        backup_settings.schedule_cron = None
        db.session.commit()

        assert scheduler_module.sync_schedule() is False

        self.mock_scheduler.add_job.assert_not_called()
        self.mock_scheduler.remove_job.assert_not_called()

    def test_sync_invalid_cron_removes_job(self, db, backup_settings):
        backup_settings.schedule_cron = 'every night'
        db.session.commit()
        self.mock_scheduler.get_job.return_value = MagicMock()

        assert scheduler_module.sync_schedule() is False

        self.mock_scheduler.remove_job.assert_called_once_with(scheduler_module.BACKUP_JOB_ID)

    def test_sync_cleans_old_manual_jobs(self, db, backup_settings):
        mock_manual_job = MagicMock()
        mock_manual_job.id = 'manual_backup_1234567890'
        self.mock_scheduler.get_jobs.return_value = [mock_manual_job]

        scheduler_module.sync_schedule()

        self.mock_scheduler.remove_job.assert_any_call('manual_backup_1234567890')


class TestManualTrigger:
    """Test manual cycle triggering."""

    def setup_method(self):
        """Set up before each test."""
        self.mock_scheduler = MagicMock()
        scheduler_module.scheduler = self.mock_scheduler

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.scheduler = None
        scheduler_module.flask_app = None

    def test_trigger_backup_now(self):
        job_id = scheduler_module.trigger_cycle_now('backup')

        self.mock_scheduler.add_job.assert_called_once()
        call_kwargs = self.mock_scheduler.add_job.call_args[1]
        assert call_kwargs['args'] == ['backup', 'manual']
        assert call_kwargs['id'] == job_id
        assert job_id.startswith('manual_backup_')
        assert isinstance(call_kwargs['trigger'], DateTrigger)

    def test_trigger_prune_now(self):
        job_id = scheduler_module.trigger_cycle_now('prune')

        assert job_id.startswith('manual_prune_')
        assert self.mock_scheduler.add_job.call_args[1]['args'] == ['prune', 'manual']

    def test_trigger_twice_gets_distinct_ids(self):
        with patch.object(scheduler_module, 'datetime') as mock_datetime:
            mock_datetime.now.return_value = datetime(2030, 1, 1, tzinfo=timezone.utc)
            first = scheduler_module.trigger_cycle_now('backup')
            second = scheduler_module.trigger_cycle_now('backup')

        assert first != second
        assert first.startswith('manual_backup_1893456000_')
        assert self.mock_scheduler.add_job.call_count == 2

    def test_trigger_invalid_kind(self):
        with pytest.raises(ValueError, match="Invalid cycle kind"):
            scheduler_module.trigger_cycle_now('restore')

    def test_trigger_not_initialized(self):
        scheduler_module.scheduler = None

        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.trigger_cycle_now('backup')


class TestSchedulerQueries:
    """Test scheduler query functions."""

    def setup_method(self):
        """Set up before each test."""
        self.mock_scheduler = MagicMock()
        scheduler_module.scheduler = self.mock_scheduler

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.scheduler = None

    def test_get_scheduled_jobs(self):
        mock_job1 = MagicMock()
        mock_job1.id = 'scheduled_backup'
        mock_job1.name = 'Backup: bk'
        mock_job1.next_run_time = datetime(2024, 1, 1, 2, 0, 0)
        mock_job1.trigger = 'cron'

        mock_job2 = MagicMock()
        mock_job2.id = 'manual_prune_1'
        mock_job2.name = 'Manual: prune'
        mock_job2.next_run_time = None
        mock_job2.trigger = 'date'

        self.mock_scheduler.get_jobs.return_value = [mock_job1, mock_job2]

        result = scheduler_module.get_scheduled_jobs()

        assert len(result) == 2
        assert result[0]['id'] == 'scheduled_backup'
        assert result[0]['next_run'] == '2024-01-01T02:00:00'
        assert result[1]['next_run'] is None

    def test_get_scheduled_jobs_not_initialized(self):
        scheduler_module.scheduler = None

        assert scheduler_module.get_scheduled_jobs() == []

    def test_is_scheduler_running(self):
        self.mock_scheduler.running = True

        assert scheduler_module.is_scheduler_running() is True

    def test_is_scheduler_running_not_initialized(self):
        scheduler_module.scheduler = None

        assert scheduler_module.is_scheduler_running() is False


class TestExecuteCycleWrapper:
    """Test cycle execution wrapper."""

    def setup_method(self):
        """Set up before each test."""
        self.mock_app = MagicMock()
        scheduler_module.flask_app = self.mock_app

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.flask_app = None

    @patch('keepsake.scheduler.execute_cycle')
    def test_wrapper_runs_cycle_in_app_context(self, mock_execute):
        mock_execute.return_value = MagicMock(status='success')

        scheduler_module._execute_cycle_wrapper('backup', 'scheduled')

        mock_execute.assert_called_once_with('backup', trigger='scheduled')
        self.mock_app.app_context.assert_called_once()

    @patch('keepsake.scheduler.execute_cycle')
    def test_wrapper_handles_exception(self, mock_execute):
        """Errors are logged, never raised into the scheduler thread."""
        mock_execute.side_effect = Exception("Database gone")

        scheduler_module._execute_cycle_wrapper('prune', 'manual')

        mock_execute.assert_called_once_with('prune', trigger='manual')
