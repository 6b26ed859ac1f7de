"""
Unit tests for scheduler (dbkeeper/scheduler.py).

Tests APScheduler configuration, cycle serialization and manual triggers.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from dbkeeper import create_app
from dbkeeper import config as config_module
from dbkeeper.scheduler import BackupScheduler, CYCLE_JOB_ID, get_backup_scheduler


class TestSchedulerLifecycle:
    """Test starting and stopping the scheduler."""

    def test_stop_without_start(self, app):
        """Test stop() is safe before start() and when repeated."""
        backup_scheduler = BackupScheduler(app)

        backup_scheduler.stop()
        backup_scheduler.stop()

        assert backup_scheduler.running is False

    @patch('dbkeeper.scheduler.BackgroundScheduler')
    def test_start_configures_interval_job(self, mock_scheduler_class, app):
        """Test the cycle job runs on a fixed interval after the start delay."""
        mock_scheduler = MagicMock()
        mock_scheduler.running = False
        mock_scheduler_class.return_value = mock_scheduler
        before = datetime.now(timezone.utc)

        BackupScheduler(app, interval_hours=2, start_delay_minutes=30).start()

        call_kwargs = mock_scheduler_class.call_args[1]
        assert call_kwargs['timezone'] == 'UTC'
        assert call_kwargs['job_defaults']['max_instances'] == 1
        assert call_kwargs['job_defaults']['coalesce'] is True

        job_kwargs = mock_scheduler.add_job.call_args[1]
        trigger = job_kwargs['trigger']
        assert job_kwargs['id'] == CYCLE_JOB_ID
        assert job_kwargs['kwargs'] == {'trigger': 'scheduled'}
        assert isinstance(trigger, IntervalTrigger)
        assert trigger.interval == timedelta(hours=2)
        assert before + timedelta(minutes=30) <= trigger.start_date
        assert trigger.start_date <= datetime.now(timezone.utc) + timedelta(minutes=30)
        mock_scheduler.start.assert_called_once()

    @patch('dbkeeper.scheduler.BackgroundScheduler')
    def test_start_only_once(self, mock_scheduler_class, app):
        """Test start() on a running scheduler does nothing."""
        mock_scheduler = MagicMock()
        mock_scheduler.running = True
        mock_scheduler_class.return_value = mock_scheduler
        backup_scheduler = BackupScheduler(app)

        backup_scheduler.start()
        backup_scheduler.start()

        mock_scheduler_class.assert_called_once()

    @patch('dbkeeper.scheduler.BackgroundScheduler')
    def test_stop_shuts_down(self, mock_scheduler_class, app):
        """Test stop() shuts down without waiting for an in-flight cycle."""
        mock_scheduler = MagicMock()
        mock_scheduler.running = True
        mock_scheduler_class.return_value = mock_scheduler
        backup_scheduler = BackupScheduler(app)
        backup_scheduler.start()

        backup_scheduler.stop()

        mock_scheduler.shutdown.assert_called_once_with(wait=False)
        assert backup_scheduler.scheduler is None
        assert backup_scheduler.running is False

    def test_real_scheduler_start_and_stop(self, app):
        """Test the first run is delayed by the start offset."""
        backup_scheduler = BackupScheduler(app, interval_hours=1, start_delay_minutes=30)
        try:
            backup_scheduler.start()

            assert backup_scheduler.running is True
            job = backup_scheduler.scheduler.get_job(CYCLE_JOB_ID)
            delay = job.next_run_time - datetime.now(timezone.utc)
            assert timedelta(minutes=29) < delay <= timedelta(minutes=30)

            diagnostics = backup_scheduler.get_diagnostics()
            assert diagnostics['running'] is True
            assert [j['id'] for j in diagnostics['jobs']] == [CYCLE_JOB_ID]
        finally:
            backup_scheduler.stop()

        assert backup_scheduler.running is False

    def test_diagnostics_when_stopped(self, app):
        """Test diagnostics of a scheduler that never started."""
        diagnostics = BackupScheduler(app, interval_hours=2, start_delay_minutes=30).get_diagnostics()

        assert diagnostics['running'] is False
        assert diagnostics['state'] == 'STOPPED'
        assert diagnostics['interval_seconds'] == 7200
        assert diagnostics['start_delay_seconds'] == 1800
        assert diagnostics['jobs'] == []


class TestRunCycle:
    """Test cycle execution from the scheduler."""

    @patch('dbkeeper.scheduler.execute_backup_cycle')
    def test_run_cycle(self, mock_execute, app):
        """Test a cycle runs with the given trigger."""
        mock_execute.return_value = MagicMock(id=1, status='success')
        backup_scheduler = BackupScheduler(app)

        result = backup_scheduler.run_cycle('manual')

        mock_execute.assert_called_once_with(trigger='manual')
        assert result is mock_execute.return_value
        assert backup_scheduler.cycle_in_progress is False

    @patch('dbkeeper.scheduler.execute_backup_cycle')
    def test_run_cycle_skips_while_in_flight(self, mock_execute, app):
        """Test a cycle is skipped while another one holds the lock."""
        backup_scheduler = BackupScheduler(app)
        backup_scheduler._cycle_lock.acquire()
        try:
            assert backup_scheduler.cycle_in_progress is True
            assert backup_scheduler.run_cycle('scheduled') is None
        finally:
            backup_scheduler._cycle_lock.release()

        mock_execute.assert_not_called()

    @patch('dbkeeper.scheduler.execute_backup_cycle')
    def test_run_cycle_contains_crash(self, mock_execute, app):
        """Test an unexpected error never reaches the scheduler thread."""
        mock_execute.side_effect = RuntimeError('boom')
        reporter = MagicMock()
        app.extensions['error_reporter'] = reporter
        backup_scheduler = BackupScheduler(app)

        assert backup_scheduler.run_cycle() is None
        assert backup_scheduler.cycle_in_progress is False

        exc = reporter.capture.call_args[0][0]
        assert isinstance(exc, RuntimeError)
        assert reporter.capture.call_args[1] == {'phase': 'cycle', 'trigger': 'scheduled'}


class TestTriggerNow:
    """Test manual triggers."""

    def test_trigger_now_requires_running_scheduler(self, app):
        """Test manual triggers fail when the scheduler is stopped."""
        with pytest.raises(RuntimeError):
            BackupScheduler(app).trigger_now()

    @patch('dbkeeper.scheduler.BackgroundScheduler')
    def test_trigger_now_adds_one_off_job(self, mock_scheduler_class, app):
        """Test manual triggers add a one-off job with the manual trigger."""
        mock_scheduler = MagicMock()
        mock_scheduler.running = True
        mock_scheduler_class.return_value = mock_scheduler
        backup_scheduler = BackupScheduler(app)
        backup_scheduler.start()
        mock_scheduler.add_job.reset_mock()

        backup_scheduler.trigger_now()

        job_kwargs = mock_scheduler.add_job.call_args[1]
        assert isinstance(job_kwargs['trigger'], DateTrigger)
        assert job_kwargs['kwargs'] == {'trigger': 'manual'}
        assert job_kwargs['id'].startswith('manual_')


class EnabledTestingConfig(config_module.TestingConfig):
    BACKUP_ENABLED = True


class TestAppScheduler:
    """Test scheduler wiring in the app factory."""

    def test_disabled_backups_do_not_start_scheduler(self, app):
        """Test the scheduler is registered but idle when backups are disabled."""
        backup_scheduler = get_backup_scheduler(app)

        assert isinstance(backup_scheduler, BackupScheduler)
        assert backup_scheduler.running is False

    @patch('dbkeeper.atexit.register')
    @patch.object(BackupScheduler, 'start')
    def test_enabled_backups_start_scheduler(self, mock_start, mock_register, monkeypatch):
        """Test the designated scheduler worker starts the scheduler."""
        monkeypatch.setenv('SCHEDULER_WORKER', 'true')

        with patch.dict('dbkeeper.config.config', {'enabled-testing': EnabledTestingConfig}):
            app = create_app('enabled-testing')

        mock_start.assert_called_once()
        mock_register.assert_called_once_with(app.extensions['backup_scheduler'].stop)

    @patch.object(BackupScheduler, 'start')
    def test_non_scheduler_worker_skips_scheduler(self, mock_start, monkeypatch):
        """Test workers not designated as scheduler owner never start it."""
        monkeypatch.setenv('SCHEDULER_WORKER', 'false')

        with patch.dict('dbkeeper.config.config', {'enabled-testing': EnabledTestingConfig}):
            create_app('enabled-testing')

        mock_start.assert_not_called()
