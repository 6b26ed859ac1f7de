"""
APScheduler configuration for backup cycles.

Manages:
- The periodic backup cycle (fixed interval, delayed first run)
- Manual "run now" triggers
- Scheduler diagnostics

Only one backup cycle runs at a time. APScheduler's ``max_instances=1``
keeps the periodic job from overlapping itself, and a cycle lock shared with
manual triggers skips any cycle that would start while another is in flight.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from dbkeeper.backup.executor import execute_backup_cycle, get_error_reporter
from dbkeeper.utils.error_tracking import safe_capture


logger = logging.getLogger(__name__)

CYCLE_JOB_ID = 'backup_cycle'


class BackupScheduler:
    """
    Long-lived handle owning the backup cycle timer.

    ``stop()`` is idempotent and safe to call even if ``start()`` never ran.
    """

    def __init__(self, app, interval_hours: float = 2, start_delay_minutes: float = 30):
        """
        Args:
            app: Flask app instance (cycles run inside its app context)
            interval_hours: Hours between cycles
            start_delay_minutes: Delay before the first cycle after start()
        """
        self.app = app
        self.interval = timedelta(hours=interval_hours)
        self.start_delay = timedelta(minutes=start_delay_minutes)
        self.scheduler = None
        self._cycle_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    def start(self):
        """
        Start the timer. Calling start() on a running scheduler does nothing.
        """
        if self.running:
            logger.info("Backup scheduler already running")
            return

        executors = {
            'default': ThreadPoolExecutor(max_workers=2)
        }

        job_defaults = {
            'coalesce': True,  # Combine multiple pending instances into one
            'max_instances': 1,  # Only one instance of a job at a time
            'misfire_grace_time': 300  # 5 minutes grace period for misfires
        }

        self.scheduler = BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

        first_run = datetime.now(timezone.utc) + self.start_delay
        self.scheduler.add_job(
            func=self.run_cycle,
            kwargs={'trigger': 'scheduled'},
            trigger=IntervalTrigger(seconds=self.interval.total_seconds(), start_date=first_run, timezone='UTC'),
            id=CYCLE_JOB_ID,
            name='Backup Cycle',
            replace_existing=True
        )

        self.scheduler.start()
        logger.info(
            f"Backup scheduler started (every {self.interval}, first run at {first_run.isoformat()})"
        )

    def stop(self):
        """Stop future cycles. An in-flight cycle is allowed to finish."""
        if self.scheduler is None:
            return

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Backup scheduler stopped")
        self.scheduler = None

    def run_cycle(self, trigger: str = 'scheduled'):
        """
        Run one backup cycle unless another one is in flight.

        Exceptions are logged and reported here so they never reach the
        scheduler thread.

        Returns:
            BackupCycle record, or None if the cycle was skipped or crashed
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning(f"Skipping {trigger} backup cycle: previous cycle still running")
            return None

        try:
            with self.app.app_context():
                cycle = execute_backup_cycle(trigger=trigger)
                if cycle is not None:
                    logger.info(f"Backup cycle {cycle.id} finished with status: {cycle.status}")
                return cycle
        except Exception as e:
            logger.exception(f"{trigger} backup cycle crashed")
            safe_capture(get_error_reporter(self.app), e, phase='cycle', trigger=trigger)
            return None
        finally:
            self._cycle_lock.release()

    def trigger_now(self):
        """
        Run a backup cycle as soon as possible on the scheduler's thread pool.

        Raises:
            RuntimeError: If the scheduler is not running
        """
        if not self.running:
            raise RuntimeError("Backup scheduler is not running")

        now = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.run_cycle,
            kwargs={'trigger': 'manual'},
            trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
            id=f"manual_{int(now.timestamp() * 1000)}",
            name='Manual Backup Cycle',
            replace_existing=False
        )
        logger.info("Manually triggered backup cycle")

    def get_diagnostics(self) -> dict:
        """
        Get scheduler state for troubleshooting.

        Returns:
            Dict with scheduler state and scheduled jobs
        """
        if self.scheduler is None:
            return {
                'running': False,
                'state': 'STOPPED',
                'cycle_in_progress': self.cycle_in_progress,
                'interval_seconds': self.interval.total_seconds(),
                'start_delay_seconds': self.start_delay.total_seconds(),
                'jobs': []
            }

        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger)
            })

        return {
            'running': self.scheduler.running,
            'state': str(self.scheduler.state),
            'cycle_in_progress': self.cycle_in_progress,
            'interval_seconds': self.interval.total_seconds(),
            'start_delay_seconds': self.start_delay.total_seconds(),
            'jobs': jobs
        }


def get_backup_scheduler(app):
    """Return the BackupScheduler registered on ``app``, if any."""
    return app.extensions.get('backup_scheduler')
