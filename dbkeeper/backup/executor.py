"""
Backup cycle executor - orchestrates one backup cycle.

Workflow:
1. Create BackupCycle record (status: running)
2. List existing backups
3. If there is no daily backup for today: snapshot the databases, compress
   and upload as a new daily backup
4. List again and fill missing weekly/monthly/yearly backups from daily ones
5. List again and prune backups beyond each tier's retention count
6. Update BackupCycle (status: success/partial/failed)

Filling runs before pruning so that a daily backup about to be pruned can
still seed a higher tier.
"""

import os
import logging
import tempfile
from datetime import datetime, timezone
from typing import Callable, Optional

from flask import current_app

from dbkeeper import db
from dbkeeper.config import BackupSettings
from dbkeeper.models import BackupCycle
from dbkeeper.utils.error_tracking import ErrorReporter, LoggingErrorReporter, safe_capture
from .compression import get_archive_size, CompressionError
from .inventory import list_backups, find_backup
from .naming import Tier, daily_backup_filename, daily_backup_key
from .planner import ideal_slots
from .reconciler import Reconciler
from .retention import RetentionManager
from .snapshot import create_snapshot_archive, SnapshotError
from .storage import create_storage, StorageError


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form used in backup keys."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BackupCycleExecutor:
    """
    Orchestrates one backup cycle: daily snapshot, fill, prune.
    """

    def __init__(
        self,
        settings: BackupSettings,
        storage=None,
        trigger: str = 'scheduled',
        now_fn: Callable[[], datetime] = utc_now,
        error_reporter: Optional[ErrorReporter] = None,
        snapshot_fn: Callable[..., str] = create_snapshot_archive
    ):
        """
        Initialize backup cycle executor.

        Args:
            settings: Backup settings
            storage: Storage client (None to create one from settings)
            trigger: What started the cycle ('scheduled' or 'manual')
            now_fn: Clock used to decide the backup date
            error_reporter: Sink for failures operators need to see
            snapshot_fn: Produces the daily archive (databases, dest_file, format, temp_dir)
        """
        self.settings = settings
        self.storage = storage
        self.trigger = trigger
        self.now_fn = now_fn
        self.error_reporter = error_reporter
        self.snapshot_fn = snapshot_fn
        self.cycle_record = None
        self.phase = None
        self.logs = []
        self.errors = []
        self._log_flush_counter = 0

    def execute(self) -> BackupCycle:
        """
        Execute the backup cycle.

        Failures are recorded on the returned BackupCycle and reported to the
        error reporter; nothing is raised.

        Returns:
            BackupCycle record with execution results
        """
        self.cycle_record = BackupCycle(
            trigger=self.trigger,
            status='running',
            started_at=utc_now()
        )
        db.session.add(self.cycle_record)
        db.session.commit()

        self._log(f"Backup cycle started ({self.trigger})")

        try:
            self._execute_workflow()

            self.cycle_record.status = 'partial' if self.errors else 'success'
            self.cycle_record.completed_at = utc_now()
            self._log(f"Backup cycle complete ({self.cycle_record.status})")

        except Exception as e:
            self.cycle_record.status = 'failed'
            self.cycle_record.completed_at = utc_now()
            self.cycle_record.error_message = str(e)
            self.errors.append(str(e))
            self._log(f"Backup cycle failed during {self.phase}: {e}")
            logger.exception("Backup cycle failed")
            safe_capture(self.error_reporter, e, phase=self.phase)

        finally:
            self.cycle_record.error_count = len(self.errors)
            if self.errors and not self.cycle_record.error_message:
                self.cycle_record.error_message = self.errors[0]
            self.cycle_record.logs = '\n'.join(self.logs)
            db.session.commit()

        return self.cycle_record

    def _execute_workflow(self):
        """Execute the cycle phases in order."""
        now = self.now_fn()

        self.phase = 'inventory'
        if self.storage is None:
            self.storage = create_storage(self.settings)
        existing = list_backups(self.storage)
        self._log(f"Found {len(existing)} existing backups")

        self.phase = 'daily'
        daily_key = self._daily_backup(existing, now)
        if daily_key:
            self.cycle_record.daily_key = daily_key
        self._flush_logs_to_db()

        self.phase = 'fill'
        existing = list_backups(self.storage)
        reconciler = Reconciler(self.storage, log=self._log)
        fill_summary = reconciler.fill(existing, ideal_slots(now, self.settings.retention))
        self.cycle_record.filled_count = len(fill_summary['filled'])
        self.errors.extend(fill_summary['errors'])
        self._flush_logs_to_db()

        self.phase = 'prune'
        existing = list_backups(self.storage)
        retention_manager = RetentionManager(self.storage, self.settings.retention, log=self._log)
        prune_summary = retention_manager.prune(existing)
        self.cycle_record.pruned_count = len(prune_summary['deleted'])
        self.errors.extend(prune_summary['errors'])

    def _daily_backup(self, existing, now: datetime) -> Optional[str]:
        """
        Create today's daily backup unless one already exists.

        A snapshot or upload failure ends this step only; filling and pruning
        still run against the existing backups.

        Returns:
            Key of the new daily backup, or None
        """
        existing_daily = find_backup(existing, Tier.DAILY, now.date())
        if existing_daily:
            self._log(f"Daily backup for {now.date().isoformat()} already exists: {existing_daily.key}")
            return None

        temp_dir = self.settings.temp_dir
        filename = daily_backup_filename(now, self.settings.prefix, self.settings.extension)
        key = daily_backup_key(now, self.settings.prefix, self.settings.extension)

        try:
            if temp_dir:
                os.makedirs(temp_dir, exist_ok=True)

            with tempfile.TemporaryDirectory(prefix='dbkeeper-backup', dir=temp_dir) as backup_dir:
                self._log(f"Creating snapshot of {len(self.settings.databases)} database(s)")
                archive_path = self.snapshot_fn(
                    list(self.settings.databases),
                    os.path.join(backup_dir, filename),
                    self.settings.archive_format,
                    temp_dir
                )
                file_size = get_archive_size(archive_path)
                self._log(f"Archive created: {filename} ({file_size / 1024 / 1024:.2f} MB)")

                self._log(f"Storing {key}")
                self.storage.upload(archive_path, key)
                self._log(f"Storing complete for {key}")
                return key

        # OSError covers an unusable staging directory
        except (SnapshotError, CompressionError, StorageError, OSError) as e:
            error_msg = f"Daily backup failed: {e}"
            self._log(error_msg)
            self.errors.append(error_msg)
            safe_capture(self.error_reporter, e, phase='daily')
            return None

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = utc_now().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)

        # Flush logs every 5 entries
        self._log_flush_counter += 1
        if self._log_flush_counter >= 5:
            self._flush_logs_to_db()

    def _flush_logs_to_db(self):
        """Flush accumulated logs to database for real-time visibility."""
        if self.cycle_record:
            self.cycle_record.logs = '\n'.join(self.logs)
            db.session.commit()
            self._log_flush_counter = 0


def get_error_reporter(app=None) -> ErrorReporter:
    """Error reporter registered on the app, or a logging one."""
    app = app or current_app
    return app.extensions.get('error_reporter') or LoggingErrorReporter()


def execute_backup_cycle(trigger: str = 'scheduled', storage=None, now_fn: Callable[[], datetime] = utc_now) -> Optional[BackupCycle]:
    """
    Execute one backup cycle with the current app's configuration.

    Must run inside an app context.

    Args:
        trigger: What started the cycle ('scheduled' or 'manual')
        storage: Storage client override (None to build from config)
        now_fn: Clock override

    Returns:
        BackupCycle record, or None if the configuration is invalid
    """
    reporter = get_error_reporter()

    try:
        settings = BackupSettings.from_config(current_app.config)
    except ValueError as e:
        logger.error(f"Invalid backup configuration: {e}")
        safe_capture(reporter, e, phase='config')
        return None

    executor = BackupCycleExecutor(
        settings,
        storage=storage,
        trigger=trigger,
        now_fn=now_fn,
        error_reporter=reporter
    )
    return executor.execute()
