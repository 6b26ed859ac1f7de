"""
Consistent point-in-time snapshots of SQLite databases.

Each database is copied page by page with SQLite's online backup API into an
isolated temporary working directory, which is then compressed into a single
archive. The working directory is always removed, whether the snapshot
succeeds or not.
"""

import os
import sqlite3
import tempfile
import time
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .compression import create_archive, strip_archive_extension, CompressionError


logger = logging.getLogger(__name__)

# Pages copied per backup step; progress is reported between steps
PAGES_PER_STEP = 100
PROGRESS_INTERVAL_SECONDS = 1.0


class SnapshotError(Exception):
    """Raised when a database snapshot fails."""
    pass


@dataclass(frozen=True)
class ProgressReport:
    dbname: str
    total_pages: int
    remaining_pages: int

    @property
    def percent_complete(self) -> float:
        if self.total_pages == 0:
            return 100.0
        return 100.0 * (self.total_pages - self.remaining_pages) / self.total_pages


class ProgressAction(str, Enum):
    EMPTY = 'empty'
    EMIT = 'emit'
    SUPPRESS = 'suppress'


def throttle_progress(
    now: float,
    last_report_time: float,
    report: ProgressReport,
    interval: float = PROGRESS_INTERVAL_SECONDS
) -> Tuple[ProgressAction, float]:
    """
    Decide whether a progress report should be emitted.

    Args:
        now: Current time in seconds
        last_report_time: Time of the last emitted report
        report: Progress payload
        interval: Minimum seconds between emitted reports

    Returns:
        (action, updated last report time)
    """
    if report.total_pages == 0:
        return ProgressAction.EMPTY, last_report_time
    if now >= last_report_time + interval:
        return ProgressAction.EMIT, now
    return ProgressAction.SUPPRESS, last_report_time


class ProgressTracker:
    """
    Logs snapshot progress at most once per interval.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, interval: float = PROGRESS_INTERVAL_SECONDS):
        self.clock = clock
        self.interval = interval
        self.last_report_time = clock()

    def __call__(self, report: ProgressReport) -> ProgressAction:
        action, self.last_report_time = throttle_progress(
            self.clock(), self.last_report_time, report, self.interval
        )
        if action == ProgressAction.EMPTY:
            logger.warning(f"{report.dbname} empty")
        elif action == ProgressAction.EMIT:
            logger.info(f"{report.dbname} backup {report.percent_complete:.2f}% complete")
        return action


class SQLiteSource:
    """
    Handler for a SQLite database file.

    Copies the database into a working directory using the online backup API,
    so concurrent writers never produce a torn copy.
    """

    def __init__(self, path: str, pages_per_step: int = PAGES_PER_STEP):
        """
        Args:
            path: Path to the SQLite database file
            pages_per_step: Pages copied between progress callbacks
        """
        self.path = path
        self.pages_per_step = pages_per_step

    @property
    def dbname(self) -> str:
        return self.path

    def acquire(self, dest_dir: str, progress: Optional[Callable[[ProgressReport], object]] = None) -> str:
        """
        Copy the database into ``dest_dir``.

        Args:
            dest_dir: Working directory to copy into
            progress: Optional callback receiving ProgressReport instances

        Returns:
            Path of the copy

        Raises:
            SnapshotError: If the database is missing or the copy fails
        """
        source_path = Path(self.path).expanduser()
        if not source_path.is_file():
            raise SnapshotError(f"Database does not exist: {self.path}")

        target = Path(dest_dir) / source_path.name
        if target.exists():
            raise SnapshotError(f"Duplicate database file name in snapshot: {source_path.name}")

        logger.info(f"Backing up {self.dbname} db to {target}")

        def on_progress(status, remaining, total):
            if progress is not None:
                progress(ProgressReport(dbname=self.dbname, total_pages=total, remaining_pages=remaining))

        source_uri = f"{source_path.resolve().as_uri()}?mode=ro"
        try:
            source = sqlite3.connect(source_uri, uri=True)
            try:
                dest = sqlite3.connect(str(target))
                try:
                    source.backup(dest, pages=self.pages_per_step, progress=on_progress)
                finally:
                    dest.close()
            finally:
                source.close()
        except sqlite3.Error as e:
            raise SnapshotError(f"Failed to back up {self.dbname}: {e}")

        logger.info(f"{self.dbname} backup complete")
        return str(target)


def create_snapshot_archive(
    database_paths: List[str],
    dest_file: str,
    compression_format: str = 'tar.zst',
    temp_dir: Optional[str] = None,
    progress_factory: Callable[[], Callable[[ProgressReport], object]] = ProgressTracker
) -> str:
    """
    Snapshot every database and compress the copies into ``dest_file``.

    Args:
        database_paths: SQLite database files to back up
        dest_file: Archive path, including its extension
        compression_format: Archive format matching dest_file's extension
        temp_dir: Parent directory for the working directory (None for system default)
        progress_factory: Creates one progress callback per database

    Returns:
        Path to the created archive

    Raises:
        SnapshotError: If no database is configured or a copy fails
        CompressionError: If archive creation fails
    """
    if not database_paths:
        raise SnapshotError("No databases configured for backup")

    try:
        if temp_dir:
            os.makedirs(temp_dir, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix='dbkeeper-backup-work', dir=temp_dir) as work_dir:
            copies = []
            for path in database_paths:
                source = SQLiteSource(path)
                copies.append(source.acquire(work_dir, progress_factory()))

            logger.info(f"Compressing backup to {dest_file}")
            archive_path = create_archive(copies, strip_archive_extension(dest_file), compression_format)
    except OSError as e:
        raise SnapshotError(f"Snapshot working directory unusable: {e}")

    if archive_path != dest_file:
        raise CompressionError(f"Archive written to {archive_path}, expected {dest_file}")

    return archive_path
