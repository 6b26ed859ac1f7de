"""
Backup module for dbkeeper.

This module handles the core backup functionality including:
- Backup key naming and parsing
- Inventory of existing backups
- Database snapshots and compression
- Storage (S3 and local)
- Retention planning, gap filling and pruning

The cycle executor lives in ``dbkeeper.backup.executor``; it is not
re-exported here because it depends on the Flask app.
"""

from .naming import BackupRecord, Tier, format_key, parse_key, daily_backup_filename
from .inventory import list_backups
from .storage import S3Storage, LocalStorage, StorageError
from .compression import create_archive, CompressionError
from .snapshot import create_snapshot_archive, SnapshotError
from .retention import RetentionPolicy, RetentionManager, prunable_backups
from .planner import IdealSlot, ideal_slots
from .reconciler import FillPlan, Reconciler, plan_fills

__all__ = [
    'BackupRecord',
    'Tier',
    'format_key',
    'parse_key',
    'daily_backup_filename',
    'list_backups',
    'S3Storage',
    'LocalStorage',
    'StorageError',
    'create_archive',
    'CompressionError',
    'create_snapshot_archive',
    'SnapshotError',
    'RetentionPolicy',
    'RetentionManager',
    'prunable_backups',
    'IdealSlot',
    'ideal_slots',
    'FillPlan',
    'Reconciler',
    'plan_fills'
]
