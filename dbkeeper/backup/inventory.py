"""
Inventory of backups already present in storage.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

from .naming import BackupRecord, Tier, TIERS, parse_key


logger = logging.getLogger(__name__)


def parse_inventory(keys: Iterable[str]) -> List[BackupRecord]:
    """
    Parse object keys into backup records.

    Keys that do not follow the naming scheme are skipped, so unrelated objects
    can share the bucket.
    """
    records = []
    for key in keys:
        record = parse_key(key)
        if record is None:
            logger.debug(f"Ignoring object not matching backup naming scheme: {key}")
            continue
        records.append(record)
    return records


def list_backups(storage, prefix: str = '') -> List[BackupRecord]:
    """
    List all backups in storage.

    Args:
        storage: Storage client exposing list_objects()
        prefix: Optional key prefix to restrict the listing

    Returns:
        Parsed backup records

    Raises:
        StorageError: If listing fails
    """
    objects = storage.list_objects(prefix)
    return parse_inventory(obj['Key'] for obj in objects)


def find_backup(records: Iterable[BackupRecord], tier: Tier, target_date: date) -> Optional[BackupRecord]:
    """Return the first record for ``tier`` and ``target_date``, if any."""
    for record in records:
        if record.tier == tier and record.target_date == target_date:
            return record
    return None


def group_by_tier(records: Iterable[BackupRecord]) -> Dict[Tier, List[BackupRecord]]:
    """Group records by tier, each group sorted oldest target date first."""
    groups = {tier: [] for tier in TIERS}
    for record in records:
        groups[record.tier].append(record)
    for tier_records in groups.values():
        tier_records.sort(key=lambda r: (r.target_date, r.timestamp, r.key))
    return groups
