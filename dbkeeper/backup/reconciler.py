"""
Fills missing weekly, monthly and yearly backups from existing daily backups.

A missing slot is filled by copying the best fitting daily backup: the one
with the earliest target date inside the slot's period. The copy keeps the
daily backup's prefix, timestamp and extension, so the timestamp of a filled
backup always shows when its snapshot was actually taken.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Any

from .naming import BackupRecord, Tier, format_key
from .planner import IdealSlot
from .storage import StorageError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FillPlan:
    """Copy of an existing daily backup into a missing slot."""

    source_key: str
    dest_key: str
    slot: IdealSlot
    donor: BackupRecord


def find_gaps(existing: Iterable[BackupRecord], slots: Iterable[IdealSlot]) -> List[IdealSlot]:
    """Return the slots with no existing backup of the same tier and target date."""
    present = {(record.tier, record.target_date) for record in existing}
    return [slot for slot in slots if (slot.tier, slot.target_date) not in present]


def choose_donor(slot: IdealSlot, daily_backups: Iterable[BackupRecord]) -> Optional[BackupRecord]:
    """
    Pick the daily backup that best fits ``slot``.

    Candidates are daily backups whose target date falls within
    ``[slot.target_date, slot.valid_until)``. The earliest target date wins;
    remaining ties go to the earliest timestamp, then the key.

    Returns:
        The chosen daily backup, or None if no daily backup qualifies
    """
    candidates = [
        record for record in daily_backups
        if record.tier == Tier.DAILY and slot.target_date <= record.target_date < slot.valid_until
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda r: (r.target_date, r.timestamp, r.key))


def plan_fills(existing: Iterable[BackupRecord], slots: Iterable[IdealSlot]) -> List[FillPlan]:
    """
    Pair every fillable gap with its donor daily backup.

    Gaps without a qualifying donor are left out; they are retried on the next
    cycle.
    """
    existing = list(existing)
    daily_backups = [record for record in existing if record.tier == Tier.DAILY]

    plans = []
    for gap in find_gaps(existing, slots):
        donor = choose_donor(gap, daily_backups)
        if donor is None:
            continue

        dest_key = format_key(gap.tier, donor.prefix, gap.target_date, donor.timestamp, donor.extension)
        plans.append(FillPlan(source_key=donor.key, dest_key=dest_key, slot=gap, donor=donor))
    return plans


class Reconciler:
    """
    Executes fill plans against storage.
    """

    def __init__(self, storage, log: Optional[Callable[[str], None]] = None):
        """
        Args:
            storage: Storage client exposing copy_object()
            log: Optional callback receiving progress messages
        """
        self.storage = storage
        self._log = log or logger.info

    def fill(self, existing: Iterable[BackupRecord], slots: Iterable[IdealSlot]) -> Dict[str, Any]:
        """
        Copy donors into every fillable gap.

        A failed copy is logged and does not stop the remaining ones.

        Returns:
            Dict with summary: {'filled': List[str], 'errors': List[str]}
        """
        plans = plan_fills(existing, slots)
        summary = {
            'filled': [],
            'errors': []
        }

        if not plans:
            self._log("No missing backups to fill")
            return summary

        for plan in plans:
            self._log(f"Filling {plan.dest_key} from {plan.source_key}")
            try:
                self.storage.copy_object(plan.source_key, plan.dest_key)
                summary['filled'].append(plan.dest_key)
            except StorageError as e:
                error_msg = f"Failed to fill {plan.dest_key}: {e}"
                self._log(error_msg)
                summary['errors'].append(error_msg)

        self._log(
            f"Filling complete. "
            f"Filled: {len(summary['filled'])}, "
            f"Errors: {len(summary['errors'])}"
        )
        return summary
