"""
Retention policy enforcement for backups.

Each tier keeps at most ``policy[tier]`` backups; the newest (by snapshot
timestamp) are kept and the rest are deleted. Tiers are enforced
independently of each other.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Any

from .naming import BackupRecord, Tier, TIERS
from .storage import StorageError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionPolicy:
    """Maximum number of backups kept per tier."""

    daily: int = 7
    weekly: int = 4
    monthly: int = 12
    yearly: int = 2

    def __post_init__(self):
        for tier in TIERS:
            count = getattr(self, tier.value)
            if not isinstance(count, int) or count < 0:
                raise ValueError(f"Retention count for {tier.value} must be a non-negative integer, got {count!r}")

    def count_for(self, tier: Tier) -> int:
        return getattr(self, Tier(tier).value)

    def as_dict(self) -> Dict[str, int]:
        return {tier.value: self.count_for(tier) for tier in TIERS}


def _newest_first(record: BackupRecord):
    return (record.timestamp, record.target_date, record.key)


def prunable_backups(existing: Iterable[BackupRecord], policy: RetentionPolicy) -> List[BackupRecord]:
    """
    Select backups beyond the retention count of their tier.

    Args:
        existing: Current inventory
        policy: Retention counts per tier

    Returns:
        Records to delete, grouped by tier, newest first within a tier
    """
    by_tier = {tier: [] for tier in TIERS}
    for record in existing:
        by_tier[record.tier].append(record)

    prunable = []
    for tier in TIERS:
        records = sorted(by_tier[tier], key=_newest_first, reverse=True)
        prunable.extend(records[policy.count_for(tier):])
    return prunable


class RetentionManager:
    """
    Deletes backups that fall outside the retention policy.
    """

    def __init__(self, storage, policy: RetentionPolicy, log: Optional[Callable[[str], None]] = None):
        """
        Initialize retention manager.

        Args:
            storage: Storage client exposing delete()
            policy: Retention counts per tier
            log: Optional callback receiving progress messages
        """
        self.storage = storage
        self.policy = policy
        self.logs = []
        self._external_log = log

    def prune(self, existing: Iterable[BackupRecord]) -> Dict[str, Any]:
        """
        Delete every backup beyond its tier's retention count.

        A failed deletion is logged and does not stop the remaining ones.

        Args:
            existing: Current inventory

        Returns:
            Dict with summary of cleanup operations:
            {
                'deleted': List[str],
                'errors': List[str]
            }
        """
        targets = prunable_backups(existing, self.policy)
        summary = {
            'deleted': [],
            'errors': []
        }

        if not targets:
            self._log("Nothing to prune")
            return summary

        for record in targets:
            self._log(f"Pruning {record.key}")
            try:
                self.storage.delete(record.key)
                summary['deleted'].append(record.key)
            except StorageError as e:
                error_msg = f"Failed to prune {record.key}: {e}"
                self._log(error_msg)
                summary['errors'].append(error_msg)

        self._log(
            f"Pruning complete. "
            f"Deleted: {len(summary['deleted'])}, "
            f"Errors: {len(summary['errors'])}"
        )
        return summary

    def _log(self, message: str):
        if self._external_log is not None:
            self._external_log(message)
            return

        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)
