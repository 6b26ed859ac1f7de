"""
Backup object key naming scheme.

Keys look like:

    <tier>/<prefix><target-date>@<timestamp><extension>

For example ``daily/db-2024-09-14@2024-09-14T20:36:55.tar.zst``.

- ``tier`` is one of ``daily``, ``weekly``, ``monthly``, ``yearly``
- ``target-date`` (``YYYY-MM-DD``) is the logical date the backup stands for
- ``timestamp`` (``YYYY-MM-DDTHH:MM:SS``) is when the snapshot was actually taken
- ``extension`` is a literal suffix such as ``.tar.zst``

Higher tier backups are copies of daily backups, so a yearly backup for 2024
taken from the September 15th daily keeps the daily's timestamp:
``yearly/db-2024-01-01@2024-09-15T13:14:52.tar.zst``.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional


DATE_FORMAT = '%Y-%m-%d'
TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S'


# Years are always four digits
def _format_date(day: date) -> str:
    return day.isoformat()


def _format_timestamp(moment: datetime) -> str:
    return moment.replace(tzinfo=None).isoformat(timespec='seconds')


class Tier(str, Enum):
    """Backup retention tier."""

    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    YEARLY = 'yearly'


TIERS = (Tier.DAILY, Tier.WEEKLY, Tier.MONTHLY, Tier.YEARLY)

_KEY_PATTERN = re.compile(
    r"""
    (daily|weekly|monthly|yearly)       # tier
    /
    (.*)                                # prefix
    (\d{4}-\d{2}-\d{2})                 # target date
    @
    (\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d)    # timestamp
    (.*)                                # extension
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class BackupRecord:
    """A backup artifact already stored remotely."""

    key: str
    tier: Tier
    prefix: str
    target_date: date
    timestamp: datetime
    extension: str


def format_key(tier: Tier, prefix: str, target_date: date, timestamp: datetime, extension: str) -> str:
    """
    Build a backup object key.

    Args:
        tier: Retention tier
        prefix: Literal name prefix (e.g. 'db-')
        target_date: Logical backup date
        timestamp: When the snapshot was taken
        extension: Literal suffix (e.g. '.tar.zst')

    Returns:
        Object key string
    """
    return (
        f"{Tier(tier).value}/{prefix}"
        f"{_format_date(target_date)}@{_format_timestamp(timestamp)}"
        f"{extension}"
    )


def format_record_key(record: BackupRecord) -> str:
    """Rebuild the object key from a record's fields."""
    return format_key(record.tier, record.prefix, record.target_date, record.timestamp, record.extension)


def daily_backup_filename(moment: datetime, prefix: str, extension: str) -> str:
    """
    Generate the file name of a daily backup taken at ``moment``.

    Both the target date and the timestamp come from ``moment``, so the name
    says which day the backup is for and when it actually ran.

    Args:
        moment: Point in time of the snapshot
        prefix: Literal name prefix
        extension: Literal suffix

    Returns:
        File name without tier (e.g. 'db-2024-09-14@2024-09-14T20:36:55.tar.zst')
    """
    moment = moment.replace(microsecond=0)
    return (
        f"{prefix}{_format_date(moment.date())}"
        f"@{_format_timestamp(moment)}{extension}"
    )


def daily_backup_key(moment: datetime, prefix: str, extension: str) -> str:
    """Object key for a daily backup taken at ``moment``."""
    return f"{Tier.DAILY.value}/{daily_backup_filename(moment, prefix, extension)}"


def parse_key(key: str) -> Optional[BackupRecord]:
    """
    Parse an object key into a BackupRecord.

    Args:
        key: Object key

    Returns:
        BackupRecord, or None if the key does not follow the naming scheme
    """
    match = _KEY_PATTERN.fullmatch(key)
    if not match:
        return None

    tier, prefix, target_date, timestamp, extension = match.groups()

    # The pattern accepts impossible dates like 2024-13-45
    try:
        parsed_date = datetime.strptime(target_date, DATE_FORMAT).date()
        parsed_timestamp = datetime.strptime(timestamp, TIMESTAMP_FORMAT)
    except ValueError:
        return None

    return BackupRecord(
        key=key,
        tier=Tier(tier),
        prefix=prefix,
        target_date=parsed_date,
        timestamp=parsed_timestamp,
        extension=extension,
    )
