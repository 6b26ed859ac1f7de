"""
Ideal backup slots implied by the retention policy.

For each tier the planner walks backward from an anchor date one period at a
time, producing ``policy[tier]`` consecutive half-open periods ending at the
current date:

- daily: today, step 1 day
- weekly: Monday on or before today, step 1 week
- monthly: first of the month, step 1 month
- yearly: January 1st, step 1 year
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Tuple, Union

from dateutil.relativedelta import relativedelta

from .naming import Tier, TIERS
from .retention import RetentionPolicy


@dataclass(frozen=True)
class IdealSlot:
    """A tier/date combination the retention policy requires to exist."""

    tier: Tier
    target_date: date
    # Exclusive upper bound: start of the next period
    valid_until: date


def _start_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _start_of_month(day: date) -> date:
    return day.replace(day=1)


def _start_of_year(day: date) -> date:
    return day.replace(month=1, day=1)


PERIODS: Dict[Tier, Tuple[Callable[[date], date], relativedelta]] = {
    Tier.DAILY: (lambda day: day, relativedelta(days=1)),
    Tier.WEEKLY: (_start_of_week, relativedelta(weeks=1)),
    Tier.MONTHLY: (_start_of_month, relativedelta(months=1)),
    Tier.YEARLY: (_start_of_year, relativedelta(years=1)),
}


def slots_for_tier(tier: Tier, today: date, count: int) -> List[IdealSlot]:
    """
    Compute ``count`` ideal slots for one tier, newest first.

    Args:
        tier: Retention tier
        today: Current date
        count: Number of periods to keep

    Returns:
        Slots in strictly decreasing target date order
    """
    start_fn, step = PERIODS[tier]
    anchor = start_fn(today)

    slots = []
    for i in range(count):
        target_date = anchor - step * i
        slots.append(IdealSlot(tier=tier, target_date=target_date, valid_until=target_date + step))
    return slots


def ideal_slots(now: Union[date, datetime], policy: RetentionPolicy) -> List[IdealSlot]:
    """
    Compute every slot the retention policy requires for ``now``.

    Args:
        now: Current date or datetime
        policy: Retention counts per tier

    Returns:
        Slots for all tiers, daily first
    """
    today = now.date() if isinstance(now, datetime) else now

    slots = []
    for tier in TIERS:
        slots.extend(slots_for_tier(tier, today, policy.count_for(tier)))
    return slots
