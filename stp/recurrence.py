"""
Recurrence scheduling.

Periods are calendar based: adding a month keeps the day of month and
clamps to the last day when the target month is shorter (Jan 31 becomes
Feb 28/29). Annual is twelve months.
"""

import calendar
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional, Tuple

from . import config
from .token import PERIODS, Recurrence, TransactionRecord
from .util import parse_rfc3339, utc_rfc3339

PERIOD_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "annual": 12,
}


def add_months(moment: datetime, months: int) -> datetime:
    """Shift ``moment`` by whole calendar months, clamping the day."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def apply_period(moment: datetime, period: str) -> datetime:
    if period not in PERIOD_MONTHS:
        raise ValueError(f"unknown recurrence period: {period!r}")
    return add_months(moment, PERIOD_MONTHS[period])


def advance_timestamp(timestamp: str, period: str) -> str:
    """One period after an RFC3339 timestamp, as an RFC3339 timestamp."""
    return utc_rfc3339(apply_period(parse_rfc3339(timestamp), period))


class RecurrenceScheduler:
    """Computes initial schedules and per-cycle advances of transactions."""

    def __init__(self, validity_days: int = None):
        self.validity_days = config.TOKEN_VALIDITY_DAYS if validity_days is None else validity_days

    def initial(self, created_at: datetime, period: Optional[str]) -> Tuple[str, Optional[Recurrence]]:
        """
        Expiry and recurrence of a freshly drafted transaction.

        The first occurrence is one period after ``created_at`` and the
        cycle index starts at 0.
        """
        expiry = utc_rfc3339(created_at + timedelta(days=self.validity_days))
        if period is None:
            return expiry, None
        if period not in PERIODS:
            raise ValueError(f"unknown recurrence period: {period!r}")
        return expiry, Recurrence(
            period=period,
            next_occurrence=utc_rfc3339(apply_period(created_at, period)),
            cycle_index=0,
        )

    def advance(self, transaction: TransactionRecord) -> TransactionRecord:
        """
        The same transaction one cycle later.

        ``expiry`` and ``next_occurrence`` move forward by one period and
        ``cycle_index`` grows by exactly one. Nothing else changes.
        """
        recurring = transaction.recurring
        if recurring is None:
            raise ValueError(f"transaction {transaction.id} is not recurring")
        return replace(
            transaction,
            expiry=advance_timestamp(transaction.expiry, recurring.period),
            recurring=Recurrence(
                period=recurring.period,
                next_occurrence=advance_timestamp(recurring.next_occurrence, recurring.period),
                cycle_index=recurring.cycle_index + 1,
            ),
        )
