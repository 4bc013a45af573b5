"""
Pure recurrence functions.

Contract:
    ``monthly_from(clock)`` and ``recurrence_from(clock, cadence)`` read the
    clock exactly once and return a ``Recurrence``: an infinite, lazily
    produced, restartable sequence of trigger instants.  Iterating the same
    Recurrence twice yields identical instants.

Architecture: billing_batch/domain.  ZERO I/O besides the single clock read.

Invariants enforced:
    - Instants are strictly increasing.
    - Steps are calendar-aware (months have their real length, leap years
      included), never fixed 30-day deltas.
    - The time zone of the clock value is preserved, including naive values.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta

from billing_kernel.domain.clock import Clock
from billing_kernel.exceptions import InvalidCadenceError

from billing_batch.domain.types import Cadence


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def add_months(moment: datetime, months: int) -> datetime:
    """Advance by calendar months, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def first_instant(now: datetime, cadence: Cadence) -> datetime:
    """First trigger strictly after the start of ``now``'s current period."""
    if cadence == Cadence.MONTHLY:
        return add_months(start_of_day(now).replace(day=1), 1)
    if cadence == Cadence.WEEKLY:
        # Next Monday; a Monday moves a full week ahead
        return start_of_day(now) + timedelta(days=7 - now.weekday())
    if cadence == Cadence.DAILY:
        return start_of_day(now) + timedelta(days=1)
    raise InvalidCadenceError(str(cadence))


def next_instant(previous: datetime, cadence: Cadence) -> datetime:
    if cadence == Cadence.MONTHLY:
        return add_months(previous, 1)
    if cadence == Cadence.WEEKLY:
        return previous + timedelta(days=7)
    if cadence == Cadence.DAILY:
        return previous + timedelta(days=1)
    raise InvalidCadenceError(str(cadence))


@dataclass(frozen=True)
class Recurrence:
    """Restartable infinite sequence of trigger instants."""

    first: datetime
    cadence: Cadence

    def __iter__(self) -> Iterator[datetime]:
        current = self.first
        while True:
            yield current
            current = next_instant(current, self.cadence)

    def take(self, n: int) -> list[datetime]:
        """The first ``n`` instants."""
        result: list[datetime] = []
        for instant in self:
            if len(result) >= n:
                break
            result.append(instant)
        return result


def parse_cadence(value: Cadence | str) -> Cadence:
    if isinstance(value, Cadence):
        return value
    try:
        return Cadence(value.strip().lower())
    except (ValueError, AttributeError):
        raise InvalidCadenceError(str(value)) from None


def recurrence_from(clock: Clock, cadence: Cadence | str = Cadence.MONTHLY) -> Recurrence:
    """Recurrence for ``cadence`` derived from the clock's current value."""
    rule = parse_cadence(cadence)
    return Recurrence(first=first_instant(clock.now(), rule), cadence=rule)


def monthly_from(clock: Clock) -> Recurrence:
    """Start of the 1st of next month, then every calendar month after."""
    return recurrence_from(clock, Cadence.MONTHLY)
