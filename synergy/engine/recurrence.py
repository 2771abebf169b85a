"""
synergy.engine.recurrence — Recurring Event Rules
==================================================

Pure date arithmetic for events that repeat.  When the closure sweep ends a
recurring event it asks :func:`next_occurrence` for the following slot and
creates a fresh event there, carrying the rule forward.

A rule stops producing occurrences when either limit is hit:

* ``until``: no occurrence may *start* after this moment.
* ``remaining``: how many more occurrences may be created.  ``None`` means
  no limit.

Occurrences whose end already lies in the past (the bot was offline for a
while) are skipped; each skipped slot still counts against ``remaining``.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from synergy.database.models import RecurrenceFrequency
from synergy.engine.lifecycle import ensure_utc

if TYPE_CHECKING:
    from synergy.database.models import Event

# Guards against a rule that can never catch up with *now*.
MAX_SKIPPED_OCCURRENCES = 1000


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    frequency: RecurrenceFrequency
    interval: int = 1
    until: datetime | None = None
    remaining: int | None = None

    @classmethod
    def from_event(cls, event: Event) -> RecurrenceRule | None:
        """The rule stored on *event*, or ``None`` for a one-off event."""
        if not event.recurrence:
            return None
        return cls(
            frequency=RecurrenceFrequency(event.recurrence),
            interval=event.recurrence_interval,
            until=ensure_utc(event.recurrence_until) if event.recurrence_until else None,
            remaining=event.recurrence_remaining,
        )

    def describe(self) -> str:
        unit = {
            RecurrenceFrequency.DAILY: "day",
            RecurrenceFrequency.WEEKLY: "week",
            RecurrenceFrequency.MONTHLY: "month",
        }[self.frequency]
        text = f"every {unit}" if self.interval == 1 else f"every {self.interval} {unit}s"
        if self.until is not None:
            text += f" until {self.until:%Y-%m-%d}"
        if self.remaining is not None:
            text += f" ({self.remaining} more)"
        return text


@dataclass(frozen=True, slots=True)
class Occurrence:
    start_date: datetime
    end_date: datetime
    rule: RecurrenceRule
    skipped: int = 0


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day to the target month's end."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def shift(moment: datetime, frequency: RecurrenceFrequency, interval: int) -> datetime:
    if frequency is RecurrenceFrequency.DAILY:
        return moment + timedelta(days=interval)
    if frequency is RecurrenceFrequency.WEEKLY:
        return moment + timedelta(weeks=interval)
    return add_months(moment, interval)


def next_occurrence(
    rule: RecurrenceRule,
    start_date: datetime,
    end_date: datetime,
    now: datetime,
) -> Occurrence | None:
    """First occurrence after the one at *start_date* that has not ended by *now*.

    Returns ``None`` once the rule is exhausted.  The returned rule has
    ``remaining`` already decremented for the created occurrence.
    """
    start = ensure_utc(start_date)
    duration = ensure_utc(end_date) - start
    now = ensure_utc(now)
    remaining = rule.remaining
    base = start
    steps = 0

    for skipped in range(MAX_SKIPPED_OCCURRENCES):
        if remaining is not None and remaining <= 0:
            return None
        steps += 1
        candidate = shift(base, rule.frequency, rule.interval * steps)
        if rule.until is not None and candidate > rule.until:
            return None
        if remaining is not None:
            remaining -= 1
        if candidate + duration > now:
            return Occurrence(
                start_date=candidate,
                end_date=candidate + duration,
                rule=replace(rule, remaining=remaining),
                skipped=skipped,
            )
    return None
