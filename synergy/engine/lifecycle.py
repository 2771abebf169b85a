"""
synergy.engine.lifecycle — Event Lifecycle Rules
=================================================

Pure functions deciding which time-based transition an event is due for.
No database or Discord access happens here; the sweeps in
:mod:`synergy.services.lifecycle_service` load events, ask these rules,
and persist the outcome.

State machine per event::

    scheduled ──► reminder_sent ──► started ──► ended
        │              │               │
        └──────────────┴───────────────┴──► cancelled   (admin, terminal)

Every transition is gated by a flag on the event row (``reminder_sent``,
``notified_start``, ``active``), so evaluating the rules again after the
flag is set never yields the same transition twice.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from synergy.database.models import Event

DEFAULT_REMINDER_WINDOW = timedelta(minutes=60)


class EventPhase(enum.StrEnum):
    SCHEDULED = "scheduled"
    REMINDER_SENT = "reminder_sent"
    STARTED = "started"
    ENDED = "ended"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------
def has_capacity(event: Event) -> bool:
    """True if a confirmed slot is free (capacity 0 means unlimited)."""
    return event.capacity == 0 or event.registrations_count < event.capacity


def free_slots(event: Event) -> int | None:
    """Remaining confirmed slots, or ``None`` when unlimited."""
    if event.capacity == 0:
        return None
    return max(event.capacity - event.registrations_count, 0)


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------
def registration_open(event: Event, now: datetime) -> bool:
    """Registrations and waitlist changes are accepted until the event ends."""
    return event.active and ensure_utc(now) < ensure_utc(event.end_date)


def reminder_due(
    event: Event,
    now: datetime,
    window: timedelta = DEFAULT_REMINDER_WINDOW,
) -> bool:
    """The event starts within *window* and no reminder went out yet.

    An event that has already started is never reminded about.
    """
    if not event.active or event.reminder_sent:
        return False
    now = ensure_utc(now)
    start = ensure_utc(event.start_date)
    return now < start and start - now <= window


def start_due(event: Event, now: datetime) -> bool:
    return (
        event.active
        and not event.notified_start
        and ensure_utc(now) >= ensure_utc(event.start_date)
    )


def closure_due(event: Event, now: datetime) -> bool:
    return event.active and ensure_utc(now) >= ensure_utc(event.end_date)


def phase_of(event: Event, now: datetime) -> EventPhase:
    """Observable lifecycle phase of *event* at *now*."""
    if not event.active:
        return EventPhase.CANCELLED if event.cancelled_at is not None else EventPhase.ENDED
    now = ensure_utc(now)
    if now >= ensure_utc(event.end_date):
        return EventPhase.ENDED
    if event.notified_start or now >= ensure_utc(event.start_date):
        return EventPhase.STARTED
    if event.reminder_sent:
        return EventPhase.REMINDER_SENT
    return EventPhase.SCHEDULED


# ---------------------------------------------------------------------------
# Profile requirements
# ---------------------------------------------------------------------------
PROFILE_REQUIREMENTS = ("telegram", "twitter", "wallets")


def required_fields(event: Event) -> tuple[str, ...]:
    """Profile fields a member must fill in before registering."""
    return tuple(
        name for name in PROFILE_REQUIREMENTS if getattr(event, f"require_{name}")
    )
