"""
synergy.services.analytics_service — Read Models for Listings & Stats
======================================================================

Query-only helpers behind ``/events``, ``/my-registrations`` and the
admin ``/event-stats`` command.  Nothing here writes.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Engine, func, select

from synergy.database.engine import get_session
from synergy.database.models import Event, Registration, RegistrationStatus, User
from synergy.engine.lifecycle import ensure_utc, free_slots, phase_of, utcnow
from synergy.engine.outcomes import EventSnapshot
from synergy.services.event_store import available_keys, get_event
from synergy.services.registration_store import count_by_status, list_user_registrations

logger = logging.getLogger(__name__)


def list_upcoming_events(
    engine: Engine, guild_id: int, *, now: datetime | None = None
) -> list[EventSnapshot]:
    """Active events of *guild_id* that have not ended, soonest first."""
    now = ensure_utc(now or utcnow())
    with get_session(engine) as session:
        events = session.scalars(
            select(Event)
            .where(Event.guild_id == guild_id, Event.active.is_(True))
            .order_by(Event.start_date, Event.id)
        ).all()
        return [
            EventSnapshot.from_event(event)
            for event in events
            if ensure_utc(event.end_date) > now
        ]


def user_registrations(engine: Engine, user_id: int) -> list[dict]:
    """The user's confirmed and waitlisted registrations with event info."""
    with get_session(engine) as session:
        rows = []
        for registration in list_user_registrations(session, user_id):
            event = registration.event
            rows.append({
                "event_id": event.id,
                "title": event.title,
                "start_date": event.start_date,
                "status": RegistrationStatus(registration.status),
                "waitlist_position": registration.waitlist_position,
            })
        rows.sort(key=lambda row: ensure_utc(row["start_date"]))
        return rows


def event_stats(engine: Engine, event_id: int, *, now: datetime | None = None) -> dict:
    """Per-event breakdown for admins.

    ``fill_rate`` is confirmed / capacity (``None`` for unlimited events).
    Once an event closes its confirmed registrations count as completed.
    """
    now = now or utcnow()
    with get_session(engine) as session:
        event = get_event(session, event_id)
        counts = count_by_status(session, event_id)
        keys_total = len(event.access_keys)

        participants = counts[RegistrationStatus.CONFIRMED] + counts[RegistrationStatus.COMPLETED]
        return {
            "event_id": event.id,
            "title": event.title,
            "phase": phase_of(event, now).value,
            "capacity": event.capacity,
            "confirmed": counts[RegistrationStatus.CONFIRMED],
            "waitlist": counts[RegistrationStatus.WAITLIST],
            "cancelled": counts[RegistrationStatus.CANCELLED],
            "completed": counts[RegistrationStatus.COMPLETED],
            "keys_total": keys_total,
            "keys_issued": keys_total - len(available_keys(event)),
            "free_slots": free_slots(event),
            "fill_rate": participants / event.capacity if event.capacity else None,
        }


def community_summary(engine: Engine, guild_id: int, *, top: int = 5) -> dict:
    """Guild-wide totals plus the most active participants."""
    with get_session(engine) as session:
        events_total = session.scalar(
            select(func.count()).select_from(Event).where(Event.guild_id == guild_id)
        ) or 0
        events_active = session.scalar(
            select(func.count())
            .select_from(Event)
            .where(Event.guild_id == guild_id, Event.active.is_(True))
        ) or 0

        status_rows = session.execute(
            select(Registration.status, func.count().label("cnt"))
            .join(Event, Event.id == Registration.event_id)
            .where(Event.guild_id == guild_id)
            .group_by(Registration.status)
        ).all()
        by_status = {status.value: 0 for status in RegistrationStatus}
        for row in status_rows:
            by_status[row.status] = row.cnt

        participants = session.scalar(
            select(func.count(func.distinct(Registration.user_id)))
            .join(Event, Event.id == Registration.event_id)
            .where(Event.guild_id == guild_id)
        ) or 0

        top_rows = session.execute(
            select(User.id, User.username, func.count().label("completed"))
            .join(Registration, Registration.user_id == User.id)
            .join(Event, Event.id == Registration.event_id)
            .where(
                Event.guild_id == guild_id,
                Registration.status == RegistrationStatus.COMPLETED.value,
            )
            .group_by(User.id, User.username)
            .order_by(func.count().desc(), User.id)
            .limit(top)
        ).all()

    return {
        "events_total": events_total,
        "events_active": events_active,
        "registrations": by_status,
        "participants": participants,
        "top_participants": [
            {"user_id": row.id, "username": row.username, "completed": row.completed}
            for row in top_rows
        ],
    }
