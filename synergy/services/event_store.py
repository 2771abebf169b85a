"""
synergy.services.event_store — Event Records & Access-Key Pool
===============================================================

Session-level helpers for the ``events`` table and its ``access_keys``
pool.  The caller owns the transaction: nothing here commits.

Key allocation rules:
    * ``issue_key`` hands out the first available key in pool order, or the
      key the user already holds.  An empty pool returns ``None``: the
      registrant is told access will be granted on-site.
    * ``reclaim_key`` clears the holder in place, so the key becomes
      available again at its original position.

Both touch ``event.updated_at`` so the event row is part of the flush and
its ``version`` predicate guards the pool as well as the counters.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy.orm import Session

from synergy.database.models import AccessKey, Event
from synergy.engine.errors import EventNotFound, InvalidEvent
from synergy.engine.lifecycle import ensure_utc, utcnow
from synergy.engine.recurrence import RecurrenceRule

logger = logging.getLogger(__name__)


def create_event(
    session: Session,
    *,
    guild_id: int,
    title: str,
    start_date: datetime,
    end_date: datetime,
    created_by: int,
    capacity: int = 0,
    description: str = "",
    location: str = "Online",
    rewards: str | None = None,
    access_keys: Iterable[str] = (),
    require_telegram: bool = False,
    require_twitter: bool = False,
    require_wallets: bool = False,
    recurrence: RecurrenceRule | None = None,
    previous_event_id: int | None = None,
    template_id: int | None = None,
) -> Event:
    """Insert a new active event with its initial key pool."""
    if capacity < 0:
        raise InvalidEvent("Capacity cannot be negative.")
    if ensure_utc(end_date) <= ensure_utc(start_date):
        raise InvalidEvent("The event must end after it starts.")
    if recurrence is not None:
        if recurrence.interval < 1:
            raise InvalidEvent("The repeat interval must be at least 1.")
        if recurrence.remaining is not None and recurrence.remaining < 0:
            raise InvalidEvent("The number of occurrences must be at least 1.")
        if recurrence.until is not None and ensure_utc(recurrence.until) < ensure_utc(start_date):
            raise InvalidEvent("The repeat end date must not be before the first start.")

    event = Event(
        guild_id=guild_id,
        title=title,
        description=description,
        location=location,
        rewards=rewards,
        created_by=created_by,
        capacity=capacity,
        start_date=start_date,
        end_date=end_date,
        active=True,
        require_telegram=require_telegram,
        require_twitter=require_twitter,
        require_wallets=require_wallets,
        previous_event_id=previous_event_id,
        template_id=template_id,
    )
    if recurrence is not None:
        event.recurrence = recurrence.frequency.value
        event.recurrence_interval = recurrence.interval
        event.recurrence_until = recurrence.until
        event.recurrence_remaining = recurrence.remaining
    session.add(event)
    add_access_keys(event, access_keys)
    session.flush()
    logger.info(
        "Created event %d %r (capacity=%d, keys=%d, recurrence=%s)",
        event.id, title, capacity, len(event.access_keys), event.recurrence or "none",
    )
    return event


def get_event(session: Session, event_id: int) -> Event:
    """Load an event or raise :class:`EventNotFound`."""
    event = session.get(Event, event_id)
    if event is None:
        raise EventNotFound(event_id)
    return event


def save_event(session: Session, event: Event) -> None:
    """Flush *event* as one version-checked UPDATE.

    Raises :class:`sqlalchemy.orm.exc.StaleDataError` when another
    transaction committed a change to the row since it was read.
    """
    session.add(event)
    session.flush()


# ---------------------------------------------------------------------------
# Access-key pool
# ---------------------------------------------------------------------------
def add_access_keys(event: Event, keys: Iterable[str]) -> int:
    """Append *keys* to the end of the pool, skipping blanks and duplicates."""
    existing = {k.key for k in event.access_keys}
    next_pos = max((k.position for k in event.access_keys), default=0) + 1
    added = 0
    for raw in keys:
        key = raw.strip()
        if not key or key in existing:
            continue
        event.access_keys.append(AccessKey(key=key, position=next_pos))
        existing.add(key)
        next_pos += 1
        added += 1
    return added


def available_keys(event: Event) -> list[AccessKey]:
    return [k for k in event.access_keys if k.issued_to is None]


def held_key(event: Event, user_id: int) -> AccessKey | None:
    for entry in event.access_keys:
        if entry.issued_to == user_id:
            return entry
    return None


def issue_key(event: Event, user_id: int, now: datetime | None = None) -> str | None:
    """Issue the first available key to *user_id*; ``None`` if exhausted."""
    current = held_key(event, user_id)
    if current is not None:
        return current.key

    pool = available_keys(event)
    if pool:
        entry = pool[0]
        now = now or utcnow()
        entry.issued_to = user_id
        entry.issued_at = now
        event.updated_at = now
        logger.info("Issued access key #%d of event %d to %d", entry.position, event.id, user_id)
        return entry.key

    if event.access_keys:
        logger.info("Access-key pool of event %d exhausted (user %d)", event.id, user_id)
    return None


def reclaim_key(event: Event, user_id: int, now: datetime | None = None) -> str | None:
    """Return the key held by *user_id* to the pool; ``None`` if none held."""
    entry = held_key(event, user_id)
    if entry is None:
        return None
    entry.issued_to = None
    entry.issued_at = None
    event.updated_at = now or utcnow()
    logger.info("Reclaimed access key #%d of event %d from %d", entry.position, event.id, user_id)
    return entry.key
