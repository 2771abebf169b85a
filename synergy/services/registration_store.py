"""
synergy.services.registration_store — Registration Rows & Waitlist Order
=========================================================================

Session-level helpers for the ``registrations`` table.  A user has at most
one row per event (unique constraint); cancelling keeps the row so a later
registration reuses it with fresh timestamps.

Waitlist ordering is strictly FIFO: ``waitlist_position`` follows
insertion order and is renumbered to ``1..N`` after every removal or
promotion.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from synergy.database.models import Registration, RegistrationStatus
from synergy.engine.errors import DuplicateRegistration
from synergy.engine.lifecycle import utcnow

logger = logging.getLogger(__name__)

# Statuses that occupy the (user, event) pair
ACTIVE_STATUSES: tuple[RegistrationStatus, ...] = (
    RegistrationStatus.CONFIRMED,
    RegistrationStatus.WAITLIST,
)


def status_of(registration: Registration) -> RegistrationStatus:
    return RegistrationStatus(registration.status)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def find_registration(
    session: Session, user_id: int, event_id: int
) -> Registration | None:
    """Return the (user, event) row in any status, or ``None``."""
    return session.scalar(
        select(Registration).where(
            Registration.user_id == user_id,
            Registration.event_id == event_id,
        )
    )


def list_waitlist(session: Session, event_id: int) -> list[Registration]:
    """Waitlisted rows in FIFO order."""
    return list(session.scalars(
        select(Registration)
        .where(
            Registration.event_id == event_id,
            Registration.status == RegistrationStatus.WAITLIST.value,
        )
        .order_by(
            Registration.waitlist_position,
            Registration.registered_at,
            Registration.id,
        )
    ).all())


def list_confirmed(session: Session, event_id: int) -> list[Registration]:
    return list(session.scalars(
        select(Registration)
        .where(
            Registration.event_id == event_id,
            Registration.status == RegistrationStatus.CONFIRMED.value,
        )
        .order_by(Registration.registered_at, Registration.id)
    ).all())


def list_user_registrations(
    session: Session, user_id: int, *, include_inactive: bool = False
) -> list[Registration]:
    stmt = select(Registration).where(Registration.user_id == user_id)
    if not include_inactive:
        stmt = stmt.where(Registration.status.in_([s.value for s in ACTIVE_STATUSES]))
    return list(session.scalars(stmt.order_by(Registration.registered_at)).all())


def max_waitlist_position(session: Session, event_id: int) -> int:
    return session.scalar(
        select(func.max(Registration.waitlist_position)).where(
            Registration.event_id == event_id,
            Registration.status == RegistrationStatus.WAITLIST.value,
        )
    ) or 0


def count_by_status(session: Session, event_id: int) -> dict[RegistrationStatus, int]:
    rows = session.execute(
        select(Registration.status, func.count().label("cnt"))
        .where(Registration.event_id == event_id)
        .group_by(Registration.status)
    ).all()
    counts = {status: 0 for status in RegistrationStatus}
    for row in rows:
        counts[RegistrationStatus(row.status)] = row.cnt
    return counts


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def create_registration(
    session: Session,
    user_id: int,
    event_id: int,
    status: RegistrationStatus,
    now: datetime | None = None,
) -> Registration:
    """Create (or revive a cancelled) registration in *status*.

    Raises :class:`DuplicateRegistration` if a non-cancelled row exists.
    The waitlist position is left to the caller.
    """
    now = now or utcnow()
    existing = find_registration(session, user_id, event_id)
    if existing is not None:
        if status_of(existing) is not RegistrationStatus.CANCELLED:
            raise DuplicateRegistration(user_id, event_id)
        existing.status = status.value
        existing.registered_at = now
        existing.promoted_at = None
        existing.cancelled_at = None
        existing.completed_at = None
        existing.waitlist_position = None
        session.flush()
        return existing

    registration = Registration(
        user_id=user_id,
        event_id=event_id,
        status=status.value,
        registered_at=now,
    )
    session.add(registration)
    session.flush()
    return registration


def update_status(
    registration: Registration,
    new_status: RegistrationStatus,
    now: datetime | None = None,
) -> RegistrationStatus:
    """Move *registration* to *new_status*, stamping the matching timestamp.

    Returns the previous status.  Leaving the waitlist clears
    ``waitlist_position``; the caller renumbers the remainder.
    """
    now = now or utcnow()
    old_status = status_of(registration)

    if new_status is RegistrationStatus.CONFIRMED:
        if old_status is RegistrationStatus.WAITLIST:
            registration.promoted_at = now
    elif new_status is RegistrationStatus.WAITLIST:
        pass
    elif new_status is RegistrationStatus.CANCELLED:
        registration.cancelled_at = now
    elif new_status is RegistrationStatus.COMPLETED:
        registration.completed_at = now
    else:
        raise ValueError(f"Unhandled registration status: {new_status!r}")

    if new_status is not RegistrationStatus.WAITLIST:
        registration.waitlist_position = None
    registration.status = new_status.value
    return old_status


def renumber_waitlist(session: Session, event_id: int) -> int:
    """Close gaps so positions read ``1..N`` in FIFO order; returns N."""
    session.flush()
    waitlist = list_waitlist(session, event_id)
    for index, registration in enumerate(waitlist, start=1):
        if registration.waitlist_position != index:
            registration.waitlist_position = index
    session.flush()
    return len(waitlist)
