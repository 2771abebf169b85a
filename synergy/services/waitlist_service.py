"""
synergy.services.waitlist_service — Registration, Waitlist & Key Engine
========================================================================

Shared service module callable from cogs (via ``run_db``) and admin tools.
Keeps the per-event invariants:

1. ``registrations_count`` equals the number of confirmed registrations and
   never exceeds ``capacity`` (0 = unlimited).
2. Waitlist positions are exactly ``1..waitlist_count`` in FIFO order.
3. An access key is held by at most one user; a user holds at most one key
   per event.  Keys move only together with confirm / cancel transitions.
4. A user is never confirmed and waitlisted for the same event.

Concurrency:
    Each public operation runs in a single transaction.  The event row is
    versioned, so a concurrent writer that committed first makes our flush
    raise ``StaleDataError``; the transaction is rolled back and the whole
    operation is replayed from a fresh read, up to ``MAX_RETRY_ATTEMPTS``.

Notifications:
    Nothing here talks to Discord.  Every operation returns an outcome
    record listing promotions and status changes for the caller to
    dispatch through :mod:`synergy.services.notification_service`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

from sqlalchemy import Engine
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from synergy.database.engine import get_session
from synergy.database.models import Event, RegistrationStatus, User
from synergy.engine.errors import (
    AlreadyConfirmed,
    AlreadyWaitlisted,
    CapacityExceeded,
    ConcurrentModification,
    EventInactive,
    MissingProfileFields,
    NotRegistered,
    SynergyError,
)
from synergy.engine.lifecycle import has_capacity, registration_open, utcnow
from synergy.engine.outcomes import (
    EventSnapshot,
    Promotion,
    PromotionOutcome,
    RegistrationOutcome,
    StatusChange,
)
from synergy.services.event_store import get_event, issue_key, reclaim_key, save_event
from synergy.services.profile_service import (
    get_or_create_user,
    missing_profile_fields,
    record_participation,
)
from synergy.services.registration_store import (
    ACTIVE_STATUSES,
    create_registration,
    find_registration,
    list_waitlist,
    max_waitlist_position,
    renumber_waitlist,
    status_of,
    update_status,
)

logger = logging.getLogger(__name__)

MAX_RETRY_ATTEMPTS = 3

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Optimistic-lock retry
# ---------------------------------------------------------------------------
def _run_versioned(
    engine: Engine,
    event_id: int,
    op: Callable[[Session], T],
    *,
    on_exhausted: Callable[[int], SynergyError] = ConcurrentModification,
) -> T:
    """Run *op* in a fresh transaction, replaying it on version conflicts."""
    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        try:
            with get_session(engine) as session:
                return op(session)
        except StaleDataError:
            logger.info(
                "Version conflict on event %d (attempt %d/%d)",
                event_id, attempt, MAX_RETRY_ATTEMPTS,
            )
    logger.warning("Giving up on event %d after %d conflicts", event_id, MAX_RETRY_ATTEMPTS)
    raise on_exhausted(event_id)


def _require_open(event: Event, now: datetime) -> None:
    if not registration_open(event, now):
        raise EventInactive(event.id)


def _require_profile(session: Session, event: Event, user_id: int) -> None:
    missing = missing_profile_fields(session.get(User, user_id), event)
    if missing:
        raise MissingProfileFields(user_id, event.id, missing)


def _register_exhausted(engine: Engine, event_id: int) -> SynergyError:
    """Pick the error for a :func:`register` that lost every retry.

    ``CapacityExceeded`` when the event is full by now, otherwise
    ``ConcurrentModification``.
    """
    with get_session(engine) as session:
        event = get_event(session, event_id)
        if has_capacity(event):
            return ConcurrentModification(event_id)
        return CapacityExceeded(event_id)


# ---------------------------------------------------------------------------
# Session-level transitions (shared by the public operations below)
# ---------------------------------------------------------------------------
def _confirm(session: Session, event: Event, user_id: int, now: datetime) -> str | None:
    """Count a new confirmed slot and issue a key (best effort)."""
    event.registrations_count += 1
    event.last_registration_at = now
    record_participation(session, user_id, "events_joined", now=now)
    return issue_key(event, user_id, now)


def _promote_one(session: Session, event: Event, now: datetime) -> Promotion | None:
    """Move the head of the waitlist into a confirmed slot.

    Returns ``None`` when the waitlist is empty or no slot is free.
    """
    if not has_capacity(event):
        return None
    waitlist = list_waitlist(session, event.id)
    if not waitlist:
        return None

    head = waitlist[0]
    update_status(head, RegistrationStatus.CONFIRMED, now)
    event.waitlist_count -= 1
    key = _confirm(session, event, head.user_id, now)
    renumber_waitlist(session, event.id)

    logger.info(
        "Promoted user %d from waitlist of event %d (key=%s)",
        head.user_id, event.id, "yes" if key else "no",
    )
    return Promotion(
        user_id=head.user_id,
        event=EventSnapshot.from_event(event),
        promoted_at=now,
        access_key=key,
    )


def _cancel_registration(
    session: Session,
    event: Event,
    user_id: int,
    now: datetime,
) -> tuple[RegistrationStatus, str | None, Promotion | None]:
    """Cancel the user's active registration, backfilling one freed slot."""
    registration = find_registration(session, user_id, event.id)
    if registration is None or status_of(registration) not in ACTIVE_STATUSES:
        raise NotRegistered(user_id, event.id)

    old_status = update_status(registration, RegistrationStatus.CANCELLED, now)
    reclaimed: str | None = None
    promotion: Promotion | None = None

    if old_status is RegistrationStatus.CONFIRMED:
        event.registrations_count -= 1
        reclaimed = reclaim_key(event, user_id, now)
        session.flush()
        if registration_open(event, now):
            promotion = _promote_one(session, event, now)
    elif old_status is RegistrationStatus.WAITLIST:
        event.waitlist_count -= 1
        renumber_waitlist(session, event.id)

    return old_status, reclaimed, promotion


# ---------------------------------------------------------------------------
# Public API — user-facing
# ---------------------------------------------------------------------------
def register(
    engine: Engine,
    user_id: int,
    event_id: int,
    *,
    username: str | None = None,
    now: datetime | None = None,
) -> RegistrationOutcome:
    """Confirm *user_id* for *event_id* if a slot is free.

    When the event is full nothing is persisted and the outcome has
    ``waitlist_offered=True``: joining the waitlist is a separate,
    explicit :func:`add_to_waitlist` call.

    Raises
    ------
    EventNotFound, EventInactive
        Guard failures.
    AlreadyConfirmed, AlreadyWaitlisted
        Both derive from :class:`AlreadyRegistered`.
    MissingProfileFields
        The event requires profile fields the member has not filled in.
    CapacityExceeded
        Every attempt lost the race for the last slot(s).
    ConcurrentModification
        Every attempt hit a version conflict but slots are still free.
    """
    now = now or utcnow()

    def _op(session: Session) -> RegistrationOutcome:
        event = get_event(session, event_id)
        _require_open(event, now)

        existing = find_registration(session, user_id, event_id)
        if existing is not None:
            status = status_of(existing)
            if status is RegistrationStatus.CONFIRMED:
                raise AlreadyConfirmed(user_id, event_id)
            if status is RegistrationStatus.WAITLIST:
                raise AlreadyWaitlisted(user_id, event_id)

        _require_profile(session, event, user_id)

        if not has_capacity(event):
            return RegistrationOutcome(
                user_id=user_id,
                event=EventSnapshot.from_event(event),
                status=None,
                waitlist_offered=True,
            )

        get_or_create_user(session, user_id, username)
        create_registration(session, user_id, event_id, RegistrationStatus.CONFIRMED, now)
        key = _confirm(session, event, user_id, now)
        save_event(session, event)

        logger.info("User %d confirmed for event %d", user_id, event_id)
        return RegistrationOutcome(
            user_id=user_id,
            event=EventSnapshot.from_event(event),
            status=RegistrationStatus.CONFIRMED,
            access_key=key,
        )

    return _run_versioned(
        engine, event_id, _op,
        on_exhausted=lambda eid: _register_exhausted(engine, eid),
    )


def add_to_waitlist(
    engine: Engine,
    user_id: int,
    event_id: int,
    *,
    username: str | None = None,
    now: datetime | None = None,
) -> RegistrationOutcome:
    """Append *user_id* to the end of the event's waitlist.

    Already waitlisted is a successful no-op reporting the current position.

    Raises
    ------
    EventNotFound, EventInactive, AlreadyConfirmed, MissingProfileFields
    """
    now = now or utcnow()

    def _op(session: Session) -> RegistrationOutcome:
        event = get_event(session, event_id)
        _require_open(event, now)

        existing = find_registration(session, user_id, event_id)
        if existing is not None:
            status = status_of(existing)
            if status is RegistrationStatus.CONFIRMED:
                raise AlreadyConfirmed(user_id, event_id)
            if status is RegistrationStatus.WAITLIST:
                return RegistrationOutcome(
                    user_id=user_id,
                    event=EventSnapshot.from_event(event),
                    status=RegistrationStatus.WAITLIST,
                    waitlist_position=existing.waitlist_position,
                    already_waitlisted=True,
                )

        _require_profile(session, event, user_id)
        get_or_create_user(session, user_id, username)
        position = max_waitlist_position(session, event_id) + 1
        registration = create_registration(
            session, user_id, event_id, RegistrationStatus.WAITLIST, now
        )
        registration.waitlist_position = position
        event.waitlist_count += 1
        record_participation(session, user_id, "waitlist_joins", now=now)
        save_event(session, event)

        logger.info("User %d waitlisted for event %d at #%d", user_id, event_id, position)
        return RegistrationOutcome(
            user_id=user_id,
            event=EventSnapshot.from_event(event),
            status=RegistrationStatus.WAITLIST,
            waitlist_position=position,
        )

    return _run_versioned(engine, event_id, _op)


def remove_from_waitlist(
    engine: Engine,
    user_id: int,
    event_id: int,
    *,
    now: datetime | None = None,
) -> RegistrationOutcome:
    """Delete the user's waitlist entry and close the gap it leaves.

    Raises
    ------
    EventNotFound, NotRegistered
    """
    now = now or utcnow()

    def _op(session: Session) -> RegistrationOutcome:
        event = get_event(session, event_id)
        registration = find_registration(session, user_id, event_id)
        if registration is None or status_of(registration) is not RegistrationStatus.WAITLIST:
            raise NotRegistered(user_id, event_id)

        session.delete(registration)
        event.waitlist_count -= 1
        event.updated_at = now
        renumber_waitlist(session, event_id)
        save_event(session, event)

        logger.info("User %d left the waitlist of event %d", user_id, event_id)
        return RegistrationOutcome(
            user_id=user_id,
            event=EventSnapshot.from_event(event),
            status=None,
        )

    return _run_versioned(engine, event_id, _op)


def cancel(
    engine: Engine,
    user_id: int,
    event_id: int,
    *,
    now: datetime | None = None,
) -> RegistrationOutcome:
    """Cancel the user's confirmed or waitlisted registration.

    A confirmed cancellation returns the user's key to the pool and
    promotes exactly one waitlisted user into the freed slot.

    Raises
    ------
    EventNotFound, NotRegistered
    """
    now = now or utcnow()

    def _op(session: Session) -> RegistrationOutcome:
        event = get_event(session, event_id)
        _, reclaimed, promotion = _cancel_registration(session, event, user_id, now)
        save_event(session, event)

        logger.info("User %d cancelled registration for event %d", user_id, event_id)
        return RegistrationOutcome(
            user_id=user_id,
            event=EventSnapshot.from_event(event),
            status=RegistrationStatus.CANCELLED,
            reclaimed_key=reclaimed,
            promotions=[promotion] if promotion else [],
        )

    return _run_versioned(engine, event_id, _op)


def promote_from_waitlist(
    engine: Engine,
    event_id: int,
    *,
    now: datetime | None = None,
) -> PromotionOutcome:
    """Promote the earliest waitlisted user; ``outcome.user_id`` is ``None``
    when the waitlist is empty or the event is full.

    Raises
    ------
    EventNotFound, EventInactive
    """
    now = now or utcnow()

    def _op(session: Session) -> PromotionOutcome:
        event = get_event(session, event_id)
        _require_open(event, now)
        promotion = _promote_one(session, event, now)
        save_event(session, event)
        return PromotionOutcome(
            event=EventSnapshot.from_event(event),
            promotions=[promotion] if promotion else [],
        )

    return _run_versioned(engine, event_id, _op)


# ---------------------------------------------------------------------------
# Public API — admin bulk operations
# ---------------------------------------------------------------------------
def promote_all(
    engine: Engine,
    event_id: int,
    *,
    now: datetime | None = None,
) -> PromotionOutcome:
    """Promote in FIFO order until the waitlist is empty or the event is full."""
    now = now or utcnow()

    def _op(session: Session) -> PromotionOutcome:
        event = get_event(session, event_id)
        _require_open(event, now)
        promotions: list[Promotion] = []
        while (promotion := _promote_one(session, event, now)) is not None:
            promotions.append(promotion)
        save_event(session, event)

        logger.info("Bulk-promoted %d user(s) on event %d", len(promotions), event_id)
        return PromotionOutcome(
            event=EventSnapshot.from_event(event),
            promotions=promotions,
        )

    return _run_versioned(engine, event_id, _op)


def add_participant(
    engine: Engine,
    event_id: int,
    user_id: int,
    *,
    username: str | None = None,
    now: datetime | None = None,
) -> RegistrationOutcome:
    """Confirm *user_id* directly, skipping the waitlist queue.

    A waitlisted user is pulled out of the queue (the rest are renumbered).
    Capacity is still enforced; profile requirements are not.

    Raises
    ------
    EventNotFound, EventInactive, AlreadyConfirmed, CapacityExceeded
    """
    now = now or utcnow()

    def _op(session: Session) -> RegistrationOutcome:
        event = get_event(session, event_id)
        _require_open(event, now)

        existing = find_registration(session, user_id, event_id)
        old_status = status_of(existing) if existing is not None else None
        if old_status is RegistrationStatus.CONFIRMED:
            raise AlreadyConfirmed(user_id, event_id)
        if not has_capacity(event):
            raise CapacityExceeded(event_id)

        get_or_create_user(session, user_id, username)
        if old_status is RegistrationStatus.WAITLIST:
            update_status(existing, RegistrationStatus.CONFIRMED, now)
            event.waitlist_count -= 1
            renumber_waitlist(session, event_id)
        else:
            create_registration(session, user_id, event_id, RegistrationStatus.CONFIRMED, now)
        key = _confirm(session, event, user_id, now)
        save_event(session, event)

        snapshot = EventSnapshot.from_event(event)
        logger.info("Admin added user %d to event %d (was %s)", user_id, event_id, old_status)
        return RegistrationOutcome(
            user_id=user_id,
            event=snapshot,
            status=RegistrationStatus.CONFIRMED,
            access_key=key,
            status_changes=[StatusChange(
                user_id=user_id,
                event=snapshot,
                old_status=(
                    old_status if old_status is RegistrationStatus.WAITLIST else None
                ),
                new_status=RegistrationStatus.CONFIRMED,
            )],
        )

    return _run_versioned(engine, event_id, _op)


def remove_participant(
    engine: Engine,
    event_id: int,
    user_id: int,
    *,
    notify_user: bool = True,
    now: datetime | None = None,
) -> RegistrationOutcome:
    """Admin removal: :func:`cancel` without the key-return notice.

    One freed confirmed slot promotes one waitlisted user.  When
    *notify_user* is set the removed member is told their status changed.

    Raises
    ------
    EventNotFound, NotRegistered
    """
    now = now or utcnow()

    def _op(session: Session) -> RegistrationOutcome:
        event = get_event(session, event_id)
        old_status, reclaimed, promotion = _cancel_registration(session, event, user_id, now)
        save_event(session, event)

        snapshot = EventSnapshot.from_event(event)
        changes = []
        if notify_user:
            changes.append(StatusChange(
                user_id=user_id,
                event=snapshot,
                old_status=old_status,
                new_status=RegistrationStatus.CANCELLED,
            ))
        logger.info("Admin removed user %d from event %d (was %s)", user_id, event_id, old_status)
        return RegistrationOutcome(
            user_id=user_id,
            event=snapshot,
            status=RegistrationStatus.CANCELLED,
            reclaimed_key=reclaimed,
            promotions=[promotion] if promotion else [],
            status_changes=changes,
        )

    return _run_versioned(engine, event_id, _op)
