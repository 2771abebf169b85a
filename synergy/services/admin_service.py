"""
synergy.services.admin_service — Audited Admin Mutations
=========================================================

Every admin write follows the pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSONB
  5. Commit

Participant operations (promote-all, add, remove) delegate to
:mod:`synergy.services.waitlist_service`, which owns its own retrying
transaction; the audit row is written right after it commits.
Access-key strings are never copied into the log.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import Engine
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from synergy.database.engine import get_session
from synergy.database.models import AdminActionType, AdminLog, RegistrationStatus
from synergy.engine.errors import ConcurrentModification, EventInactive, InvalidEvent
from synergy.engine.lifecycle import ensure_utc, utcnow
from synergy.engine.outcomes import (
    CancellationOutcome,
    EventSnapshot,
    PromotionOutcome,
    RegistrationOutcome,
    StatusChange,
)
from synergy.engine.recurrence import RecurrenceRule
from synergy.services import event_store, waitlist_service
from synergy.services.registration_store import list_confirmed, list_waitlist, update_status

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({
    "title", "description", "location", "rewards", "capacity", "start_date", "end_date",
    "require_telegram", "require_twitter", "require_wallets",
})


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------
def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: AdminActionType,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type.value,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def record_admin_action(
    engine: Engine,
    *,
    actor_id: int,
    action_type: AdminActionType,
    target_table: str,
    target_id: str | None,
    before: dict | None = None,
    after: dict | None = None,
    reason: str | None = None,
) -> None:
    """Write one admin_log row in its own transaction."""
    with get_session(engine) as session:
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type=action_type,
            target_table=target_table,
            target_id=target_id,
            before=before,
            after=after,
            reason=reason,
        )


# ---------------------------------------------------------------------------
# Event CRUD
# ---------------------------------------------------------------------------
def create_event(
    engine: Engine,
    *,
    actor_id: int,
    guild_id: int,
    title: str,
    start_date: datetime,
    end_date: datetime,
    capacity: int = 0,
    description: str = "",
    location: str = "Online",
    rewards: str | None = None,
    access_keys: Iterable[str] = (),
    require_telegram: bool = False,
    require_twitter: bool = False,
    require_wallets: bool = False,
    recurrence: RecurrenceRule | None = None,
    template_id: int | None = None,
) -> EventSnapshot:
    """Create an event with its key pool and audit the creation."""
    with get_session(engine) as session:
        event = event_store.create_event(
            session,
            guild_id=guild_id,
            title=title,
            start_date=start_date,
            end_date=end_date,
            created_by=actor_id,
            capacity=capacity,
            description=description,
            location=location,
            rewards=rewards,
            access_keys=access_keys,
            require_telegram=require_telegram,
            require_twitter=require_twitter,
            require_wallets=require_wallets,
            recurrence=recurrence,
            template_id=template_id,
        )
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE,
            target_table="events",
            target_id=str(event.id),
            before=None,
            after=row_to_dict(event),
        )
        return EventSnapshot.from_event(event)


def update_event(
    engine: Engine,
    event_id: int,
    *,
    actor_id: int,
    **changes: Any,
) -> EventSnapshot:
    """Edit event details.

    Capacity cannot drop below the current confirmed count and the event
    must still end after it starts.
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Non-editable event field(s): {sorted(unknown)}")

    try:
        with get_session(engine) as session:
            event = event_store.get_event(session, event_id)
            before = row_to_dict(event)
            for key, value in changes.items():
                setattr(event, key, value)

            if event.capacity < 0:
                raise InvalidEvent("Capacity cannot be negative.")
            if event.capacity and event.capacity < event.registrations_count:
                raise InvalidEvent(
                    f"{event.registrations_count} members are already confirmed; "
                    "capacity cannot go below that."
                )
            if ensure_utc(event.end_date) <= ensure_utc(event.start_date):
                raise InvalidEvent("The event must end after it starts.")

            event_store.save_event(session, event)
            log_admin_action(
                session,
                actor_id=actor_id,
                action_type=AdminActionType.UPDATE,
                target_table="events",
                target_id=str(event.id),
                before=before,
                after=row_to_dict(event),
            )
            return EventSnapshot.from_event(event)
    except StaleDataError:
        raise ConcurrentModification(event_id) from None


def cancel_event(
    engine: Engine,
    event_id: int,
    *,
    actor_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> CancellationOutcome:
    """Deactivate an event and cancel every active registration.

    Issued keys stay recorded against their holders.
    """
    now = now or utcnow()
    try:
        with get_session(engine) as session:
            event = event_store.get_event(session, event_id)
            if not event.active:
                raise EventInactive(event_id)
            before = row_to_dict(event)

            affected = list_confirmed(session, event_id) + list_waitlist(session, event_id)
            old_statuses = [update_status(r, RegistrationStatus.CANCELLED, now) for r in affected]
            event.registrations_count = 0
            event.waitlist_count = 0
            event.active = False
            event.cancelled_at = now
            event_store.save_event(session, event)

            log_admin_action(
                session,
                actor_id=actor_id,
                action_type=AdminActionType.CANCEL,
                target_table="events",
                target_id=str(event.id),
                before=before,
                after=row_to_dict(event),
                reason=reason,
            )
            snapshot = EventSnapshot.from_event(event)
    except StaleDataError:
        raise ConcurrentModification(event_id) from None

    logger.info("Event %d cancelled by %d (%d registrations)", event_id, actor_id, len(affected))
    return CancellationOutcome(
        event=snapshot,
        status_changes=[
            StatusChange(
                user_id=registration.user_id,
                event=snapshot,
                old_status=old,
                new_status=RegistrationStatus.CANCELLED,
            )
            for registration, old in zip(affected, old_statuses)
        ],
    )


def add_keys(
    engine: Engine,
    event_id: int,
    keys: Iterable[str],
    *,
    actor_id: int,
) -> int:
    """Append keys to the event's pool; returns how many were new."""
    try:
        with get_session(engine) as session:
            event = event_store.get_event(session, event_id)
            before_total = len(event.access_keys)
            added = event_store.add_access_keys(event, keys)
            if added:
                event.updated_at = utcnow()
                event_store.save_event(session, event)
                log_admin_action(
                    session,
                    actor_id=actor_id,
                    action_type=AdminActionType.ADD_KEYS,
                    target_table="access_keys",
                    target_id=str(event.id),
                    before={"total": before_total},
                    after={"total": before_total + added, "added": added},
                )
    except StaleDataError:
        raise ConcurrentModification(event_id) from None

    logger.info("Added %d access key(s) to event %d", added, event_id)
    return added


# ---------------------------------------------------------------------------
# Participant management
# ---------------------------------------------------------------------------
def promote_all(
    engine: Engine,
    event_id: int,
    *,
    actor_id: int,
    now: datetime | None = None,
) -> PromotionOutcome:
    outcome = waitlist_service.promote_all(engine, event_id, now=now)
    if outcome.promotions:
        record_admin_action(
            engine,
            actor_id=actor_id,
            action_type=AdminActionType.PROMOTE,
            target_table="registrations",
            target_id=str(event_id),
            after={"promoted": outcome.user_ids},
        )
    return outcome


def add_participant(
    engine: Engine,
    event_id: int,
    user_id: int,
    *,
    actor_id: int,
    username: str | None = None,
    now: datetime | None = None,
) -> RegistrationOutcome:
    outcome = waitlist_service.add_participant(
        engine, event_id, user_id, username=username, now=now
    )
    old = outcome.status_changes[0].old_status if outcome.status_changes else None
    record_admin_action(
        engine,
        actor_id=actor_id,
        action_type=AdminActionType.ADD_PARTICIPANT,
        target_table="registrations",
        target_id=f"{event_id}:{user_id}",
        before={"status": old.value if old else None},
        after={"status": RegistrationStatus.CONFIRMED.value},
    )
    return outcome


def remove_participant(
    engine: Engine,
    event_id: int,
    user_id: int,
    *,
    actor_id: int,
    reason: str | None = None,
    notify_user: bool = True,
    now: datetime | None = None,
) -> RegistrationOutcome:
    outcome = waitlist_service.remove_participant(
        engine, event_id, user_id, notify_user=notify_user, now=now
    )
    record_admin_action(
        engine,
        actor_id=actor_id,
        action_type=AdminActionType.REMOVE_PARTICIPANT,
        target_table="registrations",
        target_id=f"{event_id}:{user_id}",
        after={
            "status": RegistrationStatus.CANCELLED.value,
            "promoted": [p.user_id for p in outcome.promotions],
        },
        reason=reason,
    )
    return outcome

