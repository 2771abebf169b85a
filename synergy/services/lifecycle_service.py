"""
synergy.services.lifecycle_service — Scheduler Sweeps
======================================================

One sweep per time-based transition, each a single pass over persisted
state.  Called from :mod:`synergy.bot.cogs.tasks` on fixed intervals; no
per-event timers are kept in memory, so a restart loses nothing.

Delivery model:
    The flag for a transition (``reminder_sent``, ``notified_start``) is
    claimed and committed *before* anyone is notified.  The claim is a
    version-checked UPDATE, so when two sweeps race only one wins and the
    loser skips the event.  This gives at-most-once delivery: a crash
    mid-batch never re-sends, and one failing recipient does not stop the
    rest of the batch.

Recurring events:
    Closing an event that carries a recurrence rule creates the next
    occurrence in the same transaction, with the same settings and a fresh
    copy of the access-key pool.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from synergy.database.engine import get_session, run_db
from synergy.database.models import Event, RegistrationStatus
from synergy.engine.lifecycle import (
    DEFAULT_REMINDER_WINDOW,
    closure_due,
    reminder_due,
    start_due,
    utcnow,
)
from synergy.engine.outcomes import EventSnapshot, StatusChange, SweepReport
from synergy.engine.recurrence import RecurrenceRule, next_occurrence
from synergy.services import event_store
from synergy.services.profile_service import record_participation
from synergy.services.registration_store import (
    list_confirmed,
    list_waitlist,
    update_status,
)

logger = logging.getLogger(__name__)

DueRule = Callable[[Event], bool]


# ---------------------------------------------------------------------------
# Sync helpers (run via run_db)
# ---------------------------------------------------------------------------
def _due_event_ids(engine: Engine, rule: DueRule) -> list[int]:
    """Ids of active events for which *rule* holds right now."""
    with get_session(engine) as session:
        events = session.scalars(
            select(Event).where(Event.active.is_(True)).order_by(Event.start_date)
        ).all()
        return [event.id for event in events if rule(event)]


def _claim_flag(
    engine: Engine, event_id: int, flag: str, rule: DueRule
) -> tuple[EventSnapshot, list[int]] | None:
    """Set *flag* on the event if still due; return who to notify.

    ``None`` means the event is no longer due or another sweep claimed it.
    """
    try:
        with get_session(engine) as session:
            event = session.get(Event, event_id)
            if event is None or not rule(event):
                return None
            setattr(event, flag, True)
            session.flush()
            user_ids = [r.user_id for r in list_confirmed(session, event_id)]
            return EventSnapshot.from_event(event), user_ids
    except StaleDataError:
        logger.info("Event %d %s already claimed by another sweep", event_id, flag)
        return None


def _spawn_next_occurrence(session: Session, event: Event, now: datetime) -> Event | None:
    rule = RecurrenceRule.from_event(event)
    if rule is None:
        return None
    occurrence = next_occurrence(rule, event.start_date, event.end_date, now)
    if occurrence is None:
        logger.info("Recurring event %d has no further occurrences", event.id)
        return None
    if occurrence.skipped:
        logger.warning(
            "Recurring event %d skipped %d missed occurrence(s)", event.id, occurrence.skipped
        )
    return event_store.create_event(
        session,
        guild_id=event.guild_id,
        title=event.title,
        start_date=occurrence.start_date,
        end_date=occurrence.end_date,
        created_by=event.created_by,
        capacity=event.capacity,
        description=event.description,
        location=event.location,
        rewards=event.rewards,
        access_keys=[entry.key for entry in event.access_keys],
        require_telegram=event.require_telegram,
        require_twitter=event.require_twitter,
        require_wallets=event.require_wallets,
        recurrence=occurrence.rule,
        previous_event_id=event.id,
        template_id=event.template_id,
    )


def _close_event(
    engine: Engine, event_id: int, now: datetime
) -> tuple[EventSnapshot, list[int], int, EventSnapshot | None] | None:
    """Complete confirmed registrations and cancel the waitlist.

    Returns ``(snapshot, completed_user_ids, cancelled_waitlist, spawned)``
    where *spawned* is the next occurrence of a recurring event, if any.
    """
    try:
        with get_session(engine) as session:
            event = session.get(Event, event_id)
            if event is None or not closure_due(event, now):
                return None

            completed = []
            for registration in list_confirmed(session, event_id):
                update_status(registration, RegistrationStatus.COMPLETED, now)
                record_participation(session, registration.user_id, "events_completed", now=now)
                completed.append(registration.user_id)

            waitlist = list_waitlist(session, event_id)
            for registration in waitlist:
                update_status(registration, RegistrationStatus.CANCELLED, now)

            event.registrations_count = 0
            event.waitlist_count = 0
            event.active = False
            event.notified_end = True
            session.flush()
            spawned = _spawn_next_occurrence(session, event, now)
            return (
                EventSnapshot.from_event(event),
                completed,
                len(waitlist),
                EventSnapshot.from_event(spawned) if spawned is not None else None,
            )
    except StaleDataError:
        logger.info("Event %d closed concurrently; skipping", event_id)
        return None


async def _notify_each(
    send: Callable[[EventSnapshot, int], Awaitable[None]],
    event: EventSnapshot,
    user_ids: list[int],
    report: SweepReport,
) -> None:
    for user_id in user_ids:
        try:
            await send(event, user_id)
            report.notified += 1
        except Exception:
            report.failed += 1
            logger.exception(
                "%s notification to user %d for event %d failed",
                report.sweep, user_id, event.id,
                extra={"task": report.sweep},
            )


async def _run_flag_sweep(
    engine: Engine,
    *,
    sweep: str,
    flag: str,
    rule: DueRule,
    send: Callable[[EventSnapshot, int], Awaitable[None]],
) -> SweepReport:
    report = SweepReport(sweep=sweep)
    for event_id in await run_db(_due_event_ids, engine, rule):
        claimed = await run_db(_claim_flag, engine, event_id, flag, rule)
        if claimed is None:
            continue
        snapshot, user_ids = claimed
        report.events.append(event_id)
        report.transitioned += 1
        await _notify_each(send, snapshot, user_ids, report)

    if report.events:
        logger.info(
            "%s sweep: %d event(s), %d notified, %d failed",
            sweep, len(report.events), report.notified, report.failed,
        )
    return report


# ---------------------------------------------------------------------------
# Public sweeps
# ---------------------------------------------------------------------------
async def run_reminder_sweep(
    engine: Engine,
    notifier,
    *,
    now: datetime | None = None,
    window: timedelta = DEFAULT_REMINDER_WINDOW,
) -> SweepReport:
    """Remind confirmed registrants of events starting within *window*."""
    now = now or utcnow()
    return await _run_flag_sweep(
        engine,
        sweep="reminder",
        flag="reminder_sent",
        rule=lambda event: reminder_due(event, now, window),
        send=notifier.notify_reminder,
    )


async def run_start_sweep(
    engine: Engine,
    notifier,
    *,
    now: datetime | None = None,
) -> SweepReport:
    """Tell confirmed registrants that their event has started."""
    now = now or utcnow()
    return await _run_flag_sweep(
        engine,
        sweep="start",
        flag="notified_start",
        rule=lambda event: start_due(event, now),
        send=notifier.notify_started,
    )


async def run_closure_sweep(
    engine: Engine,
    notifier=None,
    *,
    now: datetime | None = None,
) -> SweepReport:
    """Close every active event whose end date has passed.

    Confirmed registrations become completed, the waitlist is cancelled
    and the event is deactivated.  Recurring events spawn their next
    occurrence (listed in ``report.spawned``).  With a *notifier*, each
    completed participant receives a status-change notice.
    """
    now = now or utcnow()
    report = SweepReport(sweep="closure")

    event_ids = await run_db(_due_event_ids, engine, lambda event: closure_due(event, now))
    for event_id in event_ids:
        closed = await run_db(_close_event, engine, event_id, now)
        if closed is None:
            continue
        snapshot, completed, cancelled, spawned = closed
        report.events.append(event_id)
        report.transitioned += len(completed) + cancelled
        logger.info(
            "Closed event %d: %d completed, %d waitlisted cancelled",
            event_id, len(completed), cancelled,
        )
        if spawned is not None:
            report.spawned.append(spawned)
            logger.info(
                "Event %d recurs as event %d on %s", event_id, spawned.id, spawned.start_date
            )
        if notifier is None:
            continue

        async def _send_completed(event: EventSnapshot, user_id: int) -> None:
            await notifier.notify_status_changed(StatusChange(
                user_id=user_id,
                event=event,
                old_status=RegistrationStatus.CONFIRMED,
                new_status=RegistrationStatus.COMPLETED,
            ))

        await _notify_each(_send_completed, snapshot, completed, report)

    return report
