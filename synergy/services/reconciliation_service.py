"""
synergy.services.reconciliation_service — Counter Reconciliation
=================================================================

Weekly job that validates the denormalised counters on ``events`` against
the ``registrations`` table and corrects drift if found.

How it works:
    1. ``COUNT(*)`` of confirmed and waitlisted registrations per event.
    2. Compare against ``registrations_count`` / ``waitlist_count``.
    3. Overwrite mismatches with the true count (version-checked, so an
       event changed concurrently is simply left for the next run).
    4. Renumber any waitlist whose positions are not ``1..N``.
    5. Log all corrections for audit.

Closed and cancelled events are checked too: their counters must be zero.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.orm.exc import StaleDataError

from synergy.database.engine import get_session
from synergy.database.models import Event, Registration, RegistrationStatus
from synergy.services.registration_store import list_waitlist, renumber_waitlist

logger = logging.getLogger(__name__)


def _true_counts(session, event_id: int) -> dict[str, int]:
    rows = session.execute(
        select(Registration.status, func.count().label("actual"))
        .where(Registration.event_id == event_id)
        .group_by(Registration.status)
    ).all()
    return {row.status: row.actual for row in rows}


def _reconcile_event(engine: Engine, event_id: int) -> dict | None:
    """Fix one event; returns the correction record or ``None`` if clean."""
    with get_session(engine) as session:
        event = session.get(Event, event_id)
        if event is None:
            return None
        truth = _true_counts(session, event_id)
        confirmed = truth.get(RegistrationStatus.CONFIRMED.value, 0)
        waitlisted = truth.get(RegistrationStatus.WAITLIST.value, 0)

        positions = [r.waitlist_position for r in list_waitlist(session, event_id)]
        gaps = positions != list(range(1, len(positions) + 1))

        if (
            event.registrations_count == confirmed
            and event.waitlist_count == waitlisted
            and not gaps
        ):
            return None

        correction = {
            "event_id": event_id,
            "registrations_stored": event.registrations_count,
            "registrations_actual": confirmed,
            "waitlist_stored": event.waitlist_count,
            "waitlist_actual": waitlisted,
            "renumbered": gaps,
        }
        event.registrations_count = confirmed
        event.waitlist_count = waitlisted
        if gaps:
            renumber_waitlist(session, event_id)
            event.updated_at = datetime.now(UTC)
        session.flush()
        return correction


def reconcile_counters(engine: Engine) -> dict:
    """Validate event counters against registrations and fix drift.

    Returns ``{"checked": N, "corrected": M, "corrections": [...]}``.
    """
    corrections: list[dict] = []
    skipped: list[int] = []

    with get_session(engine) as session:
        event_ids = list(session.scalars(select(Event.id).order_by(Event.id)).all())

    for event_id in event_ids:
        try:
            correction = _reconcile_event(engine, event_id)
        except StaleDataError:
            skipped.append(event_id)
            continue
        if correction is not None:
            corrections.append(correction)

    if corrections:
        logger.warning(
            "Counter reconciliation: corrected %d/%d events: %s",
            len(corrections), len(event_ids), corrections,
        )
    else:
        logger.info("Counter reconciliation: all %d events match", len(event_ids))
    if skipped:
        logger.info("Counter reconciliation skipped busy events %s", skipped)

    return {
        "checked": len(event_ids),
        "corrected": len(corrections),
        "corrections": corrections,
        "skipped": skipped,
        "timestamp": datetime.now(UTC).isoformat(),
    }
