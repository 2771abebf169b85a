"""
tests/test_reconciliation.py — Counter Reconciliation
======================================================
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from synergy.database.models import Event, Registration
from synergy.services.reconciliation_service import reconcile_counters
from synergy.services.waitlist_service import add_to_waitlist, register

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _waitlist_positions(engine, event_id: int) -> dict[int, int]:
    with Session(engine) as session:
        rows = session.execute(
            select(Registration.user_id, Registration.waitlist_position)
            .where(Registration.event_id == event_id, Registration.status == "waitlist")
        ).all()
        return dict(rows)


class TestReconcileCounters:
    def test_clean_database(self, db_engine, make_event):
        event_id = make_event(capacity=1)
        register(db_engine, 1, event_id, now=NOW)
        add_to_waitlist(db_engine, 2, event_id, now=NOW)

        result = reconcile_counters(db_engine)

        assert result["checked"] == 1
        assert result["corrected"] == 0
        assert result["skipped"] == []

    def test_fixes_counter_drift(self, db_engine, make_event):
        event_id = make_event()
        register(db_engine, 1, event_id, now=NOW)
        register(db_engine, 2, event_id, now=NOW)
        with Session(db_engine) as session:
            event = session.get(Event, event_id)
            event.registrations_count = 7
            event.waitlist_count = 3
            session.commit()

        result = reconcile_counters(db_engine)

        (correction,) = result["corrections"]
        assert correction["registrations_stored"] == 7
        assert correction["registrations_actual"] == 2
        with Session(db_engine) as session:
            event = session.get(Event, event_id)
            assert (event.registrations_count, event.waitlist_count) == (2, 0)

    def test_renumbers_gaps(self, db_engine, make_event):
        event_id = make_event(capacity=1)
        register(db_engine, 1, event_id, now=NOW)
        for user_id in (2, 3, 4):
            add_to_waitlist(db_engine, user_id, event_id, now=NOW)
        with Session(db_engine) as session:
            row = session.scalar(select(Registration).where(Registration.user_id == 4))
            row.waitlist_position = 9
            session.commit()

        result = reconcile_counters(db_engine)

        assert result["corrections"][0]["renumbered"]
        assert _waitlist_positions(db_engine, event_id) == {2: 1, 3: 2, 4: 3}
