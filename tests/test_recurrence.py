"""
tests/test_recurrence.py — Recurring Events
============================================

Date arithmetic of the recurrence rules, and the closure sweep spawning the
next occurrence of a recurring event.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from synergy.database.models import AccessKey, Event, RecurrenceFrequency
from synergy.engine.recurrence import RecurrenceRule, add_months, next_occurrence
from synergy.services.lifecycle_service import run_closure_sweep
from synergy.services.waitlist_service import register

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
DAILY = RecurrenceFrequency.DAILY
WEEKLY = RecurrenceFrequency.WEEKLY
MONTHLY = RecurrenceFrequency.MONTHLY


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _load(engine, event_id: int) -> Event:
    with Session(engine) as session:
        event = session.get(Event, event_id)
        session.expunge(event)
        return event


def _keys(engine, event_id: int) -> dict[str, int | None]:
    with Session(engine) as session:
        rows = session.scalars(
            select(AccessKey).where(AccessKey.event_id == event_id).order_by(AccessKey.position)
        ).all()
        return {row.key: row.issued_to for row in rows}


# ===========================================================================
# Pure rules
# ===========================================================================
class TestAddMonths:
    def test_plain(self):
        assert add_months(datetime(2026, 1, 15, tzinfo=UTC), 1) == datetime(2026, 2, 15, tzinfo=UTC)

    def test_clamps_to_month_end(self):
        assert add_months(datetime(2026, 1, 31, tzinfo=UTC), 1) == datetime(2026, 2, 28, tzinfo=UTC)
        assert add_months(datetime(2028, 1, 31, tzinfo=UTC), 1) == datetime(2028, 2, 29, tzinfo=UTC)

    def test_rolls_over_year(self):
        rolled = add_months(datetime(2026, 11, 30, tzinfo=UTC), 3)
        assert rolled == datetime(2027, 2, 28, tzinfo=UTC)


class TestNextOccurrence:
    def test_daily_keeps_duration(self):
        start, end = NOW - timedelta(hours=3), NOW - timedelta(hours=1)
        occurrence = next_occurrence(RecurrenceRule(DAILY), start, end, NOW)

        assert occurrence.start_date == start + timedelta(days=1)
        assert occurrence.end_date == end + timedelta(days=1)
        assert occurrence.skipped == 0
        assert occurrence.rule.remaining is None

    def test_weekly_interval(self):
        start = NOW - timedelta(hours=2)
        occurrence = next_occurrence(
            RecurrenceRule(WEEKLY, interval=2), start, NOW - timedelta(hours=1), NOW
        )
        assert occurrence.start_date == start + timedelta(weeks=2)

    def test_monthly_stays_anchored_after_short_month(self):
        start = datetime(2026, 1, 31, 18, 0, tzinfo=UTC)
        end = start + timedelta(hours=2)
        rule = RecurrenceRule(MONTHLY)

        february = next_occurrence(rule, start, end, datetime(2026, 2, 1, tzinfo=UTC))
        assert february.start_date == datetime(2026, 2, 28, 18, 0, tzinfo=UTC)

        # February already over: skipped, March keeps the 31st
        march = next_occurrence(rule, start, end, datetime(2026, 3, 2, tzinfo=UTC))
        assert march.start_date == datetime(2026, 3, 31, 18, 0, tzinfo=UTC)
        assert march.skipped == 1

    def test_remaining_counts_down(self):
        rule = RecurrenceRule(DAILY, remaining=2)
        occurrence = next_occurrence(rule, NOW - timedelta(hours=2), NOW - timedelta(hours=1), NOW)
        assert occurrence.rule.remaining == 1
        assert next_occurrence(
            RecurrenceRule(DAILY, remaining=0), NOW, NOW + timedelta(hours=1), NOW
        ) is None

    def test_skipped_occurrences_consume_remaining(self):
        rule = RecurrenceRule(DAILY, remaining=2)
        start = NOW - timedelta(days=5)
        assert next_occurrence(rule, start, start + timedelta(hours=1), NOW) is None

    def test_until_is_inclusive_start_bound(self):
        start = NOW - timedelta(hours=2)
        end = NOW - timedelta(hours=1)
        rule = RecurrenceRule(WEEKLY, until=start + timedelta(weeks=1))
        assert next_occurrence(rule, start, end, NOW).start_date == start + timedelta(weeks=1)

        earlier = RecurrenceRule(WEEKLY, until=start + timedelta(days=6))
        assert next_occurrence(earlier, start, end, NOW) is None

    def test_naive_dates_treated_as_utc(self):
        start = datetime(2026, 3, 1, 9, 0)
        occurrence = next_occurrence(
            RecurrenceRule(DAILY), start, start + timedelta(hours=1), NOW
        )
        assert occurrence.start_date == datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class TestRuleFromEvent:
    def test_one_off(self):
        assert RecurrenceRule.from_event(Event(recurrence=None)) is None

    def test_round_trip_fields(self):
        event = Event(
            recurrence="monthly",
            recurrence_interval=3,
            recurrence_until=datetime(2026, 12, 31),
            recurrence_remaining=4,
        )
        rule = RecurrenceRule.from_event(event)
        assert rule == RecurrenceRule(MONTHLY, 3, datetime(2026, 12, 31, tzinfo=UTC), 4)

    def test_describe(self):
        assert RecurrenceRule(DAILY).describe() == "every day"
        rule = RecurrenceRule(WEEKLY, 2, datetime(2026, 4, 1, tzinfo=UTC), 3)
        assert rule.describe() == "every 2 weeks until 2026-04-01 (3 more)"


# ===========================================================================
# Closure sweep
# ===========================================================================
class TestClosureSpawnsNextOccurrence:
    def _recurring(self, make_event, **overrides) -> int:
        fields = {
            "capacity": 3,
            "keys": ("K1", "K2"),
            "start": NOW - timedelta(hours=3),
            "end": NOW - timedelta(hours=1),
            "require_wallets": True,
            "recurrence": RecurrenceRule(WEEKLY, remaining=2),
        }
        fields.update(overrides)
        return make_event(**fields)

    def test_next_occurrence_created(self, db_engine, make_event):
        event_id = self._recurring(make_event, require_wallets=False)
        register(db_engine, 1, event_id, now=NOW - timedelta(hours=4))

        report = run_async(run_closure_sweep(db_engine, now=NOW))

        assert report.events == [event_id]
        (spawned,) = report.spawned
        assert spawned.id != event_id
        assert spawned.start_date == NOW - timedelta(hours=3) + timedelta(weeks=1)
        assert spawned.capacity == 3
        assert spawned.registrations_count == 0
        assert spawned.has_key_pool

        new_event = _load(db_engine, spawned.id)
        assert new_event.active
        assert new_event.previous_event_id == event_id
        assert new_event.recurrence == "weekly"
        assert new_event.recurrence_remaining == 1
        # Same key strings, none issued yet
        assert _keys(db_engine, event_id) == {"K1": 1, "K2": None}
        assert _keys(db_engine, spawned.id) == {"K1": None, "K2": None}

    def test_settings_carried_forward(self, db_engine, make_event):
        event_id = self._recurring(make_event, title="Weekly Sync", location="Stage")
        report = run_async(run_closure_sweep(db_engine, now=NOW))

        (spawned,) = report.spawned
        assert spawned.title == "Weekly Sync"
        assert spawned.location == "Stage"
        assert spawned.requirements == ("wallets",)
        assert _load(db_engine, spawned.id).previous_event_id == event_id

    def test_series_ends_when_remaining_runs_out(self, db_engine, make_event):
        self._recurring(make_event, recurrence=RecurrenceRule(WEEKLY, remaining=0))
        report = run_async(run_closure_sweep(db_engine, now=NOW))
        assert len(report.events) == 1
        assert report.spawned == []

    def test_one_off_event_spawns_nothing(self, db_engine, make_event):
        make_event(start=NOW - timedelta(hours=3), end=NOW - timedelta(hours=1))
        report = run_async(run_closure_sweep(db_engine, now=NOW))
        assert report.spawned == []

    def test_rerun_does_not_spawn_twice(self, db_engine, make_event):
        self._recurring(make_event)
        first = run_async(run_closure_sweep(db_engine, now=NOW))
        again = run_async(run_closure_sweep(db_engine, now=NOW + timedelta(minutes=5)))

        assert len(first.spawned) == 1
        assert again.events == []
        assert again.spawned == []

    def test_chain_follows_previous_occurrence(self, db_engine, make_event):
        event_id = self._recurring(make_event, recurrence=RecurrenceRule(DAILY, remaining=1))

        first = run_async(run_closure_sweep(db_engine, now=NOW))
        (second_id,) = [s.id for s in first.spawned]
        later = run_async(run_closure_sweep(db_engine, now=NOW + timedelta(days=1)))

        assert later.events == [second_id]
        assert later.spawned == []
        assert _load(db_engine, second_id).previous_event_id == event_id
