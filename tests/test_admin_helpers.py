"""
tests/test_admin_helpers.py — Admin Cog Input Parsing
======================================================
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from synergy.bot.cogs.admin import REPEAT_CHOICES, build_recurrence, parse_when, split_keys
from synergy.database.models import RecurrenceFrequency
from synergy.engine.errors import InvalidEvent
from synergy.engine.recurrence import RecurrenceRule


class TestParseWhen:
    def test_utc(self):
        assert parse_when(" 2026-03-01 18:30 ") == datetime(2026, 3, 1, 18, 30, tzinfo=UTC)

    @pytest.mark.parametrize("text", ["tomorrow", "2026-03-01", "01/03/2026 18:30"])
    def test_bad_format(self, text):
        with pytest.raises(InvalidEvent) as exc:
            parse_when(text)
        assert "YYYY-MM-DD HH:MM" in exc.value.user_message


class TestSplitKeys:
    def test_mixed_separators(self):
        assert split_keys("AAA, BBB;CCC\nDDD  EEE") == ["AAA", "BBB", "CCC", "DDD", "EEE"]

    def test_empty(self):
        assert split_keys(None) == []
        assert split_keys("  ,; ") == []


class TestBuildRecurrence:
    def test_one_off(self):
        assert build_recurrence(None) is None

    def test_occurrences_include_the_first_event(self):
        rule = build_recurrence("weekly", every=2, until="2026-06-01 00:00", occurrences=4)
        assert rule == RecurrenceRule(
            RecurrenceFrequency.WEEKLY, 2, datetime(2026, 6, 1, tzinfo=UTC), 3
        )

    def test_open_ended(self):
        assert build_recurrence("daily") == RecurrenceRule(RecurrenceFrequency.DAILY)

    @pytest.mark.parametrize("options", [{"until": "2026-06-01 00:00"}, {"occurrences": 3}])
    def test_options_need_a_frequency(self, options):
        with pytest.raises(InvalidEvent):
            build_recurrence(None, **options)

    def test_choices_cover_every_frequency(self):
        assert [c.value for c in REPEAT_CHOICES] == ["daily", "weekly", "monthly"]
