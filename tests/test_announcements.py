"""
tests/test_announcements.py — Unit Tests for Announcement Service
==================================================================

Tests scheduling, listing and cancelling announcements, the poll sweep
that delivers due rows, and channel resolution in the Discord sender.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from sqlalchemy.orm import Session

from synergy.database.models import ScheduledAnnouncement
from synergy.engine.errors import AnnouncementNotFound
from synergy.engine.outcomes import EventSnapshot
from synergy.services.announcement_service import (
    MAX_DELIVERY_ATTEMPTS,
    announce_new_occurrences,
    cancel_announcement,
    deliver_announcement,
    list_pending,
    schedule_announcement,
    send_due_announcements,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _schedule(engine, *, at: datetime = NOW, guild_id: int = 100, title: str = "News"):
    return schedule_announcement(
        engine,
        guild_id=guild_id,
        channel_id=555,
        title=title,
        content="Something happened",
        scheduled_at=at,
        creator_id=1,
    )


def _row(engine, announcement_id: int) -> ScheduledAnnouncement:
    with Session(engine) as session:
        return session.get(ScheduledAnnouncement, announcement_id)


def _make_bot(channels: dict[int, object] | None = None) -> MagicMock:
    """Create a lightweight mock SynergyBot."""
    bot = MagicMock()
    bot.cfg = SimpleNamespace(community_name="Synergy", announce_channel_id=555)

    def _get_channel(ch_id):
        if channels and ch_id in channels:
            return channels[ch_id]
        return None

    bot.get_channel = _get_channel
    bot.fetch_channel = AsyncMock(return_value=None)
    return bot


def _make_messageable(channel_id: int = 555) -> MagicMock:
    """Create a mock Messageable channel."""
    ch = MagicMock(spec=discord.TextChannel)
    ch.id = channel_id
    ch.send = AsyncMock()
    return ch


# ===========================================================================
# Scheduling CRUD
# ===========================================================================
class TestScheduling:
    def test_schedule_and_list(self, db_engine):
        later = _schedule(db_engine, at=NOW + timedelta(hours=2), title="Later")
        sooner = _schedule(db_engine, at=NOW + timedelta(hours=1), title="Sooner")
        _schedule(db_engine, guild_id=999)

        pending = list_pending(db_engine, 100)

        assert [a.id for a in pending] == [sooner.id, later.id]
        assert pending[0].color == "#0099ff"

    def test_cancel_pending(self, db_engine):
        row = _schedule(db_engine)
        cancel_announcement(db_engine, row.id, 100)
        assert _row(db_engine, row.id) is None

    def test_cancel_foreign_guild(self, db_engine):
        row = _schedule(db_engine)
        with pytest.raises(AnnouncementNotFound):
            cancel_announcement(db_engine, row.id, 999)

    def test_cancel_unknown(self, db_engine):
        with pytest.raises(AnnouncementNotFound):
            cancel_announcement(db_engine, 12345, 100)


# ===========================================================================
# send_due_announcements
# ===========================================================================
class TestSendDue:
    def test_sends_only_due(self, db_engine):
        due = _schedule(db_engine, at=NOW - timedelta(minutes=1))
        future = _schedule(db_engine, at=NOW + timedelta(hours=1))
        send = AsyncMock()

        report = run_async(send_due_announcements(db_engine, send, now=NOW))

        assert report.events == [due.id]
        send.assert_awaited_once()
        assert _row(db_engine, due.id).is_sent
        assert not _row(db_engine, future.id).is_sent

    def test_sent_rows_not_resent(self, db_engine):
        _schedule(db_engine, at=NOW)
        send = AsyncMock()

        run_async(send_due_announcements(db_engine, send, now=NOW))
        run_async(send_due_announcements(db_engine, send, now=NOW + timedelta(minutes=1)))

        assert send.await_count == 1

    def test_failure_retried_then_abandoned(self, db_engine):
        row = _schedule(db_engine, at=NOW)
        send = AsyncMock(side_effect=RuntimeError("channel gone"))

        for _ in range(MAX_DELIVERY_ATTEMPTS + 2):
            run_async(send_due_announcements(db_engine, send, now=NOW))

        assert send.await_count == MAX_DELIVERY_ATTEMPTS
        stored = _row(db_engine, row.id)
        assert stored.failed_attempts == MAX_DELIVERY_ATTEMPTS
        assert not stored.is_sent

    def test_one_failure_does_not_block_others(self, db_engine):
        first = _schedule(db_engine, at=NOW - timedelta(minutes=2))
        second = _schedule(db_engine, at=NOW - timedelta(minutes=1))
        send = AsyncMock(side_effect=[RuntimeError("boom"), None])

        report = run_async(send_due_announcements(db_engine, send, now=NOW))

        assert (report.notified, report.failed) == (1, 1)
        assert not _row(db_engine, first.id).is_sent
        assert _row(db_engine, second.id).is_sent


# ===========================================================================
# deliver_announcement
# ===========================================================================
class TestDeliver:
    def test_posts_embed_to_cached_channel(self, db_engine):
        row = _schedule(db_engine)
        channel = _make_messageable(555)
        bot = _make_bot(channels={555: channel})

        run_async(deliver_announcement(bot, row))

        embed = channel.send.await_args.kwargs["embed"]
        assert embed.title == "News"
        assert embed.footer.text == "Synergy"

    def test_fetches_uncached_channel(self, db_engine):
        row = _schedule(db_engine)
        channel = _make_messageable(555)
        bot = _make_bot()
        bot.fetch_channel.return_value = channel

        run_async(deliver_announcement(bot, row))

        bot.fetch_channel.assert_awaited_once_with(555)
        channel.send.assert_awaited_once()

    def test_non_messageable_channel_raises(self, db_engine):
        row = _schedule(db_engine)
        category = MagicMock(spec=discord.CategoryChannel)
        bot = _make_bot(channels={555: category})

        with pytest.raises(LookupError):
            run_async(deliver_announcement(bot, row))


# ===========================================================================
# announce_new_occurrences
# ===========================================================================
def _occurrence(event_id: int) -> EventSnapshot:
    return EventSnapshot(
        id=event_id,
        guild_id=100,
        title="Weekly Sync",
        location="Online",
        start_date=NOW + timedelta(days=7),
        end_date=NOW + timedelta(days=7, hours=1),
        capacity=10,
        registrations_count=0,
        waitlist_count=0,
        has_key_pool=False,
    )


class TestAnnounceNewOccurrences:
    def test_posts_each_occurrence(self):
        channel = _make_messageable(555)
        bot = _make_bot(channels={555: channel})

        posted = run_async(announce_new_occurrences(bot, [_occurrence(1), _occurrence(2)]))

        assert posted == 2
        footers = [c.kwargs["embed"].footer.text for c in channel.send.await_args_list]
        assert footers == ["Event #1", "Event #2"]

    def test_no_channel_configured(self):
        bot = _make_bot()
        bot.cfg.announce_channel_id = None

        assert run_async(announce_new_occurrences(bot, [_occurrence(1)])) == 0
        bot.fetch_channel.assert_not_awaited()

    def test_failure_is_logged_and_skipped(self, caplog):
        channel = _make_messageable(555)
        channel.send.side_effect = [RuntimeError("boom"), None]
        bot = _make_bot(channels={555: channel})

        posted = run_async(announce_new_occurrences(bot, [_occurrence(1), _occurrence(2)]))

        assert posted == 1
        assert "Posting new occurrence 1" in caplog.text
