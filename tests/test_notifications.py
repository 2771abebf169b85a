"""
tests/test_notifications.py — Notifier, Outcome Dispatch & Embeds
==================================================================

Covers preference gating in :class:`DiscordNotifier`, the fan-out in
:func:`dispatch_outcome`, and the embed builders the notices use.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import discord

from synergy.database.models import RegistrationStatus
from synergy.engine.outcomes import (
    CancellationOutcome,
    EventSnapshot,
    Promotion,
    PromotionOutcome,
    RegistrationOutcome,
    StatusChange,
)
from synergy.services.embeds import (
    ON_SITE_ACCESS,
    build_announcement_embed,
    build_event_list_embed,
    build_event_stats_embed,
    build_new_occurrence_embed,
    build_promotion_embed,
    build_registration_embed,
    build_status_change_embed,
)
from synergy.services.notification_service import DiscordNotifier, dispatch_outcome
from synergy.services.profile_service import set_notification_preferences

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _snapshot(
    *,
    has_key_pool: bool = False,
    capacity: int = 10,
    requirements: tuple[str, ...] = (),
) -> EventSnapshot:
    return EventSnapshot(
        id=42,
        guild_id=100,
        title="Launch Party",
        location="Main Stage",
        start_date=NOW + timedelta(hours=1),
        end_date=NOW + timedelta(hours=3),
        capacity=capacity,
        registrations_count=3,
        waitlist_count=0,
        has_key_pool=has_key_pool,
        requirements=requirements,
    )


def _make_bot(engine) -> MagicMock:
    """Create a lightweight mock SynergyBot with one DM-able user."""
    bot = MagicMock()
    bot.engine = engine
    member = MagicMock()
    member.send = AsyncMock()
    bot.get_user = MagicMock(return_value=member)
    bot.fetch_user = AsyncMock(return_value=member)
    return bot


def _field(embed: discord.Embed, name: str) -> str | None:
    for field in embed.fields:
        if field.name == name:
            return field.value
    return None


# ===========================================================================
# DiscordNotifier
# ===========================================================================
class TestDiscordNotifier:
    def test_unknown_user_gets_dm(self, db_engine):
        bot = _make_bot(db_engine)
        run_async(DiscordNotifier(bot).notify_reminder(_snapshot(), 7))
        bot.get_user.return_value.send.assert_awaited_once()

    def test_reminder_opt_out(self, db_engine):
        set_notification_preferences(db_engine, 7, "bob", event_reminders=False)
        bot = _make_bot(db_engine)
        notifier = DiscordNotifier(bot)

        run_async(notifier.notify_reminder(_snapshot(), 7))
        run_async(notifier.notify_started(_snapshot(), 7))
        bot.get_user.return_value.send.assert_not_awaited()

        # Waitlist notices are a separate category
        promotion = Promotion(user_id=7, event=_snapshot(), promoted_at=NOW)
        run_async(notifier.notify_waitlist_promoted(promotion))
        bot.get_user.return_value.send.assert_awaited_once()

    def test_direct_messages_off_blocks_everything(self, db_engine):
        set_notification_preferences(db_engine, 7, "bob", direct_messages=False)
        bot = _make_bot(db_engine)
        notifier = DiscordNotifier(bot)

        run_async(notifier.notify_waitlist_promoted(
            Promotion(user_id=7, event=_snapshot(), promoted_at=NOW)
        ))
        run_async(notifier.notify_status_changed(StatusChange(
            user_id=7,
            event=_snapshot(),
            old_status=RegistrationStatus.CONFIRMED,
            new_status=RegistrationStatus.CANCELLED,
        )))
        bot.get_user.return_value.send.assert_not_awaited()

    def test_fetches_uncached_user(self, db_engine):
        bot = _make_bot(db_engine)
        bot.get_user.return_value = None
        run_async(DiscordNotifier(bot).notify_started(_snapshot(), 7))
        bot.fetch_user.assert_awaited_once_with(7)
        bot.fetch_user.return_value.send.assert_awaited_once()

    def test_closed_dms_are_not_an_error(self, db_engine):
        bot = _make_bot(db_engine)
        response = MagicMock(status=403, reason="Forbidden")
        bot.get_user.return_value.send.side_effect = discord.Forbidden(response, "no DMs")
        # Must not raise
        run_async(DiscordNotifier(bot).notify_reminder(_snapshot(), 7))


# ===========================================================================
# dispatch_outcome
# ===========================================================================
class TestDispatchOutcome:
    def test_sends_promotions_and_status_changes(self):
        event = _snapshot()
        outcome = RegistrationOutcome(
            user_id=1,
            event=event,
            status=RegistrationStatus.CANCELLED,
            promotions=[Promotion(user_id=2, event=event, promoted_at=NOW)],
            status_changes=[StatusChange(
                user_id=1,
                event=event,
                old_status=RegistrationStatus.CONFIRMED,
                new_status=RegistrationStatus.CANCELLED,
            )],
        )
        notifier = AsyncMock()

        sent, failed = run_async(dispatch_outcome(notifier, outcome))

        assert (sent, failed) == (2, 0)
        notifier.notify_waitlist_promoted.assert_awaited_once()
        notifier.notify_status_changed.assert_awaited_once()

    def test_failure_is_logged_and_skipped(self):
        event = _snapshot()
        outcome = PromotionOutcome(
            event=event,
            promotions=[
                Promotion(user_id=2, event=event, promoted_at=NOW),
                Promotion(user_id=3, event=event, promoted_at=NOW),
            ],
        )
        notifier = AsyncMock()
        notifier.notify_waitlist_promoted.side_effect = [RuntimeError("boom"), None]

        sent, failed = run_async(dispatch_outcome(notifier, outcome))

        assert (sent, failed) == (1, 1)
        assert notifier.notify_waitlist_promoted.await_count == 2

    def test_nothing_to_send(self):
        outcome = RegistrationOutcome(
            user_id=1, event=_snapshot(), status=RegistrationStatus.CONFIRMED
        )
        notifier = AsyncMock()
        assert run_async(dispatch_outcome(notifier, outcome)) == (0, 0)
        notifier.notify_waitlist_promoted.assert_not_awaited()

    def test_cancellation_outcome(self):
        event = _snapshot()
        outcome = CancellationOutcome(
            event=event,
            status_changes=[
                StatusChange(user_id=u, event=event, old_status=RegistrationStatus.WAITLIST,
                             new_status=RegistrationStatus.CANCELLED)
                for u in (4, 5)
            ],
        )
        notifier = AsyncMock()
        assert run_async(dispatch_outcome(notifier, outcome)) == (2, 0)


# ===========================================================================
# Embeds
# ===========================================================================
class TestEmbeds:
    def test_waitlist_offer(self):
        outcome = RegistrationOutcome(
            user_id=1, event=_snapshot(), status=None, waitlist_offered=True
        )
        embed = build_registration_embed(outcome)
        assert "Full" in embed.title
        assert "/waitlist-join" in embed.description

    def test_confirmed_with_key(self):
        outcome = RegistrationOutcome(
            user_id=1,
            event=_snapshot(has_key_pool=True),
            status=RegistrationStatus.CONFIRMED,
            access_key="ABC-123",
        )
        embed = build_registration_embed(outcome)
        assert "ABC-123" in _field(embed, "Access key")
        assert embed.footer.text == "Event #42"

    def test_confirmed_pool_exhausted(self):
        outcome = RegistrationOutcome(
            user_id=1,
            event=_snapshot(has_key_pool=True),
            status=RegistrationStatus.CONFIRMED,
        )
        assert outcome.key_pool_exhausted
        assert _field(build_registration_embed(outcome), "Access key") == ON_SITE_ACCESS

    def test_no_key_field_without_pool(self):
        outcome = RegistrationOutcome(
            user_id=1, event=_snapshot(), status=RegistrationStatus.CONFIRMED
        )
        assert _field(build_registration_embed(outcome), "Access key") is None

    def test_waitlist_position_shown(self):
        outcome = RegistrationOutcome(
            user_id=1,
            event=_snapshot(),
            status=RegistrationStatus.WAITLIST,
            waitlist_position=3,
        )
        assert "#3" in build_registration_embed(outcome).description

    def test_promotion_embed_carries_key(self):
        promotion = Promotion(
            user_id=2, event=_snapshot(has_key_pool=True), promoted_at=NOW, access_key="K9"
        )
        assert "K9" in _field(build_promotion_embed(promotion), "Access key")

    def test_status_change_embed_per_status(self):
        for status in RegistrationStatus:
            embed = build_status_change_embed(StatusChange(
                user_id=1, event=_snapshot(), old_status=None, new_status=status
            ))
            assert "Launch Party" in embed.description

    def test_announcement_color_fallback(self):
        assert build_announcement_embed("T", "C", "#ff0000").color == discord.Color(0xFF0000)
        assert build_announcement_embed("T", "C", "nope").color == discord.Color.blurple()

    def test_event_stats_embed(self):
        stats = {
            "event_id": 7, "title": "Launch Party", "phase": "scheduled",
            "capacity": 4, "confirmed": 2, "waitlist": 0, "cancelled": 1,
            "completed": 0, "keys_total": 3, "keys_issued": 2,
            "free_slots": 2, "fill_rate": 0.5,
        }
        embed = build_event_stats_embed(stats)

        fields = {f.name: f.value for f in embed.fields}
        assert fields["Capacity"] == "4 (2 free)"
        assert fields["Access keys"] == "2/3 issued"
        assert embed.footer.text == "Fill rate 50%"

    def test_new_occurrence_embed(self):
        event = _snapshot(capacity=0, requirements=("telegram", "wallets"))
        embed = build_new_occurrence_embed(event)

        assert "Launch Party" in embed.description
        assert _field(embed, "Capacity") == "unlimited"
        assert _field(embed, "Requires") == "Telegram, Wallets"
        assert embed.footer.text == "Event #42"

    def test_new_occurrence_embed_without_requirements(self):
        assert _field(build_new_occurrence_embed(_snapshot()), "Requires") is None

    def test_event_list_shows_requirements(self):
        embed = build_event_list_embed(
            [_snapshot(requirements=("twitter",)), _snapshot()], "Synergy"
        )
        assert "Requires: Twitter" in embed.fields[0].value
        assert "Requires" not in embed.fields[1].value
