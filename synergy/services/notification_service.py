"""
synergy.services.notification_service — Registrant Notifications
==================================================================

The engine and the sweeps talk to a :class:`Notifier`; the bot plugs in
:class:`DiscordNotifier`, tests plug in an ``AsyncMock``.

Preference gating (per user, defaults on):
    * ``direct_messages`` off → nothing is sent at all.
    * ``event_reminders`` → reminder, start and completion notices.
    * ``waitlist_updates`` → promotions and admin status changes.

Delivery is fire-and-forget from the engine's point of view:
:func:`dispatch_outcome` logs a failed delivery and moves on.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import discord

from synergy.database.engine import run_db
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
    build_promotion_embed,
    build_reminder_embed,
    build_start_embed,
    build_status_change_embed,
)
from synergy.services.profile_service import load_preferences

if TYPE_CHECKING:
    from synergy.bot.core import SynergyBot

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify_reminder(self, event: EventSnapshot, user_id: int) -> None: ...

    async def notify_started(self, event: EventSnapshot, user_id: int) -> None: ...

    async def notify_status_changed(self, change: StatusChange) -> None: ...

    async def notify_waitlist_promoted(self, promotion: Promotion) -> None: ...


class DiscordNotifier:
    """Sends notifications as direct-message embeds."""

    def __init__(self, bot: SynergyBot) -> None:
        self.bot = bot

    async def _allowed(self, user_id: int, category: str) -> bool:
        prefs = await run_db(load_preferences, self.bot.engine, user_id)
        if prefs is None:
            return True
        return prefs["direct_messages"] and prefs[category]

    async def _send(self, user_id: int, category: str, embed: discord.Embed) -> bool:
        if not await self._allowed(user_id, category):
            logger.debug("User %d opted out of %s DMs", user_id, category)
            return False

        user = self.bot.get_user(user_id) or await self.bot.fetch_user(user_id)
        try:
            await user.send(embed=embed)
        except discord.Forbidden:
            logger.info("User %d does not accept DMs", user_id)
            return False
        return True

    async def notify_reminder(self, event: EventSnapshot, user_id: int) -> None:
        await self._send(user_id, "event_reminders", build_reminder_embed(event))

    async def notify_started(self, event: EventSnapshot, user_id: int) -> None:
        await self._send(user_id, "event_reminders", build_start_embed(event))

    async def notify_status_changed(self, change: StatusChange) -> None:
        category = (
            "event_reminders"
            if change.new_status is RegistrationStatus.COMPLETED
            else "waitlist_updates"
        )
        await self._send(change.user_id, category, build_status_change_embed(change))

    async def notify_waitlist_promoted(self, promotion: Promotion) -> None:
        await self._send(promotion.user_id, "waitlist_updates", build_promotion_embed(promotion))


async def dispatch_outcome(
    notifier: Notifier, outcome: RegistrationOutcome | PromotionOutcome | CancellationOutcome,
) -> tuple[int, int]:
    """Deliver an engine outcome's notifications; returns ``(sent, failed)``."""
    sent = failed = 0

    for promotion in outcome.promotions:
        try:
            await notifier.notify_waitlist_promoted(promotion)
            sent += 1
        except Exception:
            failed += 1
            logger.exception(
                "Promotion notice to user %d for event %d failed",
                promotion.user_id, promotion.event.id,
            )

    for change in outcome.status_changes:
        try:
            await notifier.notify_status_changed(change)
            sent += 1
        except Exception:
            failed += 1
            logger.exception(
                "Status-change notice to user %d for event %d failed",
                change.user_id, change.event.id,
            )

    return sent, failed
