"""
synergy.services.announcement_service — Scheduled Channel Announcements
========================================================================

Admins queue an announcement with a due time; the announcement loop in
:mod:`synergy.bot.cogs.tasks` calls :func:`send_due_announcements` every
minute.  Pending rows live in the database, so nothing is lost on restart.

A failed delivery bumps ``failed_attempts``; after
``MAX_DELIVERY_ATTEMPTS`` the row is left unsent and no longer retried.

The same channel-post path announces new occurrences of recurring events
spawned by the closure sweep.

Embed construction lives in :mod:`synergy.services.embeds`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING

import discord
from discord.abc import Messageable
from sqlalchemy import Engine, select

from synergy.database.engine import get_session, run_db
from synergy.database.models import ScheduledAnnouncement
from synergy.engine.errors import AnnouncementNotFound
from synergy.engine.lifecycle import ensure_utc, utcnow
from synergy.engine.outcomes import EventSnapshot, SweepReport
from synergy.services.embeds import build_announcement_embed, build_new_occurrence_embed

if TYPE_CHECKING:
    from synergy.bot.core import SynergyBot

logger = logging.getLogger(__name__)

MAX_DELIVERY_ATTEMPTS = 3


# ---------------------------------------------------------------------------
# CRUD (sync — run via run_db)
# ---------------------------------------------------------------------------
def schedule_announcement(
    engine: Engine,
    *,
    guild_id: int,
    channel_id: int,
    title: str,
    content: str,
    scheduled_at: datetime,
    creator_id: int,
    color: str = "#0099ff",
) -> ScheduledAnnouncement:
    """Persist a pending announcement and return it detached."""
    with get_session(engine) as session:
        row = ScheduledAnnouncement(
            guild_id=guild_id,
            channel_id=channel_id,
            title=title,
            content=content,
            color=color,
            creator_id=creator_id,
            scheduled_at=scheduled_at,
        )
        session.add(row)
        session.flush()
        session.refresh(row)
        session.expunge(row)
        logger.info(
            "Scheduled announcement %d for channel %d at %s",
            row.id, channel_id, scheduled_at.isoformat(),
        )
        return row


def list_pending(engine: Engine, guild_id: int) -> list[ScheduledAnnouncement]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(ScheduledAnnouncement)
            .where(
                ScheduledAnnouncement.guild_id == guild_id,
                ScheduledAnnouncement.is_sent.is_(False),
            )
            .order_by(ScheduledAnnouncement.scheduled_at, ScheduledAnnouncement.id)
        ).all()
        for row in rows:
            session.expunge(row)
        return list(rows)


def cancel_announcement(engine: Engine, announcement_id: int, guild_id: int) -> None:
    """Delete a pending announcement of *guild_id*.

    Raises :class:`AnnouncementNotFound` for unknown, foreign or already
    sent announcements.
    """
    with get_session(engine) as session:
        row = session.get(ScheduledAnnouncement, announcement_id)
        if row is None or row.guild_id != guild_id or row.is_sent:
            raise AnnouncementNotFound(announcement_id)
        session.delete(row)
    logger.info("Cancelled announcement %d", announcement_id)


def _due_announcements(engine: Engine, now: datetime) -> list[ScheduledAnnouncement]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(ScheduledAnnouncement)
            .where(
                ScheduledAnnouncement.is_sent.is_(False),
                ScheduledAnnouncement.failed_attempts < MAX_DELIVERY_ATTEMPTS,
            )
            .order_by(ScheduledAnnouncement.scheduled_at, ScheduledAnnouncement.id)
        ).all()
        due = [row for row in rows if ensure_utc(row.scheduled_at) <= ensure_utc(now)]
        for row in due:
            session.expunge(row)
        return due


def _mark_sent(engine: Engine, announcement_id: int, now: datetime) -> None:
    with get_session(engine) as session:
        row = session.get(ScheduledAnnouncement, announcement_id)
        if row is not None:
            row.is_sent = True
            row.sent_at = now


def _mark_failed(engine: Engine, announcement_id: int) -> int:
    with get_session(engine) as session:
        row = session.get(ScheduledAnnouncement, announcement_id)
        if row is None:
            return 0
        row.failed_attempts += 1
        return row.failed_attempts


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------
async def post_to_channel(bot: SynergyBot, channel_id: int, embed: discord.Embed) -> None:
    """Send *embed* to a channel; raises ``LookupError`` if it cannot receive messages."""
    channel = bot.get_channel(channel_id)
    if channel is None:
        channel = await bot.fetch_channel(channel_id)
    if not isinstance(channel, Messageable):
        raise LookupError(f"Channel {channel_id} cannot receive messages")
    await channel.send(embed=embed)


async def deliver_announcement(bot: SynergyBot, announcement: ScheduledAnnouncement) -> None:
    """Post *announcement* to its channel; raises if the channel is gone."""
    embed = build_announcement_embed(
        announcement.title,
        announcement.content,
        announcement.color,
        community_name=bot.cfg.community_name,
    )
    await post_to_channel(bot, announcement.channel_id, embed)


async def announce_new_occurrences(bot: SynergyBot, events: list[EventSnapshot]) -> int:
    """Post each freshly spawned recurring event to the announce channel.

    Returns the number posted.  Without an ``announce_channel_id`` nothing
    is sent.
    """
    channel_id = bot.cfg.announce_channel_id
    if channel_id is None:
        return 0
    posted = 0
    for event in events:
        try:
            await post_to_channel(bot, channel_id, build_new_occurrence_embed(event))
            posted += 1
        except Exception:
            logger.exception(
                "Posting new occurrence %d to channel %d failed",
                event.id, channel_id,
                extra={"task": "closure"},
            )
    return posted


async def send_due_announcements(
    engine: Engine,
    send: Callable[[ScheduledAnnouncement], Awaitable[None]],
    *,
    now: datetime | None = None,
) -> SweepReport:
    """Deliver every pending announcement whose time has come."""
    now = now or utcnow()
    report = SweepReport(sweep="announcement")

    for announcement in await run_db(_due_announcements, engine, now):
        try:
            await send(announcement)
        except Exception:
            report.failed += 1
            attempts = await run_db(_mark_failed, engine, announcement.id)
            logger.exception(
                "Announcement %d delivery failed (attempt %d/%d)",
                announcement.id, attempts, MAX_DELIVERY_ATTEMPTS,
                extra={"task": "announcements"},
            )
            continue
        await run_db(_mark_sent, engine, announcement.id, now)
        report.events.append(announcement.id)
        report.notified += 1

    if report.notified or report.failed:
        logger.info(
            "Announcement sweep: %d sent, %d failed", report.notified, report.failed
        )
    return report
