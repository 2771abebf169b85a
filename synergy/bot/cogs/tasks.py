"""
synergy.bot.cogs.tasks — Periodic Background Tasks
===================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Lifecycle** — every minute, reminder sweep then start sweep.
- **Closure** — every 5 minutes, completes ended events and announces the
  next occurrence of recurring ones.
- **Announcements** — every minute, posts due scheduled announcements.
- **Counter reconciliation** — weekly, repairs event counter drift.

Intervals come from the ``scheduler:`` block of config.yaml.  Every sweep
reads persisted state, so a restart simply resumes on the next tick.
Each loop logs its own failure and keeps running.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from synergy.database.engine import run_db
from synergy.services.announcement_service import (
    announce_new_occurrences,
    deliver_announcement,
    send_due_announcements,
)
from synergy.services.lifecycle_service import (
    run_closure_sweep,
    run_reminder_sweep,
    run_start_sweep,
)
from synergy.services.reconciliation_service import reconcile_counters

if TYPE_CHECKING:
    from synergy.bot.core import SynergyBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled lifecycle and maintenance tasks."""

    def __init__(self, bot: SynergyBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        """Apply configured intervals and start task loops."""
        cfg = self.bot.cfg
        self.lifecycle_loop.change_interval(seconds=cfg.reminder_interval_seconds)
        self.closure_loop.change_interval(seconds=cfg.closure_interval_seconds)
        self.announcement_loop.change_interval(seconds=cfg.announcement_interval_seconds)

        self.lifecycle_loop.start()
        self.closure_loop.start()
        self.announcement_loop.start()
        self.reconciliation_loop.start()

    async def cog_unload(self) -> None:
        """Cancel task loops on unload."""
        self.lifecycle_loop.cancel()
        self.closure_loop.cancel()
        self.announcement_loop.cancel()
        self.reconciliation_loop.cancel()

    # -------------------------------------------------------------------
    # Reminders + start notices
    # -------------------------------------------------------------------
    @tasks.loop(seconds=60)
    async def lifecycle_loop(self):
        try:
            await run_reminder_sweep(
                self.bot.engine,
                self.bot.notifier,
                window=self.bot.cfg.reminder_window,
            )
            await run_start_sweep(self.bot.engine, self.bot.notifier)
        except Exception:
            logger.exception("Lifecycle sweep failed", extra={"task": "lifecycle"})

    @lifecycle_loop.before_loop
    async def _wait_lifecycle(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Closure — completes ended events
    # -------------------------------------------------------------------
    @tasks.loop(seconds=300)
    async def closure_loop(self):
        try:
            report = await run_closure_sweep(self.bot.engine, self.bot.notifier)
            if report.events:
                logger.info("Closure task complete: %d event(s) closed", len(report.events))
            if report.spawned:
                await announce_new_occurrences(self.bot, report.spawned)
        except Exception:
            logger.exception("Closure sweep failed", extra={"task": "closure"})

    @closure_loop.before_loop
    async def _wait_closure(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Scheduled announcements
    # -------------------------------------------------------------------
    @tasks.loop(seconds=60)
    async def announcement_loop(self):
        try:
            await send_due_announcements(
                self.bot.engine, partial(deliver_announcement, self.bot)
            )
        except Exception:
            logger.exception("Announcement sweep failed", extra={"task": "announcements"})

    @announcement_loop.before_loop
    async def _wait_announcements(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Counter reconciliation — runs every 7 days
    # -------------------------------------------------------------------
    @tasks.loop(hours=168)  # 7 days
    async def reconciliation_loop(self):
        """Validate event counters against registrations and fix drift."""
        try:
            result = await run_db(reconcile_counters, self.bot.engine)
            logger.info(
                "Reconciliation task complete: checked=%d corrected=%d",
                result["checked"], result["corrected"],
            )
        except Exception:
            logger.exception("Reconciliation task failed", extra={"task": "reconciliation"})

    @reconciliation_loop.before_loop
    async def _wait_reconciliation(self):
        await self.bot.wait_until_ready()


async def setup(bot: SynergyBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
