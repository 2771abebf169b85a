"""
synergy.bot.cogs.events — Event Registration Commands
======================================================

Slash commands for members:
- /events — upcoming events of this server
- /register — take a confirmed spot (offers the waitlist when full)
- /waitlist-join, /waitlist-leave — manage a place in the queue
- /cancel-registration — give a spot (and its access key) back
- /my-registrations — confirmed and waitlisted events

Replies are ephemeral.  Promotions triggered by a cancellation are
delivered afterwards as DMs through the bot's notifier.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from synergy.bot.core import send_ephemeral
from synergy.database.engine import run_db
from synergy.services import analytics_service, waitlist_service
from synergy.services.embeds import (
    build_event_list_embed,
    build_my_registrations_embed,
    build_registration_embed,
)
from synergy.services.notification_service import dispatch_outcome

if TYPE_CHECKING:
    from synergy.bot.core import SynergyBot

logger = logging.getLogger(__name__)


async def event_autocomplete(
    interaction: discord.Interaction, current: str
) -> list[app_commands.Choice[int]]:
    """Suggest upcoming events of the current guild by id or title."""
    bot: SynergyBot = interaction.client  # type: ignore[assignment]
    events = await run_db(
        analytics_service.list_upcoming_events, bot.engine, interaction.guild_id or 0
    )
    needle = current.lower()
    return [
        app_commands.Choice(name=f"#{e.id} {e.title}"[:100], value=e.id)
        for e in events
        if needle in e.title.lower() or needle == str(e.id)
    ][:25]


class Events(commands.Cog, name="Events"):
    """Event listing, registration and waitlist commands."""

    def __init__(self, bot: SynergyBot) -> None:
        self.bot = bot

    async def _run(
        self, interaction: discord.Interaction, operation, event_id: int, **kwargs
    ) -> None:
        """Shared flow: defer, run the engine op, reply, then fan out DMs."""
        await interaction.response.defer(ephemeral=True, thinking=True)
        outcome = await run_db(
            operation, self.bot.engine, interaction.user.id, event_id, **kwargs
        )
        await send_ephemeral(interaction, embed=build_registration_embed(outcome))
        await dispatch_outcome(self.bot.notifier, outcome)

    # -------------------------------------------------------------------
    # /events
    # -------------------------------------------------------------------
    @app_commands.command(name="events", description="List upcoming events.")
    async def events(self, interaction: discord.Interaction) -> None:
        events = await run_db(
            analytics_service.list_upcoming_events,
            self.bot.engine,
            interaction.guild_id or 0,
        )
        embed = build_event_list_embed(events, self.bot.cfg.community_name)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /register
    # -------------------------------------------------------------------
    @app_commands.command(name="register", description="Register for an event.")
    @app_commands.describe(event="The event to register for")
    @app_commands.autocomplete(event=event_autocomplete)
    async def register(self, interaction: discord.Interaction, event: int) -> None:
        await self._run(
            interaction, waitlist_service.register, event, username=interaction.user.name
        )

    # -------------------------------------------------------------------
    # /waitlist-join, /waitlist-leave
    # -------------------------------------------------------------------
    @app_commands.command(name="waitlist-join", description="Join the waitlist of a full event.")
    @app_commands.describe(event="The event whose waitlist to join")
    @app_commands.autocomplete(event=event_autocomplete)
    async def waitlist_join(self, interaction: discord.Interaction, event: int) -> None:
        await self._run(
            interaction, waitlist_service.add_to_waitlist, event, username=interaction.user.name
        )

    @app_commands.command(name="waitlist-leave", description="Leave an event's waitlist.")
    @app_commands.describe(event="The event whose waitlist to leave")
    @app_commands.autocomplete(event=event_autocomplete)
    async def waitlist_leave(self, interaction: discord.Interaction, event: int) -> None:
        await self._run(interaction, waitlist_service.remove_from_waitlist, event)

    # -------------------------------------------------------------------
    # /cancel-registration
    # -------------------------------------------------------------------
    @app_commands.command(
        name="cancel-registration",
        description="Cancel your registration or waitlist spot.",
    )
    @app_commands.describe(event="The event to cancel")
    @app_commands.autocomplete(event=event_autocomplete)
    async def cancel_registration(self, interaction: discord.Interaction, event: int) -> None:
        await self._run(interaction, waitlist_service.cancel, event)

    # -------------------------------------------------------------------
    # /my-registrations
    # -------------------------------------------------------------------
    @app_commands.command(
        name="my-registrations",
        description="Show your confirmed and waitlisted events.",
    )
    async def my_registrations(self, interaction: discord.Interaction) -> None:
        rows = await run_db(
            analytics_service.user_registrations, self.bot.engine, interaction.user.id
        )
        await interaction.response.send_message(
            embed=build_my_registrations_embed(rows), ephemeral=True
        )


async def setup(bot: SynergyBot) -> None:
    await bot.add_cog(Events(bot))
