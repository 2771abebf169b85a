"""
synergy.bot.cogs.profile — Profile & Preference Commands
=========================================================

Slash commands for member self-service:
- /profile — social handles, wallets and participation stats
- /profile-update — set Telegram, Twitter or wallet details
- /notifications — toggle DM notification categories
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from synergy.database.engine import run_db
from synergy.services.embeds import build_profile_embed
from synergy.services.profile_service import (
    get_profile,
    set_notification_preferences,
    update_profile,
)

if TYPE_CHECKING:
    from synergy.bot.core import SynergyBot


class Profile(commands.Cog, name="Profile"):
    """Member profiles and notification preferences."""

    def __init__(self, bot: SynergyBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /profile
    # -------------------------------------------------------------------
    @app_commands.command(name="profile", description="View your (or another member's) profile.")
    @app_commands.describe(member="The member to look up (defaults to you)")
    async def profile(
        self, interaction: discord.Interaction, member: discord.Member | None = None
    ) -> None:
        target = member or interaction.user
        data = await run_db(get_profile, self.bot.engine, target.id)
        embed = build_profile_embed(data, target.display_name, target.display_avatar.url)
        embed.set_footer(text=self.bot.cfg.community_name)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /profile-update
    # -------------------------------------------------------------------
    @app_commands.command(name="profile-update", description="Update your profile details.")
    @app_commands.describe(
        telegram="Telegram handle, e.g. @synergy_fan",
        twitter="Twitter / X handle",
        wallets="Wallets as CHAIN ADDRESS, separated by ; (e.g. ETH 0x12ab...)",
    )
    async def profile_update(
        self,
        interaction: discord.Interaction,
        telegram: str | None = None,
        twitter: str | None = None,
        wallets: str | None = None,
    ) -> None:
        if telegram is None and twitter is None and wallets is None:
            await interaction.response.send_message(
                "❌ Provide at least one field to update.", ephemeral=True
            )
            return

        await run_db(
            update_profile,
            self.bot.engine,
            interaction.user.id,
            interaction.user.name,
            telegram=telegram,
            twitter=twitter,
            wallets=wallets,
        )
        changed = [
            name for name, value in
            (("Telegram", telegram), ("Twitter", twitter), ("Wallets", wallets))
            if value is not None
        ]
        await interaction.response.send_message(
            f"✅ Updated: {', '.join(changed)}", ephemeral=True
        )

    # -------------------------------------------------------------------
    # /notifications
    # -------------------------------------------------------------------
    @app_commands.command(
        name="notifications",
        description="Toggle which direct messages you receive.",
    )
    @app_commands.describe(
        setting="Which notification to toggle",
        enabled="Turn on (True) or off (False)",
    )
    @app_commands.choices(setting=[
        app_commands.Choice(name="Event Reminders", value="event_reminders"),
        app_commands.Choice(name="Waitlist Updates", value="waitlist_updates"),
        app_commands.Choice(name="All Direct Messages", value="direct_messages"),
    ])
    async def notifications(
        self, interaction: discord.Interaction, setting: str, enabled: bool
    ) -> None:
        prefs = await run_db(
            set_notification_preferences,
            self.bot.engine,
            interaction.user.id,
            interaction.user.name,
            **{setting: enabled},
        )
        lines = [
            f"{'✅' if value else '❌'} {name.replace('_', ' ').title()}"
            for name, value in prefs.items()
        ]
        await interaction.response.send_message("\n".join(lines), ephemeral=True)


async def setup(bot: SynergyBot) -> None:
    await bot.add_cog(Profile(bot))
