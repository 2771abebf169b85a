"""
synergy.bot.core — Bot Instance & Cog Loader
=============================================

Defines :class:`SynergyBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``), DB engine (``bot.engine``) and
   the DM notifier (``bot.notifier``) so every Cog can reach them.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
4. Turns command errors into ephemeral replies: a
   :class:`~synergy.engine.errors.SynergyError` shows its
   ``user_message``; anything else is logged and gets a generic reply.
5. Throttles slash commands per member through :class:`SynergyTree`.
"""

from __future__ import annotations

import logging
import os

import discord
from discord import app_commands
from discord.ext import commands
from sqlalchemy import Engine

from synergy.config import SynergyConfig
from synergy.engine.errors import SynergyError
from synergy.services.notification_service import DiscordNotifier
from synergy.services.throttle import CommandThrottle

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "synergy.bot.cogs.events",
    "synergy.bot.cogs.profile",
    "synergy.bot.cogs.admin",
    "synergy.bot.cogs.tasks",
]

GENERIC_ERROR = "Something went wrong. Please try again later."


class SynergyTree(app_commands.CommandTree):
    """Command tree that rate-limits slash commands per member."""

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.type is not discord.InteractionType.application_command:
            return True
        throttle: CommandThrottle | None = getattr(self.client, "throttle", None)
        if throttle is None or interaction.command is None:
            return True

        name = interaction.command.qualified_name
        if throttle.is_allowed(interaction.user.id, name):
            return True
        wait = throttle.retry_after(interaction.user.id, name)
        await send_ephemeral(
            interaction, f"⏳ Slow down! You can use /{name} again in {wait}s."
        )
        return False


class SynergyBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`SynergyConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: SynergyConfig, engine: Engine) -> None:
        # Slash commands and DMs only; no privileged intents needed.
        intents = discord.Intents.default()
        intents.members = False
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} events bot",
            tree_cls=SynergyTree,
        )

        self.cfg = cfg
        self.engine = engine
        self.notifier = DiscordNotifier(self)
        self.throttle = CommandThrottle(
            max_per_window=cfg.rate_limit_max_commands,
            window=cfg.rate_limit_window_seconds,
        )
        self.tree.error(self.on_app_command_error)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Called once before the bot connects to Discord.

        If any extension fails to load, we log the error but keep going.
        """
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        await super().close()

    # -----------------------------------------------------------------------
    # Error replies
    # -----------------------------------------------------------------------
    async def on_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        original = getattr(error, "original", error)

        if isinstance(original, SynergyError):
            message = f"❌ {original.user_message}"
        elif isinstance(error, app_commands.CheckFailure):
            message = "🔒 You need the Admin role to use this command."
        else:
            command = interaction.command.qualified_name if interaction.command else "?"
            logger.exception("Unhandled error in /%s", command, exc_info=original)
            message = f"❌ {GENERIC_ERROR}"

        await send_ephemeral(interaction, message)


async def send_ephemeral(
    interaction: discord.Interaction,
    content: str | None = None,
    *,
    embed: discord.Embed | None = None,
) -> None:
    """Reply ephemerally whether or not the interaction was deferred."""
    kwargs = {"ephemeral": True}
    if content is not None:
        kwargs["content"] = content
    if embed is not None:
        kwargs["embed"] = embed
    if interaction.response.is_done():
        await interaction.followup.send(**kwargs)
    else:
        await interaction.response.send_message(**kwargs)
