"""
synergy.bot.cogs.admin — Admin Slash Commands
==============================================

Discord slash commands for server admins:
- /event-create, /event-edit, /event-cancel, /event-keys-add — event and key-pool setup
- /event-promote-all, /event-add-participant, /event-remove-participant
  — manual participant management
- /event-stats — per-event or community-wide numbers
- /template-create, /template-save, /template-list, /template-delete — event templates
- /announce-schedule, /announce-list, /announce-cancel — timed posts

All commands require the configured admin_role_id.
Admin sees ephemeral confirmation; affected members are told by DM
through the bot's notifier.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from synergy.bot.cogs.events import event_autocomplete
from synergy.database.engine import run_db
from synergy.database.models import RecurrenceFrequency
from synergy.engine.errors import PROFILE_FIELD_LABELS, InvalidEvent
from synergy.engine.lifecycle import ensure_utc
from synergy.engine.recurrence import RecurrenceRule
from synergy.services import (
    admin_service,
    analytics_service,
    announcement_service,
    template_service,
)
from synergy.services.embeds import (
    build_community_stats_embed,
    build_event_stats_embed,
)
from synergy.services.notification_service import dispatch_outcome

if TYPE_CHECKING:
    from synergy.bot.core import SynergyBot

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M"
_HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")
_KEY_SPLIT_RE = re.compile(r"[\s,;]+")


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: SynergyBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


def parse_when(text: str) -> datetime:
    """Parse ``YYYY-MM-DD HH:MM`` (UTC) as typed into a slash command."""
    try:
        return datetime.strptime(text.strip(), DATE_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        raise InvalidEvent(f"Use the format YYYY-MM-DD HH:MM (UTC), got {text!r}.") from None


def split_keys(text: str | None) -> list[str]:
    """Split pasted keys on whitespace, commas or semicolons."""
    if not text:
        return []
    return [key for key in _KEY_SPLIT_RE.split(text) if key]


REPEAT_CHOICES = [
    app_commands.Choice(name=frequency.value.capitalize(), value=frequency.value)
    for frequency in RecurrenceFrequency
]


def build_recurrence(
    repeat: str | None,
    every: int = 1,
    until: str | None = None,
    occurrences: int | None = None,
) -> RecurrenceRule | None:
    """Turn the ``repeat*`` options of /event-create into a rule.

    *occurrences* counts the event being created, so one occurrence means
    nothing is ever spawned.
    """
    if repeat is None:
        if until or occurrences:
            raise InvalidEvent("Pick a repeat frequency to use repeat_until or occurrences.")
        return None
    return RecurrenceRule(
        frequency=RecurrenceFrequency(repeat),
        interval=every,
        until=parse_when(until) if until else None,
        remaining=occurrences - 1 if occurrences else None,
    )


async def template_autocomplete(
    interaction: discord.Interaction, current: str
) -> list[app_commands.Choice[str]]:
    bot: SynergyBot = interaction.client  # type: ignore[assignment]
    templates = await run_db(
        template_service.list_templates, bot.engine, interaction.guild_id or 0
    )
    needle = current.lower()
    return [
        app_commands.Choice(name=t.name, value=t.name)
        for t in templates
        if needle in t.name.lower()
    ][:25]


class Admin(commands.Cog, name="Admin"):
    """Server administration commands for Synergy."""

    def __init__(self, bot: SynergyBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /event-create
    # -------------------------------------------------------------------
    @app_commands.command(name="event-create", description="Create a new event.")
    @app_commands.describe(
        start="Start time, YYYY-MM-DD HH:MM (UTC)",
        title="Event title (defaults to the template's)",
        end="End time, YYYY-MM-DD HH:MM (UTC; defaults to the template's duration)",
        template="Fill blank options from this template",
        capacity="Confirmed spots (0 = unlimited)",
        description="What the event is about",
        location="Where it happens (default Online)",
        rewards="Rewards for participants",
        keys="Access keys, separated by spaces or commas",
        require_telegram="Members must set a Telegram handle to register",
        require_twitter="Members must set a Twitter handle to register",
        require_wallets="Members must add a wallet to register",
        repeat="Create the next occurrence when this one ends",
        repeat_every="Repeat every N days/weeks/months (default 1)",
        repeat_until="Last possible start, YYYY-MM-DD HH:MM (UTC)",
        occurrences="Total number of occurrences, this one included",
    )
    @app_commands.choices(repeat=REPEAT_CHOICES)
    @app_commands.autocomplete(template=template_autocomplete)
    @is_admin()
    async def event_create(
        self,
        interaction: discord.Interaction,
        start: str,
        title: str | None = None,
        end: str | None = None,
        template: str | None = None,
        capacity: app_commands.Range[int, 0] | None = None,
        description: str | None = None,
        location: str | None = None,
        rewards: str | None = None,
        keys: str | None = None,
        require_telegram: bool | None = None,
        require_twitter: bool | None = None,
        require_wallets: bool | None = None,
        repeat: app_commands.Choice[str] | None = None,
        repeat_every: app_commands.Range[int, 1] = 1,
        repeat_until: str | None = None,
        occurrences: app_commands.Range[int, 1] | None = None,
    ) -> None:
        """Create an event with an optional access-key pool."""
        pool = split_keys(keys)
        recurrence = build_recurrence(
            repeat.value if repeat else None, repeat_every, repeat_until, occurrences
        )
        requirements = {
            "require_telegram": require_telegram,
            "require_twitter": require_twitter,
            "require_wallets": require_wallets,
        }

        if template:
            event = await run_db(
                template_service.create_event_from_template,
                self.bot.engine,
                actor_id=interaction.user.id,
                guild_id=interaction.guild_id or 0,
                name=template,
                start_date=parse_when(start),
                end_date=parse_when(end) if end else None,
                title=title,
                description=description,
                location=location,
                rewards=rewards,
                capacity=capacity,
                access_keys=pool,
                recurrence=recurrence,
                **requirements,
            )
        else:
            if not title or not end:
                raise InvalidEvent("Give a title and an end time, or pick a template.")
            event = await run_db(
                admin_service.create_event,
                self.bot.engine,
                actor_id=interaction.user.id,
                guild_id=interaction.guild_id or 0,
                title=title,
                start_date=parse_when(start),
                end_date=parse_when(end),
                capacity=capacity or 0,
                description=description or "",
                location=location or "Online",
                rewards=rewards,
                access_keys=pool,
                recurrence=recurrence,
                **{key: bool(value) for key, value in requirements.items()},
            )

        embed = discord.Embed(
            title="\U0001f4c5 Event Created",
            description=f"**#{event.id} {event.title}**\n{description or ''}",
            color=discord.Color.green(),
        )
        embed.add_field(
            name="Starts", value=discord.utils.format_dt(ensure_utc(event.start_date)), inline=True
        )
        embed.add_field(
            name="Ends", value=discord.utils.format_dt(ensure_utc(event.end_date)), inline=True
        )
        embed.add_field(name="Capacity", value=str(event.capacity or "unlimited"), inline=True)
        embed.add_field(name="Access keys", value=str(len(pool)), inline=True)
        if event.requirements:
            embed.add_field(
                name="Requires",
                value=", ".join(PROFILE_FIELD_LABELS[name] for name in event.requirements),
                inline=True,
            )
        if recurrence is not None:
            embed.add_field(name="Repeats", value=recurrence.describe(), inline=True)
        if template:
            embed.set_footer(text=f"From template {template}")
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /event-edit
    # -------------------------------------------------------------------
    @app_commands.command(name="event-edit", description="Edit an event's details.")
    @app_commands.describe(
        event="The event to edit",
        title="New title",
        start="New start time, YYYY-MM-DD HH:MM (UTC)",
        end="New end time, YYYY-MM-DD HH:MM (UTC)",
        capacity="New capacity (0 = unlimited)",
        location="New location",
        require_telegram="Require a Telegram handle to register",
        require_twitter="Require a Twitter handle to register",
        require_wallets="Require a wallet to register",
    )
    @app_commands.autocomplete(event=event_autocomplete)
    @is_admin()
    async def event_edit(
        self,
        interaction: discord.Interaction,
        event: int,
        title: str | None = None,
        start: str | None = None,
        end: str | None = None,
        capacity: app_commands.Range[int, 0] | None = None,
        location: str | None = None,
        require_telegram: bool | None = None,
        require_twitter: bool | None = None,
        require_wallets: bool | None = None,
    ) -> None:
        changes = {
            "title": title,
            "start_date": parse_when(start) if start else None,
            "end_date": parse_when(end) if end else None,
            "capacity": capacity,
            "location": location,
            "require_telegram": require_telegram,
            "require_twitter": require_twitter,
            "require_wallets": require_wallets,
        }
        changes = {key: value for key, value in changes.items() if value is not None}
        if not changes:
            await interaction.response.send_message(
                "❌ Provide at least one field to change.", ephemeral=True
            )
            return

        snapshot = await run_db(
            admin_service.update_event,
            self.bot.engine,
            event,
            actor_id=interaction.user.id,
            **changes,
        )
        await interaction.response.send_message(
            f"✏️ **#{snapshot.id} {snapshot.title}** updated: {', '.join(sorted(changes))}.",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /event-cancel
    # -------------------------------------------------------------------
    @app_commands.command(name="event-cancel", description="Cancel an event for everyone.")
    @app_commands.describe(event="The event to cancel", reason="Shown in the audit log")
    @app_commands.autocomplete(event=event_autocomplete)
    @is_admin()
    async def event_cancel(
        self, interaction: discord.Interaction, event: int, reason: str | None = None
    ) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        outcome = await run_db(
            admin_service.cancel_event,
            self.bot.engine,
            event,
            actor_id=interaction.user.id,
            reason=reason,
        )
        await interaction.followup.send(
            f"\U0001f6ab **{outcome.event.title}** cancelled; "
            f"{len(outcome.status_changes)} registration(s) released.",
            ephemeral=True,
        )
        await dispatch_outcome(self.bot.notifier, outcome)

    # -------------------------------------------------------------------
    # /event-keys-add
    # -------------------------------------------------------------------
    @app_commands.command(name="event-keys-add", description="Add access keys to an event.")
    @app_commands.describe(event="The event", keys="Keys separated by spaces or commas")
    @app_commands.autocomplete(event=event_autocomplete)
    @is_admin()
    async def event_keys_add(self, interaction: discord.Interaction, event: int, keys: str) -> None:
        added = await run_db(
            admin_service.add_keys,
            self.bot.engine,
            event,
            split_keys(keys),
            actor_id=interaction.user.id,
        )
        await interaction.response.send_message(
            f"\U0001f511 Added {added} new key(s) to event #{event}.", ephemeral=True
        )

    # -------------------------------------------------------------------
    # Participant management
    # -------------------------------------------------------------------
    @app_commands.command(
        name="event-promote-all",
        description="Promote waitlisted members until the event is full.",
    )
    @app_commands.describe(event="The event")
    @app_commands.autocomplete(event=event_autocomplete)
    @is_admin()
    async def event_promote_all(self, interaction: discord.Interaction, event: int) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        outcome = await run_db(
            admin_service.promote_all, self.bot.engine, event, actor_id=interaction.user.id
        )
        promoted = ", ".join(f"<@{uid}>" for uid in outcome.user_ids) or "nobody"
        await interaction.followup.send(
            f"⬆️ Promoted {len(outcome.promotions)} member(s): {promoted}", ephemeral=True
        )
        await dispatch_outcome(self.bot.notifier, outcome)

    @app_commands.command(
        name="event-add-participant",
        description="Confirm a member directly, skipping the waitlist.",
    )
    @app_commands.describe(event="The event", member="The member to add")
    @app_commands.autocomplete(event=event_autocomplete)
    @is_admin()
    async def event_add_participant(
        self, interaction: discord.Interaction, event: int, member: discord.Member
    ) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        outcome = await run_db(
            admin_service.add_participant,
            self.bot.engine,
            event,
            member.id,
            actor_id=interaction.user.id,
            username=member.name,
        )
        key_note = " (key issued)" if outcome.access_key else ""
        await interaction.followup.send(
            f"✅ {member.mention} confirmed for **{outcome.event.title}**{key_note}.",
            ephemeral=True,
        )
        await dispatch_outcome(self.bot.notifier, outcome)

    @app_commands.command(
        name="event-remove-participant",
        description="Remove a member's registration from an event.",
    )
    @app_commands.describe(
        event="The event",
        member="The member to remove",
        reason="Shown in the audit log",
        notify="DM the member about the removal (default yes)",
    )
    @app_commands.autocomplete(event=event_autocomplete)
    @is_admin()
    async def event_remove_participant(
        self,
        interaction: discord.Interaction,
        event: int,
        member: discord.Member,
        reason: str | None = None,
        notify: bool = True,
    ) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        outcome = await run_db(
            admin_service.remove_participant,
            self.bot.engine,
            event,
            member.id,
            actor_id=interaction.user.id,
            reason=reason,
            notify_user=notify,
        )
        promoted = f" <@{outcome.promotions[0].user_id}> moved up." if outcome.promotions else ""
        await interaction.followup.send(
            f"\U0001f5d1 {member.mention} removed from **{outcome.event.title}**.{promoted}",
            ephemeral=True,
        )
        await dispatch_outcome(self.bot.notifier, outcome)

    # -------------------------------------------------------------------
    # /event-stats
    # -------------------------------------------------------------------
    @app_commands.command(name="event-stats", description="Registration numbers.")
    @app_commands.describe(event="The event (omit for community totals)")
    @app_commands.autocomplete(event=event_autocomplete)
    @is_admin()
    async def event_stats(
        self, interaction: discord.Interaction, event: int | None = None
    ) -> None:
        if event is None:
            summary = await run_db(
                analytics_service.community_summary, self.bot.engine, interaction.guild_id or 0
            )
            embed = build_community_stats_embed(summary, self.bot.cfg.community_name)
        else:
            stats = await run_db(analytics_service.event_stats, self.bot.engine, event)
            embed = build_event_stats_embed(stats)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # Event templates
    # -------------------------------------------------------------------
    @app_commands.command(name="template-create", description="Save reusable event defaults.")
    @app_commands.describe(
        name="Short template name",
        title="Title of events created from it",
        duration_minutes="Default event length in minutes",
        capacity="Confirmed spots (0 = unlimited)",
        description="What the event is about",
        location="Where it happens",
        rewards="Rewards for participants",
        require_telegram="Members must set a Telegram handle",
        require_twitter="Members must set a Twitter handle",
        require_wallets="Members must add a wallet",
    )
    @is_admin()
    async def template_create(
        self,
        interaction: discord.Interaction,
        name: str,
        title: str,
        duration_minutes: app_commands.Range[int, 1] = 120,
        capacity: app_commands.Range[int, 0] = 0,
        description: str = "",
        location: str = "Online",
        rewards: str | None = None,
        require_telegram: bool = False,
        require_twitter: bool = False,
        require_wallets: bool = False,
    ) -> None:
        template = await run_db(
            template_service.create_template,
            self.bot.engine,
            actor_id=interaction.user.id,
            guild_id=interaction.guild_id or 0,
            name=name,
            title=title,
            description=description,
            location=location,
            rewards=rewards,
            capacity=capacity,
            duration_minutes=duration_minutes,
            require_telegram=require_telegram,
            require_twitter=require_twitter,
            require_wallets=require_wallets,
        )
        await interaction.response.send_message(
            f"\U0001f4cb Template **{template.name}** saved. "
            f"Use it with `/event-create template:{template.name}`.",
            ephemeral=True,
        )

    @app_commands.command(
        name="template-save", description="Save an event's settings as a template."
    )
    @app_commands.describe(event="The event to copy", name="Short template name")
    @app_commands.autocomplete(event=event_autocomplete)
    @is_admin()
    async def template_save(self, interaction: discord.Interaction, event: int, name: str) -> None:
        template = await run_db(
            template_service.save_event_as_template,
            self.bot.engine,
            event,
            actor_id=interaction.user.id,
            name=name,
        )
        await interaction.response.send_message(
            f"\U0001f4cb Event #{event} saved as template **{template.name}** (keys not copied).",
            ephemeral=True,
        )

    @app_commands.command(name="template-list", description="List event templates.")
    @is_admin()
    async def template_list(self, interaction: discord.Interaction) -> None:
        templates = await run_db(
            template_service.list_templates, self.bot.engine, interaction.guild_id or 0
        )
        if not templates:
            await interaction.response.send_message("No templates yet.", ephemeral=True)
            return

        embed = discord.Embed(
            title="\U0001f4cb Event Templates",
            description="\n".join(
                f"**{t.name}** · {t.title} · {t.duration_minutes} min · "
                f"capacity {t.capacity or 'unlimited'}"
                for t in templates
            ),
            color=discord.Color.blurple(),
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="template-delete", description="Delete an event template.")
    @app_commands.describe(name="The template to delete")
    @app_commands.autocomplete(name=template_autocomplete)
    @is_admin()
    async def template_delete(self, interaction: discord.Interaction, name: str) -> None:
        await run_db(
            template_service.delete_template,
            self.bot.engine,
            interaction.guild_id or 0,
            name,
            actor_id=interaction.user.id,
        )
        await interaction.response.send_message(
            f"\U0001f5d1 Template **{name}** deleted.", ephemeral=True
        )

    # -------------------------------------------------------------------
    # Scheduled announcements
    # -------------------------------------------------------------------
    @app_commands.command(
        name="announce-schedule",
        description="Schedule an announcement for later.",
    )
    @app_commands.describe(
        title="Announcement title",
        content="Announcement text",
        when="Send time, YYYY-MM-DD HH:MM (UTC)",
        channel="Target channel (defaults to the configured announce channel)",
        color="Embed colour as #RRGGBB",
    )
    @is_admin()
    async def announce_schedule(
        self,
        interaction: discord.Interaction,
        title: str,
        content: str,
        when: str,
        channel: discord.TextChannel | None = None,
        color: str = "#0099ff",
    ) -> None:
        channel_id = channel.id if channel else self.bot.cfg.announce_channel_id
        if channel_id is None:
            await interaction.response.send_message(
                "❌ No channel given and no announce_channel_id configured.", ephemeral=True
            )
            return
        if not _HEX_COLOR_RE.match(color):
            await interaction.response.send_message(
                "❌ Colour must look like #0099ff.", ephemeral=True
            )
            return

        scheduled_at = parse_when(when)
        row = await run_db(
            announcement_service.schedule_announcement,
            self.bot.engine,
            guild_id=interaction.guild_id or 0,
            channel_id=channel_id,
            title=title,
            content=content,
            scheduled_at=scheduled_at,
            creator_id=interaction.user.id,
            color=color,
        )
        await interaction.response.send_message(
            f"\U0001f4e3 Announcement #{row.id} scheduled for "
            f"{discord.utils.format_dt(scheduled_at)} in <#{channel_id}>.",
            ephemeral=True,
        )

    @app_commands.command(name="announce-list", description="List pending announcements.")
    @is_admin()
    async def announce_list(self, interaction: discord.Interaction) -> None:
        rows = await run_db(
            announcement_service.list_pending, self.bot.engine, interaction.guild_id or 0
        )
        if not rows:
            await interaction.response.send_message("No pending announcements.", ephemeral=True)
            return

        lines = [
            f"**#{row.id}** {row.title} · <#{row.channel_id}> · "
            f"{discord.utils.format_dt(ensure_utc(row.scheduled_at))}"
            + (f" · {row.failed_attempts} failed" if row.failed_attempts else "")
            for row in rows
        ]
        embed = discord.Embed(
            title="\U0001f4e3 Pending Announcements",
            description="\n".join(lines),
            color=discord.Color.blurple(),
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="announce-cancel", description="Cancel a pending announcement.")
    @app_commands.describe(announcement_id="Id shown by /announce-list")
    @is_admin()
    async def announce_cancel(self, interaction: discord.Interaction, announcement_id: int) -> None:
        await run_db(
            announcement_service.cancel_announcement,
            self.bot.engine,
            announcement_id,
            interaction.guild_id or 0,
        )
        await interaction.response.send_message(
            f"\U0001f5d1 Announcement #{announcement_id} cancelled.", ephemeral=True
        )


async def setup(bot: SynergyBot) -> None:
    await bot.add_cog(Admin(bot))
