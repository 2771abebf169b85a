"""
synergy.services.embeds — Discord embed builders
=================================================

All embed construction lives here so the notifier and cogs only need to
supply data — no layout concerns.
"""

from __future__ import annotations

from datetime import datetime

import discord

from synergy.database.models import RegistrationStatus
from synergy.engine.errors import PROFILE_FIELD_LABELS
from synergy.engine.lifecycle import ensure_utc
from synergy.engine.outcomes import (
    EventSnapshot,
    Promotion,
    RegistrationOutcome,
    StatusChange,
)

ON_SITE_ACCESS = "No access key was available. Access will be granted on-site."

_STATUS_COLORS = {
    RegistrationStatus.CONFIRMED: discord.Color.green(),
    RegistrationStatus.WAITLIST: discord.Color.orange(),
    RegistrationStatus.CANCELLED: discord.Color.red(),
    RegistrationStatus.COMPLETED: discord.Color.blurple(),
}


def _when(value: datetime, style: str = "f") -> str:
    return discord.utils.format_dt(ensure_utc(value), style=style)


def _capacity_line(event: EventSnapshot) -> str:
    if event.capacity == 0:
        return f"{event.registrations_count} registered (no limit)"
    return f"{event.registrations_count}/{event.capacity} registered"


def _add_event_fields(embed: discord.Embed, event: EventSnapshot) -> None:
    embed.add_field(name="Starts", value=_when(event.start_date), inline=True)
    embed.add_field(name="Ends", value=_when(event.end_date), inline=True)
    embed.add_field(name="Location", value=event.location, inline=True)


def _requirements_line(event: EventSnapshot) -> str:
    return ", ".join(PROFILE_FIELD_LABELS[name] for name in event.requirements)


def _add_key_field(embed: discord.Embed, event: EventSnapshot, key: str | None) -> None:
    if key:
        embed.add_field(name="Access key", value=f"||`{key}`||", inline=False)
    elif event.has_key_pool:
        embed.add_field(name="Access key", value=ON_SITE_ACCESS, inline=False)


# ---------------------------------------------------------------------------
# Command replies
# ---------------------------------------------------------------------------
def build_registration_embed(outcome: RegistrationOutcome) -> discord.Embed:
    """Ephemeral reply for /register, /waitlist-join, /waitlist-leave and
    /cancel-registration."""
    event = outcome.event

    if outcome.waitlist_offered:
        embed = discord.Embed(
            title="⏳ Event Full",
            description=(
                f"**{event.title}** is full ({_capacity_line(event)}).\n"
                "Use `/waitlist-join` to get in line for the next free spot."
            ),
            color=discord.Color.orange(),
        )
        embed.add_field(name="Waitlist", value=f"{event.waitlist_count} waiting", inline=True)
        return embed

    if outcome.status is RegistrationStatus.CONFIRMED:
        embed = discord.Embed(
            title="✅ Registered",
            description=f"You're in for **{event.title}**!",
            color=_STATUS_COLORS[RegistrationStatus.CONFIRMED],
        )
        _add_event_fields(embed, event)
        _add_key_field(embed, event, outcome.access_key)
    elif outcome.status is RegistrationStatus.WAITLIST:
        verb = "are already" if outcome.already_waitlisted else "joined"
        embed = discord.Embed(
            title="\U0001f4cb Waitlist",
            description=(
                f"You {verb} on the waitlist for **{event.title}** "
                f"at position **#{outcome.waitlist_position}**."
            ),
            color=_STATUS_COLORS[RegistrationStatus.WAITLIST],
        )
    elif outcome.status is RegistrationStatus.CANCELLED:
        embed = discord.Embed(
            title="❌ Registration Cancelled",
            description=f"Your registration for **{event.title}** was cancelled.",
            color=_STATUS_COLORS[RegistrationStatus.CANCELLED],
        )
        if outcome.reclaimed_key:
            embed.add_field(
                name="Access key",
                value="Your access key was returned to the pool.",
                inline=False,
            )
    else:
        embed = discord.Embed(
            title="\U0001f44b Left Waitlist",
            description=f"You left the waitlist for **{event.title}**.",
            color=discord.Color.light_grey(),
        )

    embed.set_footer(text=f"Event #{event.id}")
    return embed


def build_event_list_embed(events: list[EventSnapshot], community_name: str) -> discord.Embed:
    """Upcoming and running events for /events."""
    embed = discord.Embed(
        title=f"\U0001f4c5 {community_name} Events",
        color=discord.Color.blurple(),
    )
    if not events:
        embed.description = "No upcoming events right now."
        return embed

    for event in events[:25]:
        waitlist = f" · {event.waitlist_count} waiting" if event.waitlist_count else ""
        requires = f"\nRequires: {_requirements_line(event)}" if event.requirements else ""
        embed.add_field(
            name=f"#{event.id} · {event.title}",
            value=(
                f"{_when(event.start_date)} ({_when(event.start_date, 'R')})\n"
                f"{event.location} · {_capacity_line(event)}{waitlist}"
                f"{requires}"
            ),
            inline=False,
        )
    return embed


def build_my_registrations_embed(rows: list[dict]) -> discord.Embed:
    """``rows`` come from :func:`analytics_service.user_registrations`."""
    embed = discord.Embed(title="\U0001f39f My Registrations", color=discord.Color.blurple())
    if not rows:
        embed.description = "You have no active registrations."
        return embed

    lines = []
    for row in rows:
        if row["status"] == RegistrationStatus.WAITLIST:
            status = f"waitlist #{row['waitlist_position']}"
        else:
            status = row["status"]
        lines.append(f"**#{row['event_id']} {row['title']}** · {_when(row['start_date'])} · {status}")
    embed.description = "\n".join(lines)
    return embed


def build_profile_embed(profile: dict, display_name: str, avatar_url: str) -> discord.Embed:
    embed = discord.Embed(title=f"\U0001f464 {display_name}", color=discord.Color.teal())
    embed.set_thumbnail(url=avatar_url)
    if not profile.get("found"):
        embed.description = "No profile yet. Use `/profile-update` or `/register` to get started."
        return embed

    user = profile["user"]
    stats = profile["stats"]
    active = profile["active"]
    embed.add_field(name="Telegram", value=user["telegram"] or "—", inline=True)
    embed.add_field(name="Twitter", value=user["twitter"] or "—", inline=True)
    embed.add_field(name="Wallets", value=user["wallets"] or "—", inline=False)
    embed.add_field(
        name="Participation",
        value=(
            f"Joined: **{stats['events_joined']}** · "
            f"Completed: **{stats['events_completed']}** · "
            f"Waitlisted: **{stats['waitlist_joins']}**"
        ),
        inline=False,
    )
    embed.add_field(
        name="Active",
        value=f"{active['confirmed']} confirmed, {active['waitlist']} waitlisted",
        inline=False,
    )
    return embed


def build_event_stats_embed(stats: dict) -> discord.Embed:
    """Admin /event-stats view of :func:`analytics_service.event_stats`."""
    embed = discord.Embed(
        title=f"\U0001f4ca #{stats['event_id']} · {stats['title']}",
        description=f"Phase: **{stats['phase']}**",
        color=discord.Color.dark_teal(),
    )
    capacity = stats["capacity"] or "unlimited"
    if stats["free_slots"] is not None:
        capacity = f"{capacity} ({stats['free_slots']} free)"
    embed.add_field(name="Capacity", value=str(capacity), inline=True)
    embed.add_field(name="Confirmed", value=str(stats["confirmed"]), inline=True)
    embed.add_field(name="Waitlist", value=str(stats["waitlist"]), inline=True)
    embed.add_field(name="Cancelled", value=str(stats["cancelled"]), inline=True)
    embed.add_field(name="Completed", value=str(stats["completed"]), inline=True)
    embed.add_field(
        name="Access keys",
        value=f"{stats['keys_issued']}/{stats['keys_total']} issued",
        inline=True,
    )
    if stats["fill_rate"] is not None:
        embed.set_footer(text=f"Fill rate {stats['fill_rate']:.0%}")
    return embed


def build_community_stats_embed(summary: dict, community_name: str) -> discord.Embed:
    """Guild-wide view of :func:`analytics_service.community_summary`."""
    regs = summary["registrations"]
    embed = discord.Embed(
        title=f"\U0001f4c8 {community_name} Activity",
        color=discord.Color.dark_teal(),
    )
    embed.add_field(
        name="Events",
        value=f"{summary['events_total']} total, {summary['events_active']} active",
        inline=False,
    )
    embed.add_field(
        name="Registrations",
        value=" · ".join(f"{status}: {count}" for status, count in regs.items()),
        inline=False,
    )
    embed.add_field(name="Participants", value=str(summary["participants"]), inline=True)
    if summary["top_participants"]:
        embed.add_field(
            name="Most events completed",
            value="\n".join(
                f"<@{row['user_id']}> · {row['completed']}"
                for row in summary["top_participants"]
            ),
            inline=False,
        )
    return embed


# ---------------------------------------------------------------------------
# Direct messages
# ---------------------------------------------------------------------------
def build_reminder_embed(event: EventSnapshot) -> discord.Embed:
    embed = discord.Embed(
        title="⏰ Event Reminder",
        description=f"**{event.title}** starts {_when(event.start_date, 'R')}.",
        color=discord.Color.gold(),
    )
    _add_event_fields(embed, event)
    return embed


def build_start_embed(event: EventSnapshot) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f680 Event Started",
        description=f"**{event.title}** is live now. See you there!",
        color=discord.Color.green(),
    )
    embed.add_field(name="Location", value=event.location, inline=True)
    embed.add_field(name="Ends", value=_when(event.end_date, "R"), inline=True)
    return embed


def build_new_occurrence_embed(event: EventSnapshot) -> discord.Embed:
    """Channel post for the next occurrence of a recurring event."""
    embed = discord.Embed(
        title="\U0001f501 Next Occurrence Scheduled",
        description=f"**{event.title}** is back! Register with `/register`.",
        color=discord.Color.blurple(),
    )
    _add_event_fields(embed, event)
    embed.add_field(name="Capacity", value=str(event.capacity or "unlimited"), inline=True)
    if event.requirements:
        embed.add_field(name="Requires", value=_requirements_line(event), inline=True)
    embed.set_footer(text=f"Event #{event.id}")
    return embed


def build_promotion_embed(promotion: Promotion) -> discord.Embed:
    """Waitlist → confirmed notice, with the issued key if any."""
    event = promotion.event
    embed = discord.Embed(
        title="\U0001f389 You're In!",
        description=(
            f"A spot opened up for **{event.title}** and you've been moved "
            "from the waitlist to a confirmed registration."
        ),
        color=_STATUS_COLORS[RegistrationStatus.CONFIRMED],
    )
    _add_event_fields(embed, event)
    _add_key_field(embed, event, promotion.access_key)
    return embed


def build_status_change_embed(change: StatusChange) -> discord.Embed:
    event = change.event
    if change.new_status is RegistrationStatus.CONFIRMED:
        text = f"An admin confirmed your registration for **{event.title}**."
    elif change.new_status is RegistrationStatus.CANCELLED:
        text = f"Your registration for **{event.title}** was cancelled by an admin."
    elif change.new_status is RegistrationStatus.COMPLETED:
        text = f"Thanks for taking part in **{event.title}**! Your participation is recorded."
    elif change.new_status is RegistrationStatus.WAITLIST:
        text = f"You are now on the waitlist for **{event.title}**."
    else:
        raise ValueError(f"Unhandled registration status: {change.new_status!r}")

    embed = discord.Embed(
        title="\U0001f4e8 Registration Update",
        description=text,
        color=_STATUS_COLORS[change.new_status],
    )
    embed.set_footer(text=f"Event #{event.id}")
    return embed


def build_announcement_embed(
    title: str,
    content: str,
    color: str = "#0099ff",
    community_name: str | None = None,
) -> discord.Embed:
    """Channel announcement; an invalid hex colour falls back to blurple."""
    try:
        colour = discord.Color(int(color.lstrip("#"), 16))
    except (ValueError, AttributeError):
        colour = discord.Color.blurple()

    embed = discord.Embed(title=title, description=content, color=colour)
    if community_name:
        embed.set_footer(text=community_name)
    return embed
