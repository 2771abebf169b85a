"""
synergy.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for infrastructure and scheduling settings (guild
identity, admin role, sweep intervals, reminder window, command rate limit).  Secrets such as
``DISCORD_TOKEN`` and ``DATABASE_URL`` stay in the environment.

Usage::

    from synergy.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.guild_id)
    print(cfg.reminder_window)   # timedelta(minutes=60)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SynergyConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int  # Primary guild snowflake

    # Admin / Hardened Access
    admin_role_id: int  # Discord role required for admin commands

    # Optional
    announce_channel_id: int | None = None  # Where event start notices are posted

    # Scheduler
    reminder_window_minutes: int = 60
    reminder_interval_seconds: int = 60
    closure_interval_seconds: int = 300
    announcement_interval_seconds: int = 60

    # Slash-command rate limit per member and command (0 disables)
    rate_limit_max_commands: int = 5
    rate_limit_window_seconds: int = 60

    @property
    def reminder_window(self) -> timedelta:
        return timedelta(minutes=self.reminder_window_minutes)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> SynergyConfig:
    """Read *path* and return a :class:`SynergyConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    scheduler: dict = raw.get("scheduler") or {}
    rate_limit: dict = raw.get("rate_limit") or {}

    return SynergyConfig(
        community_name=raw["community_name"],
        bot_prefix=raw.get("bot_prefix", "!"),
        guild_id=int(raw["guild_id"]),
        admin_role_id=int(raw["admin_role_id"]),
        announce_channel_id=(
            int(raw["announce_channel_id"]) if raw.get("announce_channel_id") else None
        ),
        reminder_window_minutes=int(scheduler.get("reminder_window_minutes", 60)),
        reminder_interval_seconds=int(scheduler.get("reminder_interval_seconds", 60)),
        closure_interval_seconds=int(scheduler.get("closure_interval_seconds", 300)),
        announcement_interval_seconds=int(
            scheduler.get("announcement_interval_seconds", 60)
        ),
        rate_limit_max_commands=int(rate_limit.get("max_commands", 5)),
        rate_limit_window_seconds=int(rate_limit.get("window_seconds", 60)),
    )
