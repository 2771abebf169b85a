"""
synergy.services.profile_service — Member Profiles & Preferences
=================================================================

Profile fields (Telegram, Twitter, wallets), DM notification opt-outs and
participation statistics.  Stat bumps take an open session so they land in
the same transaction as the registration change that caused them.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from synergy.database.engine import get_session
from synergy.database.models import Event, Registration, RegistrationStatus, User
from synergy.engine.errors import SynergyError
from synergy.engine.lifecycle import required_fields, utcnow

logger = logging.getLogger(__name__)

_TELEGRAM_RE = re.compile(r"^@?[A-Za-z0-9_]{5,32}$")
_TWITTER_RE = re.compile(r"^@?[A-Za-z0-9_]{1,15}$")
_WALLET_HEX_RE = re.compile(r"^[a-fA-F0-9]{40,64}$")
_WALLET_SPLIT_RE = re.compile(r"[\n;,]")
_WALLET_PREFIXES = ("0x", "ronin:", "solana:", "terra:", "cosmos:")

# Known exchange deposit addresses, lower-cased.
CUSTODIAL_ADDRESSES: dict[str, frozenset[str]] = {
    "ETH": frozenset({
        "0x742d35cc6634c0532925a3b844bc454e4438f44e",
        "0x2faf487a4414fe77e2327f0bf4ae2a264a776ad2",
        "0xc098b2a3aa256d2140208c3de6543aaef5cd3a94",
    }),
}

STAT_FIELDS: frozenset[str] = frozenset(
    {"events_joined", "events_completed", "waitlist_joins"}
)
PREFERENCE_FIELDS: frozenset[str] = frozenset(
    {"event_reminders", "waitlist_updates", "direct_messages"}
)


class InvalidProfileField(SynergyError):
    user_message = "That profile value doesn't look right."

    def __init__(self, message: str) -> None:
        self.user_message = message
        super().__init__(message)


def get_or_create_user(
    session: Session, user_id: int, username: str | None = None
) -> User:
    """Fetch or insert a User row, refreshing the cached username.

    The insert runs in a SAVEPOINT: when a concurrent first interaction of
    the same member wins the race, the row it created is loaded instead.
    """
    user = session.get(User, user_id)
    if user is None:
        try:
            with session.begin_nested():
                user = User(id=user_id, username=username or str(user_id))
                session.add(user)
                session.flush()
            return user
        except IntegrityError:
            logger.info("User %d was created concurrently, reloading", user_id)
            user = session.execute(
                select(User).where(User.id == user_id)
            ).scalar_one()
    if username:
        user.username = username
    return user


def missing_profile_fields(user: User | None, event: Event) -> list[str]:
    """Required profile fields of *event* that *user* has left blank."""
    return [
        name for name in required_fields(event)
        if user is None or not getattr(user, name)
    ]


def validate_wallets(text: str) -> str | None:
    """Normalise a list of ``CHAIN ADDRESS`` entries.

    Entries are separated by newlines, semicolons or commas and stored one
    per line with the chain upper-cased.  Every address must be 40-64 hex
    digits once its ``0x``/``ronin:``-style prefix is removed.
    Known exchange deposit addresses are rejected.  Returns ``None`` when
    nothing is left.
    """
    entries: list[str] = []
    lines = [line.strip() for line in _WALLET_SPLIT_RE.split(text) if line.strip()]
    for number, line in enumerate(lines, start=1):
        chain, _, address = line.partition(" ")
        address = address.strip()
        if not address:
            raise InvalidProfileField(
                f"Wallet {number}: expected \"CHAIN ADDRESS\", e.g. \"ETH 0x12ab...\"."
            )
        chain = chain.upper()
        if not _WALLET_HEX_RE.match(_strip_wallet_prefix(address)):
            raise InvalidProfileField(
                f"Wallet {number}: addresses are 40-64 hex characters (0-9, a-f)."
            )
        if address.lower() in CUSTODIAL_ADDRESSES.get(chain, frozenset()):
            raise InvalidProfileField(
                f"Wallet {number}: that is an exchange address. "
                "Use a wallet you control."
            )
        entries.append(f"{chain} {address}")
    return "\n".join(entries) or None


def _strip_wallet_prefix(address: str) -> str:
    for prefix in _WALLET_PREFIXES:
        if address.startswith(prefix):
            return address[len(prefix):]
    return address


def record_participation(
    session: Session,
    user_id: int,
    stat: str,
    *,
    now: datetime | None = None,
    amount: int = 1,
) -> None:
    """Increment one participation counter on the user's profile."""
    if stat not in STAT_FIELDS:
        raise ValueError(f"Unknown profile stat: {stat!r}")
    user = get_or_create_user(session, user_id)
    setattr(user, stat, (getattr(user, stat) or 0) + amount)
    user.last_active_at = now or utcnow()


# ---------------------------------------------------------------------------
# Engine-level API (called via run_db)
# ---------------------------------------------------------------------------
def get_profile(engine: Engine, user_id: int) -> dict:
    """Profile data plus live registration counts for the /profile embed."""
    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            return {"found": False}

        counts = dict(session.execute(
            select(Registration.status, func.count())
            .where(Registration.user_id == user_id)
            .group_by(Registration.status)
        ).all())

        return {
            "found": True,
            "user": {
                "username": user.username,
                "telegram": user.telegram,
                "twitter": user.twitter,
                "wallets": user.wallets,
            },
            "stats": {
                "events_joined": user.events_joined,
                "events_completed": user.events_completed,
                "waitlist_joins": user.waitlist_joins,
            },
            "active": {
                "confirmed": counts.get(RegistrationStatus.CONFIRMED.value, 0),
                "waitlist": counts.get(RegistrationStatus.WAITLIST.value, 0),
            },
            "preferences": {name: getattr(user, name) for name in sorted(PREFERENCE_FIELDS)},
        }


def update_profile(
    engine: Engine,
    user_id: int,
    username: str,
    *,
    telegram: str | None = None,
    twitter: str | None = None,
    wallets: str | None = None,
) -> User:
    """Update the provided profile fields; ``None`` leaves a field untouched."""
    if telegram and not _TELEGRAM_RE.match(telegram):
        raise InvalidProfileField("Telegram handles are 5-32 letters, digits or _.")
    if twitter and not _TWITTER_RE.match(twitter):
        raise InvalidProfileField("Twitter handles are up to 15 letters, digits or _.")
    validated_wallets = validate_wallets(wallets) if wallets is not None else None

    with get_session(engine) as session:
        user = get_or_create_user(session, user_id, username)
        if telegram is not None:
            user.telegram = telegram.lstrip("@") or None
        if twitter is not None:
            user.twitter = twitter.lstrip("@") or None
        if wallets is not None:
            user.wallets = validated_wallets
        session.flush()
        session.expunge(user)
        return user


def set_notification_preferences(
    engine: Engine, user_id: int, username: str, **prefs: bool
) -> dict[str, bool]:
    """Toggle DM opt-outs; unknown keys raise ``ValueError``."""
    unknown = set(prefs) - PREFERENCE_FIELDS
    if unknown:
        raise ValueError(f"Unknown preference(s): {sorted(unknown)}")

    with get_session(engine) as session:
        user = get_or_create_user(session, user_id, username)
        for name, value in prefs.items():
            setattr(user, name, bool(value))
        return {name: getattr(user, name) for name in sorted(PREFERENCE_FIELDS)}


def load_preferences(engine: Engine, user_id: int) -> dict[str, bool] | None:
    """Notification preferences of *user_id*, or ``None`` for unknown users."""
    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            return None
        return {name: getattr(user, name) for name in PREFERENCE_FIELDS}
