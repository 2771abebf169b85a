"""
tests/test_profile.py — Member Profiles & Preferences
======================================================
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError

from synergy.database.engine import get_session
from synergy.database.models import Event, User
from synergy.services.profile_service import (
    InvalidProfileField,
    get_or_create_user,
    get_profile,
    load_preferences,
    missing_profile_fields,
    set_notification_preferences,
    update_profile,
    validate_wallets,
)

ETH_WALLET = "ETH 0x" + "ab12" * 10
RONIN_WALLET = "ron ronin:" + "cd34" * 10


class TestProfile:
    def test_unknown_user(self, db_engine):
        assert get_profile(db_engine, 1) == {"found": False}
        assert load_preferences(db_engine, 1) is None

    def test_update_strips_handles(self, db_engine):
        update_profile(db_engine, 1, "alice", telegram="@alice_tg", twitter="@alice")
        profile = get_profile(db_engine, 1)

        assert profile["found"]
        assert profile["user"]["telegram"] == "alice_tg"
        assert profile["user"]["twitter"] == "alice"
        assert profile["active"] == {"confirmed": 0, "waitlist": 0}

    def test_none_leaves_field_untouched(self, db_engine):
        update_profile(db_engine, 1, "alice", wallets=ETH_WALLET)
        update_profile(db_engine, 1, "alice", twitter="alice")
        assert get_profile(db_engine, 1)["user"]["wallets"] == ETH_WALLET

    def test_empty_string_clears(self, db_engine):
        update_profile(db_engine, 1, "alice", wallets=ETH_WALLET)
        update_profile(db_engine, 1, "alice", wallets="  ")
        assert get_profile(db_engine, 1)["user"]["wallets"] is None

    def test_wallets_normalised_one_per_line(self, db_engine):
        update_profile(db_engine, 1, "alice", wallets=f"{ETH_WALLET}; {RONIN_WALLET}")
        wallets = get_profile(db_engine, 1)["user"]["wallets"]
        assert wallets.splitlines() == [ETH_WALLET, "RON ronin:" + "cd34" * 10]

    @pytest.mark.parametrize("field,value", [
        ("telegram", "ab"),
        ("telegram", "has space"),
        ("twitter", "x" * 16),
        ("wallets", "0x" + "ab" * 20),
        ("wallets", "ETH 0xabc"),
        ("wallets", "ETH 0x" + "zz" * 20),
        ("wallets", "SOL solana:" + "a" * 70),
        ("wallets", "eth 0x742d35cc6634c0532925a3b844bc454e4438f44e"),
        ("wallets", f"{ETH_WALLET}\nBTC nope"),
    ])
    def test_invalid_handles(self, db_engine, field, value):
        with pytest.raises(InvalidProfileField):
            update_profile(db_engine, 1, "alice", **{field: value})
        assert get_profile(db_engine, 1) == {"found": False}


class TestValidateWallets:
    def test_blank_is_none(self):
        assert validate_wallets("\n ; ,") is None

    @pytest.mark.parametrize("prefix", ["0x", "ronin:", "solana:", "terra:", "cosmos:", ""])
    def test_known_prefixes(self, prefix):
        assert validate_wallets(f"net {prefix}{'f' * 64}") == f"NET {prefix}{'f' * 64}"

    def test_error_names_the_entry(self):
        with pytest.raises(InvalidProfileField, match="Wallet 2"):
            validate_wallets(f"{ETH_WALLET}\nETH 0x123")

    def test_custodial_check_is_per_chain(self):
        exchange = "0xC098B2A3Aa256D2140208C3de6543aAEf5cd3A94"
        with pytest.raises(InvalidProfileField, match="exchange"):
            validate_wallets(f"ETH {exchange}")
        assert validate_wallets(f"BSC {exchange}") == f"BSC {exchange}"


class TestRequirements:
    def _event(self, **flags) -> Event:
        defaults = {"require_telegram": False, "require_twitter": False, "require_wallets": False}
        return Event(**{**defaults, **flags})

    def test_nothing_required(self):
        assert missing_profile_fields(None, self._event()) == []

    def test_unknown_user_misses_everything(self):
        event = self._event(require_telegram=True, require_wallets=True)
        assert missing_profile_fields(None, event) == ["telegram", "wallets"]

    def test_only_blank_fields_reported(self):
        user = User(id=1, username="alice", telegram="alice_tg", twitter=None, wallets="")
        event = self._event(require_telegram=True, require_twitter=True, require_wallets=True)
        assert missing_profile_fields(user, event) == ["twitter", "wallets"]


class TestGetOrCreateUser:
    def test_creates_then_refreshes_username(self, db_engine):
        with get_session(db_engine) as session:
            get_or_create_user(session, 7, "old")
        with get_session(db_engine) as session:
            user = get_or_create_user(session, 7, "new")
            assert user.username == "new"
        with get_session(db_engine) as session:
            assert session.get(User, 7).username == "new"

    def test_concurrent_insert_reloads_existing_row(self, db_engine, monkeypatch):
        with get_session(db_engine) as session:
            # Another transaction created the row after our lookup missed it.
            session.execute(insert(User).values(id=7, username="racer"))
            monkeypatch.setattr(session, "get", lambda *args, **kwargs: None)

            user = get_or_create_user(session, 7, "alice")

            assert user.id == 7
            assert user.username == "alice"
        with get_session(db_engine) as session:
            assert session.scalar(select(func.count()).select_from(User)) == 1

    def test_integrity_error_falls_back_to_select(self):
        existing = User(id=7, username="racer")
        session = MagicMock()
        session.get.return_value = None
        session.flush.side_effect = IntegrityError("INSERT INTO users", {}, None)
        session.execute.return_value.scalar_one.return_value = existing

        user = get_or_create_user(session, 7, "alice")

        assert user is existing
        assert user.username == "alice"
        session.begin_nested.assert_called_once()
        session.execute.assert_called_once()


class TestPreferences:
    def test_defaults_on(self, db_engine):
        prefs = set_notification_preferences(db_engine, 1, "alice")
        assert prefs == {"direct_messages": True, "event_reminders": True, "waitlist_updates": True}

    def test_toggle(self, db_engine):
        set_notification_preferences(db_engine, 1, "alice", waitlist_updates=False)
        assert load_preferences(db_engine, 1)["waitlist_updates"] is False
        assert get_profile(db_engine, 1)["preferences"]["waitlist_updates"] is False

    def test_unknown_preference(self, db_engine):
        with pytest.raises(ValueError):
            set_notification_preferences(db_engine, 1, "alice", marketing=True)
