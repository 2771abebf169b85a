"""
tests/test_throttle.py — Slash Command Rate Limiting
=====================================================
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord

from synergy.bot.core import SynergyTree
from synergy.services.throttle import CommandThrottle


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


class TestCommandThrottle:
    def test_allows_up_to_limit(self):
        throttle = CommandThrottle(max_per_window=2, window=60)
        assert throttle.is_allowed(1, "register", now=100.0)
        assert throttle.is_allowed(1, "register", now=110.0)
        assert not throttle.is_allowed(1, "register", now=120.0)

    def test_window_slides(self):
        throttle = CommandThrottle(max_per_window=2, window=60)
        throttle.is_allowed(1, "register", now=100.0)
        throttle.is_allowed(1, "register", now=110.0)

        assert throttle.is_allowed(1, "register", now=160.5)
        assert not throttle.is_allowed(1, "register", now=165.0)

    def test_rejected_calls_are_not_recorded(self):
        throttle = CommandThrottle(max_per_window=1, window=10)
        throttle.is_allowed(1, "events", now=0.0)
        for t in (1.0, 2.0, 3.0):
            assert not throttle.is_allowed(1, "events", now=t)
        assert throttle.is_allowed(1, "events", now=10.5)

    def test_keys_per_user_and_command(self):
        throttle = CommandThrottle(max_per_window=1, window=60)
        assert throttle.is_allowed(1, "register", now=0.0)
        assert throttle.is_allowed(2, "register", now=0.0)
        assert throttle.is_allowed(1, "events", now=0.0)
        assert not throttle.is_allowed(1, "register", now=1.0)

    def test_zero_disables(self):
        throttle = CommandThrottle(max_per_window=0, window=60)
        assert all(throttle.is_allowed(1, "register", now=0.0) for _ in range(50))

    def test_retry_after(self):
        throttle = CommandThrottle(max_per_window=1, window=60)
        assert throttle.retry_after(1, "register", now=0.0) == 0

        throttle.is_allowed(1, "register", now=100.0)
        assert throttle.retry_after(1, "register", now=130.2) == 30
        assert throttle.retry_after(1, "register", now=170.0) == 0


def _interaction(*, command_name: str | None = "register", kind=None) -> MagicMock:
    interaction = MagicMock()
    interaction.type = kind or discord.InteractionType.application_command
    interaction.user.id = 7
    interaction.command = (
        SimpleNamespace(qualified_name=command_name) if command_name else None
    )
    interaction.response.is_done = MagicMock(return_value=False)
    interaction.response.send_message = AsyncMock()
    return interaction


def _tree(throttle: CommandThrottle | None) -> MagicMock:
    tree = MagicMock()
    tree.client = SimpleNamespace(throttle=throttle) if throttle else SimpleNamespace()
    return tree


class TestSynergyTree:
    def test_throttled_command_gets_ephemeral_reply(self):
        tree = _tree(CommandThrottle(max_per_window=1, window=60))
        first, second = _interaction(), _interaction()

        assert run_async(SynergyTree.interaction_check(tree, first))
        assert not run_async(SynergyTree.interaction_check(tree, second))

        kwargs = second.response.send_message.await_args.kwargs
        assert kwargs["ephemeral"] is True
        assert "/register" in kwargs["content"]
        first.response.send_message.assert_not_awaited()

    def test_components_are_not_throttled(self):
        tree = _tree(CommandThrottle(max_per_window=1, window=60))
        for _ in range(3):
            interaction = _interaction(kind=discord.InteractionType.component)
            assert run_async(SynergyTree.interaction_check(tree, interaction))

    def test_without_throttle_everything_passes(self):
        tree = _tree(None)
        assert run_async(SynergyTree.interaction_check(tree, _interaction()))

    def test_unknown_command_passes(self):
        tree = _tree(CommandThrottle(max_per_window=1, window=60))
        assert run_async(SynergyTree.interaction_check(tree, _interaction(command_name=None)))
