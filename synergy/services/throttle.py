"""
synergy.services.throttle — Sliding-window command throttle
============================================================

Limits how often one member may invoke the same slash command.  State is
in-memory and per process; a restart simply forgets old timestamps.
"""

from __future__ import annotations

import logging
import math
import time
from collections import defaultdict

logger = logging.getLogger(__name__)

ThrottleKey = tuple[int, str]


class CommandThrottle:
    """Up to ``max_per_window`` calls per (user, command) per ``window`` seconds.

    A ``max_per_window`` of 0 disables throttling.
    """

    def __init__(self, max_per_window: int = 5, window: int = 60) -> None:
        self.max_per_window = max_per_window
        self.window = window
        self._timestamps: dict[ThrottleKey, list[float]] = defaultdict(list)

    def _prune(self, key: ThrottleKey, now: float) -> list[float]:
        cutoff = now - self.window
        stamps = [t for t in self._timestamps[key] if t > cutoff]
        if stamps:
            self._timestamps[key] = stamps
        else:
            self._timestamps.pop(key, None)
        return stamps

    def is_allowed(self, user_id: int, command: str, now: float | None = None) -> bool:
        """Record a call and return True, or return False if over the limit."""
        if self.max_per_window <= 0:
            return True
        now = time.time() if now is None else now
        key = (user_id, command)
        stamps = self._prune(key, now)
        if len(stamps) >= self.max_per_window:
            logger.info("Throttled /%s for user %d", command, user_id)
            return False
        self._timestamps[key] = [*stamps, now]
        return True

    def retry_after(self, user_id: int, command: str, now: float | None = None) -> int:
        """Whole seconds until the oldest call in the window expires."""
        now = time.time() if now is None else now
        stamps = self._prune((user_id, command), now)
        if not stamps:
            return 0
        return max(math.ceil(stamps[0] + self.window - now), 0)
