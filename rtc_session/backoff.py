# =============================================================================
# RTC Session -- Backoff Scheduler
# =============================================================================

from __future__ import annotations

import asyncio
import random

from .constants import BACKOFF_BASE, BACKOFF_MAX, JITTER_WINDOW

# 2**64 base units is already far beyond any sane cap
_MAX_EXPONENT = 64


class BackoffScheduler:
    """Exponential backoff with additive jitter.

    ``delay_for(n) = max(base, min(max_delay, base * 2**n)) + U(0, jitter)``.
    Stateless: the attempt number always comes from the caller.

    Args:
        base: Delay unit in seconds, also the minimum delay.
        max_delay: Cap on the exponential part.
        jitter_window: Upper bound of the uniform random addition.
        rng: Random source (seeded ``random.Random`` in tests).
    """

    def __init__(
        self,
        base: float = BACKOFF_BASE,
        max_delay: float = BACKOFF_MAX,
        jitter_window: float = JITTER_WINDOW,
        rng: random.Random | None = None,
    ) -> None:
        self._base = base
        self._max_delay = max(max_delay, base)
        self._jitter_window = max(0.0, jitter_window)
        self._rng = rng or random.Random()

    def delay_for(self, attempt: int) -> float:
        exponent = min(max(0, attempt), _MAX_EXPONENT)
        delay = min(self._max_delay, self._base * (2**exponent))
        delay = max(self._base, delay)
        if self._jitter_window:
            delay += self._rng.uniform(0.0, self._jitter_window)
        return delay

    async def wait(self, attempt: int, cancel: asyncio.Event | None = None) -> bool:
        """Sleep for ``delay_for(attempt)``.

        Returns:
            True if the full delay elapsed, False if *cancel* was set first.
        """
        delay = self.delay_for(attempt)
        if cancel is None:
            await asyncio.sleep(delay)
            return True
        if cancel.is_set():
            return False
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False
