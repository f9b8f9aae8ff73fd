"""Tests for backoff scheduler."""

import asyncio
import random
import time

import pytest

from rtc_session.backoff import BackoffScheduler


class TestDelay:
    def test_exponential(self):
        b = BackoffScheduler(base=1.0, max_delay=30.0, jitter_window=0.0)
        assert [b.delay_for(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]

    def test_never_below_base(self):
        b = BackoffScheduler(base=0.5, max_delay=0.5, jitter_window=0.0)
        assert b.delay_for(0) == 0.5
        assert b.delay_for(-3) == 0.5

    def test_huge_attempt_capped(self):
        b = BackoffScheduler(base=1.0, max_delay=30.0, jitter_window=0.0)
        assert b.delay_for(10_000) == 30.0

    def test_jitter_bounded(self):
        b = BackoffScheduler(base=1.0, max_delay=4.0, jitter_window=1.0, rng=random.Random(7))
        for _ in range(50):
            delay = b.delay_for(1)
            assert 2.0 <= delay <= 3.0

    def test_seeded_rng_deterministic(self):
        a = BackoffScheduler(jitter_window=1.0, rng=random.Random(42))
        b = BackoffScheduler(jitter_window=1.0, rng=random.Random(42))
        assert [a.delay_for(n) for n in range(5)] == [b.delay_for(n) for n in range(5)]


class TestWait:
    @pytest.mark.asyncio
    async def test_full_wait(self):
        b = BackoffScheduler(base=0.01, max_delay=0.01, jitter_window=0.0)
        assert await b.wait(1) is True

    @pytest.mark.asyncio
    async def test_wait_with_unset_event_elapses(self):
        b = BackoffScheduler(base=0.01, max_delay=0.01, jitter_window=0.0)
        assert await b.wait(1, asyncio.Event()) is True

    @pytest.mark.asyncio
    async def test_cancel_wakes_early(self):
        b = BackoffScheduler(base=10.0, max_delay=10.0, jitter_window=0.0)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, cancel.set)
        start = time.monotonic()
        assert await b.wait(3, cancel) is False
        assert time.monotonic() - start < 1.0

    @pytest.mark.asyncio
    async def test_already_cancelled(self):
        b = BackoffScheduler(base=10.0, max_delay=10.0, jitter_window=0.0)
        cancel = asyncio.Event()
        cancel.set()
        assert await b.wait(1, cancel) is False
