"""Tests for endpoint pool failover."""

import pytest

from rtc_session.endpoint_pool import EndpointPool
from rtc_session.errors import InvalidArgumentError
from rtc_session.types import EndpointStatus


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestEndpointPool:
    def test_requires_endpoints(self):
        with pytest.raises(InvalidArgumentError):
            EndpointPool([])

    def test_starts_at_first(self):
        pool = EndpointPool(["ws://a", "ws://b"])
        assert pool.current().address == "ws://a"
        assert pool.index == 0
        assert len(pool) == 2

    def test_advance_skips_suspect(self):
        clock = FakeClock()
        pool = EndpointPool(["ws://a", "ws://b", "ws://c"], cooldown=30, clock=clock)
        pool.mark_failed("ws://b")
        assert pool.advance().address == "ws://c"

    def test_advance_wraps(self):
        pool = EndpointPool(["ws://a", "ws://b"])
        pool.advance()
        assert pool.advance().address == "ws://a"

    def test_single_endpoint_stays(self):
        pool = EndpointPool(["ws://only"])
        pool.mark_failed(pool.current())
        assert pool.advance().address == "ws://only"
        assert pool.current().is_healthy

    def test_full_rotation_resets_health(self):
        clock = FakeClock()
        pool = EndpointPool(["ws://a", "ws://b"], cooldown=30, clock=clock)
        pool.mark_failed("ws://a")
        pool.mark_failed("ws://b")
        ep = pool.advance()
        assert ep.address == "ws://b"
        assert all(s["status"] == "healthy" for s in pool.get_stats())

    def test_cooldown_promotes_suspect(self):
        clock = FakeClock()
        pool = EndpointPool(["ws://a", "ws://b"], cooldown=30, clock=clock)
        ep = pool.current()
        pool.mark_failed(ep)
        assert ep.status == EndpointStatus.SUSPECT
        clock.now += 31
        assert pool.current().status == EndpointStatus.HEALTHY

    def test_mark_healthy_counts_success(self):
        pool = EndpointPool(["ws://a"])
        pool.mark_failed("ws://a")
        pool.mark_healthy("ws://a")
        stats = pool.get_stats()[0]
        assert stats["failures"] == 1
        assert stats["successes"] == 1
        assert stats["status"] == "healthy"
        assert stats["current"] is True

    def test_duplicate_addresses_marked_by_identity(self):
        pool = EndpointPool(["ws://a", "ws://a"])
        pool.advance()
        second = pool.current()
        pool.mark_failed(second)
        stats = pool.get_stats()
        assert stats[0]["failures"] == 0
        assert stats[1]["failures"] == 1

    def test_unknown_endpoint_ignored(self):
        pool = EndpointPool(["ws://a"])
        pool.mark_failed("ws://zzz")
        assert pool.get_stats()[0]["failures"] == 0

    def test_reset(self):
        pool = EndpointPool(["ws://a", "ws://b"])
        pool.mark_failed("ws://a")
        pool.advance()
        pool.reset()
        assert pool.current_address == "ws://a"
        assert pool.get_stats()[0]["failures"] == 0
        assert pool.get_stats()[0]["last_failure_at"] is None
