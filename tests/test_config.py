"""Tests for session configuration."""

import pytest

from rtc_session.config import SessionConfig
from rtc_session.constants import MAX_ATTEMPTS
from rtc_session.errors import InvalidArgumentError


class TestSessionConfig:
    def test_defaults(self):
        cfg = SessionConfig(endpoints=["ws://a"])
        assert cfg.max_attempts == MAX_ATTEMPTS
        assert cfg.allow_credential_fallback is True

    def test_strips_endpoints(self):
        cfg = SessionConfig(endpoints=[" ws://a ", "ws://b"])
        assert cfg.endpoints == ["ws://a", "ws://b"]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"endpoints": []},
            {"endpoints": ["ws://a", "  "]},
            {"endpoints": ["ws://a"], "max_attempts": 0},
            {"endpoints": ["ws://a"], "per_attempt_timeout": 0},
            {"endpoints": ["ws://a"], "backoff_base": -1},
            {"endpoints": ["ws://a"], "backoff_base": 5, "backoff_max": 1},
            {"endpoints": ["ws://a"], "jitter_window": -0.1},
            {"endpoints": ["ws://a"], "reconnect_grace_period": -1},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(InvalidArgumentError):
            SessionConfig(**kwargs)

    def test_single_string_endpoint_rejected(self):
        with pytest.raises(InvalidArgumentError, match="not a string"):
            SessionConfig(endpoints="ws://edge-1/rtc")


class TestFromEnv:
    def test_reads_prefixed_values(self):
        env = {
            "RTC_SESSION_ENDPOINTS": "ws://a, ws://b,",
            "RTC_SESSION_MAX_ATTEMPTS": "7",
            "RTC_SESSION_BACKOFF_BASE": "0.5",
            "RTC_SESSION_ALLOW_CREDENTIAL_FALLBACK": "off",
        }
        cfg = SessionConfig.from_env(environ=env)
        assert cfg.endpoints == ["ws://a", "ws://b"]
        assert cfg.max_attempts == 7
        assert cfg.backoff_base == 0.5
        assert cfg.allow_credential_fallback is False

    def test_custom_prefix(self):
        cfg = SessionConfig.from_env(prefix="APP_", environ={"APP_ENDPOINTS": "ws://x"})
        assert cfg.endpoints == ["ws://x"]

    def test_missing_endpoints(self):
        with pytest.raises(InvalidArgumentError):
            SessionConfig.from_env(environ={})

    @pytest.mark.parametrize(
        "key,value",
        [
            ("MAX_ATTEMPTS", "many"),
            ("PER_ATTEMPT_TIMEOUT", "soon"),
            ("ALLOW_CREDENTIAL_FALLBACK", "maybe"),
        ],
    )
    def test_bad_values(self, key, value):
        env = {"RTC_SESSION_ENDPOINTS": "ws://a", f"RTC_SESSION_{key}": value}
        with pytest.raises(InvalidArgumentError):
            SessionConfig.from_env(environ=env)
