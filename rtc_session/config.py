# =============================================================================
# RTC Session -- Configuration
# =============================================================================

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .constants import (
    BACKOFF_BASE,
    BACKOFF_MAX,
    ENDPOINT_COOLDOWN,
    ENV_PREFIX,
    JITTER_WINDOW,
    MAX_ATTEMPTS,
    PER_ATTEMPT_TIMEOUT,
    RECONNECT_GRACE_PERIOD,
    TOKEN_RENEW_MARGIN,
)
from .errors import InvalidArgumentError

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass
class SessionConfig:
    """Options recognised by :class:`~rtc_session.manager.SessionManager`.

    Attributes:
        endpoints: Ordered candidate endpoints, tried first to last.
        max_attempts: Attempt slots per join/reconnect sequence.
        per_attempt_timeout: Seconds before a single connect counts as failed.
        backoff_base: Base delay unit in seconds (also the minimum delay).
        backoff_max: Cap on the exponential part of the delay.
        jitter_window: Upper bound of the random delay added to each wait.
        reconnect_grace_period: Seconds to wait after an unsolicited drop
            before starting reconnection.
        allow_credential_fallback: Allow one token -> anonymous switch.
        endpoint_cooldown: Seconds after which a suspect endpoint is
            considered usable again.
        token_renew_margin: Renew tokens this many seconds before expiry.
    """

    endpoints: list[str] = field(default_factory=list)
    max_attempts: int = MAX_ATTEMPTS
    per_attempt_timeout: float = PER_ATTEMPT_TIMEOUT
    backoff_base: float = BACKOFF_BASE
    backoff_max: float = BACKOFF_MAX
    jitter_window: float = JITTER_WINDOW
    reconnect_grace_period: float = RECONNECT_GRACE_PERIOD
    allow_credential_fallback: bool = True
    endpoint_cooldown: float = ENDPOINT_COOLDOWN
    token_renew_margin: float = TOKEN_RENEW_MARGIN

    def __post_init__(self) -> None:
        if isinstance(self.endpoints, str):
            raise InvalidArgumentError("endpoints must be a list of addresses, not a string")
        self.endpoints = [ep.strip() for ep in self.endpoints]
        if not self.endpoints:
            raise InvalidArgumentError("At least one endpoint is required")
        if any(not ep for ep in self.endpoints):
            raise InvalidArgumentError("Endpoint addresses must not be blank")
        if self.max_attempts < 1:
            raise InvalidArgumentError(
                f"max_attempts must be >= 1, got {self.max_attempts}"
            )
        if self.per_attempt_timeout <= 0:
            raise InvalidArgumentError("per_attempt_timeout must be positive")
        if self.backoff_base <= 0:
            raise InvalidArgumentError("backoff_base must be positive")
        if self.backoff_max < self.backoff_base:
            raise InvalidArgumentError("backoff_max must be >= backoff_base")
        if self.jitter_window < 0:
            raise InvalidArgumentError("jitter_window must not be negative")
        if self.reconnect_grace_period < 0:
            raise InvalidArgumentError("reconnect_grace_period must not be negative")
        if self.endpoint_cooldown < 0:
            raise InvalidArgumentError("endpoint_cooldown must not be negative")
        if self.token_renew_margin < 0:
            raise InvalidArgumentError("token_renew_margin must not be negative")

    @classmethod
    def from_env(
        cls,
        prefix: str = ENV_PREFIX,
        environ: dict[str, str] | None = None,
    ) -> SessionConfig:
        """Build a config from ``{prefix}*`` environment variables.

        ``{prefix}ENDPOINTS`` is a comma separated list; every other option
        uses its upper-cased attribute name.  Unset variables keep defaults.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        raw_endpoints = env.get(f"{prefix}ENDPOINTS", "")
        kwargs["endpoints"] = [ep for ep in raw_endpoints.split(",") if ep.strip()]

        value = env.get(f"{prefix}MAX_ATTEMPTS")
        if value is not None:
            kwargs["max_attempts"] = _parse_int("max_attempts", value)

        for name in (
            "per_attempt_timeout",
            "backoff_base",
            "backoff_max",
            "jitter_window",
            "reconnect_grace_period",
            "endpoint_cooldown",
            "token_renew_margin",
        ):
            value = env.get(f"{prefix}{name.upper()}")
            if value is not None:
                kwargs[name] = _parse_float(name, value)

        value = env.get(f"{prefix}ALLOW_CREDENTIAL_FALLBACK")
        if value is not None:
            kwargs["allow_credential_fallback"] = _parse_bool(
                "allow_credential_fallback", value
            )

        return cls(**kwargs)  # type: ignore[arg-type]


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise InvalidArgumentError(f"{name}: expected an integer, got {value!r}") from None


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise InvalidArgumentError(f"{name}: expected a number, got {value!r}") from None


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise InvalidArgumentError(f"{name}: expected a boolean, got {value!r}")
