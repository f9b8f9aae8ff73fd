# =============================================================================
# RTC Session -- Endpoint Pool
# =============================================================================
#
# Ordered failover across candidate endpoints.  Pure bookkeeping, no I/O.
# =============================================================================

from __future__ import annotations

import time
from typing import Any, Callable

from ._logging import logger
from .constants import ENDPOINT_COOLDOWN
from .errors import InvalidArgumentError
from .types import Endpoint, EndpointStatus


class EndpointPool:
    """Ordered endpoint list with a single "current" selection.

    Endpoints become SUSPECT when an attempt against them fails.  A suspect
    endpoint is usable again once *cooldown* seconds have passed, or when
    every endpoint has failed (a full rotation resets the whole pool).

    Args:
        addresses: Candidate endpoints, in preference order.
        cooldown: Seconds before a suspect endpoint is promoted back.
        clock: Monotonic time source (overridable for tests).
    """

    def __init__(
        self,
        addresses: list[str],
        cooldown: float = ENDPOINT_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not addresses:
            raise InvalidArgumentError("EndpointPool needs at least one endpoint")
        self._endpoints = [Endpoint(address=addr) for addr in addresses]
        self._index = 0
        self._cooldown = cooldown
        self._clock = clock

    def __len__(self) -> int:
        return len(self._endpoints)

    @property
    def endpoints(self) -> list[str]:
        return [ep.address for ep in self._endpoints]

    @property
    def index(self) -> int:
        return self._index

    @property
    def current_address(self) -> str:
        """Address of the selection, without cooldown promotion."""
        return self._endpoints[self._index].address

    def current(self) -> Endpoint:
        """Return the selected endpoint, promoting it if its cooldown passed."""
        ep = self._endpoints[self._index]
        if not ep.is_healthy and self._cooled_down(ep):
            ep.status = EndpointStatus.HEALTHY
        return ep

    def mark_failed(self, endpoint: Endpoint | str) -> None:
        ep = self._lookup(endpoint)
        if ep is None:
            return
        ep.status = EndpointStatus.SUSPECT
        ep.failures += 1
        ep.last_failure_at = self._clock()

    def mark_healthy(self, endpoint: Endpoint | str) -> None:
        ep = self._lookup(endpoint)
        if ep is None:
            return
        ep.status = EndpointStatus.HEALTHY
        ep.successes += 1

    def advance(self) -> Endpoint:
        """Rotate to the next usable endpoint, wrapping around.

        Returns a different endpoint than before unless the pool has one
        entry.  When no other endpoint is usable the rotation is exhausted:
        every endpoint is reset to HEALTHY and the next one in order wins.
        """
        size = len(self._endpoints)
        for step in range(1, size):
            idx = (self._index + step) % size
            ep = self._endpoints[idx]
            if ep.is_healthy or self._cooled_down(ep):
                ep.status = EndpointStatus.HEALTHY
                self._index = idx
                return ep

        logger.info("All %d endpoint(s) failed, resetting pool health", size)
        for ep in self._endpoints:
            ep.status = EndpointStatus.HEALTHY
        self._index = (self._index + 1) % size
        return self._endpoints[self._index]

    def reset(self) -> None:
        """Forget all health history and select the first endpoint."""
        self._index = 0
        for ep in self._endpoints:
            ep.status = EndpointStatus.HEALTHY
            ep.last_failure_at = None
            ep.failures = 0
            ep.successes = 0

    def get_stats(self) -> list[dict[str, Any]]:
        return [
            {
                "address": ep.address,
                "status": ep.status.value,
                "current": idx == self._index,
                "failures": ep.failures,
                "successes": ep.successes,
                "last_failure_at": ep.last_failure_at,
            }
            for idx, ep in enumerate(self._endpoints)
        ]

    def _cooled_down(self, ep: Endpoint) -> bool:
        if ep.last_failure_at is None:
            return True
        return self._clock() - ep.last_failure_at >= self._cooldown

    def _lookup(self, endpoint: Endpoint | str) -> Endpoint | None:
        if isinstance(endpoint, Endpoint):
            # Identity first: the same address may be listed twice.
            for ep in self._endpoints:
                if ep is endpoint:
                    return ep
            endpoint = endpoint.address
        for ep in self._endpoints:
            if ep.address == endpoint:
                return ep
        return None
