# =============================================================================
# RTC Session -- Network Monitor
# =============================================================================
#
# Connection health for the active session: latency samples from the
# transport heartbeat, probe loss, and vendor quality levels.
# =============================================================================

from __future__ import annotations

import time
from collections import deque

from .constants import (
    QUALITY_EXCELLENT_JITTER,
    QUALITY_EXCELLENT_LATENCY,
    QUALITY_EXCELLENT_LOSS,
    QUALITY_FAIR_JITTER,
    QUALITY_FAIR_LATENCY,
    QUALITY_FAIR_LOSS,
    QUALITY_GOOD_JITTER,
    QUALITY_GOOD_LATENCY,
    QUALITY_GOOD_LOSS,
)
from .types import ConnectionQuality, NetworkDiagnostics

# Uplink quality levels reported by RTC vendors (0 = unknown, 6 = down)
_LEVEL_QUALITY: dict[int, ConnectionQuality] = {
    0: ConnectionQuality.UNKNOWN,
    1: ConnectionQuality.EXCELLENT,
    2: ConnectionQuality.GOOD,
    3: ConnectionQuality.FAIR,
    4: ConnectionQuality.POOR,
    5: ConnectionQuality.POOR,
    6: ConnectionQuality.POOR,
}


class NetworkMonitor:
    """Rolling quality estimate for one connected session.

    Samples are kept in a fixed window.  A vendor-reported quality level,
    when present, overrides the latency-based classification until the
    next :meth:`reset`.
    """

    def __init__(self, window_size: int = 50) -> None:
        self._latencies: deque[float] = deque(maxlen=window_size)
        self._probes = 0
        self._answered = 0
        self._reported: ConnectionQuality | None = None

    @property
    def last_latency(self) -> float | None:
        return self._latencies[-1] if self._latencies else None

    def record_latency(self, latency_ms: float | None) -> None:
        """Record one heartbeat result; ``None`` means it went unanswered."""
        self._probes += 1
        if latency_ms is None or latency_ms < 0:
            return
        self._answered += 1
        self._latencies.append(latency_ms)

    def record_quality_level(self, level: int) -> None:
        self._reported = _LEVEL_QUALITY.get(level, ConnectionQuality.POOR)

    @property
    def quality(self) -> ConnectionQuality:
        return self.analyze().quality

    def analyze(self) -> NetworkDiagnostics:
        now = time.monotonic()
        lats = list(self._latencies)
        avg = sum(lats) / len(lats) if lats else 0.0
        jitter = 0.0
        if len(lats) > 1:
            jitter = sum(abs(b - a) for a, b in zip(lats, lats[1:])) / (len(lats) - 1)
        loss = 0.0
        if self._probes > self._answered:
            loss = (self._probes - self._answered) / self._probes * 100

        if self._reported is not None:
            quality = self._reported
        elif len(lats) < 2:
            quality = ConnectionQuality.UNKNOWN
        else:
            quality = _classify(avg, jitter, loss)

        suggestions: list[str] = []
        if quality == ConnectionQuality.POOR:
            suggestions.append("Poor connection; video quality may be reduced")
        if loss > 5.0:
            suggestions.append("Heartbeats are being lost")

        return NetworkDiagnostics(
            quality=quality,
            stability=round(max(0.0, 1.0 - jitter / 200.0 - loss / 20.0), 3),
            jitter=round(jitter, 2),
            packet_loss=round(loss, 2),
            round_trip_time=round(avg, 2),
            suggestions=suggestions,
            last_analysis=now,
        )

    def reset(self) -> None:
        self._latencies.clear()
        self._probes = 0
        self._answered = 0
        self._reported = None


def _classify(latency: float, jitter: float, loss: float) -> ConnectionQuality:
    if (
        latency <= QUALITY_EXCELLENT_LATENCY
        and jitter <= QUALITY_EXCELLENT_JITTER
        and loss <= QUALITY_EXCELLENT_LOSS
    ):
        return ConnectionQuality.EXCELLENT
    if (
        latency <= QUALITY_GOOD_LATENCY
        and jitter <= QUALITY_GOOD_JITTER
        and loss <= QUALITY_GOOD_LOSS
    ):
        return ConnectionQuality.GOOD
    if (
        latency <= QUALITY_FAIR_LATENCY
        and jitter <= QUALITY_FAIR_JITTER
        and loss <= QUALITY_FAIR_LOSS
    ):
        return ConnectionQuality.FAIR
    return ConnectionQuality.POOR
