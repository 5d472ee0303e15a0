"""Local circuit breaker that trips on payment bursts or anomalous amounts."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from typing import Callable, Optional

from x402pay.constants import ONE_MINUTE_SECONDS
from x402pay.types import CircuitBreakerConfig, CircuitState, PolicyResult

logger = logging.getLogger(__name__)

# Settled amounts needed before the anomaly guard applies
MIN_ANOMALY_SAMPLES = 3


class CircuitBreaker:
    """closed -> open -> half-open state machine.

    While open every check is denied until the cooldown elapses. The next
    check then moves to half-open and is evaluated normally; the outcome of
    that probe payment closes the breaker again or re-opens it.

    Methods never await, so coroutines sharing one breaker on an event loop
    cannot interleave inside a call. Wrap it in ``SynchronizedCircuitBreaker``
    to share it between threads.

    Args:
        config: Thresholds; defaults to ``CircuitBreakerConfig()``.
        clock: Monotonic clock in seconds, injectable for tests.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state: CircuitState = "closed"
        self._tripped_at = 0.0
        self._trip_reason = ""
        self._timestamps: deque[float] = deque(maxlen=self._config.max_payments_per_minute)
        self._amounts: deque[int] = deque(maxlen=self._config.recent_window_size)

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def trip_reason(self) -> str:
        return self._trip_reason

    def check(self, amount: int) -> PolicyResult:
        """Decide whether a payment of ``amount`` base units may proceed."""
        now = self._clock()

        if self._state == "open":
            elapsed = now - self._tripped_at
            if elapsed >= self._config.cooldown_seconds:
                self._state = "half-open"
                logger.info("[x402] Circuit breaker cooldown elapsed, half-open")
            else:
                remaining = math.ceil(self._config.cooldown_seconds - elapsed)
                return PolicyResult(
                    allowed=False,
                    reason=f"Circuit breaker is OPEN: {self._trip_reason}. Resets in {remaining}s",
                )

        cutoff = now - ONE_MINUTE_SECONDS
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()
        if len(self._timestamps) >= self._config.max_payments_per_minute:
            return self._trip(f"Rate exceeded: {len(self._timestamps)} payments in the last minute")

        if len(self._amounts) >= MIN_ANOMALY_SAMPLES:
            average = sum(self._amounts) // len(self._amounts)
            multiplier = self._config.anomaly_multiplier
            if average > 0 and amount > average * multiplier:
                return self._trip(
                    f"Anomaly detected: payment of {amount} is >{multiplier}x the average of {average}"
                )

        return PolicyResult(allowed=True)

    def record_success(self, amount: int) -> None:
        """Record a settled payment; a successful half-open probe closes the breaker."""
        self._timestamps.append(self._clock())
        self._amounts.append(amount)

        if self._state == "half-open":
            self._state = "closed"
            self._trip_reason = ""
            logger.info("[x402] Circuit breaker probe succeeded, closed")

    def record_failure(self) -> None:
        """Record a failed payment; a failed half-open probe re-opens the breaker."""
        if self._state == "half-open":
            self._trip("Probe payment failed in half-open state")

    def reset(self) -> None:
        """Force the breaker closed and forget the trip."""
        self._state = "closed"
        self._trip_reason = ""
        self._tripped_at = 0.0

    def _trip(self, reason: str) -> PolicyResult:
        self._state = "open"
        self._tripped_at = self._clock()
        self._trip_reason = reason
        logger.warning("[x402] Circuit breaker tripped: %s", reason)
        return PolicyResult(allowed=False, reason=reason)


class SynchronizedCircuitBreaker:
    """Serialises access to a ``CircuitBreaker`` shared between threads."""

    def __init__(self, breaker: Optional[CircuitBreaker] = None) -> None:
        self._breaker = breaker or CircuitBreaker()
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._breaker.state

    @property
    def trip_reason(self) -> str:
        with self._lock:
            return self._breaker.trip_reason

    def check(self, amount: int) -> PolicyResult:
        with self._lock:
            return self._breaker.check(amount)

    def record_success(self, amount: int) -> None:
        with self._lock:
            self._breaker.record_success(amount)

    def record_failure(self) -> None:
        with self._lock:
            self._breaker.record_failure()

    def reset(self) -> None:
        with self._lock:
            self._breaker.reset()
