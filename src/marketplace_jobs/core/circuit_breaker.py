"""
Circuit breaker for calls to external services (registrars, Cloudflare).

After ``failure_threshold`` failures inside ``time_window`` seconds the circuit
opens and calls fail fast until ``timeout`` seconds have passed. The next call
is then let through in HALF_OPEN state; ``success_threshold`` consecutive
successes close the circuit again, any failure reopens it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from marketplace_jobs.core.errors import ErrorSeverity, ExternalApiError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout: float = 60.0
    time_window: float = 60.0


class CircuitOpenError(ExternalApiError):
    """Raised instead of calling a service whose circuit is open."""

    def __init__(self, service: str, retry_in: float):
        retry_in = max(retry_in, 0.0)
        retry_at = datetime.now(timezone.utc) + timedelta(seconds=retry_in)
        # Fail fast now, but the job is worth retrying once the circuit recovers.
        super().__init__(
            f"Circuit breaker is OPEN for {service}. Retry in {retry_in:.0f}s",
            service=service,
            severity=ErrorSeverity.RECOVERABLE,
            retryable=True,
            context={"circuit_state": CircuitState.OPEN.value, "retry_in": retry_in, "retry_at": retry_at.isoformat()},
        )
        self.retry_in = retry_in
        self.retry_at = retry_at


class CircuitBreaker:
    def __init__(
        self,
        service_name: str,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.successes = 0
        self.next_attempt = 0.0
        self.last_failure_at: Optional[float] = None
        self._recent_failures: List[float] = []

    async def execute(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        if self.state == CircuitState.OPEN:
            now = self._clock()
            if now < self.next_attempt:
                raise CircuitOpenError(self.service_name, self.next_attempt - now)
            self.state = CircuitState.HALF_OPEN
            self.successes = 0
            logger.info("Circuit breaker for %s entering HALF_OPEN", self.service_name)

        try:
            result = await fn(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.successes += 1
            if self.successes >= self.config.success_threshold:
                self.state = CircuitState.CLOSED
                self.failures = 0
                self.successes = 0
                self._recent_failures = []
                logger.info("Circuit breaker for %s CLOSED", self.service_name)
        else:
            self.failures = 0
            self._recent_failures = []

    def _on_failure(self) -> None:
        now = self._clock()
        self.failures += 1
        self.last_failure_at = now
        self._recent_failures.append(now)
        window_start = now - self.config.time_window
        self._recent_failures = [ts for ts in self._recent_failures if ts > window_start]

        if self.state == CircuitState.HALF_OPEN:
            self._open(now)
        elif len(self._recent_failures) >= self.config.failure_threshold:
            self._open(now)

    def _open(self, now: float) -> None:
        self.state = CircuitState.OPEN
        self.successes = 0
        self.next_attempt = now + self.config.timeout
        logger.warning(
            "Circuit breaker OPEN for %s after %d recent failures; next attempt in %.0fs",
            self.service_name,
            len(self._recent_failures),
            self.config.timeout,
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "service": self.service_name,
            "state": self.state.value,
            "failures": self.failures,
            "recent_failures": len(self._recent_failures),
            "successes": self.successes,
            "next_attempt_in": max(self.next_attempt - self._clock(), 0.0) if self.state == CircuitState.OPEN else None,
        }

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.successes = 0
        self.next_attempt = 0.0
        self.last_failure_at = None
        self._recent_failures = []


class CircuitBreakerRegistry:
    """Named breakers shared across handlers within one worker process."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get_breaker(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, config, clock=self._clock)
            self._breakers[name] = breaker
        return breaker

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_status() for name, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()


circuit_breakers = CircuitBreakerRegistry()

# Shared by every caller of the Cloudflare API (zones, DNS records, edge SSL).
CLOUDFLARE_BREAKER = "cloudflare-api"
