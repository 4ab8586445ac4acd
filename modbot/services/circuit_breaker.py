"""
CircuitBreaker - Prevents cascading failures by stopping requests to failing endpoints.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Endpoint is failing, requests are blocked
- HALF_OPEN: Testing if endpoint has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold failures fall inside monitoring_window
- OPEN → HALF_OPEN: On the first call at or after next_attempt_time
- HALF_OPEN → CLOSED: After success_threshold successes
- HALF_OPEN → OPEN: On any failure
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from modbot.services.errors import CircuitOpenError

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now()


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker. Every field must be supplied."""

    failure_threshold: int  # Failures before opening
    recovery_timeout: timedelta  # Time before half-open
    success_threshold: int  # Successes needed to close from half-open
    monitoring_window: timedelta  # Failures older than this stop counting

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.recovery_timeout < timedelta(0):
            raise ValueError("recovery_timeout must be >= 0")
        if self.monitoring_window <= timedelta(0):
            raise ValueError("monitoring_window must be > 0")


DEFAULT_CIRCUIT_BREAKER_CONFIG = CircuitBreakerConfig(
    failure_threshold=5,
    recovery_timeout=timedelta(minutes=1),
    success_threshold=3,
    monitoring_window=timedelta(minutes=1),
)


@dataclass
class CircuitBreakerStats:
    """Point-in-time view of a breaker."""

    state: CircuitState
    failures: int
    successes: int
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    next_attempt_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "successes": self.successes,
            "last_failure_time": (
                self.last_failure_time.isoformat() if self.last_failure_time else None
            ),
            "last_success_time": (
                self.last_success_time.isoformat() if self.last_success_time else None
            ),
            "next_attempt_time": (
                self.next_attempt_time.isoformat() if self.next_attempt_time else None
            ),
        }


class CircuitBreaker:
    """
    Circuit breaker for a single endpoint.

    Usage:
        cb = CircuitBreaker("https://api.example.com/ping", config)
        result = await cb.execute(lambda: client.get("/ping"))

    The permission check, the protected operation and the outcome recording
    run under one lock, so overlapping calls on the same breaker are
    serialized.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig,
        excluded_exceptions: tuple[type[Exception], ...] = (),
    ):
        self.name = name
        self.config = config
        self._excluded_exceptions = excluded_exceptions

        self._state = CircuitState.CLOSED
        self._failures: deque[datetime] = deque()
        self._success_count = 0
        self._last_failure_time: datetime | None = None
        self._last_success_time: datetime | None = None
        self._next_attempt_time: datetime | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return len(self._failures)

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def next_attempt_time(self) -> datetime | None:
        return self._next_attempt_time

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run operation if the breaker permits it.

        Raises:
            CircuitOpenError: If the circuit is open; operation is not invoked
            Exception: Whatever operation raised, after it was recorded as a failure
        """
        async with self._lock:
            if not self._can_execute():
                raise CircuitOpenError(self.name, self.get_time_until_reset() or 0)

            try:
                result = await operation()
            except self._excluded_exceptions:
                raise
            except Exception:
                self._on_failure()
                raise

            self._on_success()
            return result

    def _can_execute(self) -> bool:
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if self._next_attempt_time and _now() >= self._next_attempt_time:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                logger.info(f"Circuit breaker '{self.name}' transitioned to HALF_OPEN")
                return True
            return False

        # HALF_OPEN admits trial calls
        return True

    def _on_success(self) -> None:
        self._last_success_time = _now()
        self._success_count += 1

        if (
            self._state == CircuitState.HALF_OPEN
            and self._success_count >= self.config.success_threshold
        ):
            self._close()
            logger.info(f"Circuit breaker '{self.name}' CLOSED (recovered)")

    def _on_failure(self) -> None:
        now = _now()
        self._last_failure_time = now
        self._failures.append(now)
        self._prune_failures(now)

        if self._state == CircuitState.HALF_OPEN:
            self._open(now)
            logger.warning(
                f"Circuit breaker '{self.name}' re-OPENED after failed trial call"
            )
        elif (
            self._state == CircuitState.CLOSED
            and self.failure_count >= self.config.failure_threshold
        ):
            self._open(now)
            logger.warning(
                f"Circuit breaker '{self.name}' OPENED after {self.failure_count} failures"
            )

    def _prune_failures(self, now: datetime) -> None:
        window_start = now - self.config.monitoring_window
        while self._failures and self._failures[0] < window_start:
            self._failures.popleft()

    def _open(self, now: datetime) -> None:
        self._state = CircuitState.OPEN
        self._next_attempt_time = now + self.config.recovery_timeout

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures.clear()
        self._success_count = 0
        self._next_attempt_time = None

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._close()
        logger.info(f"Circuit breaker '{self.name}' manually reset")

    def force_open(self) -> None:
        """Force the circuit open for one recovery period."""
        self._open(_now())
        logger.warning(f"Circuit breaker '{self.name}' forced OPEN")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until the next trial call is allowed."""
        if self._state != CircuitState.OPEN or not self._next_attempt_time:
            return None

        remaining = (self._next_attempt_time - _now()).total_seconds()
        return max(0, remaining)

    def get_stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            state=self._state,
            failures=self.failure_count,
            successes=self._success_count,
            last_failure_time=self._last_failure_time,
            last_success_time=self._last_success_time,
            next_attempt_time=self._next_attempt_time,
        )


class CircuitBreakerRegistry:
    """
    Keyed collection of circuit breakers, one per endpoint.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("https://api.example.com/cases")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        excluded_exceptions: tuple[type[Exception], ...] = (),
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or DEFAULT_CIRCUIT_BREAKER_CONFIG
        self._excluded_exceptions = excluded_exceptions

    def get(
        self,
        endpoint: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for an endpoint."""
        if endpoint not in self._breakers:
            self._breakers[endpoint] = CircuitBreaker(
                endpoint,
                config or self._default_config,
                excluded_exceptions=self._excluded_exceptions,
            )
        return self._breakers[endpoint]

    def __contains__(self, endpoint: str) -> bool:
        return endpoint in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def get_all_stats(self) -> dict[str, CircuitBreakerStats]:
        """Get stats of all circuit breakers."""
        return {endpoint: cb.get_stats() for endpoint, cb in self._breakers.items()}

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for cb in self._breakers.values():
            cb.reset()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def reset(self, endpoint: str) -> bool:
        """Reset a specific circuit breaker."""
        if endpoint in self._breakers:
            self._breakers[endpoint].reset()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        """Get list of endpoints with open circuits."""
        return [
            endpoint
            for endpoint, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
