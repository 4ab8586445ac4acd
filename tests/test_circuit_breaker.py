import asyncio
from datetime import timedelta

import pytest

from modbot.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from modbot.services.errors import CircuitOpenError, ClientError

pytestmark = pytest.mark.asyncio


def _config(
    failure_threshold: int = 3,
    recovery_seconds: float = 30,
    success_threshold: int = 2,
    window_seconds: float = 60,
) -> CircuitBreakerConfig:
    return CircuitBreakerConfig(
        failure_threshold=failure_threshold,
        recovery_timeout=timedelta(seconds=recovery_seconds),
        success_threshold=success_threshold,
        monitoring_window=timedelta(seconds=window_seconds),
    )


class _Operation:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.fail:
            raise RuntimeError("backend down")
        return "ok"


async def _trip(breaker: CircuitBreaker, times: int) -> None:
    failing = _Operation(fail=True)
    for _ in range(times):
        with pytest.raises(RuntimeError):
            await breaker.execute(failing)


async def test_closed_breaker_passes_calls_through(clock) -> None:
    breaker = CircuitBreaker("svc", _config())
    op = _Operation()

    assert await breaker.execute(op) == "ok"
    assert op.calls == 1
    assert breaker.state == CircuitState.CLOSED
    assert breaker.next_attempt_time is None
    assert breaker.get_stats().last_success_time == clock.now()


@pytest.mark.parametrize("threshold", [1, 3, 5])
async def test_threshold_failures_open_and_reject_without_invoking(
    clock, threshold: int
) -> None:
    breaker = CircuitBreaker("svc", _config(failure_threshold=threshold))

    await _trip(breaker, threshold - 1)
    assert breaker.state == CircuitState.CLOSED

    await _trip(breaker, 1)
    assert breaker.state == CircuitState.OPEN
    assert breaker.next_attempt_time == clock.now() + timedelta(seconds=30)

    op = _Operation()
    with pytest.raises(CircuitOpenError) as excinfo:
        await breaker.execute(op)
    assert op.calls == 0
    assert excinfo.value.reset_after_seconds == pytest.approx(30)


async def test_open_breaker_denies_until_next_attempt_time(clock) -> None:
    breaker = CircuitBreaker("svc", _config(failure_threshold=1))
    await _trip(breaker, 1)

    clock.advance(seconds=29.999)
    with pytest.raises(CircuitOpenError):
        await breaker.execute(_Operation())

    clock.advance(milliseconds=1)
    op = _Operation()
    assert await breaker.execute(op) == "ok"
    assert op.calls == 1
    assert breaker.state == CircuitState.HALF_OPEN


async def test_failure_in_half_open_reopens_with_fresh_deadline(clock) -> None:
    breaker = CircuitBreaker("svc", _config(failure_threshold=1))
    await _trip(breaker, 1)
    first_deadline = breaker.next_attempt_time

    clock.advance(seconds=45)
    await _trip(breaker, 1)

    assert breaker.state == CircuitState.OPEN
    assert breaker.next_attempt_time == clock.now() + timedelta(seconds=30)
    assert breaker.next_attempt_time > first_deadline


async def test_success_threshold_in_half_open_closes_and_resets(clock) -> None:
    breaker = CircuitBreaker("svc", _config(failure_threshold=2, success_threshold=3))
    await _trip(breaker, 2)
    clock.advance(seconds=30)

    await breaker.execute(_Operation())
    await breaker.execute(_Operation())
    assert breaker.state == CircuitState.HALF_OPEN
    assert breaker.success_count == 2

    await breaker.execute(_Operation())
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0
    assert breaker.success_count == 0
    assert breaker.next_attempt_time is None


async def test_failures_outside_monitoring_window_stop_counting(clock) -> None:
    breaker = CircuitBreaker("svc", _config(failure_threshold=3, window_seconds=10))

    await _trip(breaker, 2)
    clock.advance(seconds=11)
    await _trip(breaker, 1)

    assert breaker.failure_count == 1
    assert breaker.state == CircuitState.CLOSED


async def test_excluded_exceptions_are_not_recorded(clock) -> None:
    breaker = CircuitBreaker(
        "svc", _config(failure_threshold=1), excluded_exceptions=(ClientError,)
    )

    async def _not_found() -> None:
        raise ClientError("not found", 404, "/cases/1")

    with pytest.raises(ClientError):
        await breaker.execute(_not_found)

    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


async def test_concurrent_failures_are_all_counted(clock) -> None:
    breaker = CircuitBreaker("svc", _config(failure_threshold=4))

    async def _slow_fail() -> None:
        await asyncio.sleep(0)
        raise RuntimeError("boom")

    results = await asyncio.gather(
        *(breaker.execute(_slow_fail) for _ in range(4)), return_exceptions=True
    )

    assert all(isinstance(r, RuntimeError) for r in results)
    assert breaker.failure_count == 4
    assert breaker.state == CircuitState.OPEN


async def test_force_open_and_manual_reset(clock) -> None:
    breaker = CircuitBreaker("svc", _config())

    breaker.force_open()
    assert breaker.state == CircuitState.OPEN
    assert breaker.get_time_until_reset() == pytest.approx(30)

    breaker.reset()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.get_time_until_reset() is None


async def test_registry_creates_one_breaker_per_endpoint(clock) -> None:
    registry = CircuitBreakerRegistry(default_config=_config(failure_threshold=1))

    first = registry.get("http://api/a")
    assert registry.get("http://api/a") is first
    assert registry.get("http://api/b") is not first
    assert len(registry) == 2

    await _trip(first, 1)
    assert registry.get_open_circuits() == ["http://api/a"]

    stats = registry.get_all_stats()
    assert stats["http://api/a"].state == CircuitState.OPEN
    assert stats["http://api/b"].state == CircuitState.CLOSED

    registry.reset_all()
    assert registry.get_open_circuits() == []
    assert registry.reset("http://api/missing") is False


async def test_config_rejects_invalid_values() -> None:
    with pytest.raises(ValueError, match="failure_threshold"):
        _config(failure_threshold=0)
    with pytest.raises(ValueError, match="success_threshold"):
        _config(success_threshold=0)
    with pytest.raises(ValueError, match="monitoring_window"):
        _config(window_seconds=0)
