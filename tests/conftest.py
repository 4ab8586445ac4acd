from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

import modbot.datastore.stores as stores_mod
import modbot.services.cache as cache_mod
import modbot.services.circuit_breaker as breaker_mod


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        if start is None:
            start = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0, milliseconds: float = 0) -> None:
        self._now = self._now + timedelta(seconds=seconds, milliseconds=milliseconds)


class RecordingSleep:
    """Stands in for asyncio.sleep; records delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """One fake clock driving breakers, caches and state stores."""
    fake = FakeClock()
    monkeypatch.setattr(breaker_mod, "_now", fake.now)
    monkeypatch.setattr(cache_mod, "_now", fake.now)
    monkeypatch.setattr(stores_mod, "_now", fake.now)
    return fake


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()
