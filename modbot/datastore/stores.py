"""
State store backends.

Both backends share the same semantics:
- per-entry TTL measured from the last update, falling back to ``default_ttl``
- expired entries are dropped when read and swept by ``maintenance()``
- every operation returns a ``StateResult`` instead of raising

``FileStateStore`` additionally writes the whole entry map to a JSON file on
every mutation and reloads it in ``initialize()``.
"""

import asyncio
import json
import re
import time
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from modbot.datastore.models import (
    StateEntry,
    StateResult,
    StateStats,
    StateStoreConfig,
)

ACCESS_TIME_SAMPLES = 100


def _now() -> datetime:
    return datetime.now(timezone.utc)


def compile_key_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a ``*`` wildcard pattern into a regex. No other globbing."""
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


class StateStore(ABC):
    """Interface every state backend implements."""

    async def initialize(self) -> StateResult[None]:
        return StateResult.ok()

    @abstractmethod
    async def set(
        self, key: str, value: Any, ttl: timedelta | None = None
    ) -> StateResult[None]: ...

    @abstractmethod
    async def get(self, key: str) -> StateResult[Any]: ...

    @abstractmethod
    async def delete(self, key: str) -> StateResult[bool]: ...

    @abstractmethod
    async def exists(self, key: str) -> StateResult[bool]: ...

    @abstractmethod
    async def keys(self, pattern: str | None = None) -> StateResult[list[str]]: ...

    @abstractmethod
    async def clear(self) -> StateResult[None]: ...

    @abstractmethod
    async def stats(self) -> StateResult[StateStats]: ...

    @abstractmethod
    async def maintenance(self) -> StateResult[int]: ...

    async def close(self) -> None:
        return None


class MemoryStateStore(StateStore):
    """
    In-process state store. Fast, not persistent.

    All operations on one instance are serialized with an asyncio lock so
    reads that observe size or iterate keys never interleave with writes.
    """

    def __init__(self, config: StateStoreConfig | None = None):
        config = config or StateStoreConfig()
        self._data: dict[str, StateEntry] = {}
        self._default_ttl = config.options.default_ttl
        self._lock = asyncio.Lock()
        self._started = time.monotonic()
        self._access_times: deque[float] = deque(maxlen=ACCESS_TIME_SAMPLES)

    async def _persist(self) -> None:
        """Hook for persistent backends. Called with the lock held."""
        return None

    def _track(self, started: float) -> None:
        self._access_times.append((time.monotonic() - started) * 1000)

    def _live_entry(self, key: str) -> tuple[StateEntry | None, bool]:
        """Return (entry, expired_and_removed). Called with the lock held."""
        entry = self._data.get(key)
        if entry is None:
            return None, False
        if entry.is_expired(_now()):
            del self._data[key]
            return None, True
        return entry, False

    async def set(
        self, key: str, value: Any, ttl: timedelta | None = None
    ) -> StateResult[None]:
        started = time.monotonic()
        try:
            async with self._lock:
                now = _now()
                previous = self._data.get(key)
                self._data[key] = StateEntry(
                    key=key,
                    value=value,
                    created=previous.created if previous else now,
                    updated=now,
                    ttl=ttl if ttl is not None else self._default_ttl,
                    access_count=previous.access_count if previous else 0,
                    last_accessed=now,
                )
                try:
                    await self._persist()
                except Exception:
                    if previous is None:
                        self._data.pop(key, None)
                    else:
                        self._data[key] = previous
                    raise
            self._track(started)
            return StateResult.ok()
        except Exception as e:
            return StateResult.fail(f"Set operation failed: {e}")

    async def get(self, key: str) -> StateResult[Any]:
        started = time.monotonic()
        try:
            async with self._lock:
                entry, removed = self._live_entry(key)
                if removed:
                    await self._persist()
                if entry is None:
                    self._track(started)
                    return StateResult.ok(None)

                entry.access_count += 1
                entry.last_accessed = _now()
            self._track(started)
            return StateResult.ok(entry.value)
        except Exception as e:
            return StateResult.fail(f"Get operation failed: {e}")

    async def delete(self, key: str) -> StateResult[bool]:
        try:
            async with self._lock:
                existed = self._data.pop(key, None) is not None
                if existed:
                    await self._persist()
            return StateResult.ok(existed)
        except Exception as e:
            return StateResult.fail(f"Delete operation failed: {e}")

    async def exists(self, key: str) -> StateResult[bool]:
        try:
            async with self._lock:
                entry, removed = self._live_entry(key)
                if removed:
                    await self._persist()
            return StateResult.ok(entry is not None)
        except Exception as e:
            return StateResult.fail(f"Exists operation failed: {e}")

    async def keys(self, pattern: str | None = None) -> StateResult[list[str]]:
        try:
            async with self._lock:
                keys = list(self._data)
            if pattern:
                regex = compile_key_pattern(pattern)
                keys = [key for key in keys if regex.search(key)]
            return StateResult.ok(keys)
        except Exception as e:
            return StateResult.fail(f"Keys operation failed: {e}")

    async def clear(self) -> StateResult[None]:
        try:
            async with self._lock:
                self._data.clear()
                await self._persist()
            return StateResult.ok()
        except Exception as e:
            return StateResult.fail(f"Clear operation failed: {e}")

    async def stats(self) -> StateResult[StateStats]:
        try:
            async with self._lock:
                now = _now()
                entries = list(self._data.values())
                expired = sum(1 for entry in entries if entry.is_expired(now))
                size = sum(
                    len(json.dumps(entry.to_dict(), default=str)) for entry in entries
                )
            samples = list(self._access_times)
            return StateResult.ok(
                StateStats(
                    total_entries=len(entries),
                    expired_entries=expired,
                    storage_size=size,
                    uptime=timedelta(seconds=time.monotonic() - self._started),
                    avg_access_time=sum(samples) / len(samples) if samples else 0.0,
                )
            )
        except Exception as e:
            return StateResult.fail(f"Stats operation failed: {e}")

    async def maintenance(self) -> StateResult[int]:
        """Remove every expired entry. Persists once per sweep."""
        try:
            async with self._lock:
                now = _now()
                expired = [k for k, v in self._data.items() if v.is_expired(now)]
                for key in expired:
                    del self._data[key]
                if expired:
                    await self._persist()

            if expired:
                logger.info(
                    f"{type(self).__name__} maintenance completed: "
                    f"{len(expired)} expired entries removed"
                )
            return StateResult.ok(len(expired))
        except Exception as e:
            logger.error(f"{type(self).__name__} maintenance failed: {e}")
            return StateResult.fail(f"Maintenance failed: {e}")

    def __len__(self) -> int:
        """Physically stored entries, expired ones included."""
        return len(self._data)


class FileStateStore(MemoryStateStore):
    """
    JSON-file backed state store.

    Suitable for a single bot process. The file is rewritten on every
    mutation through a temporary file, so a crash mid-write leaves the
    previous version in place.
    """

    def __init__(self, config: StateStoreConfig | None = None):
        config = config or StateStoreConfig(type="file")
        super().__init__(config)
        self.file_path = Path(config.options.file_path)

    async def initialize(self) -> StateResult[None]:
        """Load existing state. A missing or corrupt file means starting empty."""
        async with self._lock:
            try:
                loaded = await asyncio.to_thread(self._read_file)
            except FileNotFoundError:
                logger.info(f"State file {self.file_path} not found, starting fresh")
                return StateResult.ok()
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(
                    f"State file {self.file_path} unreadable, starting fresh: {e}"
                )
                return StateResult.ok()

            self._data = loaded
            logger.info(f"State loaded from {self.file_path}: {len(loaded)} entries")
            return StateResult.ok()

    def _read_file(self) -> dict[str, StateEntry]:
        raw = json.loads(self.file_path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError("state file root must be an object")
        entries: dict[str, StateEntry] = {}
        for key, item in raw.items():
            if not isinstance(item, dict):
                raise ValueError(f"entry '{key}' must be an object")
            entries[key] = StateEntry.from_dict(key, item)
        return entries

    async def _persist(self) -> None:
        serialized = json.dumps(
            {key: entry.to_dict() for key, entry in self._data.items()},
            indent=2,
        )
        try:
            await asyncio.to_thread(self._write_file, serialized)
        except OSError as e:
            logger.error(f"Failed to save state to {self.file_path}: {e}")
            raise

    def _write_file(self, content: str) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.file_path.with_name(self.file_path.name + ".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(self.file_path)
