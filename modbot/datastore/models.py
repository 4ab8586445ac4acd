"""
State store data types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")

StoreType = Literal["memory", "file", "redis", "sqlite"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string. Values without an offset are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class StateResult(Generic[T]):
    """Outcome of a state store operation. Expected failures never raise."""

    success: bool
    data: T | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=_now)

    @classmethod
    def ok(cls, data: T | None = None) -> "StateResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "StateResult[T]":
        return cls(success=False, error=error)


@dataclass
class StateEntry:
    """A stored value with its bookkeeping."""

    key: str
    value: Any
    created: datetime
    updated: datetime
    ttl: timedelta | None = None
    access_count: int = 0
    last_accessed: datetime = field(default_factory=_now)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.ttl is None:
            return False
        return (now or _now()) - self.updated > self.ttl

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON shape (UTC ISO timestamps, ttl in ms)."""
        return {
            "value": self.value,
            "created": format_timestamp(self.created),
            "updated": format_timestamp(self.updated),
            "ttl": (
                int(self.ttl.total_seconds() * 1000) if self.ttl is not None else None
            ),
            "accessCount": self.access_count,
            "lastAccessed": format_timestamp(self.last_accessed),
        }

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any]) -> "StateEntry":
        ttl_ms = data.get("ttl")
        updated = parse_timestamp(data["updated"])
        return cls(
            key=key,
            value=data.get("value"),
            created=parse_timestamp(data.get("created", data["updated"])),
            updated=updated,
            ttl=timedelta(milliseconds=ttl_ms) if ttl_ms is not None else None,
            access_count=int(data.get("accessCount", 0)),
            last_accessed=(
                parse_timestamp(data["lastAccessed"])
                if data.get("lastAccessed")
                else updated
            ),
        )


@dataclass
class StateStats:
    """Storage statistics."""

    total_entries: int
    expired_entries: int
    storage_size: int  # bytes, estimated from the JSON encoding
    uptime: timedelta
    avg_access_time: float = 0.0  # milliseconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "expired_entries": self.expired_entries,
            "storage_size": self.storage_size,
            "uptime_seconds": self.uptime.total_seconds(),
            "avg_access_time_ms": self.avg_access_time,
        }


@dataclass
class StateStoreOptions:
    """Backend options."""

    file_path: Path = Path("state.json")
    default_ttl: timedelta | None = None
    cleanup_interval: timedelta | None = None
    redis_url: str | None = None
    sqlite_path: Path | None = None


@dataclass
class StateStoreConfig:
    """Which backend to use and how to configure it."""

    type: StoreType = "memory"
    options: StateStoreOptions = field(default_factory=StateStoreOptions)
