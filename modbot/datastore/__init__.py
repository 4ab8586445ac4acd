"""
Persistent key/value state with per-entry TTL and background maintenance.

Provides:
- MemoryStateStore / FileStateStore: interchangeable backends
- StateStoreManager: backend selection, maintenance schedule, unwrapped helpers
"""

from modbot.datastore.manager import StateStoreManager
from modbot.datastore.models import (
    StateEntry,
    StateResult,
    StateStats,
    StateStoreConfig,
    StateStoreOptions,
)
from modbot.datastore.stores import FileStateStore, MemoryStateStore, StateStore

__all__ = [
    "StateStoreManager",
    "StateEntry",
    "StateResult",
    "StateStats",
    "StateStoreConfig",
    "StateStoreOptions",
    "StateStore",
    "MemoryStateStore",
    "FileStateStore",
]
