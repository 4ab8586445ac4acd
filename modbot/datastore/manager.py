"""
StateStoreManager - Selects the backend once and exposes unwrapped helpers.
"""

from datetime import timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from modbot.datastore.models import StateResult, StateStoreConfig
from modbot.datastore.stores import FileStateStore, MemoryStateStore, StateStore
from modbot.services.errors import StateStoreError

MAINTENANCE_JOB_ID = "state_store_maintenance"


def _build_store(config: StateStoreConfig) -> StateStore:
    if config.type == "memory":
        return MemoryStateStore(config)
    if config.type == "file":
        return FileStateStore(config)
    if config.type == "redis":
        raise NotImplementedError("Redis state store not yet implemented")
    if config.type == "sqlite":
        raise NotImplementedError("SQLite state store not yet implemented")
    raise ValueError(f"Unknown state store type: {config.type}")


class StateStoreManager:
    """
    Owns the active state store and its maintenance schedule.

    Usage:
        manager = StateStoreManager()
        result = await manager.initialize(StateStoreConfig(type="file"))
        if not result.success:
            raise RuntimeError(result.error)

        await manager.set("bot:last_start", "2024-01-01T00:00:00")
        value = await manager.get("bot:last_start")
    """

    def __init__(self) -> None:
        self._store: StateStore | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self.config: StateStoreConfig | None = None

    @property
    def is_initialized(self) -> bool:
        return self._store is not None

    async def initialize(self, config: StateStoreConfig) -> StateResult[None]:
        """Create the backend for config.type, load it and start maintenance."""
        logger.info(f"Initializing state store: {config.type}")
        try:
            store = _build_store(config)
            result = await store.initialize()
            if not result.success:
                return result
        except (NotImplementedError, ValueError) as e:
            message = f"State store initialization failed: {e}"
            logger.error(message)
            return StateResult.fail(message)

        if self._store is not None:
            await self.close()

        self._store = store
        self.config = config

        if config.options.cleanup_interval:
            self._start_maintenance(config.options.cleanup_interval)

        logger.info(f"State store initialized successfully: {config.type}")
        return StateResult.ok()

    def _start_maintenance(self, interval: timedelta) -> None:
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_maintenance,
            trigger="interval",
            seconds=interval.total_seconds(),
            id=MAINTENANCE_JOB_ID,
            name="State Store Maintenance",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            f"State store maintenance scheduled every {interval.total_seconds():.0f}s"
        )

    async def run_maintenance(self) -> StateResult[int]:
        """Maintenance job body; failures are logged, never raised."""
        result = await self.get_store().maintenance()
        if not result.success:
            logger.error(f"State store maintenance failed: {result.error}")
        return result

    def get_store(self) -> StateStore:
        """Get the active state store instance."""
        if self._store is None:
            raise StateStoreError(
                "State store not initialized. Call initialize() first."
            )
        return self._store

    async def get(self, key: str) -> Any:
        result = await self.get_store().get(key)
        if not result.success:
            raise StateStoreError(result.error or "Get operation failed")
        return result.data

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        result = await self.get_store().set(key, value, ttl)
        if not result.success:
            raise StateStoreError(result.error or "Set operation failed")

    async def delete(self, key: str) -> bool:
        result = await self.get_store().delete(key)
        if not result.success:
            raise StateStoreError(result.error or "Delete operation failed")
        return bool(result.data)

    async def exists(self, key: str) -> bool:
        result = await self.get_store().exists(key)
        if not result.success:
            raise StateStoreError(result.error or "Exists operation failed")
        return bool(result.data)

    async def close(self) -> None:
        """Stop the maintenance job and release the store."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        if self._store is not None:
            await self._store.close()
            self._store = None
        logger.debug("StateStoreManager closed")
