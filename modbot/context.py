"""
ServiceContext - Root object owning every shared service instance.

Built once at startup and passed down, so tests can create isolated
instances instead of sharing process-wide registries.
"""

from typing import Any

from loguru import logger

from modbot.datastore import StateStoreManager
from modbot.datastore.models import StateResult
from modbot.services.case_service import CaseService
from modbot.services.circuit_breaker import CircuitBreakerRegistry
from modbot.services.client import BaseApiClient, create_api_client
from modbot.services.metrics import MetricsRegistry
from modbot.settings import Settings


class ServiceContext:
    def __init__(
        self,
        settings: Settings,
        api_client: BaseApiClient | None = None,
    ):
        self.settings = settings
        self.metrics = MetricsRegistry()
        self.breakers = CircuitBreakerRegistry(
            default_config=settings.circuit_breaker_config()
        )
        self.api_client = api_client or create_api_client(
            settings.api_client_config(),
            mock_mode=settings.mock_mode,
            breakers=self.breakers,
            metrics=self.metrics,
        )
        self.state = StateStoreManager()
        self.cases = CaseService(
            self.api_client, self.metrics, debug=settings.cache_debug
        )

    async def initialize_state(self) -> StateResult[None]:
        return await self.state.initialize(self.settings.state_store_config())

    def get_health_status(self) -> dict[str, Any]:
        return {
            "api": self.api_client.get_health_status(),
            "state_store": {
                "type": self.state.config.type if self.state.config else None,
                "initialized": self.state.is_initialized,
            },
            "metrics": self.metrics.get_snapshot().to_dict(),
        }

    async def close(self) -> None:
        await self.api_client.close()
        await self.state.close()
        logger.debug("ServiceContext closed")

    async def __aenter__(self) -> "ServiceContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
