"""
MockApiClient - Drop-in ApiClient replacement backed by MockBackend.
"""

from typing import Any

from modbot.mocks.backend import MockBackend
from modbot.services.circuit_breaker import CircuitBreakerStats
from modbot.services.client import (
    ApiResponse,
    BaseApiClient,
    RequestOptions,
    generate_request_id,
)


class MockApiClient(BaseApiClient):
    """Routes every call to the in-memory backend. No breakers, no retries."""

    def __init__(self, backend: MockBackend | None = None):
        self.backend = backend or MockBackend()

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        options: RequestOptions | None = None,
    ) -> ApiResponse[Any]:
        params = options.params if options else None
        data = await self.backend.handle_request(method, path, body, params)
        return ApiResponse(data=data, status=200, request_id=generate_request_id())

    def get_circuit_breaker_stats(self) -> dict[str, CircuitBreakerStats]:
        return {}

    def reset_circuit_breakers(self) -> None:
        self.backend.reset()

    def get_health_status(self) -> dict[str, Any]:
        return {"mode": "mock", "backend": self.backend.get_stats()}
