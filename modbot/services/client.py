"""
ApiClient - Async HTTP client for the moderation backend with resilience patterns.

Combines:
- Request tracing (one request id per attempt group)
- CircuitBreaker per endpoint, looked up in a CircuitBreakerRegistry
- Retries with exponential backoff for retryable failures
- Request metrics and optional audit logging
"""

import asyncio
import random
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

import httpx
from loguru import logger

from modbot.services.circuit_breaker import (
    CircuitBreakerRegistry,
    CircuitBreakerStats,
)
from modbot.services.errors import (
    ApiError,
    CircuitBreakerError,
    CircuitOpenError,
    create_api_error,
)
from modbot.services.metrics import MetricsRegistry, RequestMetric

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]

_REDACTED_HEADERS = {"authorization", "x-api-key", "cookie"}


@dataclass
class ApiClientConfig:
    """Configuration for the API client."""

    base_url: str
    api_key: str = ""
    timeout: float = 30.0  # seconds, per attempt
    max_retries: int = 3
    retry_delay: float = 1.0  # seconds before the first retry
    retry_backoff_multiplier: float = 2.0
    enable_circuit_breaker: bool = True
    enable_audit_logging: bool = True
    user_agent: str = "modbot/0.1.0"

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")
        if self.retry_backoff_multiplier < 1:
            raise ValueError("retry_backoff_multiplier must be >= 1")


@dataclass
class RequestOptions:
    """Per-request overrides."""

    params: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    timeout: float | None = None


@dataclass
class ApiResponse(Generic[T]):
    """Response envelope returned by every client call."""

    data: T
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    request_id: str | None = None
    duration_ms: float = 0.0


@dataclass
class RequestContext:
    """Tracing state shared by all attempts of one logical call."""

    request_id: str
    method: str
    endpoint: str
    retry_count: int = 0
    start_time: float = field(default_factory=time.monotonic)

    @property
    def duration_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000


def generate_request_id() -> str:
    """Generate a unique request ID for tracing."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"req_{int(time.time() * 1000)}_{suffix}"


def sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    """Mask credentials before headers reach the logs."""
    return {
        key: "[REDACTED]" if key.lower() in _REDACTED_HEADERS else value
        for key, value in headers.items()
    }


class BaseApiClient(ABC):
    """Public contract shared by the real and the mock client."""

    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        options: RequestOptions | None = None,
    ) -> ApiResponse[Any]: ...

    async def get(
        self, path: str, options: RequestOptions | None = None
    ) -> ApiResponse[Any]:
        return await self.request("GET", path, None, options)

    async def post(
        self, path: str, body: Any = None, options: RequestOptions | None = None
    ) -> ApiResponse[Any]:
        return await self.request("POST", path, body, options)

    async def put(
        self, path: str, body: Any = None, options: RequestOptions | None = None
    ) -> ApiResponse[Any]:
        return await self.request("PUT", path, body, options)

    async def patch(
        self, path: str, body: Any = None, options: RequestOptions | None = None
    ) -> ApiResponse[Any]:
        return await self.request("PATCH", path, body, options)

    async def delete(
        self, path: str, options: RequestOptions | None = None
    ) -> ApiResponse[Any]:
        return await self.request("DELETE", path, None, options)

    @abstractmethod
    def get_circuit_breaker_stats(self) -> dict[str, CircuitBreakerStats]: ...

    @abstractmethod
    def reset_circuit_breakers(self) -> None: ...

    @abstractmethod
    def get_health_status(self) -> dict[str, Any]: ...

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> "BaseApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class ApiClient(BaseApiClient):
    """
    HTTP client with circuit breaking, retries and request metrics.

    Usage:
        client = ApiClient(ApiClientConfig(base_url="https://api.example.com", api_key="..."))

        response = await client.get("/moderation/cases/stats")
        print(response.status, response.data)

    Retryable failures (timeouts, network errors, 5xx) are retried up to
    ``max_retries`` times, waiting ``retry_delay * multiplier ** (n - 1)``
    seconds before retry ``n``. 4xx responses are raised immediately.
    """

    def __init__(
        self,
        config: ApiClientConfig,
        breakers: CircuitBreakerRegistry | None = None,
        metrics: MetricsRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn | None = None,
    ):
        self.config = config
        # An empty registry is falsy, so test for None explicitly
        if breakers is None:
            breakers = CircuitBreakerRegistry()
        self._breakers = breakers
        self._metrics = metrics or MetricsRegistry()
        self._transport = transport
        self._sleep = sleep or asyncio.sleep

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout),
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "Content-Type": "application/json",
                    "User-Agent": self.config.user_agent,
                },
                transport=self._transport,
            )
        return self._http_client

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        options: RequestOptions | None = None,
    ) -> ApiResponse[Any]:
        """
        Make an HTTP request with resilience patterns.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Path relative to base_url
            body: JSON body for POST/PUT/PATCH requests
            options: Query params, extra headers and timeout override

        Returns:
            ApiResponse with the decoded body

        Raises:
            CircuitBreakerError: If the endpoint's circuit is open
            ClientError: On a 4xx response
            ServerError, NetworkError, RequestTimeoutError: Once retries are exhausted
        """
        options = options or RequestOptions()
        ctx = RequestContext(
            request_id=generate_request_id(),
            method=method.upper(),
            endpoint=path,
        )
        full_url = f"{self.config.base_url}{path}"
        timeout = options.timeout or self.config.timeout

        logger.info(
            f"API request initiated: {ctx.method} {path} "
            f"[{ctx.request_id}] timeout={timeout}s "
            f"headers={sanitize_headers(self._request_headers(options))}"
        )

        while True:
            try:
                response = await self._attempt(ctx, full_url, body, options, timeout)
            except CircuitOpenError:
                logger.warning(
                    f"Circuit open for {full_url}, request {ctx.request_id} not attempted"
                )
                error = CircuitBreakerError(full_url, ctx.request_id)
                self._finish(ctx, error.status_code)
                raise error from None
            except ApiError as error:
                if error.retryable and ctx.retry_count < self.config.max_retries:
                    ctx.retry_count += 1
                    delay = self.calculate_retry_delay(ctx.retry_count)
                    logger.warning(
                        f"API request retry {ctx.retry_count}/{self.config.max_retries} "
                        f"[{ctx.request_id}] in {delay:.2f}s: {error}"
                    )
                    await self._sleep(delay)
                    continue

                if ctx.retry_count:
                    logger.error(
                        f"API request failed after {ctx.retry_count} retries "
                        f"[{ctx.request_id}]: {error} (status {error.status_code})"
                    )
                else:
                    logger.error(
                        f"API request failed [{ctx.request_id}]: "
                        f"{error} (status {error.status_code})"
                    )
                self._finish(ctx, error.status_code)
                raise

            duration_ms = self._finish(ctx, response.status_code)
            logger.info(
                f"API response received [{ctx.request_id}] "
                f"status={response.status_code} duration={duration_ms:.0f}ms "
                f"size={len(response.content)}"
            )
            return ApiResponse(
                data=self._decode(response),
                status=response.status_code,
                headers=dict(response.headers),
                request_id=ctx.request_id,
                duration_ms=duration_ms,
            )

    async def _attempt(
        self,
        ctx: RequestContext,
        full_url: str,
        body: Any,
        options: RequestOptions,
        timeout: float,
    ) -> httpx.Response:
        async def send() -> httpx.Response:
            return await self._send(ctx, body, options, timeout)

        if self.config.enable_circuit_breaker:
            return await self._breakers.get(full_url).execute(send)
        return await send()

    async def _send(
        self,
        ctx: RequestContext,
        body: Any,
        options: RequestOptions,
        timeout: float,
    ) -> httpx.Response:
        """Execute a single attempt and translate failures into ApiError."""
        client = self._get_http_client()
        headers = {"X-Request-ID": ctx.request_id}
        if options.headers:
            headers.update(options.headers)
        try:
            response = await client.request(
                method=ctx.method,
                url=ctx.endpoint,
                params=options.params,
                headers=headers,
                json=body,
                timeout=timeout,
            )
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            raise create_api_error(
                e,
                ctx.endpoint,
                request_id=ctx.request_id,
                timeout=timeout,
                final_attempt=ctx.retry_count >= self.config.max_retries,
            ) from e

    def _request_headers(self, options: RequestOptions) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "User-Agent": self.config.user_agent,
        }
        if options.headers:
            headers.update(options.headers)
        return headers

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _finish(self, ctx: RequestContext, status: int) -> float:
        """Emit the request metric and audit record for a completed call."""
        duration_ms = ctx.duration_ms
        self._metrics.record_api_request(
            RequestMetric(
                method=ctx.method,
                endpoint=ctx.endpoint,
                status=status,
                duration_ms=duration_ms,
            )
        )
        if self.config.enable_audit_logging:
            logger.bind(audit=True).info(
                f"AUDIT api_call request_id={ctx.request_id} method={ctx.method} "
                f"endpoint={ctx.endpoint} status={status} retries={ctx.retry_count} "
                f"duration_ms={duration_ms:.0f}"
            )
        return duration_ms

    def calculate_retry_delay(self, retry_count: int) -> float:
        """Seconds to wait before retry number retry_count (1-based)."""
        return self.config.retry_delay * (
            self.config.retry_backoff_multiplier ** (retry_count - 1)
        )

    def get_circuit_breaker_stats(self) -> dict[str, CircuitBreakerStats]:
        return self._breakers.get_all_stats()

    def reset_circuit_breakers(self) -> None:
        self._breakers.reset_all()

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of the backend connection."""
        return {
            "mode": "live",
            "base_url": self.config.base_url,
            "circuit_breakers": {
                endpoint: stats.to_dict()
                for endpoint, stats in self.get_circuit_breaker_stats().items()
            },
            "open_circuits": self._breakers.get_open_circuits(),
        }

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ApiClient closed")


def create_api_client(
    config: ApiClientConfig,
    mock_mode: bool = False,
    breakers: CircuitBreakerRegistry | None = None,
    metrics: MetricsRegistry | None = None,
) -> BaseApiClient:
    """Choose the live or the mock client once, at construction."""
    if mock_mode:
        from modbot.mocks.client import MockApiClient

        logger.warning(
            "API client initialized in mock mode: network requests disabled, "
            "development and testing only"
        )
        return MockApiClient()

    return ApiClient(config, breakers=breakers, metrics=metrics)
