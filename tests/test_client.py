import json
from datetime import timedelta

import httpx
import pytest

from modbot.mocks import MockApiClient
from modbot.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from modbot.services.client import (
    ApiClient,
    ApiClientConfig,
    RequestOptions,
    create_api_client,
    sanitize_headers,
)
from modbot.services.errors import (
    CircuitBreakerError,
    ClientError,
    NetworkError,
    RequestTimeoutError,
    ServerError,
)
from modbot.services.metrics import MetricsRegistry

pytestmark = pytest.mark.asyncio

BASE_URL = "http://backend.test/api"


class _Backend:
    """Scripted transport: pops one response (or exception) per request."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome, json={"error": f"status {outcome}"})
        return httpx.Response(200, json=outcome)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def _client(
    backend: _Backend,
    sleep,
    breakers: CircuitBreakerRegistry | None = None,
    metrics: MetricsRegistry | None = None,
    **overrides,
) -> ApiClient:
    config = ApiClientConfig(base_url=BASE_URL, api_key="secret", **overrides)
    return ApiClient(
        config,
        breakers=breakers,
        metrics=metrics,
        transport=backend.transport,
        sleep=sleep,
    )


async def test_successful_get_returns_envelope_and_records_metric(
    clock, recorded_sleep
) -> None:
    backend = _Backend({"pong": True})
    metrics = MetricsRegistry()
    client = _client(backend, recorded_sleep, metrics=metrics)

    response = await client.get("/ping", RequestOptions(params={"q": "1"}))

    assert response.status == 200
    assert response.data == {"pong": True}
    assert response.request_id.startswith("req_")
    assert str(backend.requests[0].url) == f"{BASE_URL}/ping?q=1"
    assert backend.requests[0].headers["Authorization"] == "Bearer secret"
    assert backend.requests[0].headers["X-Request-ID"] == response.request_id
    assert metrics.get_counter(
        "api_requests_total", {"method": "GET", "endpoint": "/ping", "status": 200}
    ) == 1
    await client.close()


async def test_post_sends_json_body(clock, recorded_sleep) -> None:
    backend = _Backend({"created": True})
    client = _client(backend, recorded_sleep)

    await client.post("/moderation/cases", {"playerId": "p1"})

    assert backend.requests[0].method == "POST"
    assert json.loads(backend.requests[0].content) == {"playerId": "p1"}


async def test_persistent_server_error_retries_with_exponential_backoff(
    clock, recorded_sleep
) -> None:
    backend = _Backend(500)
    metrics = MetricsRegistry()
    client = _client(backend, recorded_sleep, metrics=metrics)

    with pytest.raises(ServerError) as excinfo:
        await client.get("/cases")

    assert len(backend.requests) == 4
    assert recorded_sleep.delays == [1.0, 2.0, 4.0]
    error = excinfo.value
    assert error.status_code == 500
    assert error.endpoint == "/cases"
    assert error.retryable is True
    assert error.request_id is not None
    assert {r.headers["X-Request-ID"] for r in backend.requests} == {error.request_id}
    assert metrics.get_counter(
        "api_requests_total", {"method": "GET", "endpoint": "/cases", "status": 500}
    ) == 1


@pytest.mark.parametrize("status", [400, 404, 422])
async def test_client_errors_are_not_retried(clock, recorded_sleep, status) -> None:
    backend = _Backend(status)
    client = _client(backend, recorded_sleep)

    with pytest.raises(ClientError) as excinfo:
        await client.get("/cases/unknown")

    assert len(backend.requests) == 1
    assert recorded_sleep.delays == []
    assert excinfo.value.status_code == status
    assert excinfo.value.retryable is False
    assert str(excinfo.value) == f"status {status}"


async def test_client_errors_count_as_breaker_failures(clock, recorded_sleep) -> None:
    backend = _Backend(404)
    client = _client(backend, recorded_sleep)

    for _ in range(4):
        with pytest.raises(ClientError):
            await client.get("/cases/unknown")
    stats = client.get_circuit_breaker_stats()[f"{BASE_URL}/cases/unknown"]
    assert stats.state == CircuitState.CLOSED
    assert stats.failures == 4

    with pytest.raises(ClientError):
        await client.get("/cases/unknown")
    stats = client.get_circuit_breaker_stats()[f"{BASE_URL}/cases/unknown"]
    assert stats.state == CircuitState.OPEN

    with pytest.raises(CircuitBreakerError):
        await client.get("/cases/unknown")
    assert len(backend.requests) == 5
    assert recorded_sleep.delays == []


async def test_transient_failure_recovers_on_retry(clock, recorded_sleep) -> None:
    backend = _Backend(503, {"ok": True})
    client = _client(backend, recorded_sleep)

    response = await client.get("/ping")

    assert response.data == {"ok": True}
    assert len(backend.requests) == 2
    assert recorded_sleep.delays == [1.0]


async def test_network_error_becomes_non_retryable_on_final_attempt(
    clock, recorded_sleep
) -> None:
    backend = _Backend(httpx.ConnectError("connection refused"))
    client = _client(backend, recorded_sleep, max_retries=2, retry_delay=0.5)

    with pytest.raises(NetworkError) as excinfo:
        await client.get("/ping")

    assert len(backend.requests) == 3
    assert recorded_sleep.delays == [0.5, 1.0]
    assert excinfo.value.status_code == 0
    assert excinfo.value.retryable is False


async def test_timeout_is_retried_and_surfaces_as_timeout_error(
    clock, recorded_sleep
) -> None:
    backend = _Backend(httpx.ReadTimeout("slow"))
    client = _client(backend, recorded_sleep, max_retries=1, timeout=2.5)

    with pytest.raises(RequestTimeoutError) as excinfo:
        await client.get("/slow")

    assert len(backend.requests) == 2
    assert excinfo.value.status_code == 408
    assert excinfo.value.timeout == 2.5


async def test_open_circuit_rejects_without_network_attempt_then_recovers(
    clock, recorded_sleep
) -> None:
    breakers = CircuitBreakerRegistry(
        default_config=CircuitBreakerConfig(
            failure_threshold=5,
            recovery_timeout=timedelta(seconds=60),
            success_threshold=2,
            monitoring_window=timedelta(seconds=60),
        )
    )
    backend = _Backend(500, 500, 500, 500, 500, {"ok": True})
    client = _client(backend, recorded_sleep, breakers=breakers, max_retries=0)

    for _ in range(5):
        with pytest.raises(ServerError):
            await client.get("/ping")

    with pytest.raises(CircuitBreakerError) as excinfo:
        await client.get("/ping")
    assert len(backend.requests) == 5
    assert excinfo.value.status_code == 503
    assert excinfo.value.retryable is True
    assert excinfo.value.endpoint == f"{BASE_URL}/ping"

    clock.advance(seconds=60)
    await client.get("/ping")
    breaker = breakers.get(f"{BASE_URL}/ping")
    assert breaker.state == CircuitState.HALF_OPEN

    await client.get("/ping")
    assert breaker.state == CircuitState.CLOSED
    assert len(backend.requests) == 7


async def test_circuit_opening_mid_retry_stops_the_retry_loop(
    clock, recorded_sleep
) -> None:
    breakers = CircuitBreakerRegistry(
        default_config=CircuitBreakerConfig(
            failure_threshold=2,
            recovery_timeout=timedelta(seconds=60),
            success_threshold=1,
            monitoring_window=timedelta(seconds=60),
        )
    )
    backend = _Backend(500)
    client = _client(backend, recorded_sleep, breakers=breakers)

    with pytest.raises(CircuitBreakerError):
        await client.get("/ping")

    assert len(backend.requests) == 2
    assert recorded_sleep.delays == [1.0, 2.0]


async def test_disabled_circuit_breaker_creates_no_breakers(
    clock, recorded_sleep
) -> None:
    backend = _Backend(500)
    client = _client(
        backend, recorded_sleep, enable_circuit_breaker=False, max_retries=0
    )

    with pytest.raises(ServerError):
        await client.get("/ping")

    assert client.get_circuit_breaker_stats() == {}


async def test_reset_circuit_breakers_closes_open_circuits(
    clock, recorded_sleep
) -> None:
    backend = _Backend(500)
    client = _client(backend, recorded_sleep, max_retries=0)
    client.breakers.get(f"{BASE_URL}/ping").force_open()

    assert client.get_health_status()["open_circuits"] == [f"{BASE_URL}/ping"]
    client.reset_circuit_breakers()
    assert client.get_health_status()["open_circuits"] == []


async def test_retry_delay_schedule(clock) -> None:
    client = ApiClient(
        ApiClientConfig(base_url=BASE_URL, retry_delay=0.25, retry_backoff_multiplier=3)
    )
    assert [client.calculate_retry_delay(n) for n in (1, 2, 3)] == [0.25, 0.75, 2.25]


async def test_create_api_client_selects_implementation_once() -> None:
    config = ApiClientConfig(base_url=BASE_URL)

    assert isinstance(create_api_client(config, mock_mode=True), MockApiClient)
    assert isinstance(create_api_client(config, mock_mode=False), ApiClient)


async def test_sanitize_headers_masks_credentials() -> None:
    headers = sanitize_headers({"Authorization": "Bearer x", "Accept": "json"})
    assert headers == {"Authorization": "[REDACTED]", "Accept": "json"}
