"""
Service layer infrastructure - resilience patterns for backend API calls.

Provides:
- InMemoryCache: TTL cache with LRU eviction
- CircuitBreaker: Per-endpoint failure protection
- ApiClient: Retrying HTTP client combining the patterns above
- MetricsRegistry: Request counters and cache stats
- CaseService: Cached case lookups
"""

from modbot.services.errors import (
    ServiceError,
    ApiError,
    RequestTimeoutError,
    ClientError,
    ServerError,
    NetworkError,
    CircuitBreakerError,
    CircuitOpenError,
    StateStoreError,
    ValidationError,
    is_api_error,
    is_retryable_error,
)
from modbot.services.cache import InMemoryCache, CacheEntry, CacheStats, build_cache_key
from modbot.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerStats,
    CircuitState,
)
from modbot.services.metrics import MetricsRegistry, RequestMetric
from modbot.services.client import (
    ApiClient,
    ApiClientConfig,
    ApiResponse,
    BaseApiClient,
    RequestOptions,
    create_api_client,
)
from modbot.services.case_service import CaseService

__all__ = [
    # Errors
    "ServiceError",
    "ApiError",
    "RequestTimeoutError",
    "ClientError",
    "ServerError",
    "NetworkError",
    "CircuitBreakerError",
    "CircuitOpenError",
    "StateStoreError",
    "ValidationError",
    "is_api_error",
    "is_retryable_error",
    # Cache
    "InMemoryCache",
    "CacheEntry",
    "CacheStats",
    "build_cache_key",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitBreakerStats",
    "CircuitState",
    # Metrics
    "MetricsRegistry",
    "RequestMetric",
    # Client
    "ApiClient",
    "ApiClientConfig",
    "ApiResponse",
    "BaseApiClient",
    "RequestOptions",
    "create_api_client",
    # Services
    "CaseService",
]
