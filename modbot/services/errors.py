"""
Service layer exceptions.
"""

from typing import Any

import httpx


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class ApiError(ServiceError):
    """An outbound API call failed.

    Carries enough context for the caller to decide what to do next:
    the HTTP status (0 when no response arrived), the endpoint, whether a
    later attempt may succeed, and the request id used for tracing.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: str,
        retryable: bool = False,
        request_id: str | None = None,
    ):
        self.status_code = status_code
        self.endpoint = endpoint
        self.retryable = retryable
        self.request_id = request_id
        super().__init__(message, service_id=endpoint)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": str(self),
            "status_code": self.status_code,
            "endpoint": self.endpoint,
            "retryable": self.retryable,
            "request_id": self.request_id,
        }


class RequestTimeoutError(ApiError):
    """Request timed out."""

    def __init__(self, endpoint: str, timeout: float, request_id: str | None = None):
        self.timeout = timeout
        super().__init__(
            f"Request to {endpoint} timed out after {timeout}s",
            408,
            endpoint,
            retryable=True,
            request_id=request_id,
        )


class ClientError(ApiError):
    """The API rejected the request (4xx). Retrying would repeat the same mistake."""

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: str,
        request_id: str | None = None,
    ):
        super().__init__(
            message, status_code, endpoint, retryable=False, request_id=request_id
        )


class ServerError(ApiError):
    """The API failed to handle the request (5xx)."""

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: str,
        request_id: str | None = None,
    ):
        super().__init__(
            message, status_code, endpoint, retryable=True, request_id=request_id
        )


class NetworkError(ApiError):
    """No response was received."""

    def __init__(
        self,
        message: str,
        endpoint: str,
        retryable: bool = True,
        request_id: str | None = None,
    ):
        super().__init__(
            message, 0, endpoint, retryable=retryable, request_id=request_id
        )


class CircuitBreakerError(ApiError):
    """The circuit breaker rejected the call before it was attempted."""

    def __init__(self, endpoint: str, request_id: str | None = None):
        super().__init__(
            f"Circuit breaker is open for endpoint: {endpoint}",
            503,
            endpoint,
            retryable=True,
            request_id=request_id,
        )


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class StateStoreError(ServiceError):
    """A state store operation reported failure."""

    pass


class ValidationError(Exception):
    """Caller input is malformed. Never retried."""

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Validation failed for field '{field}': {reason}")


def is_api_error(error: BaseException) -> bool:
    return isinstance(error, ApiError)


def is_retryable_error(error: BaseException) -> bool:
    """Check whether an error may succeed on a later attempt."""
    if isinstance(error, ApiError):
        return error.retryable
    return False


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase or "Unknown error"


def create_api_error(
    error: Exception,
    endpoint: str,
    request_id: str | None = None,
    timeout: float | None = None,
    final_attempt: bool = False,
) -> ApiError:
    """
    Convert a transport exception into the matching ApiError.

    Args:
        error: Exception raised by httpx (or an ApiError, returned as-is)
        endpoint: Path that was requested
        request_id: Tracing id of the attempt group
        timeout: Timeout in seconds that applied to the request
        final_attempt: When True, errors without a response are no longer retryable

    Returns:
        ApiError subclass describing the failure
    """
    if isinstance(error, ApiError):
        return error

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        status = response.status_code
        message = _error_message(response)
        if 400 <= status < 500:
            return ClientError(message, status, endpoint, request_id)
        if status >= 500:
            return ServerError(message, status, endpoint, request_id)
        return ApiError(message, status, endpoint, False, request_id)

    if isinstance(error, httpx.TimeoutException):
        timeout_error = RequestTimeoutError(endpoint, timeout or 0.0, request_id)
        timeout_error.retryable = not final_attempt
        return timeout_error

    return NetworkError(
        str(error) or "Network error",
        endpoint,
        retryable=not final_attempt,
        request_id=request_id,
    )
