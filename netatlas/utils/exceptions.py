"""
Custom exception classes for NetAtlas.

Provides a hierarchy of exceptions for the failure scenarios of the
data orchestration layer: transport, server and client errors raised by
upstream adapters, synthetic breaker-open errors, cache failures and the
(never expected) exhaustion of the fallback source.
"""

from typing import Any, Optional


class NetAtlasError(Exception):
    """Base exception for all NetAtlas errors.

    All custom exceptions inherit from this class, allowing
    catch-all error handling when needed.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
    """

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class APIError(NetAtlasError):
    """Raised when an upstream API call fails.

    Attributes:
        endpoint: API endpoint that failed
        status_code: HTTP status code (if applicable)
        response_body: Response content (if available)
        request_params: Request parameters used
    """

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_params: Optional[dict[str, Any]] = None,
        **kwargs
    ):
        details = {
            "endpoint": endpoint,
            "status_code": status_code,
            "request_params": request_params,
            **kwargs
        }
        if response_body:
            details["response_preview"] = response_body[:200] + "..." if len(response_body) > 200 else response_body

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code
        self.response_body = response_body
        self.request_params = request_params


class NetworkError(APIError):
    """Raised on transport failures (connection refused, DNS, reset)."""


class RequestTimeoutError(APIError):
    """Raised when a request exceeds its configured timeout.

    Distinct from NetworkError so the default retry predicate can
    treat it as non-retryable.

    Attributes:
        timeout: Timeout in seconds that elapsed
    """

    def __init__(self, message: str = "Request timed out", timeout: Optional[float] = None, **kwargs):
        super().__init__(message, timeout=timeout, **kwargs)
        self.timeout = timeout


class ServerError(APIError):
    """Raised on 5xx responses."""


class RateLimitError(APIError):
    """Raised when an upstream answers 429 Too Many Requests.

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    def __init__(
        self,
        message: str = "API rate limit exceeded",
        retry_after: Optional[float] = None,
        **kwargs
    ):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, retry_after=retry_after, **kwargs)
        self.retry_after = retry_after


class ClientError(APIError):
    """Raised on 4xx responses other than 429. Never retried."""


class AuthError(ClientError):
    """Raised on 401/403 responses."""


class CircuitBreakerError(NetAtlasError):
    """Raised when a circuit breaker rejects a call without running it.

    Attributes:
        service: Service name with open circuit
        state: Circuit breaker state at rejection time
        retry_at: Epoch seconds after which a probe call is allowed
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        service: Optional[str] = None,
        state: str = "open",
        retry_at: Optional[float] = None,
        **kwargs
    ):
        details = {
            "service": service,
            "state": state,
            "retry_at": retry_at,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.service = service
        self.state = state
        self.retry_at = retry_at


class ConfigurationError(NetAtlasError):
    """Raised when a required setting (API token, URL) is missing.

    Attributes:
        setting: Name of the missing or invalid setting
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {"setting": setting} if setting else None
        super().__init__(message, details)
        self.setting = setting


class CacheError(NetAtlasError):
    """Raised when cache operations fail.

    Attributes:
        operation: The cache operation that failed (read/write/delete/clear)
        cache_key: The key involved in the failed operation
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cache_key: Optional[str] = None,
        **kwargs
    ):
        details = {
            "operation": operation,
            "cache_key": cache_key,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.operation = operation
        self.cache_key = cache_key


class TransformationError(NetAtlasError):
    """Raised when a raw upstream payload cannot be converted into records.

    Attributes:
        transformer: Transformer kind that failed
        field: Specific field that caused the error
        value: Value that failed conversion
    """

    def __init__(
        self,
        message: str,
        transformer: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        details = {
            "transformer": transformer,
            "field": field,
            **kwargs
        }
        if value is not None:
            value_str = str(value)
            details["value"] = value_str[:100] + "..." if len(value_str) > 100 else value_str

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.transformer = transformer
        self.field = field
        self.value = value


class EstimationError(NetAtlasError):
    """Raised when an unknown estimation model is requested."""

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message, {"model": model} if model else None)
        self.model = model


class FallbackExhaustedError(NetAtlasError):
    """Raised when the fallback source itself fails.

    The fallback source is expected to be infallible, so this always
    indicates a programming error.
    """

    def __init__(self, message: str, dataset_kind: Optional[str] = None, **kwargs):
        details = {"dataset_kind": dataset_kind, **kwargs}
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.dataset_kind = dataset_kind
