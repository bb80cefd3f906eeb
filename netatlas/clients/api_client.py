"""
Resilient HTTP client shared by the upstream source adapters.

Asynchronous aiohttp client wiring the circuit breaker, retry policy,
request deduplicator and request batcher around a single request
executor, with typed response transformer registration.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Union

import aiohttp

from ..config import CloudflareRadarConfig, PeeringDBConfig, TeleGeographyConfig
from ..normalizer.schemas import DataResult, QueryParams
from ..normalizer.transformer import ResponseTransformer, TransformerKind
from ..orchestrator.batcher import BatchRequest, RequestBatcher
from ..orchestrator.circuit_breaker import CircuitBreaker
from ..orchestrator.deduplicator import RequestDeduplicator
from ..orchestrator.retry_policy import RetryPolicy, RetryPolicyConfig
from ..utils.exceptions import (
    APIError,
    AuthError,
    ClientError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
)
from ..utils.logger import get_api_logger

logger = logging.getLogger(__name__)
api_logger = get_api_logger()


@dataclass
class APIClientConfig:
    """Configuration for one upstream API client.

    Attributes:
        base_url: Base URL every endpoint is appended to
        timeout: Per-request timeout in seconds
        headers: Default headers sent with every request
        failure_threshold: Consecutive failures before the breaker opens
        open_duration: Seconds the breaker stays open
        success_threshold: Half-open successes needed to close the breaker
        max_attempts: Retry attempts per request
        base_delay: Initial retry delay in seconds
        max_delay: Upper bound of a retry delay in seconds
        batch_window: Request batching window in seconds
    """

    base_url: str
    timeout: float = 10.0
    headers: dict[str, str] = field(default_factory=dict)
    failure_threshold: int = 5
    open_duration: float = 60.0
    success_threshold: int = 3
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    batch_window: float = 0.1

    @classmethod
    def from_env(cls, service_id: str) -> "APIClientConfig":
        """Create configuration for a known upstream from environment variables."""
        if service_id == "telegeography":
            base_url = TeleGeographyConfig.DATA_URL
            if TeleGeographyConfig.PROXY_URL:
                base_url = f"{TeleGeographyConfig.PROXY_URL}{base_url}"
            return cls(
                base_url=base_url,
                timeout=TeleGeographyConfig.TIMEOUT,
                failure_threshold=3,
                open_duration=120.0,
                base_delay=2.0,
            )

        if service_id == "peeringdb":
            headers = {}
            if PeeringDBConfig.has_api_key():
                headers["Authorization"] = f"Api-Key {PeeringDBConfig.API_KEY}"
            return cls(
                base_url=PeeringDBConfig.BASE_URL,
                timeout=PeeringDBConfig.TIMEOUT,
                headers=headers,
            )

        if service_id == "cloudflare-radar":
            headers = {}
            if CloudflareRadarConfig.is_configured():
                headers["Authorization"] = f"Bearer {CloudflareRadarConfig.API_TOKEN}"
            return cls(
                base_url=CloudflareRadarConfig.BASE_URL,
                timeout=CloudflareRadarConfig.TIMEOUT,
                headers=headers,
            )

        raise ValueError(f"Unknown service: {service_id}")


class RateLimitWindow:
    """
    Rolling request-count bookkeeping for an upstream quota.

    Tracks remaining requests in the current window; the count resets
    once the window period has elapsed. Bookkeeping only, requests are
    not blocked when the count reaches zero.
    """

    def __init__(self, limit: int, window_seconds: float, clock: Callable[[], float] = time.time):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self.remaining = limit
        self.reset_at = clock() + window_seconds

    def _roll(self) -> None:
        now = self._clock()
        if now >= self.reset_at:
            self.remaining = self.limit
            self.reset_at = now + self.window_seconds

    def consume(self) -> int:
        """Record one request; returns the remaining count."""
        self._roll()
        self.remaining = max(0, self.remaining - 1)
        if self.remaining == 0:
            logger.warning(
                "Rate limit window exhausted",
                extra={"limit": self.limit, "reset_at": self.reset_at},
            )
        return self.remaining

    def is_low(self, threshold: float = 0.2) -> bool:
        self._roll()
        return self.remaining < self.limit * threshold

    def snapshot(self) -> dict[str, Any]:
        self._roll()
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "window_seconds": self.window_seconds,
            "reset_at": self.reset_at,
            "percent_remaining": round(self.remaining / self.limit * 100, 1) if self.limit else 0.0,
        }


class APIClient:
    """Asynchronous upstream client with breaker, retry, deduplication and batching.

    Every request runs as breaker(retry(execute)); the breaker therefore
    counts one failure per exhausted retry sequence. Errors propagate
    unwrapped so callers can apply their own fallback chain.

    Example:
        ```python
        config = APIClientConfig.from_env("peeringdb")
        async with APIClient("peeringdb", config) as client:
            client.register_transformer(ExchangePointTransformer())
            result = await client.request(
                "GET", "/ix", params={"country": "DE"},
                transformer=TransformerKind.EXCHANGE_POINTS,
            )
        ```
    """

    def __init__(
        self,
        service_id: str,
        config: APIClientConfig,
        clock: Callable[[], float] = time.time,
        breaker: Optional[CircuitBreaker] = None,
        retry: Optional[RetryPolicy] = None,
    ):
        """Initialize API client.

        Args:
            service_id: Upstream name used for logging and breaker identity
            config: Client configuration
            clock: Time source in epoch seconds
            breaker: Circuit breaker (created from config if omitted)
            retry: Retry policy (created from config if omitted)
        """
        self.service_id = service_id
        self.config = config
        self._clock = clock
        self.breaker = breaker or CircuitBreaker(
            service_id,
            failure_threshold=config.failure_threshold,
            open_duration=config.open_duration,
            success_threshold=config.success_threshold,
            clock=clock,
        )
        self.retry = retry or RetryPolicy(
            RetryPolicyConfig(
                max_attempts=config.max_attempts,
                base_delay=config.base_delay,
                max_delay=config.max_delay,
            ),
            name=service_id,
        )
        self.deduplicator = RequestDeduplicator(service_id)
        self.batcher = RequestBatcher(batch_window=config.batch_window)
        self._transformers: dict[TransformerKind, ResponseTransformer] = {}
        self._session: Optional[aiohttp.ClientSession] = None
        self._stats = {
            "requests_made": 0,
            "successes": 0,
            "errors": 0,
        }

        logger.info(
            f"Initialized APIClient for {service_id}",
            extra={
                "base_url": config.base_url,
                "timeout": config.timeout,
                "max_attempts": config.max_attempts,
            },
        )

    async def __aenter__(self) -> "APIClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure aiohttp session is initialized."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            logger.debug(f"Created new aiohttp session for {self.service_id}")

    async def close(self) -> None:
        """Close aiohttp session and fail queued batch requests."""
        self.batcher.close()
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug(f"Closed aiohttp session for {self.service_id}")

    def register_transformer(self, transformer: ResponseTransformer) -> None:
        """Register a transformer under its TransformerKind."""
        self._transformers[transformer.kind] = transformer
        logger.debug(f"Registered transformer {transformer.kind.value} on {self.service_id}")

    def build_url(self, endpoint: str) -> str:
        if not endpoint:
            return self.config.base_url
        return f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    async def get(self, endpoint: str, **kwargs: Any) -> Any:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, body: Any, **kwargs: Any) -> Any:
        return await self.request("POST", endpoint, body=body, **kwargs)

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Union[Mapping[str, Any], QueryParams]] = None,
        body: Any = None,
        headers: Optional[dict[str, str]] = None,
        transformer: Optional[TransformerKind] = None,
        deduplicate: bool = True,
        batch: bool = False,
    ) -> Union[DataResult, Any]:
        """Issue a request through every resilience layer.

        Args:
            method: HTTP method
            endpoint: Path appended to the base URL
            params: Query parameters (serialized deterministically)
            body: JSON request body
            headers: Extra headers for this request
            transformer: Transformer applied to the raw payload
            deduplicate: Share an in-flight identical request
            batch: Route through the request batcher

        Returns:
            DataResult when a transformer is given, raw JSON otherwise

        Raises:
            CircuitBreakerError: Breaker is open
            APIError: Upstream failure after retries
            TransformationError: Payload has an unexpected shape
        """
        if transformer is not None and transformer not in self._transformers:
            raise ValueError(f"No transformer registered for {transformer.value} on {self.service_id}")

        query = QueryParams.from_options(params)

        async def protected() -> Any:
            return await self.breaker.call(
                lambda: self.retry.execute(
                    lambda: self._execute_request(method, endpoint, query, body, headers)
                )
            )

        async def execute() -> Any:
            if batch:
                raw = await self.batcher.add(
                    self.service_id,
                    BatchRequest(method=method, endpoint=endpoint, executor=protected),
                )
            else:
                raw = await protected()
            if transformer is None:
                return raw
            return self._transformers[transformer].transform(raw)

        if deduplicate:
            key = RequestDeduplicator.make_key(method, self.build_url(endpoint), query)
            return await self.deduplicator.deduplicate(key, execute)
        return await execute()

    async def _execute_request(
        self,
        method: str,
        endpoint: str,
        query: QueryParams,
        body: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make one HTTP request and map failures onto the error taxonomy.

        Raises:
            AuthError: Authentication failed (401/403)
            RateLimitError: Rate limit exceeded (429)
            ServerError: Server error (5xx)
            ClientError: Other 4xx responses
            RequestTimeoutError: Timeout elapsed
            NetworkError: Transport failure
        """
        await self._ensure_session()

        url = self.build_url(endpoint)
        request_headers = {"Accept": "application/json", **self.config.headers, **(headers or {})}
        request_params = query.as_dict()
        self._stats["requests_made"] += 1

        api_logger.debug(
            f"{method.upper()} {url}",
            extra={"service": self.service_id, "params": request_params},
        )

        try:
            async with self._session.request(
                method.upper(),
                url,
                params=request_params or None,
                json=body,
                headers=request_headers,
            ) as response:
                if response.status in (401, 403):
                    error_body = await response.text()
                    self._stats["errors"] += 1
                    logger.error(
                        "Authentication failed",
                        extra={"service": self.service_id, "status": response.status},
                    )
                    raise AuthError(
                        f"Authentication failed: {response.status}",
                        endpoint=url,
                        status_code=response.status,
                        response_body=error_body,
                        request_params=request_params,
                    )

                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    error_body = await response.text()
                    self._stats["errors"] += 1
                    logger.warning(
                        "Rate limit exceeded",
                        extra={"service": self.service_id, "retry_after": retry_after},
                    )
                    raise RateLimitError(
                        "Rate limit exceeded",
                        endpoint=url,
                        retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                        response_body=error_body,
                        request_params=request_params,
                    )

                if response.status >= 500:
                    error_body = await response.text()
                    self._stats["errors"] += 1
                    logger.error(
                        "Server error",
                        extra={"service": self.service_id, "status": response.status},
                    )
                    raise ServerError(
                        f"Server error: {response.status}",
                        endpoint=url,
                        status_code=response.status,
                        response_body=error_body,
                        request_params=request_params,
                    )

                if response.status >= 400:
                    error_body = await response.text()
                    self._stats["errors"] += 1
                    logger.error(
                        "Client error",
                        extra={"service": self.service_id, "status": response.status},
                    )
                    raise ClientError(
                        f"Request failed: {response.status}",
                        endpoint=url,
                        status_code=response.status,
                        response_body=error_body,
                        request_params=request_params,
                    )

                try:
                    # Raw data files are served as text/plain
                    payload = await response.json(content_type=None)
                except ValueError as e:
                    self._stats["errors"] += 1
                    raise APIError(
                        f"Invalid JSON response: {e}",
                        endpoint=url,
                        status_code=response.status,
                        request_params=request_params,
                    ) from e

                self._stats["successes"] += 1
                api_logger.info(
                    "Request successful",
                    extra={"service": self.service_id, "url": url, "status": response.status},
                )
                return payload

        except asyncio.TimeoutError as e:
            self._stats["errors"] += 1
            logger.error(
                "Request timed out",
                extra={"service": self.service_id, "url": url, "timeout": self.config.timeout},
            )
            raise RequestTimeoutError(
                f"Request timeout after {self.config.timeout}s",
                timeout=self.config.timeout,
                endpoint=url,
                request_params=request_params,
            ) from e

        except aiohttp.ClientError as e:
            self._stats["errors"] += 1
            logger.error(
                "HTTP client error",
                extra={"service": self.service_id, "url": url, "error": str(e)},
            )
            raise NetworkError(
                f"HTTP client error: {str(e)}",
                endpoint=url,
                request_params=request_params,
            ) from e

    def get_circuit_state(self) -> dict[str, Any]:
        return self.breaker.get_state()

    def reset_circuit(self) -> None:
        self.breaker.reset()

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "circuit_breaker": self.breaker.get_state(),
            "retry": self.retry.get_stats(),
            "deduplicator": self.deduplicator.get_stats(),
            "batcher": self.batcher.get_stats(),
        }
