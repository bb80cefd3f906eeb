"""
Retry policy with exponential backoff and jitter.

Retries transport errors, 5xx and 429 responses. Everything else,
including timeouts and breaker rejections, fails fast. After the last
attempt the original exception is re-raised unchanged.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from netatlas.utils.exceptions import APIError, NetworkError, RateLimitError, ServerError

logger = logging.getLogger(__name__)


def is_retryable_error(error: BaseException) -> bool:
    """
    Default retry predicate.

    Retries NetworkError (and bare ConnectionError), ServerError,
    RateLimitError and any APIError carrying a 5xx or 429 status.
    RequestTimeoutError, ClientError and CircuitBreakerError are not
    retried.
    """
    if isinstance(error, (NetworkError, ServerError, RateLimitError, ConnectionError)):
        return True
    if isinstance(error, APIError) and error.status_code is not None:
        return error.status_code >= 500 or error.status_code == 429
    return False


@dataclass
class RetryPolicyConfig:
    """Retry settings; stateless across calls."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_jitter: float = 1.0
    is_retryable: Callable[[BaseException], bool] = field(default=is_retryable_error)


class RetryPolicy:
    """
    Drive an asynchronous operation through up to max_attempts tries.

    Delay before attempt n+1 is min(max_delay, base_delay * 2**(n-1) + jitter)
    with jitter drawn uniformly from [0, max_jitter).

    Example:
        >>> policy = RetryPolicy(RetryPolicyConfig(max_attempts=3, base_delay=2.0))
        >>> data = await policy.execute(lambda: client.fetch("/cables"))
    """

    def __init__(
        self,
        config: Optional[RetryPolicyConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        name: str = "default",
    ):
        self.config = config or RetryPolicyConfig()
        self.name = name
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._stats = {
            "executions": 0,
            "retries": 0,
            "exhausted": 0,
            "non_retryable": 0,
        }

    def compute_delay(self, attempt: int) -> float:
        """Backoff delay in seconds after the given (1-based) failed attempt."""
        jitter = self._rng.uniform(0, self.config.max_jitter)
        # uniform() may return the upper bound; keep the interval half-open
        if jitter >= self.config.max_jitter:
            jitter = 0.0
        delay = self.config.base_delay * (2 ** (attempt - 1)) + jitter
        return min(self.config.max_delay, delay)

    async def execute(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run operation, retrying retryable failures.

        Args:
            operation: No-argument callable returning an awaitable

        Returns:
            Result of the first successful attempt

        Raises:
            Exception: The last error raised by operation, unwrapped
        """
        self._stats["executions"] += 1
        attempt = 0

        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as e:
                if not self.config.is_retryable(e):
                    self._stats["non_retryable"] += 1
                    logger.debug(
                        f"Retry policy {self.name}: non-retryable {type(e).__name__}",
                        extra={"attempt": attempt, "error": str(e)},
                    )
                    raise

                if attempt >= self.config.max_attempts:
                    self._stats["exhausted"] += 1
                    logger.error(
                        "Max retries exceeded",
                        extra={
                            "policy": self.name,
                            "attempts": attempt,
                            "error": str(e),
                        },
                    )
                    raise

                delay = self.compute_delay(attempt)
                self._stats["retries"] += 1
                logger.warning(
                    "Retrying request",
                    extra={
                        "policy": self.name,
                        "attempt": attempt,
                        "max_attempts": self.config.max_attempts,
                        "delay": round(delay, 3),
                        "error": str(e),
                    },
                )
                await self._sleep(delay)

    def get_stats(self) -> dict[str, int]:
        return self._stats.copy()
