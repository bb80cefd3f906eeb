"""
Tests for RetryPolicy backoff and retry predicate.
"""

import random

import pytest

from netatlas.orchestrator.retry_policy import RetryPolicy, RetryPolicyConfig, is_retryable_error
from netatlas.utils.exceptions import (
    APIError,
    AuthError,
    CircuitBreakerError,
    ClientError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
)


class RecordingSleep:
    """Async sleep replacement recording requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyOperation:
    """Fails with the given errors, then returns a value."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class TestRetryPredicate:
    """Test which errors are retried by default."""

    @pytest.mark.parametrize("error", [
        NetworkError("connection reset"),
        ServerError("bad gateway", status_code=502),
        RateLimitError("slow down"),
        APIError("upstream", status_code=503),
        ConnectionError("refused"),
    ])
    def test_retryable(self, error):
        assert is_retryable_error(error) is True

    @pytest.mark.parametrize("error", [
        RequestTimeoutError("timed out", timeout=10),
        ClientError("not found", status_code=404),
        AuthError("forbidden", status_code=403),
        CircuitBreakerError("open", service="peeringdb"),
        APIError("bad json"),
        ValueError("boom"),
    ])
    def test_not_retryable(self, error):
        assert is_retryable_error(error) is False


class TestRetryPolicy:
    """Test RetryPolicy execution."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        sleep = RecordingSleep()
        policy = RetryPolicy(sleep=sleep)
        operation = FlakyOperation([])

        assert await policy.execute(operation) == "ok"
        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        sleep = RecordingSleep()
        policy = RetryPolicy(RetryPolicyConfig(max_attempts=3), sleep=sleep)
        operation = FlakyOperation([ServerError("503", status_code=503), NetworkError("reset")])

        assert await policy.execute(operation) == "ok"
        assert operation.calls == 3
        assert len(sleep.delays) == 2
        assert policy.get_stats()["retries"] == 2

    @pytest.mark.asyncio
    async def test_exhausted_reraises_last_error_unwrapped(self):
        sleep = RecordingSleep()
        policy = RetryPolicy(RetryPolicyConfig(max_attempts=3), sleep=sleep)
        last = ServerError("third", status_code=500)
        operation = FlakyOperation([ServerError("first", status_code=500), ServerError("second", status_code=500), last])

        with pytest.raises(ServerError) as exc_info:
            await policy.execute(operation)

        assert exc_info.value is last
        assert operation.calls == 3
        assert policy.get_stats()["exhausted"] == 1

    @pytest.mark.asyncio
    async def test_non_retryable_fails_fast(self):
        sleep = RecordingSleep()
        policy = RetryPolicy(RetryPolicyConfig(max_attempts=5), sleep=sleep)
        operation = FlakyOperation([ClientError("bad request", status_code=400)])

        with pytest.raises(ClientError):
            await policy.execute(operation)

        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self):
        policy = RetryPolicy(sleep=RecordingSleep())
        operation = FlakyOperation([RequestTimeoutError("timeout", timeout=10)])

        with pytest.raises(RequestTimeoutError):
            await policy.execute(operation)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_custom_predicate(self):
        config = RetryPolicyConfig(max_attempts=2, is_retryable=lambda e: isinstance(e, KeyError))
        policy = RetryPolicy(config, sleep=RecordingSleep())
        operation = FlakyOperation([KeyError("x")])

        assert await policy.execute(operation) == "ok"
        assert operation.calls == 2


class TestBackoffDelay:
    """Test delay computation."""

    def test_exponential_growth_with_bounded_jitter(self):
        policy = RetryPolicy(
            RetryPolicyConfig(base_delay=1.0, max_delay=30.0, max_jitter=1.0),
            rng=random.Random(1),
        )

        for attempt, base in [(1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0)]:
            delay = policy.compute_delay(attempt)
            assert base <= delay < base + 1.0

    def test_delay_capped_at_max_delay(self):
        policy = RetryPolicy(RetryPolicyConfig(base_delay=1.0, max_delay=30.0), rng=random.Random(3))

        assert policy.compute_delay(10) == 30.0

    def test_zero_jitter_is_deterministic(self):
        policy = RetryPolicy(RetryPolicyConfig(base_delay=2.0, max_jitter=0.0))

        assert policy.compute_delay(1) == 2.0
        assert policy.compute_delay(3) == 8.0
