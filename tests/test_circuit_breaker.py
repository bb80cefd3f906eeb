"""
Tests for the asynchronous circuit breaker.
"""

import pytest

from netatlas.orchestrator.circuit_breaker import STATE_HISTORY_SIZE, CircuitBreaker, CircuitState
from netatlas.utils.exceptions import CircuitBreakerError, ServerError


async def succeed():
    return "success"


async def fail():
    raise ServerError("Simulated failure", status_code=503)


async def open_breaker(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.failure_threshold):
        with pytest.raises(ServerError):
            await breaker.call(fail)


class TestCircuitBreaker:
    """Test CircuitBreaker state machine."""

    def test_circuit_breaker_initialization(self, clock):
        """Test circuit breaker initializes in CLOSED state."""
        breaker = CircuitBreaker("test", failure_threshold=3, open_duration=10, clock=clock)

        assert breaker.name == "test"
        assert breaker.failure_threshold == 3
        assert breaker.open_duration == 10
        assert breaker.state == CircuitState.CLOSED
        assert breaker.is_available() is True

    @pytest.mark.asyncio
    async def test_successful_calls(self, clock):
        """Test successful calls keep circuit CLOSED."""
        breaker = CircuitBreaker("test", failure_threshold=3, clock=clock)

        for _ in range(5):
            assert await breaker.call(succeed) == "success"
            assert breaker.state == CircuitState.CLOSED

        stats = breaker.get_statistics()
        assert stats["counters"]["total_calls"] == 5
        assert stats["counters"]["total_successes"] == 5
        assert stats["counters"]["total_failures"] == 0

    @pytest.mark.asyncio
    async def test_circuit_opens_on_failures(self, clock):
        """Test circuit opens after threshold failures and rejects without running."""
        breaker = CircuitBreaker("test", failure_threshold=3, open_duration=60, clock=clock)
        await open_breaker(breaker)

        assert breaker.state == CircuitState.OPEN
        assert breaker.is_available() is False

        calls = []

        async def tracked():
            calls.append(1)
            return "ran"

        with pytest.raises(CircuitBreakerError) as exc_info:
            await breaker.call(tracked)

        assert calls == []
        assert exc_info.value.service == "test"
        assert exc_info.value.retry_at == clock() + 60
        assert breaker.get_statistics()["counters"]["total_rejections"] == 1

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, clock):
        breaker = CircuitBreaker("test", failure_threshold=3, clock=clock)

        for _ in range(2):
            with pytest.raises(ServerError):
                await breaker.call(fail)
        await breaker.call(succeed)
        for _ in range(2):
            with pytest.raises(ServerError):
                await breaker.call(fail)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_reading_state_has_no_side_effects(self, clock):
        """Test OPEN only becomes HALF_OPEN on the next call, never on read."""
        breaker = CircuitBreaker("test", failure_threshold=2, open_duration=30, clock=clock)
        await open_breaker(breaker)

        clock.advance(31)

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_state()["state"] == "open"
        assert breaker.is_available() is True
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_half_open_probe_and_close(self, clock):
        """Test circuit closes after success_threshold successes in HALF_OPEN."""
        breaker = CircuitBreaker(
            "test", failure_threshold=2, open_duration=30, success_threshold=3, clock=clock
        )
        await open_breaker(breaker)
        clock.advance(30)

        assert await breaker.call(succeed) == "success"
        assert breaker.state == CircuitState.HALF_OPEN

        await breaker.call(succeed)
        assert breaker.state == CircuitState.HALF_OPEN

        await breaker.call(succeed)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_state()["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_failure_in_half_open_reopens(self, clock):
        breaker = CircuitBreaker("test", failure_threshold=2, open_duration=30, clock=clock)
        await open_breaker(breaker)
        clock.advance(30)

        with pytest.raises(ServerError):
            await breaker.call(fail)

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_state()["next_attempt_at"] == clock() + 30

    @pytest.mark.asyncio
    async def test_reset(self, clock):
        """Test manual reset returns to CLOSED with zeroed counters."""
        breaker = CircuitBreaker("test", failure_threshold=2, clock=clock)
        await open_breaker(breaker)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_state()["failure_count"] == 0
        assert breaker.get_state()["next_attempt_at"] is None
        assert await breaker.call(succeed) == "success"

    @pytest.mark.asyncio
    async def test_state_change_history(self, clock):
        breaker = CircuitBreaker("test", failure_threshold=1, open_duration=5, success_threshold=1, clock=clock)

        with pytest.raises(ServerError):
            await breaker.call(fail)
        clock.advance(5)
        await breaker.call(succeed)

        transitions = [(c["from_state"], c["to_state"]) for c in breaker.get_statistics()["state_changes"]]
        assert transitions == [
            ("closed", "open"),
            ("open", "half-open"),
            ("half-open", "closed"),
        ]

    @pytest.mark.asyncio
    async def test_state_change_history_is_bounded(self, clock):
        breaker = CircuitBreaker("test", failure_threshold=1, open_duration=5, success_threshold=1, clock=clock)

        for _ in range(5):
            with pytest.raises(ServerError):
                await breaker.call(fail)
            clock.advance(5)
            await breaker.call(succeed)

        changes = breaker.get_statistics()["state_changes"]
        assert len(changes) == STATE_HISTORY_SIZE
        assert (changes[-1]["from_state"], changes[-1]["to_state"]) == ("half-open", "closed")
        assert (changes[0]["from_state"], changes[0]["to_state"]) == ("half-open", "closed")

    def test_repr(self, clock):
        breaker = CircuitBreaker("peeringdb", failure_threshold=5, clock=clock)
        assert repr(breaker) == "CircuitBreaker(name=peeringdb, state=closed, failures=0/5)"
