"""
Tests for the resilience layer.

Verifies that:
- The fixed window limiter rejects the call over the limit and resets after the window
- Backoff delays double and are capped
- Retry-After from a 429 overrides the schedule
- Non-transient errors are not retried and the original error surfaces
"""
from __future__ import annotations

import pytest

from tracker.errors import (
    InvalidAddress,
    ProviderHTTPError,
    RateLimitExceeded,
    TransientError,
    is_transient,
)
from tracker.utils.resilience import RateLimiter, RetryPolicy


class ManualClock:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyOperation:
    def __init__(self, errors: list[BaseException], result: str = "ok") -> None:
        self._errors = list(errors)
        self._result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return self._result


class TestRateLimiter:
    async def test_sixth_call_in_window_is_rejected(self):
        clock = ManualClock()
        limiter = RateLimiter(max_requests=5, window_seconds=1.0, clock=clock)
        for step in range(5):
            clock.value = step * 0.2
            await limiter.acquire()
        clock.value = 0.9
        with pytest.raises(RateLimitExceeded):
            await limiter.acquire()
        assert limiter.count == 5

    async def test_window_reset_allows_next_call(self):
        clock = ManualClock()
        limiter = RateLimiter(max_requests=5, window_seconds=1.0, clock=clock)
        for _ in range(5):
            await limiter.acquire()
        clock.value = 0.9
        with pytest.raises(RateLimitExceeded):
            await limiter.acquire()
        clock.value = 1.0
        await limiter.acquire()
        assert limiter.count == 1

    async def test_limiters_do_not_share_state(self):
        clock = ManualClock()
        first = RateLimiter(max_requests=1, window_seconds=1.0, clock=clock)
        second = RateLimiter(max_requests=1, window_seconds=1.0, clock=clock)
        await first.acquire()
        await second.acquire()
        with pytest.raises(RateLimitExceeded):
            await first.acquire()

    def test_rate_limit_error_is_transient(self):
        assert is_transient(RateLimitExceeded("limit"))


class TestRetryPolicy:
    def test_delay_schedule_doubles_and_caps(self):
        policy = RetryPolicy(max_retries=4, base_delay=0.1, max_delay=0.8)
        delays = [policy.compute_delay(attempt) for attempt in range(5)]
        assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8, 0.8])

    async def test_exhausted_retries_surface_original_error(self):
        sleep = SleepRecorder()
        policy = RetryPolicy(max_retries=4, base_delay=0.1, max_delay=0.8, sleep=sleep)
        error = TransientError("upstream timeout")
        operation = FlakyOperation([error] * 5)

        with pytest.raises(TransientError) as excinfo:
            await policy.run(operation, description="test")

        assert excinfo.value is error
        assert operation.calls == 5
        assert sleep.delays == pytest.approx([0.1, 0.2, 0.4, 0.8])

    async def test_recovers_after_transient_failures(self):
        sleep = SleepRecorder()
        policy = RetryPolicy(max_retries=3, base_delay=1.0, max_delay=30.0, sleep=sleep)
        operation = FlakyOperation([ProviderHTTPError("bad gateway", status=502)] * 2, result="price")

        assert await policy.run(operation) == "price"
        assert operation.calls == 3
        assert sleep.delays == pytest.approx([1.0, 2.0])

    async def test_retry_after_overrides_schedule(self):
        sleep = SleepRecorder()
        policy = RetryPolicy(max_retries=3, base_delay=0.1, max_delay=0.8, sleep=sleep)
        operation = FlakyOperation([ProviderHTTPError("slow down", status=429, retry_after=7)])

        assert await policy.run(operation) == "ok"
        assert sleep.delays == [7.0]

    async def test_non_transient_error_is_not_retried(self):
        sleep = SleepRecorder()
        policy = RetryPolicy(max_retries=3, base_delay=0.1, max_delay=0.8, sleep=sleep)
        operation = FlakyOperation([InvalidAddress("bad address")])

        with pytest.raises(InvalidAddress):
            await policy.run(operation)

        assert operation.calls == 1
        assert sleep.delays == []

    async def test_client_error_status_is_not_retried(self):
        sleep = SleepRecorder()
        policy = RetryPolicy(max_retries=3, base_delay=0.1, max_delay=0.8, sleep=sleep)
        operation = FlakyOperation([ProviderHTTPError("unauthorized", status=401)])

        with pytest.raises(ProviderHTTPError) as excinfo:
            await policy.run(operation)

        assert excinfo.value.status == 401
        assert not excinfo.value.retryable
        assert operation.calls == 1


class TestErrorContext:
    def test_context_is_rendered_and_class_preserved(self):
        error = InvalidAddress("bad address").with_context(chain="ethereum", phase="validate")
        assert isinstance(error, InvalidAddress)
        assert error.context == {"chain": "ethereum", "phase": "validate"}
        assert str(error) == "bad address [chain=ethereum, phase=validate]"
