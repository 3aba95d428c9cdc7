"""Tests for bounded retry with backoff."""

import asyncio

import pytest

from helpdesk_triage.shared.infrastructure.retry import RetryPolicy, retry_async


FAST = RetryPolicy(max_retries=2, initial_delay=0.0, max_delay=0.0, timeout=5.0)


class Flaky:
    """Fails ``failures`` times, then returns ``result``."""

    def __init__(self, failures: int, error: Exception = None, result: str = "ok"):
        self.failures = failures
        self.error = error or ConnectionError("upstream down")
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class TestRetryPolicy:
    """Policy shapes and validation."""

    def test_general_shape(self):
        policy = RetryPolicy.general()
        assert policy.max_retries == 3
        assert [policy.delay_for(i) for i in range(3)] == pytest.approx([0.2, 0.4, 0.8])
        assert policy.delay_for(10) == 5.0

    def test_exponential_shape(self):
        policy = RetryPolicy.exponential(max_retries=2, base_delay=0.5)
        assert [policy.delay_for(i) for i in range(3)] == [0.5, 1.0, 2.0]
        assert policy.timeout is None

    @pytest.mark.parametrize("kwargs", [
        {"max_retries": -1},
        {"initial_delay": -0.1},
        {"backoff_factor": 0.5},
        {"timeout": 0},
    ])
    def test_invalid_policies_rejected(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestRetryAsync:
    """Retry loop behavior."""

    async def test_first_success_is_returned(self):
        operation = Flaky(failures=0)
        assert await retry_async(operation, FAST) == "ok"
        assert operation.calls == 1

    async def test_retries_until_success(self):
        operation = Flaky(failures=2)
        assert await retry_async(operation, FAST) == "ok"
        assert operation.calls == 3

    async def test_exhaustion_raises_last_error(self):
        operation = Flaky(failures=10)
        with pytest.raises(ConnectionError, match="upstream down"):
            await retry_async(operation, FAST)
        assert operation.calls == FAST.max_retries + 1

    async def test_non_retryable_error_propagates_immediately(self):
        operation = Flaky(failures=10, error=KeyError("bad"))
        with pytest.raises(KeyError):
            await retry_async(operation, FAST, retry_on=(ConnectionError,))
        assert operation.calls == 1

    async def test_timeout_raises_last_observed_error(self):
        calls = 0

        async def fails_then_hangs():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("first attempt failed")
            await asyncio.sleep(10)

        policy = RetryPolicy(max_retries=3, initial_delay=0.0, max_delay=0.0, timeout=0.1)
        with pytest.raises(ConnectionError, match="first attempt failed"):
            await retry_async(fails_then_hangs, policy)

    async def test_timeout_without_failures_raises_timeout(self):
        async def hangs():
            await asyncio.sleep(10)

        policy = RetryPolicy(max_retries=1, initial_delay=0.0, max_delay=0.0, timeout=0.05)
        with pytest.raises(asyncio.TimeoutError):
            await retry_async(hangs, policy)
