"""
Retry With Backoff
==================

Bounded retry for flaky asynchronous calls (LLM requests, webhooks).

A policy describes how many times to retry, how long to wait between
attempts and the overall time budget for the whole sequence. Two shapes
are provided:

- ``RetryPolicy.general()``: increasing delay capped by a ceiling
- ``RetryPolicy.exponential()``: pure doubling from a base delay

Usage:
    policy = RetryPolicy(max_retries=2, initial_delay=0.3, max_delay=2.0, timeout=12.0)
    result = await retry_async(lambda: client.chat_completion(...), policy)
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from helpdesk_triage.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration.

    Attributes:
        max_retries: Retries after the first attempt (attempts = max_retries + 1)
        initial_delay: Seconds to wait after the first failure
        backoff_factor: Multiplier applied to the delay after each failure
        max_delay: Ceiling for a single delay, in seconds
        timeout: Budget in seconds for the whole attempt sequence (None = unbounded)
    """
    max_retries: int = 3
    initial_delay: float = 0.2
    backoff_factor: float = 2.0
    max_delay: float = 5.0
    timeout: Optional[float] = 15.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays cannot be negative")
        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @classmethod
    def general(cls) -> "RetryPolicy":
        """Increasing delay 200ms -> 5s, three retries, 15s budget."""
        return cls(max_retries=3, initial_delay=0.2, backoff_factor=2.0, max_delay=5.0, timeout=15.0)

    @classmethod
    def exponential(
        cls,
        max_retries: int = 2,
        base_delay: float = 0.5,
        timeout: Optional[float] = None
    ) -> "RetryPolicy":
        """Pure exponential backoff: base, 2*base, 4*base, ..."""
        return cls(
            max_retries=max_retries,
            initial_delay=base_delay,
            backoff_factor=2.0,
            max_delay=base_delay * (2 ** max_retries),
            timeout=timeout
        )

    def delay_for(self, failed_attempt: int) -> float:
        """Delay to sleep after the given (0-based) failed attempt."""
        return min(self.max_delay, self.initial_delay * (self.backoff_factor ** failed_attempt))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation_name: str = "operation",
) -> T:
    """
    Run ``operation`` until it succeeds or the policy is exhausted.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        policy: Retry policy (defaults to ``RetryPolicy.general()``)
        retry_on: Exception types that trigger another attempt; others propagate at once
        operation_name: Name used in log lines

    Returns:
        The first successful result.

    Raises:
        The last observed error once attempts are exhausted or the timeout fires.
        ``TimeoutError`` if the budget expires before any attempt has failed.
    """
    policy = policy or RetryPolicy.general()
    errors: list[BaseException] = []

    async def _attempts() -> T:
        for attempt in range(policy.max_retries + 1):
            try:
                return await operation()
            except retry_on as e:
                errors.append(e)
                if attempt == policy.max_retries:
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{operation_name} failed, retrying",
                    extra={
                        "operation": operation_name,
                        "attempt": attempt + 1,
                        "max_attempts": policy.max_retries + 1,
                        "delay_seconds": delay,
                        "error": str(e),
                    }
                )
                await asyncio.sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover

    if policy.timeout is None:
        return await _attempts()

    try:
        return await asyncio.wait_for(_attempts(), timeout=policy.timeout)
    except asyncio.TimeoutError:
        logger.warning(
            f"{operation_name} timed out",
            extra={"operation": operation_name, "timeout_seconds": policy.timeout, "attempts": len(errors)}
        )
        if errors:
            raise errors[-1]
        raise
