"""
Notification Infrastructure
===========================

Pushes user-facing events (ticket status changes, assignments) to the
real-time relay that owns user connections.

Delivery is fire-and-forget and at-most-once: ``broadcast_to_user`` never
blocks and never raises. When no relay is configured the events are only
logged.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Set

import httpx

from helpdesk_triage.shared.infrastructure.logging import get_logger
from helpdesk_triage.shared.infrastructure.retry import RetryPolicy, retry_async
from helpdesk_triage.core import NotificationException

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class NotificationHub(ABC):
    """Transport for per-user events."""

    @abstractmethod
    def broadcast_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        """Send ``event`` to every connection of ``user_id`` without waiting."""

    async def close(self) -> None:
        """Release transport resources."""


class LoggingNotificationHub(NotificationHub):
    """Hub used when no relay is configured; events are logged and dropped."""

    def broadcast_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        logger.info(
            "Notification not relayed (no transport configured)",
            extra={"user_id": user_id, "event": event, "payload": payload}
        )


class WebhookNotificationHub(NotificationHub):
    """
    Relays events to an HTTP endpoint that fans them out to user sockets.

    Each broadcast is delivered in its own task with a short retry and a
    circuit breaker, so a slow or dead relay never stalls the caller.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = 5.0,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._timeout = timeout_seconds
        self._retry_policy = retry_policy or RetryPolicy(
            max_retries=2, initial_delay=0.5, max_delay=2.0, timeout=timeout_seconds * 3
        )
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client
        self._pending: Set[asyncio.Task] = set()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def broadcast_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, dropping notification",
                extra={"user_id": user_id, "event": event}
            )
            return

        try:
            task = asyncio.get_running_loop().create_task(self._deliver(user_id, event, payload))
        except RuntimeError:
            logger.warning(
                "No running event loop, dropping notification",
                extra={"user_id": user_id, "event": event}
            )
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, body: Dict[str, Any]) -> None:
        client = await self._get_client()
        response = await client.post(self._webhook_url, json=body)
        if response.status_code >= 300:
            raise NotificationException(
                f"Relay returned {response.status_code}",
                {"status_code": response.status_code}
            )

    async def _deliver(self, user_id: str, event: str, payload: Dict[str, Any]) -> bool:
        body = {"user_id": user_id, "event": event, "payload": payload}
        try:
            await retry_async(
                lambda: self._post(body),
                self._retry_policy,
                retry_on=(httpx.HTTPError, NotificationException),
                operation_name="notification_relay"
            )
        except Exception as e:
            self._circuit_breaker.record_failure()
            logger.error(
                "Notification delivery failed",
                extra={"user_id": user_id, "event": event, "error": str(e)}
            )
            return False

        self._circuit_breaker.record_success()
        logger.info("Notification sent", extra={"user_id": user_id, "event": event})
        return True

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Finish in-flight deliveries and close the HTTP client."""
        await self.drain()
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


def build_notification_hub(
    webhook_url: Optional[str],
    timeout_seconds: float = 5.0
) -> NotificationHub:
    """Webhook relay when a URL is configured, log-only hub otherwise."""
    if webhook_url:
        return WebhookNotificationHub(webhook_url, timeout_seconds)
    return LoggingNotificationHub()
