"""
Assistant External Service Integrations
=======================================

External services for gap follow-up:
- Follow-up webhook hand-off with circuit breaker and retries
- APScheduler job that re-dispatches undelivered tickets

Delivery is at-least-once; the receiver dedupes on the Idempotency-Key
header.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from knowledge_pipeline.assistant.application.interfaces import IFollowUpNotifier
from knowledge_pipeline.assistant.domain import GapTicket
from knowledge_pipeline.config import settings
from knowledge_pipeline.core import NotificationException
from knowledge_pipeline.shared.infrastructure.logging import get_logger

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
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
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


class FollowUpNotifier(IFollowUpNotifier):
    """
    Webhook client handing gap tickets to the follow-up channel.

    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - ``Idempotency-Key: gap-ticket-<id>`` on every attempt
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.followup_webhook_url
        self._timeout = timeout_seconds or settings.followup_timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @staticmethod
    def build_payload(ticket: GapTicket) -> Dict[str, Any]:
        return {
            "ticket_id": ticket.id,
            "organization_id": ticket.organization_id,
            "prompt": ticket.prompt,
            "missing_specifics": list(ticket.missing_specifics),
            "follow_up_at": ticket.follow_up_at.isoformat(),
        }

    async def dispatch(self, ticket: GapTicket) -> bool:
        """
        Post the ticket to the follow-up webhook.

        Returns:
            True if accepted (2xx), False otherwise

        Raises:
            NotificationException: If the webhook rejects the payload (4xx other
                than 408 and 429)
        """
        if not self._webhook_url:
            logger.debug("Follow-up webhook URL not configured, skipping hand-off")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning("Circuit breaker open, skipping follow-up hand-off", extra={"ticket_id": ticket.id})
            return False

        headers = {"Idempotency-Key": ticket.idempotency_key}
        payload = self.build_payload(ticket)

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=payload, headers=headers)

                if 200 <= response.status_code < 300:
                    self._circuit_breaker.record_success()
                    logger.info("Follow-up hand-off accepted", extra={"ticket_id": ticket.id})
                    return True

                if 400 <= response.status_code < 500 and response.status_code not in (408, 429):
                    raise NotificationException(
                        f"Follow-up webhook rejected ticket with {response.status_code}",
                        {"ticket_id": ticket.id, "status_code": response.status_code}
                    )

                logger.warning(
                    "Follow-up webhook returned non-2xx",
                    extra={"status_code": response.status_code, "attempt": attempt + 1, "ticket_id": ticket.id}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Follow-up hand-off failed",
                    extra={"error": str(e), "attempt": attempt + 1, "ticket_id": ticket.id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class FollowUpScheduler:
    """
    Wrapper for APScheduler running the follow-up re-dispatch job.

    Manages the lifecycle of the scheduler and its single job.
    """

    def __init__(self, interval_seconds: Optional[int] = None):
        self.interval_seconds = interval_seconds or settings.followup_dispatch_interval
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("Follow-up scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="gap_followup_dispatch",
            name="Gap Follow-up Dispatch Job",
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info("Follow-up scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Follow-up scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running


# Global notifier instance, shared so the circuit breaker sees every hand-off
_notifier: Optional[FollowUpNotifier] = None


def get_followup_notifier() -> FollowUpNotifier:
    global _notifier
    if _notifier is None:
        _notifier = FollowUpNotifier()
    return _notifier


async def close_followup_notifier() -> None:
    global _notifier
    if _notifier is not None:
        await _notifier.close()
        _notifier = None
