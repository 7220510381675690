"""Tests for the follow-up webhook hand-off, circuit breaker and scheduler."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from knowledge_pipeline.assistant.domain import GapTicket
from knowledge_pipeline.assistant.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    FollowUpNotifier,
    FollowUpScheduler,
)
from knowledge_pipeline.core import NotificationException

WEBHOOK_URL = "https://hooks.test/follow-ups"


def make_ticket() -> GapTicket:
    return GapTicket(
        id="3e0b6c55-2f4a-4b8e-9f11-7d2c6a8b9e01",
        organization_id="0d5c8e9a-7f3b-4a61-b1e2-93c4d5e6f708",
        prompt="Who signs the vault register?",
        missing_specifics=["responsible owners"],
        follow_up_at=datetime(2025, 3, 3, 9, 30, tzinfo=timezone.utc),
    )


def notifier_with(handler, **kwargs) -> FollowUpNotifier:
    notifier = FollowUpNotifier(webhook_url=WEBHOOK_URL, backoff_base=0, **kwargs)
    notifier._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return notifier


class TestFollowUpNotifier:

    @pytest.mark.asyncio
    async def test_accepted_hand_off_sends_idempotency_key(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        notifier = notifier_with(handler)

        assert await notifier.dispatch(make_ticket()) is True

        assert requests[0].headers["Idempotency-Key"] == "gap-ticket-3e0b6c55-2f4a-4b8e-9f11-7d2c6a8b9e01"
        body = json.loads(requests[0].content)
        assert body["missing_specifics"] == ["responsible owners"]
        assert body["follow_up_at"] == "2025-03-03T09:30:00+00:00"
        await notifier.close()

    @pytest.mark.asyncio
    async def test_retries_until_accepted(self):
        statuses = iter([500, 503, 200])

        notifier = notifier_with(lambda request: httpx.Response(next(statuses)))

        assert await notifier.dispatch(make_ticket()) is True
        await notifier.close()

    @pytest.mark.asyncio
    async def test_rejected_payload_raises_without_retrying(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(422)

        notifier = notifier_with(handler)

        with pytest.raises(NotificationException):
            await notifier.dispatch(make_ticket())
        assert len(calls) == 1
        await notifier.close()

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        notifier = notifier_with(handler, max_retries=2)

        assert await notifier.dispatch(make_ticket()) is False
        assert len(calls) == 2
        await notifier.close()

    @pytest.mark.asyncio
    async def test_open_circuit_skips_requests(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        notifier = notifier_with(handler, max_retries=1)
        for _ in range(5):
            await notifier.dispatch(make_ticket())

        assert await notifier.dispatch(make_ticket()) is False
        assert len(calls) == 5
        await notifier.close()

    @pytest.mark.asyncio
    async def test_missing_webhook_url_is_not_an_error(self):
        assert await FollowUpNotifier(webhook_url="").dispatch(make_ticket()) is False


class TestCircuitBreaker:

    def test_opens_after_threshold_and_half_opens_after_timeout(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)

        breaker.record_failure()
        assert breaker.allow_request()
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

        breaker._last_failure_time -= 61
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED


class TestFollowUpScheduler:

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        async def job():
            return None

        scheduler = FollowUpScheduler(interval_seconds=60)
        await scheduler.start(job)
        assert scheduler.is_running

        await scheduler.stop()
        assert not scheduler.is_running
