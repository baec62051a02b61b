"""
Tests for the Slack notification sink and its circuit breaker.

Webhook traffic goes through httpx.MockTransport; nothing leaves the process.
"""

import json

import httpx
import pytest

from src.config import NotificationType
from src.core import NotificationException
from src.workflow.domain import EscalationEvent, SLABatchEvent
from src.workflow.infrastructure import CircuitBreaker, LoggingNotificationSink, SlackNotificationSink
from src.workflow.infrastructure.external import CircuitState, MAX_LISTED_INCIDENTS

from tests.conftest import NOW

WEBHOOK = "https://hooks.slack.test/services/T000/B000/XXXX"


def escalation_event(**kwargs) -> EscalationEvent:
    return EscalationEvent(
        type=NotificationType.ESCALATION,
        triggered_at=NOW,
        incident_id=kwargs.pop("incident_id", "INC-7"),
        **kwargs
    )


def batch_event(count: int) -> SLABatchEvent:
    return SLABatchEvent(
        type=NotificationType.SLA_VIOLATION,
        triggered_at=NOW,
        incident_ids=[f"INC-{i}" for i in range(count)]
    )


class Webhook:
    """Scripted webhook: replies with the given status codes in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if self.responses else 200
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text="ok")


def make_sink(webhook: Webhook, **kwargs) -> SlackNotificationSink:
    client = httpx.AsyncClient(transport=httpx.MockTransport(webhook))
    return SlackNotificationSink(
        WEBHOOK, "#itsm-escalations", backoff_seconds=0, http_client=client, **kwargs
    )


class TestSlackDelivery:

    @pytest.mark.asyncio
    async def test_successful_delivery(self):
        webhook = Webhook(200)
        sink = make_sink(webhook)

        await sink.send(escalation_event(title="Mail relay down"))
        await sink.close()

        assert len(webhook.requests) == 1
        payload = json.loads(webhook.requests[0].content)
        assert payload["channel"] == "#itsm-escalations"
        assert payload["text"].endswith("INC-7")

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        webhook = Webhook(500, httpx.ConnectError("refused"), 200)
        sink = make_sink(webhook, max_retries=3)

        await sink.send(escalation_event())

        assert len(webhook.requests) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self):
        webhook = Webhook(503, 503, 503)
        sink = make_sink(webhook, max_retries=3)

        with pytest.raises(NotificationException) as exc_info:
            await sink.send(escalation_event())

        assert "after 3 attempts" in exc_info.value.message
        assert "HTTP 503" in exc_info.value.message
        assert exc_info.value.details["event_type"] == "escalation"

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling_webhook(self):
        webhook = Webhook(500)
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=3600)
        sink = make_sink(webhook, max_retries=1, circuit_breaker=breaker)

        with pytest.raises(NotificationException):
            await sink.send(escalation_event())
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(NotificationException, match="Circuit breaker open"):
            await sink.send(escalation_event())

        assert len(webhook.requests) == 1


class TestSlackMessages:

    def test_escalation_message_fields(self):
        sink = SlackNotificationSink(WEBHOOK, "#ops")

        message = sink.build_message(escalation_event(title="VPN flapping", assignee="kim"))

        fields = message["blocks"][1]["fields"]
        assert [f["text"] for f in fields] == [
            "*Incident:*\nINC-7", "*Title:*\nVPN flapping", "*Assignee:*\nkim"
        ]

    def test_unassigned_escalation(self):
        message = SlackNotificationSink(WEBHOOK, "#ops").build_message(escalation_event())
        assert message["blocks"][1]["fields"][-1]["text"] == "*Assignee:*\nUnassigned"

    def test_small_batch_lists_every_incident(self):
        message = SlackNotificationSink(WEBHOOK, "#ops").build_message(batch_event(3))

        text = message["blocks"][1]["text"]["text"]
        assert text.startswith("*3 incident(s):*")
        assert "INC-2" in text
        assert "more" not in text
        assert message["text"] == "\U0001F6A8 SLA Breach: 3 incident(s)"

    def test_large_batch_is_summarized(self):
        count = MAX_LISTED_INCIDENTS + 5
        message = SlackNotificationSink(WEBHOOK, "#ops").build_message(batch_event(count))

        text = message["blocks"][1]["text"]["text"]
        assert f"INC-{MAX_LISTED_INCIDENTS - 1}" in text
        assert f"INC-{MAX_LISTED_INCIDENTS}\n" not in text
        assert text.endswith("_and 5 more_")


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=3600)

        breaker.record_failure()
        assert breaker.allow_request()
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

    def test_half_open_after_recovery_timeout(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()

    def test_success_closes(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED


class TestLoggingSink:

    @pytest.mark.asyncio
    async def test_logs_without_raising(self, caplog):
        await LoggingNotificationSink().send(batch_event(2))

        assert any(record.getMessage() == "Notification" for record in caplog.records)
