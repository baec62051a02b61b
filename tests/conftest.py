"""
Shared fixtures for workflow engine tests.

Sweeps are evaluated at a fixed instant so SLA bands are deterministic.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set

import pytest

from src.config import NotificationType
from src.core import NotificationException
from src.workflow.application import (
    EscalationService, IAuditSink, INotificationSink, WorkflowService
)
from src.workflow.domain import AuditEntry, EscalationPolicy, Incident, NotificationEvent
from src.workflow.infrastructure import InMemoryRecordStore, StaticPolicyProvider


NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_incident(
    incident_id: str = "INC-1",
    status: str = "open",
    priority: Optional[str] = "medium",
    age: Optional[timedelta] = timedelta(hours=1),
    now: datetime = NOW,
    **kwargs
) -> Incident:
    """Incident created ``age`` before ``now`` (unknown creation time when age is None)."""
    created_at = now - age if age is not None else None
    return Incident(id=incident_id, status=status, priority=priority, created_at=created_at, **kwargs)


class RecordingNotificationSink(INotificationSink):
    """Keeps every delivered event; fails for the configured event types."""

    def __init__(self, fail_types: Optional[Set[NotificationType]] = None):
        self.events: List[NotificationEvent] = []
        self.fail_types = fail_types or set()

    async def send(self, event: NotificationEvent) -> None:
        if event.type in self.fail_types:
            raise NotificationException("gateway down", {"event_type": event.type.value})
        self.events.append(event)

    def of_type(self, event_type: NotificationType) -> List[NotificationEvent]:
        return [event for event in self.events if event.type == event_type]


class RecordingAuditSink(IAuditSink):
    def __init__(self):
        self.entries: List[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def policy() -> EscalationPolicy:
    return EscalationPolicy()


@pytest.fixture
def escalation_service(store, notifier, audit, policy) -> EscalationService:
    return EscalationService(
        record_store=store,
        notification_sink=notifier,
        audit_sink=audit,
        policy_provider=StaticPolicyProvider(policy),
        store_timeout=1.0,
        notification_timeout=1.0,
        clock=lambda: NOW
    )


@pytest.fixture
def workflow_service(store, policy) -> WorkflowService:
    return WorkflowService(store, StaticPolicyProvider(policy), clock=lambda: NOW)
