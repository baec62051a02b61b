"""
Workflow Infrastructure Layer
==============================

Infrastructure implementations for the workflow module:
- Models: SQLAlchemy ORM models
- Repositories: Record stores and audit sinks
- External: Policy file watcher, Slack sink, escalation scheduler
"""

from src.workflow.infrastructure.models import IncidentModel, ChangeModel, AuditLogModel
from src.workflow.infrastructure.repositories import (
    SQLAlchemyRecordStore,
    InMemoryRecordStore,
    SQLAlchemyAuditSink,
    InMemoryAuditSink,
)
from src.workflow.infrastructure.external import (
    PolicyConfigManager,
    StaticPolicyProvider,
    CircuitBreaker,
    SlackNotificationSink,
    LoggingNotificationSink,
    EscalationScheduler,
)

__all__ = [
    "IncidentModel",
    "ChangeModel",
    "AuditLogModel",
    "SQLAlchemyRecordStore",
    "InMemoryRecordStore",
    "SQLAlchemyAuditSink",
    "InMemoryAuditSink",
    "PolicyConfigManager",
    "StaticPolicyProvider",
    "CircuitBreaker",
    "SlackNotificationSink",
    "LoggingNotificationSink",
    "EscalationScheduler",
]
