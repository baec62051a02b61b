"""
Workflow Domain Layer
=====================

Domain layer for the workflow and SLA engine.

Contains:
- Entities: Incident, Change, SLA status, events, audit entries
- Transition rules: per-kind status graphs and the TransitionValidator
- Value Objects: SLA tiers, escalation policy, SLACalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.workflow.domain.entities import (
    Incident,
    Change,
    TransitionResult,
    StatusOption,
    SLAStatus,
    SLADeadlines,
    NotificationEvent,
    SLABatchEvent,
    EscalationEvent,
    AuditEntry,
    SweepReport,
    IncidentSLASnapshot,
    parse_timestamp,
)
from src.workflow.domain.transitions import (
    TransitionValidator,
    INCIDENT_TRANSITIONS,
    CHANGE_TRANSITIONS,
)
from src.workflow.domain.value_objects import (
    SLACalculator,
    SLATier,
    SLA_TIERS,
    EscalationPolicy,
)

__all__ = [
    # Entities
    "Incident",
    "Change",
    "TransitionResult",
    "StatusOption",
    "SLAStatus",
    "SLADeadlines",
    "NotificationEvent",
    "SLABatchEvent",
    "EscalationEvent",
    "AuditEntry",
    "SweepReport",
    "IncidentSLASnapshot",
    "parse_timestamp",
    # Transition rules
    "TransitionValidator",
    "INCIDENT_TRANSITIONS",
    "CHANGE_TRANSITIONS",
    # Value Objects & Services
    "SLACalculator",
    "SLATier",
    "SLA_TIERS",
    "EscalationPolicy",
]
