"""
Workflow Application Layer
===========================

Application layer for the workflow and SLA engine.

Contains:
- Services: Escalation sweep and the status-change gate
- Interfaces: Record store, notification sink, audit sink, policy provider
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and collaborator interfaces,
but not on concrete infrastructure implementations.
"""

from src.workflow.application.dto import (
    TransitionCheckRequest,
    StatusChangeRequest,
    TransitionCheckResponse,
    StatusOptionResponse,
    AvailableTransitionsResponse,
    IncidentResponse,
    ChangeResponse,
    IncidentSLAResponse,
    SweepResponse,
)
from src.workflow.application.services import (
    EscalationService,
    WorkflowService,
    IRecordStore,
    INotificationSink,
    IAuditSink,
    IPolicyProvider,
    NullNotificationSink,
    NullAuditSink,
    utc_now,
)

__all__ = [
    # DTOs
    "TransitionCheckRequest",
    "StatusChangeRequest",
    "TransitionCheckResponse",
    "StatusOptionResponse",
    "AvailableTransitionsResponse",
    "IncidentResponse",
    "ChangeResponse",
    "IncidentSLAResponse",
    "SweepResponse",
    # Services
    "EscalationService",
    "WorkflowService",
    # Collaborator Interfaces
    "IRecordStore",
    "INotificationSink",
    "IAuditSink",
    "IPolicyProvider",
    "NullNotificationSink",
    "NullAuditSink",
    "utc_now",
]
