"""
Workflow Application DTOs
==========================

Data Transfer Objects for the workflow API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from src.workflow.domain import (
    Change, Incident, IncidentSLASnapshot, StatusOption, SweepReport
)


# ========== Type Aliases for Literals ==========
SLAClassificationStr = Literal["ok", "warning", "breach", "completed", "unknown"]


# ========== Request DTOs ==========

class TransitionCheckRequest(BaseModel):
    """Request model for a transition check."""
    kind: str = Field(..., min_length=1, description="Entity kind (incident or change)")
    from_status: str = Field(..., min_length=1, description="Current status")
    to_status: str = Field(..., min_length=1, description="Proposed status")


class StatusChangeRequest(BaseModel):
    """Request model for a status mutation."""
    status: str = Field(..., min_length=1, description="Target status")


# ========== Response DTOs ==========

class TransitionCheckResponse(BaseModel):
    """Response model for a transition check."""
    valid: bool
    reason: str = ""


class StatusOptionResponse(BaseModel):
    """One selectable status."""
    value: str
    label: str

    @classmethod
    def from_domain(cls, option: StatusOption) -> "StatusOptionResponse":
        return cls(value=option.value, label=option.label)


class AvailableTransitionsResponse(BaseModel):
    """Response model for the status selection control."""
    kind: str
    status: str
    options: List[StatusOptionResponse] = Field(default_factory=list)


class IncidentResponse(BaseModel):
    """Response model for an incident."""
    id: str
    title: str
    status: str
    priority: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    escalated: bool = False
    escalated_at: Optional[datetime] = None
    assignee: Optional[str] = None

    @classmethod
    def from_domain(cls, incident: Incident) -> "IncidentResponse":
        return cls(
            id=incident.id,
            title=incident.title,
            status=incident.status,
            priority=incident.priority,
            created_at=incident.created_at,
            resolved_at=incident.resolved_at,
            escalated=incident.escalated,
            escalated_at=incident.escalated_at,
            assignee=incident.assignee
        )


class ChangeResponse(BaseModel):
    """Response model for a change request."""
    id: str
    title: str
    status: str
    type: str

    @classmethod
    def from_domain(cls, change: Change) -> "ChangeResponse":
        return cls(id=change.id, title=change.title, status=change.status, type=change.type)


class IncidentSLAResponse(BaseModel):
    """Response model for the SLA view of one incident."""
    incident_id: str
    status: SLAClassificationStr = Field(..., description="Resolution SLA classification")
    remaining_seconds: Optional[float] = Field(None, description="Signed time to deadline")
    deadline: Optional[datetime] = Field(None, description="Resolution deadline")
    response_deadline: Optional[datetime] = Field(None, description="Informational response deadline")
    message: str
    escalated: bool
    escalation_level: int = Field(..., ge=0, le=3)
    evaluated_at: datetime

    @classmethod
    def from_domain(cls, snapshot: IncidentSLASnapshot) -> "IncidentSLAResponse":
        sla = snapshot.sla
        return cls(
            incident_id=snapshot.incident.id,
            status=sla.status.value,
            remaining_seconds=sla.remaining.total_seconds() if sla.remaining is not None else None,
            deadline=sla.deadline,
            response_deadline=snapshot.deadlines.response,
            message=sla.message,
            escalated=snapshot.incident.escalated,
            escalation_level=snapshot.escalation_level,
            evaluated_at=snapshot.evaluated_at
        )


class SweepResponse(BaseModel):
    """Response model for a manually triggered sweep."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    incidents_evaluated: int
    breached_ids: List[str] = Field(default_factory=list)
    warning_ids: List[str] = Field(default_factory=list)
    escalated_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, report: SweepReport) -> "SweepResponse":
        return cls(
            started_at=report.started_at,
            finished_at=report.finished_at,
            incidents_evaluated=report.incidents_evaluated,
            breached_ids=report.breached_ids,
            warning_ids=report.warning_ids,
            escalated_ids=report.escalated_ids,
            errors=report.errors
        )
