"""
Workflow Domain Entities
=========================

Pure Python domain entities for the workflow and SLA engine.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from src.config import (
    AuditAction, IncidentStatus, NotificationType,
    SLAClassification, SLA_CLOSED_STATUSES
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Coerce a stored timestamp into an aware datetime.

    Accepts datetimes and ISO-8601 strings (a trailing ``Z`` is allowed).
    Naive values are taken as UTC. Anything else yields None.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Incident:
    """
    Incident record as seen by the engine.

    ``status`` and ``priority`` are kept as raw strings so that records
    carrying values outside the known enums can still be read and reported
    as unclassifiable instead of failing on load.
    """

    id: str
    status: str
    priority: Optional[str]
    created_at: Optional[datetime]

    title: str = ""
    resolved_at: Optional[datetime] = None
    escalated: bool = False
    escalated_at: Optional[datetime] = None
    assignee: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """Check if the incident is still on the SLA clock."""
        return self.status not in SLA_CLOSED_STATUSES

    @property
    def is_escalation_candidate(self) -> bool:
        """Open incidents that have not been escalated yet."""
        return self.status == IncidentStatus.OPEN and not self.escalated

    def age(self, now: datetime) -> Optional[timedelta]:
        """Time since creation, or None when the creation time is unknown."""
        created_at = parse_timestamp(self.created_at)
        if created_at is None:
            return None
        return now - created_at

    @classmethod
    def from_dict(cls, data: dict) -> "Incident":
        """Build from a loosely typed mapping (camelCase keys accepted)."""
        def pick(*keys: str) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return None

        return cls(
            id=str(data["id"]),
            status=str(pick("status") or IncidentStatus.OPEN.value),
            priority=pick("priority"),
            created_at=parse_timestamp(pick("created_at", "createdAt", "created", "reportedAt")),
            title=pick("title") or "",
            resolved_at=parse_timestamp(pick("resolved_at", "resolvedAt")),
            escalated=bool(pick("escalated")),
            escalated_at=parse_timestamp(pick("escalated_at", "escalatedAt")),
            assignee=pick("assignee"),
        )


@dataclass
class Change:
    """Change request record as seen by the engine."""

    id: str
    status: str
    type: str = "normal"
    title: str = ""


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a status transition check."""
    valid: bool
    reason: str = ""


@dataclass(frozen=True)
class StatusOption:
    """One entry of a status selection control."""
    value: str
    label: str


@dataclass(frozen=True)
class SLAStatus:
    """
    Resolution SLA classification for one incident.

    ``remaining`` is signed: negative once the deadline has passed.
    """
    status: SLAClassification
    remaining: Optional[timedelta]
    deadline: Optional[datetime]
    message: str

    @property
    def is_alertable(self) -> bool:
        return self.status in (SLAClassification.BREACH, SLAClassification.WARNING)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "status": self.status.value,
            "remaining_seconds": self.remaining.total_seconds() if self.remaining is not None else None,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "message": self.message,
        }


@dataclass(frozen=True)
class SLADeadlines:
    """Response and resolution deadlines for an incident."""
    response: Optional[datetime]
    resolution: Optional[datetime]


# ========== Events ==========

@dataclass(frozen=True)
class NotificationEvent:
    """Base class for events sent to the notification gateway."""
    type: NotificationType
    triggered_at: datetime

    def to_dict(self) -> dict:
        return {"type": self.type.value, "triggered_at": self.triggered_at.isoformat()}


@dataclass(frozen=True)
class SLABatchEvent(NotificationEvent):
    """One event covering every incident in a breach or warning band."""
    incident_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "incident_ids": list(self.incident_ids)}


@dataclass(frozen=True)
class EscalationEvent(NotificationEvent):
    """Per-incident escalation event."""
    incident_id: str = ""
    title: str = ""
    assignee: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "incident_id": self.incident_id,
            "title": self.title,
            "assignee": self.assignee,
        }


@dataclass(frozen=True)
class AuditEntry:
    """Structured audit log entry."""
    action: AuditAction
    target_id: str
    detail: str
    timestamp: datetime


@dataclass
class SweepReport:
    """
    Summary of one escalation sweep.

    Returned by the escalation service and logged by the scheduler.
    """

    started_at: datetime
    incidents_evaluated: int = 0
    breached_ids: List[str] = field(default_factory=list)
    warning_ids: List[str] = field(default_factory=list)
    escalated_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses and log context."""
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "incidents_evaluated": self.incidents_evaluated,
            "breached_ids": list(self.breached_ids),
            "warning_ids": list(self.warning_ids),
            "escalated_ids": list(self.escalated_ids),
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class IncidentSLASnapshot:
    """Point-in-time SLA view of one incident."""
    incident: Incident
    sla: SLAStatus
    deadlines: SLADeadlines
    escalation_level: int
    evaluated_at: datetime
