"""
Workflow Application Services
==============================

Application services orchestrate business logic and coordinate between
domain entities and the collaborators supplied by the host.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (record store, sinks), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, TypeVar

from src.config import (
    AuditAction, EntityKind, IncidentStatus, NotificationType,
    SLAClassification, SLA_CLOSED_STATUSES
)
from src.core import InvalidTransitionException, ResourceNotFoundException
from src.shared.infrastructure.logging import get_logger
from src.workflow.domain import (
    AuditEntry, Change, EscalationEvent, EscalationPolicy, Incident,
    IncidentSLASnapshot, NotificationEvent, SLABatchEvent, SLACalculator,
    StatusOption, SweepReport, TransitionResult, TransitionValidator
)

logger = get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Collaborator Interfaces (Dependency Inversion) ==========

class IRecordStore(ABC):
    """
    Interface for incident and change record access.

    Implementations must offer read-your-writes within a process and an
    atomic ``escalate_incident`` (compare-and-set on the escalated flag).
    """

    @abstractmethod
    async def list_active_incidents(self) -> List[Incident]:
        """Incidents that are neither resolved nor closed."""

    @abstractmethod
    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        """Get incident by ID."""

    @abstractmethod
    async def update_incident(self, incident_id: str, changes: dict) -> Incident:
        """Apply a partial update and return the stored incident."""

    @abstractmethod
    async def escalate_incident(
        self,
        incident_id: str,
        escalated_at: datetime,
        default_assignee: Optional[str] = None
    ) -> Optional[Incident]:
        """
        Mark an incident escalated if and only if it is not escalated yet.

        ``default_assignee`` is applied only when the incident has no
        assignee. Returns the escalated incident, or None when another
        writer got there first or the incident does not exist.
        """

    @abstractmethod
    async def release_escalation(self, incident_id: str, assignee: Optional[str]) -> bool:
        """Undo an escalation claim, restoring the previous assignee."""

    @abstractmethod
    async def get_change(self, change_id: str) -> Optional[Change]:
        """Get change request by ID."""

    @abstractmethod
    async def update_change(self, change_id: str, changes: dict) -> Change:
        """Apply a partial update and return the stored change request."""


class INotificationSink(ABC):
    """Interface for the notification gateway."""

    @abstractmethod
    async def send(self, event: NotificationEvent) -> None:
        """Deliver an event; raise NotificationException on failure."""


class IAuditSink(ABC):
    """Interface for the audit log."""

    @abstractmethod
    async def record(self, entry: AuditEntry) -> None:
        """Append an audit entry."""


class IPolicyProvider(ABC):
    """Interface for escalation policy access."""

    @abstractmethod
    def get_policy(self) -> EscalationPolicy:
        """Get current escalation policy."""


class NullNotificationSink(INotificationSink):
    """Notification sink that drops every event."""

    async def send(self, event: NotificationEvent) -> None:
        return None


class NullAuditSink(IAuditSink):
    """Audit sink that drops every entry."""

    async def record(self, entry: AuditEntry) -> None:
        return None


async def _bounded(awaitable: Awaitable[T], timeout: float) -> T:
    """Await a collaborator call with an upper time bound."""
    return await asyncio.wait_for(awaitable, timeout=timeout)


# ========== Application Services ==========

class EscalationService:
    """
    Runs one escalation sweep over the record store.

    The sweep batches SLA breach/warning notifications, escalates incidents
    that stayed open past the policy threshold, and never raises: every
    collaborator failure is logged, recorded on the SweepReport and skipped.
    """

    def __init__(
        self,
        record_store: IRecordStore,
        notification_sink: INotificationSink,
        audit_sink: IAuditSink,
        policy_provider: IPolicyProvider,
        store_timeout: float = 5.0,
        notification_timeout: float = 20.0,
        clock: Optional[Clock] = None
    ):
        self._store = record_store
        self._notifier = notification_sink
        self._audit = audit_sink
        self._policy_provider = policy_provider
        self._store_timeout = store_timeout
        self._notification_timeout = notification_timeout
        self._clock = clock or utc_now

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Evaluate all active incidents once.

        Args:
            now: Evaluation instant; defaults to the service clock

        Returns:
            SweepReport describing what was flagged, escalated and what failed
        """
        now = now or self._clock()
        report = SweepReport(started_at=now)

        try:
            policy = self._policy_provider.get_policy()
            incidents = await _bounded(self._store.list_active_incidents(), self._store_timeout)
        except Exception as e:
            logger.error(
                "Escalation sweep could not load incidents",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
            report.errors.append(f"list_active_incidents: {e}")
            report.finished_at = self._clock()
            return report

        active = [incident for incident in incidents if incident.status not in SLA_CLOSED_STATUSES]
        report.incidents_evaluated = len(active)

        await self._notify_sla_state(active, now, report)
        await self._process_escalations(active, now, policy, report)

        report.finished_at = self._clock()
        return report

    async def _notify_sla_state(
        self,
        incidents: List[Incident],
        now: datetime,
        report: SweepReport
    ) -> None:
        """Classify each incident and send one batched event per band."""
        for incident in incidents:
            try:
                sla = SLACalculator.classify(incident, now)
            except Exception as e:
                logger.error(
                    "SLA classification failed",
                    extra={"incident_id": incident.id, "error": str(e)}
                )
                report.errors.append(f"classify {incident.id}: {e}")
                continue

            if sla.status == SLAClassification.BREACH:
                report.breached_ids.append(incident.id)
            elif sla.status == SLAClassification.WARNING:
                report.warning_ids.append(incident.id)

        batches = (
            (NotificationType.SLA_VIOLATION, report.breached_ids),
            (NotificationType.SLA_WARNING, report.warning_ids),
        )
        for event_type, incident_ids in batches:
            if not incident_ids:
                continue

            event = SLABatchEvent(type=event_type, triggered_at=now, incident_ids=list(incident_ids))
            try:
                await _bounded(self._notifier.send(event), self._notification_timeout)
            except Exception as e:
                logger.error(
                    "SLA notification failed",
                    extra={
                        "event_type": event_type.value,
                        "incident_count": len(incident_ids),
                        "error": str(e)
                    }
                )
                report.errors.append(f"notify {event_type.value}: {e}")

    async def _process_escalations(
        self,
        incidents: List[Incident],
        now: datetime,
        policy: EscalationPolicy,
        report: SweepReport
    ) -> None:
        """Escalate open, not-yet-escalated incidents older than the threshold."""
        threshold = policy.escalation_threshold
        assignee = policy.assignee_for_escalation()

        for incident in incidents:
            if not incident.is_escalation_candidate:
                continue

            # Unclassifiable incidents are never escalated
            if SLACalculator.get_tier(incident.priority) is None:
                continue

            age = incident.age(now)
            if age is None or age <= threshold:
                continue

            await self._escalate(incident, now, assignee, report)

    async def _escalate(
        self,
        incident: Incident,
        now: datetime,
        default_assignee: Optional[str],
        report: SweepReport
    ) -> None:
        try:
            escalated = await _bounded(
                self._store.escalate_incident(incident.id, now, default_assignee),
                self._store_timeout
            )
        except Exception as e:
            logger.error(
                "Failed to persist escalation",
                extra={"incident_id": incident.id, "error": str(e)}
            )
            report.errors.append(f"escalate {incident.id}: {e}")
            return

        if escalated is None:
            logger.info(
                "Incident already escalated, skipping",
                extra={"incident_id": incident.id}
            )
            return

        event = EscalationEvent(
            type=NotificationType.ESCALATION,
            triggered_at=now,
            incident_id=escalated.id,
            title=escalated.title,
            assignee=escalated.assignee
        )
        try:
            await _bounded(self._notifier.send(event), self._notification_timeout)
        except Exception as e:
            logger.error(
                "Escalation notification failed, releasing claim",
                extra={"incident_id": incident.id, "error": str(e)}
            )
            report.errors.append(f"notify escalation {incident.id}: {e}")
            await self._release(incident, report)
            return

        report.escalated_ids.append(escalated.id)
        logger.info(
            "Incident escalated",
            extra={"incident_id": escalated.id, "assignee": escalated.assignee}
        )

        detail = f"Escalated incident {escalated.id}"
        if escalated.title:
            detail += f" - {escalated.title}"
        if escalated.assignee and escalated.assignee != incident.assignee:
            detail += f" (assigned to {escalated.assignee})"

        entry = AuditEntry(
            action=AuditAction.ESCALATION,
            target_id=escalated.id,
            detail=detail,
            timestamp=now
        )
        try:
            await _bounded(self._audit.record(entry), self._store_timeout)
        except Exception as e:
            logger.error(
                "Failed to write escalation audit entry",
                extra={"incident_id": escalated.id, "error": str(e)}
            )
            report.errors.append(f"audit {escalated.id}: {e}")

    async def _release(self, incident: Incident, report: SweepReport) -> None:
        """Give the escalation back so the next sweep retries it."""
        try:
            await _bounded(
                self._store.release_escalation(incident.id, incident.assignee),
                self._store_timeout
            )
        except Exception as e:
            logger.error(
                "Failed to release escalation claim",
                extra={"incident_id": incident.id, "error": str(e)}
            )
            report.errors.append(f"release {incident.id}: {e}")


class WorkflowService:
    """
    Gate for host-initiated status changes.

    Every mutation goes through the TransitionValidator before it reaches
    the record store.
    """

    def __init__(
        self,
        record_store: IRecordStore,
        policy_provider: IPolicyProvider,
        clock: Optional[Clock] = None
    ):
        self._store = record_store
        self._policy_provider = policy_provider
        self._clock = clock or utc_now

    def validate(self, kind: EntityKind, from_status: str, to_status: str) -> TransitionResult:
        """Check a transition under the current policy."""
        policy = self._policy_provider.get_policy()
        return TransitionValidator.is_valid_transition(
            kind, from_status, to_status, allow_skip_status=policy.allow_skip_status
        )

    def available_transitions(self, kind: EntityKind, from_status: str) -> List[StatusOption]:
        return TransitionValidator.available_transitions(kind, from_status)

    async def change_incident_status(self, incident_id: str, to_status: str) -> Incident:
        """
        Move an incident to a new status.

        Maintains ``resolved_at``: stamped on entering resolved/closed,
        cleared when the incident is reopened.

        Raises:
            ResourceNotFoundException: Incident does not exist
            InvalidTransitionException: Transition not in the graph
        """
        incident = await self._store.get_incident(incident_id)
        if incident is None:
            raise ResourceNotFoundException("Incident", incident_id)

        result = self.validate(EntityKind.INCIDENT, incident.status, to_status)
        if not result.valid:
            raise InvalidTransitionException(
                EntityKind.INCIDENT.value, incident_id, incident.status, to_status, result.reason
            )

        changes: dict = {"status": IncidentStatus(to_status).value}
        if to_status in SLA_CLOSED_STATUSES:
            if incident.resolved_at is None:
                changes["resolved_at"] = self._clock()
        elif incident.resolved_at is not None:
            # Reopened incidents drop the old resolution time; resolving again stamps a new one
            changes["resolved_at"] = None

        updated = await self._store.update_incident(incident_id, changes)
        logger.info(
            "Incident status changed",
            extra={"incident_id": incident_id, "from_status": incident.status, "to_status": to_status}
        )
        return updated

    async def change_change_status(self, change_id: str, to_status: str) -> Change:
        """
        Move a change request to a new status.

        Raises:
            ResourceNotFoundException: Change request does not exist
            InvalidTransitionException: Transition not in the graph
        """
        change = await self._store.get_change(change_id)
        if change is None:
            raise ResourceNotFoundException("Change", change_id)

        result = self.validate(EntityKind.CHANGE, change.status, to_status)
        if not result.valid:
            raise InvalidTransitionException(
                EntityKind.CHANGE.value, change_id, change.status, to_status, result.reason
            )

        updated = await self._store.update_change(change_id, {"status": to_status})
        logger.info(
            "Change status changed",
            extra={"change_id": change_id, "from_status": change.status, "to_status": to_status}
        )
        return updated

    async def get_sla_snapshot(self, incident_id: str) -> IncidentSLASnapshot:
        """
        Calculate the SLA view for one incident.

        Raises:
            ResourceNotFoundException: Incident does not exist
        """
        incident = await self._store.get_incident(incident_id)
        if incident is None:
            raise ResourceNotFoundException("Incident", incident_id)

        now = self._clock()
        return IncidentSLASnapshot(
            incident=incident,
            sla=SLACalculator.classify(incident, now),
            deadlines=SLACalculator.calculate_deadlines(incident),
            escalation_level=SLACalculator.escalation_level(incident, now),
            evaluated_at=now
        )
