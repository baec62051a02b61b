"""
Workflow Infrastructure Repositories
=====================================

Concrete implementations of the record store and audit sink interfaces.

This layer contains the data access logic - how we store and retrieve
incidents, change requests and audit entries. Two record stores are
provided: SQLAlchemy for deployments and an in-memory store for local
runs and tests. Both implement escalation as a compare-and-set on the
``escalated`` flag.
"""

import asyncio
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import AuditAction, ChangeStatus, SLA_CLOSED_STATUSES
from src.core import (
    ConfigurationException, ResourceNotFoundException, StoreReadException, StoreWriteException
)
from src.shared.infrastructure.logging import get_logger
from src.workflow.application import IAuditSink, IRecordStore
from src.workflow.domain import AuditEntry, Change, Incident, parse_timestamp
from src.workflow.infrastructure.models import AuditLogModel, ChangeModel, IncidentModel

logger = get_logger(__name__)

INCIDENT_FIELDS = frozenset({
    "title", "status", "priority", "created_at", "resolved_at",
    "escalated", "escalated_at", "assignee",
})
CHANGE_FIELDS = frozenset({"title", "status", "type"})


def _closed_status_values() -> List[str]:
    return sorted(status.value for status in SLA_CLOSED_STATUSES)


def _check_fields(changes: dict, allowed: frozenset) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise StoreWriteException(
            f"Unknown fields: {', '.join(sorted(unknown))}",
            {"fields": sorted(unknown)}
        )


class SQLAlchemyRecordStore(IRecordStore):
    """
    SQLAlchemy implementation of the record store.

    Each call runs in its own session and transaction. Timestamps read back
    from backends without timezone support are normalized to UTC.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @staticmethod
    def _to_incident(model: IncidentModel) -> Incident:
        return Incident(
            id=model.id,
            status=model.status,
            priority=model.priority,
            created_at=parse_timestamp(model.created_at),
            title=model.title or "",
            resolved_at=parse_timestamp(model.resolved_at),
            escalated=bool(model.escalated),
            escalated_at=parse_timestamp(model.escalated_at),
            assignee=model.assignee,
        )

    @staticmethod
    def _to_change(model: ChangeModel) -> Change:
        return Change(id=model.id, status=model.status, type=model.type, title=model.title or "")

    async def list_active_incidents(self) -> List[Incident]:
        """Incidents not in resolved/closed, oldest first."""
        stmt = (
            select(IncidentModel)
            .where(IncidentModel.status.not_in(_closed_status_values()))
            .order_by(IncidentModel.created_at.asc(), IncidentModel.id.asc())
        )
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                models = result.scalars().all()
        except SQLAlchemyError as e:
            raise StoreReadException(f"Failed to list active incidents: {e}") from e

        return [self._to_incident(model) for model in models]

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        try:
            async with self._session_maker() as session:
                model = await session.get(IncidentModel, incident_id)
        except SQLAlchemyError as e:
            raise StoreReadException(f"Failed to read incident {incident_id}: {e}") from e

        return self._to_incident(model) if model else None

    async def update_incident(self, incident_id: str, changes: dict) -> Incident:
        _check_fields(changes, INCIDENT_FIELDS)
        try:
            async with self._session_maker() as session, session.begin():
                model = await session.get(IncidentModel, incident_id)
                if model is None:
                    raise ResourceNotFoundException("Incident", incident_id)
                for key, value in changes.items():
                    setattr(model, key, value)
                incident = self._to_incident(model)
        except SQLAlchemyError as e:
            raise StoreWriteException(f"Failed to update incident {incident_id}: {e}") from e

        return incident

    async def escalate_incident(
        self,
        incident_id: str,
        escalated_at: datetime,
        default_assignee: Optional[str] = None
    ) -> Optional[Incident]:
        """
        Conditional update: only a row with ``escalated = false`` is claimed.

        The row count tells the caller whether this writer won.
        """
        values = {"escalated": True, "escalated_at": escalated_at}
        if default_assignee:
            values["assignee"] = func.coalesce(
                func.nullif(IncidentModel.assignee, ""), default_assignee
            )

        stmt = (
            update(IncidentModel)
            .where(IncidentModel.id == incident_id, IncidentModel.escalated.is_(False))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_maker() as session, session.begin():
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    return None
                model = await session.get(IncidentModel, incident_id, populate_existing=True)
                incident = self._to_incident(model)
        except SQLAlchemyError as e:
            raise StoreWriteException(f"Failed to escalate incident {incident_id}: {e}") from e

        return incident

    async def release_escalation(self, incident_id: str, assignee: Optional[str]) -> bool:
        stmt = (
            update(IncidentModel)
            .where(IncidentModel.id == incident_id, IncidentModel.escalated.is_(True))
            .values(escalated=False, escalated_at=None, assignee=assignee)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_maker() as session, session.begin():
                result = await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreWriteException(f"Failed to release incident {incident_id}: {e}") from e

        return result.rowcount == 1

    async def get_change(self, change_id: str) -> Optional[Change]:
        try:
            async with self._session_maker() as session:
                model = await session.get(ChangeModel, change_id)
        except SQLAlchemyError as e:
            raise StoreReadException(f"Failed to read change {change_id}: {e}") from e

        return self._to_change(model) if model else None

    async def update_change(self, change_id: str, changes: dict) -> Change:
        _check_fields(changes, CHANGE_FIELDS)
        try:
            async with self._session_maker() as session, session.begin():
                model = await session.get(ChangeModel, change_id)
                if model is None:
                    raise ResourceNotFoundException("Change", change_id)
                for key, value in changes.items():
                    setattr(model, key, value)
                change = self._to_change(model)
        except SQLAlchemyError as e:
            raise StoreWriteException(f"Failed to update change {change_id}: {e}") from e

        return change

    async def save_incident(self, incident: Incident) -> None:
        """Insert or replace an incident record."""
        try:
            async with self._session_maker() as session, session.begin():
                await session.merge(IncidentModel(
                    id=incident.id,
                    title=incident.title,
                    status=incident.status,
                    priority=incident.priority,
                    created_at=incident.created_at,
                    resolved_at=incident.resolved_at,
                    escalated=incident.escalated,
                    escalated_at=incident.escalated_at,
                    assignee=incident.assignee,
                ))
        except SQLAlchemyError as e:
            raise StoreWriteException(f"Failed to save incident {incident.id}: {e}") from e

    async def save_change(self, change: Change) -> None:
        """Insert or replace a change request record."""
        try:
            async with self._session_maker() as session, session.begin():
                await session.merge(ChangeModel(
                    id=change.id, title=change.title, status=change.status, type=change.type
                ))
        except SQLAlchemyError as e:
            raise StoreWriteException(f"Failed to save change {change.id}: {e}") from e


class InMemoryRecordStore(IRecordStore):
    """
    Process-local record store.

    Records are copied on the way in and out so callers never share state
    with the store. A single lock serializes writes.
    """

    def __init__(
        self,
        incidents: Optional[Iterable[Incident]] = None,
        changes: Optional[Iterable[Change]] = None
    ):
        self._incidents: Dict[str, Incident] = {i.id: replace(i) for i in incidents or ()}
        self._changes: Dict[str, Change] = {c.id: replace(c) for c in changes or ()}
        self._lock = asyncio.Lock()

    @classmethod
    def from_file(cls, path: Path) -> "InMemoryRecordStore":
        """
        Build a store seeded from a YAML or JSON file.

        The file holds ``incidents`` and ``changes`` lists; incident keys may
        be snake_case or camelCase.

        Raises:
            ConfigurationException: File missing, unreadable or malformed
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationException(f"Cannot read seed file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationException(f"Seed file {path} must contain a mapping")

        try:
            incidents = [Incident.from_dict(item) for item in data.get("incidents") or []]
            changes = [
                Change(
                    id=str(item["id"]),
                    status=str(item.get("status") or ChangeStatus.DRAFT.value),
                    type=item.get("type") or "normal",
                    title=item.get("title") or "",
                )
                for item in data.get("changes") or []
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise ConfigurationException(f"Invalid record in seed file {path}: {e}") from e

        logger.info(
            "Memory record store seeded",
            extra={"path": str(path), "incidents": len(incidents), "changes": len(changes)}
        )
        return cls(incidents, changes)

    async def list_active_incidents(self) -> List[Incident]:
        active = [
            replace(incident) for incident in self._incidents.values()
            if incident.status not in SLA_CLOSED_STATUSES
        ]
        return active

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        incident = self._incidents.get(incident_id)
        return replace(incident) if incident else None

    async def update_incident(self, incident_id: str, changes: dict) -> Incident:
        _check_fields(changes, INCIDENT_FIELDS)
        async with self._lock:
            incident = self._incidents.get(incident_id)
            if incident is None:
                raise ResourceNotFoundException("Incident", incident_id)
            updated = replace(incident, **changes)
            self._incidents[incident_id] = updated
            return replace(updated)

    async def escalate_incident(
        self,
        incident_id: str,
        escalated_at: datetime,
        default_assignee: Optional[str] = None
    ) -> Optional[Incident]:
        async with self._lock:
            incident = self._incidents.get(incident_id)
            if incident is None or incident.escalated:
                return None

            assignee = incident.assignee
            if default_assignee and not assignee:
                assignee = default_assignee

            updated = replace(incident, escalated=True, escalated_at=escalated_at, assignee=assignee)
            self._incidents[incident_id] = updated
            return replace(updated)

    async def release_escalation(self, incident_id: str, assignee: Optional[str]) -> bool:
        async with self._lock:
            incident = self._incidents.get(incident_id)
            if incident is None or not incident.escalated:
                return False
            self._incidents[incident_id] = replace(
                incident, escalated=False, escalated_at=None, assignee=assignee
            )
            return True

    async def get_change(self, change_id: str) -> Optional[Change]:
        change = self._changes.get(change_id)
        return replace(change) if change else None

    async def update_change(self, change_id: str, changes: dict) -> Change:
        _check_fields(changes, CHANGE_FIELDS)
        async with self._lock:
            change = self._changes.get(change_id)
            if change is None:
                raise ResourceNotFoundException("Change", change_id)
            updated = replace(change, **changes)
            self._changes[change_id] = updated
            return replace(updated)

    async def save_incident(self, incident: Incident) -> None:
        async with self._lock:
            self._incidents[incident.id] = replace(incident)

    async def save_change(self, change: Change) -> None:
        async with self._lock:
            self._changes[change.id] = replace(change)


class SQLAlchemyAuditSink(IAuditSink):
    """Audit sink writing to the 'audit_log' table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def record(self, entry: AuditEntry) -> None:
        model = AuditLogModel(
            action=entry.action.value,
            target_id=entry.target_id,
            detail=entry.detail,
            timestamp=entry.timestamp,
        )
        try:
            async with self._session_maker() as session, session.begin():
                session.add(model)
        except SQLAlchemyError as e:
            raise StoreWriteException(f"Failed to write audit entry for {entry.target_id}: {e}") from e

    async def list_entries(self, target_id: Optional[str] = None) -> List[AuditEntry]:
        """Audit entries in write order, optionally for one target."""
        stmt = select(AuditLogModel).order_by(AuditLogModel.timestamp.asc())
        if target_id:
            stmt = stmt.where(AuditLogModel.target_id == target_id)
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                models = result.scalars().all()
        except SQLAlchemyError as e:
            raise StoreReadException(f"Failed to read audit log: {e}") from e

        return [
            AuditEntry(
                action=AuditAction(model.action),
                target_id=model.target_id,
                detail=model.detail,
                timestamp=parse_timestamp(model.timestamp),
            )
            for model in models
        ]


class InMemoryAuditSink(IAuditSink):
    """Audit sink that keeps entries in a list."""

    def __init__(self):
        self.entries: List[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)
        logger.info(
            "Audit entry recorded",
            extra={"action": entry.action.value, "target_id": entry.target_id}
        )

    async def list_entries(self, target_id: Optional[str] = None) -> List[AuditEntry]:
        if target_id is None:
            return list(self.entries)
        return [entry for entry in self.entries if entry.target_id == target_id]
