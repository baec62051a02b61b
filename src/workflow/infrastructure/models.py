"""
Workflow Infrastructure Models
===============================

SQLAlchemy ORM models for the workflow module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.config import ChangeStatus, IncidentStatus


class IncidentModel(Base):
    """
    Database model for Incident entity.

    Maps to the 'incidents' table. Status and priority are plain strings so
    values outside the known enums survive a round trip.
    """
    __tablename__ = "incidents"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True, default=IncidentStatus.OPEN.value
    )
    priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, default=lambda: datetime.now(timezone.utc)
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Escalation tracking
    escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    assignee: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class ChangeModel(Base):
    """
    Database model for Change request entity.

    Maps to the 'changes' table.
    """
    __tablename__ = "changes"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=ChangeStatus.DRAFT.value)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="normal")


class AuditLogModel(Base):
    """
    Database model for audit log entries.

    Maps to the 'audit_log' table.
    """
    __tablename__ = "audit_log"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    target_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    detail: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
