"""
Configuration Module
====================

Application settings and configuration management using Pydantic.

Escalation defaults defined here can be overridden per deployment through
the YAML workflow policy file (see ``workflow_config_path``).
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="itsm-workflow-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Record Store ==========
    record_store_backend: Literal["database", "memory"] = Field(
        default="database",
        description="Record store implementation used by the host"
    )
    seed_data_path: Optional[Path] = Field(
        default=None,
        description="YAML or JSON file with incidents and changes loaded into the memory record store"
    )
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/itsm",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    store_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for a single record store or audit log call",
        gt=0,
        le=60
    )

    # ========== Workflow / Escalation ==========
    workflow_config_path: Path = Field(
        default=Path("workflow_config.yaml"),
        description="Path to the escalation policy YAML file"
    )
    escalation_threshold_hours: float = Field(
        default=24,
        description="Hours an incident may stay open before it is escalated",
    )
    auto_assign: bool = Field(
        default=False,
        description="Assign escalated incidents to the default assignee"
    )
    default_assignee: Optional[str] = Field(
        default=None,
        description="Assignee used for auto-assignment on escalation"
    )
    tick_interval_seconds: int = Field(
        default=60,
        description="Seconds between escalation sweeps"
    )
    allow_skip_status: bool = Field(
        default=False,
        description="Allow any transition between known change-request statuses"
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for notifications"
    )
    slack_channel: str = Field(
        default="#itsm-escalations",
        description="Slack channel for SLA and escalation notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )
    notification_timeout_seconds: float = Field(
        default=20.0,
        description="Upper bound for delivering one notification, retries included",
        gt=0,
        le=120
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

# Lower bound for the sweep interval
MIN_TICK_INTERVAL_SECONDS = 5
DEFAULT_TICK_INTERVAL_SECONDS = 60
DEFAULT_ESCALATION_THRESHOLD_HOURS = 24


class EntityKind(str, Enum):
    """Record kinds that carry a status workflow."""
    INCIDENT = "incident"
    CHANGE = "change"


class IncidentStatus(str, Enum):
    """Incident lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ChangeStatus(str, Enum):
    """Change request lifecycle statuses."""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


class Priority(str, Enum):
    """Incident priority levels."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SLAClassification(str, Enum):
    """Resolution SLA bands."""
    OK = "ok"
    WARNING = "warning"
    BREACH = "breach"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


class NotificationType(str, Enum):
    """Events emitted to the notification gateway."""
    SLA_WARNING = "sla_warning"
    SLA_VIOLATION = "sla_violation"
    ESCALATION = "escalation"


class AuditAction(str, Enum):
    """Actions written to the audit log."""
    ESCALATION = "escalation"


# Incidents in these statuses are outside the SLA clock
SLA_CLOSED_STATUSES = frozenset({IncidentStatus.RESOLVED, IncidentStatus.CLOSED})
