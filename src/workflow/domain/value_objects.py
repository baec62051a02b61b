"""
SLA Value Objects
==================

Immutable value objects for the SLA side of the engine.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from src.config import (
    DEFAULT_ESCALATION_THRESHOLD_HOURS, DEFAULT_TICK_INTERVAL_SECONDS,
    MIN_TICK_INTERVAL_SECONDS, Priority, SLAClassification
)
from src.shared.infrastructure.logging import get_logger
from src.workflow.domain.entities import (
    Incident, SLADeadlines, SLAStatus, parse_timestamp
)

logger = get_logger(__name__)


WARNING_WINDOW_FRACTION = 0.25


@dataclass(frozen=True)
class SLATier:
    """Response and resolution targets for one priority."""
    priority: Priority
    response: timedelta
    resolution: timedelta

    @property
    def warning_window(self) -> timedelta:
        """Final stretch of the resolution window that counts as a warning."""
        return self.resolution * WARNING_WINDOW_FRACTION


# Response targets are informational; only resolution drives classification
SLA_TIERS: Dict[Priority, SLATier] = {
    Priority.HIGH: SLATier(Priority.HIGH, timedelta(hours=1), timedelta(hours=4)),
    Priority.MEDIUM: SLATier(Priority.MEDIUM, timedelta(hours=4), timedelta(hours=24)),
    Priority.LOW: SLATier(Priority.LOW, timedelta(hours=24), timedelta(hours=72)),
}

# Records without a priority are treated as medium
DEFAULT_PRIORITY = Priority.MEDIUM


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA calculation logic in one place.
    Nothing here raises for bad input: unknown priorities and unparseable
    timestamps classify as ``unknown``.
    """

    @staticmethod
    def get_tier(priority: Optional[str]) -> Optional[SLATier]:
        """Look up the tier for a priority; None when unrecognized."""
        if priority is None or priority == "":
            return SLA_TIERS[DEFAULT_PRIORITY]
        try:
            return SLA_TIERS[Priority(priority)]
        except ValueError:
            return None

    @staticmethod
    def classify(incident: Incident, now: datetime) -> SLAStatus:
        """
        Classify an incident against its resolution SLA.

        Args:
            incident: Incident to evaluate
            now: Evaluation instant (timezone-aware)

        Returns:
            SLAStatus with signed remaining time and deadline
        """
        if not incident.is_active:
            return SLAStatus(
                status=SLAClassification.COMPLETED,
                remaining=None,
                deadline=None,
                message="SLA evaluation complete"
            )

        tier = SLACalculator.get_tier(incident.priority)
        if tier is None:
            return SLAStatus(
                status=SLAClassification.UNKNOWN,
                remaining=None,
                deadline=None,
                message=f"No SLA defined for priority '{incident.priority}'"
            )

        created_at = parse_timestamp(incident.created_at)
        if created_at is None:
            return SLAStatus(
                status=SLAClassification.UNKNOWN,
                remaining=None,
                deadline=None,
                message="Creation time unknown"
            )

        deadline = created_at + tier.resolution
        remaining = deadline - now

        if remaining <= timedelta(0):
            status = SLAClassification.BREACH
            message = f"SLA breached by {SLACalculator.format_duration(-remaining)}"
        elif remaining <= tier.warning_window:
            status = SLAClassification.WARNING
            message = f"SLA warning: {SLACalculator.format_duration(remaining)} remaining"
        else:
            status = SLAClassification.OK
            message = f"{SLACalculator.format_duration(remaining)} remaining"

        return SLAStatus(status=status, remaining=remaining, deadline=deadline, message=message)

    @staticmethod
    def calculate_deadlines(incident: Incident) -> SLADeadlines:
        """Response and resolution deadlines; both None when unclassifiable."""
        tier = SLACalculator.get_tier(incident.priority)
        created_at = parse_timestamp(incident.created_at)
        if tier is None or created_at is None:
            return SLADeadlines(response=None, resolution=None)

        return SLADeadlines(
            response=created_at + tier.response,
            resolution=created_at + tier.resolution
        )

    @staticmethod
    def escalation_level(incident: Incident, now: datetime) -> int:
        """
        Escalation level derived from time since escalation.

        Returns:
            0 not escalated, 1 under 2h, 2 under 8h, 3 otherwise
        """
        if not incident.escalated:
            return 0

        escalated_at = parse_timestamp(incident.escalated_at)
        if escalated_at is None:
            return 1

        elapsed = now - escalated_at
        if elapsed < timedelta(hours=2):
            return 1
        if elapsed < timedelta(hours=8):
            return 2
        return 3

    @staticmethod
    def format_duration(delta: timedelta) -> str:
        """
        Format a duration for display.

        Example:
            timedelta(hours=50) -> "2d 2h"
            timedelta(minutes=95) -> "1h 35m"
            timedelta(minutes=42) -> "42m"
        """
        total_minutes = max(0, int(delta.total_seconds() // 60))
        hours, minutes = divmod(total_minutes, 60)

        if hours >= 24:
            days, hours = divmod(hours, 24)
            return f"{days}d {hours}h"
        if hours >= 1:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"


class EscalationPolicy(BaseModel):
    """
    Host escalation policy, loaded from settings and the YAML policy file.

    Missing or null values fall back to the documented defaults.
    """
    escalation_threshold_hours: float = Field(
        default=DEFAULT_ESCALATION_THRESHOLD_HOURS,
        description="Hours an open incident may wait before escalation"
    )
    auto_assign: bool = Field(default=False, description="Assign on escalation")
    default_assignee: Optional[str] = Field(default=None, description="Escalation assignee")
    tick_interval_seconds: int = Field(
        default=DEFAULT_TICK_INTERVAL_SECONDS,
        description="Seconds between sweeps"
    )
    allow_skip_status: bool = Field(
        default=False,
        description="Allow any move between known change-request statuses"
    )

    @model_validator(mode="before")
    @classmethod
    def drop_missing(cls, data: Any) -> Any:
        """Treat explicit nulls as absent so defaults apply."""
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data

    @field_validator("escalation_threshold_hours")
    @classmethod
    def default_non_positive_threshold(cls, v: float) -> float:
        if v <= 0:
            logger.warning(
                "Escalation threshold not positive, using default",
                extra={"requested": v, "default": DEFAULT_ESCALATION_THRESHOLD_HOURS}
            )
            return DEFAULT_ESCALATION_THRESHOLD_HOURS
        return v

    @field_validator("tick_interval_seconds")
    @classmethod
    def apply_interval_floor(cls, v: int) -> int:
        if v < MIN_TICK_INTERVAL_SECONDS:
            logger.warning(
                "Tick interval below floor, using minimum",
                extra={"requested": v, "minimum": MIN_TICK_INTERVAL_SECONDS}
            )
            return MIN_TICK_INTERVAL_SECONDS
        return v

    @field_validator("default_assignee")
    @classmethod
    def blank_assignee_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def escalation_threshold(self) -> timedelta:
        return timedelta(hours=self.escalation_threshold_hours)

    def assignee_for_escalation(self) -> Optional[str]:
        """Assignee to apply on escalation, or None when auto-assign is off."""
        if self.auto_assign and self.default_assignee:
            return self.default_assignee
        return None

    @classmethod
    def from_settings(cls, app_settings: Any) -> "EscalationPolicy":
        """Build the baseline policy from application settings."""
        return cls(
            escalation_threshold_hours=app_settings.escalation_threshold_hours,
            auto_assign=app_settings.auto_assign,
            default_assignee=app_settings.default_assignee,
            tick_interval_seconds=app_settings.tick_interval_seconds,
            allow_skip_status=app_settings.allow_skip_status,
        )
