"""
Tests for SLA classification, deadlines and escalation policy values.
"""

from datetime import timedelta

import pytest

from src.config import MIN_TICK_INTERVAL_SECONDS, Priority, SLAClassification
from src.workflow.domain import EscalationPolicy, Incident, SLACalculator, SLA_TIERS

from tests.conftest import NOW, make_incident


RANK = {
    SLAClassification.OK: 0,
    SLAClassification.WARNING: 1,
    SLAClassification.BREACH: 2,
}


class TestClassify:

    def test_high_priority_past_resolution_target_is_breach(self):
        """Scenario A: 5h old high-priority incident breaches its 4h target."""
        incident = make_incident(priority="high", age=timedelta(hours=5))

        sla = SLACalculator.classify(incident, NOW)

        assert sla.status == SLAClassification.BREACH
        assert sla.remaining == timedelta(hours=-1)
        assert sla.deadline == NOW - timedelta(hours=1)
        assert sla.message == "SLA breached by 1h 0m"

    def test_low_priority_at_50_hours_is_ok(self):
        """The warning band of the 72h tier starts at 54h elapsed."""
        incident = make_incident(priority="low", age=timedelta(hours=50))

        sla = SLACalculator.classify(incident, NOW)

        assert sla.status == SLAClassification.OK
        assert sla.remaining == timedelta(hours=22)
        assert sla.message == "22h 0m remaining"

    def test_low_priority_inside_final_quarter_is_warning(self):
        incident = make_incident(priority="low", age=timedelta(hours=55))

        sla = SLACalculator.classify(incident, NOW)

        assert sla.status == SLAClassification.WARNING
        assert sla.message == "SLA warning: 17h 0m remaining"

    @pytest.mark.parametrize("priority", ["high", "medium", "low"])
    def test_warning_band_boundaries(self, priority):
        tier = SLA_TIERS[Priority(priority)]
        warning_starts = tier.resolution - tier.warning_window

        just_before = make_incident(priority=priority, age=warning_starts - timedelta(seconds=1))
        at_start = make_incident(priority=priority, age=warning_starts)
        at_deadline = make_incident(priority=priority, age=tier.resolution)

        assert SLACalculator.classify(just_before, NOW).status == SLAClassification.OK
        assert SLACalculator.classify(at_start, NOW).status == SLAClassification.WARNING
        assert SLACalculator.classify(at_deadline, NOW).status == SLAClassification.BREACH

    @pytest.mark.parametrize("status", ["resolved", "closed"])
    def test_finished_incidents_are_completed(self, status):
        incident = make_incident(status=status, priority="high", age=timedelta(days=30))

        sla = SLACalculator.classify(incident, NOW)

        assert sla.status == SLAClassification.COMPLETED
        assert sla.remaining is None
        assert sla.deadline is None

    def test_unrecognized_priority_is_unknown(self):
        incident = make_incident(priority="critical", age=timedelta(hours=100))

        sla = SLACalculator.classify(incident, NOW)

        assert sla.status == SLAClassification.UNKNOWN
        assert sla.message == "No SLA defined for priority 'critical'"
        assert not sla.is_alertable

    def test_missing_priority_uses_medium_tier(self):
        incident = make_incident(priority=None, age=timedelta(hours=20))

        sla = SLACalculator.classify(incident, NOW)

        assert sla.status == SLAClassification.WARNING
        assert sla.deadline == NOW + timedelta(hours=4)

    def test_missing_creation_time_is_unknown(self):
        incident = make_incident(age=None)

        sla = SLACalculator.classify(incident, NOW)

        assert sla.status == SLAClassification.UNKNOWN
        assert sla.message == "Creation time unknown"

    def test_unparseable_creation_time_is_unknown(self):
        incident = make_incident()
        incident.created_at = "yesterday-ish"

        assert SLACalculator.classify(incident, NOW).status == SLAClassification.UNKNOWN

    def test_iso_string_creation_time_is_accepted(self):
        incident = make_incident()
        incident.created_at = "2024-01-15T07:00:00Z"

        sla = SLACalculator.classify(incident, NOW)

        assert sla.status == SLAClassification.OK
        assert sla.remaining == timedelta(hours=19)

    @pytest.mark.parametrize("priority", ["high", "medium", "low"])
    def test_classification_never_improves_with_time(self, priority):
        incident = make_incident(priority=priority, age=timedelta(0))
        previous = 0

        for minutes in range(0, 80 * 60, 30):
            sla = SLACalculator.classify(incident, NOW + timedelta(minutes=minutes))
            assert RANK[sla.status] >= previous
            previous = RANK[sla.status]

        assert previous == RANK[SLAClassification.BREACH]

    def test_to_dict(self):
        sla = SLACalculator.classify(make_incident(priority="high", age=timedelta(hours=1)), NOW)

        data = sla.to_dict()

        assert data["status"] == "ok"
        assert data["remaining_seconds"] == 3 * 3600
        assert data["deadline"] == (NOW + timedelta(hours=3)).isoformat()


class TestDeadlinesAndLevels:

    def test_deadlines_for_high_priority(self):
        incident = make_incident(priority="high", age=timedelta(0))

        deadlines = SLACalculator.calculate_deadlines(incident)

        assert deadlines.response == NOW + timedelta(hours=1)
        assert deadlines.resolution == NOW + timedelta(hours=4)

    def test_deadlines_unknown_priority(self):
        deadlines = SLACalculator.calculate_deadlines(make_incident(priority="p1"))
        assert deadlines.response is None
        assert deadlines.resolution is None

    def test_level_zero_when_not_escalated(self):
        assert SLACalculator.escalation_level(make_incident(), NOW) == 0

    @pytest.mark.parametrize("hours_ago,expected", [(0, 1), (1.9, 1), (2, 2), (7.9, 2), (8, 3), (48, 3)])
    def test_level_grows_with_time_since_escalation(self, hours_ago, expected):
        incident = make_incident(escalated=True, escalated_at=NOW - timedelta(hours=hours_ago))
        assert SLACalculator.escalation_level(incident, NOW) == expected

    def test_level_one_when_escalation_time_missing(self):
        incident = make_incident(escalated=True)
        assert SLACalculator.escalation_level(incident, NOW) == 1


class TestFormatDuration:

    @pytest.mark.parametrize("delta,expected", [
        (timedelta(hours=50), "2d 2h"),
        (timedelta(hours=24), "1d 0h"),
        (timedelta(minutes=95), "1h 35m"),
        (timedelta(minutes=60), "1h 0m"),
        (timedelta(minutes=42), "42m"),
        (timedelta(seconds=59), "0m"),
        (timedelta(minutes=-30), "0m"),
    ])
    def test_format(self, delta, expected):
        assert SLACalculator.format_duration(delta) == expected


class TestEscalationPolicy:

    def test_defaults(self):
        policy = EscalationPolicy()

        assert policy.escalation_threshold == timedelta(hours=24)
        assert policy.tick_interval_seconds == 60
        assert policy.auto_assign is False
        assert policy.allow_skip_status is False

    def test_null_values_fall_back_to_defaults(self):
        policy = EscalationPolicy(escalation_threshold_hours=None, tick_interval_seconds=None)

        assert policy.escalation_threshold_hours == 24
        assert policy.tick_interval_seconds == 60

    def test_interval_below_floor_is_raised(self):
        policy = EscalationPolicy(tick_interval_seconds=1)
        assert policy.tick_interval_seconds == MIN_TICK_INTERVAL_SECONDS

    @pytest.mark.parametrize("hours", [0, -4])
    def test_non_positive_threshold_falls_back_to_default(self, hours):
        policy = EscalationPolicy(escalation_threshold_hours=hours)
        assert policy.escalation_threshold == timedelta(hours=24)

    def test_assignee_only_when_auto_assign_enabled(self):
        assert EscalationPolicy(default_assignee="ops").assignee_for_escalation() is None
        assert EscalationPolicy(auto_assign=True).assignee_for_escalation() is None
        assert EscalationPolicy(
            auto_assign=True, default_assignee="ops"
        ).assignee_for_escalation() == "ops"

    def test_blank_assignee_is_none(self):
        assert EscalationPolicy(default_assignee="  ").default_assignee is None


class TestIncidentFromDict:

    def test_camel_case_keys(self):
        incident = Incident.from_dict({
            "id": 1001,
            "status": "in_progress",
            "priority": "low",
            "createdAt": "2024-01-15T07:00:00Z",
            "escalatedAt": None,
        })

        assert incident.id == "1001"
        assert incident.created_at == NOW - timedelta(hours=5)
        assert incident.escalated is False
        assert incident.escalated_at is None

    def test_defaults_for_sparse_records(self):
        incident = Incident.from_dict({"id": "INC-9"})

        assert incident.status == "open"
        assert incident.priority is None
        assert SLACalculator.classify(incident, NOW).status == SLAClassification.UNKNOWN
