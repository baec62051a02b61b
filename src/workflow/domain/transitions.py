"""
Status Transition Rules
========================

Transition graphs and display labels for each entity kind, and the
stateless validator that checks proposed status changes against them.

Graphs are keyed by enum member; every member of a kind's status enum has
an entry, terminal statuses map to an empty tuple.
"""

from collections import deque
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple, Type, Union

from src.config import ChangeStatus, EntityKind, IncidentStatus
from src.workflow.domain.entities import StatusOption, TransitionResult


INCIDENT_TRANSITIONS: Dict[IncidentStatus, Tuple[IncidentStatus, ...]] = {
    IncidentStatus.OPEN: (IncidentStatus.IN_PROGRESS, IncidentStatus.CLOSED),
    IncidentStatus.IN_PROGRESS: (IncidentStatus.RESOLVED, IncidentStatus.OPEN),
    IncidentStatus.RESOLVED: (IncidentStatus.CLOSED, IncidentStatus.IN_PROGRESS),
    # Reopening goes through in_progress; closed -> open is not in the graph
    IncidentStatus.CLOSED: (IncidentStatus.IN_PROGRESS,),
}

INCIDENT_STATUS_LABELS: Dict[IncidentStatus, str] = {
    IncidentStatus.OPEN: "Open",
    IncidentStatus.IN_PROGRESS: "In Progress",
    IncidentStatus.RESOLVED: "Resolved",
    IncidentStatus.CLOSED: "Closed",
}

CHANGE_TRANSITIONS: Dict[ChangeStatus, Tuple[ChangeStatus, ...]] = {
    ChangeStatus.DRAFT: (ChangeStatus.PENDING,),
    ChangeStatus.PENDING: (ChangeStatus.APPROVED, ChangeStatus.REJECTED),
    ChangeStatus.APPROVED: (ChangeStatus.IN_PROGRESS,),
    ChangeStatus.IN_PROGRESS: (ChangeStatus.COMPLETED,),
    ChangeStatus.COMPLETED: (),
    ChangeStatus.REJECTED: (),
}

CHANGE_STATUS_LABELS: Dict[ChangeStatus, str] = {
    ChangeStatus.DRAFT: "Draft",
    ChangeStatus.PENDING: "Pending Approval",
    ChangeStatus.APPROVED: "Approved",
    ChangeStatus.IN_PROGRESS: "In Progress",
    ChangeStatus.COMPLETED: "Completed",
    ChangeStatus.REJECTED: "Rejected",
}

# Incidents stop at resolved/closed as far as the SLA clock is concerned
INCIDENT_TERMINAL_STATUSES: FrozenSet[IncidentStatus] = frozenset(
    {IncidentStatus.RESOLVED, IncidentStatus.CLOSED}
)
CHANGE_TERMINAL_STATUSES: FrozenSet[ChangeStatus] = frozenset(
    {ChangeStatus.COMPLETED, ChangeStatus.REJECTED}
)

_STATUS_ENUMS: Dict[EntityKind, Type[Enum]] = {
    EntityKind.INCIDENT: IncidentStatus,
    EntityKind.CHANGE: ChangeStatus,
}
_GRAPHS = {
    EntityKind.INCIDENT: INCIDENT_TRANSITIONS,
    EntityKind.CHANGE: CHANGE_TRANSITIONS,
}
_LABELS = {
    EntityKind.INCIDENT: INCIDENT_STATUS_LABELS,
    EntityKind.CHANGE: CHANGE_STATUS_LABELS,
}
_INITIAL = {
    EntityKind.INCIDENT: IncidentStatus.OPEN,
    EntityKind.CHANGE: ChangeStatus.DRAFT,
}
_TERMINAL = {
    EntityKind.INCIDENT: INCIDENT_TERMINAL_STATUSES,
    EntityKind.CHANGE: CHANGE_TERMINAL_STATUSES,
}


def _as_kind(kind: Union[EntityKind, str]) -> Optional[EntityKind]:
    try:
        return EntityKind(kind)
    except ValueError:
        return None


def _as_status(kind: EntityKind, status: Optional[str]) -> Optional[Enum]:
    try:
        return _STATUS_ENUMS[kind](status)
    except ValueError:
        return None


class TransitionValidator:
    """
    Pure functions for status transition checks.

    Stateless utility class; every method is deterministic and safe to call
    from any task or thread. Invalid transitions are reported through the
    returned TransitionResult, never raised.
    """

    @staticmethod
    def is_valid_transition(
        kind: Union[EntityKind, str],
        from_status: str,
        to_status: str,
        allow_skip_status: bool = False
    ) -> TransitionResult:
        """
        Check whether a record of ``kind`` may move from one status to another.

        Args:
            kind: Entity kind (incident/change)
            from_status: Current status
            to_status: Proposed status
            allow_skip_status: Accept any move between two known change
                statuses; incidents always follow their graph

        Returns:
            TransitionResult with a human-readable reason when invalid
        """
        entity_kind = _as_kind(kind)
        if entity_kind is None:
            return TransitionResult(valid=False, reason="unknown entity kind")

        current = _as_status(entity_kind, from_status)
        proposed = _as_status(entity_kind, to_status)
        if current is None or proposed is None:
            return TransitionResult(valid=False, reason="unknown status")

        # Re-saving the same status alongside other edits is always allowed
        if current == proposed:
            return TransitionResult(valid=True)

        skip = allow_skip_status and entity_kind == EntityKind.CHANGE
        if skip or proposed in _GRAPHS[entity_kind][current]:
            return TransitionResult(valid=True)

        labels = _LABELS[entity_kind]
        return TransitionResult(
            valid=False,
            reason=f"Transition from '{labels[current]}' to '{labels[proposed]}' is not allowed"
        )

    @staticmethod
    def available_transitions(
        kind: Union[EntityKind, str],
        from_status: str
    ) -> List[StatusOption]:
        """
        Options for a status selection control.

        The current status comes first, followed by each permitted target in
        graph order. Unknown statuses are offered as-is with no targets.
        """
        entity_kind = _as_kind(kind)
        if entity_kind is None:
            return []

        labels = _LABELS[entity_kind]
        current = _as_status(entity_kind, from_status)
        if current is None:
            return [StatusOption(value=from_status, label=from_status)]

        options = [StatusOption(value=current.value, label=labels[current])]
        options.extend(
            StatusOption(value=target.value, label=labels[target])
            for target in _GRAPHS[entity_kind][current]
        )
        return options

    @staticmethod
    def status_label(kind: Union[EntityKind, str], status: str) -> str:
        """Display label for a status, falling back to the raw value."""
        entity_kind = _as_kind(kind)
        if entity_kind is None:
            return status
        current = _as_status(entity_kind, status)
        if current is None:
            return status
        return _LABELS[entity_kind][current]

    @staticmethod
    def initial_status(kind: Union[EntityKind, str]) -> Enum:
        """Status a newly created record starts in."""
        return _INITIAL[EntityKind(kind)]

    @staticmethod
    def terminal_statuses(kind: Union[EntityKind, str]) -> FrozenSet[Enum]:
        """Statuses that end the record's workflow."""
        return _TERMINAL[EntityKind(kind)]

    @staticmethod
    def is_terminal(kind: Union[EntityKind, str], status: str) -> bool:
        entity_kind = EntityKind(kind)
        return _as_status(entity_kind, status) in _TERMINAL[entity_kind]

    @staticmethod
    def hops_to_terminal(kind: Union[EntityKind, str], status: str) -> Optional[int]:
        """
        Length of the shortest path from ``status`` to any terminal status.

        Returns:
            0 for terminal statuses, None when no terminal status is reachable
            or the status is unknown
        """
        entity_kind = EntityKind(kind)
        start = _as_status(entity_kind, status)
        if start is None:
            return None

        graph = _GRAPHS[entity_kind]
        terminals = _TERMINAL[entity_kind]
        seen = {start}
        queue = deque([(start, 0)])
        while queue:
            current, hops = queue.popleft()
            if current in terminals:
                return hops
            for target in graph[current]:
                if target not in seen:
                    seen.add(target)
                    queue.append((target, hops + 1))
        return None

    @staticmethod
    def reachable_statuses(kind: Union[EntityKind, str], status: str) -> FrozenSet[Enum]:
        """Every status reachable from ``status`` (itself included)."""
        entity_kind = EntityKind(kind)
        start = _as_status(entity_kind, status)
        if start is None:
            return frozenset()

        graph = _GRAPHS[entity_kind]
        seen = {start}
        stack = [start]
        while stack:
            for target in graph[stack.pop()]:
                if target not in seen:
                    seen.add(target)
                    stack.append(target)
        return frozenset(seen)

    @staticmethod
    def graph(kind: Union[EntityKind, str]) -> Dict[Enum, Tuple[Enum, ...]]:
        """Adjacency table for ``kind``."""
        return dict(_GRAPHS[EntityKind(kind)])
