"""
Workflow Controllers (API Routes)
==================================

FastAPI routes for status transitions, SLA views and manual sweeps.

Controllers are thin - they delegate to application services. The services
and the scheduler are built once at startup and kept on ``app.state``.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from src.core import (
    InvalidTransitionException, RepositoryException, ResourceNotFoundException
)
from src.shared.infrastructure.logging import get_logger
from src.workflow.application import (
    AvailableTransitionsResponse,
    ChangeResponse,
    IncidentResponse,
    IncidentSLAResponse,
    StatusChangeRequest,
    StatusOptionResponse,
    SweepResponse,
    TransitionCheckRequest,
    TransitionCheckResponse,
    WorkflowService,
)
from src.workflow.infrastructure import EscalationScheduler

logger = get_logger(__name__)
router = APIRouter(prefix="/workflow", tags=["Workflow"])


# ========== Example payloads for Swagger ==========

SLA_RESPONSE_EXAMPLE = {
    "incident_id": "INC-1001",
    "status": "warning",
    "remaining_seconds": 2700.0,
    "deadline": "2024-01-15T14:00:00Z",
    "response_deadline": "2024-01-15T11:00:00Z",
    "message": "SLA warning: 45m remaining",
    "escalated": False,
    "escalation_level": 0,
    "evaluated_at": "2024-01-15T13:15:00Z"
}


# ========== Dependencies ==========

def get_workflow_service(request: Request) -> WorkflowService:
    """Workflow service built at startup."""
    return request.app.state.workflow_service


def get_scheduler(request: Request) -> EscalationScheduler:
    """Escalation scheduler built at startup."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Escalation scheduler not configured"
        )
    return scheduler


def _not_found(e: ResourceNotFoundException) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


def _conflict(e: InvalidTransitionException) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"message": e.message, **e.details}
    )


def _store_unavailable(e: RepositoryException) -> HTTPException:
    logger.error("Record store error", extra={"error": e.message})
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Record store unavailable")


# ========== Route Handlers ==========

@router.get(
    "/{kind}/transitions",
    response_model=AvailableTransitionsResponse,
    summary="List selectable statuses",
    description="""
    Options for a status selection control: the current status first,
    then every status reachable in one step.

    Unknown statuses are returned as a single option with no targets;
    unknown kinds return an empty list.
    """
)
async def list_transitions(
    kind: str,
    current_status: str = Query(..., alias="status", description="Current status"),
    service: WorkflowService = Depends(get_workflow_service)
):
    options = service.available_transitions(kind, current_status)
    return AvailableTransitionsResponse(
        kind=kind,
        status=current_status,
        options=[StatusOptionResponse.from_domain(option) for option in options]
    )


@router.post(
    "/transitions/validate",
    response_model=TransitionCheckResponse,
    summary="Check a status transition",
    description="Validate a proposed move without changing any record."
)
async def validate_transition(
    request: TransitionCheckRequest,
    service: WorkflowService = Depends(get_workflow_service)
):
    result = service.validate(request.kind, request.from_status, request.to_status)
    return TransitionCheckResponse(valid=result.valid, reason=result.reason)


@router.patch(
    "/incidents/{incident_id}/status",
    response_model=IncidentResponse,
    summary="Change incident status",
    responses={
        404: {"description": "Incident not found"},
        409: {"description": "Transition not allowed"}
    }
)
async def change_incident_status(
    incident_id: str,
    request: StatusChangeRequest,
    service: WorkflowService = Depends(get_workflow_service)
):
    try:
        incident = await service.change_incident_status(incident_id, request.status)
    except ResourceNotFoundException as e:
        raise _not_found(e)
    except InvalidTransitionException as e:
        raise _conflict(e)
    except RepositoryException as e:
        raise _store_unavailable(e)

    return IncidentResponse.from_domain(incident)


@router.patch(
    "/changes/{change_id}/status",
    response_model=ChangeResponse,
    summary="Change change-request status",
    responses={
        404: {"description": "Change request not found"},
        409: {"description": "Transition not allowed"}
    }
)
async def change_change_status(
    change_id: str,
    request: StatusChangeRequest,
    service: WorkflowService = Depends(get_workflow_service)
):
    try:
        change = await service.change_change_status(change_id, request.status)
    except ResourceNotFoundException as e:
        raise _not_found(e)
    except InvalidTransitionException as e:
        raise _conflict(e)
    except RepositoryException as e:
        raise _store_unavailable(e)

    return ChangeResponse.from_domain(change)


@router.get(
    "/incidents/{incident_id}/sla",
    response_model=IncidentSLAResponse,
    summary="Get incident SLA status",
    description="""
    Resolution SLA classification for one incident.

    **Classifications**: `ok`, `warning` (final 25% of the window),
    `breach`, `completed` (resolved/closed), `unknown` (no tier or no
    creation time).
    """,
    responses={
        200: {
            "description": "Incident SLA information",
            "content": {"application/json": {"example": SLA_RESPONSE_EXAMPLE}}
        },
        404: {"description": "Incident not found"}
    }
)
async def get_incident_sla(
    incident_id: str,
    service: WorkflowService = Depends(get_workflow_service)
):
    try:
        snapshot = await service.get_sla_snapshot(incident_id)
    except ResourceNotFoundException as e:
        raise _not_found(e)
    except RepositoryException as e:
        raise _store_unavailable(e)

    return IncidentSLAResponse.from_domain(snapshot)


@router.post(
    "/escalations/sweep",
    response_model=SweepResponse,
    summary="Run an escalation sweep now",
    responses={
        409: {"description": "A sweep is already running"},
        503: {"description": "Sweep did not complete"}
    }
)
async def run_sweep(scheduler: EscalationScheduler = Depends(get_scheduler)):
    if scheduler.tick_in_progress:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Escalation sweep already running")

    report = await scheduler.run_tick()
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Escalation sweep did not complete"
        )

    logger.info(
        "Manual escalation sweep",
        extra={"escalated": len(report.escalated_ids), "errors": len(report.errors)}
    )
    return SweepResponse.from_domain(report)


# Export router for inclusion in main app
workflow_router = router
