"""
SLA Controllers (API Routes)
=============================

FastAPI routes for the SLA engine.

Controllers are thin - they delegate to application services.
"""

from datetime import datetime
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from helpdesk_sla.config import settings
from helpdesk_sla.core import (
    ApplicationException,
    ConfigurationException,
    PolicyInUseException,
    ResourceNotFoundException,
    ValidationException,
)
from helpdesk_sla.infrastructure.database import get_session_maker
from helpdesk_sla.sla.application import (
    EscalationTrigger,
    ISLAUnitOfWork,
    SLAPolicyService,
    SLAReportingService,
    TimerEngine,
)
from helpdesk_sla.sla.application.dto import (
    BreachListResponse,
    BreachResponse,
    EscalationResponse,
    FirstResponseRequest,
    PolicyCreateDTO,
    PolicyListResponse,
    PolicyResponse,
    PolicyUpdateDTO,
    RiskLevelStr,
    SLAMetricStr,
    SLAStatsResponse,
    StatusChangedRequest,
    SweepReportResponse,
    SweepRequest,
    TicketDeletedRequest,
    TicketEventRequest,
    TicketEventResponse,
    TicketTimerStatusResponse,
    TimerActionRequest,
    TimerListResponse,
    TimerStatusStr,
    TimerViewResponse,
)
from helpdesk_sla.sla.infrastructure import SQLAlchemySLAUnitOfWork
from helpdesk_sla.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA"])


# ========== Example payloads for Swagger ==========

TICKET_EVENT_EXAMPLE = {
    "ticket": {
        "id": "TICKET-001",
        "priority": "high",
        "status": "open",
        "created_at": "2024-01-15T10:00:00Z",
        "department_id": "support",
        "assignee_id": "agent-7",
        "subject": "VPN drops every hour"
    }
}

TIMER_STATUS_EXAMPLE = {
    "ticket_id": "TICKET-001",
    "response": {
        "timer_id": "123e4567-e89b-12d3-a456-426614174000",
        "ticket_id": "TICKET-001",
        "policy_id": "9b2e4c1a-1f7d-4f43-9d7e-2a8f0c6b5e11",
        "metric": "response",
        "status": "running",
        "target_minutes": 60,
        "elapsed_minutes": 50.0,
        "remaining_minutes": 10.0,
        "percentage_elapsed": 83.33,
        "risk_level": "level1",
        "is_breached": False,
        "started_at": "2024-01-15T10:00:00Z",
        "deadline": "2024-01-15T11:00:00Z",
        "pause_reason": None,
        "off_hours": False,
        "completed_at": None,
        "breached_at": None
    },
    "resolution": None
}


# ========== Dependencies ==========

def get_uow_factory() -> Callable[[], ISLAUnitOfWork]:
    """Unit-of-work factory bound to the application database."""
    session_maker = get_session_maker()
    return lambda: SQLAlchemySLAUnitOfWork(session_maker)


def get_escalation_trigger(request: Request) -> EscalationTrigger:
    """Escalation trigger wired to the dispatchers created at startup."""
    return EscalationTrigger(
        notifier=getattr(request.app.state, "notification_dispatcher", None),
        webhooks=getattr(request.app.state, "webhook_dispatcher", None),
        min_interval_minutes=settings.sla_notification_min_interval_minutes,
        admin_user_ids=settings.sla_admin_user_ids
    )


def get_timer_engine(
    uow_factory: Callable[[], ISLAUnitOfWork] = Depends(get_uow_factory),
    escalation_trigger: EscalationTrigger = Depends(get_escalation_trigger)
) -> TimerEngine:
    return TimerEngine(
        uow_factory,
        escalation_trigger,
        sweep_concurrency=settings.sla_sweep_concurrency
    )


def get_policy_service(
    uow_factory: Callable[[], ISLAUnitOfWork] = Depends(get_uow_factory)
) -> SLAPolicyService:
    return SLAPolicyService(uow_factory)


def get_reporting_service(
    uow_factory: Callable[[], ISLAUnitOfWork] = Depends(get_uow_factory)
) -> SLAReportingService:
    return SLAReportingService(uow_factory)


def _http_error(e: ApplicationException) -> HTTPException:
    """Map application exceptions to HTTP errors."""
    if isinstance(e, ResourceNotFoundException):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if isinstance(e, PolicyInUseException):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    if isinstance(e, (ValidationException, ConfigurationException)):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


# ========== Lifecycle Events ==========

@router.post(
    "/events/ticket-created",
    response_model=TicketEventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start SLA timers for a new ticket",
    description="""
    Resolves the governing policy and starts response and resolution timers.

    **Idempotent**: a ticket that already has active timers gets no new ones.
    Metrics without a target for the ticket's priority are skipped.
    """,
    responses={201: {"content": {"application/json": {"example": {
        "ticket_id": "TICKET-001", "event": "ticket_created", "timers_affected": 2, "timer_ids": []
    }}}}},
    openapi_extra={"requestBody": {"content": {"application/json": {"example": TICKET_EVENT_EXAMPLE}}}}
)
async def ticket_created(
    request: TicketEventRequest,
    engine: TimerEngine = Depends(get_timer_engine)
):
    timers = await engine.on_ticket_created(request.ticket.to_domain(), at=request.at)
    return TicketEventResponse(
        ticket_id=request.ticket.id,
        event="ticket_created",
        timers_affected=len(timers),
        timer_ids=[t.id for t in timers]
    )


@router.post(
    "/events/first-response",
    response_model=TicketEventResponse,
    summary="Record the first agent response"
)
async def first_response(
    request: FirstResponseRequest,
    engine: TimerEngine = Depends(get_timer_engine)
):
    timer = await engine.on_first_response(request.ticket_id, at=request.at)
    return TicketEventResponse(
        ticket_id=request.ticket_id,
        event="first_response",
        timers_affected=1 if timer else 0,
        timer_ids=[timer.id] if timer else []
    )


@router.post(
    "/events/status-changed",
    response_model=TicketEventResponse,
    summary="Apply a ticket status change",
    description="""
    - `resolved` / `closed`: completes the resolution timer and any active response timer
    - `reopened` (or leaving a terminal status): starts a fresh resolution timer
    - `pending` / `waiting` / `on_hold`: pauses timers when the policy says so
    - any other status: resumes timers paused by a status
    """
)
async def status_changed(
    request: StatusChangedRequest,
    engine: TimerEngine = Depends(get_timer_engine)
):
    timers = await engine.on_status_changed(
        request.ticket.to_domain(), request.old_status, request.new_status, at=request.at
    )
    return TicketEventResponse(
        ticket_id=request.ticket.id,
        event="status_changed",
        timers_affected=len(timers),
        timer_ids=[t.id for t in timers]
    )


@router.post(
    "/events/assigned",
    response_model=TicketEventResponse,
    summary="Record a ticket assignment"
)
async def ticket_assigned(
    request: TicketEventRequest,
    engine: TimerEngine = Depends(get_timer_engine)
):
    await engine.on_ticket_assigned(request.ticket.to_domain())
    return TicketEventResponse(ticket_id=request.ticket.id, event="assigned")


@router.post(
    "/events/ticket-deleted",
    response_model=TicketEventResponse,
    summary="Cancel SLA timers of a deleted ticket"
)
async def ticket_deleted(
    request: TicketDeletedRequest,
    engine: TimerEngine = Depends(get_timer_engine)
):
    timers = await engine.on_ticket_deleted(request.ticket_id, at=request.at)
    return TicketEventResponse(
        ticket_id=request.ticket_id,
        event="ticket_deleted",
        timers_affected=len(timers),
        timer_ids=[t.id for t in timers]
    )


# ========== Timers ==========

@router.get(
    "/tickets/{ticket_id}/status",
    response_model=TicketTimerStatusResponse,
    summary="Get ticket SLA status",
    description="Current view of the latest response and resolution timers, computed on read.",
    responses={200: {"content": {"application/json": {"example": TIMER_STATUS_EXAMPLE}}}}
)
async def get_ticket_status(
    ticket_id: str,
    engine: TimerEngine = Depends(get_timer_engine)
):
    views = await engine.get_timer_status(ticket_id)
    return TicketTimerStatusResponse(
        ticket_id=ticket_id,
        response=TimerViewResponse.from_view(views["response"]) if views.get("response") else None,
        resolution=TimerViewResponse.from_view(views["resolution"]) if views.get("resolution") else None
    )


@router.post(
    "/tickets/{ticket_id}/actions",
    response_model=TicketEventResponse,
    summary="Pause, resume or stop a ticket's timers"
)
async def timer_action(
    ticket_id: str,
    request: TimerActionRequest,
    engine: TimerEngine = Depends(get_timer_engine)
):
    if request.action == "pause":
        timers = await engine.pause_ticket(ticket_id, reason=request.reason, at=request.at)
    elif request.action == "resume":
        timers = await engine.resume_ticket(ticket_id, at=request.at)
    else:
        timers = await engine.stop_timers(ticket_id, metric=request.metric, at=request.at)

    return TicketEventResponse(
        ticket_id=ticket_id,
        event=request.action,
        timers_affected=len(timers),
        timer_ids=[t.id for t in timers]
    )


@router.get(
    "/tickets/{ticket_id}/escalations",
    response_model=List[EscalationResponse],
    summary="List escalations recorded for a ticket"
)
async def list_ticket_escalations(
    ticket_id: str,
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    escalations = await reporting.list_escalations(ticket_id)
    return [EscalationResponse.from_domain(e) for e in escalations]


@router.get(
    "/timers",
    response_model=TimerListResponse,
    summary="List SLA timers",
    description="Timers ordered by remaining time, most urgent first."
)
async def list_timers(
    timer_status: Optional[TimerStatusStr] = Query(None, alias="status", description="Filter by timer status"),
    ticket_id: Optional[str] = Query(None),
    policy_id: Optional[str] = Query(None),
    metric: Optional[SLAMetricStr] = Query(None),
    risk_level: Optional[RiskLevelStr] = Query(None, description="Filter by computed risk level"),
    limit: int = Query(100, ge=1, le=1000, description="Results per page"),
    offset: int = Query(0, ge=0, description="Page offset"),
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    filters = {}
    if timer_status:
        filters["status"] = timer_status
    if ticket_id:
        filters["ticket_id"] = ticket_id
    if policy_id:
        filters["policy_id"] = policy_id
    if metric:
        filters["metric"] = metric
    if risk_level:
        filters["risk_level"] = risk_level

    views = await reporting.list_timers(filters, limit=limit, offset=offset)

    return TimerListResponse(
        timers=[TimerViewResponse.from_view(v) for v in views],
        total_count=len(views)
    )


@router.get(
    "/breaches",
    response_model=BreachListResponse,
    summary="List SLA breaches"
)
async def list_breaches(
    ticket_id: Optional[str] = Query(None),
    metric: Optional[SLAMetricStr] = Query(None),
    breached_from: Optional[datetime] = Query(None, alias="from"),
    breached_to: Optional[datetime] = Query(None, alias="to"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    filters = {
        "ticket_id": ticket_id,
        "metric": metric,
        "breached_from": breached_from,
        "breached_to": breached_to,
    }
    breaches = await reporting.list_breaches(filters, limit=limit, offset=offset)
    return BreachListResponse(
        breaches=[BreachResponse.from_domain(b) for b in breaches],
        total_count=len(breaches)
    )


@router.get(
    "/stats",
    response_model=SLAStatsResponse,
    summary="SLA compliance statistics",
    description="Compliance rate, average elapsed time, breach and escalation counts for timers started in the period."
)
async def get_stats(
    start: Optional[datetime] = Query(None, description="Period start (inclusive)"),
    end: Optional[datetime] = Query(None, description="Period end (inclusive)"),
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    if start and end and start > end:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="start must not be after end"
        )
    return SLAStatsResponse(**await reporting.get_stats(start, end))


@router.post(
    "/sweep",
    response_model=SweepReportResponse,
    summary="Run an SLA sweep now",
    description="Recomputes every running timer, records breaches and fires escalations."
)
async def run_sweep(
    request: Optional[SweepRequest] = None,
    engine: TimerEngine = Depends(get_timer_engine)
):
    report = await engine.sweep(now=request.now if request else None, trigger="api")
    return SweepReportResponse(**report.to_dict())


# ========== Policies ==========

@router.get(
    "/policies",
    response_model=PolicyListResponse,
    summary="List SLA policies"
)
async def list_policies(
    active_only: bool = Query(False),
    service: SLAPolicyService = Depends(get_policy_service)
):
    policies = await service.list_policies(active_only=active_only)
    responses = [
        PolicyResponse.from_domain(p, await service.active_timer_count(p.id))
        for p in policies
    ]
    return PolicyListResponse(policies=responses, total_count=len(responses))


@router.post(
    "/policies",
    response_model=PolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an SLA policy",
    description="Creating a default policy clears the default flag on all others."
)
async def create_policy(
    request: PolicyCreateDTO,
    service: SLAPolicyService = Depends(get_policy_service)
):
    try:
        policy = await service.create_policy(request.to_domain())
    except ApplicationException as e:
        raise _http_error(e)
    return PolicyResponse.from_domain(policy, 0)


@router.get(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    summary="Get an SLA policy"
)
async def get_policy(
    policy_id: str,
    service: SLAPolicyService = Depends(get_policy_service)
):
    try:
        policy = await service.get_policy(policy_id)
    except ApplicationException as e:
        raise _http_error(e)
    return PolicyResponse.from_domain(policy, await service.active_timer_count(policy_id))


@router.put(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    summary="Update an SLA policy",
    description="Only fields present in the body change. Running timers keep their targets."
)
async def update_policy(
    policy_id: str,
    request: PolicyUpdateDTO,
    service: SLAPolicyService = Depends(get_policy_service)
):
    try:
        policy = await service.update_policy(policy_id, request.to_changes())
    except ApplicationException as e:
        raise _http_error(e)
    return PolicyResponse.from_domain(policy, await service.active_timer_count(policy_id))


@router.delete(
    "/policies/{policy_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an SLA policy",
    description="Refused with 409 while running or paused timers use the policy.",
    responses={404: {"description": "Policy not found"}, 409: {"description": "Policy in use"}}
)
async def delete_policy(
    policy_id: str,
    service: SLAPolicyService = Depends(get_policy_service)
):
    try:
        await service.delete_policy(policy_id)
    except ApplicationException as e:
        raise _http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Export router for inclusion in main app
sla_router = router
