"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA policies, tracking, predictions and the engine.

Controllers are thin - they delegate to application services or the
process-wide EngineRunner. Application exceptions are mapped to HTTP
responses by the handlers registered in main.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.config import settings, EngineTrigger, UserRole
from helpdesk_sla.infrastructure.database import get_session
from helpdesk_sla.shared.api.identity import CurrentUser, require_roles
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application import (
    SLAPolicyService,
    SlaPolicyCreateDTO,
    SlaPolicyUpdateDTO,
    BusinessCalendarCreateDTO,
    PauseToggleDTO,
    SlaPolicyResponse,
    BusinessCalendarResponse,
    TrackingResponse,
    TrackingListItemResponse,
    TrackingPageResponse,
    BreachPredictionReportResponse,
    EngineRunSummaryResponse,
)
from helpdesk_sla.sla.application.dto import SLAStatusStr, TicketSummaryResponse
from helpdesk_sla.sla.domain import TrackingView
from helpdesk_sla.sla.infrastructure import (
    EngineRunner,
    SQLAlchemyAuditSink,
    SQLAlchemyCalendarRepository,
    SQLAlchemyPolicyRepository,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Tracking"])

staff_only = require_roles(UserRole.ADMIN, UserRole.AGENT)
admin_only = require_roles(UserRole.ADMIN)


# ========== Dependencies ==========

async def get_policy_service(
    session: AsyncSession = Depends(get_session)
) -> SLAPolicyService:
    """Get SLA policy service instance."""
    return SLAPolicyService(
        SQLAlchemyPolicyRepository(session),
        SQLAlchemyCalendarRepository(session),
        SQLAlchemyAuditSink(session),
    )


def get_engine_runner(request: Request) -> EngineRunner:
    """The EngineRunner built at startup."""
    return request.app.state.sla_engine_runner


def _to_list_item(view: TrackingView) -> TrackingListItemResponse:
    return TrackingListItemResponse(
        **TrackingResponse.model_validate(view.tracking).model_dump(),
        ticket=TicketSummaryResponse.model_validate(view.ticket),
        sla_policy=SlaPolicyResponse.model_validate(view.policy) if view.policy else None,
    )


# ========== Policies ==========

@router.get(
    "/policies",
    response_model=List[SlaPolicyResponse],
    summary="List SLA policies",
    description="All policies, active first, then oldest first. The oldest active policy is the default."
)
async def list_policies(
    user: CurrentUser = Depends(staff_only),
    service: SLAPolicyService = Depends(get_policy_service)
):
    policies = await service.find_policies()
    return [SlaPolicyResponse.model_validate(policy) for policy in policies]


@router.post(
    "/policies",
    response_model=SlaPolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an SLA policy"
)
async def create_policy(
    payload: SlaPolicyCreateDTO,
    user: CurrentUser = Depends(admin_only),
    service: SLAPolicyService = Depends(get_policy_service)
):
    policy = await service.create_policy(payload, actor_id=user.id)
    return SlaPolicyResponse.model_validate(policy)


@router.patch(
    "/policies/{policy_id}",
    response_model=SlaPolicyResponse,
    summary="Update an SLA policy",
    responses={404: {"description": "Policy not found"}}
)
async def update_policy(
    policy_id: str,
    payload: SlaPolicyUpdateDTO,
    user: CurrentUser = Depends(admin_only),
    service: SLAPolicyService = Depends(get_policy_service)
):
    policy = await service.update_policy(policy_id, payload, actor_id=user.id)
    return SlaPolicyResponse.model_validate(policy)


# ========== Business-hours calendars ==========

@router.get(
    "/calendars",
    response_model=List[BusinessCalendarResponse],
    summary="List business-hours calendars"
)
async def list_calendars(
    user: CurrentUser = Depends(staff_only),
    service: SLAPolicyService = Depends(get_policy_service)
):
    calendars = await service.find_calendars()
    return [BusinessCalendarResponse.model_validate(calendar) for calendar in calendars]


@router.post(
    "/calendars",
    response_model=BusinessCalendarResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a business-hours calendar",
    description="Calendars are advisory: deadlines are computed on elapsed wall-clock minutes."
)
async def create_calendar(
    payload: BusinessCalendarCreateDTO,
    user: CurrentUser = Depends(admin_only),
    service: SLAPolicyService = Depends(get_policy_service)
):
    calendar = await service.create_calendar(payload)
    return BusinessCalendarResponse.model_validate(calendar)


# ========== Tracking ==========

@router.get(
    "/tracking",
    response_model=TrackingPageResponse,
    summary="List SLA tracking rows",
    description="Paginated, ordered by SLA status then resolution deadline."
)
async def list_tracking(
    sla_status: Optional[SLAStatusStr] = Query(None, alias="status", description="Filter by SLA status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(staff_only),
    runner: EngineRunner = Depends(get_engine_runner)
):
    result = await runner.find_tracking(sla_status, page, page_size)
    return TrackingPageResponse(
        data=[_to_list_item(view) for view in result.data],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.patch(
    "/tracking/{ticket_id}/pause",
    response_model=TrackingResponse,
    summary="Pause the SLA clock of a ticket",
    responses={404: {"description": "Ticket has no SLA tracking"}}
)
async def pause_tracking(
    ticket_id: str,
    payload: Optional[PauseToggleDTO] = None,
    user: CurrentUser = Depends(staff_only),
    runner: EngineRunner = Depends(get_engine_runner)
):
    tracking = await runner.pause(ticket_id, user.id, payload.reason if payload else None)
    return TrackingResponse.model_validate(tracking)


@router.patch(
    "/tracking/{ticket_id}/resume",
    response_model=TrackingResponse,
    summary="Resume the SLA clock of a ticket",
    description="Deadlines are shifted forward by the whole minutes spent paused.",
    responses={404: {"description": "Ticket has no SLA tracking"}}
)
async def resume_tracking(
    ticket_id: str,
    payload: Optional[PauseToggleDTO] = None,
    user: CurrentUser = Depends(staff_only),
    runner: EngineRunner = Depends(get_engine_runner)
):
    tracking = await runner.resume(ticket_id, user.id, payload.reason if payload else None)
    return TrackingResponse.model_validate(tracking)


# ========== Predictions ==========

@router.get(
    "/predictions",
    response_model=BreachPredictionReportResponse,
    summary="Predict upcoming resolution breaches",
    description="Open, unpaused tickets whose resolution deadline falls inside the window, most urgent first."
)
async def predict_breaches(
    window_hours: Optional[int] = Query(None, ge=1, le=168),
    user: CurrentUser = Depends(staff_only),
    runner: EngineRunner = Depends(get_engine_runner)
):
    report = await runner.predict(window_hours or settings.sla_prediction_default_window_hours)
    return BreachPredictionReportResponse.model_validate(report)


# ========== Engine ==========

@router.post(
    "/engine/run",
    response_model=EngineRunSummaryResponse,
    summary="Run an SLA engine pass now",
    description="Waits for a pass already in progress, then runs a full pass."
)
async def run_engine(
    user: CurrentUser = Depends(admin_only),
    runner: EngineRunner = Depends(get_engine_runner)
):
    summary = await runner.run_pass(user.id, EngineTrigger.MANUAL)
    return EngineRunSummaryResponse.model_validate(summary)


# Export router with module name
sla_router = router
