"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Every write runs inside a SAVEPOINT so a
failed row leaves the surrounding session usable.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk_sla.core import RepositoryException
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application.services import (
    IAuditSink,
    ICalendarRepository,
    INotificationSink,
    IPolicyRepository,
    ITicketActivityLog,
    ITicketRepository,
    ITrackingRepository,
)
from helpdesk_sla.sla.domain import (
    AuditEntry,
    BusinessCalendar,
    NotificationBroadcast,
    SlaPolicy,
    Ticket,
    TicketComment,
    TicketSlaTracking,
    TicketSummary,
    TrackingView,
    UserSummary,
)
from helpdesk_sla.sla.infrastructure.models import (
    AuditLogModel,
    BusinessCalendarModel,
    NotificationModel,
    SlaPolicyModel,
    TicketActivityModel,
    TicketCommentModel,
    TicketModel,
    TicketSlaTrackingModel,
    UserModel,
)

logger = get_logger(__name__)

_TRACKING_FIELDS = (
    "sla_policy_id",
    "response_deadline_at",
    "resolution_deadline_at",
    "first_response_at",
    "resolved_at",
    "breached_at",
    "status",
    "paused_at",
    "paused_accumulated_minutes",
    "next_escalation_at",
    "predicted_breach_at",
)

_POLICY_FIELDS = (
    "name",
    "description",
    "response_time_minutes",
    "resolution_time_minutes",
    "business_hours_only",
    "is_active",
    "calendar_id",
)


# ========== Model -> Entity mapping ==========

def _policy_to_entity(model: SlaPolicyModel) -> SlaPolicy:
    return SlaPolicy(
        id=model.id,
        name=model.name,
        description=model.description,
        response_time_minutes=model.response_time_minutes,
        resolution_time_minutes=model.resolution_time_minutes,
        business_hours_only=model.business_hours_only,
        is_active=model.is_active,
        calendar_id=model.calendar_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _calendar_to_entity(model: BusinessCalendarModel) -> BusinessCalendar:
    return BusinessCalendar(
        id=model.id,
        name=model.name,
        timezone=model.timezone,
        open_weekdays=list(model.open_weekdays or []),
        start_hour=model.start_hour,
        end_hour=model.end_hour,
        holidays=list(model.holidays or []),
        is_default=model.is_default,
        created_at=model.created_at,
    )


def _user_to_summary(model: Optional[UserModel]) -> Optional[UserSummary]:
    if model is None:
        return None
    return UserSummary(id=model.id, full_name=model.full_name, email=model.email)


def _ticket_to_summary(model: TicketModel) -> TicketSummary:
    return TicketSummary(
        id=model.id,
        code=model.code,
        title=model.title,
        status=model.status,
        priority=model.priority,
        requester=_user_to_summary(model.requester),
        assignee=_user_to_summary(model.assignee),
    )


def _ticket_to_entity(model: TicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        code=model.code,
        title=model.title,
        status=model.status,
        priority=model.priority,
        requester_id=model.requester_id,
        assignee_id=model.assignee_id,
        created_at=model.created_at,
        sla_policy_id=model.sla_policy_id,
        sla_policy=_policy_to_entity(model.sla_policy) if model.sla_policy else None,
        resolved_at=model.resolved_at,
        closed_at=model.closed_at,
        comments=[
            TicketComment(
                author_id=comment.author_id,
                author_role=comment.author.role,
                created_at=comment.created_at,
            )
            for comment in model.comments
        ],
    )


def _tracking_to_entity(model: TicketSlaTrackingModel) -> TicketSlaTracking:
    return TicketSlaTracking(
        id=model.id,
        ticket_id=model.ticket_id,
        sla_policy_id=model.sla_policy_id,
        response_deadline_at=model.response_deadline_at,
        resolution_deadline_at=model.resolution_deadline_at,
        first_response_at=model.first_response_at,
        resolved_at=model.resolved_at,
        breached_at=model.breached_at,
        status=model.status,
        paused_at=model.paused_at,
        paused_accumulated_minutes=model.paused_accumulated_minutes,
        next_escalation_at=model.next_escalation_at,
        predicted_breach_at=model.predicted_breach_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _tracking_to_view(model: TicketSlaTrackingModel) -> TrackingView:
    return TrackingView(
        tracking=_tracking_to_entity(model),
        ticket=_ticket_to_summary(model.ticket),
        policy=_policy_to_entity(model.sla_policy) if model.sla_policy else None,
    )


def _tracking_view_options():
    return (
        selectinload(TicketSlaTrackingModel.ticket).selectinload(TicketModel.requester),
        selectinload(TicketSlaTrackingModel.ticket).selectinload(TicketModel.assignee),
        selectinload(TicketSlaTrackingModel.sla_policy),
    )


# ========== Repositories ==========

class SQLAlchemyPolicyRepository(IPolicyRepository):
    """SQLAlchemy implementation of the SLA policy repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_all(self) -> List[SlaPolicy]:
        stmt = select(SlaPolicyModel).order_by(
            SlaPolicyModel.is_active.desc(),
            SlaPolicyModel.created_at.asc(),
        )
        result = await self._session.execute(stmt)
        return [_policy_to_entity(model) for model in result.scalars().all()]

    async def list_active(self) -> List[SlaPolicy]:
        stmt = (
            select(SlaPolicyModel)
            .where(SlaPolicyModel.is_active.is_(True))
            .order_by(SlaPolicyModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [_policy_to_entity(model) for model in result.scalars().all()]

    async def get_by_id(self, policy_id: str) -> Optional[SlaPolicy]:
        model = await self._session.get(SlaPolicyModel, policy_id)
        return _policy_to_entity(model) if model else None

    async def create(self, policy: SlaPolicy) -> SlaPolicy:
        model = SlaPolicyModel(
            id=policy.id,
            **{name: getattr(policy, name) for name in _POLICY_FIELDS}
        )
        async with self._session.begin_nested():
            self._session.add(model)
        return _policy_to_entity(model)

    async def update(self, policy_id: str, changes: dict) -> Optional[SlaPolicy]:
        model = await self._session.get(SlaPolicyModel, policy_id)
        if model is None:
            return None

        unknown = set(changes) - set(_POLICY_FIELDS)
        if unknown:
            raise RepositoryException(
                f"Unknown SLA policy fields: {', '.join(sorted(unknown))}"
            )

        async with self._session.begin_nested():
            for name, value in changes.items():
                setattr(model, name, value)
        await self._session.refresh(model)
        return _policy_to_entity(model)


class SQLAlchemyCalendarRepository(ICalendarRepository):
    """SQLAlchemy implementation of the business-hours calendar repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_all(self) -> List[BusinessCalendar]:
        stmt = select(BusinessCalendarModel).order_by(
            BusinessCalendarModel.is_default.desc(),
            BusinessCalendarModel.created_at.asc(),
        )
        result = await self._session.execute(stmt)
        return [_calendar_to_entity(model) for model in result.scalars().all()]

    async def clear_default(self) -> None:
        stmt = (
            update(BusinessCalendarModel)
            .where(BusinessCalendarModel.is_default.is_(True))
            .values(is_default=False)
            .execution_options(synchronize_session=False)
        )
        async with self._session.begin_nested():
            await self._session.execute(stmt)

    async def create(self, calendar: BusinessCalendar) -> BusinessCalendar:
        model = BusinessCalendarModel(
            id=calendar.id,
            name=calendar.name,
            timezone=calendar.timezone,
            open_weekdays=calendar.open_weekdays,
            start_hour=calendar.start_hour,
            end_hour=calendar.end_hour,
            holidays=calendar.holidays,
            is_default=calendar.is_default,
        )
        async with self._session.begin_nested():
            self._session.add(model)
        return _calendar_to_entity(model)


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket reads the SLA engine needs.

    Tickets are owned by the helpdesk; the only write is the bulk default
    policy assignment.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def assign_default_policy(self, policy_id: str, statuses: List[str]) -> int:
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.sla_policy_id.is_(None),
                TicketModel.status.in_(statuses),
            )
            .values(sla_policy_id=policy_id)
            .execution_options(synchronize_session=False)
        )
        async with self._session.begin_nested():
            result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def list_with_policy(self, statuses: List[str]) -> List[Ticket]:
        stmt = (
            select(TicketModel)
            .where(
                TicketModel.status.in_(statuses),
                TicketModel.sla_policy_id.is_not(None),
            )
            .options(
                selectinload(TicketModel.sla_policy),
                selectinload(TicketModel.comments).selectinload(TicketCommentModel.author),
            )
            .order_by(TicketModel.created_at.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [_ticket_to_entity(model) for model in result.scalars().all()]


class SQLAlchemyTrackingRepository(ITrackingRepository):
    """SQLAlchemy implementation of the SLA tracking repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(
        self,
        ticket_id: str,
        for_update: bool = False
    ) -> Optional[TicketSlaTrackingModel]:
        stmt = select(TicketSlaTrackingModel).where(TicketSlaTrackingModel.ticket_id == ticket_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_ticket_id(
        self,
        ticket_id: str,
        for_update: bool = False
    ) -> Optional[TicketSlaTracking]:
        model = await self._get_model(ticket_id, for_update)
        return _tracking_to_entity(model) if model else None

    async def upsert(self, tracking: TicketSlaTracking) -> TicketSlaTracking:
        async with self._session.begin_nested():
            model = await self._get_model(tracking.ticket_id)
            if model is None:
                model = TicketSlaTrackingModel(ticket_id=tracking.ticket_id)
                if tracking.id:
                    model.id = tracking.id
                self._session.add(model)

            for name in _TRACKING_FIELDS:
                setattr(model, name, getattr(tracking, name))
            await self._session.flush()

        return _tracking_to_entity(model)

    async def list(
        self,
        status: Optional[str],
        limit: int,
        offset: int
    ) -> Tuple[List[TrackingView], int]:
        count_stmt = select(func.count()).select_from(TicketSlaTrackingModel)
        stmt = select(TicketSlaTrackingModel)
        if status:
            count_stmt = count_stmt.where(TicketSlaTrackingModel.status == status)
            stmt = stmt.where(TicketSlaTrackingModel.status == status)

        total = (await self._session.execute(count_stmt)).scalar_one()

        stmt = (
            stmt
            .options(*_tracking_view_options())
            .order_by(
                TicketSlaTrackingModel.status.asc(),
                TicketSlaTrackingModel.resolution_deadline_at.asc(),
            )
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return [_tracking_to_view(model) for model in result.scalars().all()], total

    async def list_predictable(
        self,
        statuses: List[str],
        now: datetime,
        until: datetime,
        limit: int
    ) -> List[TrackingView]:
        stmt = (
            select(TicketSlaTrackingModel)
            .where(
                TicketSlaTrackingModel.status.in_(statuses),
                TicketSlaTrackingModel.resolved_at.is_(None),
                TicketSlaTrackingModel.paused_at.is_(None),
                TicketSlaTrackingModel.resolution_deadline_at >= now,
                TicketSlaTrackingModel.resolution_deadline_at <= until,
            )
            .options(*_tracking_view_options())
            .order_by(TicketSlaTrackingModel.resolution_deadline_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_tracking_to_view(model) for model in result.scalars().all()]


# ========== Collaborator sinks ==========

class SQLAlchemyNotificationSink(INotificationSink):
    """In-app notifications stored in the 'notifications' table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def broadcast(self, notification: NotificationBroadcast) -> int:
        recipient_ids = list(dict.fromkeys(rid for rid in notification.recipient_ids if rid))
        if not recipient_ids:
            return 0

        stmt = select(UserModel.id).where(
            UserModel.id.in_(recipient_ids),
            UserModel.is_active.is_(True),
        )
        active = set((await self._session.execute(stmt)).scalars().all())
        targets = [rid for rid in recipient_ids if rid in active]
        if not targets:
            return 0

        async with self._session.begin_nested():
            self._session.add_all([
                NotificationModel(
                    user_id=user_id,
                    actor_id=notification.actor_id,
                    type=notification.type,
                    title=notification.title,
                    body=notification.body,
                    resource=notification.resource,
                    resource_id=notification.resource_id,
                    extra=dict(notification.metadata),
                )
                for user_id in targets
            ])

        logger.debug(
            "Notifications created",
            extra={"type": notification.type, "count": len(targets), "resource_id": notification.resource_id}
        )
        return len(targets)


class SQLAlchemyAuditSink(IAuditSink):
    """Audit entries stored in the 'audit_logs' table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def log(self, entry: AuditEntry) -> None:
        async with self._session.begin_nested():
            self._session.add(AuditLogModel(
                actor_id=entry.actor_id,
                action=entry.action,
                resource=entry.resource,
                resource_id=entry.resource_id,
                details=dict(entry.details),
                success=entry.success,
            ))


class SQLAlchemyTicketActivityLog(ITicketActivityLog):
    """Ticket timeline notes stored in the 'ticket_activities' table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def record(
        self,
        ticket_id: str,
        actor_id: Optional[str],
        activity_type: str,
        title: str,
        detail: Optional[str] = None
    ) -> None:
        async with self._session.begin_nested():
            self._session.add(TicketActivityModel(
                ticket_id=ticket_id,
                actor_id=actor_id,
                type=activity_type,
                title=title,
                detail=detail,
            ))
