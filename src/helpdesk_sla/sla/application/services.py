"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: policy administration and tracking are separate services
- Dependency Inversion: depend on abstractions (repositories, sinks), not
  concrete implementations
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

from helpdesk_sla.config import (
    AuditAction, EngineTrigger, TicketActivityType,
    OPEN_TICKET_STATUSES, TRACKED_TICKET_STATUSES, PREDICTABLE_SLA_STATUSES
)
from helpdesk_sla.core import PolicyNotFoundException, TrackingNotFoundException
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application.dto import (
    SlaPolicyCreateDTO, SlaPolicyUpdateDTO, BusinessCalendarCreateDTO
)
from helpdesk_sla.sla.domain import (
    AuditEntry,
    BreachPrediction,
    BreachPredictionReport,
    BusinessCalendar,
    EngineRunSummary,
    NotificationBroadcast,
    SLACalculator,
    SlaPolicy,
    Ticket,
    TicketSlaTracking,
    TrackingPage,
    TrackingView,
)

logger = get_logger(__name__)

TRACKING_RESOURCE = "ticket_sla_tracking"
ENGINE_RESOURCE = "sla_engine"
POLICY_RESOURCE = "sla_policy"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IPolicyRepository(ABC):
    """Interface for SLA policy data access."""

    @abstractmethod
    async def list_all(self) -> List[SlaPolicy]:
        """All policies, active first, then oldest first."""

    @abstractmethod
    async def list_active(self) -> List[SlaPolicy]:
        """Active policies ordered by creation ascending."""

    @abstractmethod
    async def get_by_id(self, policy_id: str) -> Optional[SlaPolicy]:
        """Get policy by ID."""

    @abstractmethod
    async def create(self, policy: SlaPolicy) -> SlaPolicy:
        """Persist a new policy."""

    @abstractmethod
    async def update(self, policy_id: str, changes: dict) -> Optional[SlaPolicy]:
        """Apply changes to a policy; None when it does not exist."""


class ICalendarRepository(ABC):
    """Interface for business-hours calendar data access."""

    @abstractmethod
    async def list_all(self) -> List[BusinessCalendar]:
        """All calendars, default first, then oldest first."""

    @abstractmethod
    async def clear_default(self) -> None:
        """Unset the default flag on every calendar."""

    @abstractmethod
    async def create(self, calendar: BusinessCalendar) -> BusinessCalendar:
        """Persist a new calendar."""


class ITicketRepository(ABC):
    """Interface for the ticket store, as far as the SLA engine needs it."""

    @abstractmethod
    async def assign_default_policy(self, policy_id: str, statuses: List[str]) -> int:
        """Bulk-assign policy_id to tickets without a policy; returns count."""

    @abstractmethod
    async def list_with_policy(self, statuses: List[str]) -> List[Ticket]:
        """Tickets in statuses with a policy, including policy and comments."""


class ITrackingRepository(ABC):
    """Interface for SLA tracking data access."""

    @abstractmethod
    async def get_by_ticket_id(
        self,
        ticket_id: str,
        for_update: bool = False
    ) -> Optional[TicketSlaTracking]:
        """Get the tracking of a ticket, optionally row-locked."""

    @abstractmethod
    async def upsert(self, tracking: TicketSlaTracking) -> TicketSlaTracking:
        """Create or update the tracking keyed by ticket id."""

    @abstractmethod
    async def list(
        self,
        status: Optional[str],
        limit: int,
        offset: int
    ) -> Tuple[List[TrackingView], int]:
        """Page of trackings ordered by status then resolution deadline, and total."""

    @abstractmethod
    async def list_predictable(
        self,
        statuses: List[str],
        now: datetime,
        until: datetime,
        limit: int
    ) -> List[TrackingView]:
        """Unresolved, unpaused trackings whose resolution deadline is in [now, until]."""


class INotificationSink(ABC):
    """Fan-out notification delivery."""

    @abstractmethod
    async def broadcast(self, notification: NotificationBroadcast) -> int:
        """Deliver to deduplicated active recipients; returns notifications created."""


class IAuditSink(ABC):
    """Structured audit log writer."""

    @abstractmethod
    async def log(self, entry: AuditEntry) -> None:
        """Write one audit entry."""


class ITicketActivityLog(ABC):
    """Free-text activity notes attached to tickets."""

    @abstractmethod
    async def record(
        self,
        ticket_id: str,
        actor_id: Optional[str],
        activity_type: str,
        title: str,
        detail: Optional[str] = None
    ) -> None:
        """Attach a note to the ticket timeline."""


# ========== Application Services ==========

class SLAPolicyService:
    """
    Administration of SLA policies and business-hours calendars.

    Budget ranges are validated by the DTOs before reaching this service.
    """

    def __init__(
        self,
        policy_repository: IPolicyRepository,
        calendar_repository: ICalendarRepository,
        audit_sink: Optional[IAuditSink] = None
    ):
        self._policy_repo = policy_repository
        self._calendar_repo = calendar_repository
        self._audit_sink = audit_sink

    async def find_policies(self) -> List[SlaPolicy]:
        return await self._policy_repo.list_all()

    async def create_policy(
        self,
        dto: SlaPolicyCreateDTO,
        actor_id: Optional[str] = None
    ) -> SlaPolicy:
        policy = await self._policy_repo.create(
            SlaPolicy(id=str(uuid4()), **dto.model_dump())
        )
        logger.info("SLA policy created", extra={"policy_id": policy.id, "policy_name": policy.name})
        await self._audit(actor_id, AuditAction.SLA_POLICY_CREATED, policy.id, dto.model_dump())
        return policy

    async def update_policy(
        self,
        policy_id: str,
        dto: SlaPolicyUpdateDTO,
        actor_id: Optional[str] = None
    ) -> SlaPolicy:
        """
        Apply a partial update.

        Raises:
            PolicyNotFoundException: If the policy does not exist
        """
        changes = dto.model_dump(exclude_unset=True)
        policy = await self._policy_repo.update(policy_id, changes)
        if policy is None:
            raise PolicyNotFoundException(policy_id)

        logger.info("SLA policy updated", extra={"policy_id": policy_id, "fields": sorted(changes)})
        await self._audit(actor_id, AuditAction.SLA_POLICY_UPDATED, policy_id, changes)
        return policy

    async def find_calendars(self) -> List[BusinessCalendar]:
        return await self._calendar_repo.list_all()

    async def create_calendar(self, dto: BusinessCalendarCreateDTO) -> BusinessCalendar:
        """Create a calendar; a new default replaces the previous one."""
        if dto.is_default:
            await self._calendar_repo.clear_default()

        calendar = BusinessCalendar(
            id=str(uuid4()),
            name=dto.name,
            timezone=dto.timezone,
            open_weekdays=dto.open_weekdays,
            start_hour=dto.start_hour,
            end_hour=dto.end_hour,
            holidays=[holiday.isoformat() for holiday in dto.holidays],
            is_default=dto.is_default,
        )
        return await self._calendar_repo.create(calendar)

    async def _audit(
        self,
        actor_id: Optional[str],
        action: str,
        policy_id: str,
        details: dict
    ) -> None:
        if self._audit_sink is None:
            return
        try:
            await self._audit_sink.log(AuditEntry(
                action=action,
                resource=POLICY_RESOURCE,
                actor_id=actor_id,
                resource_id=policy_id,
                details=details,
            ))
        except Exception as e:
            logger.warning("Audit write failed", extra={"action": action, "error": str(e)})


class SLAEngine:
    """
    SLA tracking engine.

    A pass auto-assigns the default policy, recomputes deadlines and status
    for every eligible ticket, and emits notifications and audit entries
    on status transitions. Pause, resume and prediction are independent
    entry points working directly on tracking rows.

    Passes must be serialized by the caller (see EngineRunner).
    """

    def __init__(
        self,
        policy_repository: IPolicyRepository,
        ticket_repository: ITicketRepository,
        tracking_repository: ITrackingRepository,
        notification_sink: INotificationSink,
        audit_sink: IAuditSink,
        activity_log: ITicketActivityLog,
        clock: Callable[[], datetime] = utc_now,
        prediction_limit: int = 200
    ):
        self._policy_repo = policy_repository
        self._ticket_repo = ticket_repository
        self._tracking_repo = tracking_repository
        self._notification_sink = notification_sink
        self._audit_sink = audit_sink
        self._activity_log = activity_log
        self._clock = clock
        self._prediction_limit = prediction_limit

    # ---------- Full pass ----------

    async def run_pass(
        self,
        actor_id: Optional[str] = None,
        trigger: str = EngineTrigger.MANUAL
    ) -> EngineRunSummary:
        """
        Run one reconciliation pass over all eligible tickets.

        Tickets are listed up front; each tracking is re-read under a row
        lock right before it is rewritten. Tickets whose policy is inactive
        count as processed but are left alone. A failing ticket is logged
        and counted; the pass continues.
        """
        now = self._clock()
        summary = EngineRunSummary(trigger=trigger, ran_at=now)

        active_policies = await self._policy_repo.list_active()
        default_policy = active_policies[0] if active_policies else None
        if default_policy is not None:
            summary.default_policy_id = default_policy.id
            summary.auto_assigned_policy_count = await self._ticket_repo.assign_default_policy(
                default_policy.id, OPEN_TICKET_STATUSES
            )

        tickets = await self._ticket_repo.list_with_policy(TRACKED_TICKET_STATUSES)
        summary.processed_tickets = len(tickets)

        for ticket in tickets:
            policy = ticket.sla_policy
            if policy is None or not policy.is_active:
                continue

            try:
                await self._reconcile_ticket(ticket, policy, now, actor_id, trigger, summary)
            except Exception:
                summary.failed_ticket_count += 1
                logger.exception(
                    "SLA recomputation failed for ticket",
                    extra={"ticket_id": ticket.id, "trigger": trigger}
                )

        await self._audit(AuditEntry(
            action=AuditAction.SLA_ENGINE_RUN,
            resource=ENGINE_RESOURCE,
            actor_id=actor_id,
            details=summary.to_dict(),
        ))

        logger.info("SLA engine pass finished", extra=summary.to_dict())
        return summary

    async def _reconcile_ticket(
        self,
        ticket: Ticket,
        policy: SlaPolicy,
        now: datetime,
        actor_id: Optional[str],
        trigger: str,
        summary: EngineRunSummary
    ) -> None:
        # Row stays locked until the pass commits; pause/resume elsewhere waits on it
        previous = await self._tracking_repo.get_by_ticket_id(ticket.id, for_update=True)
        paused_minutes = previous.paused_accumulated_minutes if previous else 0
        paused_at = previous.paused_at if previous else None

        deadlines = SLACalculator.calculate_deadlines(
            ticket.created_at,
            policy.response_time_minutes,
            policy.resolution_time_minutes,
            paused_minutes,
        )
        first_response_at = ticket.first_response_at
        resolved_at = ticket.effective_resolved_at

        # The clock is stopped while paused; keep the stored status
        if paused_at is not None:
            status = previous.status
        else:
            status = SLACalculator.resolve_status(
                now,
                deadlines.response_deadline_at,
                deadlines.resolution_deadline_at,
                first_response_at,
                resolved_at,
            )

        tracking = await self._tracking_repo.upsert(TicketSlaTracking(
            id=previous.id if previous else None,
            ticket_id=ticket.id,
            sla_policy_id=policy.id,
            response_deadline_at=deadlines.response_deadline_at,
            resolution_deadline_at=deadlines.resolution_deadline_at,
            first_response_at=first_response_at,
            resolved_at=resolved_at,
            breached_at=SLACalculator.resolve_breached_at(
                status, previous.breached_at if previous else None, now
            ),
            status=status,
            paused_at=paused_at,
            paused_accumulated_minutes=paused_minutes,
            next_escalation_at=SLACalculator.next_escalation_at(status, paused_at is not None, now),
            predicted_breach_at=SLACalculator.predicted_breach_at(
                deadlines, first_response_at, resolved_at
            ),
        ))

        if previous is None:
            summary.created_tracking_count += 1
            return
        summary.updated_tracking_count += 1

        if previous.status == status:
            return

        summary.changed_status_count += 1
        logger.info(
            "SLA status transition",
            extra={
                "ticket_id": ticket.id,
                "ticket_code": ticket.code,
                "previous_status": previous.status,
                "next_status": status,
                "trigger": trigger,
            }
        )

        notification_type = SLACalculator.notification_type_for(status)
        if notification_type is not None:
            summary.notifications_created += await self._notify(NotificationBroadcast(
                recipient_ids=ticket.recipient_ids,
                type=notification_type,
                title=f"SLA {SLACalculator.status_label(status)}: {ticket.code}",
                body=(
                    f"Ticket {ticket.code} ({ticket.title}) moved from "
                    f"{previous.status} to {status}."
                ),
                resource="ticket",
                resource_id=ticket.id,
                actor_id=actor_id,
                metadata={
                    "previousStatus": previous.status,
                    "nextStatus": status,
                    "trackingId": tracking.id,
                    "trigger": trigger,
                },
            ))

        await self._audit(AuditEntry(
            action=AuditAction.SLA_STATUS_CHANGED,
            resource=TRACKING_RESOURCE,
            actor_id=actor_id,
            resource_id=tracking.id,
            details={
                "ticketId": ticket.id,
                "ticketCode": ticket.code,
                "previousStatus": previous.status,
                "nextStatus": status,
                "trigger": trigger,
            },
        ))

    # ---------- Pause / Resume ----------

    async def pause(
        self,
        ticket_id: str,
        actor_id: Optional[str],
        reason: Optional[str] = None
    ) -> TicketSlaTracking:
        """
        Stop the SLA clock of a ticket. Pausing a paused tracking is a no-op.

        Raises:
            TrackingNotFoundException: If the ticket has no tracking
        """
        tracking = await self._load_tracking(ticket_id)
        if not tracking.pause(self._clock()):
            return tracking

        tracking = await self._tracking_repo.upsert(tracking)
        logger.info("SLA paused", extra={"ticket_id": ticket_id, "actor_id": actor_id})

        await self._record_activity(
            ticket_id, actor_id, TicketActivityType.SLA_PAUSED, "SLA paused", reason
        )
        await self._audit(AuditEntry(
            action=AuditAction.SLA_PAUSED,
            resource=TRACKING_RESOURCE,
            actor_id=actor_id,
            resource_id=tracking.id,
            details={"ticketId": ticket_id, "reason": reason},
        ))
        return tracking

    async def resume(
        self,
        ticket_id: str,
        actor_id: Optional[str],
        reason: Optional[str] = None
    ) -> TicketSlaTracking:
        """
        Restart the SLA clock, shifting deadlines by the paused minutes.
        Resuming a tracking that is not paused is a no-op.

        Raises:
            TrackingNotFoundException: If the ticket has no tracking
        """
        tracking = await self._load_tracking(ticket_id)
        if not tracking.is_paused:
            return tracking

        paused_minutes = tracking.resume(self._clock())
        tracking = await self._tracking_repo.upsert(tracking)
        logger.info(
            "SLA resumed",
            extra={"ticket_id": ticket_id, "actor_id": actor_id, "paused_minutes": paused_minutes}
        )

        await self._record_activity(
            ticket_id, actor_id, TicketActivityType.SLA_RESUMED, "SLA resumed",
            reason or f"Accumulated pause: {paused_minutes} minutes"
        )
        await self._audit(AuditEntry(
            action=AuditAction.SLA_RESUMED,
            resource=TRACKING_RESOURCE,
            actor_id=actor_id,
            resource_id=tracking.id,
            details={"ticketId": ticket_id, "pausedMinutes": paused_minutes, "reason": reason},
        ))
        return tracking

    async def _load_tracking(self, ticket_id: str) -> TicketSlaTracking:
        tracking = await self._tracking_repo.get_by_ticket_id(ticket_id, for_update=True)
        if tracking is None:
            raise TrackingNotFoundException(ticket_id)
        return tracking

    # ---------- Queries ----------

    async def find_tracking(
        self,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> TrackingPage:
        rows, total = await self._tracking_repo.list(
            status, limit=page_size, offset=(page - 1) * page_size
        )
        return TrackingPage(data=rows, total=total, page=page, page_size=page_size)

    async def predict(self, window_hours: int) -> BreachPredictionReport:
        """
        Rank open trackings whose resolution deadline falls inside the window,
        most urgent first. Read-only.
        """
        now = self._clock()
        until = now + timedelta(hours=window_hours)
        rows = await self._tracking_repo.list_predictable(
            PREDICTABLE_SLA_STATUSES, now, until, self._prediction_limit
        )

        predictions = []
        for row in rows:
            tracking = row.tracking
            if tracking.status not in PREDICTABLE_SLA_STATUSES:
                continue
            if tracking.resolution_deadline_at > until:
                continue

            remaining = SLACalculator.remaining_minutes(tracking.resolution_deadline_at, now)
            budget = row.policy.resolution_time_minutes if row.policy else window_hours * 60
            predictions.append(BreachPrediction(
                tracking_id=tracking.id,
                ticket=row.ticket,
                status=tracking.status,
                resolution_deadline_at=tracking.resolution_deadline_at,
                predicted_breach_at=tracking.predicted_breach_at or tracking.resolution_deadline_at,
                risk_score=SLACalculator.risk_score(remaining, budget),
                remaining_minutes=remaining,
            ))

        predictions.sort(key=lambda p: (p.remaining_minutes, p.resolution_deadline_at))
        return BreachPredictionReport(generated_at=now, window_hours=window_hours, data=predictions)

    # ---------- Auxiliary effects ----------

    async def _notify(self, notification: NotificationBroadcast) -> int:
        try:
            return await self._notification_sink.broadcast(notification)
        except Exception as e:
            logger.warning(
                "SLA notification failed",
                extra={"ticket_id": notification.resource_id, "type": notification.type, "error": str(e)}
            )
            return 0

    async def _audit(self, entry: AuditEntry) -> None:
        try:
            await self._audit_sink.log(entry)
        except Exception as e:
            logger.warning(
                "Audit write failed",
                extra={"action": entry.action, "resource_id": entry.resource_id, "error": str(e)}
            )

    async def _record_activity(
        self,
        ticket_id: str,
        actor_id: Optional[str],
        activity_type: str,
        title: str,
        detail: Optional[str]
    ) -> None:
        try:
            await self._activity_log.record(ticket_id, actor_id, activity_type, title, detail)
        except Exception as e:
            logger.warning(
                "Ticket activity write failed",
                extra={"ticket_id": ticket_id, "activity_type": activity_type, "error": str(e)}
            )
