"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from helpdesk_sla.config import RESPONDER_ROLES, SLAStatus
from helpdesk_sla.sla.domain.value_objects import SLACalculator


@dataclass
class SlaPolicy:
    """
    SLA policy: response and resolution budgets in minutes.

    Read-only to the engine; edited through the administration surface.
    """

    id: str
    name: str
    response_time_minutes: int
    resolution_time_minutes: int
    business_hours_only: bool = True
    is_active: bool = True
    description: Optional[str] = None
    calendar_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.response_time_minutes <= 0:
            raise ValueError("response_time_minutes must be positive")
        if self.resolution_time_minutes <= 0:
            raise ValueError("resolution_time_minutes must be positive")


@dataclass
class BusinessCalendar:
    """
    Business-hours calendar.

    Stored and exposed for administration only; deadline arithmetic runs
    on elapsed wall-clock minutes and does not consult it.
    """

    id: str
    name: str
    timezone: str = "America/Lima"
    open_weekdays: List[int] = field(default_factory=lambda: [1, 2, 3, 4, 5])
    start_hour: int = 9
    end_hour: int = 18
    holidays: List[str] = field(default_factory=list)
    is_default: bool = False
    created_at: Optional[datetime] = None


@dataclass
class UserSummary:
    id: str
    full_name: str
    email: str


@dataclass
class TicketComment:
    author_id: str
    author_role: str
    created_at: datetime


@dataclass
class TicketSummary:
    """Ticket fields attached to tracking listings and predictions."""

    id: str
    code: str
    title: str
    status: str
    priority: str
    requester: Optional[UserSummary] = None
    assignee: Optional[UserSummary] = None


@dataclass
class Ticket:
    """
    Ticket as seen by the SLA engine.

    Owned by the ticket store; the engine only reads it (and assigns the
    default policy in bulk).
    """

    id: str
    code: str
    title: str
    status: str
    priority: str
    requester_id: str
    created_at: datetime
    assignee_id: Optional[str] = None
    sla_policy_id: Optional[str] = None
    sla_policy: Optional[SlaPolicy] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    comments: List[TicketComment] = field(default_factory=list)

    @property
    def first_response_at(self) -> Optional[datetime]:
        """Earliest comment written by an agent or admin."""
        responses = [
            comment.created_at
            for comment in self.comments
            if comment.author_role in RESPONDER_ROLES
        ]
        return min(responses) if responses else None

    @property
    def effective_resolved_at(self) -> Optional[datetime]:
        return self.resolved_at or self.closed_at

    @property
    def recipient_ids(self) -> List[str]:
        """Requester and assignee, deduplicated, in that order."""
        recipients = [self.requester_id]
        if self.assignee_id and self.assignee_id != self.requester_id:
            recipients.append(self.assignee_id)
        return recipients


@dataclass
class TicketSlaTracking:
    """
    Per-ticket SLA record: computed deadlines, status and pause accounting.

    Owned and mutated exclusively by the SLA engine.
    """

    ticket_id: str
    sla_policy_id: str
    response_deadline_at: datetime
    resolution_deadline_at: datetime
    status: str = SLAStatus.ON_TRACK
    id: Optional[str] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    breached_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    paused_accumulated_minutes: int = 0
    next_escalation_at: Optional[datetime] = None
    predicted_breach_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    def pause(self, now: datetime) -> bool:
        """
        Stop the SLA clock.

        Returns:
            False when the tracking was already paused (nothing changes)
        """
        if self.is_paused:
            return False
        self.paused_at = now
        return True

    def resume(self, now: datetime) -> int:
        """
        Restart the SLA clock, shifting every deadline-derived field forward
        by the whole minutes spent paused.

        Returns:
            The minutes added to the pause accounting (0 when not paused)
        """
        if self.paused_at is None:
            return 0

        paused_minutes = SLACalculator.paused_minutes(self.paused_at, now)
        shift = timedelta(minutes=paused_minutes)

        self.response_deadline_at = self.response_deadline_at + shift
        self.resolution_deadline_at = self.resolution_deadline_at + shift
        if self.next_escalation_at is not None:
            self.next_escalation_at = self.next_escalation_at + shift
        if self.predicted_breach_at is not None:
            self.predicted_breach_at = self.predicted_breach_at + shift

        self.paused_accumulated_minutes += paused_minutes
        self.paused_at = None
        return paused_minutes


@dataclass
class TrackingView:
    """Tracking row joined with its ticket summary and policy."""

    tracking: TicketSlaTracking
    ticket: TicketSummary
    policy: Optional[SlaPolicy] = None


@dataclass
class TrackingPage:
    data: List[TrackingView]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return max(1, -(-self.total // self.page_size))


@dataclass
class EngineRunSummary:
    """
    Outcome of one SLA engine pass.

    Ephemeral: returned to the caller and written to the audit log.
    """

    trigger: str
    ran_at: datetime
    default_policy_id: Optional[str] = None
    auto_assigned_policy_count: int = 0
    processed_tickets: int = 0
    created_tracking_count: int = 0
    updated_tracking_count: int = 0
    changed_status_count: int = 0
    notifications_created: int = 0
    failed_ticket_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["ran_at"] = self.ran_at.isoformat()
        return data


@dataclass
class BreachPrediction:
    tracking_id: str
    ticket: TicketSummary
    status: str
    resolution_deadline_at: datetime
    predicted_breach_at: datetime
    risk_score: int
    remaining_minutes: int


@dataclass
class BreachPredictionReport:
    generated_at: datetime
    window_hours: int
    data: List[BreachPrediction] = field(default_factory=list)


@dataclass
class NotificationBroadcast:
    """
    Fan-out request for the notification sink.

    The sink deduplicates recipients and drops inactive users.
    """

    recipient_ids: List[str]
    type: str
    title: str
    body: str
    resource: str
    resource_id: str
    actor_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuditEntry:
    action: str
    resource: str
    actor_id: Optional[str] = None
    resource_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    success: bool = True
