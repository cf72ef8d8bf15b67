"""
Shared test fixtures.

Environment is pinned before any helpdesk_sla import so the cached
settings never point at a real database or start the scheduler.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["SLA_ENGINE_AUTORUN_ENABLED"] = "false"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

import pytest

from helpdesk_sla.config import TicketPriority, TicketStatus
from helpdesk_sla.sla.application.services import (
    IAuditSink,
    ICalendarRepository,
    INotificationSink,
    IPolicyRepository,
    ITicketActivityLog,
    ITicketRepository,
    ITrackingRepository,
    SLAEngine,
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
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)
        return self.now


# ========== In-memory collaborators ==========

class FakePolicyRepository(IPolicyRepository):
    def __init__(self):
        self.policies: Dict[str, SlaPolicy] = {}

    async def list_all(self) -> List[SlaPolicy]:
        return sorted(self.policies.values(), key=lambda p: (not p.is_active, p.created_at))

    async def list_active(self) -> List[SlaPolicy]:
        return sorted(
            (p for p in self.policies.values() if p.is_active),
            key=lambda p: p.created_at
        )

    async def get_by_id(self, policy_id: str) -> Optional[SlaPolicy]:
        return self.policies.get(policy_id)

    async def create(self, policy: SlaPolicy) -> SlaPolicy:
        if policy.created_at is None:
            policy.created_at = NOW + timedelta(seconds=len(self.policies))
        self.policies[policy.id] = policy
        return policy

    async def update(self, policy_id: str, changes: dict) -> Optional[SlaPolicy]:
        policy = self.policies.get(policy_id)
        if policy is None:
            return None
        updated = dataclasses.replace(policy, **changes)
        self.policies[policy_id] = updated
        return updated


class FakeCalendarRepository(ICalendarRepository):
    def __init__(self):
        self.calendars: List[BusinessCalendar] = []

    async def list_all(self) -> List[BusinessCalendar]:
        return sorted(self.calendars, key=lambda c: not c.is_default)

    async def clear_default(self) -> None:
        for calendar in self.calendars:
            calendar.is_default = False

    async def create(self, calendar: BusinessCalendar) -> BusinessCalendar:
        self.calendars.append(calendar)
        return calendar


class FakeTicketRepository(ITicketRepository):
    def __init__(self, policies: FakePolicyRepository):
        self._policies = policies
        self.tickets: Dict[str, Ticket] = {}

    async def assign_default_policy(self, policy_id: str, statuses: List[str]) -> int:
        assigned = 0
        for ticket in self.tickets.values():
            if ticket.sla_policy_id is None and ticket.status in statuses:
                ticket.sla_policy_id = policy_id
                assigned += 1
        return assigned

    async def list_with_policy(self, statuses: List[str]) -> List[Ticket]:
        result = []
        for ticket in sorted(self.tickets.values(), key=lambda t: t.created_at):
            if ticket.status in statuses and ticket.sla_policy_id is not None:
                ticket.sla_policy = self._policies.policies.get(ticket.sla_policy_id)
                result.append(ticket)
        return result

    def summary(self, ticket_id: str) -> TicketSummary:
        ticket = self.tickets[ticket_id]
        return TicketSummary(
            id=ticket.id,
            code=ticket.code,
            title=ticket.title,
            status=ticket.status,
            priority=ticket.priority,
        )


class FakeTrackingRepository(ITrackingRepository):
    """Stores copies so the engine only changes state through upsert."""

    def __init__(self, tickets: FakeTicketRepository, policies: FakePolicyRepository):
        self._tickets = tickets
        self._policies = policies
        self.rows: Dict[str, TicketSlaTracking] = {}
        self.fail_for: set = set()
        self.locked_reads: List[str] = []
        # Awaited after each stored write; lets a test act between two tickets of a pass
        self.after_upsert: Optional[Callable[[TicketSlaTracking], Awaitable[None]]] = None

    async def get_by_ticket_id(self, ticket_id: str, for_update: bool = False) -> Optional[TicketSlaTracking]:
        if for_update:
            self.locked_reads.append(ticket_id)
        row = self.rows.get(ticket_id)
        return dataclasses.replace(row) if row else None

    async def upsert(self, tracking: TicketSlaTracking) -> TicketSlaTracking:
        if tracking.ticket_id in self.fail_for:
            raise RuntimeError(f"write failed for {tracking.ticket_id}")
        stored = dataclasses.replace(tracking)
        if stored.id is None:
            stored.id = str(uuid4())
        self.rows[stored.ticket_id] = stored
        if self.after_upsert is not None:
            await self.after_upsert(dataclasses.replace(stored))
        return dataclasses.replace(stored)

    def _view(self, row: TicketSlaTracking) -> TrackingView:
        return TrackingView(
            tracking=dataclasses.replace(row),
            ticket=self._tickets.summary(row.ticket_id),
            policy=self._policies.policies.get(row.sla_policy_id),
        )

    async def list(self, status, limit, offset):
        rows = [r for r in self.rows.values() if status is None or r.status == status]
        rows.sort(key=lambda r: (r.status, r.resolution_deadline_at))
        return [self._view(r) for r in rows[offset:offset + limit]], len(rows)

    async def list_predictable(self, statuses, now, until, limit):
        rows = [
            r for r in self.rows.values()
            if r.status in statuses
            and r.resolved_at is None
            and r.paused_at is None
            and now <= r.resolution_deadline_at <= until
        ]
        rows.sort(key=lambda r: r.resolution_deadline_at)
        return [self._view(r) for r in rows[:limit]]


class FakeNotificationSink(INotificationSink):
    def __init__(self):
        self.broadcasts: List[NotificationBroadcast] = []
        self.inactive_user_ids: set = set()
        self.fail = False

    async def broadcast(self, notification: NotificationBroadcast) -> int:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.broadcasts.append(notification)
        recipients = dict.fromkeys(notification.recipient_ids)
        return len([rid for rid in recipients if rid not in self.inactive_user_ids])


class FakeAuditSink(IAuditSink):
    def __init__(self):
        self.entries: List[AuditEntry] = []
        self.fail = False

    async def log(self, entry: AuditEntry) -> None:
        if self.fail:
            raise RuntimeError("audit store down")
        self.entries.append(entry)

    def actions(self) -> List[str]:
        return [entry.action for entry in self.entries]


class FakeActivityLog(ITicketActivityLog):
    def __init__(self):
        self.records: List[dict] = []

    async def record(self, ticket_id, actor_id, activity_type, title, detail=None) -> None:
        self.records.append({
            "ticket_id": ticket_id,
            "actor_id": actor_id,
            "type": activity_type,
            "title": title,
            "detail": detail,
        })


class EngineHarness:
    """SLAEngine wired to in-memory collaborators."""

    def __init__(self):
        self.clock = FrozenClock()
        self.policies = FakePolicyRepository()
        self.calendars = FakeCalendarRepository()
        self.tickets = FakeTicketRepository(self.policies)
        self.trackings = FakeTrackingRepository(self.tickets, self.policies)
        self.notifications = FakeNotificationSink()
        self.audit = FakeAuditSink()
        self.activity = FakeActivityLog()
        self.engine = SLAEngine(
            policy_repository=self.policies,
            ticket_repository=self.tickets,
            tracking_repository=self.trackings,
            notification_sink=self.notifications,
            audit_sink=self.audit,
            activity_log=self.activity,
            clock=self.clock,
        )

    def add_policy(
        self,
        response: int = 30,
        resolution: int = 90,
        is_active: bool = True,
        created_at: Optional[datetime] = None,
        name: str = "Standard"
    ) -> SlaPolicy:
        policy = SlaPolicy(
            id=str(uuid4()),
            name=name,
            response_time_minutes=response,
            resolution_time_minutes=resolution,
            is_active=is_active,
            created_at=created_at or NOW - timedelta(days=30) + timedelta(seconds=len(self.policies.policies)),
        )
        self.policies.policies[policy.id] = policy
        return policy

    def add_ticket(
        self,
        age_minutes: float = 0,
        policy: Optional[SlaPolicy] = None,
        status: str = TicketStatus.OPEN,
        requester_id: str = "requester-1",
        assignee_id: Optional[str] = "agent-1",
        comments: Optional[List[TicketComment]] = None,
        resolved_at: Optional[datetime] = None,
        closed_at: Optional[datetime] = None,
    ) -> Ticket:
        number = len(self.tickets.tickets) + 1
        ticket = Ticket(
            id=str(uuid4()),
            code=f"HD-{number:04d}",
            title=f"Ticket {number}",
            status=status,
            priority=TicketPriority.MEDIUM,
            requester_id=requester_id,
            assignee_id=assignee_id,
            created_at=self.clock.now - timedelta(minutes=age_minutes),
            sla_policy_id=policy.id if policy else None,
            resolved_at=resolved_at,
            closed_at=closed_at,
            comments=comments or [],
        )
        self.tickets.tickets[ticket.id] = ticket
        return ticket


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def harness() -> EngineHarness:
    return EngineHarness()
