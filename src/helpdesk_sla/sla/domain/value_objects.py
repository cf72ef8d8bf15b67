"""
SLA Value Objects
==================

Immutable value objects and stateless calculations for the SLA domain.

All time arithmetic is on elapsed wall-clock minutes; business-hours
calendars are advisory and not consulted here.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from helpdesk_sla.config import (
    SLAStatus, NotificationType,
    RESPONSE_AT_RISK_MINUTES, RESOLUTION_AT_RISK_MINUTES, NEXT_ESCALATION_MINUTES
)


@dataclass(frozen=True)
class SLADeadlines:
    """Response and resolution deadlines of one ticket."""
    response_deadline_at: datetime
    resolution_deadline_at: datetime


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA status and deadline rules in one place.
    """

    @staticmethod
    def calculate_deadlines(
        created_at: datetime,
        response_time_minutes: int,
        resolution_time_minutes: int,
        paused_accumulated_minutes: int = 0
    ) -> SLADeadlines:
        """
        Derive both deadlines from the ticket creation time.

        Accumulated pause time is added on every derivation so that shifts
        applied by resume survive later recomputation.
        """
        return SLADeadlines(
            response_deadline_at=created_at + timedelta(
                minutes=response_time_minutes + paused_accumulated_minutes
            ),
            resolution_deadline_at=created_at + timedelta(
                minutes=resolution_time_minutes + paused_accumulated_minutes
            ),
        )

    @staticmethod
    def resolve_status(
        now: datetime,
        response_deadline_at: datetime,
        resolution_deadline_at: datetime,
        first_response_at: Optional[datetime] = None,
        resolved_at: Optional[datetime] = None
    ) -> str:
        """
        Resolve the SLA status, first matching rule wins:

        1. resolved: MET when on or before the resolution deadline, else BREACHED
        2. no first response and response deadline passed: BREACHED
        3. resolution deadline passed: BREACHED
        4. no first response and within 10 minutes of response deadline: AT_RISK
        5. within 20 minutes of resolution deadline: AT_RISK
        6. otherwise ON_TRACK
        """
        if resolved_at is not None:
            if resolved_at <= resolution_deadline_at:
                return SLAStatus.MET
            return SLAStatus.BREACHED

        if first_response_at is None and now > response_deadline_at:
            return SLAStatus.BREACHED

        if now > resolution_deadline_at:
            return SLAStatus.BREACHED

        response_risk_start = response_deadline_at - timedelta(minutes=RESPONSE_AT_RISK_MINUTES)
        if first_response_at is None and now >= response_risk_start:
            return SLAStatus.AT_RISK

        resolution_risk_start = resolution_deadline_at - timedelta(minutes=RESOLUTION_AT_RISK_MINUTES)
        if now >= resolution_risk_start:
            return SLAStatus.AT_RISK

        return SLAStatus.ON_TRACK

    @staticmethod
    def resolve_breached_at(
        status: str,
        previous_breached_at: Optional[datetime],
        now: datetime
    ) -> Optional[datetime]:
        """Keep the first breach time while BREACHED; clear it otherwise."""
        if status != SLAStatus.BREACHED:
            return None
        return previous_breached_at or now

    @staticmethod
    def next_escalation_at(status: str, is_paused: bool, now: datetime) -> Optional[datetime]:
        if is_paused or status == SLAStatus.BREACHED:
            return None
        return now + timedelta(minutes=NEXT_ESCALATION_MINUTES)

    @staticmethod
    def predicted_breach_at(
        deadlines: SLADeadlines,
        first_response_at: Optional[datetime],
        resolved_at: Optional[datetime]
    ) -> Optional[datetime]:
        """The next deadline the ticket can still miss."""
        if resolved_at is not None:
            return None
        if first_response_at is not None:
            return deadlines.resolution_deadline_at
        return deadlines.response_deadline_at

    @staticmethod
    def notification_type_for(status: str) -> Optional[str]:
        """Notification emitted when a tracking transitions into status."""
        return {
            SLAStatus.AT_RISK: NotificationType.SLA_AT_RISK,
            SLAStatus.BREACHED: NotificationType.SLA_BREACHED,
            SLAStatus.MET: NotificationType.SLA_MET,
        }.get(status)

    @staticmethod
    def status_label(status: str) -> str:
        return {
            SLAStatus.AT_RISK: "at risk",
            SLAStatus.BREACHED: "breached",
            SLAStatus.MET: "met",
            SLAStatus.ON_TRACK: "on track",
        }.get(status, status)

    @staticmethod
    def paused_minutes(paused_at: datetime, now: datetime) -> int:
        """Whole minutes elapsed since the pause began, never negative."""
        elapsed = (now - paused_at).total_seconds() / 60
        return max(0, math.floor(elapsed))

    @staticmethod
    def remaining_minutes(deadline: datetime, now: datetime) -> int:
        """Minutes until deadline, rounded, 0 once passed."""
        remaining = (deadline - now).total_seconds() / 60
        return max(0, round(remaining))

    @staticmethod
    def risk_score(remaining_minutes: int, budget_minutes: int) -> int:
        """
        Urgency score in [0, 100], higher means closer to breach.

        Scales remaining time inversely against the budget (normally the
        policy's resolution minutes).
        """
        if budget_minutes <= 0:
            return 100
        score = round(100 * (1 - remaining_minutes / budget_minutes))
        return max(0, min(100, score))
