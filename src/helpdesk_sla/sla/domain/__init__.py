"""
SLA Domain Layer
================

Domain layer for the SLA tracking module.

Contains:
- Entities: Core business objects (SlaPolicy, Ticket, TicketSlaTracking, ...)
- Value Objects: Immutable objects and stateless rules (SLADeadlines, SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk_sla.sla.domain.value_objects import SLACalculator, SLADeadlines
from helpdesk_sla.sla.domain.entities import (
    SlaPolicy,
    BusinessCalendar,
    UserSummary,
    TicketComment,
    TicketSummary,
    Ticket,
    TicketSlaTracking,
    TrackingView,
    TrackingPage,
    EngineRunSummary,
    BreachPrediction,
    BreachPredictionReport,
    NotificationBroadcast,
    AuditEntry,
)

__all__ = [
    # Entities
    "SlaPolicy",
    "BusinessCalendar",
    "UserSummary",
    "TicketComment",
    "TicketSummary",
    "Ticket",
    "TicketSlaTracking",
    "TrackingView",
    "TrackingPage",
    "EngineRunSummary",
    "BreachPrediction",
    "BreachPredictionReport",
    "NotificationBroadcast",
    "AuditEntry",
    # Value Objects & Services
    "SLACalculator",
    "SLADeadlines",
]
