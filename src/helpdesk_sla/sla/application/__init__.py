"""
SLA Application Layer
======================

Use cases for SLA tracking: the engine pass, pause/resume, breach
prediction and policy administration.
"""

from helpdesk_sla.sla.application.services import (
    IPolicyRepository,
    ICalendarRepository,
    ITicketRepository,
    ITrackingRepository,
    INotificationSink,
    IAuditSink,
    ITicketActivityLog,
    SLAEngine,
    SLAPolicyService,
)
from helpdesk_sla.sla.application.dto import (
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

__all__ = [
    # Interfaces
    "IPolicyRepository",
    "ICalendarRepository",
    "ITicketRepository",
    "ITrackingRepository",
    "INotificationSink",
    "IAuditSink",
    "ITicketActivityLog",
    # Services
    "SLAEngine",
    "SLAPolicyService",
    # DTOs
    "SlaPolicyCreateDTO",
    "SlaPolicyUpdateDTO",
    "BusinessCalendarCreateDTO",
    "PauseToggleDTO",
    "SlaPolicyResponse",
    "BusinessCalendarResponse",
    "TrackingResponse",
    "TrackingListItemResponse",
    "TrackingPageResponse",
    "BreachPredictionReportResponse",
    "EngineRunSummaryResponse",
]
