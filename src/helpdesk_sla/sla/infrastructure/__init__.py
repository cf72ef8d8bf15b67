"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA tracking:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and collaborator sinks
- External: Slack mirror, engine runner and scheduler
"""

from helpdesk_sla.sla.infrastructure.models import (
    BusinessCalendarModel,
    SlaPolicyModel,
    UserModel,
    TicketModel,
    TicketCommentModel,
    TicketActivityModel,
    TicketSlaTrackingModel,
    NotificationModel,
    AuditLogModel,
)
from helpdesk_sla.sla.infrastructure.repositories import (
    SQLAlchemyPolicyRepository,
    SQLAlchemyCalendarRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyTrackingRepository,
    SQLAlchemyNotificationSink,
    SQLAlchemyAuditSink,
    SQLAlchemyTicketActivityLog,
)
from helpdesk_sla.sla.infrastructure.external import (
    CircuitBreaker,
    SlackClient,
    SlackMirrorNotificationSink,
    EngineRunner,
    SLAScheduler,
)

__all__ = [
    "BusinessCalendarModel",
    "SlaPolicyModel",
    "UserModel",
    "TicketModel",
    "TicketCommentModel",
    "TicketActivityModel",
    "TicketSlaTrackingModel",
    "NotificationModel",
    "AuditLogModel",
    "SQLAlchemyPolicyRepository",
    "SQLAlchemyCalendarRepository",
    "SQLAlchemyTicketRepository",
    "SQLAlchemyTrackingRepository",
    "SQLAlchemyNotificationSink",
    "SQLAlchemyAuditSink",
    "SQLAlchemyTicketActivityLog",
    "CircuitBreaker",
    "SlackClient",
    "SlackMirrorNotificationSink",
    "EngineRunner",
    "SLAScheduler",
]
