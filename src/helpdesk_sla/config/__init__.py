"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Engine ==========
    sla_engine_autorun_enabled: bool = Field(
        default=True,
        description="Run the SLA engine on a fixed interval"
    )
    sla_engine_interval_seconds: int = Field(
        default=60,
        description="Seconds between automatic SLA engine passes",
        ge=1
    )
    sla_prediction_default_window_hours: int = Field(
        default=24,
        description="Default lookahead window for breach predictions",
        ge=1,
        le=168
    )
    sla_prediction_limit: int = Field(
        default=200,
        description="Maximum rows returned by breach predictions",
        ge=1
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL mirroring SLA transitions"
    )
    slack_channel: str = Field(
        default="#sla-alerts",
        description="Slack channel for SLA notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )
    slack_mirror_max_retries: int = Field(
        default=1,
        description="Attempts per transition mirrored from inside an engine pass",
        ge=1,
        le=5
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        level = v.upper()
        if level not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class TicketPriority(str):
    """Ticket priority levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class UserRole(str):
    """User roles."""
    ADMIN = "ADMIN"
    AGENT = "AGENT"
    REQUESTER = "REQUESTER"


class SLAStatus(str):
    """SLA compliance states of a tracking."""
    ON_TRACK = "ON_TRACK"
    AT_RISK = "AT_RISK"
    BREACHED = "BREACHED"
    MET = "MET"


class NotificationType(str):
    """Notification types emitted on SLA transitions."""
    SLA_AT_RISK = "SLA_AT_RISK"
    SLA_BREACHED = "SLA_BREACHED"
    SLA_MET = "SLA_MET"


class AuditAction(str):
    """Audit log actions written by the SLA module."""
    SLA_STATUS_CHANGED = "SLA_STATUS_CHANGED"
    SLA_ENGINE_RUN = "SLA_ENGINE_RUN"
    SLA_PAUSED = "SLA_PAUSED"
    SLA_RESUMED = "SLA_RESUMED"
    SLA_POLICY_CREATED = "SLA_POLICY_CREATED"
    SLA_POLICY_UPDATED = "SLA_POLICY_UPDATED"


class TicketActivityType(str):
    """Ticket activity entries written by the SLA module."""
    SLA_PAUSED = "SLA_PAUSED"
    SLA_RESUMED = "SLA_RESUMED"


class EngineTrigger(str):
    """What started an SLA engine pass."""
    MANUAL = "manual"
    AUTO = "auto"


# ========== Engine thresholds ==========

RESPONSE_AT_RISK_MINUTES = 10
RESOLUTION_AT_RISK_MINUTES = 20
NEXT_ESCALATION_MINUTES = 15

MAX_RESPONSE_TIME_MINUTES = 60 * 24 * 30
MAX_RESOLUTION_TIME_MINUTES = 60 * 24 * 60


# ========== Lists for validation ==========

# Tickets eligible for default policy auto-assignment
OPEN_TICKET_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS, TicketStatus.PENDING
]
# Tickets recomputed on every engine pass
TRACKED_TICKET_STATUSES = OPEN_TICKET_STATUSES + [
    TicketStatus.RESOLVED, TicketStatus.CLOSED
]
PREDICTABLE_SLA_STATUSES = [SLAStatus.ON_TRACK, SLAStatus.AT_RISK]
VALID_USER_ROLES = [UserRole.ADMIN, UserRole.AGENT, UserRole.REQUESTER]
# Roles whose comments count as a first response
RESPONDER_ROLES = [UserRole.ADMIN, UserRole.AGENT]
