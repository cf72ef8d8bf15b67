"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Response models read straight from the
domain dataclasses (from_attributes).
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from helpdesk_sla.config import MAX_RESPONSE_TIME_MINUTES, MAX_RESOLUTION_TIME_MINUTES


# ========== Type Aliases for Literals ==========
SLAStatusStr = Literal["ON_TRACK", "AT_RISK", "BREACHED", "MET"]
EngineTriggerStr = Literal["manual", "auto"]

NON_NULLABLE_POLICY_FIELDS = (
    "name", "response_time_minutes", "resolution_time_minutes", "business_hours_only", "is_active"
)


# ========== Request DTOs ==========

class SlaPolicyCreateDTO(BaseModel):
    """DTO for creating an SLA policy."""
    name: str = Field(..., min_length=1, max_length=200, description="Policy name")
    description: Optional[str] = Field(None, description="Free-text description")
    response_time_minutes: int = Field(
        ..., ge=1, le=MAX_RESPONSE_TIME_MINUTES,
        description="Minutes allowed until first agent response"
    )
    resolution_time_minutes: int = Field(
        ..., ge=1, le=MAX_RESOLUTION_TIME_MINUTES,
        description="Minutes allowed until resolution"
    )
    business_hours_only: bool = Field(
        default=True,
        description="Advisory flag; deadlines use elapsed wall-clock minutes"
    )
    is_active: bool = Field(default=True, description="Whether the engine applies this policy")
    calendar_id: Optional[str] = Field(None, description="Business-hours calendar reference")


class SlaPolicyUpdateDTO(BaseModel):
    """DTO for a partial SLA policy update. Only fields sent are changed."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    response_time_minutes: Optional[int] = Field(None, ge=1, le=MAX_RESPONSE_TIME_MINUTES)
    resolution_time_minutes: Optional[int] = Field(None, ge=1, le=MAX_RESOLUTION_TIME_MINUTES)
    business_hours_only: Optional[bool] = None
    is_active: Optional[bool] = None
    calendar_id: Optional[str] = None

    @model_validator(mode="after")
    def reject_null_required_fields(self) -> "SlaPolicyUpdateDTO":
        # description and calendar_id may be cleared; the rest map to NOT NULL columns
        nulled = [
            name for name in NON_NULLABLE_POLICY_FIELDS
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if nulled:
            raise ValueError(f"{', '.join(nulled)} cannot be null")
        return self


class BusinessCalendarCreateDTO(BaseModel):
    """DTO for creating a business-hours calendar."""
    name: str = Field(..., min_length=1, max_length=200)
    timezone: str = Field(default="America/Lima", description="IANA timezone name")
    open_weekdays: List[int] = Field(
        default_factory=lambda: [1, 2, 3, 4, 5],
        description="ISO weekdays (1=Monday .. 7=Sunday)"
    )
    start_hour: int = Field(default=9, ge=0, le=23)
    end_hour: int = Field(default=18, ge=1, le=24)
    holidays: List[date] = Field(default_factory=list)
    is_default: bool = False

    @field_validator("open_weekdays")
    @classmethod
    def validate_open_weekdays(cls, v: List[int]) -> List[int]:
        if any(day < 1 or day > 7 for day in v):
            raise ValueError("open_weekdays must be ISO weekdays between 1 and 7")
        return sorted(set(v))

    @model_validator(mode="after")
    def validate_hours(self) -> "BusinessCalendarCreateDTO":
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be after start_hour")
        return self


class PauseToggleDTO(BaseModel):
    """Body of pause and resume requests."""
    reason: Optional[str] = Field(None, max_length=300)


# ========== Response DTOs ==========

class SlaPolicyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    response_time_minutes: int
    resolution_time_minutes: int
    business_hours_only: bool
    is_active: bool
    calendar_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BusinessCalendarResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    timezone: str
    open_weekdays: List[int]
    start_hour: int
    end_hour: int
    holidays: List[str]
    is_default: bool
    created_at: Optional[datetime] = None


class UserSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str
    email: str


class TicketSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    title: str
    status: str
    priority: str
    requester: Optional[UserSummaryResponse] = None
    assignee: Optional[UserSummaryResponse] = None


class TrackingResponse(BaseModel):
    """Response model for a single tracking row."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    ticket_id: str
    sla_policy_id: str
    status: SLAStatusStr
    response_deadline_at: datetime
    resolution_deadline_at: datetime
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    breached_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    paused_accumulated_minutes: int = 0
    next_escalation_at: Optional[datetime] = None
    predicted_breach_at: Optional[datetime] = None


class TrackingListItemResponse(TrackingResponse):
    ticket: TicketSummaryResponse
    sla_policy: Optional[SlaPolicyResponse] = None


class TrackingPageResponse(BaseModel):
    data: List[TrackingListItemResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class BreachPredictionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tracking_id: str
    ticket: TicketSummaryResponse
    status: SLAStatusStr
    resolution_deadline_at: datetime
    predicted_breach_at: datetime
    risk_score: int = Field(..., ge=0, le=100, description="Higher means closer to breach")
    remaining_minutes: int


class BreachPredictionReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    generated_at: datetime
    window_hours: int
    data: List[BreachPredictionResponse]


class EngineRunSummaryResponse(BaseModel):
    """Response model for an SLA engine pass."""
    model_config = ConfigDict(from_attributes=True)

    trigger: EngineTriggerStr
    ran_at: datetime
    default_policy_id: Optional[str] = None
    auto_assigned_policy_count: int
    processed_tickets: int = Field(
        ...,
        description="Tracked tickets with a policy, including those skipped for an inactive policy"
    )
    created_tracking_count: int
    updated_tracking_count: int
    changed_status_count: int
    notifications_created: int
    failed_ticket_count: int = 0
