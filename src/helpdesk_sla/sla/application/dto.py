"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

import dataclasses
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from helpdesk_sla.core import CalendarComputationError
from helpdesk_sla.sla.domain import (
    BusinessHours, TicketSnapshot, SLAPolicy, SLABreach, SLAEscalation, TimerView
)
from helpdesk_sla.sla.domain.calendar import load_timezone


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "urgent"]
TicketStatusStr = Literal[
    "open", "in_progress", "pending", "waiting", "on_hold", "resolved", "closed", "reopened"
]
SLAMetricStr = Literal["response", "resolution"]
TimerStatusStr = Literal["running", "paused", "completed", "cancelled"]
RiskLevelStr = Literal["none", "level1", "level2", "breached"]
TimerActionStr = Literal["pause", "resume", "stop"]


# ========== Ticket Event DTOs ==========

class TicketSnapshotDTO(BaseModel):
    """Ticket fields the SLA engine needs."""
    id: str = Field(..., min_length=1, description="Ticket ID")
    priority: PriorityStr = Field(..., description="Ticket priority")
    status: TicketStatusStr = Field(default="open", description="Ticket status")
    created_at: datetime = Field(..., description="Ticket creation timestamp")
    department_id: Optional[str] = Field(None, description="Owning department")
    category_id: Optional[str] = Field(None, description="Ticket category")
    assignee_id: Optional[str] = Field(None, description="Assigned agent")
    subject: Optional[str] = Field(None, description="Ticket subject")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    def to_domain(self) -> TicketSnapshot:
        return TicketSnapshot(**self.model_dump())


class TicketEventRequest(BaseModel):
    """Ticket created / assigned event."""
    ticket: TicketSnapshotDTO
    at: Optional[datetime] = Field(None, description="Event time (defaults to now)")


class FirstResponseRequest(BaseModel):
    """First agent response on a ticket."""
    ticket_id: str = Field(..., min_length=1)
    at: Optional[datetime] = Field(None, description="Response time (defaults to now)")


class StatusChangedRequest(BaseModel):
    """Ticket status transition."""
    ticket: TicketSnapshotDTO
    old_status: TicketStatusStr
    new_status: TicketStatusStr
    at: Optional[datetime] = Field(None, description="Transition time (defaults to now)")


class TicketDeletedRequest(BaseModel):
    """Ticket removed from the system."""
    ticket_id: str = Field(..., min_length=1)
    at: Optional[datetime] = None


class TimerActionRequest(BaseModel):
    """Manual timer control."""
    action: TimerActionStr
    metric: Optional[SLAMetricStr] = Field(None, description="Only for stop: limit to one metric")
    reason: Optional[str] = Field(None, max_length=255, description="Only for pause")
    at: Optional[datetime] = None


class SweepRequest(BaseModel):
    """Manual sweep trigger."""
    now: Optional[datetime] = Field(None, description="Evaluation instant (defaults to now)")


class TicketEventResponse(BaseModel):
    """Outcome of a lifecycle hook."""
    ticket_id: str
    event: str
    timers_affected: int = 0
    timer_ids: List[str] = Field(default_factory=list)


# ========== Policy DTOs ==========

class PolicyTargetsDTO(BaseModel):
    """Target minutes per priority; omitted priorities get no timer."""
    low: Optional[int] = Field(None, gt=0)
    medium: Optional[int] = Field(None, gt=0)
    high: Optional[int] = Field(None, gt=0)
    urgent: Optional[int] = Field(None, gt=0)

    def to_dict(self) -> Dict[str, int]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


def _check_business_hours(v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if v is None:
        return v
    try:
        BusinessHours.parse(v)
    except CalendarComputationError as e:
        raise ValueError(e.message) from e
    return v


def _check_timezone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        load_timezone(v)
    except CalendarComputationError as e:
        raise ValueError(e.message) from e
    return v


class PolicyCreateDTO(BaseModel):
    """Request model for creating an SLA policy."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    is_default: bool = False
    is_active: bool = True
    priority: int = Field(default=0, description="Precedence among scoped policies")

    response_targets: PolicyTargetsDTO = Field(default_factory=PolicyTargetsDTO)
    resolution_targets: PolicyTargetsDTO = Field(default_factory=PolicyTargetsDTO)

    use_business_hours: bool = True
    business_hours: Optional[Dict[str, Any]] = Field(
        None,
        description='Day name -> {"start": "09:00", "end": "18:00"} or null; defaults to Mon-Fri 09-18'
    )
    timezone: str = Field(default="UTC", description="IANA timezone name")
    holidays: List[date] = Field(default_factory=list)

    escalation_level1: int = Field(default=80, ge=0, le=100)
    escalation_level2: int = Field(default=95, ge=0, le=100)

    pause_on_waiting: bool = True
    pause_on_hold: bool = True
    pause_off_hours: bool = True

    department_ids: List[str] = Field(default_factory=list)
    category_ids: List[str] = Field(default_factory=list)

    @field_validator("business_hours")
    @classmethod
    def validate_business_hours(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        return _check_business_hours(v)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _check_timezone(v)

    @model_validator(mode="after")
    def validate_levels(self) -> "PolicyCreateDTO":
        if self.escalation_level1 > self.escalation_level2:
            raise ValueError("escalation_level1 cannot exceed escalation_level2")
        return self

    def to_domain(self, policy_id: Optional[str] = None) -> SLAPolicy:
        """Build the domain policy (domain validation runs again here)."""
        return SLAPolicy(
            id=policy_id or str(uuid4()),
            name=self.name,
            description=self.description,
            is_default=self.is_default,
            is_active=self.is_active,
            priority=self.priority,
            response_targets=self.response_targets.to_dict(),
            resolution_targets=self.resolution_targets.to_dict(),
            use_business_hours=self.use_business_hours,
            business_hours=BusinessHours.parse(self.business_hours),
            timezone=self.timezone,
            holidays=tuple(sorted(set(self.holidays))),
            escalation_level1=self.escalation_level1,
            escalation_level2=self.escalation_level2,
            pause_on_waiting=self.pause_on_waiting,
            pause_on_hold=self.pause_on_hold,
            pause_off_hours=self.pause_off_hours,
            department_ids=tuple(self.department_ids),
            category_ids=tuple(self.category_ids),
        )


class PolicyUpdateDTO(BaseModel):
    """Partial update of an SLA policy; only fields sent are changed."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None
    response_targets: Optional[PolicyTargetsDTO] = None
    resolution_targets: Optional[PolicyTargetsDTO] = None
    use_business_hours: Optional[bool] = None
    business_hours: Optional[Dict[str, Any]] = None
    timezone: Optional[str] = None
    holidays: Optional[List[date]] = None
    escalation_level1: Optional[int] = Field(None, ge=0, le=100)
    escalation_level2: Optional[int] = Field(None, ge=0, le=100)
    pause_on_waiting: Optional[bool] = None
    pause_on_hold: Optional[bool] = None
    pause_off_hours: Optional[bool] = None
    department_ids: Optional[List[str]] = None
    category_ids: Optional[List[str]] = None

    @field_validator("business_hours")
    @classmethod
    def validate_business_hours(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        return _check_business_hours(v)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _check_timezone(v)

    def to_changes(self) -> Dict[str, Any]:
        """Domain field changes for SLAPolicyService.update_policy."""
        sent = self.model_fields_set
        changes: Dict[str, Any] = {}

        for name in sent:
            value = getattr(self, name)
            if name == "description":
                changes[name] = value
            elif name == "business_hours":
                changes[name] = BusinessHours.parse(value)
            elif value is None:
                continue
            elif name in ("response_targets", "resolution_targets"):
                changes[name] = value.to_dict()
            elif name == "holidays":
                changes[name] = tuple(sorted(set(value)))
            elif name in ("department_ids", "category_ids"):
                changes[name] = tuple(value)
            else:
                changes[name] = value

        return changes


class PolicyResponse(BaseModel):
    """Response model for an SLA policy."""
    id: str
    name: str
    description: Optional[str] = None
    is_default: bool
    is_active: bool
    priority: int
    response_targets: Dict[str, int]
    resolution_targets: Dict[str, int]
    use_business_hours: bool
    business_hours: Dict[str, Optional[Dict[str, str]]]
    timezone: str
    holidays: List[date]
    escalation_level1: int
    escalation_level2: int
    pause_on_waiting: bool
    pause_on_hold: bool
    pause_off_hours: bool
    department_ids: List[str]
    category_ids: List[str]
    active_timers: Optional[int] = Field(None, description="Running or paused timers using the policy")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, policy: SLAPolicy, active_timers: Optional[int] = None) -> "PolicyResponse":
        return cls(
            id=policy.id,
            name=policy.name,
            description=policy.description,
            is_default=policy.is_default,
            is_active=policy.is_active,
            priority=policy.priority,
            response_targets=dict(policy.response_targets),
            resolution_targets=dict(policy.resolution_targets),
            use_business_hours=policy.use_business_hours,
            business_hours=policy.business_hours.to_dict(),
            timezone=policy.timezone,
            holidays=list(policy.holidays),
            escalation_level1=policy.escalation_level1,
            escalation_level2=policy.escalation_level2,
            pause_on_waiting=policy.pause_on_waiting,
            pause_on_hold=policy.pause_on_hold,
            pause_off_hours=policy.pause_off_hours,
            department_ids=list(policy.department_ids),
            category_ids=list(policy.category_ids),
            active_timers=active_timers,
            created_at=policy.created_at,
            updated_at=policy.updated_at,
        )


class PolicyListResponse(BaseModel):
    policies: List[PolicyResponse]
    total_count: int


# ========== Timer / Breach DTOs ==========

class TimerViewResponse(BaseModel):
    """Response model for one SLA clock."""
    timer_id: str
    ticket_id: str
    policy_id: str
    metric: SLAMetricStr
    status: TimerStatusStr
    target_minutes: int
    elapsed_minutes: float
    remaining_minutes: float
    percentage_elapsed: float
    risk_level: RiskLevelStr
    is_breached: bool
    started_at: datetime
    deadline: Optional[datetime] = Field(None, description="Projected breach time while running")
    pause_reason: Optional[str] = None
    off_hours: bool = Field(False, description="Now is outside the policy's business hours")
    completed_at: Optional[datetime] = None
    breached_at: Optional[datetime] = None

    @classmethod
    def from_view(cls, view: TimerView) -> "TimerViewResponse":
        data = dataclasses.asdict(view)
        data["elapsed_minutes"] = round(view.elapsed_minutes, 2)
        data["remaining_minutes"] = round(view.remaining_minutes, 2)
        data["percentage_elapsed"] = round(view.percentage_elapsed, 2)
        return cls(**data, is_breached=view.is_breached)


class TicketTimerStatusResponse(BaseModel):
    """Both SLA clocks of a ticket."""
    ticket_id: str
    response: Optional[TimerViewResponse] = None
    resolution: Optional[TimerViewResponse] = None


class TimerListResponse(BaseModel):
    timers: List[TimerViewResponse]
    total_count: int


class BreachResponse(BaseModel):
    """Response model for an SLA breach record."""
    id: str
    timer_id: str
    ticket_id: str
    policy_id: str
    metric: SLAMetricStr
    breached_at: datetime
    target_minutes: int
    actual_minutes: float
    overshoot_minutes: float
    priority: Optional[str] = None
    ticket_status: Optional[str] = None
    department_id: Optional[str] = None
    assignee_id: Optional[str] = None

    @classmethod
    def from_domain(cls, breach: SLABreach) -> "BreachResponse":
        data = dataclasses.asdict(breach)
        data["actual_minutes"] = round(breach.actual_minutes, 2)
        return cls(**data, overshoot_minutes=round(breach.overshoot_minutes, 2))


class BreachListResponse(BaseModel):
    breaches: List[BreachResponse]
    total_count: int


class EscalationResponse(BaseModel):
    id: str
    timer_id: str
    ticket_id: str
    metric: SLAMetricStr
    level: RiskLevelStr
    escalated_at: datetime
    remaining_minutes: float
    notified: bool
    reason: Optional[str] = None

    @classmethod
    def from_domain(cls, escalation: SLAEscalation) -> "EscalationResponse":
        return cls(**dataclasses.asdict(escalation))


# ========== Sweep / Stats DTOs ==========

class SweepReportResponse(BaseModel):
    """Summary of one sweep run."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    timers_checked: int
    recomputed: int
    cancelled: int
    breaches_created: int
    escalations_created: int
    notifications_sent: int
    failures: List[Dict[str, str]] = Field(default_factory=list)


class SLAStatsResponse(BaseModel):
    """Compliance statistics."""
    generated_at: datetime
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    policies_total: int
    policies_active: int
    timers_by_status: Dict[str, int]
    timers_at_risk: int
    timers_breached_open: int
    completed_timers: int
    compliance_rate: Optional[float] = Field(None, description="Percent of completed timers that met target")
    average_elapsed_minutes: Dict[str, Optional[float]]
    breaches_total: int
    breaches_by_metric: Dict[str, int]
    escalations_by_level: Dict[str, int]
