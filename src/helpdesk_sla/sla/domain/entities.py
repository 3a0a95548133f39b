"""
SLA Domain Entities
====================

Pure Python domain entities for the SLA engine.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

from helpdesk_sla.config import (
    SLAMetric, TimerStatus, RiskLevel, TicketStatus,
    VALID_PRIORITIES, VALID_METRICS, ACTIVE_TIMER_STATUSES,
    TERMINAL_STATUSES, WAITING_STATUSES
)
from helpdesk_sla.core import (
    CalendarComputationError, InvalidTimerTransitionException, ValidationException
)
from helpdesk_sla.sla.domain.calendar import BusinessCalendar, BusinessHours, load_timezone


@dataclass
class TicketSnapshot:
    """
    Read-only view of a ticket as supplied by the ticket-workflow layer.

    The SLA engine never owns ticket data; it keeps the latest snapshot
    to resolve policies and address notifications.
    """

    id: str
    priority: str
    status: str
    created_at: datetime
    department_id: Optional[str] = None
    category_id: Optional[str] = None
    assignee_id: Optional[str] = None
    subject: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class SLAPolicy:
    """
    Immutable SLA configuration shared by many timers.

    Targets are minutes per priority, one table per metric.
    """

    id: str
    name: str
    response_targets: Dict[str, int]
    resolution_targets: Dict[str, int]
    is_default: bool = False
    is_active: bool = True
    description: Optional[str] = None

    # Calendar
    use_business_hours: bool = True
    business_hours: BusinessHours = field(default_factory=BusinessHours.weekdays)
    timezone: str = "UTC"
    holidays: Tuple[date, ...] = ()

    # Escalation thresholds, percent of target
    escalation_level1: int = 80
    escalation_level2: int = 95

    # Pause conditions
    pause_on_waiting: bool = True
    pause_on_hold: bool = True
    pause_off_hours: bool = True

    # Scope
    department_ids: Tuple[str, ...] = ()
    category_ids: Tuple[str, ...] = ()
    priority: int = 0

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Reject configurations the engine cannot compute with."""
        load_timezone(self.timezone)

        if self.use_business_hours and not self.business_hours.has_working_time:
            raise CalendarComputationError(
                "Business hours are enabled but no day has working time"
            )

        if not 0 <= self.escalation_level1 <= 100 or not 0 <= self.escalation_level2 <= 100:
            raise ValidationException("Escalation levels must be between 0 and 100")
        if self.escalation_level1 > self.escalation_level2:
            raise ValidationException("escalation_level1 cannot exceed escalation_level2")

        for metric, targets in (
            (SLAMetric.RESPONSE, self.response_targets),
            (SLAMetric.RESOLUTION, self.resolution_targets),
        ):
            for priority, minutes in targets.items():
                if priority not in VALID_PRIORITIES:
                    raise ValidationException(f"Unknown priority in {metric} targets: {priority}")
                if minutes is not None and minutes <= 0:
                    raise ValidationException(
                        f"{metric} target for {priority} must be a positive number of minutes"
                    )

    def target_minutes(self, priority: str, metric: str) -> Optional[int]:
        """Threshold for a priority/metric pair, or None when not configured."""
        if metric not in VALID_METRICS:
            raise ValidationException(f"Unknown SLA metric: {metric}")
        targets = self.response_targets if metric == SLAMetric.RESPONSE else self.resolution_targets
        return targets.get((priority or "").lower())

    @property
    def is_scoped(self) -> bool:
        return bool(self.department_ids or self.category_ids)

    def matches_scope(self, ticket: TicketSnapshot) -> bool:
        """True when the ticket's department or category is listed by this policy."""
        if ticket.department_id is not None and ticket.department_id in self.department_ids:
            return True
        if ticket.category_id is not None and ticket.category_id in self.category_ids:
            return True
        return False

    def pause_reason_for(self, status: str) -> Optional[str]:
        """Reason a ticket status pauses the clock, or None if it keeps running."""
        if self.pause_on_waiting and status in WAITING_STATUSES:
            return f"Status changed to {status}"
        if self.pause_on_hold and status == TicketStatus.ON_HOLD:
            return f"Status changed to {status}"
        return None

    @property
    def counts_business_time_only(self) -> bool:
        """Whether off-hours time is excluded from elapsed SLA time."""
        return self.use_business_hours and self.pause_off_hours

    def calendar(self) -> BusinessCalendar:
        """The policy's working calendar (24/7 when business hours are off)."""
        return BusinessCalendar.for_policy(self)

    def clock_calendar(self) -> BusinessCalendar:
        """Calendar SLA clocks integrate against."""
        if self.counts_business_time_only:
            return self.calendar()
        return BusinessCalendar.always_open()


@dataclass
class SLATimer:
    """
    Per-ticket, per-metric SLA clock.

    Stored inputs (started_at, accumulated_paused_minutes, paused_at) fully
    determine elapsed time; the derived fields are caches refreshed by
    every recompute.

    ``calendar_snapshot`` freezes the working calendar the clock was started
    with, so later policy edits never re-time a running timer.
    """

    id: str
    ticket_id: str
    policy_id: str
    metric: str
    started_at: datetime
    target_minutes: int
    status: str = TimerStatus.RUNNING

    # Pause accounting
    accumulated_paused_minutes: float = 0.0
    paused_at: Optional[datetime] = None
    pause_reason: Optional[str] = None

    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    # Derived
    elapsed_working_minutes: float = 0.0
    remaining_minutes: Optional[float] = None
    risk_level: str = RiskLevel.NONE
    breached_at: Optional[datetime] = None
    last_computed_at: Optional[datetime] = None

    initial_priority: Optional[str] = None
    calendar_snapshot: Optional[Dict[str, Any]] = None
    version: int = 0

    def __post_init__(self):
        if self.remaining_minutes is None:
            self.remaining_minutes = float(self.target_minutes)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_TIMER_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active

    @property
    def is_paused(self) -> bool:
        return self.status == TimerStatus.PAUSED

    @property
    def ended_at(self) -> Optional[datetime]:
        return self.completed_at or self.cancelled_at

    def clock_calendar(self, policy: Optional["SLAPolicy"] = None) -> BusinessCalendar:
        """Calendar this timer integrates against."""
        if self.calendar_snapshot is not None:
            return BusinessCalendar.from_snapshot(self.calendar_snapshot)
        if policy is not None:
            return policy.clock_calendar()
        return BusinessCalendar.always_open()

    def _require(self, target: str, *allowed: str) -> None:
        if self.status not in allowed:
            raise InvalidTimerTransitionException(self.id, self.status, target)

    def _close_open_pause(self, at: datetime, calendar: BusinessCalendar) -> None:
        if self.paused_at is not None:
            self.accumulated_paused_minutes += calendar.working_minutes_between(self.paused_at, at)
            self.paused_at = None
            self.pause_reason = None

    def pause(self, at: datetime, reason: str) -> None:
        self._require(TimerStatus.PAUSED, TimerStatus.RUNNING)
        self.status = TimerStatus.PAUSED
        self.paused_at = at
        self.pause_reason = reason

    def resume(self, at: datetime, calendar: BusinessCalendar) -> None:
        self._require(TimerStatus.RUNNING, TimerStatus.PAUSED)
        self._close_open_pause(at, calendar)
        self.status = TimerStatus.RUNNING

    def complete(self, at: datetime, calendar: BusinessCalendar) -> None:
        self._require(TimerStatus.COMPLETED, TimerStatus.RUNNING, TimerStatus.PAUSED)
        self._close_open_pause(at, calendar)
        self.status = TimerStatus.COMPLETED
        self.completed_at = at

    def cancel(self, at: datetime, calendar: BusinessCalendar) -> None:
        self._require(TimerStatus.CANCELLED, TimerStatus.RUNNING, TimerStatus.PAUSED)
        self._close_open_pause(at, calendar)
        self.status = TimerStatus.CANCELLED
        self.cancelled_at = at


@dataclass(frozen=True)
class SLABreach:
    """Immutable record of a timer first reaching zero remaining time."""

    id: Optional[str]
    timer_id: str
    ticket_id: str
    policy_id: str
    metric: str
    breached_at: datetime
    target_minutes: int
    actual_minutes: float
    priority: Optional[str] = None
    ticket_status: Optional[str] = None
    department_id: Optional[str] = None
    assignee_id: Optional[str] = None

    @property
    def overshoot_minutes(self) -> float:
        return max(0.0, self.actual_minutes - self.target_minutes)


@dataclass(frozen=True)
class SLAEscalation:
    """Immutable record of an escalation level firing for a timer."""

    id: Optional[str]
    timer_id: str
    ticket_id: str
    metric: str
    level: str
    escalated_at: datetime
    remaining_minutes: float
    notified: bool = False
    reason: Optional[str] = None


@dataclass
class TimerView:
    """Display model of one SLA clock."""

    timer_id: str
    ticket_id: str
    policy_id: str
    metric: str
    status: str
    target_minutes: int
    elapsed_minutes: float
    remaining_minutes: float
    percentage_elapsed: float
    risk_level: str
    started_at: datetime
    deadline: Optional[datetime] = None
    pause_reason: Optional[str] = None
    off_hours: bool = False
    completed_at: Optional[datetime] = None
    breached_at: Optional[datetime] = None

    @property
    def is_breached(self) -> bool:
        return self.risk_level == RiskLevel.BREACHED

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "timer_id": self.timer_id,
            "ticket_id": self.ticket_id,
            "policy_id": self.policy_id,
            "metric": self.metric,
            "status": self.status,
            "target_minutes": self.target_minutes,
            "elapsed_minutes": round(self.elapsed_minutes, 2),
            "remaining_minutes": round(self.remaining_minutes, 2),
            "percentage_elapsed": round(self.percentage_elapsed, 2),
            "risk_level": self.risk_level,
            "is_breached": self.is_breached,
            "started_at": self.started_at.isoformat(),
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "pause_reason": self.pause_reason,
            "off_hours": self.off_hours,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "breached_at": self.breached_at.isoformat() if self.breached_at else None,
        }
