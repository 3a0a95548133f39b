"""
SLA Value Objects
==================

Immutable value objects and stateless calculations for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from helpdesk_sla.config import RiskLevel, TimerStatus, RISK_LEVELS, ESCALATION_LEVELS
from helpdesk_sla.sla.domain.calendar import BusinessCalendar, ensure_utc
from helpdesk_sla.sla.domain.entities import SLAPolicy, SLATimer, TimerView


@dataclass(frozen=True)
class TimerComputation:
    """Result of recomputing a timer at a given instant."""

    elapsed_minutes: float
    remaining_minutes: float
    risk_level: str
    computed_at: datetime

    @property
    def is_breached(self) -> bool:
        return self.risk_level == RiskLevel.BREACHED


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all timer arithmetic in one place. Every
    result depends only on stored timer inputs, the calendar and ``now``,
    never on previously computed values, so recomputes are idempotent.
    """

    @staticmethod
    def elapsed_working_minutes(
        timer: SLATimer,
        calendar: BusinessCalendar,
        now: datetime
    ) -> float:
        """
        Working minutes the timer has consumed.

        Paused intervals are excluded by integrating the calendar over
        them, so off-hours minutes inside a pause are not subtracted twice.
        """
        end = timer.ended_at or ensure_utc(now)
        raw = calendar.working_minutes_between(timer.started_at, end)

        paused = timer.accumulated_paused_minutes
        if timer.paused_at is not None:
            paused += calendar.working_minutes_between(timer.paused_at, end)

        return max(0.0, raw - paused)

    @staticmethod
    def classify_risk(
        elapsed_minutes: float,
        target_minutes: int,
        level1_percent: int,
        level2_percent: int
    ) -> str:
        """
        Classify how close a timer is to its target.

        Returns:
            breached when nothing remains, else level2/level1 once the
            elapsed share reaches the configured percentages, else none
        """
        if target_minutes - elapsed_minutes <= 0:
            return RiskLevel.BREACHED
        if elapsed_minutes >= target_minutes * level2_percent / 100:
            return RiskLevel.LEVEL2
        if elapsed_minutes >= target_minutes * level1_percent / 100:
            return RiskLevel.LEVEL1
        return RiskLevel.NONE

    @staticmethod
    def compute(
        timer: SLATimer,
        policy: SLAPolicy,
        now: datetime,
        calendar: Optional[BusinessCalendar] = None
    ) -> TimerComputation:
        """Recompute elapsed/remaining/risk for a timer at ``now``."""
        calendar = calendar or timer.clock_calendar(policy)
        elapsed = SLACalculator.elapsed_working_minutes(timer, calendar, now)
        return TimerComputation(
            elapsed_minutes=elapsed,
            remaining_minutes=timer.target_minutes - elapsed,
            risk_level=SLACalculator.classify_risk(
                elapsed, timer.target_minutes,
                policy.escalation_level1, policy.escalation_level2
            ),
            computed_at=ensure_utc(now)
        )

    @staticmethod
    def apply(timer: SLATimer, computation: TimerComputation) -> bool:
        """
        Copy a computation onto the timer.

        Returns:
            True if this computation is the timer's first breach
        """
        timer.elapsed_working_minutes = computation.elapsed_minutes
        timer.remaining_minutes = computation.remaining_minutes
        timer.risk_level = computation.risk_level
        timer.last_computed_at = computation.computed_at

        if computation.is_breached and timer.breached_at is None:
            timer.breached_at = computation.computed_at
            return True
        return False

    @staticmethod
    def percentage_elapsed(elapsed_minutes: float, target_minutes: int) -> float:
        if target_minutes <= 0:
            return 100.0
        return min(100.0, elapsed_minutes / target_minutes * 100)

    @staticmethod
    def risk_rank(level: str) -> int:
        return RISK_LEVELS.index(level)

    @staticmethod
    def crossed_levels(level: str) -> List[str]:
        """Escalation levels at or below ``level``, least severe first."""
        rank = SLACalculator.risk_rank(level)
        return [lvl for lvl in ESCALATION_LEVELS if SLACalculator.risk_rank(lvl) <= rank]

    @staticmethod
    def project_deadline(
        timer: SLATimer,
        remaining_minutes: float,
        calendar: BusinessCalendar,
        now: datetime
    ) -> Optional[datetime]:
        """Wall-clock instant the target is reached if the clock keeps running."""
        if timer.status != TimerStatus.RUNNING:
            return None
        if remaining_minutes <= 0:
            return timer.breached_at
        return calendar.advance_working_time(now, remaining_minutes)

    @staticmethod
    def build_view(timer: SLATimer, policy: Optional[SLAPolicy], now: datetime) -> TimerView:
        """
        Display model for a timer.

        Terminal timers report their frozen values; active timers are
        computed on read without being persisted.
        """
        now = ensure_utc(now)

        if timer.is_terminal or policy is None:
            elapsed = timer.elapsed_working_minutes
            remaining = timer.remaining_minutes if timer.remaining_minutes is not None else timer.target_minutes - elapsed
            risk = timer.risk_level
            deadline = None
            off_hours = False
        else:
            calendar = timer.clock_calendar(policy)
            computation = SLACalculator.compute(timer, policy, now, calendar)
            elapsed = computation.elapsed_minutes
            remaining = computation.remaining_minutes
            risk = computation.risk_level
            deadline = SLACalculator.project_deadline(timer, remaining, calendar, now)
            off_hours = not calendar.is_working_instant(now)

        return TimerView(
            timer_id=timer.id,
            ticket_id=timer.ticket_id,
            policy_id=timer.policy_id,
            metric=timer.metric,
            status=timer.status,
            target_minutes=timer.target_minutes,
            elapsed_minutes=elapsed,
            remaining_minutes=remaining,
            percentage_elapsed=SLACalculator.percentage_elapsed(elapsed, timer.target_minutes),
            risk_level=risk,
            started_at=timer.started_at,
            deadline=deadline,
            pause_reason=timer.pause_reason,
            off_hours=off_hours,
            completed_at=timer.completed_at,
            breached_at=timer.breached_at
        )
