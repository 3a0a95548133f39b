"""
SLA Domain Layer
================

Domain layer for the SLA engine.

Contains:
- Entities: Core business objects (TicketSnapshot, SLAPolicy, SLATimer, SLABreach, SLAEscalation)
- Value Objects: Immutable objects defined by attributes (BusinessHours, TimerComputation)
- Domain Services: Stateless business logic (BusinessCalendar, SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk_sla.sla.domain.calendar import (
    BusinessCalendar,
    BusinessHours,
    DayWindow,
    parse_holidays,
    is_working_instant,
    working_minutes_between,
    advance_working_time,
)
from helpdesk_sla.sla.domain.entities import (
    TicketSnapshot,
    SLAPolicy,
    SLATimer,
    SLABreach,
    SLAEscalation,
    TimerView,
)
from helpdesk_sla.sla.domain.value_objects import SLACalculator, TimerComputation

__all__ = [
    # Calendar
    "BusinessCalendar",
    "BusinessHours",
    "DayWindow",
    "parse_holidays",
    "is_working_instant",
    "working_minutes_between",
    "advance_working_time",
    # Entities
    "TicketSnapshot",
    "SLAPolicy",
    "SLATimer",
    "SLABreach",
    "SLAEscalation",
    "TimerView",
    # Value Objects & Services
    "SLACalculator",
    "TimerComputation",
]
