"""
SLA Application Layer
======================

Application layer for the SLA engine.

Contains:
- Interfaces: Repository, unit-of-work and dispatcher abstractions
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk_sla.sla.application.interfaces import (
    ITicketStore,
    ISLAPolicyRepository,
    ISLATimerRepository,
    ISLABreachRepository,
    ISLAEscalationRepository,
    ISLAUnitOfWork,
    INotificationDispatcher,
    IWebhookDispatcher,
)
from helpdesk_sla.sla.application.services import (
    PolicyResolver,
    EscalationTrigger,
    TimerEngine,
    SweepReport,
    TimerOutcome,
    SLAPolicyService,
    SLAReportingService,
    MANUAL_PAUSE_REASON,
    format_minutes,
)

__all__ = [
    # Interfaces
    "ITicketStore",
    "ISLAPolicyRepository",
    "ISLATimerRepository",
    "ISLABreachRepository",
    "ISLAEscalationRepository",
    "ISLAUnitOfWork",
    "INotificationDispatcher",
    "IWebhookDispatcher",
    # Services
    "PolicyResolver",
    "EscalationTrigger",
    "TimerEngine",
    "SweepReport",
    "TimerOutcome",
    "SLAPolicyService",
    "SLAReportingService",
    "MANUAL_PAUSE_REASON",
    "format_minutes",
]
