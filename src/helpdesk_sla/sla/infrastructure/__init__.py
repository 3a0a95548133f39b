"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and unit of work
- External: Dispatchers, policy file watcher, scheduler
"""

from helpdesk_sla.sla.infrastructure.models import (
    SLAPolicyModel,
    SLATimerModel,
    SLABreachModel,
    SLAEscalationModel,
    TicketSnapshotModel,
)
from helpdesk_sla.sla.infrastructure.repositories import (
    SQLAlchemyTicketStore,
    SQLAlchemyPolicyRepository,
    SQLAlchemyTimerRepository,
    SQLAlchemyBreachRepository,
    SQLAlchemyEscalationRepository,
    SQLAlchemySLAUnitOfWork,
    YAMLPolicyLoader,
)
from helpdesk_sla.sla.infrastructure.external import (
    CircuitBreaker,
    HttpNotificationDispatcher,
    HttpWebhookDispatcher,
    PolicyFileWatcher,
    SLAScheduler,
)

__all__ = [
    "SLAPolicyModel",
    "SLATimerModel",
    "SLABreachModel",
    "SLAEscalationModel",
    "TicketSnapshotModel",
    "SQLAlchemyTicketStore",
    "SQLAlchemyPolicyRepository",
    "SQLAlchemyTimerRepository",
    "SQLAlchemyBreachRepository",
    "SQLAlchemyEscalationRepository",
    "SQLAlchemySLAUnitOfWork",
    "YAMLPolicyLoader",
    "CircuitBreaker",
    "HttpNotificationDispatcher",
    "HttpWebhookDispatcher",
    "PolicyFileWatcher",
    "SLAScheduler",
]
