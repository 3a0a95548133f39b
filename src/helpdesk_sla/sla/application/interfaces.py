"""
SLA Application Interfaces
===========================

Abstractions the application services depend on (Dependency Inversion).

Concrete implementations live in the infrastructure layer; tests may
substitute their own.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from helpdesk_sla.sla.domain import (
    TicketSnapshot, SLAPolicy, SLATimer, SLABreach, SLAEscalation
)


# ========== Repository Interfaces ==========

class ITicketStore(ABC):
    """Read model of tickets, kept current by the lifecycle hooks."""

    @abstractmethod
    async def get_ticket(self, ticket_id: str) -> Optional[TicketSnapshot]:
        """Get the latest snapshot of a ticket."""

    @abstractmethod
    async def get_tickets_by_status(self, statuses: Sequence[str]) -> List[TicketSnapshot]:
        """List tickets currently in any of the given statuses."""

    @abstractmethod
    async def save(self, ticket: TicketSnapshot) -> None:
        """Insert or replace a ticket snapshot."""


class ISLAPolicyRepository(ABC):
    """Interface for SLA policy data access."""

    @abstractmethod
    async def get(self, policy_id: str) -> Optional[SLAPolicy]:
        """Get policy by ID."""

    @abstractmethod
    async def get_by_name(self, name: str) -> Optional[SLAPolicy]:
        """Get policy by its unique name."""

    @abstractmethod
    async def list(self, active_only: bool = False) -> List[SLAPolicy]:
        """List policies, newest first."""

    @abstractmethod
    async def add(self, policy: SLAPolicy) -> SLAPolicy:
        """Create new policy."""

    @abstractmethod
    async def update(self, policy: SLAPolicy) -> SLAPolicy:
        """Replace an existing policy."""

    @abstractmethod
    async def delete(self, policy_id: str) -> None:
        """Delete a policy."""

    @abstractmethod
    async def clear_default(self, except_id: Optional[str] = None) -> int:
        """Unset is_default on every policy but ``except_id``."""


class ISLATimerRepository(ABC):
    """Interface for SLA timer data access."""

    @abstractmethod
    async def get(self, timer_id: str) -> Optional[SLATimer]:
        """Get timer by ID, bypassing any cached state."""

    @abstractmethod
    async def add(self, timer: SLATimer) -> SLATimer:
        """Create new timer."""

    @abstractmethod
    async def list_for_ticket(
        self,
        ticket_id: str,
        active_only: bool = False,
        metric: Optional[str] = None
    ) -> List[SLATimer]:
        """Timers of a ticket, most recently started first."""

    @abstractmethod
    async def list_active_ids(self) -> List[str]:
        """IDs of all running or paused timers."""

    @abstractmethod
    async def list(
        self,
        filters: Dict[str, Any],
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[SLATimer]:
        """List timers with filters (status, ticket_id, policy_id, metric, started_from, started_to)."""

    @abstractmethod
    async def transition(self, timer: SLATimer, expected_status: str, expected_version: int) -> None:
        """
        Persist a state transition only if the stored row still has the
        expected status and version. Raises ConcurrentTransitionConflict.
        """

    @abstractmethod
    async def save_computation(self, timer: SLATimer) -> bool:
        """Persist derived fields of a running timer; False if it is no longer running."""

    @abstractmethod
    async def count_active_by_policy(self, policy_id: str) -> int:
        """Number of running or paused timers referencing a policy."""

    @abstractmethod
    async def count_by_status(
        self,
        started_from: Optional[datetime] = None,
        started_to: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Timer counts grouped by status."""


class ISLABreachRepository(ABC):
    """Interface for SLA breach records."""

    @abstractmethod
    async def add_if_absent(self, breach: SLABreach) -> Optional[SLABreach]:
        """Create the breach unless one exists for the timer; returns the new record or None."""

    @abstractmethod
    async def list(
        self,
        filters: Dict[str, Any],
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[SLABreach]:
        """List breaches with filters (ticket_id, metric, breached_from, breached_to)."""

    @abstractmethod
    async def count_by_metric(
        self,
        breached_from: Optional[datetime] = None,
        breached_to: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Breach counts grouped by metric."""


class ISLAEscalationRepository(ABC):
    """Interface for SLA escalation records."""

    @abstractmethod
    async def levels_for_timer(self, timer_id: str) -> Set[str]:
        """Escalation levels already recorded for a timer."""

    @abstractmethod
    async def add_if_absent(self, escalation: SLAEscalation) -> Optional[SLAEscalation]:
        """Create the escalation unless (timer_id, level) exists; returns the new record or None."""

    @abstractmethod
    async def last_notified_at(self, ticket_id: str, metric: str) -> Optional[datetime]:
        """When the latest notified escalation for a ticket/metric happened."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[SLAEscalation]:
        """Escalations of a ticket, oldest first."""

    @abstractmethod
    async def count_by_level(
        self,
        escalated_from: Optional[datetime] = None,
        escalated_to: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Escalation counts grouped by level."""


class ISLAUnitOfWork(ABC):
    """
    One transactional scope over all SLA repositories.

    Usage:
        async with uow_factory() as uow:
            timer = await uow.timers.get(timer_id)
            ...
            await uow.commit()

    Leaving the block without commit discards the work.
    """

    tickets: ITicketStore
    policies: ISLAPolicyRepository
    timers: ISLATimerRepository
    breaches: ISLABreachRepository
    escalations: ISLAEscalationRepository

    @abstractmethod
    async def __aenter__(self) -> "ISLAUnitOfWork":
        """Acquire the underlying session."""

    @abstractmethod
    async def __aexit__(self, exc_type, exc, tb) -> None:
        """Roll back on error and release the session."""

    @abstractmethod
    async def commit(self) -> None:
        """Commit the current transaction."""

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back the current transaction."""


# ========== Dispatch Interfaces ==========

class INotificationDispatcher(ABC):
    """Delivers in-app/e-mail notifications to users. Fire-and-forget."""

    @abstractmethod
    async def notify(self, user_id: str, payload: Dict[str, Any]) -> None:
        """Queue a notification for a user."""


class IWebhookDispatcher(ABC):
    """Delivers outbound webhook events. Fire-and-forget."""

    @abstractmethod
    async def trigger(self, event_name: str, payload: Dict[str, Any]) -> None:
        """Queue a webhook event."""
