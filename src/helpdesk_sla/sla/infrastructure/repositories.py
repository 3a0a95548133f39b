"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Repositories map ORM models to domain
entities so nothing above this layer sees a model instance.
"""

from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import UUID

import yaml
from pydantic import ValidationError
from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk_sla.config import ACTIVE_TIMER_STATUSES, TimerStatus
from helpdesk_sla.core import (
    ApplicationException,
    ConcurrentTransitionConflict,
    ConfigurationException,
    RepositoryException,
)
from helpdesk_sla.sla.application.dto import PolicyCreateDTO
from helpdesk_sla.sla.application.interfaces import (
    ITicketStore,
    ISLAPolicyRepository,
    ISLATimerRepository,
    ISLABreachRepository,
    ISLAEscalationRepository,
    ISLAUnitOfWork,
)
from helpdesk_sla.sla.domain import (
    BusinessHours, TicketSnapshot, SLAPolicy, SLATimer, SLABreach, SLAEscalation
)
from helpdesk_sla.sla.infrastructure.models import (
    SLAPolicyModel,
    SLATimerModel,
    SLABreachModel,
    SLAEscalationModel,
    TicketSnapshotModel,
)
from helpdesk_sla.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _uuid(value: Optional[str]) -> Optional[UUID]:
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _require_uuid(value: str, what: str) -> UUID:
    parsed = _uuid(value)
    if parsed is None:
        raise RepositoryException(f"Invalid {what} ID: {value}")
    return parsed


async def _insert_if_absent(session: AsyncSession, model_cls: Any, values: Dict[str, Any]) -> bool:
    """
    INSERT ... ON CONFLICT DO NOTHING.

    Returns True if the row was inserted.
    """
    dialect = session.bind.dialect.name if session.bind is not None else ""
    if dialect == "postgresql":
        stmt = postgresql.insert(model_cls).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite.insert(model_cls).values(**values).on_conflict_do_nothing()
    else:
        stmt = insert(model_cls).values(**values)

    result = await session.execute(stmt)
    return result.rowcount == 1


# ========== Tickets ==========

class SQLAlchemyTicketStore(ITicketStore):
    """Ticket snapshots kept in 'sla_tickets'."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: TicketSnapshotModel) -> TicketSnapshot:
        return TicketSnapshot(
            id=model.id,
            priority=model.priority,
            status=model.status,
            created_at=model.created_at,
            department_id=model.department_id,
            category_id=model.category_id,
            assignee_id=model.assignee_id,
            subject=model.subject,
            updated_at=model.updated_at
        )

    async def get_ticket(self, ticket_id: str) -> Optional[TicketSnapshot]:
        stmt = (
            select(TicketSnapshotModel)
            .where(TicketSnapshotModel.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def get_tickets_by_status(self, statuses: Sequence[str]) -> List[TicketSnapshot]:
        stmt = (
            select(TicketSnapshotModel)
            .where(TicketSnapshotModel.status.in_(list(statuses)))
            .order_by(TicketSnapshotModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def save(self, ticket: TicketSnapshot) -> None:
        model = await self._session.get(TicketSnapshotModel, ticket.id)
        if model is None:
            model = TicketSnapshotModel(id=ticket.id, created_at=ticket.created_at)
            self._session.add(model)

        model.priority = ticket.priority
        model.status = ticket.status
        model.created_at = ticket.created_at
        model.department_id = ticket.department_id
        model.category_id = ticket.category_id
        model.assignee_id = ticket.assignee_id
        model.subject = ticket.subject
        model.updated_at = ticket.updated_at

        await self._session.flush()


# ========== Policies ==========

class SQLAlchemyPolicyRepository(ISLAPolicyRepository):
    """
    SQLAlchemy implementation of the SLA policy repository.

    Calendar and scope settings are stored as JSON and re-validated when
    mapped back to the domain.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: SLAPolicyModel) -> SLAPolicy:
        return SLAPolicy(
            id=str(model.id),
            name=model.name,
            description=model.description,
            is_default=model.is_default,
            is_active=model.is_active,
            priority=model.priority,
            response_targets=dict(model.response_targets or {}),
            resolution_targets=dict(model.resolution_targets or {}),
            use_business_hours=model.use_business_hours,
            business_hours=BusinessHours.parse(model.business_hours),
            timezone=model.timezone,
            holidays=tuple(date.fromisoformat(d) for d in (model.holidays or [])),
            escalation_level1=model.escalation_level1,
            escalation_level2=model.escalation_level2,
            pause_on_waiting=model.pause_on_waiting,
            pause_on_hold=model.pause_on_hold,
            pause_off_hours=model.pause_off_hours,
            department_ids=tuple(model.department_ids or []),
            category_ids=tuple(model.category_ids or []),
            created_at=model.created_at,
            updated_at=model.updated_at
        )

    @staticmethod
    def _apply(model: SLAPolicyModel, policy: SLAPolicy) -> None:
        model.name = policy.name
        model.description = policy.description
        model.is_default = policy.is_default
        model.is_active = policy.is_active
        model.priority = policy.priority
        model.response_targets = dict(policy.response_targets)
        model.resolution_targets = dict(policy.resolution_targets)
        model.use_business_hours = policy.use_business_hours
        model.business_hours = policy.business_hours.to_dict()
        model.timezone = policy.timezone
        model.holidays = [d.isoformat() for d in policy.holidays]
        model.escalation_level1 = policy.escalation_level1
        model.escalation_level2 = policy.escalation_level2
        model.pause_on_waiting = policy.pause_on_waiting
        model.pause_on_hold = policy.pause_on_hold
        model.pause_off_hours = policy.pause_off_hours
        model.department_ids = list(policy.department_ids)
        model.category_ids = list(policy.category_ids)
        if policy.created_at is not None:
            model.created_at = policy.created_at
        if policy.updated_at is not None:
            model.updated_at = policy.updated_at

    async def _get_model(self, policy_id: str) -> Optional[SLAPolicyModel]:
        policy_uuid = _uuid(policy_id)
        if policy_uuid is None:
            return None
        stmt = (
            select(SLAPolicyModel)
            .where(SLAPolicyModel.id == policy_uuid)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, policy_id: str) -> Optional[SLAPolicy]:
        model = await self._get_model(policy_id)
        return self._to_domain(model) if model else None

    async def get_by_name(self, name: str) -> Optional[SLAPolicy]:
        stmt = select(SLAPolicyModel).where(SLAPolicyModel.name == name)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def list(self, active_only: bool = False) -> List[SLAPolicy]:
        stmt = select(SLAPolicyModel).execution_options(populate_existing=True)
        if active_only:
            stmt = stmt.where(SLAPolicyModel.is_active.is_(True))
        stmt = stmt.order_by(SLAPolicyModel.created_at.desc())

        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def add(self, policy: SLAPolicy) -> SLAPolicy:
        model = SLAPolicyModel(id=_require_uuid(policy.id, "policy"))
        self._apply(model, policy)
        self._session.add(model)
        await self._session.flush()
        return self._to_domain(model)

    async def update(self, policy: SLAPolicy) -> SLAPolicy:
        model = await self._get_model(policy.id)
        if model is None:
            raise RepositoryException(f"SLA policy {policy.id} not found")
        self._apply(model, policy)
        await self._session.flush()
        return self._to_domain(model)

    async def delete(self, policy_id: str) -> None:
        stmt = delete(SLAPolicyModel).where(SLAPolicyModel.id == _require_uuid(policy_id, "policy"))
        await self._session.execute(stmt)

    async def clear_default(self, except_id: Optional[str] = None) -> int:
        stmt = update(SLAPolicyModel).where(SLAPolicyModel.is_default.is_(True))
        except_uuid = _uuid(except_id)
        if except_uuid is not None:
            stmt = stmt.where(SLAPolicyModel.id != except_uuid)
        stmt = stmt.values(is_default=False).execution_options(synchronize_session=False)

        result = await self._session.execute(stmt)
        return result.rowcount


# ========== Timers ==========

class SQLAlchemyTimerRepository(ISLATimerRepository):
    """
    SQLAlchemy implementation of the SLA timer repository.

    State transitions are conditional UPDATEs on (id, status, version);
    zero affected rows means another writer moved the timer first.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: SLATimerModel) -> SLATimer:
        return SLATimer(
            id=str(model.id),
            ticket_id=model.ticket_id,
            policy_id=str(model.policy_id),
            metric=model.metric,
            started_at=model.started_at,
            target_minutes=model.target_minutes,
            status=model.status,
            accumulated_paused_minutes=model.accumulated_paused_minutes,
            paused_at=model.paused_at,
            pause_reason=model.pause_reason,
            completed_at=model.completed_at,
            cancelled_at=model.cancelled_at,
            elapsed_working_minutes=model.elapsed_working_minutes,
            remaining_minutes=model.remaining_minutes,
            risk_level=model.risk_level,
            breached_at=model.breached_at,
            last_computed_at=model.last_computed_at,
            initial_priority=model.initial_priority,
            calendar_snapshot=model.calendar_snapshot,
            version=model.version
        )

    @staticmethod
    def _state_values(timer: SLATimer) -> Dict[str, Any]:
        return {
            "status": timer.status,
            "accumulated_paused_minutes": timer.accumulated_paused_minutes,
            "paused_at": timer.paused_at,
            "pause_reason": timer.pause_reason,
            "completed_at": timer.completed_at,
            "cancelled_at": timer.cancelled_at,
            "elapsed_working_minutes": timer.elapsed_working_minutes,
            "remaining_minutes": timer.remaining_minutes,
            "risk_level": timer.risk_level,
            "breached_at": timer.breached_at,
            "last_computed_at": timer.last_computed_at,
        }

    def _select(self):
        return select(SLATimerModel).execution_options(populate_existing=True)

    async def get(self, timer_id: str) -> Optional[SLATimer]:
        timer_uuid = _uuid(timer_id)
        if timer_uuid is None:
            return None
        result = await self._session.execute(self._select().where(SLATimerModel.id == timer_uuid))
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def add(self, timer: SLATimer) -> SLATimer:
        model = SLATimerModel(
            id=_require_uuid(timer.id, "timer"),
            ticket_id=timer.ticket_id,
            policy_id=_require_uuid(timer.policy_id, "policy"),
            metric=timer.metric,
            started_at=timer.started_at,
            target_minutes=timer.target_minutes,
            initial_priority=timer.initial_priority,
            calendar_snapshot=timer.calendar_snapshot,
            version=timer.version,
            **self._state_values(timer)
        )
        self._session.add(model)
        await self._session.flush()
        return timer

    async def list_for_ticket(
        self,
        ticket_id: str,
        active_only: bool = False,
        metric: Optional[str] = None
    ) -> List[SLATimer]:
        stmt = self._select().where(SLATimerModel.ticket_id == ticket_id)
        if active_only:
            stmt = stmt.where(SLATimerModel.status.in_(ACTIVE_TIMER_STATUSES))
        if metric:
            stmt = stmt.where(SLATimerModel.metric == metric)
        stmt = stmt.order_by(SLATimerModel.started_at.desc(), SLATimerModel.created_at.desc())

        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def list_active_ids(self) -> List[str]:
        stmt = (
            select(SLATimerModel.id)
            .where(SLATimerModel.status.in_(ACTIVE_TIMER_STATUSES))
            .order_by(SLATimerModel.started_at.asc())
        )
        result = await self._session.execute(stmt)
        return [str(timer_id) for timer_id in result.scalars().all()]

    async def list(
        self,
        filters: Dict[str, Any],
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[SLATimer]:
        stmt = self._select()

        conditions = []
        status = filters.get("status")
        if status:
            if isinstance(status, (list, tuple)):
                conditions.append(SLATimerModel.status.in_(list(status)))
            else:
                conditions.append(SLATimerModel.status == status)
        if filters.get("ticket_id"):
            conditions.append(SLATimerModel.ticket_id == filters["ticket_id"])
        if filters.get("policy_id"):
            policy_uuid = _uuid(filters["policy_id"])
            if policy_uuid is None:
                return []
            conditions.append(SLATimerModel.policy_id == policy_uuid)
        if filters.get("metric"):
            conditions.append(SLATimerModel.metric == filters["metric"])
        if filters.get("risk_level"):
            conditions.append(SLATimerModel.risk_level == filters["risk_level"])
        if filters.get("started_from"):
            conditions.append(SLATimerModel.started_at >= filters["started_from"])
        if filters.get("started_to"):
            conditions.append(SLATimerModel.started_at <= filters["started_to"])

        if conditions:
            stmt = stmt.where(and_(*conditions))

        stmt = stmt.order_by(SLATimerModel.started_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def transition(self, timer: SLATimer, expected_status: str, expected_version: int) -> None:
        stmt = (
            update(SLATimerModel)
            .where(
                SLATimerModel.id == _require_uuid(timer.id, "timer"),
                SLATimerModel.status == expected_status,
                SLATimerModel.version == expected_version
            )
            .values(**self._state_values(timer), version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            raise ConcurrentTransitionConflict(timer.id, expected_status, expected_version)
        timer.version = expected_version + 1

    async def save_computation(self, timer: SLATimer) -> bool:
        stmt = (
            update(SLATimerModel)
            .where(
                SLATimerModel.id == _require_uuid(timer.id, "timer"),
                SLATimerModel.status == TimerStatus.RUNNING
            )
            .values(
                elapsed_working_minutes=timer.elapsed_working_minutes,
                remaining_minutes=timer.remaining_minutes,
                risk_level=timer.risk_level,
                breached_at=timer.breached_at,
                last_computed_at=timer.last_computed_at
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def count_active_by_policy(self, policy_id: str) -> int:
        policy_uuid = _uuid(policy_id)
        if policy_uuid is None:
            return 0
        stmt = select(func.count()).select_from(SLATimerModel).where(
            SLATimerModel.policy_id == policy_uuid,
            SLATimerModel.status.in_(ACTIVE_TIMER_STATUSES)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def count_by_status(
        self,
        started_from: Optional[datetime] = None,
        started_to: Optional[datetime] = None
    ) -> Dict[str, int]:
        stmt = select(SLATimerModel.status, func.count()).group_by(SLATimerModel.status)
        if started_from is not None:
            stmt = stmt.where(SLATimerModel.started_at >= started_from)
        if started_to is not None:
            stmt = stmt.where(SLATimerModel.started_at <= started_to)

        result = await self._session.execute(stmt)
        return {status: count for status, count in result.all()}


# ========== Breaches ==========

class SQLAlchemyBreachRepository(ISLABreachRepository):
    """SQLAlchemy implementation of the SLA breach repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: SLABreachModel) -> SLABreach:
        return SLABreach(
            id=str(model.id),
            timer_id=str(model.timer_id),
            ticket_id=model.ticket_id,
            policy_id=str(model.policy_id),
            metric=model.metric,
            breached_at=model.breached_at,
            target_minutes=model.target_minutes,
            actual_minutes=model.actual_minutes,
            priority=model.priority,
            ticket_status=model.ticket_status,
            department_id=model.department_id,
            assignee_id=model.assignee_id
        )

    async def add_if_absent(self, breach: SLABreach) -> Optional[SLABreach]:
        inserted = await _insert_if_absent(self._session, SLABreachModel, {
            "id": _require_uuid(breach.id, "breach"),
            "timer_id": _require_uuid(breach.timer_id, "timer"),
            "ticket_id": breach.ticket_id,
            "policy_id": _require_uuid(breach.policy_id, "policy"),
            "metric": breach.metric,
            "breached_at": breach.breached_at,
            "target_minutes": breach.target_minutes,
            "actual_minutes": breach.actual_minutes,
            "priority": breach.priority,
            "ticket_status": breach.ticket_status,
            "department_id": breach.department_id,
            "assignee_id": breach.assignee_id,
        })
        return breach if inserted else None

    async def list(
        self,
        filters: Dict[str, Any],
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[SLABreach]:
        stmt = select(SLABreachModel)

        conditions = []
        if filters.get("ticket_id"):
            conditions.append(SLABreachModel.ticket_id == filters["ticket_id"])
        if filters.get("metric"):
            conditions.append(SLABreachModel.metric == filters["metric"])
        if filters.get("breached_from"):
            conditions.append(SLABreachModel.breached_at >= filters["breached_from"])
        if filters.get("breached_to"):
            conditions.append(SLABreachModel.breached_at <= filters["breached_to"])
        if conditions:
            stmt = stmt.where(and_(*conditions))

        stmt = stmt.order_by(SLABreachModel.breached_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def count_by_metric(
        self,
        breached_from: Optional[datetime] = None,
        breached_to: Optional[datetime] = None
    ) -> Dict[str, int]:
        stmt = select(SLABreachModel.metric, func.count()).group_by(SLABreachModel.metric)
        if breached_from is not None:
            stmt = stmt.where(SLABreachModel.breached_at >= breached_from)
        if breached_to is not None:
            stmt = stmt.where(SLABreachModel.breached_at <= breached_to)

        result = await self._session.execute(stmt)
        return {metric: count for metric, count in result.all()}


# ========== Escalations ==========

class SQLAlchemyEscalationRepository(ISLAEscalationRepository):
    """SQLAlchemy implementation of the SLA escalation repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: SLAEscalationModel) -> SLAEscalation:
        return SLAEscalation(
            id=str(model.id),
            timer_id=str(model.timer_id),
            ticket_id=model.ticket_id,
            metric=model.metric,
            level=model.level,
            escalated_at=model.escalated_at,
            remaining_minutes=model.remaining_minutes,
            notified=model.notified,
            reason=model.reason
        )

    async def levels_for_timer(self, timer_id: str) -> Set[str]:
        timer_uuid = _uuid(timer_id)
        if timer_uuid is None:
            return set()
        result = await self._session.execute(
            select(SLAEscalationModel.level).where(SLAEscalationModel.timer_id == timer_uuid)
        )
        return set(result.scalars().all())

    async def add_if_absent(self, escalation: SLAEscalation) -> Optional[SLAEscalation]:
        inserted = await _insert_if_absent(self._session, SLAEscalationModel, {
            "id": _require_uuid(escalation.id, "escalation"),
            "timer_id": _require_uuid(escalation.timer_id, "timer"),
            "ticket_id": escalation.ticket_id,
            "metric": escalation.metric,
            "level": escalation.level,
            "escalated_at": escalation.escalated_at,
            "remaining_minutes": escalation.remaining_minutes,
            "notified": escalation.notified,
            "reason": escalation.reason,
        })
        return escalation if inserted else None

    async def last_notified_at(self, ticket_id: str, metric: str) -> Optional[datetime]:
        stmt = (
            select(SLAEscalationModel.escalated_at)
            .where(
                SLAEscalationModel.ticket_id == ticket_id,
                SLAEscalationModel.metric == metric,
                SLAEscalationModel.notified.is_(True)
            )
            .order_by(SLAEscalationModel.escalated_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_ticket(self, ticket_id: str) -> List[SLAEscalation]:
        stmt = (
            select(SLAEscalationModel)
            .where(SLAEscalationModel.ticket_id == ticket_id)
            .order_by(SLAEscalationModel.escalated_at.asc())
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def count_by_level(
        self,
        escalated_from: Optional[datetime] = None,
        escalated_to: Optional[datetime] = None
    ) -> Dict[str, int]:
        stmt = select(SLAEscalationModel.level, func.count()).group_by(SLAEscalationModel.level)
        if escalated_from is not None:
            stmt = stmt.where(SLAEscalationModel.escalated_at >= escalated_from)
        if escalated_to is not None:
            stmt = stmt.where(SLAEscalationModel.escalated_at <= escalated_to)

        result = await self._session.execute(stmt)
        return {level: count for level, count in result.all()}


# ========== Unit of Work ==========

class SQLAlchemySLAUnitOfWork(ISLAUnitOfWork):
    """
    One AsyncSession shared by all SLA repositories.

    Usage:
        uow_factory = lambda: SQLAlchemySLAUnitOfWork(get_session_maker())
        async with uow_factory() as uow:
            ...
            await uow.commit()
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemySLAUnitOfWork":
        self._session = self._session_factory()
        self.tickets = SQLAlchemyTicketStore(self._session)
        self.policies = SQLAlchemyPolicyRepository(self._session)
        self.timers = SQLAlchemyTimerRepository(self._session)
        self.breaches = SQLAlchemyBreachRepository(self._session)
        self.escalations = SQLAlchemyEscalationRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is not None:
                await self.rollback()
        finally:
            await self._session.close()
            self._session = None

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


# ========== Policy File ==========

class YAMLPolicyLoader:
    """
    Reads SLA policies from a YAML file.

    Expected layout:
        policies:
          - name: Standard
            is_default: true
            response_targets: {urgent: 30, high: 60, medium: 240, low: 480}
            resolution_targets: {urgent: 240, high: 480, medium: 1440, low: 2880}
            business_hours:
              monday: {start: "09:00", end: "18:00"}
              ...
    """

    def __init__(self, policy_path: Path):
        self._policy_path = Path(policy_path)

    @property
    def path(self) -> Path:
        return self._policy_path

    def load(self) -> List[SLAPolicy]:
        """Parse and validate every policy; a missing file yields no policies."""
        if not self._policy_path.exists():
            logger.info("SLA policy file not found, skipping", extra={"path": str(self._policy_path)})
            return []

        with open(self._policy_path, "r") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationException(f"Invalid YAML in {self._policy_path}: {e}") from e

        entries = data.get("policies", []) if isinstance(data, dict) else []
        policies = []
        for index, entry in enumerate(entries):
            try:
                policies.append(PolicyCreateDTO(**entry).to_domain())
            except (ValidationError, ApplicationException, TypeError) as e:
                raise ConfigurationException(
                    f"Invalid SLA policy #{index} in {self._policy_path}: {e}",
                    {"index": index}
                ) from e

        names = [p.name for p in policies]
        if len(names) != len(set(names)):
            raise ConfigurationException(f"Duplicate policy names in {self._policy_path}")

        return policies
