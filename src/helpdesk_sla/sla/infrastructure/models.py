"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA engine.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON, Boolean, Float, Integer, String, Text, UniqueConstraint, Uuid, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk_sla.config import Priority, TicketStatus, TimerStatus, RiskLevel
from helpdesk_sla.infrastructure.database import Base, UTCDateTime


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SLAPolicyModel(Base):
    """
    Database model for SLAPolicy.

    Maps to the 'sla_policies' table. Target tables, business hours,
    holidays and scope lists are stored as JSON.
    """
    __tablename__ = "sla_policies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Targets, minutes keyed by ticket priority
    response_targets: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    resolution_targets: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Calendar
    use_business_hours: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    business_hours: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    holidays: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Escalation thresholds (percent of target)
    escalation_level1: Mapped[int] = mapped_column(Integer, nullable=False, default=80)
    escalation_level2: Mapped[int] = mapped_column(Integer, nullable=False, default=95)

    # Pause conditions
    pause_on_waiting: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pause_on_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pause_off_hours: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Scope
    department_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    category_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)


class SLATimerModel(Base):
    """
    Database model for SLATimer.

    Maps to the 'sla_timers' table. ``version`` backs the optimistic
    status check on transitions.
    """
    __tablename__ = "sla_timers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # No foreign key: terminal timers outlive deleted policies
    policy_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    metric: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TimerStatus.RUNNING, index=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    target_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    # Working calendar frozen when the timer started
    calendar_snapshot: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Pause accounting
    accumulated_paused_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    paused_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    pause_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Derived, refreshed on every recompute
    elapsed_working_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    remaining_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(50), nullable=False, default=RiskLevel.NONE)
    breached_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_computed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    initial_priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)

    __table_args__ = (
        Index("ix_sla_timers_ticket_metric", "ticket_id", "metric"),
    )


class SLABreachModel(Base):
    """
    Database model for SLABreach.

    Maps to the 'sla_breaches' table; at most one row per timer.
    """
    __tablename__ = "sla_breaches"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    timer_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, unique=True)
    ticket_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    policy_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    metric: Mapped[str] = mapped_column(String(50), nullable=False)

    breached_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    target_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_minutes: Mapped[float] = mapped_column(Float, nullable=False)

    # Ticket context at breach time
    priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    ticket_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    department_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class SLAEscalationModel(Base):
    """
    Database model for SLAEscalation.

    Maps to the 'sla_escalations' table; one row per (timer, level).
    """
    __tablename__ = "sla_escalations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    timer_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    ticket_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    metric: Mapped[str] = mapped_column(String(50), nullable=False)
    level: Mapped[str] = mapped_column(String(50), nullable=False)

    escalated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)
    remaining_minutes: Mapped[float] = mapped_column(Float, nullable=False)

    # Notification tracking
    notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("timer_id", "level", name="uq_sla_escalations_timer_level"),
    )


class TicketSnapshotModel(Base):
    """
    Latest known state of a ticket, as reported by lifecycle events.

    Maps to the 'sla_tickets' table.
    """
    __tablename__ = "sla_tickets"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN, index=True)

    department_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    category_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    subject: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now, onupdate=_utc_now)
