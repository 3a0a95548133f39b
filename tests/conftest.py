"""
Shared pytest fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without a
live Postgres instance. Every test gets a fresh schema; a StaticPool keeps
the single in-memory connection alive across sessions.

Environment overrides are applied before importing app modules so that
Settings() picks up the test configuration.
"""
import os
from datetime import datetime, timezone

# Set test environment BEFORE importing any app module
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SLA_SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("SLA_POLICY_WATCH", "false")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from helpdesk_sla.infrastructure.database import build_session_maker, create_tables
from helpdesk_sla.sla.application import EscalationTrigger, SLAPolicyService, TimerEngine
from helpdesk_sla.sla.domain import BusinessHours, SLAPolicy, TicketSnapshot
from helpdesk_sla.sla.infrastructure import SQLAlchemySLAUnitOfWork


TEST_DATABASE_URL = "sqlite+aiosqlite://"

# Monday
T0 = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)

ADMINS = ["admin-1", "admin-2"]


class RecordingNotifier:
    """Notification dispatcher that keeps every call."""

    def __init__(self):
        self.calls = []

    async def notify(self, user_id, payload):
        self.calls.append((user_id, payload))


class RecordingWebhooks:
    """Webhook dispatcher that keeps every call."""

    def __init__(self):
        self.calls = []

    async def trigger(self, event_name, payload):
        self.calls.append((event_name, payload))


class FailingNotifier:
    async def notify(self, user_id, payload):
        raise RuntimeError("notification service down")


def make_policy(policy_id="00000000-0000-4000-8000-000000000001", **overrides) -> SLAPolicy:
    """24/7 default policy unless overridden."""
    values = dict(
        id=policy_id,
        name="Default",
        is_default=True,
        response_targets={"urgent": 30, "high": 60, "medium": 240, "low": 480},
        resolution_targets={"urgent": 240, "high": 480, "medium": 1440, "low": 2880},
        use_business_hours=False,
        business_hours=BusinessHours.weekdays(),
        escalation_level1=80,
        escalation_level2=95,
    )
    values.update(overrides)
    return SLAPolicy(**values)


def make_ticket(ticket_id="TICKET-001", **overrides) -> TicketSnapshot:
    values = dict(
        id=ticket_id,
        priority="urgent",
        status="open",
        created_at=T0,
        assignee_id="agent-1",
        subject="VPN drops every hour",
    )
    values.update(overrides)
    return TicketSnapshot(**values)


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return build_session_maker(db_engine)


@pytest.fixture
def uow_factory(session_maker):
    return lambda: SQLAlchemySLAUnitOfWork(session_maker)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def webhooks():
    return RecordingWebhooks()


@pytest.fixture
def escalation_trigger(notifier, webhooks):
    return EscalationTrigger(
        notifier=notifier,
        webhooks=webhooks,
        min_interval_minutes=60,
        admin_user_ids=ADMINS,
    )


@pytest.fixture
def timer_engine(uow_factory, escalation_trigger):
    return TimerEngine(uow_factory, escalation_trigger, clock=lambda: T0, sweep_concurrency=1)


@pytest.fixture
def policy_service(uow_factory):
    return SLAPolicyService(uow_factory, clock=lambda: T0)


@pytest.fixture
def add_policy(policy_service):
    """Persist a policy built by make_policy."""
    async def _add(**overrides) -> SLAPolicy:
        return await policy_service.create_policy(make_policy(**overrides))
    return _add


@pytest_asyncio.fixture
async def client(uow_factory, escalation_trigger):
    """
    AsyncClient for the FastAPI app with the unit of work and escalation
    trigger dependencies pointed at the test database and recorders.
    """
    from helpdesk_sla.main import app
    from helpdesk_sla.sla.interfaces.controllers import get_escalation_trigger, get_uow_factory

    app.dependency_overrides[get_uow_factory] = lambda: uow_factory
    app.dependency_overrides[get_escalation_trigger] = lambda: escalation_trigger

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
