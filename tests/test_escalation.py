"""
Tests for escalation records and notification dispatch.
"""
from datetime import timedelta

import pytest
import pytest_asyncio

from conftest import ADMINS, T0, FailingNotifier, RecordingWebhooks, make_ticket
from helpdesk_sla.sla.application import EscalationTrigger, TimerEngine


def minutes(n):
    return T0 + timedelta(minutes=n)


async def escalations_of(uow_factory, ticket_id="TICKET-001"):
    async with uow_factory() as uow:
        return await uow.escalations.list_for_ticket(ticket_id)


@pytest_asyncio.fixture
async def resolution_only_ticket(timer_engine, add_policy):
    """Urgent ticket on a 24/7 policy with only a 240 minute resolution target."""
    await add_policy(response_targets={})
    await timer_engine.on_ticket_created(make_ticket())


class TestEscalationRecords:

    @pytest.mark.asyncio
    async def test_one_row_per_crossed_level(
        self, timer_engine, uow_factory, notifier, webhooks, resolution_only_ticket
    ):
        report = await timer_engine.sweep(now=minutes(239))

        rows = {e.level: e for e in await escalations_of(uow_factory)}
        assert set(rows) == {"level1", "level2"}
        assert rows["level2"].notified
        assert not rows["level1"].notified
        assert rows["level1"].reason == "Superseded by level2"
        assert report.escalations_created == 2
        assert report.notifications_sent == 1

        assert [user for user, _ in notifier.calls] == ["agent-1"]
        payload = notifier.calls[0][1]
        assert payload["type"] == "sla_risk"
        assert payload["level"] == "level2"
        assert payload["ticket_id"] == "TICKET-001"
        assert payload["metric"] == "resolution"
        assert [event for event, _ in webhooks.calls] == ["sla.at_risk"]

    @pytest.mark.asyncio
    async def test_levels_are_never_repeated(self, timer_engine, uow_factory, notifier, resolution_only_ticket):
        await timer_engine.sweep(now=minutes(200))
        await timer_engine.sweep(now=minutes(210))
        await timer_engine.sweep(now=minutes(220))

        levels = [e.level for e in await escalations_of(uow_factory)]
        assert levels == ["level1"]
        assert len(notifier.calls) == 1

    @pytest.mark.asyncio
    async def test_breach_goes_to_assignee_and_admins(
        self, timer_engine, uow_factory, notifier, webhooks, resolution_only_ticket
    ):
        await timer_engine.sweep(now=minutes(239))
        notifier.calls.clear()
        webhooks.calls.clear()

        await timer_engine.sweep(now=minutes(241))

        assert [user for user, _ in notifier.calls] == ["agent-1", *ADMINS]
        assert notifier.calls[0][1]["type"] == "sla_breach"
        assert [event for event, _ in webhooks.calls] == ["sla.breached"]

        breached = [e for e in await escalations_of(uow_factory) if e.level == "breached"]
        assert len(breached) == 1
        assert breached[0].notified


    @pytest.mark.asyncio
    async def test_reassignment_changes_recipient(self, timer_engine, notifier, resolution_only_ticket):
        await timer_engine.on_ticket_assigned(make_ticket(assignee_id="agent-2"))

        await timer_engine.sweep(now=minutes(200))

        assert [user for user, _ in notifier.calls] == ["agent-2"]


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_at_risk_notifications_are_rate_limited(
        self, timer_engine, uow_factory, notifier, resolution_only_ticket
    ):
        await timer_engine.sweep(now=minutes(195))
        await timer_engine.sweep(now=minutes(230))

        rows = {e.level: e for e in await escalations_of(uow_factory)}
        assert rows["level1"].notified
        assert not rows["level2"].notified
        assert rows["level2"].reason.startswith("Notification suppressed")
        assert len(notifier.calls) == 1

    @pytest.mark.asyncio
    async def test_breach_bypasses_rate_limit(self, timer_engine, notifier, resolution_only_ticket):
        await timer_engine.sweep(now=minutes(230))
        notifier.calls.clear()

        await timer_engine.sweep(now=minutes(241))

        assert len(notifier.calls) == 1 + len(ADMINS)

    @pytest.mark.asyncio
    async def test_window_expires(self, timer_engine, add_policy, uow_factory, notifier):
        await add_policy(response_targets={}, resolution_targets={"urgent": 480})
        await timer_engine.on_ticket_created(make_ticket())

        await timer_engine.sweep(now=minutes(390))
        await timer_engine.sweep(now=minutes(460))

        rows = {e.level: e for e in await escalations_of(uow_factory)}
        assert rows["level1"].notified
        assert rows["level2"].notified
        assert len(notifier.calls) == 2


class TestDispatchFailures:

    @pytest.mark.asyncio
    async def test_failed_dispatch_keeps_records(self, uow_factory, add_policy):
        webhooks = RecordingWebhooks()
        trigger = EscalationTrigger(
            notifier=FailingNotifier(),
            webhooks=webhooks,
            admin_user_ids=ADMINS
        )
        engine = TimerEngine(uow_factory, trigger, clock=lambda: T0)
        await add_policy(response_targets={})
        await engine.on_ticket_created(make_ticket())

        report = await engine.sweep(now=minutes(241))

        assert report.failures == []
        assert report.breaches_created == 1
        assert {e.level for e in await escalations_of(uow_factory)} == {"level1", "level2", "breached"}
        assert [event for event, _ in webhooks.calls] == ["sla.breached"]

    @pytest.mark.asyncio
    async def test_no_dispatchers(self, uow_factory, add_policy):
        engine = TimerEngine(uow_factory, EscalationTrigger(), clock=lambda: T0)
        await add_policy(response_targets={})
        await engine.on_ticket_created(make_ticket())

        report = await engine.sweep(now=minutes(241))

        assert report.escalations_created == 3
        assert report.failures == []


class TestRecipients:

    def test_unassigned_ticket_goes_to_admins(self):
        trigger = EscalationTrigger(admin_user_ids=ADMINS)
        assert trigger.recipients(make_ticket(assignee_id=None), "level1") == ADMINS

    def test_breach_recipients_are_deduplicated(self):
        trigger = EscalationTrigger(admin_user_ids=["admin-1", "agent-1"])
        assert trigger.recipients(make_ticket(), "breached") == ["agent-1", "admin-1"]

    def test_unknown_ticket(self):
        trigger = EscalationTrigger(admin_user_ids=ADMINS)
        assert trigger.recipients(None, "level2") == ADMINS
