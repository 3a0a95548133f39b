"""
Tests for policy resolution and policy administration.
"""
from datetime import datetime, timedelta

import pytest

from conftest import T0, make_policy, make_ticket
from helpdesk_sla.core import (
    ConfigurationException, PolicyInUseException, ResourceNotFoundException, ValidationException
)
from helpdesk_sla.sla.application import PolicyResolver
from helpdesk_sla.sla.infrastructure import YAMLPolicyLoader


P1 = "00000000-0000-4000-8000-000000000001"
P2 = "00000000-0000-4000-8000-000000000002"
P3 = "00000000-0000-4000-8000-000000000003"


class TestSelect:

    def test_default_when_nothing_scoped_matches(self):
        default = make_policy(P1)
        billing = make_policy(P2, name="Billing", is_default=False, department_ids=("billing",))

        chosen = PolicyResolver.select([billing, default], make_ticket(department_id="support"))
        assert chosen.id == P1

    def test_scoped_policy_wins_over_default(self):
        default = make_policy(P1)
        billing = make_policy(P2, name="Billing", is_default=False, department_ids=("billing",))

        chosen = PolicyResolver.select([default, billing], make_ticket(department_id="billing"))
        assert chosen.id == P2

    def test_category_match_is_enough(self):
        vip = make_policy(P2, name="VIP", is_default=False, department_ids=("sales",), category_ids=("vip",))

        chosen = PolicyResolver.select([vip], make_ticket(department_id="support", category_id="vip"))
        assert chosen.id == P2

    def test_highest_priority_then_newest(self):
        older = make_policy(
            P2, name="Older", is_default=False, department_ids=("billing",),
            priority=5, created_at=T0 - timedelta(days=2)
        )
        newer = make_policy(
            P3, name="Newer", is_default=False, department_ids=("billing",),
            priority=5, created_at=T0 - timedelta(days=1)
        )
        low = make_policy(
            P1, name="Low", is_default=False, department_ids=("billing",),
            priority=1, created_at=T0
        )

        chosen = PolicyResolver.select([older, low, newer], make_ticket(department_id="billing"))
        assert chosen.id == P3

    def test_inactive_policies_are_ignored(self):
        inactive = make_policy(P1, is_active=False)
        assert PolicyResolver.select([inactive], make_ticket()) is None

    def test_no_policy(self):
        assert PolicyResolver.select([], make_ticket()) is None


class TestPolicyService:

    @pytest.mark.asyncio
    async def test_create_default_clears_previous_default(self, policy_service, add_policy):
        await add_policy(policy_id=P1, name="First")
        await add_policy(policy_id=P2, name="Second")

        policies = {p.id: p for p in await policy_service.list_policies()}
        assert policies[P2].is_default
        assert not policies[P1].is_default

    @pytest.mark.asyncio
    async def test_round_trip_keeps_calendar(self, policy_service, add_policy):
        created = await add_policy(
            use_business_hours=True,
            timezone="Europe/Berlin",
            holidays=(datetime(2026, 12, 25).date(),),
            department_ids=("billing",),
        )

        loaded = await policy_service.get_policy(created.id)
        assert loaded.timezone == "Europe/Berlin"
        assert loaded.business_hours == created.business_hours
        assert loaded.holidays == created.holidays
        assert loaded.department_ids == ("billing",)
        assert loaded.created_at == T0

    @pytest.mark.asyncio
    async def test_update_revalidates(self, policy_service, add_policy):
        created = await add_policy()

        updated = await policy_service.update_policy(created.id, {"escalation_level1": 50})
        assert updated.escalation_level1 == 50

        with pytest.raises(ValidationException):
            await policy_service.update_policy(created.id, {"escalation_level1": 99})

    @pytest.mark.asyncio
    async def test_get_missing_policy(self, policy_service):
        with pytest.raises(ResourceNotFoundException):
            await policy_service.get_policy(P3)

    @pytest.mark.asyncio
    async def test_delete_refused_while_timers_active(self, policy_service, add_policy, timer_engine):
        policy = await add_policy()
        await timer_engine.on_ticket_created(make_ticket())

        with pytest.raises(PolicyInUseException):
            await policy_service.delete_policy(policy.id)

        await timer_engine.on_status_changed(make_ticket(), "open", "closed", at=T0 + timedelta(minutes=5))
        await policy_service.delete_policy(policy.id)

        with pytest.raises(ResourceNotFoundException):
            await policy_service.get_policy(policy.id)

    @pytest.mark.asyncio
    async def test_sync_upserts_by_name(self, policy_service, add_policy):
        existing = await add_policy(name="Standard")

        result = await policy_service.sync_policies([
            make_policy(P2, name="Standard", resolution_targets={"urgent": 120}),
            make_policy(P3, name="Enterprise", is_default=False),
        ])
        assert result == {"created": 1, "updated": 1}

        standard = await policy_service.get_policy(existing.id)
        assert standard.resolution_targets == {"urgent": 120}
        assert len(await policy_service.list_policies()) == 2


class TestYAMLPolicyLoader:

    def test_missing_file_yields_nothing(self, tmp_path):
        assert YAMLPolicyLoader(tmp_path / "absent.yaml").load() == []

    def test_loads_policies(self, tmp_path):
        path = tmp_path / "sla_policies.yaml"
        path.write_text(
            "policies:\n"
            "  - name: Standard\n"
            "    is_default: true\n"
            "    response_targets: {urgent: 30, high: 60}\n"
            "    resolution_targets: {urgent: 240}\n"
            "    timezone: America/New_York\n"
            "    business_hours:\n"
            "      monday: {start: '08:00', end: '16:00'}\n"
            "    holidays: [2026-12-25]\n"
        )

        [policy] = YAMLPolicyLoader(path).load()
        assert policy.name == "Standard"
        assert policy.response_targets == {"urgent": 30, "high": 60}
        assert policy.timezone == "America/New_York"
        assert policy.business_hours.window_for(0).start_minute == 8 * 60
        assert policy.business_hours.window_for(1) is None
        assert [d.isoformat() for d in policy.holidays] == ["2026-12-25"]

    @pytest.mark.parametrize("body", [
        "policies:\n  - name: Broken\n    timezone: Not/AZone\n",
        "policies:\n  - name: Broken\n    business_hours: {monday: '18:00-09:00'}\n",
        "policies:\n  - name: A\n  - name: A\n",
        "policies: [\n",
    ])
    def test_invalid_files_raise_configuration_error(self, tmp_path, body):
        path = tmp_path / "sla_policies.yaml"
        path.write_text(body)
        with pytest.raises(ConfigurationException):
            YAMLPolicyLoader(path).load()

    def test_shipped_seed_file_is_valid(self):
        from pathlib import Path

        seed = Path(__file__).resolve().parent.parent / "sla_policies.yaml"
        names = [p.name for p in YAMLPolicyLoader(seed).load()]
        assert names == ["Standard", "Enterprise 24x7"]
