"""
Tests for the SLA HTTP API.
"""
from datetime import timedelta

import pytest

from conftest import T0


POLICY_BODY = {
    "name": "Standard",
    "is_default": True,
    "use_business_hours": False,
    "response_targets": {"urgent": 30, "high": 60},
    "resolution_targets": {"urgent": 240, "high": 480},
}

TICKET_BODY = {
    "ticket": {
        "id": "TICKET-001",
        "priority": "urgent",
        "status": "open",
        "created_at": T0.isoformat(),
        "assignee_id": "agent-1",
        "subject": "VPN drops every hour",
    }
}


async def create_policy(client, **overrides):
    response = await client.post("/sla/policies", json={**POLICY_BODY, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


class TestPolicyEndpoints:

    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        created = await create_policy(client)
        assert created["is_default"]
        assert created["active_timers"] == 0
        assert created["business_hours"]["monday"] == {"start": "09:00", "end": "18:00"}

        response = await client.get(f"/sla/policies/{created['id']}")
        assert response.status_code == 200
        assert response.json()["resolution_targets"] == {"urgent": 240, "high": 480}

    @pytest.mark.asyncio
    async def test_invalid_business_hours(self, client):
        response = await client.post(
            "/sla/policies",
            json={**POLICY_BODY, "business_hours": {"monday": {"start": "18:00", "end": "09:00"}}}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_invalid_timezone(self, client):
        response = await client.post("/sla/policies", json={**POLICY_BODY, "timezone": "Atlantis/Capital"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_update(self, client):
        created = await create_policy(client)

        response = await client.put(f"/sla/policies/{created['id']}", json={"escalation_level1": 70})
        assert response.status_code == 200
        assert response.json()["escalation_level1"] == 70

    @pytest.mark.asyncio
    async def test_list(self, client):
        await create_policy(client)
        await create_policy(client, name="Enterprise", is_default=False, department_ids=["enterprise"])

        response = await client.get("/sla/policies")
        assert response.status_code == 200
        assert response.json()["total_count"] == 2

    @pytest.mark.asyncio
    async def test_delete_refused_while_in_use(self, client):
        created = await create_policy(client)
        await client.post("/sla/events/ticket-created", json=TICKET_BODY)

        response = await client.delete(f"/sla/policies/{created['id']}")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_delete(self, client):
        created = await create_policy(client)

        assert (await client.delete(f"/sla/policies/{created['id']}")).status_code == 204
        assert (await client.get(f"/sla/policies/{created['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_delete_missing(self, client):
        response = await client.delete("/sla/policies/00000000-0000-4000-8000-00000000dead")
        assert response.status_code == 404


class TestLifecycleEndpoints:

    @pytest.mark.asyncio
    async def test_ticket_created_starts_both_timers(self, client):
        await create_policy(client)

        response = await client.post("/sla/events/ticket-created", json=TICKET_BODY)
        assert response.status_code == 201
        body = response.json()
        assert body["event"] == "ticket_created"
        assert body["timers_affected"] == 2

    @pytest.mark.asyncio
    async def test_ticket_created_without_policy(self, client):
        response = await client.post("/sla/events/ticket-created", json=TICKET_BODY)
        assert response.status_code == 201
        assert response.json()["timers_affected"] == 0

    @pytest.mark.asyncio
    async def test_invalid_priority(self, client):
        body = {"ticket": {**TICKET_BODY["ticket"], "priority": "critical"}}
        response = await client.post("/sla/events/ticket-created", json=body)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_ticket_status(self, client):
        await create_policy(client)
        await client.post("/sla/events/ticket-created", json=TICKET_BODY)

        response = await client.get("/sla/tickets/TICKET-001/status")
        assert response.status_code == 200
        body = response.json()
        assert body["response"]["metric"] == "response"
        assert body["response"]["target_minutes"] == 30
        assert body["resolution"]["target_minutes"] == 240

    @pytest.mark.asyncio
    async def test_first_response_and_resolve(self, client):
        await create_policy(client)
        await client.post("/sla/events/ticket-created", json=TICKET_BODY)

        response = await client.post(
            "/sla/events/first-response",
            json={"ticket_id": "TICKET-001", "at": (T0 + timedelta(minutes=10)).isoformat()}
        )
        assert response.json()["timers_affected"] == 1

        response = await client.post("/sla/events/status-changed", json={
            **TICKET_BODY,
            "old_status": "open",
            "new_status": "resolved",
            "at": (T0 + timedelta(minutes=100)).isoformat(),
        })
        assert response.json()["timers_affected"] == 1

        status = (await client.get("/sla/tickets/TICKET-001/status")).json()
        assert status["response"]["status"] == "completed"
        assert status["resolution"]["status"] == "completed"
        assert not status["resolution"]["is_breached"]

    @pytest.mark.asyncio
    async def test_manual_pause(self, client):
        await create_policy(client)
        await client.post("/sla/events/ticket-created", json=TICKET_BODY)

        response = await client.post(
            "/sla/tickets/TICKET-001/actions",
            json={"action": "pause", "reason": "Waiting on vendor"}
        )
        assert response.json()["timers_affected"] == 2

        response = await client.get("/sla/timers", params={"status": "paused"})
        assert response.json()["total_count"] == 2

    @pytest.mark.asyncio
    async def test_unknown_action(self, client):
        response = await client.post("/sla/tickets/TICKET-001/actions", json={"action": "explode"})
        assert response.status_code == 422


class TestSweepAndReporting:

    @pytest.mark.asyncio
    async def test_sweep_records_breaches(self, client, notifier, webhooks):
        await create_policy(client)
        await client.post("/sla/events/ticket-created", json=TICKET_BODY)

        response = await client.post("/sla/sweep", json={"now": (T0 + timedelta(minutes=241)).isoformat()})
        assert response.status_code == 200
        report = response.json()
        assert report["timers_checked"] == 2
        assert report["breaches_created"] == 2
        assert report["failures"] == []

        breaches = (await client.get("/sla/breaches")).json()
        assert breaches["total_count"] == 2
        assert {b["metric"] for b in breaches["breaches"]} == {"response", "resolution"}

        escalations = (await client.get("/sla/tickets/TICKET-001/escalations")).json()
        assert len(escalations) == 6
        assert {e["level"] for e in escalations} == {"level1", "level2", "breached"}
        assert {event for event, _ in webhooks.calls} == {"sla.breached"}

    @pytest.mark.asyncio
    async def test_breach_filters(self, client):
        await create_policy(client)
        await client.post("/sla/events/ticket-created", json=TICKET_BODY)
        await client.post("/sla/sweep", json={"now": (T0 + timedelta(minutes=60)).isoformat()})

        response = await client.get("/sla/breaches", params={"metric": "resolution"})
        assert response.json()["total_count"] == 0
        response = await client.get("/sla/breaches", params={"metric": "response"})
        assert response.json()["total_count"] == 1

    @pytest.mark.asyncio
    async def test_stats(self, client):
        await create_policy(client)

        response = await client.get("/sla/stats")
        assert response.status_code == 200
        assert response.json()["policies_total"] == 1

    @pytest.mark.asyncio
    async def test_stats_period_must_be_ordered(self, client):
        response = await client.get(
            "/sla/stats",
            params={"start": T0.isoformat(), "end": (T0 - timedelta(days=1)).isoformat()}
        )
        assert response.status_code == 422


class TestServiceEndpoints:

    @pytest.mark.asyncio
    async def test_health(self, client):
        from helpdesk_sla.main import app

        app.state.database_ready = True
        try:
            response = await client.get("/health")
        finally:
            del app.state.database_ready
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"] == "connected"
        assert body["checks"]["sla_scheduler"] == "stopped"

    @pytest.mark.asyncio
    async def test_health_without_database(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["checks"]["database"] == "unavailable"

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["docs"] == "/docs"

    @pytest.mark.asyncio
    async def test_correlation_id_is_echoed(self, client):
        response = await client.get("/", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"
