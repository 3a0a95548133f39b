"""
Tests for the HTTP dispatchers, circuit breaker, policy file watcher and scheduler.
"""
import asyncio
import json

import httpx
import pytest

from helpdesk_sla.sla.infrastructure import (
    CircuitBreaker,
    HttpNotificationDispatcher,
    HttpWebhookDispatcher,
    PolicyFileWatcher,
    SLAScheduler,
    YAMLPolicyLoader,
)


URL = "http://notifications.test/api/notify"


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class Recorder:
    """MockTransport handler answering with a fixed status code."""

    def __init__(self, status_code=200):
        self.status_code = status_code
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status_code, json={})


class TestHttpDispatcher:

    @pytest.mark.asyncio
    async def test_success(self):
        recorder = Recorder(200)
        dispatcher = HttpNotificationDispatcher(URL, client=mock_client(recorder), backoff_base=0)

        assert await dispatcher.send({"hello": "world"}) is True
        assert len(recorder.requests) == 1
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_retries_then_gives_up(self):
        recorder = Recorder(500)
        dispatcher = HttpNotificationDispatcher(
            URL, client=mock_client(recorder), max_retries=3, backoff_base=0
        )

        assert await dispatcher.send({"hello": "world"}) is False
        assert len(recorder.requests) == 3
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 2:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(204)

        dispatcher = HttpNotificationDispatcher(URL, client=mock_client(handler), backoff_base=0)

        assert await dispatcher.send({}) is True
        assert len(attempts) == 2
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_open_circuit_skips_requests(self):
        recorder = Recorder(503)
        dispatcher = HttpNotificationDispatcher(
            URL,
            client=mock_client(recorder),
            max_retries=1,
            backoff_base=0,
            circuit_breaker=CircuitBreaker(failure_threshold=2, recovery_timeout=600)
        )

        await dispatcher.send({})
        await dispatcher.send({})
        assert len(recorder.requests) == 2

        assert await dispatcher.send({}) is False
        assert len(recorder.requests) == 2
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_unconfigured_url(self):
        recorder = Recorder(200)
        dispatcher = HttpWebhookDispatcher(None, client=mock_client(recorder))

        assert not dispatcher.is_configured
        assert await dispatcher.send({}) is False
        await dispatcher.trigger("sla.breached", {"ticket_id": "TICKET-001"})
        await dispatcher.drain()
        assert recorder.requests == []
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_notification_body(self):
        recorder = Recorder(200)
        dispatcher = HttpNotificationDispatcher(URL, client=mock_client(recorder), backoff_base=0)

        await dispatcher.notify("agent-1", {"type": "sla_risk", "ticket_id": "TICKET-001"})
        await dispatcher.drain()

        [request] = recorder.requests
        assert json.loads(request.content) == {
            "user_id": "agent-1",
            "type": "sla_risk",
            "ticket_id": "TICKET-001",
        }
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_webhook_body(self):
        recorder = Recorder(200)
        dispatcher = HttpWebhookDispatcher(
            "http://hooks.test/sla", client=mock_client(recorder), backoff_base=0
        )

        await dispatcher.trigger("sla.at_risk", {"ticket_id": "TICKET-001", "level": "level1"})
        await dispatcher.drain()

        [request] = recorder.requests
        body = json.loads(request.content)
        assert body["event"] == "sla.at_risk"
        assert body["data"] == {"ticket_id": "TICKET-001", "level": "level1"}
        assert "timestamp" in body
        await dispatcher.close()


class TestCircuitBreaker:

    def test_half_open_after_recovery_timeout(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()
        assert breaker.state == "half_open"
        assert breaker.allow_request()

    def test_success_closes(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=600)
        breaker.record_failure()
        assert not breaker.allow_request()
        breaker.record_success()
        assert breaker.state == "closed"


class TestPolicyFileWatcher:

    @pytest.mark.asyncio
    async def test_reload_hands_policies_to_the_loop(self, tmp_path):
        path = tmp_path / "sla_policies.yaml"
        path.write_text("policies:\n  - name: Standard\n    is_default: true\n")
        received = []
        applied = asyncio.Event()

        async def on_change(policies):
            received.extend(policies)
            applied.set()

        watcher = PolicyFileWatcher(
            YAMLPolicyLoader(path), on_change, loop=asyncio.get_running_loop()
        )

        assert watcher.reload() is True
        await asyncio.wait_for(applied.wait(), timeout=1)
        assert [p.name for p in received] == ["Standard"]

    @pytest.mark.asyncio
    async def test_invalid_file_is_not_applied(self, tmp_path):
        path = tmp_path / "sla_policies.yaml"
        path.write_text("policies:\n  - name: Broken\n    timezone: Nowhere/Special\n")

        async def on_change(policies):
            raise AssertionError("invalid policies must not be applied")

        watcher = PolicyFileWatcher(
            YAMLPolicyLoader(path), on_change, loop=asyncio.get_running_loop()
        )
        assert watcher.reload() is False

    @pytest.mark.asyncio
    async def test_missing_file_is_not_watched(self, tmp_path):
        async def on_change(policies):
            pass

        watcher = PolicyFileWatcher(YAMLPolicyLoader(tmp_path / "absent.yaml"), on_change)
        watcher.start_watching()
        assert not watcher.is_watching
        watcher.stop_watching()


class TestScheduler:

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        async def job():
            pass

        scheduler = SLAScheduler(interval_seconds=3600)
        await scheduler.start(job)
        assert scheduler.is_running

        await scheduler.stop()
        assert not scheduler.is_running
