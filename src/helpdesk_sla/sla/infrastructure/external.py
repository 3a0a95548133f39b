"""
SLA External Service Integrations
==================================

External services for the SLA engine:
- HTTP notification and webhook dispatchers
- YAML policy file watcher
- APScheduler for the periodic sweep
"""

import asyncio
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk_sla.core import ApplicationException, DispatchFailure
from helpdesk_sla.sla.application.interfaces import INotificationDispatcher, IWebhookDispatcher
from helpdesk_sla.sla.domain import SLAPolicy
from helpdesk_sla.sla.infrastructure.repositories import YAMLPolicyLoader
from helpdesk_sla.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Policy File Watcher ==========

class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, watcher: "PolicyFileWatcher", policy_path: Path):
        self.watcher = watcher
        self.policy_path = policy_path
        super().__init__()

    def _is_policy_file(self, event) -> bool:
        if event.is_directory:
            return False
        return Path(event.src_path).resolve() == self.policy_path.resolve()

    def on_modified(self, event):
        """Handle file modification event."""
        if self._is_policy_file(event):
            logger.info("SLA policy file changed", extra={"path": str(event.src_path)})
            self.watcher.reload()

    def on_created(self, event):
        if self._is_policy_file(event):
            logger.info("SLA policy file created", extra={"path": str(event.src_path)})
            self.watcher.reload()


class PolicyFileWatcher:
    """
    Re-syncs policies into the database when the policy file changes.

    Watchdog callbacks run on the observer thread; the sync coroutine is
    handed to the application event loop.
    """

    def __init__(
        self,
        loader: YAMLPolicyLoader,
        on_change: Callable[[List[SLAPolicy]], Awaitable[Any]],
        loop: Optional[asyncio.AbstractEventLoop] = None
    ):
        self._loader = loader
        self._on_change = on_change
        self._loop = loop
        self._lock = threading.Lock()
        self._observer = None

    def reload(self) -> bool:
        """Parse the file and schedule the sync; False when the file is invalid."""
        try:
            with self._lock:
                policies = self._loader.load()
        except ApplicationException as e:
            logger.error("Failed to reload SLA policy file", extra={"error": e.message})
            return False

        if self._loop is None or self._loop.is_closed():
            logger.warning("No event loop to apply SLA policy changes")
            return False

        asyncio.run_coroutine_threadsafe(self._on_change(policies), self._loop)
        logger.info("SLA policy reload scheduled", extra={"policies": len(policies)})
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skips watching if the file doesn't exist or the platform has no
        usable file notification (e.g. some container filesystems).
        """
        path = self._loader.path
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        if not path.exists():
            logger.info("SLA policy file doesn't exist, skipping file watch", extra={"path": str(path)})
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, path)
            self._observer.schedule(handler, str(path.resolve().parent), recursive=False)
            self._observer.start()
            logger.info("Started watching SLA policy file", extra={"path": str(path)})
        except OSError as e:
            logger.warning("File watching not available, policies are static", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def is_watching(self) -> bool:
        return self._observer is not None


# ========== Circuit Breaker ==========

class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


# ========== HTTP Dispatchers ==========

class HttpDispatcher:
    """
    JSON-over-HTTP delivery with circuit breaker and retry logic.

    Sends run as background tasks so callers never wait on the network:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        service_name: str,
        url: Optional[str],
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self.service_name = service_name
        self._url = url
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._http_client = client
        self._circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_configured(self) -> bool:
        return bool(self._url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _spawn(self, body: Dict[str, Any], context: Dict[str, Any]) -> None:
        if not self.is_configured:
            logger.debug(f"{self.service_name} URL not configured, skipping", extra=context)
            return

        task = asyncio.create_task(self.send(body, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def send(self, body: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> bool:
        """
        POST a JSON body.

        Returns:
            True if delivered, False otherwise (failures are logged, never raised)
        """
        context = context or {}
        if not self.is_configured:
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(f"Circuit breaker open, skipping {self.service_name} delivery", extra=context)
            return False

        last_error = "no attempt made"
        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._url, json=body)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(f"{self.service_name} delivered", extra=context)
                    return True

                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    f"{self.service_name} returned non-2xx",
                    extra={"status_code": response.status_code, "attempt": attempt + 1, **context}
                )
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(
                    f"{self.service_name} request failed",
                    extra={"error": last_error, "attempt": attempt + 1, **context}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * 2 ** attempt)

        self._circuit_breaker.record_failure()
        failure = DispatchFailure(self.service_name, f"delivery failed after {self._max_retries} attempts: {last_error}")
        logger.error(failure.message, extra=context)
        return False

    async def drain(self) -> None:
        """Wait for in-flight deliveries."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Drain pending sends and close HTTP client."""
        await self.drain()
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class HttpNotificationDispatcher(HttpDispatcher, INotificationDispatcher):
    """Posts user notifications to the notification service."""

    def __init__(self, url: Optional[str], **kwargs):
        super().__init__("notification", url, **kwargs)

    async def notify(self, user_id: str, payload: Dict[str, Any]) -> None:
        self._spawn(
            {"user_id": user_id, **payload},
            {"user_id": user_id, "ticket_id": payload.get("ticket_id"), "type": payload.get("type")}
        )


class HttpWebhookDispatcher(HttpDispatcher, IWebhookDispatcher):
    """Posts outbound webhook events."""

    def __init__(self, url: Optional[str], **kwargs):
        super().__init__("webhook", url, **kwargs)

    async def trigger(self, event_name: str, payload: Dict[str, Any]) -> None:
        self._spawn(
            {
                "event": event_name,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "data": payload,
            },
            {"event": event_name, "ticket_id": payload.get("ticket_id")}
        )


# ========== Scheduler ==========

class SLAScheduler:
    """
    Wrapper for APScheduler running the periodic SLA sweep.

    Manages the lifecycle of the scheduler and jobs.
    """

    def __init__(self, interval_seconds: int = 120):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_sweep",
            name="SLA Sweep Job",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
