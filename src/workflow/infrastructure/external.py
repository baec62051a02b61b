"""
Workflow External Integrations
===============================

External services around the escalation sweep:
- YAML escalation policy with watchdog hot reload
- Slack webhook notification sink
- APScheduler timer driving the sweep
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.config import MIN_TICK_INTERVAL_SECONDS, NotificationType
from src.core import ConfigurationException, NotificationException
from src.shared.infrastructure.logging import get_logger, log_latency
from src.workflow.application import EscalationService, INotificationSink, IPolicyProvider
from src.workflow.domain import (
    EscalationEvent, EscalationPolicy, NotificationEvent, SLABatchEvent, SweepReport
)

logger = get_logger(__name__)


# ========== Escalation Policy ==========

class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for policy file changes."""

    def __init__(self, config_manager: "PolicyConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def _matches(self, event) -> bool:
        if event.is_directory:
            return False
        return Path(event.src_path).resolve() == self.config_path.resolve()

    def on_modified(self, event):
        if self._matches(event):
            logger.info("Policy file changed", extra={"path": event.src_path})
            self.config_manager.reload()

    def on_created(self, event):
        # Editors that save by rename surface as a create
        if self._matches(event):
            logger.info("Policy file created", extra={"path": event.src_path})
            self.config_manager.reload()


class StaticPolicyProvider(IPolicyProvider):
    """Policy provider returning a fixed policy."""

    def __init__(self, policy: Optional[EscalationPolicy] = None):
        self._policy = policy or EscalationPolicy()

    def get_policy(self) -> EscalationPolicy:
        return self._policy


class PolicyConfigManager(IPolicyProvider):
    """
    Thread-safe escalation policy with hot-reload support.

    Values from the YAML file override the defaults passed in (normally
    built from Settings). Keys that are missing or null keep the default.
    A file that fails to parse is fatal on first load; on reload it is
    logged and the previous policy stays active.
    """

    def __init__(self, defaults: Optional[EscalationPolicy] = None):
        self._defaults = defaults or EscalationPolicy()
        self._policy: Optional[EscalationPolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> EscalationPolicy:
        """
        Initial policy load.

        Raises:
            ConfigurationException: File exists but is not a valid policy
        """
        self._path = Path(path)
        policy = self._load_from_file(self._path)
        with self._lock:
            self._policy = policy
        logger.info("Escalation policy loaded", extra={"path": str(self._path), **policy.model_dump()})
        return policy

    def _load_from_file(self, path: Path) -> EscalationPolicy:
        if not path.exists():
            logger.warning("Policy file not found, using defaults", extra={"path": str(path)})
            return self._defaults

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationException(f"Cannot read policy file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationException(f"Policy file {path} must contain a mapping")

        section = data.get("escalation", data)
        if section is None:
            return self._defaults
        if not isinstance(section, dict):
            raise ConfigurationException(f"'escalation' in {path} must be a mapping")

        overrides = {key: value for key, value in section.items() if value is not None}
        try:
            return EscalationPolicy(**{**self._defaults.model_dump(), **overrides})
        except (ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid escalation policy in {path}",
                {"error": str(e)}
            ) from e

    def reload(self) -> bool:
        """Reload the policy file; keeps the current policy on failure."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error(
                "Failed to reload escalation policy, keeping previous",
                extra={"path": str(self._path), "error": e.message, **e.details}
            )
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("Escalation policy reloaded", extra=new_policy.model_dump())
        return True

    def get_policy(self) -> EscalationPolicy:
        with self._lock:
            if self._policy is None:
                return self._defaults
            return self._policy

    def start_watching(self) -> None:
        """
        Start watching the policy file's directory for changes.

        Skips watching when the directory does not exist or the platform
        cannot provide file events.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if self._observer is not None:
            return

        directory = self._path.resolve().parent
        if not directory.exists():
            logger.info("Policy directory missing, skipping file watch", extra={"path": str(directory)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(ConfigFileHandler(self, self._path), str(directory), recursive=False)
            self._observer.start()
            logger.info("Started watching policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
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


# ========== Notification Gateway ==========

class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker in front of the notification gateway.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
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


_HEADERS = {
    NotificationType.SLA_VIOLATION: "\U0001F6A8 SLA Breach",
    NotificationType.SLA_WARNING: "\u26A0\uFE0F SLA Warning",
    NotificationType.ESCALATION: "\U0001F53A Incident Escalated",
}

# Slack rejects very long sections; longer batches are summarized
MAX_LISTED_INCIDENTS = 20


class SlackNotificationSink(INotificationSink):
    """
    Slack webhook notification sink with circuit breaker and retry logic.

    Raises NotificationException once every attempt has failed so the
    escalation sweep can release its claim and retry on the next tick.
    """

    def __init__(
        self,
        webhook_url: str,
        channel: str,
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._channel = channel
        self._timeout_seconds = timeout_seconds
        self._max_retries = max(1, max_retries)
        self._backoff_seconds = backoff_seconds
        self._circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._http_client

    def build_message(self, event: NotificationEvent) -> Dict[str, Any]:
        """Build a Slack Block Kit message for an event."""
        header = _HEADERS.get(event.type, event.type.value)

        if isinstance(event, EscalationEvent):
            fields = [
                {"type": "mrkdwn", "text": f"*Incident:*\n{event.incident_id}"},
                {"type": "mrkdwn", "text": f"*Assignee:*\n{event.assignee or 'Unassigned'}"},
            ]
            if event.title:
                fields.insert(1, {"type": "mrkdwn", "text": f"*Title:*\n{event.title}"})
            body = {"type": "section", "fields": fields}
            fallback = f"{header}: {event.incident_id}"
        elif isinstance(event, SLABatchEvent):
            listed = event.incident_ids[:MAX_LISTED_INCIDENTS]
            lines = "\n".join(f"• {incident_id}" for incident_id in listed)
            hidden = len(event.incident_ids) - len(listed)
            if hidden > 0:
                lines += f"\n_and {hidden} more_"
            body = {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"*{len(event.incident_ids)} incident(s):*\n{lines}"
                }
            }
            fallback = f"{header}: {len(event.incident_ids)} incident(s)"
        else:
            body = {"type": "section", "text": {"type": "mrkdwn", "text": event.type.value}}
            fallback = header

        blocks = [
            {"type": "header", "text": {"type": "plain_text", "text": header, "emoji": True}},
            body,
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"Triggered: {event.triggered_at.isoformat()}"}
                ]
            },
        ]

        return {"channel": self._channel, "text": fallback, "blocks": blocks}

    async def send(self, event: NotificationEvent) -> None:
        if not self._circuit_breaker.allow_request():
            raise NotificationException(
                "Circuit breaker open",
                {"event_type": event.type.value}
            )

        message = self.build_message(event)
        last_error = "no attempt made"

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Slack notification sent",
                        extra={"event_type": event.type.value, "attempt": attempt + 1}
                    )
                    return

                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.error(
                    "Slack notification failed",
                    extra={"error": last_error, "attempt": attempt + 1, "event_type": event.type.value}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_seconds * 2 ** attempt)

        self._circuit_breaker.record_failure()
        raise NotificationException(
            f"Delivery failed after {self._max_retries} attempts: {last_error}",
            {"event_type": event.type.value}
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class LoggingNotificationSink(INotificationSink):
    """Notification sink that writes events to the log (no gateway configured)."""

    async def send(self, event: NotificationEvent) -> None:
        logger.warning("Notification", extra=event.to_dict())


# ========== Scheduler ==========

class EscalationScheduler:
    """
    Periodic driver for the escalation sweep.

    Wraps APScheduler. The sweep runs once immediately on ``start()`` and
    then every ``interval_seconds``. Ticks never overlap: a tick that fires
    while another is still running is dropped.
    """

    JOB_ID = "escalation_sweep"

    def __init__(self, escalation_service: EscalationService, interval_seconds: int = 60):
        if interval_seconds < MIN_TICK_INTERVAL_SECONDS:
            logger.warning(
                "Tick interval below floor, using minimum",
                extra={"requested": interval_seconds, "minimum": MIN_TICK_INTERVAL_SECONDS}
            )
            interval_seconds = MIN_TICK_INTERVAL_SECONDS

        self.interval_seconds = interval_seconds
        self._service = escalation_service
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._tick_lock = asyncio.Lock()
        self.last_report: Optional[SweepReport] = None

    async def start(self) -> None:
        """Run one sweep now and schedule the rest."""
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._running = True
        await self.run_tick()
        if not self._running:
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_tick,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="Escalation Sweep",
            misfire_grace_time=self.interval_seconds,
            coalesce=True,
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()

        logger.info(
            "Escalation scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Cancel future ticks and wait for an in-flight tick to finish."""
        if not self._running:
            return

        self._running = False
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        async with self._tick_lock:
            pass

        logger.info("Escalation scheduler stopped")

    async def run_tick(self) -> Optional[SweepReport]:
        """
        Run one sweep unless one is already in progress.

        Returns:
            The sweep report, or None when the tick was skipped or failed
        """
        if self._tick_lock.locked():
            logger.warning("Escalation sweep still running, skipping tick")
            return None

        async with self._tick_lock:
            try:
                with log_latency(logger, "escalation_sweep", interval_seconds=self.interval_seconds):
                    report = await self._service.run_sweep()
            except Exception as e:
                logger.error(
                    "Escalation sweep crashed",
                    extra={"error": str(e), "error_type": type(e).__name__}
                )
                return None

        self.last_report = report
        log = logger.info if report.succeeded else logger.warning
        log("Escalation sweep finished", extra=report.to_dict())
        return report

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_lock.locked()
