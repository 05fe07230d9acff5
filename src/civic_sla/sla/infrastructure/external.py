"""
SLA External Service Integrations
==================================

External services for SLA monitoring:
- Webhook notification dispatch
- YAML policy table loading (with optional watchdog hot-reload)
- APScheduler for background escalation sweeps
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from civic_sla.config import NotificationKind, settings
from civic_sla.core import ConfigurationException, DispatchFailureException
from civic_sla.sla.application import INotificationDispatcher, ISLAPolicyProvider
from civic_sla.sla.domain import SLAPolicyTable
from civic_sla.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, policy_manager: "SLAPolicyManager", policy_path: Path):
        self.policy_manager = policy_manager
        self.policy_path = policy_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.policy_path.resolve():
            logger.info(f"Policy file changed: {event.src_path}")
            self.policy_manager.reload()


class SLAPolicyManager(ISLAPolicyProvider):
    """
    Thread-safe SLA policy table manager.

    Loads the table once at start. With hot-reload enabled, watchdog
    monitors the file and swaps in a new table; deadlines already persisted
    on issues are never recomputed.
    """

    def __init__(self):
        self._policy: Optional[SLAPolicyTable] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAPolicyTable:
        """
        Initial policy load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = path
        try:
            policy = self._load_from_file(path)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA policy file {path}: {e}",
                {"path": str(path)}
            ) from e
        with self._lock:
            self._policy = policy
        return policy

    def _load_from_file(self, path: Path) -> SLAPolicyTable:
        """Load and parse YAML policy file."""
        if not path.exists():
            logger.warning(f"SLA policy file not found: {path}, using defaults")
            return SLAPolicyTable()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return SLAPolicyTable(**data)

    def reload(self) -> bool:
        """Reload policy from file, keeping the current table on failure."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(f"Failed to reload SLA policy: {e}")
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("SLA policy reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skips watching if the file doesn't exist or the platform has no
        file notification support.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                f"Policy file doesn't exist, skipping file watch: {self._path}. "
                "Using default SLA policy."
            )
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info(f"Started watching policy file: {self._path}")
        except OSError as e:
            logger.warning(
                f"File watching not available, using static policy: {e}"
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching the policy file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def policy(self) -> SLAPolicyTable:
        """Get current policy table."""
        with self._lock:
            if self._policy is None:
                raise RuntimeError("SLA policy not loaded")
            return self._policy

    def get_policy(self) -> SLAPolicyTable:
        return self.policy


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
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
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


@dataclass(frozen=True)
class NotificationTemplate:
    title: str
    message: str
    severity: str


NOTIFICATION_TEMPLATES: Dict[NotificationKind, NotificationTemplate] = {
    NotificationKind.WARNING: NotificationTemplate(
        title="SLA Deadline Approaching",
        message='Issue "{title}" SLA deadline is approaching. {hours_remaining} hours remaining.',
        severity="high"
    ),
    NotificationKind.CRITICAL_WARNING: NotificationTemplate(
        title="Critical Issue Nearing SLA Deadline",
        message='Critical issue "{title}" in {area} has {hours_remaining} hours left before breach.',
        severity="critical"
    ),
    NotificationKind.ESCALATION: NotificationTemplate(
        title="SLA Breached - Immediate Action Required",
        message='Issue "{title}" has breached SLA deadline. Escalation initiated.',
        severity="critical"
    ),
    NotificationKind.REMINDER: NotificationTemplate(
        title="SLA Breach Reminder",
        message='Issue "{title}" is {hours_overdue} hours past its SLA deadline and still open.',
        severity="critical"
    ),
}


def _format_hours(value: Optional[float]) -> str:
    """One decimal, without a trailing ``.0`` (``0.7``, ``12``)."""
    return f"{round(float(value or 0), 1):g}"


class WebhookNotificationDispatcher(INotificationDispatcher):
    """
    Webhook notification client with circuit breaker and retry logic.

    Handles sending structured SLA notifications with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        issue_url_template: Optional[str] = None,
        retry_base_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self._timeout = timeout_seconds or settings.notification_timeout_seconds
        self._max_retries = max_retries or settings.notification_max_retries
        self._issue_url_template = issue_url_template or settings.issue_url_template
        self._retry_base_delay = retry_base_delay
        self._transport = transport
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport
            )
        return self._http_client

    def build_message(
        self,
        kind: NotificationKind,
        issue_id: str,
        recipient: str,
        metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Build the JSON payload for one notification.

        Raises:
            DispatchFailureException: If no template exists for the kind
        """
        template = NOTIFICATION_TEMPLATES.get(kind)
        if template is None:
            raise DispatchFailureException(
                f"No notification template for {kind}",
                {"issue_id": issue_id, "recipient": recipient}
            )
        fields = {
            "title": metadata.get("title") or issue_id,
            "area": metadata.get("area", ""),
            "hours_remaining": _format_hours(metadata.get("hours_remaining")),
            "hours_overdue": _format_hours(metadata.get("hours_overdue")),
        }

        return {
            "kind": kind.value,
            "issue_id": issue_id,
            "recipient_role": recipient,
            "title": template.title,
            "message": template.message.format(**fields),
            "severity": template.severity,
            "channels": ["push", "email"],
            "url": self._issue_url_template.format(issue_id=issue_id),
            "metadata": metadata,
        }

    async def dispatch(
        self,
        kind: NotificationKind,
        issue_id: str,
        recipient: str,
        metadata: Dict[str, Any]
    ) -> bool:
        """
        Send a notification to the webhook.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self._webhook_url:
            logger.info(
                "Notification webhook not configured, logging notification only",
                extra={"issue_id": issue_id, "kind": kind.value, "recipient": recipient}
            )
            return True

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping notification",
                extra={"issue_id": issue_id, "kind": kind.value}
            )
            return False

        message = self.build_message(kind, issue_id, recipient, metadata)

        try:
            return await self._send_with_retries(message, kind, issue_id, recipient)
        except asyncio.CancelledError:
            # A cancelled delivery counts against the circuit.
            self._circuit_breaker.record_failure()
            logger.warning(
                "Notification cancelled before delivery",
                extra={
                    "issue_id": issue_id,
                    "kind": kind.value,
                    "circuit_state": self._circuit_breaker.state
                }
            )
            raise

    async def _send_with_retries(
        self,
        message: Dict[str, Any],
        kind: NotificationKind,
        issue_id: str,
        recipient: str
    ) -> bool:
        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification sent",
                        extra={
                            "issue_id": issue_id,
                            "kind": kind.value,
                            "recipient": recipient
                        }
                    )
                    return True

                logger.warning(
                    "Notification webhook returned non-2xx",
                    extra={
                        "status_code": response.status_code,
                        "attempt": attempt + 1
                    }
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Notification request failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "issue_id": issue_id
                    }
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_base_delay * (2 ** attempt))

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SLAScheduler:
    """
    Wrapper for APScheduler for background escalation sweeps.

    Manages the lifecycle of the scheduler and jobs. A sweep never overlaps
    with the previous one (max_instances=1).
    """

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        if self.interval_seconds <= 0:
            logger.info("SLA scheduler disabled (interval is 0)")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_escalation_sweep",
            name="SLA Escalation Sweep",
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
        """Stop scheduling future sweeps; an in-flight sweep completes."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
