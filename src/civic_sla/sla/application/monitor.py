"""
Escalation Monitor
==================

The only SLA component that performs writes.

Each sweep samples the open issues, classifies them and:
- sends rate-limited warning / critical-warning notifications
- performs the guarded breach -> escalated transition and announces it once
- sends hourly reminders for issues that stay breached after escalation

Several monitors may sweep the same issue set concurrently. The escalation
transition is a conditional write in the issue store, so only one observer
ever applies it and only that observer sends the escalation notification.
Cooldowns for the other notification kinds are best-effort and may be held
in process memory; losing them on restart costs at most one extra
notification per issue.
"""

import asyncio
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, Optional
from uuid import uuid4

from civic_sla.config import IssuePriority, IssueStatus, NotificationKind, SLAStatus, Settings
from civic_sla.core import (
    ExternalServiceException,
    InvariantViolationException,
    RepositoryException,
    ResourceNotFoundException,
    StoreUnavailableException,
)
from civic_sla.sla.application.services import (
    IIssueRepository,
    INotificationDispatcher,
    ISLAPolicyProvider,
    UpdateResult,
)
from civic_sla.sla.domain import (
    DeadlineResolver,
    EscalationCooldown,
    IssueSLARecord,
    SLACalculator,
    SweepReport,
)
from civic_sla.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CooldownClaim:
    """A claimed notification slot that can be handed back on failure."""
    issue_id: str
    kind: NotificationKind
    previous: Optional[datetime]
    claimed_at: datetime


class CooldownRegistry:
    """
    Keyed store of per-issue notification cooldowns.

    Claims are check-and-set under a lock, so two sweeps sharing a registry
    never both win the same slot.
    """

    def __init__(self):
        self._entries: Dict[str, EscalationCooldown] = {}
        self._lock = threading.Lock()

    def claim(
        self,
        issue_id: str,
        kind: NotificationKind,
        now: datetime,
        window: timedelta,
        floor: Optional[datetime] = None
    ) -> Optional[CooldownClaim]:
        """
        Claim the slot for ``kind`` if its cooldown has expired.

        ``floor`` is an extra reference time the window is also measured
        from (the persisted escalation time for reminders).
        """
        with self._lock:
            entry = self._entries.setdefault(issue_id, EscalationCooldown())
            previous = entry.last_sent(kind)
            references = [t for t in (previous, floor) if t is not None]
            if references and now - max(references) < window:
                return None
            entry.record(kind, now)
            return CooldownClaim(issue_id, kind, previous, now)

    def record(self, issue_id: str, kind: NotificationKind, timestamp: datetime) -> None:
        """Unconditionally record a send."""
        with self._lock:
            self._entries.setdefault(issue_id, EscalationCooldown()).record(kind, timestamp)

    def release(self, claim: CooldownClaim) -> None:
        """Hand a slot back unless someone else has claimed it since."""
        with self._lock:
            entry = self._entries.get(claim.issue_id)
            if entry is not None and entry.last_sent(claim.kind) == claim.claimed_at:
                entry.record(claim.kind, claim.previous)

    def get(self, issue_id: str) -> Optional[EscalationCooldown]:
        with self._lock:
            entry = self._entries.get(issue_id)
            if entry is None:
                return None
            return EscalationCooldown(
                last_warning_sent_at=entry.last_warning_sent_at,
                last_critical_warning_sent_at=entry.last_critical_warning_sent_at,
                last_escalation_sent_at=entry.last_escalation_sent_at,
            )

    def prune(self, open_issue_ids: Iterable[str]) -> int:
        """Forget issues that are no longer open. Returns how many were dropped."""
        keep = set(open_issue_ids)
        with self._lock:
            stale = [issue_id for issue_id in self._entries if issue_id not in keep]
            for issue_id in stale:
                del self._entries[issue_id]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


class EscalationMonitor:
    """
    Periodic SLA re-evaluation with at-most-once escalation.

    Drive it with ``sweep()`` from a scheduler, or with ``observe()`` for an
    externally triggered look at a single issue. Both paths share the same
    per-issue logic and invariants.
    """

    def __init__(
        self,
        issue_repository: IIssueRepository,
        dispatcher: INotificationDispatcher,
        policy_provider: ISLAPolicyProvider,
        cooldowns: Optional[CooldownRegistry] = None,
        *,
        warning_cooldown: timedelta = timedelta(hours=4),
        critical_warning_cooldown: timedelta = timedelta(hours=4),
        reminder_cooldown: timedelta = timedelta(hours=1),
        store_timeout: float = 10.0,
        dispatch_timeout: float = 10.0,
        max_retries: int = 3,
        retry_base_delay: float = 0.5,
        store_alert_after_sweeps: int = 3,
        max_concurrency: int = 10,
        auto_escalation: bool = True,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._issue_repo = issue_repository
        self._dispatcher = dispatcher
        self._policy_provider = policy_provider
        self._cooldowns = cooldowns or CooldownRegistry()
        self._cooldown_windows = {
            NotificationKind.WARNING: warning_cooldown,
            NotificationKind.CRITICAL_WARNING: critical_warning_cooldown,
            NotificationKind.REMINDER: reminder_cooldown,
        }
        self._store_timeout = store_timeout
        self._dispatch_timeout = dispatch_timeout
        self._max_retries = max(1, max_retries)
        self._retry_base_delay = retry_base_delay
        self._store_alert_after_sweeps = store_alert_after_sweeps
        self._max_concurrency = max_concurrency
        self._auto_escalation = auto_escalation
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._consecutive_store_failures = 0
        self._last_report: Optional[SweepReport] = None

    @classmethod
    def from_settings(
        cls,
        issue_repository: IIssueRepository,
        dispatcher: INotificationDispatcher,
        policy_provider: ISLAPolicyProvider,
        settings: Settings,
        cooldowns: Optional[CooldownRegistry] = None
    ) -> "EscalationMonitor":
        return cls(
            issue_repository,
            dispatcher,
            policy_provider,
            cooldowns,
            warning_cooldown=timedelta(hours=settings.sla_warning_cooldown_hours),
            critical_warning_cooldown=timedelta(hours=settings.sla_critical_warning_cooldown_hours),
            reminder_cooldown=timedelta(hours=settings.sla_reminder_cooldown_hours),
            store_timeout=settings.sla_store_timeout_seconds,
            dispatch_timeout=settings.sla_dispatch_timeout_seconds,
            max_retries=settings.sla_transition_max_retries,
            retry_base_delay=settings.sla_retry_base_delay_seconds,
            store_alert_after_sweeps=settings.sla_store_alert_after_sweeps,
            max_concurrency=settings.sla_max_concurrency,
            auto_escalation=settings.sla_auto_escalation,
        )

    @property
    def auto_escalation(self) -> bool:
        return self._auto_escalation

    @property
    def cooldowns(self) -> CooldownRegistry:
        return self._cooldowns

    @property
    def consecutive_store_failures(self) -> int:
        return self._consecutive_store_failures

    @property
    def store_degraded(self) -> bool:
        """True once the store has failed for the configured number of sweeps in a row."""
        return self._consecutive_store_failures >= self._store_alert_after_sweeps

    @property
    def last_report(self) -> Optional[SweepReport]:
        return self._last_report

    # ========== Driving modes ==========

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Evaluate every open issue once."""
        now = now or self._clock()
        sweep_id = uuid4().hex[:12]
        log = get_context_logger(__name__, sweep_id=sweep_id)
        report = SweepReport(sweep_id=sweep_id, started_at=now)

        try:
            issues = await asyncio.wait_for(
                self._issue_repo.list_open_issues_with_deadlines(),
                timeout=self._store_timeout
            )
        except (asyncio.TimeoutError, RepositoryException) as e:
            self._record_store_failure(e, log)
            report.store_unavailable = True
            report.errors.append(f"list_open_issues: {e or type(e).__name__}")
            report.finished_at = self._clock()
            self._last_report = report
            return report

        if self._consecutive_store_failures:
            log.info(
                "Issue store reachable again",
                extra={"failed_sweeps": self._consecutive_store_failures}
            )
        self._consecutive_store_failures = 0
        report.issues_seen = len(issues)

        resolver = DeadlineResolver(self._policy_provider.get_policy())
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def bounded(issue: IssueSLARecord) -> SweepReport:
            async with semaphore:
                return await self._process_issue(issue, now, resolver, log)

        results = await asyncio.gather(
            *(bounded(issue) for issue in issues),
            return_exceptions=True
        )

        for issue, result in zip(issues, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                report.issues_skipped += 1
                report.errors.append(f"{issue.id}: {type(result).__name__}: {result}")
                log.error(
                    "Unexpected error while processing issue",
                    extra={"issue_id": issue.id, "error": str(result)},
                    exc_info=result
                )
                continue
            report.merge(result)

        self._cooldowns.prune(issue.id for issue in issues)
        report.finished_at = self._clock()
        self._last_report = report

        log.info(
            "Escalation sweep complete",
            extra={
                "issues_seen": report.issues_seen,
                "issues_evaluated": report.issues_evaluated,
                "issues_skipped": report.issues_skipped,
                "transitions": report.transitions,
                "notifications": dict(report.notifications),
                "dispatch_failures": report.dispatch_failures,
            }
        )
        return report

    async def observe(self, issue_id: str, now: Optional[datetime] = None) -> SweepReport:
        """
        Evaluate a single issue on demand.

        Raises:
            ResourceNotFoundException: If the issue does not exist
            StoreUnavailableException: If the store cannot be read
        """
        now = now or self._clock()
        sweep_id = uuid4().hex[:12]
        log = get_context_logger(__name__, sweep_id=sweep_id)

        try:
            issue = await asyncio.wait_for(
                self._issue_repo.get_by_id(issue_id),
                timeout=self._store_timeout
            )
        except (asyncio.TimeoutError, RepositoryException) as e:
            raise StoreUnavailableException("get_by_id", str(e) or type(e).__name__) from e

        if issue is None:
            raise ResourceNotFoundException("Issue", issue_id)

        report = SweepReport(sweep_id=sweep_id, started_at=now, issues_seen=1)
        if issue.is_terminal:
            report.statuses[SLAStatus.SETTLED.value] += 1
            report.finished_at = self._clock()
            return report

        resolver = DeadlineResolver(self._policy_provider.get_policy())
        report.merge(await self._process_issue(issue, now, resolver, log))
        report.finished_at = self._clock()
        return report

    # ========== Per-issue logic ==========

    async def _process_issue(
        self,
        issue: IssueSLARecord,
        now: datetime,
        resolver: DeadlineResolver,
        log
    ) -> SweepReport:
        partial = SweepReport(sweep_id="", started_at=now)

        try:
            if issue.is_terminal:
                raise InvariantViolationException(issue.id, "terminal issue reached the monitor")
            issue.check_invariants()
        except InvariantViolationException as e:
            partial.invariant_violations += 1
            partial.issues_skipped += 1
            partial.errors.append(e.message)
            log.error(
                "Skipping issue with invariant violation",
                extra={"issue_id": issue.id, "reason": e.reason}
            )
            return partial

        escalation_hours = resolver.escalation_threshold_hours(issue.category, issue.priority)
        status = SLACalculator.classify(now, issue.sla_deadline, escalation_hours, issue.resolved_at)
        hours_remaining = SLACalculator.hours_remaining(now, issue.sla_deadline)

        partial.issues_evaluated += 1
        partial.statuses[status.value] += 1

        if status == SLAStatus.WARNING:
            await self._notify(issue, NotificationKind.WARNING, now, hours_remaining,
                               resolver, partial, log)
        elif status == SLAStatus.CRITICAL and issue.priority == IssuePriority.CRITICAL:
            await self._notify(issue, NotificationKind.CRITICAL_WARNING, now, hours_remaining,
                               resolver, partial, log)
        elif status == SLAStatus.BREACHED:
            await self._handle_breach(issue, now, hours_remaining, resolver, partial, log)

        return partial

    async def _handle_breach(
        self,
        issue: IssueSLARecord,
        now: datetime,
        hours_remaining: float,
        resolver: DeadlineResolver,
        partial: SweepReport,
        log
    ) -> None:
        if issue.escalated_at is not None:
            await self._notify(issue, NotificationKind.REMINDER, now, hours_remaining,
                               resolver, partial, log, floor=issue.escalated_at)
            return

        if not self._auto_escalation:
            # Breach is announced but the status write is left to an operator.
            await self._notify(issue, NotificationKind.REMINDER, now, hours_remaining,
                               resolver, partial, log)
            return

        result = await self._transition_to_escalated(issue, now, log)

        if result == UpdateResult.CONDITION_FAILED:
            partial.transition_conflicts += 1
            log.info(
                "Escalation already recorded by another observer",
                extra={"issue_id": issue.id}
            )
            return

        if result != UpdateResult.APPLIED:
            partial.issues_skipped += 1
            partial.errors.append(f"{issue.id}: escalation transition failed")
            return

        issue.mark_escalated(now)
        partial.transitions += 1
        log.info(
            "Issue escalated after SLA breach",
            extra={
                "issue_id": issue.id,
                "hours_overdue": round(-hours_remaining, 2),
                "priority": issue.priority.value,
                "area": issue.area
            }
        )

        # escalated_at is set from here on, so a failed announcement is not retried.
        self._cooldowns.record(issue.id, NotificationKind.ESCALATION, now)
        delivered = await self._dispatch(issue, NotificationKind.ESCALATION, now,
                                         hours_remaining, resolver, partial, log)
        if not delivered:
            log.error(
                "Escalation notification not delivered",
                extra={"issue_id": issue.id}
            )

    async def _transition_to_escalated(
        self,
        issue: IssueSLARecord,
        now: datetime,
        log
    ) -> UpdateResult:
        for attempt in range(self._max_retries):
            try:
                result = await asyncio.wait_for(
                    self._issue_repo.update_issue_status(issue.id, IssueStatus.ESCALATED, now),
                    timeout=self._store_timeout
                )
            except (asyncio.TimeoutError, RepositoryException) as e:
                log.warning(
                    "Escalation write failed",
                    extra={
                        "issue_id": issue.id,
                        "attempt": attempt + 1,
                        "error": str(e) or type(e).__name__
                    }
                )
                result = UpdateResult.ERROR

            if result != UpdateResult.ERROR:
                return result

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_base_delay * (2 ** attempt))

        log.error(
            "Escalation write exhausted retries, will retry next sweep",
            extra={"issue_id": issue.id, "attempts": self._max_retries}
        )
        return UpdateResult.ERROR

    async def _notify(
        self,
        issue: IssueSLARecord,
        kind: NotificationKind,
        now: datetime,
        hours_remaining: float,
        resolver: DeadlineResolver,
        partial: SweepReport,
        log,
        floor: Optional[datetime] = None
    ) -> bool:
        claim = self._cooldowns.claim(issue.id, kind, now, self._cooldown_windows[kind], floor)
        if claim is None:
            return False

        delivered = False
        try:
            delivered = await self._dispatch(issue, kind, now, hours_remaining, resolver, partial, log)
        finally:
            if not delivered:
                self._cooldowns.release(claim)
        return delivered

    async def _dispatch(
        self,
        issue: IssueSLARecord,
        kind: NotificationKind,
        now: datetime,
        hours_remaining: float,
        resolver: DeadlineResolver,
        partial: SweepReport,
        log
    ) -> bool:
        recipients = resolver.policy.get_recipients(kind)
        if not recipients:
            log.debug(
                "No recipients configured for notification kind",
                extra={"issue_id": issue.id, "kind": kind.value}
            )
            return False

        metadata = self.build_metadata(issue, hours_remaining, now)
        delivered = False

        for recipient in recipients:
            try:
                ok = await asyncio.wait_for(
                    self._dispatcher.dispatch(kind, issue.id, recipient, metadata),
                    timeout=self._dispatch_timeout
                )
            except (asyncio.TimeoutError, ExternalServiceException) as e:
                log.error(
                    "Notification dispatch raised",
                    extra={
                        "issue_id": issue.id,
                        "kind": kind.value,
                        "recipient": recipient,
                        "error": str(e) or type(e).__name__
                    }
                )
                ok = False
            except Exception as e:
                log.exception(
                    "Notification dispatcher failed unexpectedly",
                    extra={
                        "issue_id": issue.id,
                        "kind": kind.value,
                        "recipient": recipient,
                        "error_type": type(e).__name__
                    }
                )
                ok = False

            if ok:
                delivered = True
            else:
                partial.dispatch_failures += 1
                log.error(
                    "Notification dispatch failed",
                    extra={"issue_id": issue.id, "kind": kind.value, "recipient": recipient}
                )

        if delivered:
            partial.notifications[kind.value] += 1
        return delivered

    @staticmethod
    def build_metadata(issue: IssueSLARecord, hours_remaining: float, now: datetime) -> dict:
        """Notification payload describing the issue at ``now``."""
        return {
            "title": issue.title,
            "area": issue.area,
            "priority": issue.priority.value,
            "category": issue.category.value,
            "status": issue.status.value,
            "sla_deadline": issue.sla_deadline.isoformat(),
            "hours_remaining": round(max(0.0, hours_remaining), 2),
            "hours_overdue": round(max(0.0, -hours_remaining), 2),
            "escalated_at": issue.escalated_at.isoformat() if issue.escalated_at else None,
            "evaluated_at": now.isoformat(),
        }

    def _record_store_failure(self, error: BaseException, log) -> None:
        self._consecutive_store_failures += 1
        extra = {
            "consecutive_failures": self._consecutive_store_failures,
            "error": str(error) or type(error).__name__
        }
        if self.store_degraded:
            log.error("Issue store unavailable across consecutive sweeps", extra=extra)
        else:
            log.warning("Issue store unavailable, skipping sweep", extra=extra)
