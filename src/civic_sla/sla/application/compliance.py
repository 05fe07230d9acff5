"""
Compliance Aggregation
======================

Read-only summary statistics over a snapshot of issues, for reporting.
"""

import asyncio
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from civic_sla.config import IssuePriority, IssueStatus
from civic_sla.core import InvariantViolationException, RepositoryException, StoreUnavailableException
from civic_sla.sla.application.services import IIssueRepository, ISLAPolicyProvider
from civic_sla.sla.domain import (
    ComplianceReport,
    DeadlineResolver,
    IssueSLARecord,
    SLACalculator,
    ensure_utc,
)
from civic_sla.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)


class ComplianceAggregator:
    """
    Derives compliance statistics from issue records.

    Compliance is measured over issues whose SLA outcome is decided: every
    resolved issue, plus every unresolved issue already past its deadline.
    Malformed records are skipped and counted, never raised.
    """

    def __init__(self, resolver: Optional[DeadlineResolver] = None):
        self._resolver = resolver

    def summarize(
        self,
        issues: Iterable[IssueSLARecord],
        now: Optional[datetime] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        area: Optional[str] = None
    ) -> ComplianceReport:
        now = ensure_utc(now) or datetime.now(timezone.utc)
        start = ensure_utc(start)
        end = ensure_utc(end)
        report = ComplianceReport(generated_at=now)

        by_status: Counter = Counter()
        by_priority: Counter = Counter()
        by_category: Counter = Counter()
        by_area: Counter = Counter()
        by_sla_status: Counter = Counter()

        resolution_hours_total = 0.0
        open_breached = 0

        for issue in issues:
            if area is not None and issue.area != area:
                continue
            if start is not None and issue.created_at < start:
                continue
            if end is not None and issue.created_at >= end:
                continue

            try:
                issue.check_invariants()
            except InvariantViolationException as e:
                report.skipped += 1
                logger.warning(
                    "Skipping malformed issue in compliance report",
                    extra={"issue_id": issue.id, "reason": e.reason}
                )
                continue

            report.total += 1
            by_status[issue.status.value] += 1
            by_priority[issue.priority.value] += 1
            by_category[issue.category.value] += 1
            by_area[issue.area] += 1

            if issue.is_escalated or issue.status == IssueStatus.ESCALATED:
                report.escalated += 1

            if issue.resolved_at is not None:
                report.resolved += 1
                resolution_hours_total += (issue.resolved_at - issue.created_at).total_seconds() / 3600
                if issue.resolved_at <= issue.sla_deadline:
                    report.compliant_resolved += 1
                else:
                    report.breached += 1
            elif not issue.is_terminal:
                if now > issue.sla_deadline:
                    open_breached += 1
                    report.breached += 1
                if issue.priority == IssuePriority.CRITICAL:
                    report.open_critical += 1

            if self._resolver is not None:
                escalation_hours = self._resolver.escalation_threshold_hours(
                    issue.category, issue.priority
                )
                sla_status = SLACalculator.classify(
                    now, issue.sla_deadline, escalation_hours, issue.resolved_at
                )
                by_sla_status[sla_status.value] += 1

        decided = report.resolved + open_breached
        if decided:
            report.compliance_percent = round(report.compliant_resolved / decided * 100, 2)
        if report.resolved:
            report.average_resolution_hours = round(resolution_hours_total / report.resolved, 2)

        report.by_status = dict(by_status)
        report.by_priority = dict(by_priority)
        report.by_category = dict(by_category)
        report.by_area = dict(by_area)
        report.by_sla_status = dict(by_sla_status)
        return report


class ComplianceService:
    """Loads a snapshot from the issue store and summarizes it."""

    def __init__(
        self,
        issue_repository: IIssueRepository,
        policy_provider: ISLAPolicyProvider,
        store_timeout: float = 10.0
    ):
        self._issue_repo = issue_repository
        self._policy_provider = policy_provider
        self._store_timeout = store_timeout

    async def get_report(
        self,
        now: Optional[datetime] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        area: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None
    ) -> ComplianceReport:
        """
        Raises:
            StoreUnavailableException: If the snapshot cannot be read
        """
        query = dict(filters or {})
        if area is not None:
            query["area"] = area

        try:
            issues = await asyncio.wait_for(
                self._issue_repo.list_issues(query),
                timeout=self._store_timeout
            )
        except (asyncio.TimeoutError, RepositoryException) as e:
            raise StoreUnavailableException("list_issues", str(e) or type(e).__name__) from e

        aggregator = ComplianceAggregator(DeadlineResolver(self._policy_provider.get_policy()))
        with log_latency(logger, "compliance_report", issues=len(issues), area=area):
            return aggregator.summarize(issues, now=now, start=start, end=end, area=area)
