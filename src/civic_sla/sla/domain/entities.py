"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from civic_sla.config import (
    IssueCategory, IssuePriority, IssueStatus, NotificationKind, SLAStatus,
    TERMINAL_STATUSES
)
from civic_sla.core import InvariantViolationException


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and normalize aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class IssueSLARecord:
    """
    The SLA-relevant subset of a municipal issue.

    ``sla_deadline`` is computed once when the issue is registered.
    ``escalated_at`` is set exactly once, by the escalation monitor, and is
    the guard against repeated escalation.
    """

    id: str
    category: IssueCategory
    priority: IssuePriority
    area: str
    status: IssueStatus
    created_at: datetime
    sla_deadline: Optional[datetime]

    resolved_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    title: str = ""

    def __post_init__(self):
        self.created_at = ensure_utc(self.created_at)
        self.sla_deadline = ensure_utc(self.sla_deadline)
        self.resolved_at = ensure_utc(self.resolved_at)
        self.escalated_at = ensure_utc(self.escalated_at)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_escalated(self) -> bool:
        return self.escalated_at is not None

    def check_invariants(self) -> None:
        """
        Raise InvariantViolationException if the record is inconsistent.

        Checked by the monitor before any classification or write.
        """
        if self.sla_deadline is None:
            raise InvariantViolationException(self.id, "sla_deadline is not set")
        if self.sla_deadline <= self.created_at:
            raise InvariantViolationException(
                self.id, "sla_deadline is not after created_at",
                {"created_at": self.created_at.isoformat(),
                 "sla_deadline": self.sla_deadline.isoformat()}
            )
        if self.resolved_at is not None and self.resolved_at < self.created_at:
            raise InvariantViolationException(self.id, "resolved_at is before created_at")

    def mark_escalated(self, timestamp: Optional[datetime] = None) -> bool:
        """Apply the breach transition. Returns False if already escalated or terminal."""
        if self.escalated_at is not None or self.is_terminal:
            return False
        self.escalated_at = ensure_utc(timestamp) or datetime.now(timezone.utc)
        self.status = IssueStatus.ESCALATED
        return True


@dataclass
class EscalationCooldown:
    """
    Per-issue notification rate-limiting state.

    Owned by the escalation monitor; never exposed outside it.
    """

    last_warning_sent_at: Optional[datetime] = None
    last_critical_warning_sent_at: Optional[datetime] = None
    last_escalation_sent_at: Optional[datetime] = None

    _FIELDS = {
        NotificationKind.WARNING: "last_warning_sent_at",
        NotificationKind.CRITICAL_WARNING: "last_critical_warning_sent_at",
        NotificationKind.ESCALATION: "last_escalation_sent_at",
        NotificationKind.REMINDER: "last_escalation_sent_at",
    }

    def last_sent(self, kind: NotificationKind) -> Optional[datetime]:
        return getattr(self, self._FIELDS[kind])

    def record(self, kind: NotificationKind, timestamp: Optional[datetime]) -> None:
        setattr(self, self._FIELDS[kind], timestamp)


@dataclass
class SLAEvaluation:
    """
    Live SLA view of one issue at a point in time.
    """

    issue_id: str
    status: SLAStatus
    evaluated_at: datetime
    deadline: datetime
    target_hours: float
    escalation_threshold_hours: float
    hours_remaining: float
    progress_percent: float
    is_escalated: bool = False

    @property
    def hours_overdue(self) -> float:
        return max(0.0, -self.hours_remaining)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "issue_id": self.issue_id,
            "status": self.status.value,
            "evaluated_at": self.evaluated_at.isoformat(),
            "deadline": self.deadline.isoformat(),
            "target_hours": self.target_hours,
            "escalation_threshold_hours": self.escalation_threshold_hours,
            "hours_remaining": round(max(0.0, self.hours_remaining), 2),
            "hours_overdue": round(self.hours_overdue, 2),
            "progress_percent": round(self.progress_percent, 1),
            "is_escalated": self.is_escalated,
        }


@dataclass
class SweepReport:
    """Outcome of one escalation sweep or observation."""

    sweep_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    issues_seen: int = 0
    issues_evaluated: int = 0
    issues_skipped: int = 0
    transitions: int = 0
    transition_conflicts: int = 0
    dispatch_failures: int = 0
    invariant_violations: int = 0
    store_unavailable: bool = False
    notifications: Counter = field(default_factory=Counter)
    statuses: Counter = field(default_factory=Counter)
    errors: List[str] = field(default_factory=list)

    def merge(self, other: "SweepReport") -> None:
        self.issues_evaluated += other.issues_evaluated
        self.issues_skipped += other.issues_skipped
        self.transitions += other.transitions
        self.transition_conflicts += other.transition_conflicts
        self.dispatch_failures += other.dispatch_failures
        self.invariant_violations += other.invariant_violations
        self.notifications.update(other.notifications)
        self.statuses.update(other.statuses)
        self.errors.extend(other.errors)

    def to_dict(self) -> dict:
        return {
            "sweep_id": self.sweep_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "issues_seen": self.issues_seen,
            "issues_evaluated": self.issues_evaluated,
            "issues_skipped": self.issues_skipped,
            "transitions": self.transitions,
            "transition_conflicts": self.transition_conflicts,
            "dispatch_failures": self.dispatch_failures,
            "invariant_violations": self.invariant_violations,
            "store_unavailable": self.store_unavailable,
            "notifications": {k.value if hasattr(k, "value") else k: v
                              for k, v in self.notifications.items()},
            "statuses": {k.value if hasattr(k, "value") else k: v
                         for k, v in self.statuses.items()},
            "errors": list(self.errors),
        }


@dataclass
class ComplianceReport:
    """Summary statistics over a snapshot of issues."""

    generated_at: datetime
    total: int = 0
    resolved: int = 0
    compliant_resolved: int = 0
    breached: int = 0
    escalated: int = 0
    open_critical: int = 0
    skipped: int = 0
    compliance_percent: float = 100.0
    average_resolution_hours: float = 0.0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_priority: Dict[str, int] = field(default_factory=dict)
    by_category: Dict[str, int] = field(default_factory=dict)
    by_area: Dict[str, int] = field(default_factory=dict)
    by_sla_status: Dict[str, int] = field(default_factory=dict)
