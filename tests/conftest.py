from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from civic_sla.config import IssueCategory, IssuePriority, IssueStatus, NotificationKind
from civic_sla.core import DispatchFailureException
from civic_sla.sla.application import (
    EscalationMonitor,
    INotificationDispatcher,
    StaticPolicyProvider,
)
from civic_sla.sla.domain import IssueSLARecord, SLAPolicyTable
from civic_sla.sla.infrastructure import InMemoryIssueRepository

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def hours(n: float) -> timedelta:
    return timedelta(hours=n)


def make_issue(
    issue_id: str = "ISSUE-1",
    category: IssueCategory = IssueCategory.POTHOLE,
    priority: IssuePriority = IssuePriority.HIGH,
    area: str = "unlisted_ward",
    status: IssueStatus = IssueStatus.PENDING,
    created_at: datetime = T0,
    target_hours: Optional[float] = 24,
    **kwargs
) -> IssueSLARecord:
    """Issue with deadline created_at + target_hours (pothole/high defaults: 24h target, 36h escalation)."""
    deadline = created_at + hours(target_hours) if target_hours is not None else None
    return IssueSLARecord(
        id=issue_id,
        category=category,
        priority=priority,
        area=area,
        status=status,
        created_at=created_at,
        sla_deadline=kwargs.pop("sla_deadline", deadline),
        title=kwargs.pop("title", f"Issue {issue_id}"),
        **kwargs
    )


class RecordingDispatcher(INotificationDispatcher):
    """Dispatcher double that records every call."""

    def __init__(self):
        self.calls: List[Tuple[NotificationKind, str, str, Dict[str, Any]]] = []
        self.fail_kinds: Set[NotificationKind] = set()
        self.raise_kinds: Set[NotificationKind] = set()
        self.error_kinds: Set[NotificationKind] = set()

    async def dispatch(self, kind, issue_id, recipient, metadata) -> bool:
        self.calls.append((kind, issue_id, recipient, metadata))
        if kind in self.raise_kinds:
            raise DispatchFailureException("connection reset")
        if kind in self.error_kinds:
            raise RuntimeError("dispatcher bug")
        return kind not in self.fail_kinds

    def kinds(self) -> List[NotificationKind]:
        return [call[0] for call in self.calls]

    def recipients(self, kind: NotificationKind) -> List[str]:
        return [call[2] for call in self.calls if call[0] == kind]


@pytest.fixture
def policy() -> SLAPolicyTable:
    return SLAPolicyTable()


@pytest.fixture
def policy_provider(policy) -> StaticPolicyProvider:
    return StaticPolicyProvider(policy)


@pytest.fixture
def repo() -> InMemoryIssueRepository:
    return InMemoryIssueRepository()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def monitor_factory(dispatcher, policy_provider):
    def build(issue_repository, **overrides) -> EscalationMonitor:
        options = {
            "retry_base_delay": 0,
            "store_timeout": 1.0,
            "dispatch_timeout": 1.0,
            "clock": lambda: T0,
        }
        options.update(overrides)
        target_dispatcher = options.pop("dispatcher", dispatcher)
        return EscalationMonitor(issue_repository, target_dispatcher, policy_provider, **options)

    return build
