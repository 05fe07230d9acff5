"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from civic_sla.config import IssueCategory, IssuePriority, IssueStatus, NotificationKind
from civic_sla.core import ResourceNotFoundException, ValidationException
from civic_sla.sla.domain import (
    DeadlineResolver,
    IssueSLARecord,
    ResolvedDeadline,
    SLACalculator,
    SLAEvaluation,
    SLAPolicyTable,
    ensure_utc,
)
from civic_sla.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class UpdateResult(str, Enum):
    """Outcome of a conditional issue status write."""
    APPLIED = "applied"
    CONDITION_FAILED = "condition_failed"
    ERROR = "error"


class IIssueRepository(ABC):
    """Interface for issue store access."""

    @abstractmethod
    async def list_open_issues_with_deadlines(self) -> List[IssueSLARecord]:
        """List non-terminal issues that have an SLA deadline."""

    @abstractmethod
    async def update_issue_status(
        self,
        issue_id: str,
        status: IssueStatus,
        escalated_at: datetime
    ) -> UpdateResult:
        """
        Write status and escalated_at only if escalated_at is currently unset
        and the issue is not terminal.
        """

    @abstractmethod
    async def get_by_id(self, issue_id: str) -> Optional[IssueSLARecord]:
        """Get issue by ID."""

    @abstractmethod
    async def create(self, record: IssueSLARecord) -> IssueSLARecord:
        """
        Persist a new issue record.

        Raises:
            ValidationException: If an issue with the same id already exists
        """

    @abstractmethod
    async def list_issues(self, filters: Optional[Dict[str, Any]] = None) -> List[IssueSLARecord]:
        """List issues (any status) matching filters."""


class INotificationDispatcher(ABC):
    """Interface for outbound notification delivery."""

    @abstractmethod
    async def dispatch(
        self,
        kind: NotificationKind,
        issue_id: str,
        recipient: str,
        metadata: Dict[str, Any]
    ) -> bool:
        """Deliver one notification. Returns True on success."""


class ISLAPolicyProvider(ABC):
    """Interface for SLA policy table access."""

    @abstractmethod
    def get_policy(self) -> SLAPolicyTable:
        """Get current SLA policy table."""


class StaticPolicyProvider(ISLAPolicyProvider):
    """Policy provider over a fixed, already-loaded table."""

    def __init__(self, policy: Optional[SLAPolicyTable] = None):
        self._policy = policy or SLAPolicyTable()

    def get_policy(self) -> SLAPolicyTable:
        return self._policy


# ========== Application Services ==========

class SLAService:
    """
    Service for deadline assignment and live SLA evaluation.

    Coordinates between domain logic and data access.
    """

    def __init__(
        self,
        issue_repository: Optional[IIssueRepository],
        policy_provider: ISLAPolicyProvider
    ):
        self._issue_repo = issue_repository
        self._policy_provider = policy_provider

    @property
    def resolver(self) -> DeadlineResolver:
        return DeadlineResolver(self._policy_provider.get_policy())

    def resolve_deadline(
        self,
        category: IssueCategory,
        priority: IssuePriority,
        area: str,
        created_at: datetime
    ) -> ResolvedDeadline:
        """Preview the deadline an issue would receive."""
        return self.resolver.resolve_deadline(category, priority, area, ensure_utc(created_at))

    async def register_issue(
        self,
        issue_id: str,
        category: IssueCategory,
        priority: IssuePriority,
        area: str,
        created_at: Optional[datetime] = None,
        title: str = ""
    ) -> Tuple[IssueSLARecord, ResolvedDeadline]:
        """
        Register a new issue and persist its computed SLA deadline.

        Raises:
            ValidationException: If the issue is already registered
        """
        if self._issue_repo is None:
            raise ValueError("Issue repository not configured")

        if await self._issue_repo.get_by_id(issue_id) is not None:
            raise ValidationException(
                f"Issue {issue_id} is already registered",
                {"issue_id": issue_id}
            )

        created_at = ensure_utc(created_at) or datetime.now(timezone.utc)
        resolved = self.resolve_deadline(category, priority, area, created_at)

        record = IssueSLARecord(
            id=issue_id,
            category=category,
            priority=priority,
            area=area,
            status=IssueStatus.PENDING,
            created_at=created_at,
            sla_deadline=resolved.deadline,
            title=title
        )
        record = await self._issue_repo.create(record)

        logger.info(
            "Issue registered with SLA deadline",
            extra={
                "issue_id": issue_id,
                "category": category.value,
                "priority": priority.value,
                "area": area,
                "target_hours": resolved.target_hours,
                "area_override": resolved.area_override_applied,
                "sla_deadline": resolved.deadline.isoformat()
            }
        )
        return record, resolved

    def evaluate(self, record: IssueSLARecord, now: Optional[datetime] = None) -> SLAEvaluation:
        """Calculate the live SLA view of a record."""
        now = ensure_utc(now) or datetime.now(timezone.utc)
        record.check_invariants()

        escalation_hours = self.resolver.escalation_threshold_hours(record.category, record.priority)
        deadline = record.sla_deadline
        target_hours = (deadline - record.created_at).total_seconds() / 3600

        return SLAEvaluation(
            issue_id=record.id,
            status=SLACalculator.classify(now, deadline, escalation_hours, record.resolved_at),
            evaluated_at=now,
            deadline=deadline,
            target_hours=round(target_hours, 4),
            escalation_threshold_hours=escalation_hours,
            hours_remaining=SLACalculator.hours_remaining(now, deadline),
            progress_percent=SLACalculator.progress_percent(record.created_at, deadline, now),
            is_escalated=record.is_escalated
        )

    async def get_issue_evaluation(
        self,
        issue_id: str,
        now: Optional[datetime] = None
    ) -> Tuple[IssueSLARecord, SLAEvaluation]:
        """
        Load an issue and evaluate it.

        Raises:
            ResourceNotFoundException: If the issue does not exist
        """
        if self._issue_repo is None:
            raise ValueError("Issue repository not configured")

        record = await self._issue_repo.get_by_id(issue_id)
        if record is None:
            raise ResourceNotFoundException("Issue", issue_id)

        return record, self.evaluate(record, now)
