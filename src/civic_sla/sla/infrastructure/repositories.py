"""
SLA Infrastructure Repositories
=================================

Concrete implementations of the issue store interface.

- SQLAlchemyIssueRepository: async SQLAlchemy, conditional UPDATE for the
  escalation transition
- InMemoryIssueRepository: lock-guarded compare-and-set, for single-process
  deployments and tests
"""

import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from civic_sla.config import (
    IssueCategory, IssuePriority, IssueStatus, OPEN_STATUSES, TERMINAL_STATUSES
)
from civic_sla.core import RepositoryException, ValidationException
from civic_sla.sla.application import IIssueRepository, UpdateResult
from civic_sla.sla.domain import IssueSLARecord
from civic_sla.sla.infrastructure.models import IssueModel
from civic_sla.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]
_OPEN_VALUES = [s.value for s in OPEN_STATUSES]


def _to_record(model: IssueModel) -> IssueSLARecord:
    return IssueSLARecord(
        id=model.id,
        category=IssueCategory(model.category),
        priority=IssuePriority(model.priority),
        area=model.area,
        status=IssueStatus(model.status),
        created_at=model.created_at,
        sla_deadline=model.sla_deadline,
        resolved_at=model.resolved_at,
        escalated_at=model.escalated_at,
        title=model.title or ""
    )


def _matches(record: IssueSLARecord, filters: Dict[str, Any]) -> bool:
    for key in ("area", "category", "priority", "status"):
        if key not in filters:
            continue
        wanted = filters[key]
        value = getattr(record, key)
        value = getattr(value, "value", value)
        if isinstance(wanted, (list, tuple, set)):
            if value not in [getattr(w, "value", w) for w in wanted]:
                return False
        elif value != getattr(wanted, "value", wanted):
            return False
    return True


class SQLAlchemyIssueRepository(IIssueRepository):
    """
    SQLAlchemy implementation of the issue repository.

    Opens one session per operation so concurrent per-issue tasks never
    share an AsyncSession.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def list_open_issues_with_deadlines(self) -> List[IssueSLARecord]:
        stmt = (
            select(IssueModel)
            .where(IssueModel.status.in_(_OPEN_VALUES))
            .where(IssueModel.sla_deadline.is_not(None))
            .order_by(IssueModel.sla_deadline.asc())
        )
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return [_to_record(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to list open issues: {e}") from e

    async def update_issue_status(
        self,
        issue_id: str,
        status: IssueStatus,
        escalated_at: datetime
    ) -> UpdateResult:
        stmt = (
            update(IssueModel)
            .where(IssueModel.id == issue_id)
            .where(IssueModel.escalated_at.is_(None))
            .where(IssueModel.status.not_in(_TERMINAL_VALUES))
            .values(status=status.value, escalated_at=escalated_at)
            .execution_options(synchronize_session=False)
        )
        async with self._session_maker() as session:
            try:
                result = await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.warning(
                    "Conditional status update failed",
                    extra={"issue_id": issue_id, "error": str(e)}
                )
                return UpdateResult.ERROR

        if result.rowcount == 1:
            return UpdateResult.APPLIED
        return UpdateResult.CONDITION_FAILED

    async def get_by_id(self, issue_id: str) -> Optional[IssueSLARecord]:
        try:
            async with self._session_maker() as session:
                model = await session.get(IssueModel, issue_id)
                return _to_record(model) if model is not None else None
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to load issue {issue_id}: {e}") from e

    async def create(self, record: IssueSLARecord) -> IssueSLARecord:
        model = IssueModel(
            id=record.id,
            category=record.category.value,
            priority=record.priority.value,
            area=record.area,
            status=record.status.value,
            title=record.title,
            created_at=record.created_at,
            sla_deadline=record.sla_deadline,
            resolved_at=record.resolved_at,
            escalated_at=record.escalated_at
        )
        async with self._session_maker() as session:
            try:
                session.add(model)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValidationException(
                    f"Issue {record.id} already exists",
                    {"issue_id": record.id}
                ) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise RepositoryException(f"Failed to create issue {record.id}: {e}") from e
        return record

    async def list_issues(self, filters: Optional[Dict[str, Any]] = None) -> List[IssueSLARecord]:
        filters = filters or {}
        stmt = select(IssueModel)

        for key in ("area", "category", "priority", "status"):
            if key not in filters:
                continue
            column = getattr(IssueModel, key)
            wanted = filters[key]
            if isinstance(wanted, (list, tuple, set)):
                stmt = stmt.where(column.in_([getattr(w, "value", w) for w in wanted]))
            else:
                stmt = stmt.where(column == getattr(wanted, "value", wanted))

        stmt = stmt.order_by(IssueModel.created_at.desc())

        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return [_to_record(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to list issues: {e}") from e


class InMemoryIssueRepository(IIssueRepository):
    """
    Process-local issue store.

    Every read returns copies, so observers only see state through the
    repository and the conditional update is a true compare-and-set.
    """

    def __init__(self, records: Optional[List[IssueSLARecord]] = None):
        self._records: Dict[str, IssueSLARecord] = {}
        self._lock = threading.Lock()
        for record in records or []:
            self._records[record.id] = replace(record)

    async def list_open_issues_with_deadlines(self) -> List[IssueSLARecord]:
        with self._lock:
            return [
                replace(r) for r in self._records.values()
                if r.status in OPEN_STATUSES and r.sla_deadline is not None
            ]

    async def update_issue_status(
        self,
        issue_id: str,
        status: IssueStatus,
        escalated_at: datetime
    ) -> UpdateResult:
        with self._lock:
            record = self._records.get(issue_id)
            if record is None or record.escalated_at is not None or record.is_terminal:
                return UpdateResult.CONDITION_FAILED
            self._records[issue_id] = replace(record, status=status, escalated_at=escalated_at)
            return UpdateResult.APPLIED

    async def get_by_id(self, issue_id: str) -> Optional[IssueSLARecord]:
        with self._lock:
            record = self._records.get(issue_id)
            return replace(record) if record is not None else None

    async def create(self, record: IssueSLARecord) -> IssueSLARecord:
        with self._lock:
            if record.id in self._records:
                raise ValidationException(f"Issue {record.id} already exists")
            self._records[record.id] = replace(record)
        return record

    async def list_issues(self, filters: Optional[Dict[str, Any]] = None) -> List[IssueSLARecord]:
        filters = filters or {}
        with self._lock:
            return [replace(r) for r in self._records.values() if _matches(r, filters)]

    def resolve(self, issue_id: str, resolved_at: datetime) -> None:
        """Manual resolution by an external actor (sets resolved_at once)."""
        with self._lock:
            record = self._records[issue_id]
            self._records[issue_id] = replace(
                record,
                status=IssueStatus.RESOLVED,
                resolved_at=record.resolved_at or resolved_at
            )
