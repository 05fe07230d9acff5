"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from civic_sla.config import IssueCategory, IssuePriority, IssueStatus
from civic_sla.infrastructure.database import Base


class IssueModel(Base):
    """
    Database model for the SLA-relevant columns of an issue.

    Maps to the 'issues' table.
    """
    __tablename__ = "issues"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # SLA attributes
    category: Mapped[str] = mapped_column(String(50), nullable=False, default=IssueCategory.OTHER.value)
    priority: Mapped[str] = mapped_column(String(50), nullable=False, default=IssuePriority.MEDIUM.value)
    area: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=IssueStatus.PENDING.value)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Set once by the escalation monitor; guards the breach transition
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_issues_status_deadline", "status", "sla_deadline"),
    )
