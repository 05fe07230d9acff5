"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from civic_sla.config import IssueCategory, IssuePriority, IssueStatus


# ========== Type Aliases for Literals ==========
SLAStatusStr = Literal["compliant", "warning", "critical", "breached", "settled"]


# ========== Request DTOs ==========

class IssueRegisterDTO(BaseModel):
    """DTO for registering an issue and assigning its SLA deadline."""
    id: str = Field(..., min_length=1, description="Unique issue ID")
    category: IssueCategory = Field(..., description="Issue category")
    priority: IssuePriority = Field(..., description="Issue priority")
    area: str = Field(..., min_length=1, description="Area identifier")
    title: str = Field(default="", description="Issue title used in notifications")
    created_at: Optional[datetime] = Field(None, description="Creation time (defaults to now)")


class ComplianceQueryDTO(BaseModel):
    """Query parameters for the compliance report."""
    area: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


# ========== Response DTOs ==========

class DeadlineResponse(BaseModel):
    """Resolved SLA policy for an issue."""
    deadline: datetime
    target_hours: float
    escalation_threshold_hours: float
    area_override_applied: bool


class SLAStatusResponse(BaseModel):
    """Live SLA view of an issue."""
    status: SLAStatusStr = Field(..., description="Current SLA classification")
    evaluated_at: datetime
    deadline: datetime
    target_hours: float
    escalation_threshold_hours: float
    hours_remaining: float = Field(..., description="Hours left (0 once breached)")
    hours_overdue: float = Field(..., description="Hours past the deadline (0 before it)")
    progress_percent: float = Field(..., description="Share of the SLA window consumed")
    is_escalated: bool


class IssueSLAResponse(BaseModel):
    """Response model for issue SLA information."""
    issue_id: str
    title: str
    category: IssueCategory
    priority: IssuePriority
    area: str
    status: IssueStatus
    created_at: datetime
    sla_deadline: Optional[datetime]
    resolved_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    sla: SLAStatusResponse


class IssueRegisterResponse(BaseModel):
    """Response model for issue registration."""
    issue_id: str
    status: IssueStatus
    created_at: datetime
    policy: DeadlineResponse


class SweepResponse(BaseModel):
    """Outcome of a sweep or single observation."""
    sweep_id: str
    started_at: datetime
    finished_at: Optional[datetime]
    issues_seen: int
    issues_evaluated: int
    issues_skipped: int
    transitions: int
    transition_conflicts: int
    dispatch_failures: int
    invariant_violations: int
    store_unavailable: bool
    notifications: Dict[str, int] = Field(default_factory=dict)
    statuses: Dict[str, int] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


class ComplianceResponse(BaseModel):
    """Compliance summary for reporting."""
    generated_at: datetime
    total: int
    resolved: int
    compliant_resolved: int
    breached: int
    escalated: int
    open_critical: int
    skipped: int
    compliance_percent: float = Field(..., description="Percent of decided issues resolved on time")
    average_resolution_hours: float
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    by_category: Dict[str, int]
    by_area: Dict[str, int]
    by_sla_status: Dict[str, int]
