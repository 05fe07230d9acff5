"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.

Contains the policy table, the deadline resolver and the SLA classifier.
The resolver and classifier are pure: safe to call from any number of
concurrent callers without coordination.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from civic_sla.config import (
    IssueCategory, IssuePriority, NotificationKind, RecipientRole, SLAStatus
)
from civic_sla.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

FALLBACK_TARGET_HOURS = 72
FALLBACK_ESCALATION_HOURS = 96


class PolicyTarget(BaseModel):
    """Target and escalation lead time, in hours, for one (category, priority)."""
    target_hours: float = Field(gt=0, description="Hours until the SLA deadline")
    escalation_hours: float = Field(gt=0, description="Warning lead time in hours")


class AreaPolicy(BaseModel):
    """Per-area target overrides. Priority and population are informational only."""
    priority: Literal["high", "medium", "low"] = "medium"
    population: int = Field(default=0, ge=0)
    targets: Dict[IssueCategory, float] = Field(default_factory=dict)

    def target_for(self, category: IssueCategory) -> Optional[float]:
        hours = self.targets.get(category)
        if hours is not None and hours <= 0:
            return None
        return hours


class EscalationRule(BaseModel):
    """Recipients of one notification kind."""
    notify_roles: List[str] = Field(default_factory=list)


def _targets(low, medium, high, critical) -> Dict[IssuePriority, PolicyTarget]:
    return {
        IssuePriority.LOW: PolicyTarget(target_hours=low[0], escalation_hours=low[1]),
        IssuePriority.MEDIUM: PolicyTarget(target_hours=medium[0], escalation_hours=medium[1]),
        IssuePriority.HIGH: PolicyTarget(target_hours=high[0], escalation_hours=high[1]),
        IssuePriority.CRITICAL: PolicyTarget(target_hours=critical[0], escalation_hours=critical[1]),
    }


def _default_categories() -> Dict[IssueCategory, Dict[IssuePriority, PolicyTarget]]:
    return {
        IssueCategory.POTHOLE: _targets((72, 96), (48, 60), (24, 36), (12, 18)),
        IssueCategory.STREET_LIGHT: _targets((96, 120), (72, 84), (48, 60), (24, 30)),
        IssueCategory.WATER_LEAK: _targets((48, 60), (24, 36), (12, 18), (6, 12)),
        IssueCategory.TRAFFIC_SIGNAL: _targets((48, 60), (24, 30), (12, 18), (6, 12)),
        IssueCategory.SIDEWALK: _targets((72, 96), (48, 60), (24, 36), (12, 18)),
        IssueCategory.DRAINAGE: _targets((48, 60), (24, 36), (12, 18), (6, 12)),
        IssueCategory.DEBRIS: _targets((24, 36), (12, 18), (6, 12), (3, 6)),
        IssueCategory.OTHER: _targets((72, 96), (48, 60), (24, 36), (12, 18)),
    }


_HIGH_PRIORITY_AREA_TARGETS = {
    IssueCategory.POTHOLE: 24,
    IssueCategory.STREET_LIGHT: 48,
    IssueCategory.WATER_LEAK: 24,
    IssueCategory.TRAFFIC_SIGNAL: 72,
    IssueCategory.SIDEWALK: 48,
    IssueCategory.DRAINAGE: 48,
    IssueCategory.DEBRIS: 24,
    IssueCategory.OTHER: 72,
}

_MEDIUM_PRIORITY_AREA_TARGETS = {
    IssueCategory.POTHOLE: 48,
    IssueCategory.STREET_LIGHT: 72,
    IssueCategory.WATER_LEAK: 48,
    IssueCategory.TRAFFIC_SIGNAL: 96,
    IssueCategory.SIDEWALK: 72,
    IssueCategory.DRAINAGE: 72,
    IssueCategory.DEBRIS: 48,
    IssueCategory.OTHER: 96,
}


def _default_areas() -> Dict[str, AreaPolicy]:
    return {
        "central_delhi": AreaPolicy(priority="high", population=1173902, targets=_HIGH_PRIORITY_AREA_TARGETS),
        "ghaziabad": AreaPolicy(priority="high", population=3100000, targets=_HIGH_PRIORITY_AREA_TARGETS),
        "gurgaon": AreaPolicy(priority="medium", population=1500000, targets=_MEDIUM_PRIORITY_AREA_TARGETS),
        "faridabad": AreaPolicy(priority="medium", population=1400000, targets=_MEDIUM_PRIORITY_AREA_TARGETS),
        "rajkot_rmc": AreaPolicy(priority="high", population=1323363, targets=_HIGH_PRIORITY_AREA_TARGETS),
        "rajkot_ruda": AreaPolicy(priority="medium", population=3804558, targets=_MEDIUM_PRIORITY_AREA_TARGETS),
    }


def _default_escalation_rules() -> Dict[NotificationKind, EscalationRule]:
    supervisors = [RecipientRole.FIELD_SUPERVISOR.value, RecipientRole.CITY_ENGINEER.value]
    return {
        NotificationKind.WARNING: EscalationRule(notify_roles=supervisors),
        NotificationKind.CRITICAL_WARNING: EscalationRule(notify_roles=supervisors),
        NotificationKind.ESCALATION: EscalationRule(
            notify_roles=supervisors + [RecipientRole.SUPER_ADMIN.value]
        ),
        NotificationKind.REMINDER: EscalationRule(
            notify_roles=[RecipientRole.SUPER_ADMIN.value, RecipientRole.AUDITOR.value]
        ),
    }


class SLAPolicyTable(BaseModel):
    """
    SLA policy table loaded from YAML.

    Target = area override for the category when present, otherwise the
    category+priority target. The escalation lead time always comes from
    the category+priority entry.

    This is a value object - immutable and defined by its attributes.
    """
    categories: Dict[IssueCategory, Dict[IssuePriority, PolicyTarget]] = Field(
        default_factory=_default_categories,
        description="Target/escalation hours by category and priority"
    )
    areas: Dict[str, AreaPolicy] = Field(
        default_factory=_default_areas,
        description="Per-area target overrides by category"
    )
    escalation_rules: Dict[NotificationKind, EscalationRule] = Field(
        default_factory=_default_escalation_rules,
        description="Recipient roles per notification kind"
    )

    def get_default_target(
        self,
        category: IssueCategory,
        priority: IssuePriority
    ) -> Optional[PolicyTarget]:
        return self.categories.get(category, {}).get(priority)

    def get_area_target_hours(self, area: str, category: IssueCategory) -> Optional[float]:
        area_policy = self.areas.get(area)
        if area_policy is None:
            return None
        return area_policy.target_for(category)

    def get_recipients(self, kind: NotificationKind) -> List[str]:
        """Get recipient roles for a notification kind."""
        rule = self.escalation_rules.get(kind)
        if rule is None:
            return list(_default_escalation_rules()[kind].notify_roles)
        return list(rule.notify_roles)


@dataclass(frozen=True)
class ResolvedDeadline:
    """Outcome of resolving an issue's SLA policy."""
    deadline: datetime
    target_hours: float
    escalation_threshold_hours: float
    area_override_applied: bool = False


class DeadlineResolver:
    """
    Resolves the SLA deadline for (category, priority, area, created_at).

    Total over every enum-valid input: missing policy entries fall back to
    documented defaults and are logged as configuration gaps.
    """

    def __init__(self, policy: SLAPolicyTable):
        self._policy = policy

    @property
    def policy(self) -> SLAPolicyTable:
        return self._policy

    def escalation_threshold_hours(
        self,
        category: IssueCategory,
        priority: IssuePriority
    ) -> float:
        entry = self._policy.get_default_target(category, priority)
        if entry is None:
            logger.debug(
                "SLA policy gap, using fallback escalation hours",
                extra={"category": category.value, "priority": priority.value}
            )
            return FALLBACK_ESCALATION_HOURS
        return entry.escalation_hours

    def resolve_deadline(
        self,
        category: IssueCategory,
        priority: IssuePriority,
        area: str,
        created_at: datetime
    ) -> ResolvedDeadline:
        entry = self._policy.get_default_target(category, priority)
        area_hours = self._policy.get_area_target_hours(area, category)

        if entry is None:
            logger.debug(
                "SLA policy gap for category/priority",
                extra={"category": category.value, "priority": priority.value}
            )
        if area_hours is None and area in self._policy.areas:
            logger.debug(
                "SLA policy gap for area/category",
                extra={"area": area, "category": category.value}
            )

        if area_hours is not None:
            target_hours = area_hours
        elif entry is not None:
            target_hours = entry.target_hours
        else:
            target_hours = FALLBACK_TARGET_HOURS

        escalation_hours = entry.escalation_hours if entry is not None else FALLBACK_ESCALATION_HOURS

        return ResolvedDeadline(
            deadline=created_at + timedelta(hours=target_hours),
            target_hours=target_hours,
            escalation_threshold_hours=escalation_hours,
            area_override_applied=area_hours is not None
        )


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA classification logic in one place.
    """

    @staticmethod
    def hours_remaining(now: datetime, deadline: datetime) -> float:
        """Hours until the deadline; negative once it has passed."""
        return (deadline - now).total_seconds() / 3600

    @staticmethod
    def classify(
        now: datetime,
        deadline: datetime,
        escalation_threshold_hours: float,
        resolved_at: Optional[datetime] = None
    ) -> SLAStatus:
        """
        Classify an issue against its deadline.

        Bands (h = hours remaining, esc = escalation threshold):
            h < 0              -> breached
            0 <= h < esc / 2   -> critical
            esc / 2 <= h < esc -> warning
            h >= esc           -> compliant

        A resolved issue is always settled.
        """
        if resolved_at is not None:
            return SLAStatus.SETTLED

        hours = SLACalculator.hours_remaining(now, deadline)

        if hours < 0:
            return SLAStatus.BREACHED
        if hours < escalation_threshold_hours / 2:
            return SLAStatus.CRITICAL
        if hours < escalation_threshold_hours:
            return SLAStatus.WARNING
        return SLAStatus.COMPLIANT

    @staticmethod
    def progress_percent(
        created_at: datetime,
        deadline: datetime,
        now: datetime
    ) -> float:
        """Share of the SLA window already consumed, clamped to 0-100."""
        total = (deadline - created_at).total_seconds()
        if total <= 0:
            return 100.0
        elapsed = (now - created_at).total_seconds()
        return max(0.0, min(100.0, elapsed / total * 100))
