"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: Core business objects (IssueSLARecord, EscalationCooldown, SLAEvaluation)
- Value Objects: Immutable objects (SLAPolicyTable, ResolvedDeadline)
- Domain Services: Stateless business logic (DeadlineResolver, SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from civic_sla.sla.domain.entities import (
    IssueSLARecord,
    EscalationCooldown,
    SLAEvaluation,
    SweepReport,
    ComplianceReport,
    ensure_utc,
)
from civic_sla.sla.domain.value_objects import (
    SLAPolicyTable,
    PolicyTarget,
    AreaPolicy,
    EscalationRule,
    ResolvedDeadline,
    DeadlineResolver,
    SLACalculator,
    FALLBACK_TARGET_HOURS,
    FALLBACK_ESCALATION_HOURS,
)

__all__ = [
    # Entities
    "IssueSLARecord",
    "EscalationCooldown",
    "SLAEvaluation",
    "SweepReport",
    "ComplianceReport",
    "ensure_utc",
    # Value Objects & Services
    "SLAPolicyTable",
    "PolicyTarget",
    "AreaPolicy",
    "EscalationRule",
    "ResolvedDeadline",
    "DeadlineResolver",
    "SLACalculator",
    "FALLBACK_TARGET_HOURS",
    "FALLBACK_ESCALATION_HOURS",
]
