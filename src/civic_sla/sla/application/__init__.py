"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- Monitor: The escalation monitor and its cooldown registry
- Compliance: Read-only compliance aggregation
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from civic_sla.sla.application.dto import (
    IssueRegisterDTO,
    ComplianceQueryDTO,
    DeadlineResponse,
    SLAStatusResponse,
    IssueSLAResponse,
    IssueRegisterResponse,
    SweepResponse,
    ComplianceResponse,
)
from civic_sla.sla.application.services import (
    SLAService,
    UpdateResult,
    IIssueRepository,
    INotificationDispatcher,
    ISLAPolicyProvider,
    StaticPolicyProvider,
)
from civic_sla.sla.application.monitor import (
    EscalationMonitor,
    CooldownRegistry,
    CooldownClaim,
)
from civic_sla.sla.application.compliance import (
    ComplianceAggregator,
    ComplianceService,
)

__all__ = [
    # DTOs
    "IssueRegisterDTO",
    "ComplianceQueryDTO",
    "DeadlineResponse",
    "SLAStatusResponse",
    "IssueSLAResponse",
    "IssueRegisterResponse",
    "SweepResponse",
    "ComplianceResponse",
    # Services
    "SLAService",
    "EscalationMonitor",
    "CooldownRegistry",
    "CooldownClaim",
    "ComplianceAggregator",
    "ComplianceService",
    # Interfaces
    "UpdateResult",
    "IIssueRepository",
    "INotificationDispatcher",
    "ISLAPolicyProvider",
    "StaticPolicyProvider",
]
