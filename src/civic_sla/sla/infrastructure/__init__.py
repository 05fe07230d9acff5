"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- Models: SQLAlchemy ORM models
- Repositories: Issue store access (SQLAlchemy and in-memory)
- External: Webhook dispatcher, policy file watcher, scheduler
"""

from civic_sla.sla.infrastructure.models import IssueModel
from civic_sla.sla.infrastructure.repositories import (
    SQLAlchemyIssueRepository,
    InMemoryIssueRepository,
)
from civic_sla.sla.infrastructure.external import (
    SLAPolicyManager,
    CircuitBreaker,
    CircuitState,
    WebhookNotificationDispatcher,
    SLAScheduler,
)

__all__ = [
    "IssueModel",
    "SQLAlchemyIssueRepository",
    "InMemoryIssueRepository",
    "SLAPolicyManager",
    "CircuitBreaker",
    "CircuitState",
    "WebhookNotificationDispatcher",
    "SLAScheduler",
]
