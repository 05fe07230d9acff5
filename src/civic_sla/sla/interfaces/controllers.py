"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA monitoring endpoints.

Controllers are thin - they delegate to application services held on
``app.state`` by the application lifespan.
"""

import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from civic_sla.config import IssueCategory, IssuePriority
from civic_sla.core import (
    InvariantViolationException,
    RepositoryException,
    ResourceNotFoundException,
    StoreUnavailableException,
    ValidationException,
)
from civic_sla.sla.application import (
    ComplianceQueryDTO,
    ComplianceResponse,
    ComplianceService,
    DeadlineResponse,
    EscalationMonitor,
    IssueRegisterDTO,
    IssueRegisterResponse,
    IssueSLAResponse,
    SLAService,
    SLAStatusResponse,
    SweepResponse,
)
from civic_sla.sla.domain import ResolvedDeadline, SweepReport
from civic_sla.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])


# ========== Example payloads for Swagger ==========

ISSUE_REGISTER_RESPONSE_EXAMPLE = {
    "issue_id": "ISSUE-1042",
    "status": "pending",
    "created_at": "2024-01-15T10:00:00Z",
    "policy": {
        "deadline": "2024-01-16T10:00:00Z",
        "target_hours": 24,
        "escalation_threshold_hours": 18,
        "area_override_applied": True
    }
}

COMPLIANCE_RESPONSE_EXAMPLE = {
    "generated_at": "2024-01-20T00:00:00Z",
    "total": 3,
    "resolved": 2,
    "compliant_resolved": 1,
    "breached": 2,
    "escalated": 1,
    "open_critical": 0,
    "skipped": 0,
    "compliance_percent": 33.33,
    "average_resolution_hours": 30.5,
    "by_status": {"resolved": 2, "escalated": 1},
    "by_priority": {"high": 2, "medium": 1},
    "by_category": {"pothole": 2, "water_leak": 1},
    "by_area": {"central_delhi": 3},
    "by_sla_status": {"settled": 2, "breached": 1}
}


# ========== Dependencies ==========

def _state_service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized"
        )
    return service


def get_sla_service(request: Request) -> SLAService:
    """Get SLA service instance."""
    return _state_service(request, "sla_service")


def get_monitor(request: Request) -> EscalationMonitor:
    """Get the escalation monitor instance."""
    return _state_service(request, "monitor")


def get_compliance_service(request: Request) -> ComplianceService:
    """Get compliance service instance."""
    return _state_service(request, "compliance_service")


def _deadline_response(resolved: ResolvedDeadline) -> DeadlineResponse:
    return DeadlineResponse(
        deadline=resolved.deadline,
        target_hours=resolved.target_hours,
        escalation_threshold_hours=resolved.escalation_threshold_hours,
        area_override_applied=resolved.area_override_applied
    )


def _sweep_response(report: SweepReport) -> SweepResponse:
    return SweepResponse(**report.to_dict())


# ========== Route Handlers ==========

@router.post(
    "/issues",
    response_model=IssueRegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an issue and assign its SLA deadline",
    description="""
    Register a new issue with the SLA engine.

    The deadline is computed once, from the policy in force at creation time:
    the area override for (area, category) when one is configured,
    otherwise the category/priority default, otherwise 72 hours.

    **Categories**: `pothole`, `street_light`, `water_leak`, `traffic_signal`,
    `sidewalk`, `drainage`, `debris`, `other`

    **Priorities**: `critical`, `high`, `medium`, `low`
    """,
    responses={
        201: {
            "description": "Issue registered",
            "content": {"application/json": {"example": ISSUE_REGISTER_RESPONSE_EXAMPLE}}
        },
        409: {"description": "Issue already registered"}
    }
)
async def register_issue(
    request: IssueRegisterDTO,
    sla_service: SLAService = Depends(get_sla_service)
):
    start_time = time.perf_counter()

    try:
        record, resolved = await sla_service.register_issue(
            issue_id=request.id,
            category=request.category,
            priority=request.priority,
            area=request.area,
            created_at=request.created_at,
            title=request.title
        )
    except ValidationException as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except RepositoryException as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    logger.info(
        "Issue registration complete",
        extra={
            "issue_id": record.id,
            "processing_time_ms": int((time.perf_counter() - start_time) * 1000)
        }
    )

    return IssueRegisterResponse(
        issue_id=record.id,
        status=record.status,
        created_at=record.created_at,
        policy=_deadline_response(resolved)
    )


@router.get(
    "/issues/{issue_id}",
    response_model=IssueSLAResponse,
    summary="Get issue SLA status",
    description="""
    Live SLA view of a single issue.

    **SLA statuses:**
    - `compliant`: more than the escalation threshold remains
    - `warning`: inside the escalation threshold
    - `critical`: inside half the escalation threshold
    - `breached`: past the deadline and unresolved
    - `settled`: the issue has a resolution time
    """,
    responses={404: {"description": "Issue not found"}}
)
async def get_issue_sla(
    issue_id: str,
    sla_service: SLAService = Depends(get_sla_service)
):
    try:
        record, evaluation = await sla_service.get_issue_evaluation(issue_id)
    except ResourceNotFoundException as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except InvariantViolationException as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    except RepositoryException as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    sla = evaluation.to_dict()
    sla.pop("issue_id")

    return IssueSLAResponse(
        issue_id=record.id,
        title=record.title,
        category=record.category,
        priority=record.priority,
        area=record.area,
        status=record.status,
        created_at=record.created_at,
        sla_deadline=record.sla_deadline,
        resolved_at=record.resolved_at,
        escalated_at=record.escalated_at,
        sla=SLAStatusResponse(**sla)
    )


@router.post(
    "/issues/{issue_id}/observe",
    response_model=SweepResponse,
    summary="Evaluate one issue now",
    description="""
    Run the escalation logic for a single issue immediately.

    Safe to call alongside the background sweep: the breach transition is a
    conditional write, so the issue is escalated and announced at most once.
    """,
    responses={
        404: {"description": "Issue not found"},
        503: {"description": "Issue store unavailable"}
    }
)
async def observe_issue(
    issue_id: str,
    monitor: EscalationMonitor = Depends(get_monitor)
):
    try:
        report = await monitor.observe(issue_id)
    except ResourceNotFoundException as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except StoreUnavailableException as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return _sweep_response(report)


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Trigger an escalation sweep",
    description="Evaluate every open issue once, outside the background schedule."
)
async def trigger_sweep(monitor: EscalationMonitor = Depends(get_monitor)):
    report = await monitor.sweep()
    if report.store_unavailable:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Issue store unavailable"
        )
    return _sweep_response(report)


@router.get(
    "/compliance",
    response_model=ComplianceResponse,
    summary="Get SLA compliance report",
    description="""
    Compliance summary over issues created in `[start, end)`.

    `compliance_percent` is resolved-on-time issues over issues with a decided
    outcome (every resolved issue plus every open issue past its deadline).
    It is 100 when no issue has a decided outcome.
    """,
    responses={
        200: {
            "description": "Compliance report",
            "content": {"application/json": {"example": COMPLIANCE_RESPONSE_EXAMPLE}}
        }
    }
)
async def get_compliance(
    query: ComplianceQueryDTO = Depends(),
    priority: Optional[IssuePriority] = Query(None, description="Filter by priority"),
    category: Optional[IssueCategory] = Query(None, description="Filter by category"),
    compliance_service: ComplianceService = Depends(get_compliance_service)
):
    filters = {}
    if priority:
        filters["priority"] = priority
    if category:
        filters["category"] = category

    try:
        report = await compliance_service.get_report(
            start=query.start,
            end=query.end,
            area=query.area,
            filters=filters
        )
    except StoreUnavailableException as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return ComplianceResponse(**asdict(report))


@router.get(
    "/policy/resolve",
    response_model=DeadlineResponse,
    summary="Preview the SLA deadline for an issue",
    description="Resolve the deadline a new issue would receive, without registering it."
)
async def resolve_policy(
    category: IssueCategory = Query(..., description="Issue category"),
    priority: IssuePriority = Query(..., description="Issue priority"),
    area: str = Query(..., min_length=1, description="Area identifier"),
    created_at: Optional[datetime] = Query(None, description="Creation time (defaults to now)"),
    sla_service: SLAService = Depends(get_sla_service)
):
    created_at = created_at or datetime.now(timezone.utc)
    return _deadline_response(
        sla_service.resolve_deadline(category, priority, area, created_at)
    )


# Export router for inclusion in main app
sla_router = router
