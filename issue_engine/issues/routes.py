"""
Issues Routes

API endpoints for detected issues:
- Alert listing and lifecycle (acknowledge / resolve / dismiss)
- Recommendations and the remediation action audit trail
- On-demand detection and scheduler control
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from issue_engine.database import async_session_maker
from issue_engine.detection.exceptions import PersistenceError
from issue_engine.detection.models import ActionStatus, AlertStatus
from issue_engine.detection.repository import IssueRepository, SQLAlchemyIssueRepository
from issue_engine.detection.scheduler import IssueDetectionScheduler, get_detection_scheduler

from .schemas import (
    ActionCreateRequest,
    ActionResponse,
    AlertResponse,
    AlertsListResponse,
    RecommendationResponse,
    SchedulerStartRequest,
    TriggerResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_issue_repository() -> IssueRepository:
    return SQLAlchemyIssueRepository(async_session_maker)


async def _require_alert(repository: IssueRepository, alert_id: str):
    alert = await repository.get_alert(alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


def _unavailable(e: PersistenceError) -> HTTPException:
    logger.error(f"Issue store unavailable: {e}")
    return HTTPException(status_code=503, detail="Issue store unavailable")


# ============================================================================
# Alerts
# ============================================================================

@router.get("/alerts", response_model=AlertsListResponse)
async def list_alerts(
    status: Optional[AlertStatus] = Query(None, description="Filter by alert status"),
    repository: IssueRepository = Depends(get_issue_repository),
):
    """List alerts, newest first, optionally filtered by status."""
    try:
        alerts = await repository.query_alerts(status=status.value if status else None)
    except PersistenceError as e:
        raise _unavailable(e)
    return AlertsListResponse(
        alerts=[AlertResponse.model_validate(a) for a in alerts],
        total=len(alerts),
    )


@router.get("/alerts/{alert_id}/recommendations", response_model=List[RecommendationResponse])
async def get_alert_recommendations(
    alert_id: str,
    repository: IssueRepository = Depends(get_issue_repository),
):
    """Recommendations for an alert, most urgent first."""
    try:
        await _require_alert(repository, alert_id)
        recommendations = await repository.get_recommendations(alert_id)
    except PersistenceError as e:
        raise _unavailable(e)
    return [RecommendationResponse.model_validate(r) for r in recommendations]


async def _set_status(repository: IssueRepository, alert_id: str, status: AlertStatus) -> AlertResponse:
    try:
        alert = await repository.update_alert(alert_id, status=status)
    except PersistenceError as e:
        raise _unavailable(e)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    logger.info(f"Alert {alert_id} marked {status.value}")
    return AlertResponse.model_validate(alert)


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(alert_id: str, repository: IssueRepository = Depends(get_issue_repository)):
    return await _set_status(repository, alert_id, AlertStatus.ACKNOWLEDGED)


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(alert_id: str, repository: IssueRepository = Depends(get_issue_repository)):
    return await _set_status(repository, alert_id, AlertStatus.RESOLVED)


@router.post("/alerts/{alert_id}/dismiss", response_model=AlertResponse)
async def dismiss_alert(alert_id: str, repository: IssueRepository = Depends(get_issue_repository)):
    return await _set_status(repository, alert_id, AlertStatus.DISMISSED)


# ============================================================================
# Actions
# ============================================================================

@router.get("/alerts/{alert_id}/actions", response_model=List[ActionResponse])
async def get_alert_actions(
    alert_id: str,
    repository: IssueRepository = Depends(get_issue_repository),
):
    try:
        await _require_alert(repository, alert_id)
        actions = await repository.get_actions(alert_id)
    except PersistenceError as e:
        raise _unavailable(e)
    return [ActionResponse.model_validate(a) for a in actions]


@router.post("/alerts/{alert_id}/actions", response_model=ActionResponse, status_code=201)
async def record_alert_action(
    alert_id: str,
    request: ActionCreateRequest,
    repository: IssueRepository = Depends(get_issue_repository),
):
    """
    Record a remediation carried out against an alert.

    Only the audit record is stored; running the remediation is the
    caller's responsibility.
    """
    completed_at = None
    if request.status in (ActionStatus.COMPLETED, ActionStatus.FAILED):
        completed_at = datetime.now(timezone.utc)

    try:
        await _require_alert(repository, alert_id)
        action = await repository.create_action(
            alert_id,
            recommendation_id=request.recommendation_id,
            action_type=request.action_type.value,
            status=request.status.value,
            initiated_by=request.initiated_by,
            action_details=request.action_details,
            result=request.result,
            failure_reason=request.failure_reason,
            completed_at=completed_at,
        )
    except PersistenceError as e:
        raise _unavailable(e)
    return ActionResponse.model_validate(action)


# ============================================================================
# Detection & Scheduler
# ============================================================================

@router.post("/detect/run", response_model=TriggerResponse)
async def run_detection_now(scheduler: IssueDetectionScheduler = Depends(get_detection_scheduler)):
    """
    Start a detection pass in the background.

    Returns immediately; poll /detect/status for the outcome.
    """
    return scheduler.trigger_now()


@router.get("/detect/status")
async def get_detection_status(
    scheduler: IssueDetectionScheduler = Depends(get_detection_scheduler),
) -> Dict[str, Any]:
    return scheduler.get_status()


@router.post("/scheduler/start")
async def start_scheduler(
    request: SchedulerStartRequest,
    scheduler: IssueDetectionScheduler = Depends(get_detection_scheduler),
) -> Dict[str, Any]:
    scheduler.start(interval_minutes=request.interval_minutes, run_immediately=request.run_immediately)
    return scheduler.get_status()


@router.post("/scheduler/stop")
async def stop_scheduler(
    scheduler: IssueDetectionScheduler = Depends(get_detection_scheduler),
) -> Dict[str, Any]:
    scheduler.stop()
    return scheduler.get_status()
