"""
Issues Schemas

Pydantic schemas for the issues API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from issue_engine.detection.models import ActionStatus, ActionType


# ============================================================================
# Response Schemas
# ============================================================================

class AlertResponse(BaseModel):
    """Response schema for a detected issue alert."""
    id: str
    title: str
    description: str
    issue_type: str
    severity: str
    status: str
    confidence: float
    affected_module: str
    affected_entity_type: Optional[str] = None
    affected_entity_id: Optional[str] = None
    detection_method: str
    # Stored in the "metadata" column, mapped as extra_data on the ORM model
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="extra_data")
    created_at: datetime
    updated_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AlertsListResponse(BaseModel):
    alerts: List[AlertResponse]
    total: int


class RecommendationResponse(BaseModel):
    """Response schema for a remediation recommendation."""
    id: str
    alert_id: str
    title: str
    description: str
    recommendation_type: str
    priority: int
    confidence: float
    estimated_impact: Optional[str] = None
    required_capabilities: List[str] = Field(default_factory=list)
    automatable: bool
    action_metadata: Dict[str, Any] = Field(default_factory=dict)
    estimated_duration: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ActionResponse(BaseModel):
    id: str
    alert_id: str
    recommendation_id: Optional[str] = None
    action_type: str
    status: str
    initiated_by: str
    action_details: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TriggerResponse(BaseModel):
    """Returned immediately by an on-demand detection trigger."""
    triggered: bool
    reason: Optional[str] = None


# ============================================================================
# Request Schemas
# ============================================================================

class ActionCreateRequest(BaseModel):
    """Record a remediation carried out against an alert."""
    action_type: ActionType
    initiated_by: str
    recommendation_id: Optional[str] = None
    status: ActionStatus = ActionStatus.PENDING
    action_details: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None


class SchedulerStartRequest(BaseModel):
    interval_minutes: int = Field(default=15, ge=1, description="Minutes between detection passes")
    run_immediately: bool = True
