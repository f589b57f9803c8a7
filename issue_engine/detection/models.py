"""
Issue Detection Models

Persisted alerts, their remediation recommendations, and the audit trail of
actions taken against them.
"""

from enum import Enum

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Float, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from issue_engine.database import Base
from issue_engine.data.base import generate_id


class IssueType(str, Enum):
    """Classes of operational issue."""
    UNDERSTAFFING = "understaffing"
    SCHEDULING_CONFLICT = "scheduling_conflict"
    PAYMENT_DELAY = "payment_delay"
    COMPLIANCE_BREACH = "compliance_breach"
    RESOURCE_SHORTAGE = "resource_shortage"
    SKILL_GAP = "skill_gap"
    PERFORMANCE_ISSUE = "performance_issue"
    BUDGET_OVERRUN = "budget_overrun"
    SAFETY_CONCERN = "safety_concern"
    OTHER = "other"


class AlertSeverity(str, Enum):
    """Severity levels for alerts."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Display ordering: lower rank sorts first
SEVERITY_RANK = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.HIGH: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.LOW: 3,
}


class AlertStatus(str, Enum):
    """Status of issue alerts."""
    ACTIVE = "active"              # Newly detected, needs attention
    ACKNOWLEDGED = "acknowledged"  # Someone has seen it
    RESOLVED = "resolved"          # Issue resolved
    DISMISSED = "dismissed"        # Dismissed without action


class DetectionMethod(str, Enum):
    """How an alert was produced."""
    RULE_BASED = "rule_based"
    AI_POWERED = "ai_powered"


class AffectedModule(str, Enum):
    """Area of the platform an alert concerns."""
    JOBS = "jobs"
    SHIFTS = "shifts"
    PAYMENTS = "payments"
    COMPLIANCE = "compliance"
    SCHEDULING = "scheduling"
    GENERAL = "general"


class RecommendationType(str, Enum):
    """Kinds of remediation."""
    AUTOMATED_ACTION = "automated_action"
    MANUAL_TASK = "manual_task"
    POLICY_CHANGE = "policy_change"
    RESOURCE_ALLOCATION = "resource_allocation"
    WORKFLOW_ADJUSTMENT = "workflow_adjustment"
    TRAINING = "training"
    NOTIFICATION = "notification"
    ESCALATION = "escalation"


class EstimatedImpact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActionType(str, Enum):
    """How a remediation was carried out."""
    AUTOMATED = "automated"
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    DISMISSED = "dismissed"


class ActionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class IssueAlert(Base):
    """
    A detected operational issue.

    Created by the detection pipeline together with its recommendations.
    Status changes (acknowledge/resolve/dismiss) happen afterwards through
    the API and are never read back by the detectors themselves.
    """
    __tablename__ = "issue_alerts"

    id = Column(String, primary_key=True, default=lambda: generate_id("alert"))

    # Alert details
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    issue_type = Column(String, nullable=False, index=True)  # Use string for simpler DB compatibility
    severity = Column(String, nullable=False, default="medium")
    status = Column(String, nullable=False, default="active", index=True)
    confidence = Column(Float, nullable=False, default=0.0)  # 0-100

    # What it concerns
    affected_module = Column(String, nullable=False, default="general")
    affected_entity_type = Column(String, nullable=True)
    affected_entity_id = Column(String, nullable=True, index=True)

    detection_method = Column(String, nullable=False, default="rule_based")

    # Detector-specific context, e.g. {"days_pending": 15, "amount": 250.0}
    extra_data = Column("metadata", JSON, nullable=False, default=dict)

    # Timing
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    recommendations = relationship(
        "IssueRecommendation", back_populates="alert", cascade="all, delete-orphan"
    )
    actions = relationship("IssueAction", back_populates="alert", cascade="all, delete-orphan")


class IssueRecommendation(Base):
    """A suggested remediation for an alert. Lower priority number = more urgent."""
    __tablename__ = "issue_recommendations"

    id = Column(String, primary_key=True, default=lambda: generate_id("rec"))
    alert_id = Column(String, ForeignKey("issue_alerts.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    recommendation_type = Column(String, nullable=False)
    priority = Column(Integer, nullable=False, default=1)
    confidence = Column(Float, nullable=False, default=0.0)
    estimated_impact = Column(String, nullable=True)
    required_capabilities = Column(JSON, nullable=False, default=list)
    automatable = Column(Boolean, nullable=False, default=False)
    action_metadata = Column(JSON, nullable=False, default=dict)
    estimated_duration = Column(Integer, nullable=True)  # Minutes

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    alert = relationship("IssueAlert", back_populates="recommendations")


class IssueAction(Base):
    """
    Audit record of a remediation carried out against an alert.

    The engine only stores these; executing the remediation belongs to a
    separate executor.
    """
    __tablename__ = "issue_actions"

    id = Column(String, primary_key=True, default=lambda: generate_id("act"))
    alert_id = Column(String, ForeignKey("issue_alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    recommendation_id = Column(
        String, ForeignKey("issue_recommendations.id", ondelete="SET NULL"), nullable=True
    )

    action_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    initiated_by = Column(String, nullable=False)

    action_details = Column(JSON, nullable=False, default=dict)
    result = Column(JSON, nullable=True)
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    alert = relationship("IssueAlert", back_populates="actions")
