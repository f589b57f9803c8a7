"""
Detection Rules

Rule-based detectors and their default thresholds.

Every evaluator is a pure function of the DetectionContext: no I/O, no
clock reads (time comes from context.as_of), no shared state. That lets the
engine run them off the event loop alongside the AI detector.
"""

import heapq
import logging
from typing import Callable, Dict, List, Optional

from .models import (
    AffectedModule,
    AlertSeverity,
    DetectionMethod,
    EstimatedImpact,
    IssueType,
    RecommendationType,
)
from .types import (
    AlertDraft,
    ComplianceBreachMetadata,
    DetectionContext,
    DetectionResult,
    PaymentDelayMetadata,
    RecommendationDraft,
    ResourceShortageMetadata,
    SchedulingConflictMetadata,
    ShiftSnapshot,
    UnderstaffingMetadata,
)

logger = logging.getLogger(__name__)

RuleEvaluator = Callable[[DetectionContext], List[DetectionResult]]


# Default thresholds for each rule-based detection type
DETECTION_RULES = {
    IssueType.UNDERSTAFFING: {
        "name": "Unassigned Shift Detection",
        "description": "Published shifts with no worker assigned",
        "default_thresholds": {
            "shift_status": "published",
            "confidence": 100.0,
        },
        "data_sources": ["shifts"],
    },

    IssueType.SCHEDULING_CONFLICT: {
        "name": "Scheduling Conflict Detection",
        "description": "Non-cancelled shifts whose time ranges overlap",
        "default_thresholds": {
            "ignored_status": "cancelled",
            "confidence": 98.0,
        },
        "data_sources": ["shifts"],
    },

    IssueType.PAYMENT_DELAY: {
        "name": "Payment Delay Tracking",
        "description": "Pending payments that have aged past their window",
        "default_thresholds": {
            "medium_after_days": 7,
            "high_after_days": 14,
            "critical_after_days": 30,
            "confidence": 100.0,
        },
        "data_sources": ["payments"],
    },

    IssueType.COMPLIANCE_BREACH: {
        "name": "Compliance Breach Monitoring",
        "description": "Compliance records that are at risk or non-compliant",
        "default_thresholds": {
            "critical_status": "non_compliant",
            "high_status": "at_risk",
            "confidence": 100.0,
        },
        "data_sources": ["compliance_records"],
    },

    IssueType.RESOURCE_SHORTAGE: {
        "name": "Long-Open Job Detection",
        "description": "Active jobs that have stayed unfilled too long",
        "default_thresholds": {
            "medium_after_days": 14,
            "high_after_days": 30,
            "confidence": 85.0,
        },
        "data_sources": ["jobs"],
    },
}


def _thresholds(issue_type: IssueType) -> dict:
    return DETECTION_RULES[issue_type]["default_thresholds"]


# ==========================================================================
# Detection: UNDERSTAFFING
# ==========================================================================
def detect_understaffing(context: DetectionContext) -> List[DetectionResult]:
    """Flag every published shift that has no assigned worker."""
    thresholds = _thresholds(IssueType.UNDERSTAFFING)
    results = []

    for shift in context.shifts:
        if shift.status != thresholds["shift_status"] or shift.worker_id:
            continue

        alert = AlertDraft(
            title="Unassigned Shift: Worker needed",
            description=f'Shift "{shift.title}" on {shift.start_time.isoformat()} has no assigned worker.',
            issue_type=IssueType.UNDERSTAFFING,
            severity=AlertSeverity.HIGH,
            confidence=thresholds["confidence"],
            affected_module=AffectedModule.SHIFTS,
            affected_entity_type="shift",
            affected_entity_id=shift.id,
            detection_method=DetectionMethod.RULE_BASED,
            metadata=UnderstaffingMetadata(shift_id=shift.id, shift_start=shift.start_time),
        )
        recommendations = (
            RecommendationDraft(
                title="Auto-notify available workers",
                description="Send immediate notifications to available workers matching the required skills.",
                recommendation_type=RecommendationType.AUTOMATED_ACTION,
                priority=1,
                confidence=90.0,
                estimated_impact=EstimatedImpact.HIGH,
                automatable=True,
                required_capabilities=("manage_shifts", "notify_workers"),
                action_metadata={"action": "notify_workers", "shift_id": shift.id},
                estimated_duration=5,
            ),
            RecommendationDraft(
                title="Broadcast to worker pool",
                description="Send push notification to all available workers in the area.",
                recommendation_type=RecommendationType.NOTIFICATION,
                priority=2,
                confidence=85.0,
                estimated_impact=EstimatedImpact.HIGH,
                automatable=True,
                required_capabilities=("manage_shifts",),
                action_metadata={"action": "broadcast_shift", "shift_id": shift.id},
                estimated_duration=2,
            ),
        )
        results.append(DetectionResult(alert, recommendations))

    return results


# ==========================================================================
# Detection: SCHEDULING_CONFLICT
# ==========================================================================
def find_overlapping_shifts(shifts: List[ShiftSnapshot]) -> List[tuple]:
    """
    Return every overlapping pair (earlier, later) exactly once.

    Sort by start time and sweep, keeping the shifts still open at the
    current start in a heap ordered by end time. Anything left in the heap
    after evicting shifts that ended at or before the current start overlaps
    the current shift. O(n log n + k) for k conflicting pairs.
    """
    ordered = sorted(shifts, key=lambda s: (s.start_time, s.end_time, s.id))
    active: list = []  # (end_time, position, shift)
    pairs = []

    for position, shift in enumerate(ordered):
        while active and active[0][0] <= shift.start_time:
            heapq.heappop(active)

        # Report partners in start order for stable output
        for _, _, earlier in sorted(active, key=lambda item: item[1]):
            pairs.append((earlier, shift))

        heapq.heappush(active, (shift.end_time, position, shift))

    return pairs


def detect_scheduling_conflicts(context: DetectionContext) -> List[DetectionResult]:
    """Flag each pair of non-cancelled shifts whose time ranges overlap."""
    thresholds = _thresholds(IssueType.SCHEDULING_CONFLICT)
    candidates = [
        s for s in context.shifts
        if s.status != thresholds["ignored_status"] and s.start_time < s.end_time
    ]

    results = []
    for earlier, later in find_overlapping_shifts(candidates):
        overlap_start = max(earlier.start_time, later.start_time)
        overlap_end = min(earlier.end_time, later.end_time)

        alert = AlertDraft(
            title="Scheduling Conflict Detected",
            description=f'Shifts "{earlier.title}" and "{later.title}" have overlapping times.',
            issue_type=IssueType.SCHEDULING_CONFLICT,
            severity=AlertSeverity.MEDIUM,
            confidence=thresholds["confidence"],
            affected_module=AffectedModule.SCHEDULING,
            affected_entity_type="shift_pair",
            # Pair identity must not depend on which shift starts first
            affected_entity_id=":".join(sorted((earlier.id, later.id))),
            detection_method=DetectionMethod.RULE_BASED,
            metadata=SchedulingConflictMetadata(
                shift_ids=(earlier.id, later.id),
                overlap_start=overlap_start,
                overlap_end=overlap_end,
            ),
        )
        recommendations = (
            RecommendationDraft(
                title="Reschedule conflicting shift",
                description=f'Automatically reschedule "{later.title}" to the next available time slot.',
                recommendation_type=RecommendationType.AUTOMATED_ACTION,
                priority=1,
                confidence=85.0,
                estimated_impact=EstimatedImpact.MEDIUM,
                automatable=True,
                required_capabilities=("manage_shifts",),
                action_metadata={"action": "reschedule_shift", "shift_id": later.id},
                estimated_duration=3,
            ),
        )
        results.append(DetectionResult(alert, recommendations))

    return results


# ==========================================================================
# Detection: PAYMENT_DELAY
# ==========================================================================
def payment_delay_severity(days_pending: int) -> Optional[AlertSeverity]:
    """Map days pending to a severity; None means no alert."""
    thresholds = _thresholds(IssueType.PAYMENT_DELAY)
    if days_pending > thresholds["critical_after_days"]:
        return AlertSeverity.CRITICAL
    if days_pending > thresholds["high_after_days"]:
        return AlertSeverity.HIGH
    if days_pending > thresholds["medium_after_days"]:
        return AlertSeverity.MEDIUM
    return None


def detect_payment_delays(context: DetectionContext) -> List[DetectionResult]:
    """Flag pending payments that have been waiting longer than a week."""
    thresholds = _thresholds(IssueType.PAYMENT_DELAY)
    results = []

    for payment in context.payments:
        if payment.status != "pending" or payment.created_at is None:
            continue

        days_pending = (context.as_of - payment.created_at).days
        severity = payment_delay_severity(days_pending)
        if severity is None:
            continue

        alert = AlertDraft(
            title=f"Payment Delay: {days_pending} days overdue",
            description=(
                f"Payment of ${payment.amount:,.2f} to worker {payment.worker_id} "
                f"has been pending for {days_pending} days."
            ),
            issue_type=IssueType.PAYMENT_DELAY,
            severity=severity,
            confidence=thresholds["confidence"],
            affected_module=AffectedModule.PAYMENTS,
            affected_entity_type="payment",
            affected_entity_id=payment.id,
            detection_method=DetectionMethod.RULE_BASED,
            metadata=PaymentDelayMetadata(
                amount=payment.amount,
                days_pending=days_pending,
                worker_id=payment.worker_id,
            ),
        )
        recommendations = (
            RecommendationDraft(
                title="Process payment immediately",
                description="Automatically process the pending payment.",
                recommendation_type=RecommendationType.AUTOMATED_ACTION,
                priority=1,
                confidence=95.0,
                estimated_impact=EstimatedImpact.HIGH,
                automatable=True,
                required_capabilities=("manage_payments",),
                action_metadata={"action": "process_payment", "payment_id": payment.id},
                estimated_duration=5,
            ),
            RecommendationDraft(
                title="Notify worker about delay",
                description="Send automated notification to the worker explaining the delay and expected resolution.",
                recommendation_type=RecommendationType.NOTIFICATION,
                priority=2,
                confidence=90.0,
                estimated_impact=EstimatedImpact.MEDIUM,
                automatable=True,
                required_capabilities=("send_notifications",),
                action_metadata={
                    "action": "send_notification",
                    "worker_id": payment.worker_id,
                    "type": "payment_delay",
                },
                estimated_duration=1,
            ),
        )
        results.append(DetectionResult(alert, recommendations))

    return results


# ==========================================================================
# Detection: COMPLIANCE_BREACH
# ==========================================================================
def detect_compliance_breaches(context: DetectionContext) -> List[DetectionResult]:
    """Flag non-compliant (critical) and at-risk (high) compliance records."""
    thresholds = _thresholds(IssueType.COMPLIANCE_BREACH)
    severity_by_status = {
        thresholds["critical_status"]: AlertSeverity.CRITICAL,
        thresholds["high_status"]: AlertSeverity.HIGH,
    }
    results = []

    for record in context.compliance_records:
        severity = severity_by_status.get(record.compliance_status)
        if severity is None:
            continue

        alert = AlertDraft(
            title=f"Compliance Breach: {record.title}",
            description=record.description or f'Compliance requirement "{record.title}" is not met.',
            issue_type=IssueType.COMPLIANCE_BREACH,
            severity=severity,
            confidence=thresholds["confidence"],
            affected_module=AffectedModule.COMPLIANCE,
            affected_entity_type="compliance",
            affected_entity_id=record.id,
            detection_method=DetectionMethod.RULE_BASED,
            metadata=ComplianceBreachMetadata(
                compliance_status=record.compliance_status,
                report_type=record.report_type,
            ),
        )
        recommendations = (
            RecommendationDraft(
                title="Generate compliance report",
                description="Automatically generate required compliance documentation and submit for review.",
                recommendation_type=RecommendationType.AUTOMATED_ACTION,
                priority=1,
                confidence=85.0,
                estimated_impact=EstimatedImpact.HIGH,
                automatable=True,
                required_capabilities=("manage_compliance",),
                action_metadata={"action": "generate_compliance_report", "report_id": record.id},
                estimated_duration=15,
            ),
            RecommendationDraft(
                title="Assign compliance officer",
                description="Escalate to a compliance officer for immediate review and action.",
                recommendation_type=RecommendationType.ESCALATION,
                priority=2,
                confidence=90.0,
                estimated_impact=EstimatedImpact.HIGH,
                automatable=False,
                required_capabilities=("manage_users",),
                action_metadata={"action": "assign_officer", "report_id": record.id},
                estimated_duration=30,
            ),
        )
        results.append(DetectionResult(alert, recommendations))

    return results


# ==========================================================================
# Detection: RESOURCE_SHORTAGE
# ==========================================================================
def detect_resource_shortages(context: DetectionContext) -> List[DetectionResult]:
    """Flag active jobs that have stayed open for more than two weeks."""
    thresholds = _thresholds(IssueType.RESOURCE_SHORTAGE)
    results = []

    for job in context.jobs:
        if job.status != "active" or job.created_at is None:
            continue

        days_open = (context.as_of - job.created_at).days
        if days_open <= thresholds["medium_after_days"]:
            continue
        severity = AlertSeverity.HIGH if days_open > thresholds["high_after_days"] else AlertSeverity.MEDIUM

        alert = AlertDraft(
            title=f"Long-Open Job: {days_open} days unfilled",
            description=(
                f'Job "{job.title}" has been open for {days_open} days without being filled. '
                "This may indicate difficulty finding qualified workers."
            ),
            issue_type=IssueType.RESOURCE_SHORTAGE,
            severity=severity,
            confidence=thresholds["confidence"],
            affected_module=AffectedModule.JOBS,
            affected_entity_type="job",
            affected_entity_id=job.id,
            detection_method=DetectionMethod.RULE_BASED,
            metadata=ResourceShortageMetadata(days_open=days_open, job_type=job.job_type),
        )
        recommendations = (
            RecommendationDraft(
                title="Increase job visibility",
                description="Promote this job posting to reach more potential workers.",
                recommendation_type=RecommendationType.AUTOMATED_ACTION,
                priority=1,
                confidence=80.0,
                estimated_impact=EstimatedImpact.MEDIUM,
                automatable=True,
                required_capabilities=("manage_jobs",),
                action_metadata={"action": "promote_job", "job_id": job.id},
                estimated_duration=5,
            ),
            RecommendationDraft(
                title="Adjust job requirements",
                description=(
                    "Consider broadening the job requirements or increasing compensation "
                    "to attract more candidates."
                ),
                recommendation_type=RecommendationType.POLICY_CHANGE,
                priority=2,
                confidence=70.0,
                estimated_impact=EstimatedImpact.HIGH,
                automatable=False,
                required_capabilities=("manage_jobs",),
                action_metadata={"action": "review_requirements", "job_id": job.id},
                estimated_duration=30,
            ),
        )
        results.append(DetectionResult(alert, recommendations))

    return results


RULE_EVALUATORS: Dict[IssueType, RuleEvaluator] = {
    IssueType.UNDERSTAFFING: detect_understaffing,
    IssueType.SCHEDULING_CONFLICT: detect_scheduling_conflicts,
    IssueType.PAYMENT_DELAY: detect_payment_delays,
    IssueType.COMPLIANCE_BREACH: detect_compliance_breaches,
    IssueType.RESOURCE_SHORTAGE: detect_resource_shortages,
}


def run_rule_evaluators(context: DetectionContext) -> List[DetectionResult]:
    """Run every rule evaluator; a failing evaluator is logged and skipped."""
    results = []
    for issue_type, evaluator in RULE_EVALUATORS.items():
        try:
            results.extend(evaluator(context))
        except Exception as e:
            logger.error(f"Rule detection {issue_type.value} failed: {e}", exc_info=True)
            # Continue with other detections
    return results
