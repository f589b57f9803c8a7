"""
Detection Types

In-memory shapes that flow through a detection pass:
- Snapshots of the operational entities (read-only, one set per pass)
- DetectionContext bundling those snapshots with the pass reference time
- Typed metadata per issue type, flattened to JSON only when persisted
- AlertDraft / RecommendationDraft produced by the detectors
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from .models import (
    AffectedModule,
    AlertSeverity,
    AlertStatus,
    DetectionMethod,
    EstimatedImpact,
    IssueType,
    RecommendationType,
)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a datetime to timezone-aware UTC. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clamp_confidence(value: Any, default: float = 70.0) -> float:
    """Coerce a confidence score to a float within [0, 100]."""
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if score != score:  # NaN
        return default
    return max(0.0, min(100.0, score))


def _to_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    return value


# =============================================================================
# Snapshots
# =============================================================================

@dataclass(frozen=True)
class JobSnapshot:
    id: str
    title: str
    status: str
    job_type: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "JobSnapshot":
        return cls(
            id=str(row.id),
            title=row.title,
            status=row.status,
            job_type=getattr(row, "job_type", None),
            created_at=as_utc(row.created_at),
        )


@dataclass(frozen=True)
class ShiftSnapshot:
    id: str
    title: str
    status: str
    start_time: datetime
    end_time: datetime
    worker_id: Optional[str] = None
    job_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "ShiftSnapshot":
        return cls(
            id=str(row.id),
            title=row.title,
            status=row.status,
            start_time=as_utc(row.start_time),
            end_time=as_utc(row.end_time),
            worker_id=getattr(row, "worker_id", None),
            job_id=getattr(row, "job_id", None),
        )


@dataclass(frozen=True)
class PaymentSnapshot:
    id: str
    amount: Decimal
    status: str
    worker_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "PaymentSnapshot":
        return cls(
            id=str(row.id),
            amount=Decimal(str(row.amount)),
            status=row.status,
            worker_id=getattr(row, "worker_id", None),
            created_at=as_utc(row.created_at),
        )


@dataclass(frozen=True)
class ComplianceSnapshot:
    id: str
    title: str
    compliance_status: str
    description: Optional[str] = None
    report_type: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "ComplianceSnapshot":
        return cls(
            id=str(row.id),
            title=row.title,
            compliance_status=row.compliance_status,
            description=getattr(row, "description", None),
            report_type=getattr(row, "report_type", None),
        )


@dataclass(frozen=True)
class DetectionContext:
    """Read-only snapshot for one detection pass."""
    as_of: datetime
    jobs: Tuple[JobSnapshot, ...] = ()
    shifts: Tuple[ShiftSnapshot, ...] = ()
    payments: Tuple[PaymentSnapshot, ...] = ()
    compliance_records: Tuple[ComplianceSnapshot, ...] = ()
    missing: Tuple[str, ...] = ()  # Collections that failed to load

    @property
    def record_count(self) -> int:
        return len(self.jobs) + len(self.shifts) + len(self.payments) + len(self.compliance_records)


# =============================================================================
# Alert metadata (one type per detector)
# =============================================================================

class _AlertMetadata:
    issue_type: ClassVar[IssueType]

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: _to_json(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class UnderstaffingMetadata(_AlertMetadata):
    issue_type: ClassVar[IssueType] = IssueType.UNDERSTAFFING
    shift_id: str
    shift_start: datetime
    assigned_workers: int = 0


@dataclass(frozen=True)
class SchedulingConflictMetadata(_AlertMetadata):
    issue_type: ClassVar[IssueType] = IssueType.SCHEDULING_CONFLICT
    shift_ids: Tuple[str, str]
    overlap_start: datetime
    overlap_end: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shift_ids": list(self.shift_ids),
            "overlap": {
                "start": self.overlap_start.isoformat(),
                "end": self.overlap_end.isoformat(),
            },
        }


@dataclass(frozen=True)
class PaymentDelayMetadata(_AlertMetadata):
    issue_type: ClassVar[IssueType] = IssueType.PAYMENT_DELAY
    amount: Decimal
    days_pending: int
    worker_id: Optional[str] = None


@dataclass(frozen=True)
class ComplianceBreachMetadata(_AlertMetadata):
    issue_type: ClassVar[IssueType] = IssueType.COMPLIANCE_BREACH
    compliance_status: str
    report_type: Optional[str] = None


@dataclass(frozen=True)
class ResourceShortageMetadata(_AlertMetadata):
    issue_type: ClassVar[IssueType] = IssueType.RESOURCE_SHORTAGE
    days_open: int
    job_type: Optional[str] = None


@dataclass(frozen=True)
class AIAnalysisMetadata(_AlertMetadata):
    # Covers every issue type the model can report
    issue_type: ClassVar[IssueType] = IssueType.OTHER
    ai_analysis: Dict[str, Any] = field(default_factory=dict)


AlertMetadata = Union[
    UnderstaffingMetadata,
    SchedulingConflictMetadata,
    PaymentDelayMetadata,
    ComplianceBreachMetadata,
    ResourceShortageMetadata,
    AIAnalysisMetadata,
]


# =============================================================================
# Drafts
# =============================================================================

@dataclass(frozen=True)
class RecommendationDraft:
    title: str
    description: str
    recommendation_type: RecommendationType
    priority: int
    confidence: float
    estimated_impact: EstimatedImpact = EstimatedImpact.MEDIUM
    automatable: bool = False
    required_capabilities: Tuple[str, ...] = ()
    action_metadata: Dict[str, Any] = field(default_factory=dict)
    estimated_duration: Optional[int] = None  # Minutes

    def __post_init__(self):
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be within [0, 100], got {self.confidence}")


@dataclass(frozen=True)
class AlertDraft:
    title: str
    description: str
    issue_type: IssueType
    severity: AlertSeverity
    confidence: float
    affected_module: AffectedModule
    detection_method: DetectionMethod
    metadata: AlertMetadata
    affected_entity_type: Optional[str] = None
    affected_entity_id: Optional[str] = None
    status: AlertStatus = AlertStatus.ACTIVE

    def __post_init__(self):
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be within [0, 100], got {self.confidence}")

    @property
    def natural_key(self) -> Tuple[str, str]:
        return natural_key(self.issue_type, self.affected_entity_id, self.title)


@dataclass(frozen=True)
class DetectionResult:
    """One alert plus the recommendations that will be attached to it."""
    alert: AlertDraft
    recommendations: Tuple[RecommendationDraft, ...] = ()


def natural_key(issue_type: Any, entity_id: Optional[str], title: str = "") -> Tuple[str, str]:
    """
    Identity of an issue across passes.

    Entity-bound alerts are keyed by (issue_type, entity id). Alerts with no
    entity (AI findings) fall back to their normalised title.
    """
    type_value = issue_type.value if isinstance(issue_type, Enum) else str(issue_type)
    if entity_id:
        return type_value, str(entity_id)
    return type_value, "title:" + " ".join((title or "").lower().split())


def count_by(results: List[DetectionResult], attr: str) -> Dict[str, int]:
    """Count results by an AlertDraft enum attribute, e.g. "severity"."""
    counts: Dict[str, int] = {}
    for result in results:
        key = getattr(result.alert, attr).value
        counts[key] = counts.get(key, 0) + 1
    return counts
