# Detection Module
# Finds operational issues (staffing, scheduling, payments, compliance, jobs)
# and proposes remediations for each.
#
# Components:
# - context.py: Loads the read-only DetectionContext for a pass
# - rules.py: Rule-based evaluators and their thresholds
# - ai_detector.py: Language-model pattern detector
# - aggregator.py: Dedupe, suppression and ranking
# - repository.py: Persistence gateway for alerts, recommendations, actions
# - engine.py: DetectionEngine running one full pass
# - scheduler.py: Interval/on-demand driver (APScheduler integration)

from .models import (
    IssueAlert,
    IssueRecommendation,
    IssueAction,
    IssueType,
    AlertSeverity,
    AlertStatus,
    DetectionMethod,
)
from .types import AlertDraft, RecommendationDraft, DetectionResult, DetectionContext
from .exceptions import (
    IssueDetectionError,
    DataUnavailable,
    AIBackendError,
    AIParseError,
    PersistenceError,
    SchedulerOverlapError,
)
from .rules import DETECTION_RULES, run_rule_evaluators
from .ai_detector import AIPatternDetector, OpenAICompletionClient
from .aggregator import RedetectionPolicy, aggregate
from .context import ContextLoader, SQLAlchemyDataSource
from .repository import IssueRepository, SQLAlchemyIssueRepository
from .engine import DetectionEngine, DetectionPassResult, build_detection_engine
from .scheduler import IssueDetectionScheduler, get_detection_scheduler

__all__ = [
    # Models
    "IssueAlert",
    "IssueRecommendation",
    "IssueAction",
    "IssueType",
    "AlertSeverity",
    "AlertStatus",
    "DetectionMethod",
    # Types
    "AlertDraft",
    "RecommendationDraft",
    "DetectionResult",
    "DetectionContext",
    # Errors
    "IssueDetectionError",
    "DataUnavailable",
    "AIBackendError",
    "AIParseError",
    "PersistenceError",
    "SchedulerOverlapError",
    # Detectors
    "DETECTION_RULES",
    "run_rule_evaluators",
    "AIPatternDetector",
    "OpenAICompletionClient",
    # Pipeline
    "RedetectionPolicy",
    "aggregate",
    "ContextLoader",
    "SQLAlchemyDataSource",
    "IssueRepository",
    "SQLAlchemyIssueRepository",
    "DetectionEngine",
    "DetectionPassResult",
    "build_detection_engine",
    # Scheduler
    "IssueDetectionScheduler",
    "get_detection_scheduler",
]
