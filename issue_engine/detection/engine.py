"""
Detection Engine

Runs one detection pass:
1. Load the DetectionContext snapshot
2. Run rule evaluators (worker thread) and the AI detector concurrently
3. Aggregate: dedupe, suppress already-known issues, rank
4. Persist each alert with its recommendations as one unit
5. Hand the new alerts to the dispatcher, if one is configured

This engine is called:
- On a schedule (every DETECTION_INTERVAL_MINUTES)
- On demand through the detection trigger endpoint
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from issue_engine.config import Settings, settings as default_settings
from issue_engine.database import async_session_maker
from .aggregator import RedetectionPolicy, aggregate, suppressing_statuses
from .ai_detector import AIPatternDetector, OpenAICompletionClient
from .context import ContextLoader, SQLAlchemyDataSource
from .exceptions import PersistenceError
from .models import IssueAlert
from .repository import IssueRepository, SQLAlchemyIssueRepository
from .rules import run_rule_evaluators
from .types import count_by

logger = logging.getLogger(__name__)


class AlertDispatcher(Protocol):
    """Receives alerts created by a pass (e.g. to notify operators)."""

    async def dispatch(self, alerts: List[IssueAlert]) -> None: ...


@dataclass
class DetectionPassResult:
    """Result of a detection pass."""
    trigger: str
    run_at: datetime

    # Detection results
    rule_based_detected: int = 0
    ai_detected: int = 0
    duplicates_dropped: int = 0
    suppressed: int = 0

    # Persistence results
    alerts_created: int = 0
    recommendations_created: int = 0
    alerts_by_severity: Dict[str, int] = field(default_factory=dict)
    alerts_by_type: Dict[str, int] = field(default_factory=dict)
    persistence_failures: int = 0
    alert_ids: List[str] = field(default_factory=list)

    # Context
    missing_collections: List[str] = field(default_factory=list)

    # Performance
    detection_duration_ms: int = 0
    total_duration_ms: int = 0

    # Errors
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "trigger": self.trigger,
            "run_at": self.run_at.isoformat(),
            "detection": {
                "rule_based": self.rule_based_detected,
                "ai_powered": self.ai_detected,
                "duplicates_dropped": self.duplicates_dropped,
                "suppressed": self.suppressed,
            },
            "persistence": {
                "alerts_created": self.alerts_created,
                "recommendations_created": self.recommendations_created,
                "by_severity": self.alerts_by_severity,
                "by_type": self.alerts_by_type,
                "failures": self.persistence_failures,
                "alert_ids": self.alert_ids,
            },
            "missing_collections": self.missing_collections,
            "performance": {
                "detection_ms": self.detection_duration_ms,
                "total_ms": self.total_duration_ms,
            },
            "errors": self.errors,
        }


class DetectionEngine:
    """
    Runs detection passes over a ContextLoader snapshot and persists the findings.

    Collaborators are injected so tests can swap in in-memory doubles:
        engine = DetectionEngine(loader, repository, ai_detector=detector)
        result = await engine.run_pass(trigger="on_demand")
    """

    def __init__(
        self,
        loader: ContextLoader,
        repository: IssueRepository,
        ai_detector: Optional[AIPatternDetector] = None,
        policy: RedetectionPolicy = RedetectionPolicy.REDETECT,
        dispatcher: Optional[AlertDispatcher] = None,
    ):
        self.loader = loader
        self.repository = repository
        self.ai_detector = ai_detector
        self.policy = RedetectionPolicy(policy)
        self.dispatcher = dispatcher

    async def run_pass(self, trigger: str = "scheduled", as_of: Optional[datetime] = None) -> DetectionPassResult:
        """
        Run one full detection pass.

        Raises:
            DataUnavailable: the context could not be loaded
            PersistenceError: existing alerts could not be read for suppression
        """
        started = time.monotonic()
        result = DetectionPassResult(trigger=trigger, run_at=datetime.now(timezone.utc))

        context = await self.loader.load(as_of=as_of)
        result.missing_collections = list(context.missing)
        if context.missing:
            result.errors.append(f"Collections unavailable: {', '.join(context.missing)}")

        rule_results, ai_results = await asyncio.gather(
            asyncio.to_thread(run_rule_evaluators, context),
            self._detect_ai(context),
        )
        result.rule_based_detected = len(rule_results)
        result.ai_detected = len(ai_results)
        result.detection_duration_ms = int((time.monotonic() - started) * 1000)

        existing = await self._load_suppressing_alerts()
        aggregated = aggregate(
            rule_results, ai_results, existing, suppressing_statuses(self.policy)
        )
        result.duplicates_dropped = aggregated.duplicates_dropped
        result.suppressed = aggregated.suppressed

        created: List[IssueAlert] = []
        persisted = []
        for detection in aggregated.results:
            draft = detection.alert
            try:
                alert, recommendations = await self.repository.create_alert_with_recommendations(
                    draft, detection.recommendations
                )
            except PersistenceError as e:
                logger.error(
                    f"Failed to persist {draft.issue_type.value} alert for "
                    f"{draft.affected_entity_id}: {e}"
                )
                result.persistence_failures += 1
                result.errors.append(str(e))
                continue
            except Exception as e:
                logger.exception(
                    f"Unexpected error persisting {draft.issue_type.value} alert for "
                    f"{draft.affected_entity_id}: {e}"
                )
                result.persistence_failures += 1
                result.errors.append(str(e))
                continue

            created.append(alert)
            persisted.append(detection)
            result.recommendations_created += len(recommendations)

        result.alerts_created = len(created)
        result.alert_ids = [alert.id for alert in created]
        result.alerts_by_severity = count_by(persisted, "severity")
        result.alerts_by_type = count_by(persisted, "issue_type")

        if created and self.dispatcher is not None:
            try:
                await self.dispatcher.dispatch(created)
            except Exception as e:
                logger.error(f"Alert dispatch failed for {len(created)} alerts: {e}")
                result.errors.append(f"Dispatch failed: {e}")

        result.total_duration_ms = int((time.monotonic() - started) * 1000)
        return result

    async def _detect_ai(self, context) -> list:
        if self.ai_detector is None:
            return []
        return await self.ai_detector.detect(context)

    async def _load_suppressing_alerts(self) -> List[IssueAlert]:
        existing: List[IssueAlert] = []
        for status in sorted(suppressing_statuses(self.policy), key=lambda s: s.value):
            existing.extend(await self.repository.query_alerts(status=status.value))
        return existing


def build_detection_engine(
    config: Optional[Settings] = None,
    dispatcher: Optional[AlertDispatcher] = None,
) -> DetectionEngine:
    """Wire a DetectionEngine against the application database and OpenAI."""
    config = config or default_settings

    ai_detector = None
    if config.AI_DETECTION_ENABLED and config.OPENAI_API_KEY:
        ai_detector = AIPatternDetector(
            OpenAICompletionClient(
                api_key=config.OPENAI_API_KEY,
                model=config.OPENAI_MODEL,
                max_tokens=config.OPENAI_MAX_TOKENS,
                temperature=config.OPENAI_TEMPERATURE,
            ),
            timeout_seconds=config.AI_TIMEOUT_SECONDS,
            sample_size=config.AI_SAMPLE_SIZE,
        )
    else:
        logger.info("AI issue detection disabled (no OPENAI_API_KEY or AI_DETECTION_ENABLED=false)")

    return DetectionEngine(
        loader=ContextLoader(SQLAlchemyDataSource(async_session_maker)),
        repository=SQLAlchemyIssueRepository(async_session_maker),
        ai_detector=ai_detector,
        policy=RedetectionPolicy(config.REDETECTION_POLICY),
        dispatcher=dispatcher,
    )

