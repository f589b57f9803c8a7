"""
Aggregator / Deduper

Merges rule-based and AI results into one ordered list:
1. Rule results first, then AI results
2. One result per natural key (issue_type, affected entity), highest confidence wins
3. Drop results whose key already has a persisted alert in a suppressing status
4. Rank recommendations within each alert, then alerts by severity and confidence
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Set, Tuple

from .models import SEVERITY_RANK, AlertStatus
from .types import DetectionResult, RecommendationDraft, natural_key

logger = logging.getLogger(__name__)


class RedetectionPolicy(str, Enum):
    """What a closed (resolved/dismissed) alert means for later passes."""
    REDETECT = "redetect"   # Raise again if the condition is still present
    SUPPRESS = "suppress"   # Never raise the same issue again


OPEN_STATUSES = frozenset({AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED})
CLOSED_STATUSES = frozenset({AlertStatus.RESOLVED, AlertStatus.DISMISSED})


def suppressing_statuses(policy: RedetectionPolicy) -> FrozenSet[AlertStatus]:
    """Persisted alert statuses that block a new alert with the same key."""
    if RedetectionPolicy(policy) == RedetectionPolicy.SUPPRESS:
        return OPEN_STATUSES | CLOSED_STATUSES
    return OPEN_STATUSES


@dataclass
class AggregationResult:
    results: List[DetectionResult] = field(default_factory=list)
    duplicates_dropped: int = 0
    suppressed: int = 0


def rank_recommendations(
    recommendations: Iterable[RecommendationDraft],
) -> Tuple[RecommendationDraft, ...]:
    """Order by priority then confidence, and renumber priorities 1..n."""
    ordered = sorted(recommendations, key=lambda r: (r.priority, -r.confidence))
    return tuple(replace(rec, priority=i) for i, rec in enumerate(ordered, start=1))


def deduplicate(results: Iterable[DetectionResult]) -> Tuple[List[DetectionResult], int]:
    """Keep one result per natural key; higher confidence wins, ties keep the first."""
    kept: Dict[Tuple[str, str], DetectionResult] = {}
    dropped = 0

    for result in results:
        key = result.alert.natural_key
        current = kept.get(key)
        if current is None:
            kept[key] = result
            continue
        dropped += 1
        if result.alert.confidence > current.alert.confidence:
            kept[key] = result

    return list(kept.values()), dropped


def existing_keys(existing_alerts: Iterable[Any], statuses: FrozenSet[AlertStatus]) -> Set[Tuple[str, str]]:
    """Natural keys of persisted alerts whose status is in `statuses`."""
    status_values = {s.value for s in statuses}
    return {
        natural_key(alert.issue_type, alert.affected_entity_id, alert.title)
        for alert in existing_alerts
        if alert.status in status_values
    }


def aggregate(
    rule_results: List[DetectionResult],
    ai_results: List[DetectionResult],
    existing_alerts: Iterable[Any] = (),
    statuses: FrozenSet[AlertStatus] = OPEN_STATUSES,
) -> AggregationResult:
    """Merge, deduplicate, suppress and order the results of one pass."""
    unique, dropped = deduplicate(list(rule_results) + list(ai_results))

    blocked = existing_keys(existing_alerts, statuses)
    fresh = []
    suppressed = 0
    for result in unique:
        if result.alert.natural_key in blocked:
            suppressed += 1
            logger.debug(
                f"Suppressed {result.alert.issue_type.value} for "
                f"{result.alert.affected_entity_id}: alert already exists"
            )
            continue
        fresh.append(replace(result, recommendations=rank_recommendations(result.recommendations)))

    fresh.sort(key=lambda r: (SEVERITY_RANK[r.alert.severity], -r.alert.confidence))

    return AggregationResult(results=fresh, duplicates_dropped=dropped, suppressed=suppressed)
