"""
Persistence Gateway

CRUD contract for alerts, recommendations and actions, plus the SQLAlchemy
implementation. An alert and its recommendations are written as one
transaction: recommendations are only inserted once the alert row is in.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from issue_engine.data.base import generate_id
from .exceptions import PersistenceError
from .models import AlertStatus, IssueAction, IssueAlert, IssueRecommendation
from .types import AlertDraft, RecommendationDraft

logger = logging.getLogger(__name__)


# Fields an API caller may change on an existing alert
UPDATABLE_ALERT_FIELDS = {"status", "severity", "title", "description"}


def build_alert_row(draft: AlertDraft) -> IssueAlert:
    """Flatten an AlertDraft into an IssueAlert row (metadata becomes a plain map)."""
    return IssueAlert(
        id=generate_id("alert"),
        title=draft.title,
        description=draft.description,
        issue_type=draft.issue_type.value,
        severity=draft.severity.value,
        status=draft.status.value,
        confidence=float(draft.confidence),
        affected_module=draft.affected_module.value,
        affected_entity_type=draft.affected_entity_type,
        affected_entity_id=draft.affected_entity_id,
        detection_method=draft.detection_method.value,
        extra_data=draft.metadata.to_dict(),
        created_at=datetime.now(timezone.utc),
        updated_at=None,
        acknowledged_at=None,
        resolved_at=None,
    )


def build_recommendation_row(alert_id: str, draft: RecommendationDraft) -> IssueRecommendation:
    return IssueRecommendation(
        id=generate_id("rec"),
        alert_id=alert_id,
        title=draft.title,
        description=draft.description,
        recommendation_type=draft.recommendation_type.value,
        priority=draft.priority,
        confidence=float(draft.confidence),
        estimated_impact=draft.estimated_impact.value if draft.estimated_impact else None,
        required_capabilities=list(draft.required_capabilities),
        automatable=draft.automatable,
        action_metadata=dict(draft.action_metadata),
        estimated_duration=draft.estimated_duration,
        created_at=datetime.now(timezone.utc),
    )


def apply_alert_changes(alert: IssueAlert, changes: Dict[str, Any]) -> IssueAlert:
    """Apply a partial update, stamping lifecycle timestamps on status changes."""
    unknown = set(changes) - UPDATABLE_ALERT_FIELDS
    if unknown:
        raise ValueError(f"Cannot update alert fields: {', '.join(sorted(unknown))}")

    now = datetime.now(timezone.utc)
    for name, value in changes.items():
        if hasattr(value, "value"):
            value = value.value
        setattr(alert, name, value)

    status = changes.get("status")
    if status is not None:
        status = AlertStatus(status)
        if status == AlertStatus.ACKNOWLEDGED:
            alert.acknowledged_at = now
        elif status in (AlertStatus.RESOLVED, AlertStatus.DISMISSED):
            alert.resolved_at = now
    alert.updated_at = now
    return alert


class IssueRepository(Protocol):
    """Durable storage for alerts, recommendations and actions."""

    async def create_alert(self, draft: AlertDraft) -> IssueAlert: ...

    async def create_recommendation(self, alert_id: str, draft: RecommendationDraft) -> IssueRecommendation: ...

    async def create_alert_with_recommendations(
        self, draft: AlertDraft, recommendations: Sequence[RecommendationDraft]
    ) -> Tuple[IssueAlert, List[IssueRecommendation]]: ...

    async def query_alerts(self, status: Optional[str] = None) -> List[IssueAlert]: ...

    async def get_alert(self, alert_id: str) -> Optional[IssueAlert]: ...

    async def update_alert(self, alert_id: str, **changes: Any) -> Optional[IssueAlert]: ...

    async def get_recommendations(self, alert_id: str) -> List[IssueRecommendation]: ...

    async def create_action(self, alert_id: str, **fields: Any) -> IssueAction: ...

    async def get_actions(self, alert_id: str) -> List[IssueAction]: ...


class SQLAlchemyIssueRepository:
    """
    IssueRepository on SQLAlchemy async sessions.

    Each call opens its own session so writes for different alerts in one
    pass stay independent.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create_alert(self, draft: AlertDraft) -> IssueAlert:
        alert, _ = await self.create_alert_with_recommendations(draft, ())
        return alert

    async def create_recommendation(self, alert_id: str, draft: RecommendationDraft) -> IssueRecommendation:
        row = build_recommendation_row(alert_id, draft)
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    db.add(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store recommendation for alert {alert_id}: {e}") from e
        return row

    async def create_alert_with_recommendations(
        self, draft: AlertDraft, recommendations: Sequence[RecommendationDraft]
    ) -> Tuple[IssueAlert, List[IssueRecommendation]]:
        alert = build_alert_row(draft)
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    db.add(alert)
                    # Alert insert must succeed before any recommendation is attempted
                    await db.flush()
                    rows = [build_recommendation_row(alert.id, rec) for rec in recommendations]
                    db.add_all(rows)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to store {draft.issue_type.value} alert: {e}",
                issue_type=draft.issue_type.value,
                entity_id=draft.affected_entity_id,
            ) from e
        return alert, rows

    async def query_alerts(self, status: Optional[str] = None) -> List[IssueAlert]:
        query = select(IssueAlert).order_by(IssueAlert.created_at.desc())
        if status is not None:
            query = query.where(IssueAlert.status == AlertStatus(status).value)
        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to query alerts: {e}") from e

    async def get_alert(self, alert_id: str) -> Optional[IssueAlert]:
        try:
            async with self.session_factory() as db:
                return await db.get(IssueAlert, alert_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load alert {alert_id}: {e}") from e

    async def update_alert(self, alert_id: str, **changes: Any) -> Optional[IssueAlert]:
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    alert = await db.get(IssueAlert, alert_id)
                    if alert is None:
                        return None
                    apply_alert_changes(alert, changes)
                return alert
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update alert {alert_id}: {e}") from e

    async def get_recommendations(self, alert_id: str) -> List[IssueRecommendation]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(IssueRecommendation)
                    .where(IssueRecommendation.alert_id == alert_id)
                    .order_by(IssueRecommendation.priority)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load recommendations for alert {alert_id}: {e}") from e

    async def create_action(self, alert_id: str, **fields: Any) -> IssueAction:
        action = IssueAction(
            id=generate_id("act"),
            alert_id=alert_id,
            created_at=datetime.now(timezone.utc),
            **fields,
        )
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    db.add(action)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record action for alert {alert_id}: {e}") from e
        return action

    async def get_actions(self, alert_id: str) -> List[IssueAction]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(IssueAction)
                    .where(IssueAction.alert_id == alert_id)
                    .order_by(IssueAction.created_at.desc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load actions for alert {alert_id}: {e}") from e
