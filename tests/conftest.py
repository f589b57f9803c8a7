"""Shared test fixtures for issue engine tests."""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from issue_engine.data.base import generate_id
from issue_engine.detection.context import ContextLoader
from issue_engine.detection.exceptions import PersistenceError
from issue_engine.detection.models import AlertStatus, IssueAction
from issue_engine.detection.repository import (
    apply_alert_changes,
    build_alert_row,
    build_recommendation_row,
)
from issue_engine.detection.types import (
    ComplianceSnapshot,
    DetectionContext,
    JobSnapshot,
    PaymentSnapshot,
    ShiftSnapshot,
)


AS_OF = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Test doubles
# =============================================================================

class InMemoryIssueRepository:
    """IssueRepository keeping rows in dicts. Entities in fail_on_entities raise on write."""

    def __init__(self, fail_on_entities=()):
        self.alerts: Dict[str, Any] = {}
        self.recommendations: Dict[str, List[Any]] = {}
        self.actions: Dict[str, List[Any]] = {}
        self.fail_on_entities = set(fail_on_entities)
        self.fail_queries = False

    async def create_alert(self, draft):
        alert, _ = await self.create_alert_with_recommendations(draft, ())
        return alert

    async def create_recommendation(self, alert_id, draft):
        row = build_recommendation_row(alert_id, draft)
        self.recommendations.setdefault(alert_id, []).append(row)
        return row

    async def create_alert_with_recommendations(self, draft, recommendations):
        if draft.affected_entity_id in self.fail_on_entities:
            raise PersistenceError(
                "simulated write failure",
                issue_type=draft.issue_type.value,
                entity_id=draft.affected_entity_id,
            )
        alert = build_alert_row(draft)
        rows = [build_recommendation_row(alert.id, rec) for rec in recommendations]
        self.alerts[alert.id] = alert
        self.recommendations[alert.id] = rows
        return alert, rows

    async def query_alerts(self, status: Optional[str] = None):
        if self.fail_queries:
            raise PersistenceError("simulated read failure")
        alerts = [a for a in self.alerts.values() if status is None or a.status == AlertStatus(status).value]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    async def get_alert(self, alert_id):
        return self.alerts.get(alert_id)

    async def update_alert(self, alert_id, **changes):
        alert = self.alerts.get(alert_id)
        if alert is None:
            return None
        return apply_alert_changes(alert, changes)

    async def get_recommendations(self, alert_id):
        return sorted(self.recommendations.get(alert_id, []), key=lambda r: r.priority)

    async def create_action(self, alert_id, **fields):
        action = IssueAction(
            id=generate_id("act"),
            alert_id=alert_id,
            created_at=datetime.now(timezone.utc),
            **fields,
        )
        self.actions.setdefault(alert_id, []).append(action)
        return action

    async def get_actions(self, alert_id):
        return list(reversed(self.actions.get(alert_id, [])))


class StaticDataSource:
    """OperationalDataSource serving fixed rows. Names in `failing` raise on read."""

    def __init__(self, jobs=(), shifts=(), payments=(), compliance_records=(), failing=()):
        self.rows = {
            "jobs": list(jobs),
            "shifts": list(shifts),
            "payments": list(payments),
            "compliance_records": list(compliance_records),
        }
        self.failing = set(failing)

    async def _read(self, name):
        if name in self.failing:
            raise ConnectionError(f"{name} table unreachable")
        return self.rows[name]

    async def get_jobs(self):
        return await self._read("jobs")

    async def get_shifts(self):
        return await self._read("shifts")

    async def get_payments(self):
        return await self._read("payments")

    async def get_compliance_records(self):
        return await self._read("compliance_records")


class ScriptedCompletionClient:
    """CompletionClient returning a canned response, optionally slow or failing."""

    def __init__(self, response: str = '{"issues": []}', delay: float = 0.0, error: Exception = None):
        self.response = response
        self.delay = delay
        self.error = error
        self.calls: List[Dict[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append({"system": system_prompt, "user": user_prompt})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


# =============================================================================
# Row / snapshot builders
# =============================================================================

def at(hour: int, minute: int = 0, day: int = 3) -> datetime:
    """A UTC time on a fixed March 2026 day."""
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


def shift_row(id, start, end, status="published", worker_id=None, title=None):
    return SimpleNamespace(
        id=id,
        title=title or f"Shift {id}",
        status=status,
        start_time=start,
        end_time=end,
        worker_id=worker_id,
        job_id=None,
    )


def payment_row(id, days_old, amount="250.00", status="pending", worker_id="worker_1"):
    return SimpleNamespace(
        id=id,
        amount=Decimal(amount),
        status=status,
        worker_id=worker_id,
        created_at=AS_OF - timedelta(days=days_old, hours=1),
    )


def job_row(id, days_old, status="active", job_type="warehouse"):
    return SimpleNamespace(
        id=id,
        title=f"Job {id}",
        status=status,
        job_type=job_type,
        created_at=AS_OF - timedelta(days=days_old, hours=1),
    )


def compliance_row(id, compliance_status, description=None):
    return SimpleNamespace(
        id=id,
        title=f"Requirement {id}",
        compliance_status=compliance_status,
        description=description,
        report_type="safety",
    )


def make_context(jobs=(), shifts=(), payments=(), compliance_records=(), as_of=AS_OF) -> DetectionContext:
    """Build a DetectionContext directly from row-like objects."""
    return DetectionContext(
        as_of=as_of,
        jobs=tuple(JobSnapshot.from_row(r) for r in jobs),
        shifts=tuple(ShiftSnapshot.from_row(r) for r in shifts),
        payments=tuple(PaymentSnapshot.from_row(r) for r in payments),
        compliance_records=tuple(ComplianceSnapshot.from_row(r) for r in compliance_records),
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def repository():
    return InMemoryIssueRepository()


@pytest.fixture
def data_source():
    """Data source with one issue of every rule-detected kind."""
    return StaticDataSource(
        jobs=[job_row("job_1", days_old=20)],
        shifts=[
            shift_row("shift_1", at(9), at(13), worker_id="worker_1"),
            shift_row("shift_2", at(12), at(16), worker_id="worker_2"),
            shift_row("shift_3", at(18), at(22)),
        ],
        payments=[payment_row("pay_1", days_old=15)],
        compliance_records=[compliance_row("comp_1", "non_compliant")],
    )


@pytest.fixture
def loader(data_source):
    return ContextLoader(data_source)
