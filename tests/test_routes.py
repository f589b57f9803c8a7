"""Tests for the issues HTTP API."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from issue_engine.detection.repository import build_alert_row, build_recommendation_row
from issue_engine.detection.rules import detect_payment_delays
from issue_engine.detection.scheduler import IssueDetectionScheduler, get_detection_scheduler
from issue_engine.issues.routes import get_issue_repository
from issue_engine import main
from issue_engine.main import app

from conftest import InMemoryIssueRepository, make_context, payment_row


PREFIX = "/api/issues"


def seed_alert(repository, payment_id="pay_1", days_old=15):
    """Store a payment delay alert with its recommendations, bypassing the engine."""
    detection = detect_payment_delays(make_context(payments=[payment_row(payment_id, days_old=days_old)]))[0]
    alert = build_alert_row(detection.alert)
    repository.alerts[alert.id] = alert
    repository.recommendations[alert.id] = [
        build_recommendation_row(alert.id, rec) for rec in detection.recommendations
    ]
    return alert


@pytest.fixture
def repository():
    return InMemoryIssueRepository()


@pytest.fixture
def scheduler():
    scheduler = MagicMock(spec=IssueDetectionScheduler)
    scheduler.trigger_now.return_value = {"triggered": True}
    scheduler.get_status.return_value = {"state": "idle", "runs_completed": 0}
    return scheduler


@pytest.fixture
def client(repository, scheduler):
    app.dependency_overrides[get_issue_repository] = lambda: repository
    app.dependency_overrides[get_detection_scheduler] = lambda: scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# Alerts
# =============================================================================

class TestAlertRoutes:

    def test_list_alerts(self, client, repository):
        alert = seed_alert(repository)

        response = client.get(f"{PREFIX}/alerts")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        item = body["alerts"][0]
        assert item["id"] == alert.id
        assert item["issue_type"] == "payment_delay"
        assert item["severity"] == "high"
        assert item["status"] == "active"
        assert item["metadata"]["days_pending"] == 15

    def test_list_alerts_filtered_by_status(self, client, repository):
        seed_alert(repository, "pay_1")
        resolved = seed_alert(repository, "pay_2")
        resolved.status = "resolved"

        response = client.get(f"{PREFIX}/alerts", params={"status": "resolved"})

        assert [a["id"] for a in response.json()["alerts"]] == [resolved.id]

    def test_invalid_status_filter_rejected(self, client):
        response = client.get(f"{PREFIX}/alerts", params={"status": "bogus"})

        assert response.status_code == 422

    def test_store_failure_returns_503(self, client, repository):
        repository.fail_queries = True

        response = client.get(f"{PREFIX}/alerts")

        assert response.status_code == 503

    def test_recommendations_in_priority_order(self, client, repository):
        alert = seed_alert(repository)

        response = client.get(f"{PREFIX}/alerts/{alert.id}/recommendations")

        assert response.status_code == 200
        recommendations = response.json()
        assert [r["priority"] for r in recommendations] == [1, 2]
        assert recommendations[0]["title"] == "Process payment immediately"
        assert recommendations[0]["automatable"] is True

    def test_unknown_alert_returns_404(self, client):
        assert client.get(f"{PREFIX}/alerts/alert_missing/recommendations").status_code == 404
        assert client.post(f"{PREFIX}/alerts/alert_missing/acknowledge").status_code == 404

    @pytest.mark.parametrize("action, status, stamp", [
        ("acknowledge", "acknowledged", "acknowledged_at"),
        ("resolve", "resolved", "resolved_at"),
        ("dismiss", "dismissed", "resolved_at"),
    ])
    def test_status_transitions(self, client, repository, action, status, stamp):
        alert = seed_alert(repository)

        response = client.post(f"{PREFIX}/alerts/{alert.id}/{action}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == status
        assert body[stamp] is not None
        assert body["updated_at"] is not None
        assert repository.alerts[alert.id].status == status


# =============================================================================
# Actions
# =============================================================================

class TestActionRoutes:

    def test_record_and_list_actions(self, client, repository):
        alert = seed_alert(repository)
        recommendation = repository.recommendations[alert.id][0]

        response = client.post(
            f"{PREFIX}/alerts/{alert.id}/actions",
            json={
                "action_type": "automated",
                "initiated_by": "ops@example.com",
                "recommendation_id": recommendation.id,
                "status": "completed",
                "result": {"processed": True},
            },
        )

        assert response.status_code == 201
        created = response.json()
        assert created["alert_id"] == alert.id
        assert created["status"] == "completed"
        assert created["completed_at"] is not None

        listed = client.get(f"{PREFIX}/alerts/{alert.id}/actions").json()
        assert [a["id"] for a in listed] == [created["id"]]

    def test_pending_action_has_no_completion_time(self, client, repository):
        alert = seed_alert(repository)

        response = client.post(
            f"{PREFIX}/alerts/{alert.id}/actions",
            json={"action_type": "manual", "initiated_by": "ops@example.com"},
        )

        assert response.json()["status"] == "pending"
        assert response.json()["completed_at"] is None

    def test_invalid_action_type_rejected(self, client, repository):
        alert = seed_alert(repository)

        response = client.post(
            f"{PREFIX}/alerts/{alert.id}/actions",
            json={"action_type": "teleport", "initiated_by": "ops@example.com"},
        )

        assert response.status_code == 422

    def test_action_on_unknown_alert_returns_404(self, client):
        response = client.post(
            f"{PREFIX}/alerts/alert_missing/actions",
            json={"action_type": "manual", "initiated_by": "ops@example.com"},
        )

        assert response.status_code == 404


# =============================================================================
# Detection & scheduler
# =============================================================================

class TestDetectionRoutes:

    def test_run_detection_now(self, client, scheduler):
        response = client.post(f"{PREFIX}/detect/run")

        assert response.status_code == 200
        assert response.json() == {"triggered": True, "reason": None}
        scheduler.trigger_now.assert_called_once_with()

    def test_run_detection_while_busy(self, client, scheduler):
        scheduler.trigger_now.return_value = {"triggered": False, "reason": "detection pass already running"}

        response = client.post(f"{PREFIX}/detect/run")

        assert response.json()["triggered"] is False

    def test_detection_status(self, client):
        response = client.get(f"{PREFIX}/detect/status")

        assert response.json() == {"state": "idle", "runs_completed": 0}

    def test_start_scheduler(self, client, scheduler):
        response = client.post(f"{PREFIX}/scheduler/start", json={"interval_minutes": 5})

        assert response.status_code == 200
        scheduler.start.assert_called_once_with(interval_minutes=5, run_immediately=True)

    def test_start_scheduler_rejects_zero_interval(self, client, scheduler):
        response = client.post(f"{PREFIX}/scheduler/start", json={"interval_minutes": 0})

        assert response.status_code == 422
        scheduler.start.assert_not_called()

    def test_stop_scheduler(self, client, scheduler):
        response = client.post(f"{PREFIX}/scheduler/stop")

        assert response.status_code == 200
        scheduler.stop.assert_called_once_with()


def test_health_check():
    response = TestClient(app).get("/health")

    assert response.json() == {"status": "healthy"}


class TestLifespan:

    @pytest.mark.parametrize("enabled", [True, False])
    def test_scheduler_shut_down_on_exit(self, monkeypatch, scheduler, enabled):
        monkeypatch.setattr(main.settings, "ENABLE_ISSUE_DETECTION", enabled)
        monkeypatch.setattr(main, "get_detection_scheduler", lambda: scheduler)

        with TestClient(app) as client:
            assert client.get("/health").status_code == 200

        assert scheduler.start.called is enabled
        scheduler.shutdown.assert_awaited_once_with()
