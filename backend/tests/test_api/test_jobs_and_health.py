"""
API tests for the cron job endpoints and the health checks

Author: Backoffice API team
Date: 2026-02-17
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from backoffice.api import jobs
from backoffice.core import auth
from backoffice.core.rate_limit import rate_limiter
from backoffice.main import app
from backoffice.services.agenda_service import ReminderDispatchResult

CRON_HEADERS = {'X-Cron-Key': "secret"}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(auth.settings, "CRON_API_KEY", "secret")
    rate_limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


def override(dependency, service):
    app.dependency_overrides[dependency] = lambda: service
    return service


def job_result(payload):
    result = MagicMock()
    result.to_dict.return_value = payload
    return result


class TestCronKey:

    def test_missing_key(self, client):
        override(jobs.get_agenda_service, MagicMock())

        response = client.post("/api/v1/jobs/agenda-reminders")

        assert response.status_code == 401

    def test_wrong_key(self, client):
        service = override(jobs.get_agenda_service, MagicMock())
        service.dispatch_reminders = AsyncMock()

        response = client.post("/api/v1/jobs/agenda-reminders", headers={'X-Cron-Key': "nope"})

        assert response.status_code == 401
        service.dispatch_reminders.assert_not_called()


class TestJobs:

    def test_agenda_reminders(self, client):
        service = override(jobs.get_agenda_service, MagicMock())
        service.dispatch_reminders = AsyncMock(return_value=ReminderDispatchResult(
            success=True, dispatched=2, total=2, duration_ms=15
        ))

        response = client.post("/api/v1/jobs/agenda-reminders", headers=CRON_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            'success': True, 'dispatched': 2, 'failed': 0, 'total': 2, 'duration_ms': 15, 'results': [],
        }

    def test_tracking_poll_failure_is_reported(self, client):
        service = override(jobs.get_tracking_service, MagicMock())
        service.poll = AsyncMock(side_effect=RuntimeError("database unavailable"))

        response = client.post("/api/v1/jobs/tracking-poll", headers=CRON_HEADERS)

        assert response.status_code == 500
        assert response.json() == {'success': False, 'error': "database unavailable"}

    def test_creative_process_defaults(self, client):
        service = override(jobs.get_creative_service, MagicMock())
        service.process_queue = AsyncMock(return_value=job_result({'success': True, 'message': "No jobs to process"}))

        response = client.post("/api/v1/jobs/creative-process", headers=CRON_HEADERS)

        assert response.json()['message'] == "No jobs to process"
        service.process_queue.assert_awaited_once_with(job_id=None, limit=5)

    def test_creative_process_single_job(self, client):
        service = override(jobs.get_creative_service, MagicMock())
        service.process_queue = AsyncMock(return_value=job_result({'success': True}))

        client.post("/api/v1/jobs/creative-process", headers=CRON_HEADERS, json={'job_id': "job-9"})

        service.process_queue.assert_awaited_once_with(job_id="job-9", limit=5)

    def test_notifications_run_with_body(self, client):
        service = override(jobs.get_notification_service, MagicMock())
        service.run = AsyncMock(return_value=job_result({'success': True, 'stats': {'claimed_count': 0}}))

        response = client.post("/api/v1/jobs/notifications-run", headers=CRON_HEADERS,
                               json={'limit': 10, 'tenant_id': "tenant-1"})

        assert response.status_code == 200
        service.run.assert_awaited_once_with(limit=10, tenant_id="tenant-1")

    def test_notifications_run_limit_validated(self, client):
        override(jobs.get_notification_service, MagicMock())

        response = client.post("/api/v1/jobs/notifications-run", headers=CRON_HEADERS, json={'limit': 500})

        assert response.status_code == 422


class TestHealth:

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()['status'] == "online"

    def test_healthy(self, client):
        conn = MagicMock()

        with patch("backoffice.main.get_db_connection_with_retry", return_value=conn):
            response = client.get("/health")

        body = response.json()
        assert body['status'] == "healthy"
        assert body['database']['status'] == "connected"
        conn.close.assert_called_once()

    def test_degraded_when_database_is_down(self, client):
        with patch("backoffice.main.get_db_connection_with_retry", side_effect=Exception("timeout expired")):
            response = client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body['status'] == "degraded"
        assert body['database'] == {
            'status': "disconnected", 'latency_ms': None, 'error': "timeout expired",
            'connection_timeout_s': body['database']['connection_timeout_s'],
        }
