"""
API endpoint tests
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.exc import OperationalError
from api.main import app
from api.dependencies import get_db
from ingestion.sync_log import SyncLogEntry
from models.base import SyncStatus


def log_entry(minutes, status, **kwargs):
    return SyncLogEntry(
        timestamp=datetime(2024, 6, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
        status=status,
        **kwargs,
    )


def test_root_lists_endpoints(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["endpoints"]["status"] == "/sync/status"


def test_health_endpoint_database_connected(client):
    """No sync yet: database reachable, system healthy"""
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["database_connected"] is True
    assert data["last_sync_status"] is None
    assert data["status"] == "healthy"
    assert "X-Request-ID" in response.headers


def test_health_degraded_after_failed_sync(client, seed_log):
    seed_log(log_entry(1, SyncStatus.FAILED, last_error_message="feed unreachable"))

    data = client.get("/health").json()

    assert data["status"] == "degraded"
    assert data["last_sync_status"] == "failed"
    assert data["last_error_message"] == "feed unreachable"


def test_health_unhealthy_when_database_down(client):
    broken = MagicMock()
    broken.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("refused")))

    async def override_get_db():
        yield broken

    app.dependency_overrides[get_db] = override_get_db

    data = client.get("/health").json()

    assert data["database_connected"] is False
    assert data["status"] == "unhealthy"


def test_sync_status_reports_latest_cursors(client, seed_log):
    cursors = {"Property:idx": {"last_timestamp": "2024-05-01T00:00:00Z", "last_key": "L1"}}
    seed_log(
        log_entry(1, SyncStatus.IN_PROGRESS, pipeline="Property:idx"),
        log_entry(2, SyncStatus.SUCCESS, cursors=cursors, total_successful=10),
    )

    response = client.get("/sync/status", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    body = response.json()
    assert body["request_id"] == "req-123"
    assert body["data"]["cursors"] == cursors
    assert body["data"]["running"] is False
    assert body["data"]["latest"]["status"] == "success"
    assert body["data"]["latest"]["total_successful"] == 10


def test_sync_status_empty_log(client):
    body = client.get("/sync/status").json()

    assert body["data"]["latest"] is None
    assert body["data"]["cursors"] == {}


def test_sync_history_newest_first_with_limit(client, seed_log):
    seed_log(*(log_entry(m, SyncStatus.IN_PROGRESS, pipeline=f"batch-{m}") for m in range(5)))

    body = client.get("/sync/history?limit=3").json()

    assert body["data"]["count"] == 3
    assert [e["pipeline"] for e in body["data"]["entries"]] == ["batch-4", "batch-3", "batch-2"]


def test_sync_history_rejects_bad_limit(client):
    assert client.get("/sync/history?limit=0").status_code == 422


def test_sync_config_never_echoes_tokens(client):
    response = client.get("/sync/config")

    assert response.status_code == 200
    data = response.json()
    assert "idx_token_configured" in data
    assert not any("token" in key and not key.endswith("_configured") for key in data)
    assert data["batch_size_property"] > 0


def test_malformed_request_id_is_replaced(client):
    response = client.get("/health", headers={"X-Request-ID": "not an id; drop table"})

    assert response.headers["X-Request-ID"].startswith("req_")
