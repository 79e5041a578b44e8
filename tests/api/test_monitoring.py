"""Tests for the monitoring endpoints."""

from datetime import timedelta

from httpx import AsyncClient

from mailsync.domain.enums import SyncJobStatus
from mailsync.infrastructure.persistence.models import SyncJob
from mailsync.infrastructure.services import SyncMonitoringService
from mailsync.shared.utils.datetime import utc_now


async def _add_jobs(session_factory, account_id: str, statuses: list[str]) -> None:
    now = utc_now()
    async with session_factory() as session, session.begin():
        for i, status in enumerate(statuses):
            started = now - timedelta(hours=i + 1)
            session.add(
                SyncJob(
                    account_id=account_id,
                    status=status,
                    sync_mode="incremental",
                    trigger="manual",
                    started_at=started,
                    completed_at=started + timedelta(seconds=5),
                    emails_synced=2,
                    error="boom" if status == SyncJobStatus.FAILED.value else None,
                )
            )


async def test_account_metrics(client: AsyncClient, make_account, session_factory) -> None:
    account_id = await make_account()
    done, failed = SyncJobStatus.COMPLETED.value, SyncJobStatus.FAILED.value
    await _add_jobs(session_factory, account_id, [done, done, done, failed])

    response = await client.get(f"/api/v1/monitoring/accounts/{account_id}/metrics")

    assert response.status_code == 200
    data = response.json()
    assert data["total_syncs"] == 4
    assert data["failed_syncs"] == 1
    assert data["error_rate"] == 25.0
    assert data["uptime"] == 75.0
    assert data["total_emails_synced"] == 0
    assert data["average_sync_time_ms"] == 5000.0


async def test_account_health_critical(
    client: AsyncClient, make_account, session_factory
) -> None:
    """Mostly failing syncs produce a critical report with recommendations."""
    account_id = await make_account()
    failed = SyncJobStatus.FAILED.value
    await _add_jobs(session_factory, account_id, [failed, failed, SyncJobStatus.COMPLETED.value])

    response = await client.get(f"/api/v1/monitoring/accounts/{account_id}/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "critical"
    assert any(issue.startswith("High error rate") for issue in data["issues"])
    assert len(data["recommendations"]) == len(data["issues"])
    assert data["metrics"]["window_days"] == 7


async def test_sync_history(client: AsyncClient, make_account, session_factory) -> None:
    account_id = await make_account()
    done, failed = SyncJobStatus.COMPLETED.value, SyncJobStatus.FAILED.value
    await _add_jobs(session_factory, account_id, [failed, done, done])

    response = await client.get(
        f"/api/v1/monitoring/accounts/{account_id}/sync-history", params={"limit": 2}
    )

    assert response.status_code == 200
    jobs = response.json()
    assert [j["status"] for j in jobs] == [failed, done]
    assert jobs[0]["error"] == "boom"


async def test_unknown_account_returns_404(client: AsyncClient) -> None:
    for path in ("metrics", "health", "sync-history"):
        response = await client.get(f"/api/v1/monitoring/accounts/missing/{path}")
        assert response.status_code == 404


async def test_window_days_is_validated(client: AsyncClient, make_account) -> None:
    account_id = await make_account()
    response = await client.get(
        f"/api/v1/monitoring/accounts/{account_id}/metrics", params={"window_days": 0}
    )
    assert response.status_code == 422


async def test_system_metrics(client: AsyncClient, make_account) -> None:
    await make_account(email_address="a@example.com")
    await make_account(email_address="b@example.com", status="error", last_sync_error="revoked")

    response = await client.get("/api/v1/monitoring/system")

    assert response.status_code == 200
    data = response.json()
    assert data["total_accounts"] == 2
    assert data["active_accounts"] == 1
    assert data["error_accounts"] == 1
    assert data["total_emails"] == 0
    assert [e["email_address"] for e in data["recent_errors"]] == ["b@example.com"]


async def test_monitoring_unavailable_without_service(client: AsyncClient, app) -> None:
    """Without the service on app.state the endpoints answer 503."""
    SyncMonitoringService.reset(app)

    response = await client.get("/api/v1/monitoring/system")

    assert response.status_code == 503
    assert response.json()["error"] == "SERVICE_UNAVAILABLE"
