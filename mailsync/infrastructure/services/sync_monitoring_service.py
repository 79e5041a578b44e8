"""Sync monitoring: per-account metrics, health reports and system totals.

Everything is derived from sync_job history and account/email rows; the
service holds no state of its own. It is built at startup and installed on
app.state through init(); there is no module-level instance.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.application.dtos.sync import (
    AccountErrorSummary,
    AccountMetrics,
    AccountVolume,
    HealthIssue,
    HealthReport,
    SyncJobSummary,
    SystemMetrics,
)
from mailsync.domain.enums import AccountStatus, HealthStatus, SyncJobStatus
from mailsync.domain.exceptions import AccountNotFoundException, SqlNotConfiguredException
from mailsync.infrastructure.persistence.repositories import (
    EmailAccountRepository,
    EmailMessageRepository,
    SyncJobRepository,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import ensure_utc, utc_now

logger = get_logger(__name__)

CRITICAL_ERROR_RATE = 50.0
ELEVATED_ERROR_RATE = 20.0
CRITICAL_UPTIME = 50.0
REDUCED_UPTIME = 80.0
STALE_AFTER_HOURS = 48
SLOW_SYNC_MS = 60_000


def _percentage(part: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(part / total * 100, 2)


def derive_health(
    metrics: AccountMetrics, *, now: datetime
) -> tuple[HealthStatus, list[HealthIssue]]:
    """Apply the health thresholds to a metrics snapshot.

    A window without syncs has 0% uptime and is critical.
    """
    issues: list[HealthIssue] = []
    if metrics.error_rate > CRITICAL_ERROR_RATE:
        issues.append(
            HealthIssue(
                f"High error rate: {metrics.error_rate}%",
                "Check account authentication and connectivity",
            )
        )
    elif metrics.error_rate > ELEVATED_ERROR_RATE:
        issues.append(
            HealthIssue(
                f"Elevated error rate: {metrics.error_rate}%",
                "Review recent sync errors for a recurring cause",
            )
        )

    if metrics.uptime < CRITICAL_UPTIME:
        issues.append(
            HealthIssue(
                f"Low uptime: {metrics.uptime}%",
                "Review sync errors and consider reconnecting the account",
            )
        )
    elif metrics.uptime < REDUCED_UPTIME:
        issues.append(
            HealthIssue(
                f"Reduced uptime: {metrics.uptime}%",
                "Monitor upcoming syncs; reconnect if failures continue",
            )
        )

    last_success = ensure_utc(metrics.last_successful_sync_at)
    if last_success is not None:
        hours_since = (now - last_success).total_seconds() / 3600
        if hours_since > STALE_AFTER_HOURS:
            issues.append(
                HealthIssue(
                    f"No successful sync in {round(hours_since)} hours",
                    "Trigger a manual sync or check the sync schedule",
                )
            )
    else:
        issues.append(
            HealthIssue(
                "No successful sync recorded",
                "Trigger a manual sync or check the sync schedule",
            )
        )

    if metrics.average_sync_time_ms > SLOW_SYNC_MS:
        issues.append(
            HealthIssue(
                f"Slow sync performance: {round(metrics.average_sync_time_ms / 1000)}s",
                "Consider reducing the sync page size",
            )
        )

    if metrics.error_rate > CRITICAL_ERROR_RATE or metrics.uptime < CRITICAL_UPTIME:
        status = HealthStatus.CRITICAL
    elif issues:
        status = HealthStatus.DEGRADED
    else:
        status = HealthStatus.HEALTHY
    return status, issues


class SyncMonitoringService:
    """Read-only reporting over sync history."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def init(self, app: FastAPI) -> None:
        """Install this instance as the app's monitoring service."""
        app.state.sync_monitoring = self

    @staticmethod
    def reset(app: FastAPI) -> None:
        app.state.sync_monitoring = None

    @staticmethod
    def from_app(app: FastAPI) -> SyncMonitoringService:
        service = getattr(app.state, "sync_monitoring", None)
        if service is None:
            raise SqlNotConfiguredException()
        return service

    async def account_metrics(self, account_id: str, window_days: int = 30) -> AccountMetrics:
        """Metrics over sync jobs started in the trailing window.

        Raises:
            AccountNotFoundException: No such account.
        """
        since = self._clock() - timedelta(days=window_days)
        async with self._session_factory() as session:
            account = await EmailAccountRepository(session).get_by_id(account_id)
            if account is None:
                raise AccountNotFoundException(account_id)
            last_success = ensure_utc(account.last_successful_sync_at)
            jobs = await SyncJobRepository(session).list_since(account_id, since)
            emails_created = await EmailMessageRepository(session).count_created_since(
                account_id, since
            )

        successful = sum(1 for j in jobs if j.status == SyncJobStatus.COMPLETED.value)
        failed = sum(1 for j in jobs if j.status == SyncJobStatus.FAILED.value)
        timed = [
            (ensure_utc(j.started_at), ensure_utc(j.completed_at))
            for j in jobs
            if j.started_at is not None and j.completed_at is not None
        ]
        durations = [(done - start).total_seconds() * 1000 for start, done in timed]
        average_ms = round(sum(durations) / len(durations)) if durations else 0
        last_duration_ms: float | None = None
        if timed:
            latest_start, latest_done = max(timed, key=lambda pair: pair[1])
            last_duration_ms = round((latest_done - latest_start).total_seconds() * 1000)

        return AccountMetrics(
            account_id=account_id,
            window_days=window_days,
            total_syncs=len(jobs),
            successful_syncs=successful,
            failed_syncs=failed,
            total_emails_synced=emails_created,
            average_sync_time_ms=average_ms,
            last_sync_duration_ms=last_duration_ms,
            error_rate=_percentage(failed, len(jobs)),
            uptime=_percentage(successful, len(jobs)),
            last_successful_sync_at=last_success,
        )

    async def health_report(self, account_id: str, window_days: int = 7) -> HealthReport:
        metrics = await self.account_metrics(account_id, window_days)
        status, issues = derive_health(metrics, now=self._clock())
        if status is not HealthStatus.HEALTHY:
            logger.info("Account %s health is %s (%d issues)", account_id, status.value, len(issues))
        return HealthReport(
            account_id=account_id,
            status=status,
            issues=[i.issue for i in issues],
            recommendations=[i.recommendation for i in issues],
            metrics=metrics,
        )

    async def sync_history(self, account_id: str, limit: int = 20) -> list[SyncJobSummary]:
        async with self._session_factory() as session:
            if await EmailAccountRepository(session).get_by_id(account_id) is None:
                raise AccountNotFoundException(account_id)
            jobs = await SyncJobRepository(session).list_recent(account_id, limit)
        return [
            SyncJobSummary(
                job_id=j.id,
                status=j.status,
                sync_mode=j.sync_mode,
                trigger=j.trigger,
                attempt=j.attempt,
                started_at=ensure_utc(j.started_at),
                completed_at=ensure_utc(j.completed_at),
                emails_synced=j.emails_synced,
                error=j.error,
            )
            for j in jobs
        ]

    async def system_metrics(self, top_n: int = 5, recent_errors: int = 10) -> SystemMetrics:
        since = self._clock() - timedelta(hours=24)
        async with self._session_factory() as session:
            accounts = EmailAccountRepository(session)
            messages = EmailMessageRepository(session)
            by_status = await accounts.count_by_status()
            syncing = await accounts.count_syncing()
            total_emails = await messages.count_all()
            emails_last_24h = await messages.count_received_since(since)
            top = await messages.top_accounts_by_volume(top_n)
            errored = await accounts.list_recent_errors(recent_errors)
            error_rows = [
                AccountErrorSummary(
                    account_id=a.id,
                    email_address=a.email_address,
                    error=a.last_sync_error or "",
                    last_sync_at=ensure_utc(a.last_sync_at),
                )
                for a in errored
            ]
        return SystemMetrics(
            total_accounts=sum(by_status.values()),
            active_accounts=by_status.get(AccountStatus.ACTIVE.value, 0),
            error_accounts=by_status.get(AccountStatus.ERROR.value, 0),
            syncing_accounts=syncing,
            total_emails=total_emails,
            emails_last_24h=emails_last_24h,
            top_accounts=[AccountVolume(*row) for row in top],
            recent_errors=error_rows,
        )
