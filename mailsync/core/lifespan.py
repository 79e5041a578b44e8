"""Application lifespan: startup and shutdown.

Single place for startup/shutdown wiring: logging, telemetry, database,
provider registry, sync runner and scheduler, webhook manager and
monitoring. No business logic here.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from mailsync.application.use_cases.sync import (
    RetryPolicy,
    RunAccountSyncUseCase,
    SyncRunner,
    SyncScheduler,
    run_periodic_schedule,
)
from mailsync.core.config import get_settings
from mailsync.infrastructure.external.email import CredentialEncryptor, build_default_registry
from mailsync.infrastructure.persistence import database
from mailsync.infrastructure.services import (
    AccountAdapterService,
    SyncMonitoringService,
    WebhookSubscriptionManager,
    run_periodic_sweep,
)
from mailsync.shared.telemetry import TelemetryConfig, get_telemetry, set_telemetry, setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def create_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run startup then yield; on exit run shutdown.

    Startup order: logging, telemetry (if enabled), database, shared HTTP
    client, provider registry, Redis publisher (if enabled), sync runner and
    schedule loop, webhook manager and sweep loop, monitoring. Shutdown runs in reverse.
    """
    settings = get_settings()
    setup_logging()

    # ---- Startup ----
    telemetry: TelemetryConfig | None = None
    if settings.telemetry_enabled:
        telemetry = TelemetryConfig(
            service_name=settings.app_name,
            service_version=settings.app_version,
            environment=settings.telemetry_environment,
        )
        telemetry.setup(
            exporter_type=settings.telemetry_exporter,
            otlp_endpoint=settings.telemetry_otlp_endpoint,
            sample_rate=settings.telemetry_sample_rate,
        )
        set_telemetry(telemetry)
        telemetry.instrument_fastapi(app)
        telemetry.instrument_logging()
        logger.info("Telemetry initialized")

    session_factory = database.get_session_factory()
    if settings.database_create_tables:
        await database.create_tables()
    if telemetry is not None and database.engine is not None:
        telemetry.instrument_sqlalchemy(database.engine)

    # Shared HTTP client for Graph and aggregator calls (connection reuse).
    app.state.provider_http_client = httpx.AsyncClient(timeout=30.0)
    registry = build_default_registry(
        settings=settings, http_client=app.state.provider_http_client
    )
    adapters = AccountAdapterService(
        session_factory,
        registry,
        encryptor=CredentialEncryptor(settings),
        settings=settings,
    )

    if settings.redis_enabled:
        from mailsync.infrastructure.messaging import SyncProgressPublisher

        publisher = SyncProgressPublisher(settings=settings)
        await publisher.connect()
        if telemetry is not None:
            telemetry.instrument_redis()
        app.state.progress_publisher = publisher
    else:
        app.state.progress_publisher = None

    use_case = RunAccountSyncUseCase(
        session_factory,
        adapters,
        progress_publisher=app.state.progress_publisher,
    )
    app.state.sync_runner = SyncRunner(
        use_case,
        retry_policy=RetryPolicy.from_settings(settings),
        max_concurrent=settings.max_concurrent_syncs,
        attempt_timeout_seconds=settings.sync_attempt_timeout_seconds,
    )
    if settings.sync_schedule_interval_seconds > 0:
        scheduler = SyncScheduler(
            session_factory,
            app.state.sync_runner,
            interval_seconds=settings.sync_schedule_interval_seconds,
        )
        app.state.sync_schedule_task = asyncio.create_task(
            run_periodic_schedule(scheduler, settings.sync_schedule_tick_seconds),
            name="sync-schedule",
        )
    else:
        app.state.sync_schedule_task = None

    webhooks = WebhookSubscriptionManager(session_factory, adapters, settings=settings)
    app.state.webhook_manager = webhooks
    if settings.webhook_sweep_interval_seconds > 0:
        app.state.webhook_sweep_task = asyncio.create_task(
            run_periodic_sweep(webhooks, settings.webhook_sweep_interval_seconds),
            name="webhook-sweep",
        )
    else:
        app.state.webhook_sweep_task = None

    SyncMonitoringService(session_factory).init(app)
    logger.info("Sync engine started (max_concurrent_syncs=%d)", settings.max_concurrent_syncs)

    yield

    # ---- Shutdown ----
    sweep_task = getattr(app.state, "webhook_sweep_task", None)
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
        logger.info("Webhook sweep task stopped")

    schedule_task = getattr(app.state, "sync_schedule_task", None)
    if schedule_task is not None:
        schedule_task.cancel()
        try:
            await schedule_task
        except asyncio.CancelledError:
            pass
        logger.info("Sync schedule task stopped")

    await app.state.sync_runner.shutdown()
    logger.info("Sync runner stopped")
    SyncMonitoringService.reset(app)

    if getattr(app.state, "progress_publisher", None) is not None:
        await app.state.progress_publisher.disconnect()

    if getattr(app.state, "provider_http_client", None) is not None:
        await app.state.provider_http_client.aclose()
        app.state.provider_http_client = None
        logger.info("Provider HTTP client closed")

    telemetry_instance = get_telemetry()
    if telemetry_instance is not None:
        telemetry_instance.shutdown()
        set_telemetry(None)
        logger.info("Telemetry shutdown complete")

    await database.dispose_engine()
    logger.info("Database engine disposed")
