"""Presentation-layer dependency injection.

Services are built once in the lifespan and kept on app.state; these
providers hand them to routes. Routes never construct services themselves.
"""

from typing import Annotated, Any

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.application.use_cases.sync import SyncRunner
from mailsync.domain.exceptions import SqlNotConfiguredException
from mailsync.infrastructure.persistence.database import get_db
from mailsync.infrastructure.persistence.repositories import EmailAccountRepository
from mailsync.infrastructure.services import (
    SyncMonitoringService,
    WebhookSubscriptionManager,
)


def _from_state(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise SqlNotConfiguredException()
    return service


def get_sync_runner(request: Request) -> SyncRunner:
    return _from_state(request, "sync_runner")


def get_webhook_manager(request: Request) -> WebhookSubscriptionManager:
    return _from_state(request, "webhook_manager")


def get_monitoring_service(request: Request) -> SyncMonitoringService:
    return SyncMonitoringService.from_app(request.app)


def get_email_account_repo(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> EmailAccountRepository:
    """Read-only account repository bound to the request session."""
    return EmailAccountRepository(db)
