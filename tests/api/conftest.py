"""API fixtures: the app with services placed on app.state by hand.

ASGITransport does not run the lifespan, so the runner, webhook manager and
monitoring service are installed directly and get_db is bound to the test
database.
"""

from collections.abc import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from mailsync.application.dtos.sync import SyncRequest
from mailsync.core.limiter import limiter
from mailsync.infrastructure.persistence.database import get_db
from mailsync.infrastructure.services import SyncMonitoringService, WebhookSubscriptionManager
from mailsync.main import create_app


class RecordingRunner:
    """Collects submitted sync requests instead of running them."""

    def __init__(self) -> None:
        self.submitted: list[SyncRequest] = []
        self.running: set[str] = set()

    def submit(self, request: SyncRequest) -> None:
        self.submitted.append(request)

    def is_running(self, account_id: str) -> bool:
        return account_id in self.running


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def webhook_manager(session_factory, adapters, settings) -> WebhookSubscriptionManager:
    return WebhookSubscriptionManager(session_factory, adapters, settings=settings)


@pytest.fixture
def app(session_factory, runner, webhook_manager) -> FastAPI:
    application = create_app()
    application.state.sync_runner = runner
    application.state.webhook_manager = webhook_manager
    SyncMonitoringService(session_factory).init(application)

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = _get_test_db
    limiter.reset()
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Async HTTP client against the FastAPI app (ASGI)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
