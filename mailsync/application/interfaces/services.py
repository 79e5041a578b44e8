"""Service interfaces (ports) for the application layer.

Protocols define contracts for collaborators of the sync use cases (DIP).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from mailsync.infrastructure.messaging.redis_pubsub import SyncStage


class IProgressPublisher(Protocol):
    """Protocol for publishing sync progress (Redis pub/sub in production)."""

    async def publish_progress(
        self,
        account_id: str,
        stage: SyncStage,
        progress: int,
        message: str,
        *,
        emails_synced: int = 0,
        error: str | None = None,
    ) -> bool:
        """Publish one progress event; False when nothing was published."""
