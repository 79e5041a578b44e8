"""Redis Pub/Sub for real-time sync progress events.

Publishes email sync progress per account on ``sync_progress:<account_id>``.
A Redis outage never fails a sync: publish() logs and returns False.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

import redis.asyncio as redis

from mailsync.core.config import Settings, get_settings
from mailsync.shared.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class SyncStage(str, Enum):
    """Stages of email sync progress."""

    STARTED = "started"
    FOLDERS = "syncing_folders"
    EMAILS = "syncing_emails"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncProgressEvent:
    """Sync progress event payload for Redis."""

    account_id: str
    stage: SyncStage
    progress: int
    message: str
    timestamp: str
    emails_synced: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON publish."""
        data = asdict(self)
        data["stage"] = self.stage.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncProgressEvent:
        """Deserialize from Redis message."""
        data = dict(data)
        data["stage"] = SyncStage(data["stage"])
        return cls(**data)


class SyncProgressPublisher:
    """Publishes sync progress events to Redis per-account channel."""

    CHANNEL_PREFIX = "sync_progress"

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize. Pass redis_client for DI/testing."""
        self.redis = redis_client
        self.settings = settings or get_settings()
        self._connected = redis_client is not None

    async def connect(self) -> None:
        """Establish Redis connection. Call on app startup."""
        if self._connected:
            return
        if self.redis is None:
            try:
                self.redis = redis.Redis(
                    host=self.settings.redis_host,
                    port=self.settings.redis_port,
                    db=self.settings.redis_db,
                    password=self.settings.redis_password.get_secret_value()
                    if self.settings.redis_password
                    else None,
                    decode_responses=True,
                    socket_connect_timeout=5,
                )
                await self.redis.ping()
                self._connected = True
                logger.info("Redis pub/sub connected")
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.warning("Redis pub/sub connection failed: %s", e)
                self._connected = False
                self.redis = None

    async def disconnect(self) -> None:
        """Close Redis connection. Call on app shutdown."""
        if self.redis:
            await self.redis.aclose()
            self._connected = False
            logger.info("Redis pub/sub disconnected")

    def is_available(self) -> bool:
        """Return True if Redis is connected."""
        return self._connected and self.redis is not None

    def channel_for(self, account_id: str) -> str:
        return f"{self.CHANNEL_PREFIX}:{account_id}"

    async def publish(self, event: SyncProgressEvent) -> bool:
        """Publish a progress event to the account channel.

        Returns:
            True if published, False if Redis unavailable or publish failed.
        """
        if not self.is_available() or self.redis is None:
            logger.debug("Redis not available, skipping publish")
            return False
        try:
            channel = self.channel_for(event.account_id)
            await self.redis.publish(channel, json.dumps(event.to_dict()))
            logger.debug("Published sync progress to %s: %s", channel, event.stage.value)
        except (redis.RedisError, OSError):
            logger.exception("Failed to publish sync progress")
            return False
        else:
            return True

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
        event = SyncProgressEvent(
            account_id=account_id,
            stage=stage,
            progress=progress,
            message=message,
            timestamp=utc_now().isoformat(),
            emails_synced=emails_synced,
            error=error,
        )
        return await self.publish(event)
