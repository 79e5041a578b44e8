"""Messaging: Redis pub/sub for sync progress."""

from mailsync.infrastructure.messaging.redis_pubsub import (
    SyncProgressEvent,
    SyncProgressPublisher,
    SyncStage,
)

__all__ = ["SyncProgressEvent", "SyncProgressPublisher", "SyncStage"]
