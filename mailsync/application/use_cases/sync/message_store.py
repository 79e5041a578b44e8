"""Normalize provider messages into email rows and store a page of them.

Each message is written under its own SAVEPOINT so one bad message cannot
abort the page transaction.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.domain.enums import FolderType
from mailsync.domain.exceptions import EmailNormalizationError
from mailsync.infrastructure.external.email.protocols import ProviderMessage
from mailsync.infrastructure.persistence.repositories.email_message_repo import (
    EmailMessageRepository,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import ensure_utc

logger = get_logger(__name__)

MAX_SUBJECT_LENGTH = 998

# Label id -> folder type for label-based providers, in precedence order.
LABEL_FOLDER_TYPES: tuple[tuple[str, FolderType], ...] = (
    ("SENT", FolderType.SENT),
    ("DRAFT", FolderType.DRAFTS),
    ("TRASH", FolderType.TRASH),
    ("SPAM", FolderType.SPAM),
    ("INBOX", FolderType.INBOX),
)


@dataclass(frozen=True)
class FolderRef:
    """Local folder a message is filed under."""

    id: str
    folder_type: str


@dataclass
class PageStoreResult:
    stored: int = 0
    failed: int = 0
    skipped: int = 0


def folder_type_from_labels(labels: Iterable[str] | None) -> FolderType | None:
    """Folder type implied by system labels; None when no folder label is present."""
    present = {label.upper() for label in labels or ()}
    for label, folder_type in LABEL_FOLDER_TYPES:
        if label in present:
            return folder_type
    return None


def _address_list(message_id: str, field_name: str, values: Any) -> list[str]:
    if values is None:
        return []
    if not isinstance(values, (list, tuple)):
        raise EmailNormalizationError(message_id, f"{field_name} must be a list")
    addresses = []
    for value in values:
        if not isinstance(value, str):
            raise EmailNormalizationError(message_id, f"{field_name} contains a non-string")
        if value.strip():
            addresses.append(value.strip())
    return addresses


def normalize_message(
    account_id: str, message: ProviderMessage, folder: FolderRef
) -> dict[str, Any]:
    """Row values for one provider message.

    Raises:
        EmailNormalizationError: The message cannot be stored (no id, bad fields).
    """
    message_id = (message.message_id or "").strip()
    if not message_id:
        raise EmailNormalizationError(None, "missing message id")
    received_at = ensure_utc(message.received_at) or ensure_utc(message.sent_at)
    return {
        "account_id": account_id,
        "message_id": message_id,
        "thread_id": message.thread_id,
        "folder_id": folder.id,
        "folder_type": folder.folder_type,
        "subject": (message.subject or "")[:MAX_SUBJECT_LENGTH],
        "from_address": (message.from_address or "").strip(),
        "to_addresses": _address_list(message_id, "to_addresses", message.to_addresses),
        "cc_addresses": _address_list(message_id, "cc_addresses", message.cc_addresses),
        "snippet": message.snippet,
        "body_text": message.body_text,
        "body_html": message.body_html,
        "received_at": received_at,
        "sent_at": ensure_utc(message.sent_at),
        "is_read": bool(message.is_read),
        "is_starred": bool(message.is_starred),
        "is_draft": bool(message.is_draft),
        "has_attachments": bool(message.has_attachments),
        "labels": list(message.labels or []),
        "category": folder.folder_type,
    }


async def store_messages(
    session: AsyncSession,
    account_id: str,
    messages: Iterable[ProviderMessage],
    resolve_folder: Callable[[ProviderMessage], FolderRef | None],
) -> PageStoreResult:
    """Upsert messages one SAVEPOINT at a time.

    Messages for which resolve_folder returns None are skipped. Normalization
    and insert failures are logged and counted, never raised.
    """
    repo = EmailMessageRepository(session)
    result = PageStoreResult()
    for message in messages:
        folder = resolve_folder(message)
        if folder is None:
            result.skipped += 1
            continue
        try:
            values = normalize_message(account_id, message, folder)
            async with session.begin_nested():
                await repo.upsert(values)
        except (EmailNormalizationError, SQLAlchemyError) as e:
            result.failed += 1
            logger.warning(
                "Skipping message %s for account %s: %s", message.message_id, account_id, e
            )
            continue
        result.stored += 1
    return result
