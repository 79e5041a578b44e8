"""Tests for the folder classifier (names and provider hints to FolderType)."""

import pytest

from mailsync.application.services.folder_classifier import (
    FolderClassifier,
    classify,
    is_system_folder,
    should_sync_by_default,
)
from mailsync.domain.enums import FolderType


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Inbox", FolderType.INBOX),
        ("INBOX", FolderType.INBOX),
        ("Sent Items", FolderType.SENT),
        ("[Gmail]/Sent Mail", FolderType.SENT),
        ("INBOX.Sent", FolderType.SENT),
        ("Gesendete Elemente", FolderType.SENT),
        ("Brouillons", FolderType.DRAFTS),
        ("Deleted Items", FolderType.TRASH),
        ("Papelera", FolderType.TRASH),
        ("Junk E-mail", FolderType.SPAM),
        ("迷惑メール", FolderType.SPAM),
        ("Archive", FolderType.ARCHIVE),
        ("[Gmail]/All Mail", FolderType.ARCHIVE),
        ("Outbox", FolderType.OUTBOX),
        ("Postausgang", FolderType.OUTBOX),
    ],
)
def test_known_names_map_to_canonical_type(name: str, expected: FolderType) -> None:
    """Localized and hierarchical system folder names are recognized."""
    assert classify(name) is expected


@pytest.mark.parametrize("name", ["Project X", "Receipts 2024", "Sent-ish stuff", "", None])
def test_unknown_names_are_custom(name: str | None) -> None:
    """No fuzzy matching: anything outside the alias table is custom."""
    assert classify(name) is FolderType.CUSTOM


def test_type_hint_wins_over_name() -> None:
    """A provider role hint that maps to a system type overrides the display name."""
    assert classify("Stuff I never want", type_hint="junkemail") is FolderType.SPAM
    assert classify("Boîte de réception", type_hint="SENT") is FolderType.SENT


def test_custom_type_hint_falls_back_to_name() -> None:
    """An unrecognized hint is ignored."""
    assert classify("Drafts", type_hint="\\HasNoChildren") is FolderType.DRAFTS


def test_trash_and_spam_not_synced_by_default() -> None:
    """Every type except trash and spam is synced by default."""
    assert should_sync_by_default(FolderType.TRASH) is False
    assert should_sync_by_default(FolderType.SPAM) is False
    assert should_sync_by_default(FolderType.INBOX) is True
    assert should_sync_by_default(FolderType.CUSTOM) is True


def test_is_system_folder() -> None:
    """Only custom folders are non-system."""
    assert is_system_folder(FolderType.ARCHIVE) is True
    assert is_system_folder(FolderType.CUSTOM) is False


def test_custom_alias_table() -> None:
    """A classifier can be built from its own alias table."""
    classifier = FolderClassifier({FolderType.ARCHIVE: ("Cold Storage",)})
    assert classifier.classify("cold storage") is FolderType.ARCHIVE
    assert classifier.classify("Inbox") is FolderType.CUSTOM
