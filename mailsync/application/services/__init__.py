"""Application services: folder classification, error classification."""

from mailsync.application.services.error_classifier import (
    classify_error,
    is_auth_error,
    is_retryable,
)
from mailsync.application.services.folder_classifier import (
    FolderClassifier,
    classify,
    is_system_folder,
    should_sync_by_default,
)

__all__ = [
    "FolderClassifier",
    "classify",
    "classify_error",
    "is_auth_error",
    "is_retryable",
    "is_system_folder",
    "should_sync_by_default",
]
