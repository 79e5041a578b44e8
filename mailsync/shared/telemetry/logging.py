"""Logging configuration."""

import logging
import sys

from mailsync.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging() -> None:
    """Configure root logging to stdout; DEBUG when settings.debug is on."""
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # Provider SDKs are chatty at DEBUG.
    for noisy in ("googleapiclient.discovery_cache", "aioimaplib", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; call with __name__."""
    return logging.getLogger(name)
