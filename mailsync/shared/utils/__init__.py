"""Small helpers: UTC datetimes, id generation and keyed locks."""

from mailsync.shared.utils.datetime import (
    ensure_utc,
    from_timestamp_ms_utc,
    parse_iso_utc,
    utc_now,
)
from mailsync.shared.utils.generators import generate_cuid
from mailsync.shared.utils.locks import KeyedLocks

__all__ = [
    "KeyedLocks",
    "ensure_utc",
    "from_timestamp_ms_utc",
    "generate_cuid",
    "parse_iso_utc",
    "utc_now",
]
