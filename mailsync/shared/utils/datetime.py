"""
UTC datetime helpers.

Every timestamp stored or compared by the sync engine is timezone-aware UTC.
SQLite hands back naive values, so repositories pass reads through
ensure_utc() before comparing them with utc_now().
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC; aware values are converted.
    None passes through.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def from_timestamp_ms_utc(timestamp_ms: int) -> datetime:
    """Build an aware UTC datetime from epoch milliseconds (Gmail internalDate)."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)


def parse_iso_utc(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 string as returned by Graph or REST providers.

    Accepts a trailing 'Z' and fractional seconds longer than six digits
    (Graph sometimes returns seven).
    """
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        text = f"{head}.{digits[:6]}{rest}"
    return ensure_utc(datetime.fromisoformat(text))
