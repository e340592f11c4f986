from datetime import datetime, timezone
from enum import Enum


class DownloadDecision(str, Enum):
    ALLOWED = "allowed"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


def _as_utc(value: datetime) -> datetime:
    # Some backends (SQLite) hand back naive datetimes; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_expired(record, now: datetime) -> bool:
    return _as_utc(now) >= _as_utc(record.expires_at)


def is_exhausted(record) -> bool:
    return record.download_count >= record.max_downloads


def check_download_allowed(record, now: datetime) -> DownloadDecision:
    """Expiry is checked first, so an expired record that is also exhausted reports EXPIRED."""
    if is_expired(record, now):
        return DownloadDecision.EXPIRED
    if is_exhausted(record):
        return DownloadDecision.EXHAUSTED
    return DownloadDecision.ALLOWED
