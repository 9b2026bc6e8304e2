"""
Time and size formatting utilities
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

MS_PER_SECOND = 1000
MS_PER_HOUR = 60 * 60 * MS_PER_SECOND
MS_PER_DAY = 24 * MS_PER_HOUR


def utcnow() -> datetime:
    """Timezone-aware UTC now"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive values are taken as UTC; aware values are converted to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_timestamp(seconds: float) -> datetime:
    """POSIX timestamp to aware UTC"""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def retention_cutoff(retention_days: float, now: Optional[datetime] = None) -> datetime:
    """
    Oldest timestamp that is still inside the retention window

    Items are eligible for cleanup only when strictly older than the cutoff.
    """
    now = now or utcnow()
    return now - timedelta(days=retention_days)


def age_ms(timestamp: datetime, now: Optional[datetime] = None) -> int:
    """Age of ``timestamp`` in whole milliseconds"""
    now = ensure_utc(now or utcnow())
    delta = now - ensure_utc(timestamp)
    return (delta.days * 86400 + delta.seconds) * MS_PER_SECOND + delta.microseconds // 1000


def is_older_than(timestamp: datetime, retention_days: float, now: Optional[datetime] = None) -> bool:
    """
    Strict retention check: ``age > retention_days``

    An item exactly at the retention boundary is retained.
    """
    return age_ms(timestamp, now) > retention_days * MS_PER_DAY


def format_duration(ms: float) -> str:
    """
    Format a millisecond duration

    Returns:
        Formatted string like "850ms", "12.3s", "4m05s" or "2h03m"
    """
    if ms < MS_PER_SECOND:
        return f"{int(ms)}ms"

    seconds = ms / MS_PER_SECOND
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m{secs:02d}s"

    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"


def format_bytes(size: float) -> str:
    """
    Format a byte count with binary units

    Returns:
        Formatted string like "512 B", "1.5 KB" or "2.00 GB"
    """
    if size < 1024:
        return f"{int(size)} B"

    for unit in ("KB", "MB", "GB"):
        size /= 1024
        if size < 1024:
            return f"{size:.1f} {unit}" if unit != "GB" else f"{size:.2f} {unit}"

    return f"{size / 1024:.2f} TB"
