"""
Utility modules for Media-Janitor
"""
from .logger import setup_logger, get_task_logger
from .time_utils import (
    age_ms,
    ensure_utc,
    format_bytes,
    format_duration,
    from_timestamp,
    is_older_than,
    retention_cutoff,
    utcnow,
)
from .validators import validate_cron_expression

__all__ = [
    "setup_logger",
    "get_task_logger",
    "age_ms",
    "ensure_utc",
    "format_bytes",
    "format_duration",
    "from_timestamp",
    "is_older_than",
    "retention_cutoff",
    "utcnow",
    "validate_cron_expression",
]
