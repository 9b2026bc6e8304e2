"""
Unit tests for time and size helpers
"""

from datetime import datetime, timedelta, timezone

from core.utils.time_utils import (
    MS_PER_DAY,
    MS_PER_HOUR,
    age_ms,
    ensure_utc,
    format_bytes,
    format_duration,
    is_older_than,
    retention_cutoff,
    utcnow,
)

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestRetention:
    def test_boundary_is_retained(self):
        assert not is_older_than(NOW - timedelta(days=7), 7, NOW)
        assert is_older_than(NOW - timedelta(days=7, milliseconds=1), 7, NOW)

    def test_fractional_days(self):
        assert is_older_than(NOW - timedelta(hours=13), 0.5, NOW)
        assert not is_older_than(NOW - timedelta(hours=11), 0.5, NOW)

    def test_age_ms(self):
        assert age_ms(NOW - timedelta(days=1), NOW) == MS_PER_DAY
        assert age_ms(NOW - timedelta(microseconds=1500), NOW) == 1

    def test_retention_cutoff(self):
        assert retention_cutoff(30, NOW) == NOW - timedelta(days=30)


class TestTimezones:
    def test_utcnow_is_aware(self):
        assert utcnow().tzinfo is timezone.utc

    def test_ensure_utc(self):
        naive = datetime(2024, 5, 1, 12, 0, 0)
        shifted = datetime(2024, 5, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert ensure_utc(naive) == NOW
        assert ensure_utc(shifted) == NOW
        assert ensure_utc(shifted).tzinfo is timezone.utc

    def test_age_accepts_naive_timestamps(self):
        assert age_ms(datetime(2024, 5, 1, 11, 0, 0), NOW) == MS_PER_HOUR


class TestFormatting:
    def test_format_duration(self):
        assert format_duration(850) == "850ms"
        assert format_duration(12_300) == "12.3s"
        assert format_duration(245_000) == "4m05s"
        assert format_duration(7_380_000) == "2h03m"

    def test_format_bytes(self):
        assert format_bytes(512) == "512 B"
        assert format_bytes(1536) == "1.5 KB"
        assert format_bytes(2 * 1024 ** 3) == "2.00 GB"
