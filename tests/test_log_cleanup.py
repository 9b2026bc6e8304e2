"""
Unit tests for LogCleanupHandler
"""

import asyncio
import gzip
import os
import time
from datetime import datetime, timezone

import pytest

from cleanup.context import TaskContext
from cleanup.handlers import LogCleanupHandler, log_cleanup
from cleanup.handlers.log_cleanup import archive_name, categorize
from cleanup.types import CleanupOptions, TaskType

DAY = 24 * 3600


def write_log(directory, name, days_old, content="line\n" * 200):
    path = directory / name
    path.write_text(content, encoding="utf-8")
    mtime = time.time() - days_old * DAY
    os.utime(path, (mtime, mtime))
    return path


def make_context(task_type, **options):
    values = {"retention_days": 30, "batch_size": 100, "dry_run": False}
    values.update(options)
    return TaskContext(task_type=task_type, options=CleanupOptions(**values))


@pytest.fixture
def log_dir(tmp_path):
    directory = tmp_path / "logs"
    directory.mkdir()
    return directory


@pytest.fixture
def handler(log_dir, tmp_path):
    return LogCleanupHandler(str(log_dir), str(tmp_path / "archive"))


class TestCleanupLogs:
    @pytest.mark.asyncio
    async def test_expired_logs_deleted(self, handler, log_dir):
        old = write_log(log_dir, "app.log", 40)
        new = write_log(log_dir, "app-today.log", 1)
        other = write_log(log_dir, "notes.md", 40)

        stats = await handler.execute(make_context(TaskType.LOG_CLEANUP))

        assert not old.exists()
        assert new.exists()
        assert other.exists()
        assert stats.processed_count == 2
        assert stats.cleaned_count == 1
        assert stats.skipped_count == 1
        assert stats.bytes_freed > 0

    @pytest.mark.asyncio
    async def test_level_filter(self, handler, log_dir):
        error_log = write_log(log_dir, "error.log", 40)
        access_log = write_log(log_dir, "access.log", 40)

        await handler.execute(make_context(TaskType.LOG_CLEANUP, log_levels=["error"]))

        assert not error_log.exists()
        assert access_log.exists()

    @pytest.mark.asyncio
    async def test_dry_run_keeps_files(self, handler, log_dir):
        old = write_log(log_dir, "app.log", 40)

        stats = await handler.execute(make_context(TaskType.LOG_CLEANUP, dry_run=True))

        assert old.exists()
        assert stats.cleaned_count == 1

    @pytest.mark.asyncio
    async def test_compress_old_compresses_instead(self, handler, log_dir):
        old = write_log(log_dir, "app.log", 40)

        await handler.execute(make_context(TaskType.LOG_CLEANUP, compress_old=True))

        assert not old.exists()
        assert (log_dir / "app.log.gz").exists()

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path):
        handler = LogCleanupHandler(str(tmp_path / "nope"), str(tmp_path / "archive"))

        stats = await handler.execute(make_context(TaskType.LOG_CLEANUP))

        assert stats.processed_count == 0


class TestCompressLogs:
    @pytest.mark.asyncio
    async def test_compresses_and_skips_gz(self, handler, log_dir):
        content = "error: something happened\n" * 500
        old = write_log(log_dir, "app.log", 10, content)
        write_log(log_dir, "older.log.gz", 10)

        stats = await handler.execute(make_context(TaskType.LOG_COMPRESSION, retention_days=7))

        target = log_dir / "app.log.gz"
        assert not old.exists()
        with gzip.open(target, "rt", encoding="utf-8") as f:
            assert f.read() == content
        assert stats.cleaned_count == 1
        assert stats.skipped_count == 1
        assert stats.bytes_freed > 0

    @pytest.mark.asyncio
    async def test_compression_runs_in_worker_thread(self, handler, log_dir, monkeypatch):
        write_log(log_dir, "app.log", 10)
        offloaded = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(getattr(func, "__name__", ""))
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(log_cleanup.asyncio, "to_thread", recording_to_thread)
        await handler.execute(make_context(TaskType.LOG_COMPRESSION, retention_days=7))

        assert "compress" in offloaded
        assert "flush" in offloaded
        assert (log_dir / "app.log.gz").exists()


class TestArchiveLogs:
    @pytest.mark.asyncio
    async def test_moves_to_archive_with_date(self, handler, log_dir, tmp_path):
        old = write_log(log_dir, "app.log", 100)
        modified = datetime.fromtimestamp(old.stat().st_mtime, tz=timezone.utc)

        stats = await handler.execute(make_context(TaskType.LOG_ARCHIVE, retention_days=90))

        archived = tmp_path / "archive" / f"app_{modified:%Y-%m-%d}.log"
        assert not old.exists()
        assert archived.exists()
        assert stats.cleaned_count == 1

    @pytest.mark.asyncio
    async def test_archive_with_compression_and_custom_path(self, handler, log_dir, tmp_path):
        write_log(log_dir, "app.log", 100)
        custom = tmp_path / "cold"

        await handler.execute(
            make_context(TaskType.LOG_ARCHIVE, retention_days=90, compress_old=True, archive_path=str(custom))
        )

        archived = list(custom.iterdir())
        assert len(archived) == 1
        assert archived[0].name.endswith(".log.gz")

    @pytest.mark.asyncio
    async def test_name_collision_gets_suffix(self, handler, log_dir, tmp_path):
        old = write_log(log_dir, "app.log", 100)
        modified = datetime.fromtimestamp(old.stat().st_mtime, tz=timezone.utc)
        archive_dir = tmp_path / "archive"
        archive_dir.mkdir()
        (archive_dir / f"app_{modified:%Y-%m-%d}.log").write_text("earlier", encoding="utf-8")

        await handler.execute(make_context(TaskType.LOG_ARCHIVE, retention_days=90))

        assert (archive_dir / f"app_{modified:%Y-%m-%d}-1.log").exists()


class TestHelpers:
    def test_archive_name(self, tmp_path):
        day = datetime(2024, 5, 1)
        assert archive_name(tmp_path / "app.log", day) == "app_2024-05-01.log"
        assert archive_name(tmp_path / "app.log.gz", day) == "app_2024-05-01.log.gz"
        assert archive_name(tmp_path / "README", day) == "README_2024-05-01"

    def test_categorize(self):
        assert categorize("Error-2024.log") == "error"
        assert categorize("nginx_access.log") == "access"
        assert categorize("app.log") == "general"

    @pytest.mark.asyncio
    async def test_log_stats(self, handler, log_dir):
        write_log(log_dir, "error.log", 3)
        write_log(log_dir, "app.log", 1)

        stats = await handler.get_log_stats()

        assert stats["total_files"] == 2
        assert stats["by_type"]["error"]["count"] == 1
        assert stats["by_type"]["general"]["count"] == 1
        assert stats["oldest"] < stats["newest"]
