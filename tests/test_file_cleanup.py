"""
Unit tests for FileCleanupHandler
"""

from datetime import datetime, timedelta, timezone

import pytest

from cleanup.context import TaskContext
from cleanup.handlers import FileCleanupHandler
from cleanup.handlers import file_cleanup
from cleanup.types import CleanupOptions, TaskType
from core.exceptions import UnsupportedTaskException
from core.storage import MultipartUpload, StorageObject

from tests.fakes import FakeMediaRepository, FakeOrphanRegistry, FakeProtectedRegistry, FakeStorage

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def frozen_now(monkeypatch):
    monkeypatch.setattr(file_cleanup, "utcnow", lambda: NOW)


def days_ago(days, **extra):
    return NOW - timedelta(days=days, **extra)


def make_context(task_type=TaskType.ORPHAN_FILES, **options):
    values = {"retention_days": 7, "batch_size": 100, "dry_run": False}
    values.update(options)
    return TaskContext(task_type=task_type, options=CleanupOptions(**values))


def make_handler(objects=(), referenced=(), protected=(), uploads=()):
    storage = FakeStorage(list(objects), list(uploads))
    registry = FakeOrphanRegistry()
    handler = FileCleanupHandler(
        storage=storage,
        media=FakeMediaRepository(set(referenced)),
        orphan_registry=registry,
        protected_registry=FakeProtectedRegistry(set(protected)),
    )
    return handler, storage, registry


class TestOrphanFiles:
    @pytest.mark.asyncio
    async def test_orphan_scan_and_cleanup(self):
        handler, storage, registry = make_handler(
            objects=[
                StorageObject("A", 10, days_ago(30)),
                StorageObject("B", 20, days_ago(1)),
                StorageObject("C", 30, days_ago(10)),
            ],
            referenced={"A"},
        )

        orphans = await handler.list_orphan_files(retention_days=7)
        assert {o.key for o in orphans} == {"B", "C"}

        stats = await handler.execute(make_context())

        assert stats.processed_count == 2
        assert stats.cleaned_count == 1
        assert stats.skipped_count == 1
        assert stats.bytes_freed == 30
        assert storage.deleted == ["C"]
        assert set(registry.recorded) == {"B", "C"}
        assert registry.cleaned == ["C"]

    @pytest.mark.asyncio
    async def test_retention_boundary_is_strict(self):
        handler, storage, _ = make_handler(
            objects=[
                StorageObject("exact", 1, days_ago(7)),
                StorageObject("older", 1, days_ago(7, milliseconds=1)),
            ],
        )

        stats = await handler.execute(make_context())

        assert storage.deleted == ["older"]
        assert stats.skipped_count == 1

    @pytest.mark.asyncio
    async def test_protected_files_kept_unless_included(self):
        objects = [StorageObject("P", 5, days_ago(30))]

        handler, storage, _ = make_handler(objects=objects, protected={"P"})
        stats = await handler.execute(make_context())
        assert stats.skipped_count == 1
        assert storage.deleted == []

        handler, storage, _ = make_handler(objects=objects, protected={"P"})
        stats = await handler.execute(make_context(include_protected=True))
        assert stats.cleaned_count == 1
        assert storage.deleted == ["P"]

    @pytest.mark.asyncio
    async def test_delete_failure_is_counted(self):
        handler, storage, registry = make_handler(
            objects=[StorageObject("X", 5, days_ago(30)), StorageObject("Y", 5, days_ago(30))],
        )
        storage.fail_keys.add("X")

        stats = await handler.execute(make_context())

        assert stats.failed_count == 1
        assert stats.cleaned_count == 1
        assert "X" in stats.errors[0]
        assert registry.failed == ["X"]

    @pytest.mark.asyncio
    async def test_registry_failure_keeps_delete_counted(self):
        handler, storage, registry = make_handler(
            objects=[StorageObject("a.jpg", 10, days_ago(30)), StorageObject("b.jpg", 20, days_ago(30))],
        )
        registry.unavailable_keys.add("a.jpg")

        stats = await handler.execute(make_context())

        assert sorted(storage.deleted) == ["a.jpg", "b.jpg"]
        assert stats.cleaned_count == 2
        assert stats.bytes_freed == 30
        assert stats.failed_count == 1
        assert "a.jpg" in stats.errors[0]
        assert registry.cleaned == ["b.jpg"]

    @pytest.mark.asyncio
    async def test_cancelled_before_first_batch(self):
        handler, storage, _ = make_handler(objects=[StorageObject("X", 5, days_ago(30))])
        context = make_context()
        context.cancel()

        stats = await handler.execute(context)

        assert stats.processed_count == 1
        assert stats.cleaned_count == 0
        assert storage.deleted == []


class TestTempFiles:
    @pytest.mark.asyncio
    async def test_expired_temp_objects_deleted(self):
        handler, storage, _ = make_handler(
            objects=[
                StorageObject("temp/old", 100, days_ago(2)),
                StorageObject("temp/new", 100, days_ago(0.5)),
                StorageObject("processing/old", 50, days_ago(3)),
                StorageObject("uploads/keep", 10, days_ago(90)),
            ],
        )

        stats = await handler.execute(make_context(TaskType.TEMP_FILES, retention_days=1))

        assert sorted(storage.deleted) == ["processing/old", "temp/old"]
        assert stats.processed_count == 3
        assert stats.skipped_count == 1
        assert stats.bytes_freed == 150

    @pytest.mark.asyncio
    async def test_patterns_override_prefixes(self):
        handler, storage, _ = make_handler(
            objects=[StorageObject("temp/old", 1, days_ago(2)), StorageObject("scratch/old", 1, days_ago(2))],
        )

        await handler.execute(make_context(TaskType.TEMP_FILES, retention_days=1, patterns=["scratch/"]))

        assert storage.deleted == ["scratch/old"]


class TestIncompleteUploads:
    @pytest.mark.asyncio
    async def test_stale_uploads_aborted(self):
        handler, storage, _ = make_handler(
            uploads=[
                MultipartUpload("big.mp4", "u1", NOW - timedelta(hours=25)),
                MultipartUpload("fresh.mp4", "u2", NOW - timedelta(hours=2)),
            ],
        )

        stats = await handler.execute(make_context(TaskType.INCOMPLETE_UPLOADS))

        assert storage.aborted == ["u1"]
        assert stats.cleaned_count == 1
        assert stats.skipped_count == 1

    @pytest.mark.asyncio
    async def test_max_age_override(self):
        handler, storage, _ = make_handler(
            uploads=[MultipartUpload("fresh.mp4", "u2", NOW - timedelta(hours=2))],
        )

        await handler.execute(make_context(TaskType.INCOMPLETE_UPLOADS, max_age=3600))

        assert storage.aborted == ["u2"]


class TestStorageCleanup:
    @pytest.mark.asyncio
    async def test_combines_temp_files_and_uploads(self):
        handler, storage, _ = make_handler(
            objects=[StorageObject("temp/old", 100, days_ago(2))],
            uploads=[MultipartUpload("big.mp4", "u1", NOW - timedelta(hours=48))],
        )

        stats = await handler.execute(make_context(TaskType.STORAGE_CLEANUP, retention_days=1))

        assert stats.cleaned_count == 2
        assert stats.processed_count == 2
        assert storage.deleted == ["temp/old"]
        assert storage.aborted == ["u1"]

    @pytest.mark.asyncio
    async def test_dry_run_touches_nothing(self):
        handler, storage, _ = make_handler(
            objects=[StorageObject("temp/old", 100, days_ago(2))],
            uploads=[MultipartUpload("big.mp4", "u1", NOW - timedelta(hours=48))],
        )

        stats = await handler.execute(make_context(TaskType.STORAGE_CLEANUP, retention_days=1, dry_run=True))

        assert stats.cleaned_count == 2
        assert storage.deleted == []
        assert storage.aborted == []


@pytest.mark.asyncio
async def test_unsupported_task_type():
    handler, _, _ = make_handler()
    with pytest.raises(UnsupportedTaskException):
        await handler.execute(make_context(TaskType.LOG_CLEANUP))
