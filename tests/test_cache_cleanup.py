"""
Unit tests for CacheCleanupHandler
"""

import json
from datetime import timedelta

import pytest

from cleanup.context import TaskContext
from cleanup.handlers import CacheCleanupHandler, MemoryCache
from cleanup.types import CleanupOptions, TaskType
from core.utils.time_utils import utcnow

from tests.fakes import FakeCacheBackend

HOUR = 3600
DAY = 24 * HOUR


def make_context(task_type, **options):
    values = {"batch_size": 100, "dry_run": False}
    values.update(options)
    return TaskContext(task_type=task_type, options=CleanupOptions(**values))


def session(hours_ago, active=False, field="lastAccess", as_iso=False):
    seen = utcnow() - timedelta(hours=hours_ago)
    value = seen.isoformat() if as_iso else int(seen.timestamp() * 1000)
    return json.dumps({field: value, "isActive": active})


@pytest.fixture
def backend():
    return FakeCacheBackend()


class TestSessions:
    @pytest.mark.asyncio
    async def test_active_session_preserved(self, backend):
        backend.put("session:active", session(30, active=True))
        backend.put("session:stale", session(30))
        backend.put("session:fresh", session(2))
        handler = CacheCleanupHandler(backend)

        stats = await handler.execute(
            make_context(TaskType.SESSION_CLEANUP, max_age=24 * HOUR, preserve_active=True)
        )

        assert set(backend.values) == {"session:active", "session:fresh"}
        assert stats.cleaned_count == 1
        assert stats.skipped_count == 2

    @pytest.mark.asyncio
    async def test_active_session_removed_without_preserve(self, backend):
        backend.put("session:active", session(30, active=True))
        handler = CacheCleanupHandler(backend)

        await handler.execute(make_context(TaskType.SESSION_CLEANUP, max_age=24 * HOUR))

        assert backend.values == {}

    @pytest.mark.asyncio
    async def test_iso_and_created_at_fields(self, backend):
        backend.put("session:iso", session(48, field="created_at", as_iso=True))
        handler = CacheCleanupHandler(backend)

        stats = await handler.execute(make_context(TaskType.SESSION_CLEANUP))

        assert stats.cleaned_count == 1

    @pytest.mark.asyncio
    async def test_unparseable_session_counted_as_failure(self, backend):
        backend.put("session:broken", "not json")
        backend.put("session:empty", json.dumps({"isActive": False}))
        handler = CacheCleanupHandler(backend)

        stats = await handler.execute(make_context(TaskType.SESSION_CLEANUP))

        assert stats.failed_count == 2
        assert len(backend.values) == 2


class TestExpiredKeys:
    @pytest.mark.asyncio
    async def test_expired_and_untracked_keys(self, backend):
        backend.put("cache:gone", ttl=-2)
        backend.put("cache:live", ttl=120)
        backend.put("cache:forever", ttl=-1)
        backend.put("other:key", ttl=-2)
        handler = CacheCleanupHandler(backend)

        stats = await handler.execute(make_context(TaskType.CACHE_CLEANUP))

        assert set(backend.values) == {"cache:live", "cache:forever", "other:key"}
        assert stats.processed_count == 3
        assert stats.cleaned_count == 1

        await handler.execute(make_context(TaskType.CACHE_CLEANUP, max_age=HOUR))
        assert "cache:forever" not in backend.values

    @pytest.mark.asyncio
    async def test_memory_cache_evicted_by_age(self, backend):
        memory = MemoryCache()
        memory.set("old", 1, created_at=utcnow() - timedelta(hours=2))
        memory.set("new", 2)
        handler = CacheCleanupHandler(backend, memory=memory)

        stats = await handler.execute(make_context(TaskType.CACHE_CLEANUP))

        assert memory.get("old") is None
        assert memory.get("new") == 2
        assert stats.cleaned_count == 1

    @pytest.mark.asyncio
    async def test_dry_run(self, backend):
        backend.put("cache:gone", ttl=-2)
        memory = MemoryCache()
        memory.set("old", 1, created_at=utcnow() - timedelta(hours=2))
        handler = CacheCleanupHandler(backend, memory=memory)

        stats = await handler.execute(make_context(TaskType.CACHE_CLEANUP, dry_run=True))

        assert stats.cleaned_count == 2
        assert "cache:gone" in backend.values
        assert len(memory) == 1


class TestThumbnails:
    @pytest.mark.asyncio
    async def test_age_derived_from_remaining_ttl(self, backend):
        ttl = 30 * DAY
        backend.put("thumbnail:old", ttl=ttl - 10 * DAY)
        backend.put("thumbnail:new", ttl=ttl - 1 * DAY)
        backend.put("thumbnail:no_ttl", ttl=-1)
        handler = CacheCleanupHandler(backend, thumbnail_ttl=ttl)

        stats = await handler.execute(make_context(TaskType.THUMBNAIL_CACHE, max_age=7 * DAY))

        assert set(backend.values) == {"thumbnail:new"}
        assert stats.cleaned_count == 2
        assert stats.skipped_count == 1


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_clear_all_cache(self, backend):
        backend.put("a")
        backend.put("b")
        memory = MemoryCache()
        memory.set("m", 1)
        handler = CacheCleanupHandler(backend, memory=memory)

        removed = await handler.clear_all_cache()

        assert removed == 3
        assert backend.flushed
        assert len(memory) == 0

    @pytest.mark.asyncio
    async def test_cache_stats(self, backend):
        backend.put("a")
        handler = CacheCleanupHandler(backend)

        stats = await handler.get_cache_stats()

        assert stats == {"backend_keys": 1, "backend_memory": "1.00M", "memory_entries": 0}
