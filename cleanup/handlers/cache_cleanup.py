"""
缓存清理

两层缓存：远端缓存后端（Redis）+ 可选的进程内缓存
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from core.utils.time_utils import MS_PER_SECOND, age_ms, ensure_utc, from_timestamp, utcnow

from ..context import TaskContext, iter_batches
from ..interfaces import CacheBackend
from ..types import ResourceDomain, StatsAccumulator, TaskType
from .base import BaseCleanupHandler, Operation
from .metadata import handler_metadata

DEFAULT_CACHE_PATTERNS = ["cache:*", "temp:*"]
SESSION_PATTERN = "session:*"
THUMBNAIL_PATTERN = "thumbnail:*"

DEFAULT_MEMORY_MAX_AGE = 3600  # 秒
DEFAULT_SESSION_MAX_AGE = 24 * 3600
DEFAULT_THUMBNAIL_MAX_AGE = 7 * 24 * 3600
THUMBNAIL_TTL = 30 * 24 * 3600  # 缩略图写入时设置的 TTL

TTL_NO_EXPIRY = -1
TTL_MISSING = -2


@dataclass
class _MemoryEntry:
    value: Any
    created_at: datetime


class MemoryCache:
    """进程内缓存（按写入时间淘汰）"""

    def __init__(self):
        self._entries: Dict[str, _MemoryEntry] = {}

    def set(self, key: str, value: Any, created_at: Optional[datetime] = None) -> None:
        self._entries[key] = _MemoryEntry(value, created_at or utcnow())

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        return entry.value if entry else None

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def keys_older_than(self, max_age_seconds: float, now: Optional[datetime] = None) -> List[str]:
        now = now or utcnow()
        return [
            key for key, entry in self._entries.items()
            if age_ms(entry.created_at, now) > max_age_seconds * MS_PER_SECOND
        ]

    def __len__(self) -> int:
        return len(self._entries)


def _parse_timestamp(value: Any) -> datetime:
    """会话中的时间：epoch 秒 / 毫秒或 ISO 字符串，统一为 UTC"""
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return from_timestamp(seconds)
    if isinstance(value, str):
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise ValueError(f"invalid timestamp: {value!r}")


def _session_last_seen(session: Dict[str, Any]) -> datetime:
    for field_name in ("lastAccess", "last_access", "createdAt", "created_at"):
        if session.get(field_name) is not None:
            return _parse_timestamp(session[field_name])
    raise ValueError("session has no lastAccess/createdAt")


def _session_is_active(session: Dict[str, Any]) -> bool:
    return bool(session.get("isActive", session.get("is_active", False)))


@handler_metadata(
    domain=ResourceDomain.CACHE,
    ms_per_item=75,
    fallback_items=200,
    fallback_bytes=10 * 1024 * 1024,
    fallback_duration_ms=15_000,
    tags=["cache", "redis"],
)
class CacheCleanupHandler(BaseCleanupHandler):
    """缓存清理"""

    def __init__(
        self,
        backend: CacheBackend,
        memory: Optional[MemoryCache] = None,
        thumbnail_ttl: int = THUMBNAIL_TTL,
    ):
        self.backend = backend
        self.memory = memory
        self.thumbnail_ttl = thumbnail_ttl

    @property
    def name(self) -> str:
        return "cache_cleanup"

    def operations(self) -> Dict[TaskType, Operation]:
        return {
            TaskType.CACHE_CLEANUP: self.cleanup_expired_keys,
            TaskType.SESSION_CLEANUP: self.cleanup_sessions,
            TaskType.THUMBNAIL_CACHE: self.cleanup_thumbnails,
        }

    async def _delete_key(self, key: str, context: TaskContext, stats: StatsAccumulator) -> None:
        if context.dry_run:
            stats.cleaned_count += 1
            return
        await self.backend.delete(key)
        stats.cleaned_count += 1

    # ========== 过期键 ==========

    async def cleanup_expired_keys(self, context: TaskContext) -> StatsAccumulator:
        """
        删除后端已报告过期的键；指定 max_age 时同时删除没有 TTL 的键

        进程内缓存按写入时间淘汰（默认 1 小时）
        """
        options = context.options
        patterns = options.patterns or DEFAULT_CACHE_PATTERNS
        stats = StatsAccumulator()

        for pattern in patterns:
            if context.is_cancelled():
                break
            keys = await self.backend.scan_keys(pattern)
            for batch in iter_batches(keys, options.batch_size, context):
                for key in batch:
                    stats.processed_count += 1
                    try:
                        ttl = await self.backend.ttl(key)
                        if ttl == TTL_MISSING or (ttl == TTL_NO_EXPIRY and options.max_age is not None):
                            await self._delete_key(key, context, stats)
                        else:
                            stats.skipped_count += 1
                    except Exception as e:
                        stats.record_failure(f"key {key}: {e}")
                        logger.warning(f"[{context.task_type}] Failed to clean key {key}: {e}")
            context.report_progress(f"cache:{pattern}", stats.processed_count)

        if self.memory is not None and not context.is_cancelled():
            self._evict_memory(options.max_age or DEFAULT_MEMORY_MAX_AGE, context, stats)

        return stats

    def _evict_memory(self, max_age: float, context: TaskContext, stats: StatsAccumulator) -> None:
        stale = self.memory.keys_older_than(max_age)
        stats.processed_count += len(self.memory)
        stats.skipped_count += len(self.memory) - len(stale)
        for key in stale:
            if not context.dry_run:
                self.memory.delete(key)
            stats.cleaned_count += 1

    # ========== 会话 ==========

    async def cleanup_sessions(self, context: TaskContext) -> StatsAccumulator:
        """
        删除超过 max_age 未访问的会话

        preserve_active 时活跃会话无论多久都保留；无法解析的会话计为失败
        """
        options = context.options
        max_age_ms = (options.max_age or DEFAULT_SESSION_MAX_AGE) * MS_PER_SECOND
        now = utcnow()
        stats = StatsAccumulator()

        keys = await self.backend.scan_keys(SESSION_PATTERN)
        for batch in iter_batches(keys, options.batch_size, context):
            for key in batch:
                stats.processed_count += 1
                try:
                    raw = await self.backend.get(key)
                    if raw is None:
                        stats.skipped_count += 1
                        continue

                    session = json.loads(raw)
                    if options.preserve_active and _session_is_active(session):
                        stats.skipped_count += 1
                    elif age_ms(_session_last_seen(session), now) > max_age_ms:
                        await self._delete_key(key, context, stats)
                    else:
                        stats.skipped_count += 1
                except Exception as e:
                    stats.record_failure(f"session {key}: {e}")
                    logger.warning(f"[{context.task_type}] Failed to process session {key}: {e}")
            context.report_progress("sessions", stats.processed_count, len(keys))

        return stats

    # ========== 缩略图 ==========

    async def cleanup_thumbnails(self, context: TaskContext) -> StatsAccumulator:
        """
        按剩余 TTL 反推写入时间：age = thumbnail_ttl - ttl

        没有 TTL 的缩略图直接删除
        """
        options = context.options
        max_age = options.max_age or DEFAULT_THUMBNAIL_MAX_AGE
        stats = StatsAccumulator()

        keys = await self.backend.scan_keys(THUMBNAIL_PATTERN)
        for batch in iter_batches(keys, options.batch_size, context):
            for key in batch:
                stats.processed_count += 1
                try:
                    ttl = await self.backend.ttl(key)
                    if ttl == TTL_MISSING:
                        stats.skipped_count += 1
                    elif ttl == TTL_NO_EXPIRY or self.thumbnail_ttl - ttl > max_age:
                        await self._delete_key(key, context, stats)
                    else:
                        stats.skipped_count += 1
                except Exception as e:
                    stats.record_failure(f"thumbnail {key}: {e}")
                    logger.warning(f"[{context.task_type}] Failed to clean thumbnail {key}: {e}")
            context.report_progress("thumbnails", stats.processed_count, len(keys))

        return stats

    # ========== 维护操作 ==========

    async def clear_all_cache(self) -> int:
        """
        清空全部缓存（仅用于维护窗口，不参与定时清理）

        Returns:
            清除的键数量（后端 + 进程内）
        """
        backend_keys = await self.backend.count_keys()
        await self.backend.flush_all()
        memory_keys = self.memory.clear() if self.memory is not None else 0
        logger.warning(f"⚠️  Cache flushed: {backend_keys} backend keys, {memory_keys} memory entries")
        return backend_keys + memory_keys

    async def get_cache_stats(self) -> Dict[str, Any]:
        memory_info = await self.backend.info("memory")
        return {
            "backend_keys": await self.backend.count_keys(),
            "backend_memory": memory_info.get("used_memory_human"),
            "memory_entries": len(self.memory) if self.memory is not None else 0,
        }
