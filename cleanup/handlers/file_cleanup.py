"""
对象存储清理

- 孤儿文件：存储中存在但媒体表未引用的对象
- 临时文件：临时前缀下的过期对象
- 未完成的分片上传
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from loguru import logger

from core.storage import StorageObject
from core.utils.time_utils import MS_PER_HOUR, MS_PER_SECOND, age_ms, is_older_than, utcnow

from ..context import TaskContext, iter_batches
from ..interfaces import (
    MediaRepository,
    ObjectStorageClient,
    OrphanFileRegistry,
    ProtectedFileRegistry,
)
from ..types import OrphanFileInfo, ResourceDomain, StatsAccumulator, TaskType
from .base import BaseCleanupHandler, Operation
from .metadata import handler_metadata

DEFAULT_TEMP_PREFIXES = ["temp/", "thumbnails/", "processing/", "cache/"]
MULTIPART_MAX_AGE_HOURS = 24


@handler_metadata(
    domain=ResourceDomain.FILE,
    ms_per_item=300,
    fallback_items=100,
    fallback_bytes=100 * 1024 * 1024,
    fallback_duration_ms=30_000,
    tags=["storage"],
)
class FileCleanupHandler(BaseCleanupHandler):
    """对象存储清理"""

    def __init__(
        self,
        storage: ObjectStorageClient,
        media: MediaRepository,
        orphan_registry: OrphanFileRegistry,
        protected_registry: ProtectedFileRegistry,
        temp_prefixes: Optional[List[str]] = None,
        multipart_max_age_hours: float = MULTIPART_MAX_AGE_HOURS,
    ):
        self.storage = storage
        self.media = media
        self.orphan_registry = orphan_registry
        self.protected_registry = protected_registry
        self.temp_prefixes = temp_prefixes or list(DEFAULT_TEMP_PREFIXES)
        self.multipart_max_age_hours = multipart_max_age_hours

    @property
    def name(self) -> str:
        return "file_cleanup"

    def operations(self) -> Dict[TaskType, Operation]:
        return {
            TaskType.ORPHAN_FILES: self.cleanup_orphan_files,
            TaskType.TEMP_FILES: self.cleanup_temp_files,
            TaskType.INCOMPLETE_UPLOADS: self.cleanup_incomplete_uploads,
            TaskType.STORAGE_CLEANUP: self.cleanup_storage,
        }

    # ========== 孤儿文件 ==========

    async def list_orphan_files(
        self, retention_days: float = 7, now: Optional[datetime] = None
    ) -> List[OrphanFileInfo]:
        """
        扫描孤儿文件（只读）

        Returns:
            存储中存在但没有任何媒体记录引用的对象
        """
        objects = await self.storage.list_objects()
        referenced = await self.media.get_referenced_keys()
        protected = await self.protected_registry.get_protected_keys()

        return [
            OrphanFileInfo(
                key=obj.key,
                size=obj.size,
                last_modified=obj.last_modified,
                is_protected=obj.key in protected,
                retention_expiry=obj.last_modified + timedelta(days=retention_days),
            )
            for obj in objects
            if obj.key not in referenced
        ]

    async def cleanup_orphan_files(self, context: TaskContext) -> StatsAccumulator:
        options = context.options
        now = utcnow()
        stats = StatsAccumulator()

        orphans = await self.list_orphan_files(options.retention_days, now)
        stats.processed_count = len(orphans)
        logger.info(f"[{context.task_type}] Found {len(orphans)} orphan files")

        # 删除决策前先登记，供审计
        if orphans and not context.dry_run:
            await self.orphan_registry.record_orphans(orphans)

        done = 0
        for batch in iter_batches(orphans, options.batch_size, context):
            for orphan in batch:
                if orphan.is_protected and not options.include_protected:
                    stats.skipped_count += 1
                elif not is_older_than(orphan.last_modified, options.retention_days, now):
                    stats.skipped_count += 1
                else:
                    await self._delete_orphan(orphan, context, stats)
            done += len(batch)
            context.report_progress("orphan_files", done, len(orphans))

        return stats

    async def _delete_orphan(
        self, orphan: OrphanFileInfo, context: TaskContext, stats: StatsAccumulator
    ) -> None:
        if context.dry_run:
            stats.cleaned_count += 1
            stats.bytes_freed += orphan.size
            return

        try:
            await self.storage.delete_object(orphan.key)
        except Exception as e:
            stats.record_failure(f"delete {orphan.key}: {e}")
            logger.warning(f"[{context.task_type}] Failed to delete orphan {orphan.key}: {e}")
            await self._mark_orphan(self.orphan_registry.mark_failed, orphan.key, context, stats)
            return

        stats.cleaned_count += 1
        stats.bytes_freed += orphan.size
        await self._mark_orphan(self.orphan_registry.mark_cleaned, orphan.key, context, stats)

    @staticmethod
    async def _mark_orphan(mark, key: str, context: TaskContext, stats: StatsAccumulator) -> None:
        """登记表状态更新失败只记入错误，已完成的删除照常计数"""
        try:
            await mark(key)
        except Exception as e:
            stats.record_failure(f"registry {key}: {e}")
            logger.warning(f"[{context.task_type}] Failed to update orphan registry for {key}: {e}")

    # ========== 临时文件 ==========

    async def cleanup_temp_files(self, context: TaskContext) -> StatsAccumulator:
        options = context.options
        prefixes = options.patterns or self.temp_prefixes
        now = utcnow()
        stats = StatsAccumulator()

        for prefix in prefixes:
            if context.is_cancelled():
                break

            objects = await self.storage.list_objects(prefix)
            stats.processed_count += len(objects)
            expired = [
                obj for obj in objects
                if is_older_than(obj.last_modified, options.retention_days, now)
            ]
            stats.skipped_count += len(objects) - len(expired)

            await self._delete_objects(expired, context, stats)
            context.report_progress(f"temp_files:{prefix}", stats.processed_count)

        return stats

    async def _delete_objects(
        self, objects: Sequence[StorageObject], context: TaskContext, stats: StatsAccumulator
    ) -> None:
        for batch in iter_batches(objects, context.options.batch_size, context):
            for obj in batch:
                if context.dry_run:
                    stats.cleaned_count += 1
                    stats.bytes_freed += obj.size
                    continue
                try:
                    await self.storage.delete_object(obj.key)
                    stats.cleaned_count += 1
                    stats.bytes_freed += obj.size
                except Exception as e:
                    stats.record_failure(f"delete {obj.key}: {e}")
                    logger.warning(f"[{context.task_type}] Failed to delete {obj.key}: {e}")

    # ========== 分片上传 ==========

    async def cleanup_incomplete_uploads(self, context: TaskContext) -> StatsAccumulator:
        """中止发起时间超过阈值（默认 24 小时，可用 max_age 秒数覆盖）的分片上传"""
        options = context.options
        max_age_ms = (
            options.max_age * MS_PER_SECOND
            if options.max_age is not None
            else self.multipart_max_age_hours * MS_PER_HOUR
        )
        now = utcnow()
        stats = StatsAccumulator()

        uploads = await self.storage.list_multipart_uploads()
        stats.processed_count = len(uploads)

        for batch in iter_batches(uploads, options.batch_size, context):
            for upload in batch:
                if age_ms(upload.initiated, now) <= max_age_ms:
                    stats.skipped_count += 1
                    continue
                if context.dry_run:
                    stats.cleaned_count += 1
                    continue
                try:
                    await self.storage.abort_multipart_upload(upload.key, upload.upload_id)
                    stats.cleaned_count += 1
                except Exception as e:
                    stats.record_failure(f"abort {upload.key} ({upload.upload_id}): {e}")
                    logger.warning(
                        f"[{context.task_type}] Failed to abort upload {upload.upload_id}: {e}"
                    )

        context.report_progress("incomplete_uploads", len(uploads), len(uploads))
        return stats

    # ========== 综合 ==========

    async def cleanup_storage(self, context: TaskContext) -> StatsAccumulator:
        """临时文件 + 未完成分片上传"""
        stats = await self.cleanup_temp_files(context)
        if not context.is_cancelled():
            uploads = await self.cleanup_incomplete_uploads(context)
            stats.merge(uploads.build(0))
        return stats
