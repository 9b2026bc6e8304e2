"""
关系数据库清理

- 过期上传事务
- 失败补偿操作重试
- 日志类表旧记录
- 孤儿内容 / 媒体记录
- 表优化
"""

from datetime import timedelta
from typing import Dict

from loguru import logger

from core.enums import CompensationActionType
from core.utils.time_utils import retention_cutoff, utcnow

from ..context import TaskContext, iter_batches
from ..interfaces import (
    CompensationRecord,
    CompensationRepository,
    ContentRepository,
    LogTableRepository,
    MaintenanceRepository,
    ObjectStorageClient,
    TransactionRepository,
)
from ..types import ResourceDomain, StatsAccumulator, TaskType
from .base import BaseCleanupHandler, Operation
from .metadata import handler_metadata

RETRY_COOLDOWN = timedelta(hours=1)
ORPHAN_POST_GRACE = timedelta(hours=24)


@handler_metadata(
    domain=ResourceDomain.DATABASE,
    ms_per_item=200,
    fallback_items=50,
    fallback_bytes=50 * 1024,
    fallback_duration_ms=10_000,
    tags=["database"],
)
class DatabaseCleanupHandler(BaseCleanupHandler):
    """关系数据库清理"""

    def __init__(
        self,
        transactions: TransactionRepository,
        compensations: CompensationRepository,
        log_tables: LogTableRepository,
        content: ContentRepository,
        maintenance: MaintenanceRepository,
        storage: ObjectStorageClient,
        retry_cooldown: timedelta = RETRY_COOLDOWN,
        orphan_post_grace: timedelta = ORPHAN_POST_GRACE,
    ):
        self.transactions = transactions
        self.compensations = compensations
        self.log_tables = log_tables
        self.content = content
        self.maintenance = maintenance
        self.storage = storage
        self.retry_cooldown = retry_cooldown
        self.orphan_post_grace = orphan_post_grace

    @property
    def name(self) -> str:
        return "database_cleanup"

    def operations(self) -> Dict[TaskType, Operation]:
        return {
            TaskType.EXPIRED_TRANSACTIONS: self.cleanup_expired_transactions,
            TaskType.FAILED_COMPENSATIONS: self.retry_failed_compensations,
            TaskType.LOG_TABLE_CLEANUP: self.cleanup_log_tables,
            TaskType.DATABASE_CLEANUP: self.cleanup_orphan_records,
            TaskType.DATABASE_OPTIMIZATION: self.optimize_tables,
        }

    # ========== 过期事务 ==========

    async def cleanup_expired_transactions(self, context: TaskContext) -> StatsAccumulator:
        stats = StatsAccumulator()
        expired = await self.transactions.get_expired_transactions(
            utcnow(), context.options.batch_size
        )
        stats.processed_count = len(expired)

        for batch in iter_batches(expired, context.options.batch_size, context):
            for tx in batch:
                if context.dry_run:
                    stats.cleaned_count += 1
                    continue
                try:
                    await self.transactions.cleanup_transaction(tx.id)
                    stats.cleaned_count += 1
                except Exception as e:
                    stats.record_failure(f"transaction {tx.id}: {e}")
                    logger.warning(f"[{context.task_type}] Failed to clean transaction {tx.id}: {e}")

        context.report_progress("expired_transactions", len(expired), len(expired))
        return stats

    # ========== 补偿重试 ==========

    async def retry_failed_compensations(self, context: TaskContext) -> StatsAccumulator:
        """
        重试失败的补偿操作

        - 重试次数已耗尽的标记为 PERMANENTLY_FAILED（只会标记一次），计为跳过
        - 其余冷却期已过的：重试次数加一后重新执行，成功则 RESOLVED
        """
        max_retries = context.max_retries
        batch_size = context.options.batch_size
        now = utcnow()
        stats = StatsAccumulator()

        exhausted = await self.compensations.get_exhausted_actions(max_retries, batch_size)
        for action in exhausted:
            stats.processed_count += 1
            if context.dry_run:
                stats.skipped_count += 1
                continue
            try:
                await self.compensations.mark_permanently_failed(action.id, now)
            except Exception as e:
                stats.record_failure(f"compensation {action.id} mark permanently failed: {e}")
                logger.warning(f"[{context.task_type}] Failed to retire compensation {action.id}: {e}")
                continue
            stats.skipped_count += 1
            logger.warning(
                f"[{context.task_type}] Compensation {action.id} permanently failed "
                f"after {action.retry_count} retries"
            )

        retryable = await self.compensations.get_retryable_actions(
            max_retries, now - self.retry_cooldown, batch_size
        )
        for batch in iter_batches(retryable, batch_size, context):
            for action in batch:
                stats.processed_count += 1
                if context.dry_run:
                    stats.cleaned_count += 1
                    continue

                try:
                    await self.compensations.mark_retry_started(action.id, now)
                    await self._run_compensation(action)
                    await self.compensations.mark_resolved(action.id, utcnow())
                except Exception as e:
                    stats.record_failure(
                        f"compensation {action.id} ({action.action_type.value}) "
                        f"retry {action.retry_count + 1}/{max_retries}: {e}"
                    )
                    logger.warning(f"[{context.task_type}] Compensation {action.id} retry failed: {e}")
                    continue

                stats.cleaned_count += 1

        context.report_progress("failed_compensations", stats.processed_count)
        return stats

    async def _run_compensation(self, action: CompensationRecord) -> None:
        """重新执行补偿操作本身"""
        if action.action_type == CompensationActionType.DELETE_FILE:
            key = action.payload.get("key") or action.payload.get("storage_key")
            if not key:
                raise ValueError("payload has no storage key")
            await self.storage.delete_object(key)

        elif action.action_type == CompensationActionType.ROLLBACK_TRANSACTION:
            if not await self.transactions.mark_rolled_back(action.transaction_id):
                raise LookupError(f"transaction {action.transaction_id} not found")

        else:
            raise ValueError(f"unknown compensation type: {action.action_type}")

    # ========== 日志类表 ==========

    async def cleanup_log_tables(self, context: TaskContext) -> StatsAccumulator:
        options = context.options
        tables = options.tables or self.log_tables.list_tables()
        cutoff = retention_cutoff(options.retention_days)
        stats = StatsAccumulator()

        for table in tables:
            if context.is_cancelled():
                break
            try:
                if context.dry_run:
                    count = await self.log_tables.count_older_than(table, cutoff)
                    stats.processed_count += count
                    stats.cleaned_count += count
                else:
                    await self._delete_table_rows(table, cutoff, context, stats)
            except Exception as e:
                stats.record_failure(f"table {table}: {e}")
                logger.warning(f"[{context.task_type}] Failed to prune {table}: {e}")

            context.report_progress(f"log_tables:{table}", stats.processed_count)

        return stats

    async def _delete_table_rows(self, table, cutoff, context: TaskContext, stats: StatsAccumulator) -> None:
        batch_size = context.options.batch_size
        while not context.is_cancelled():
            deleted = await self.log_tables.delete_older_than(table, cutoff, batch_size)
            stats.processed_count += deleted
            stats.cleaned_count += deleted
            if deleted < batch_size:
                break
        logger.debug(f"[{context.task_type}] {table}: rows older than {cutoff} pruned")

    # ========== 孤儿记录 ==========

    async def cleanup_orphan_records(self, context: TaskContext) -> StatsAccumulator:
        """先删除没有媒体的旧内容，再删除没有内容的媒体记录"""
        batch_size = context.options.batch_size
        created_before = utcnow() - self.orphan_post_grace
        stats = StatsAccumulator()

        if context.dry_run:
            posts = await self.content.count_posts_without_media(created_before)
            media = await self.content.count_media_without_post()
            stats.processed_count = stats.cleaned_count = posts + media
            return stats

        while not context.is_cancelled():
            deleted = await self.content.delete_posts_without_media(created_before, batch_size)
            stats.processed_count += deleted
            stats.cleaned_count += deleted
            if deleted < batch_size:
                break
        context.report_progress("orphan_posts", stats.processed_count)

        while not context.is_cancelled():
            deleted = await self.content.delete_media_without_post(batch_size)
            stats.processed_count += deleted
            stats.cleaned_count += deleted
            if deleted < batch_size:
                break
        context.report_progress("orphan_media", stats.processed_count)

        return stats

    # ========== 表优化 ==========

    async def optimize_tables(self, context: TaskContext) -> StatsAccumulator:
        """表维护不删除数据，processed 为处理的表数，cleaned 恒为 0"""
        tables = context.options.tables or self.maintenance.list_tables()
        stats = StatsAccumulator()

        for table in tables:
            if context.is_cancelled():
                break
            stats.processed_count += 1
            if context.dry_run:
                stats.skipped_count += 1
                continue
            try:
                await self.maintenance.optimize_table(table)
            except Exception as e:
                stats.record_failure(f"optimize {table}: {e}")
                logger.warning(f"[{context.task_type}] Failed to optimize {table}: {e}")

        context.report_progress("optimize", stats.processed_count, len(tables))
        return stats
