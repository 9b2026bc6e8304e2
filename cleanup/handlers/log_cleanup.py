"""
日志文件清理（本地文件系统）

删除、压缩或归档超过保留期的日志文件
"""

import asyncio
import zlib
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiofiles
import aiofiles.os
from loguru import logger

from core.utils.time_utils import from_timestamp, is_older_than, utcnow

from ..context import TaskContext, iter_batches
from ..types import ResourceDomain, StatsAccumulator, TaskType
from .base import BaseCleanupHandler, Operation
from .metadata import handler_metadata

LOG_EXTENSIONS = (".log", ".log.gz", ".txt", ".out", ".err")
CHUNK_SIZE = 64 * 1024
LOG_CATEGORIES = ("error", "access", "debug", "audit", "cleanup")


@dataclass(frozen=True)
class LogFile:
    path: Path
    size: int
    modified: datetime

    @property
    def compressed(self) -> bool:
        return self.path.name.endswith(".gz")


def _scan_directory(directory: Path, extensions: Sequence[str]) -> List[LogFile]:
    if not directory.is_dir():
        return []

    files = []
    for path in directory.iterdir():
        if not path.is_file() or not path.name.endswith(tuple(extensions)):
            continue
        stat = path.stat()
        modified = from_timestamp(stat.st_mtime)
        files.append(LogFile(path=path, size=stat.st_size, modified=modified))
    return sorted(files, key=lambda f: f.modified)


def _matches_levels(name: str, levels: Optional[List[str]]) -> bool:
    """按文件名子串粗略匹配日志级别，不解析日志内容"""
    if not levels:
        return True
    lowered = name.lower()
    return any(level.lower() in lowered for level in levels)


def archive_name(path: Path, day: datetime) -> str:
    """app.log -> app_2024-05-01.log"""
    stem, _, ext = path.name.partition(".")
    suffix = f".{ext}" if ext else ""
    return f"{stem}_{day:%Y-%m-%d}{suffix}"


def categorize(name: str) -> str:
    lowered = name.lower()
    for category in LOG_CATEGORIES:
        if category in lowered:
            return category
    return "general"


@handler_metadata(
    domain=ResourceDomain.LOG,
    ms_per_item=667,
    fallback_items=30,
    fallback_bytes=5 * 1024 * 1024,
    fallback_duration_ms=20_000,
    tags=["filesystem"],
)
class LogCleanupHandler(BaseCleanupHandler):
    """日志文件清理"""

    def __init__(
        self,
        log_directory: str,
        archive_directory: str,
        extensions: Sequence[str] = LOG_EXTENSIONS,
    ):
        self.log_directory = Path(log_directory)
        self.archive_directory = Path(archive_directory)
        self.extensions = tuple(extensions)

    @property
    def name(self) -> str:
        return "log_cleanup"

    def operations(self) -> Dict[TaskType, Operation]:
        return {
            TaskType.LOG_CLEANUP: self.cleanup_logs,
            TaskType.LOG_COMPRESSION: self.compress_logs,
            TaskType.LOG_ARCHIVE: self.archive_logs,
        }

    async def _expired_files(self, context: TaskContext, stats: StatsAccumulator) -> List[LogFile]:
        """扫描目录，返回超过保留期的文件（未过期的计为跳过）"""
        options = context.options
        files = await asyncio.to_thread(_scan_directory, self.log_directory, self.extensions)
        files = [f for f in files if _matches_levels(f.path.name, options.log_levels)]
        now = utcnow()

        expired = [f for f in files if is_older_than(f.modified, options.retention_days, now)]
        stats.processed_count += len(files)
        stats.skipped_count += len(files) - len(expired)
        return expired

    # ========== 删除 ==========

    async def cleanup_logs(self, context: TaskContext) -> StatsAccumulator:
        """删除过期日志；compress_old 时改为压缩"""
        if context.options.compress_old:
            return await self.compress_logs(context)

        stats = StatsAccumulator()
        expired = await self._expired_files(context, stats)

        for batch in iter_batches(expired, context.options.batch_size, context):
            for log_file in batch:
                if context.dry_run:
                    stats.cleaned_count += 1
                    stats.bytes_freed += log_file.size
                    continue
                try:
                    await aiofiles.os.remove(log_file.path)
                    stats.cleaned_count += 1
                    stats.bytes_freed += log_file.size
                except OSError as e:
                    stats.record_failure(f"delete {log_file.path.name}: {e}")
                    logger.warning(f"[{context.task_type}] Failed to delete {log_file.path}: {e}")
            context.report_progress("delete_logs", stats.cleaned_count, len(expired))

        return stats

    # ========== 压缩 ==========

    async def compress_logs(self, context: TaskContext) -> StatsAccumulator:
        stats = StatsAccumulator()
        expired = await self._expired_files(context, stats)

        for batch in iter_batches(expired, context.options.batch_size, context):
            for log_file in batch:
                if log_file.compressed:
                    stats.skipped_count += 1
                    continue
                if context.dry_run:
                    stats.cleaned_count += 1
                    continue
                try:
                    target = await self._gzip_file(log_file.path)
                    compressed_size = (await aiofiles.os.stat(target)).st_size
                    stats.cleaned_count += 1
                    stats.bytes_freed += max(0, log_file.size - compressed_size)
                except OSError as e:
                    stats.record_failure(f"compress {log_file.path.name}: {e}")
                    logger.warning(f"[{context.task_type}] Failed to compress {log_file.path}: {e}")
            context.report_progress("compress_logs", stats.cleaned_count, len(expired))

        return stats

    async def _gzip_file(self, source: Path) -> Path:
        """流式压缩为 <name>.gz（压缩在线程中执行），成功后删除原文件"""
        target = source.with_name(source.name + ".gz")
        compressor = zlib.compressobj(9, zlib.DEFLATED, zlib.MAX_WBITS | 16)

        try:
            async with aiofiles.open(source, "rb") as src, aiofiles.open(target, "wb") as dst:
                while True:
                    chunk = await src.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    await dst.write(await asyncio.to_thread(compressor.compress, chunk))
                await dst.write(await asyncio.to_thread(compressor.flush))
        except OSError:
            if await aiofiles.os.path.exists(target):
                await aiofiles.os.remove(target)
            raise

        await aiofiles.os.remove(source)
        return target

    # ========== 归档 ==========

    async def archive_logs(self, context: TaskContext) -> StatsAccumulator:
        """移动到归档目录（按修改日期重命名），compress_old 时随后压缩"""
        options = context.options
        archive_dir = Path(options.archive_path) if options.archive_path else self.archive_directory
        stats = StatsAccumulator()
        expired = await self._expired_files(context, stats)

        if expired and not context.dry_run:
            await aiofiles.os.makedirs(archive_dir, exist_ok=True)

        for batch in iter_batches(expired, options.batch_size, context):
            for log_file in batch:
                if context.dry_run:
                    stats.cleaned_count += 1
                    continue
                try:
                    target = await self._unique_target(archive_dir / archive_name(log_file.path, log_file.modified))
                    await aiofiles.os.rename(log_file.path, target)
                    if options.compress_old and not log_file.compressed:
                        target = await self._gzip_file(target)
                        stats.bytes_freed += max(0, log_file.size - (await aiofiles.os.stat(target)).st_size)
                    stats.cleaned_count += 1
                except OSError as e:
                    stats.record_failure(f"archive {log_file.path.name}: {e}")
                    logger.warning(f"[{context.task_type}] Failed to archive {log_file.path}: {e}")
            context.report_progress("archive_logs", stats.cleaned_count, len(expired))

        return stats

    @staticmethod
    async def _unique_target(target: Path) -> Path:
        candidate = target
        counter = 1
        while await aiofiles.os.path.exists(candidate):
            stem, _, ext = target.name.partition(".")
            candidate = target.with_name(f"{stem}-{counter}.{ext}" if ext else f"{stem}-{counter}")
            counter += 1
        return candidate

    # ========== 统计 ==========

    async def get_log_stats(self) -> Dict[str, Any]:
        """日志目录概况（按文件名分类）"""
        files = await asyncio.to_thread(_scan_directory, self.log_directory, self.extensions)
        by_type: Dict[str, Dict[str, int]] = {}
        for log_file in files:
            bucket = by_type.setdefault(categorize(log_file.path.name), {"count": 0, "size": 0})
            bucket["count"] += 1
            bucket["size"] += log_file.size

        return {
            "directory": str(self.log_directory),
            "total_files": len(files),
            "total_size": sum(f.size for f in files),
            "oldest": files[0].modified if files else None,
            "newest": files[-1].modified if files else None,
            "by_type": by_type,
        }
