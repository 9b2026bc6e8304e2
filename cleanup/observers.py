"""
任务观察者 - 执行监控
"""

from abc import ABC, abstractmethod
from typing import Dict

from loguru import logger

from core.utils.time_utils import format_bytes, format_duration

from .types import CleanupResult, TaskProgress, TaskType


class TaskObserver(ABC):
    """任务观察者接口"""

    def on_task_started(self, task_type: TaskType):
        """任务开始时调用（可选）"""
        pass

    def on_task_progress(self, progress: TaskProgress):
        """任务上报进度时调用（可选）"""
        pass

    @abstractmethod
    def on_task_completed(self, result: CleanupResult):
        """任务执行完成时调用"""
        pass

    @abstractmethod
    def on_task_failed(self, result: CleanupResult):
        """任务执行失败时调用"""
        pass

    def on_task_cancelled(self, result: CleanupResult):
        """任务被取消时调用（可选）"""
        pass


class LoggingObserver(TaskObserver):
    """日志观察者（默认）"""

    def on_task_started(self, task_type: TaskType):
        logger.info(f"▶ [{task_type}] Started")

    def on_task_progress(self, progress: TaskProgress):
        logger.debug(
            f"[{progress.task_type}] {progress.current_step}: "
            f"{progress.items_processed} items ({progress.progress:.0f}%)"
        )

    def on_task_completed(self, result: CleanupResult):
        stats = result.stats
        mode = " (dry-run)" if result.dry_run else ""
        logger.info(
            f"✓ [{result.task_type}]{mode} Cleaned {stats.cleaned_count}/{stats.processed_count} items, "
            f"freed {format_bytes(stats.bytes_freed)} in {format_duration(result.duration_ms)}"
        )
        if stats.failed_count:
            logger.warning(f"⚠️  [{result.task_type}] {stats.failed_count} items failed")

    def on_task_failed(self, result: CleanupResult):
        error = result.stats.errors[0] if result.stats.errors else "unknown error"
        logger.error(f"✗ [{result.task_type}] Failed: {error}")

    def on_task_cancelled(self, result: CleanupResult):
        logger.warning(
            f"⏹ [{result.task_type}] Cancelled after {result.stats.processed_count} items"
        )


class MetricsObserver(TaskObserver):
    """指标收集观察者（可扩展为 Prometheus 等）"""

    def __init__(self):
        self.metrics = {
            "total_executions": 0,
            "total_success": 0,
            "total_failures": 0,
            "total_cancelled": 0,
            "total_items_cleaned": 0,
            "total_bytes_freed": 0,
        }

    def on_task_completed(self, result: CleanupResult):
        self.metrics["total_executions"] += 1
        self.metrics["total_success"] += 1
        self.metrics["total_items_cleaned"] += result.stats.cleaned_count
        self.metrics["total_bytes_freed"] += result.stats.bytes_freed

    def on_task_failed(self, result: CleanupResult):
        self.metrics["total_executions"] += 1
        self.metrics["total_failures"] += 1

    def on_task_cancelled(self, result: CleanupResult):
        self.metrics["total_executions"] += 1
        self.metrics["total_cancelled"] += 1
        self.metrics["total_items_cleaned"] += result.stats.cleaned_count

    def get_metrics(self) -> Dict[str, int]:
        """获取指标"""
        return self.metrics.copy()
