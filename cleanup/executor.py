"""
清理任务执行器

- 按任务类型分派到对应的 handler
- 同一任务类型同时只允许一个运行
- 批量执行时按 max_concurrent_tasks 分块并发
- 超时、取消、dry-run、影响预估
"""

import asyncio
import time
from typing import Dict, Iterable, List, Optional, Sequence

from loguru import logger

from core.exceptions import (
    CleanupTaskException,
    ConfigurationException,
    TaskDisabledException,
    TaskTimeoutException,
)
from core.utils.time_utils import utcnow

from .config import ConfigManager
from .context import TaskContext
from .handlers.base import BaseCleanupHandler
from .manager import TaskManager, TaskRun
from .observers import LoggingObserver, TaskObserver
from .types import (
    CleanupOptions,
    CleanupResult,
    CleanupStats,
    ImpactEstimate,
    TaskProgress,
    TaskStatus,
    TaskType,
)


class TaskExecutor:
    """
    清理任务执行器

    所有 TaskType 必须恰好由一个 handler 处理，构造时检查
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        handlers: Sequence[BaseCleanupHandler],
        task_manager: Optional[TaskManager] = None,
        observers: Optional[List[TaskObserver]] = None,
    ):
        self.config_manager = config_manager
        self.task_manager = task_manager or TaskManager(
            history_limit=config_manager.get_config().general.history_limit
        )
        self.observers: List[TaskObserver] = (
            observers if observers is not None else [LoggingObserver()]
        )
        self._dispatch = self._build_dispatch(handlers)

    @staticmethod
    def _build_dispatch(handlers: Sequence[BaseCleanupHandler]) -> Dict[TaskType, BaseCleanupHandler]:
        dispatch: Dict[TaskType, BaseCleanupHandler] = {}
        for handler in handlers:
            for task_type in handler.operations():
                if task_type in dispatch:
                    raise ConfigurationException(
                        f"Task type {task_type} handled by both "
                        f"{dispatch[task_type].name} and {handler.name}"
                    )
                dispatch[task_type] = handler

        missing = [t.value for t in TaskType if t not in dispatch]
        if missing:
            raise ConfigurationException(f"No handler for task types: {', '.join(missing)}")
        return dispatch

    def get_handler(self, task_type: TaskType) -> BaseCleanupHandler:
        return self._dispatch[TaskType(task_type)]

    def add_observer(self, observer: TaskObserver):
        """添加观察者"""
        self.observers.append(observer)
        logger.debug(f"Added observer: {observer.__class__.__name__}")

    # ========== 执行 ==========

    async def execute_task(
        self, task_type: TaskType, options: Optional[CleanupOptions] = None
    ) -> CleanupResult:
        """
        执行单个任务

        Raises:
            TaskDisabledException: 任务已禁用
            TaskAlreadyRunningException: 同类型任务正在运行

        其它任何错误都转换为 FAILED 结果，不会抛出
        """
        task_type = TaskType(task_type)
        task_config = self.config_manager.get_task_config(task_type)
        if not task_config.enabled:
            raise TaskDisabledException(task_type)

        merged = (options or CleanupOptions()).merged_over(task_config.default_options())
        context = TaskContext(
            task_type=task_type, options=merged, max_retries=task_config.max_retries
        )
        run = self.task_manager.start_task(task_type, context)
        context.on_progress = lambda _type, step, items, total: self._on_progress(
            run, step, items, total
        )
        self._notify("on_task_started", task_type)

        timeout = self.config_manager.get_task_timeout(task_type)
        start_time = utcnow()
        started = time.monotonic()
        try:
            try:
                stats = await asyncio.wait_for(
                    self._dispatch[task_type].execute(context), timeout=timeout
                )
                status = TaskStatus.CANCELLED if context.is_cancelled() else TaskStatus.COMPLETED
            except asyncio.TimeoutError:
                error = TaskTimeoutException(task_type, timeout)
                stats = CleanupStats.failure(str(error), self._elapsed_ms(started))
                status = TaskStatus.FAILED
            except Exception as e:
                stats = CleanupStats.failure(f"{type(e).__name__}: {e}", self._elapsed_ms(started))
                status = TaskStatus.FAILED

            result = CleanupResult(
                task_type=task_type,
                status=status,
                stats=stats,
                start_time=start_time,
                end_time=utcnow(),
                duration_ms=self._elapsed_ms(started),
                dry_run=context.dry_run,
            )
            self.task_manager.record_result(result)
        finally:
            self.task_manager.finish_task(run)

        self._notify_result(result)
        return result

    async def execute_batch(
        self, task_types: Iterable[TaskType], options: Optional[CleanupOptions] = None
    ) -> List[CleanupResult]:
        """
        批量执行

        按 max_concurrent_tasks 分块，块内并发，上一块全部结束后才开始下一块；
        被拒绝的任务（禁用 / 正在运行）记录日志后跳过
        """
        task_types = [TaskType(t) for t in task_types]
        chunk_size = self.config_manager.max_concurrent_tasks
        results: List[CleanupResult] = []

        for start in range(0, len(task_types), chunk_size):
            chunk = task_types[start:start + chunk_size]
            logger.debug(f"Executing chunk: {[t.value for t in chunk]}")

            outcomes = await asyncio.gather(
                *(self.execute_task(t, options) for t in chunk), return_exceptions=True
            )
            for task_type, outcome in zip(chunk, outcomes):
                if isinstance(outcome, CleanupTaskException):
                    logger.warning(f"[{task_type}] Skipped: {outcome}")
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append(outcome)

        return results

    async def execute_all(self, options: Optional[CleanupOptions] = None) -> List[CleanupResult]:
        """按优先级批量执行所有启用的任务"""
        return await self.execute_batch(self.config_manager.get_enabled_tasks(), options)

    def cancel_task(self, task_type: TaskType) -> bool:
        """
        取消任务（协作式）

        handler 在批次边界检查取消标记，已开始处理的项会完成
        """
        return self.task_manager.cancel_task(TaskType(task_type)) is not None

    # ========== 预估 ==========

    async def estimate_impact(
        self, task_type: TaskType, options: Optional[CleanupOptions] = None
    ) -> ImpactEstimate:
        """
        预估执行影响（以 dry-run 方式运行，不改变任何状态，不进入历史）

        dry-run 失败时退回 handler 元数据中的经验值
        """
        task_type = TaskType(task_type)
        task_config = self.config_manager.get_task_config(task_type)
        merged = (options or CleanupOptions()).merged_over(task_config.default_options())
        context = TaskContext(
            task_type=task_type,
            options=merged.model_copy(update={"dry_run": True}),
            max_retries=task_config.max_retries,
        )
        handler = self._dispatch[task_type]
        metadata = handler.metadata

        try:
            stats = await asyncio.wait_for(
                handler.execute(context), timeout=self.config_manager.get_task_timeout(task_type)
            )
        except Exception as e:
            logger.warning(f"[{task_type}] Impact estimate fell back to defaults: {e}")
            return ImpactEstimate(
                task_type=task_type,
                items=metadata.fallback_items,
                bytes=metadata.fallback_bytes,
                duration_ms=metadata.fallback_duration_ms,
                heuristic=True,
            )

        return ImpactEstimate(
            task_type=task_type,
            items=stats.cleaned_count,
            bytes=stats.bytes_freed,
            duration_ms=stats.cleaned_count * metadata.ms_per_item,
        )

    # ========== 状态查询 ==========

    def get_running_tasks(self) -> List[TaskType]:
        return self.task_manager.get_running_tasks()

    def is_running(self, task_type: TaskType) -> bool:
        return self.task_manager.is_running(TaskType(task_type))

    def get_task_progress(self, task_type: TaskType) -> Optional[TaskProgress]:
        return self.task_manager.get_task_progress(TaskType(task_type))

    def get_all_task_progress(self) -> List[TaskProgress]:
        return self.task_manager.get_all_task_progress()

    # ========== 内部 ==========

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def _on_progress(self, run: TaskRun, step: str, items: int, total: Optional[int]) -> None:
        # 已取消的运行不再更新进度（同类型可能已有新的运行）
        if run.context.is_cancelled():
            return
        progress = self.task_manager.update_progress(run.task_type, step, items, total)
        if progress is not None:
            self._notify("on_task_progress", progress)

    def _notify_result(self, result: CleanupResult) -> None:
        if result.status == TaskStatus.COMPLETED:
            self._notify("on_task_completed", result)
        elif result.status == TaskStatus.CANCELLED:
            self._notify("on_task_cancelled", result)
        else:
            self._notify("on_task_failed", result)

    def _notify(self, event: str, payload) -> None:
        """通知所有观察者，观察者异常只记录日志"""
        for observer in self.observers:
            try:
                getattr(observer, event)(payload)
            except Exception as e:
                logger.error(f"Observer {observer.__class__.__name__}.{event} failed: {e}")
