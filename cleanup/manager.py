"""
任务状态管理器

跟踪运行中的任务、实时进度和有界的执行历史，并提供统计查询
"""

import itertools
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional

from loguru import logger

from core.exceptions import TaskAlreadyRunningException
from core.utils.time_utils import age_ms, utcnow

from .context import TaskContext
from .types import CleanupResult, TaskProgress, TaskStatus, TaskType

_run_ids = itertools.count(1)


@dataclass
class TaskRun:
    """一次运行的占位凭证；只有持有者能释放对应的运行标记"""

    task_type: TaskType
    context: TaskContext
    run_id: int = field(default_factory=lambda: next(_run_ids))
    started_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TaskError:
    task_type: TaskType
    time: datetime
    error: str


@dataclass(frozen=True)
class TaskStatsSnapshot:
    total_executed: int
    success_rate: float  # 百分比
    average_duration_ms: float
    total_items_cleaned: int
    total_bytes_freed: int
    most_frequent_task: Optional[TaskType]
    last_execution_time: Optional[datetime]
    uptime_ms: int  # 距第一条记录的时间


class TaskManager:
    """
    任务状态管理器

    运行集合以任务类型为键，同一类型同时只允许一个运行；
    检查和占位之间没有 await，在单个事件循环内是原子的
    """

    def __init__(self, history_limit: int = 1000):
        self._running: Dict[TaskType, TaskRun] = {}
        self._progress: Dict[TaskType, TaskProgress] = {}
        self._history: Deque[CleanupResult] = deque(maxlen=history_limit)
        self._first_recorded: Optional[datetime] = None

    @property
    def history_limit(self) -> int:
        return self._history.maxlen

    # ========== 运行状态 ==========

    def start_task(self, task_type: TaskType, context: TaskContext) -> TaskRun:
        """
        占用任务类型的运行标记

        Raises:
            TaskAlreadyRunningException: 同类型任务正在运行
        """
        if task_type in self._running:
            raise TaskAlreadyRunningException(task_type)

        run = TaskRun(task_type=task_type, context=context)
        self._running[task_type] = run
        self._progress[task_type] = TaskProgress(
            task_type=task_type,
            status=TaskStatus.RUNNING,
            current_step="starting",
            start_time=run.started_at,
        )
        return run

    def finish_task(self, run: TaskRun) -> bool:
        """
        释放运行标记

        已被取消并有新运行占用同一类型时不做任何事
        """
        if self._running.get(run.task_type) is not run:
            return False
        del self._running[run.task_type]
        self._progress.pop(run.task_type, None)
        return True

    def cancel_task(self, task_type: TaskType) -> Optional[TaskRun]:
        """标记取消并释放运行标记，返回被取消的运行"""
        run = self._running.pop(task_type, None)
        if run is None:
            return None

        progress = self._progress.pop(task_type, None)
        if progress is not None:
            progress.status = TaskStatus.CANCELLED
        run.context.cancel()
        logger.info(f"[{task_type}] Cancellation requested")
        return run

    def update_progress(
        self,
        task_type: TaskType,
        step: str,
        items_processed: int,
        estimated_total: Optional[int] = None,
    ) -> Optional[TaskProgress]:
        progress = self._progress.get(task_type)
        if progress is None:
            return None

        progress.current_step = step
        progress.items_processed = items_processed
        if estimated_total is not None:
            progress.estimated_total = estimated_total
        if progress.estimated_total:
            progress.progress = min(100.0, items_processed * 100.0 / progress.estimated_total)
        return progress

    def is_running(self, task_type: TaskType) -> bool:
        return task_type in self._running

    def get_running_tasks(self) -> List[TaskType]:
        return list(self._running)

    def get_task_progress(self, task_type: TaskType) -> Optional[TaskProgress]:
        return self._progress.get(task_type)

    def get_all_task_progress(self) -> List[TaskProgress]:
        return list(self._progress.values())

    # ========== 历史 ==========

    def record_result(self, result: CleanupResult) -> None:
        if self._first_recorded is None:
            self._first_recorded = result.start_time
        self._history.append(result)

    def get_task_history(
        self, limit: Optional[int] = None, task_type: Optional[TaskType] = None
    ) -> List[CleanupResult]:
        """按时间顺序返回历史（limit 取最近的 N 条）"""
        results = [r for r in self._history if task_type is None or r.task_type == task_type]
        if limit is not None:
            results = results[-limit:] if limit > 0 else []
        return results

    def clear_history(self) -> None:
        self._history.clear()
        self._first_recorded = None
        logger.info("Task history cleared")

    # ========== 统计 ==========

    def get_success_rate(self, task_type: Optional[TaskType] = None) -> float:
        """成功率（百分比）；没有历史时为 0"""
        results = self.get_task_history(task_type=task_type)
        if not results:
            return 0.0
        successful = sum(1 for r in results if r.status == TaskStatus.COMPLETED)
        return successful * 100.0 / len(results)

    def get_average_duration(self, task_type: Optional[TaskType] = None) -> float:
        """平均耗时（毫秒）"""
        results = self.get_task_history(task_type=task_type)
        if not results:
            return 0.0
        return sum(r.duration_ms for r in results) / len(results)

    def get_recent_errors(self, limit: int = 10) -> List[TaskError]:
        """最近失败任务的错误（新的在前）"""
        errors: List[TaskError] = []
        for result in reversed(self._history):
            if result.status != TaskStatus.FAILED:
                continue
            for error in result.stats.errors:
                errors.append(TaskError(result.task_type, result.end_time, error))
                if len(errors) >= limit:
                    return errors
        return errors

    def get_failed_tasks_for_retry(self, lookback_hours: float = 24) -> List[TaskType]:
        """窗口内最近一次执行失败的任务类型"""
        since = utcnow() - timedelta(hours=lookback_hours)
        latest: Dict[TaskType, CleanupResult] = {}
        for result in self._history:
            if result.end_time >= since:
                latest[result.task_type] = result
        return [t for t, r in latest.items() if r.status == TaskStatus.FAILED]

    def get_stats(self) -> TaskStatsSnapshot:
        results = list(self._history)
        frequency = Counter(r.task_type for r in results)
        return TaskStatsSnapshot(
            total_executed=len(results),
            success_rate=self.get_success_rate(),
            average_duration_ms=self.get_average_duration(),
            total_items_cleaned=sum(r.stats.cleaned_count for r in results),
            total_bytes_freed=sum(r.stats.bytes_freed for r in results),
            most_frequent_task=frequency.most_common(1)[0][0] if frequency else None,
            last_execution_time=results[-1].end_time if results else None,
            uptime_ms=age_ms(self._first_recorded) if self._first_recorded else 0,
        )
