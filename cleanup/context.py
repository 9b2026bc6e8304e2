"""
任务执行上下文

handler 通过上下文读取执行选项、检查取消标记、上报进度
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence, TypeVar

from .types import CleanupOptions, TaskType

T = TypeVar("T")

ProgressCallback = Callable[[TaskType, str, int, Optional[int]], None]


@dataclass
class TaskContext:
    """一次任务执行的上下文"""

    task_type: TaskType
    options: CleanupOptions
    max_retries: int = 3
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    on_progress: Optional[ProgressCallback] = None

    @property
    def dry_run(self) -> bool:
        return bool(self.options.dry_run)

    def is_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def report_progress(
        self, step: str, items_processed: int, estimated_total: Optional[int] = None
    ) -> None:
        """上报进度"""
        if self.on_progress is None:
            return
        self.on_progress(self.task_type, step, items_processed, estimated_total)


def iter_batches(items: Sequence[T], batch_size: int, context: TaskContext) -> Iterator[List[T]]:
    """
    按批次切分待处理项

    每个批次开始前检查取消标记，已取消则停止产出
    """
    batch_size = max(1, batch_size)
    for start in range(0, len(items), batch_size):
        if context.is_cancelled():
            return
        yield list(items[start:start + batch_size])
