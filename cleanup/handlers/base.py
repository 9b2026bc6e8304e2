"""
清理 handler 基类
"""

import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict

from core.exceptions import UnsupportedTaskException
from core.utils.logger import get_task_logger

from ..context import TaskContext
from ..types import CleanupStats, StatsAccumulator, TaskType
from .metadata import HandlerMetadata

Operation = Callable[[TaskContext], Awaitable[StatsAccumulator]]


class BaseCleanupHandler(ABC):
    """
    清理 handler 基类

    特性：
    - 元数据支持（装饰器）
    - 模板方法（统一执行流程）

    每个 handler 负责一个资源域，通过 operations() 声明它处理的任务类型
    """

    @property
    def metadata(self) -> HandlerMetadata:
        """获取 handler 元数据"""
        return self.__class__._metadata

    @property
    @abstractmethod
    def name(self) -> str:
        """handler 名称"""
        pass

    @abstractmethod
    def operations(self) -> Dict[TaskType, Operation]:
        """任务类型 -> 具体清理操作"""
        pass

    async def execute(self, context: TaskContext) -> CleanupStats:
        """
        执行清理（模板方法）

        统一处理：
        - 操作分派
        - 计时
        - 汇总日志

        单项失败由具体操作计入统计；操作本身抛出的异常记录日志后
        继续向上抛出，由执行器转换为失败结果

        Args:
            context: 任务上下文

        Returns:
            清理统计
        """
        operation = self.operations().get(context.task_type)
        if operation is None:
            raise UnsupportedTaskException(context.task_type)

        task_logger = get_task_logger(context.task_type.value)
        start_time = time.monotonic()
        try:
            accumulator = await operation(context)
        except Exception as e:
            task_logger.error(f"{self.name} failed: {e}")
            raise

        stats = accumulator.build(int((time.monotonic() - start_time) * 1000))

        mode = " (dry-run)" if context.dry_run else ""
        task_logger.info(
            f"{self.name}{mode}: processed={stats.processed_count} "
            f"cleaned={stats.cleaned_count} failed={stats.failed_count} "
            f"skipped={stats.skipped_count}"
        )
        return stats
