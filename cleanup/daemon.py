"""
Cleanup Daemon - 定时触发器

编排器本身不做调度；守护进程按每个启用任务的 schedule
（5 段 cron）定时调用 execute_task
"""

import asyncio
from datetime import timezone
from typing import List

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from core.exceptions import CleanupTaskException
from core.utils.time_utils import format_bytes

from .factory import Orchestrator
from .types import TaskType


class CleanupDaemon:
    """定时清理守护进程"""

    def __init__(self, orchestrator: Orchestrator, stats_interval_minutes: int = 60):
        """
        Args:
            orchestrator: 组装好的编排器
            stats_interval_minutes: 统计输出间隔（分钟）
        """
        self.orchestrator = orchestrator
        self.stats_interval_minutes = stats_interval_minutes
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._stop_event = asyncio.Event()

    def register_jobs(self) -> List[TaskType]:
        """为每个带 schedule 的启用任务注册一个 cron 作业"""
        config_manager = self.orchestrator.config_manager
        registered = []

        for task_type in config_manager.get_enabled_tasks():
            schedule = config_manager.get_task_config(task_type).schedule
            if not schedule:
                continue
            try:
                trigger = CronTrigger.from_crontab(schedule, timezone=timezone.utc)
            except ValueError as e:
                logger.error(f"[{task_type}] Invalid schedule '{schedule}', not registered: {e}")
                continue

            self._scheduler.add_job(
                self._run_task,
                trigger=trigger,
                args=[task_type],
                id=f"cleanup_{task_type.value}",
                name=f"cleanup {task_type.value}",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            registered.append(task_type)
            logger.info(f"✓ Scheduled {task_type}: {schedule}")

        self._scheduler.add_job(
            self._log_stats,
            trigger="interval",
            minutes=self.stats_interval_minutes,
            id="cleanup_stats",
            replace_existing=True,
        )
        return registered

    async def _run_task(self, task_type: TaskType) -> None:
        try:
            await self.orchestrator.executor.execute_task(task_type)
        except CleanupTaskException as e:
            logger.warning(f"[{task_type}] Scheduled run skipped: {e}")

    def _log_stats(self) -> None:
        """输出统计信息"""
        stats = self.orchestrator.task_manager.get_stats()
        logger.info(
            f"📊 Cleanup: {stats.total_executed} runs, {stats.success_rate:.1f}% success, "
            f"freed {format_bytes(stats.total_bytes_freed)}"
        )

    async def run(self) -> None:
        """启动调度并等待 stop()"""
        self.register_jobs()
        self._scheduler.start()
        logger.info("Cleanup daemon started")

        await self._stop_event.wait()

        self._scheduler.shutdown(wait=False)
        logger.info("Cleanup daemon stopped")

    def stop(self) -> None:
        """停止守护进程"""
        self._stop_event.set()
