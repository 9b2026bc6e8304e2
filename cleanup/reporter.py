"""
清理报告

按时间窗口汇总历史结果，给出建议和趋势
"""

import csv
import io
import json
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from core.utils.time_utils import MS_PER_SECOND, ensure_utc, format_bytes, utcnow

from .config import ConfigManager
from .manager import TaskManager
from .types import CleanupResult, TaskStatus, TaskType

GB = 1024 ** 3
MB = 1024 ** 2

FAILURE_RATE_THRESHOLD = 10.0  # 百分比
SLOW_DURATION_MS = 5 * 60 * MS_PER_SECOND
EFFECTIVE_FREED_BYTES = GB
LOW_YIELD_FREED_BYTES = 100 * MB
DOMINANT_SHARE = 0.5

SUCCESS_RATE_TOLERANCE = 5.0  # 百分点
RELATIVE_TOLERANCE = 0.10

IMPROVED = "improved"
DECLINED = "declined"
STABLE = "stable"


@dataclass(frozen=True)
class ReportPeriod:
    start: datetime
    end: datetime

    @classmethod
    def last(cls, hours: float = 24, now: Optional[datetime] = None) -> "ReportPeriod":
        end = now or utcnow()
        return cls(start=end - timedelta(hours=hours), end=end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def split(self) -> Tuple["ReportPeriod", "ReportPeriod"]:
        """(较早的一半, 较近的一半)"""
        middle = self.start + (self.end - self.start) / 2
        return ReportPeriod(self.start, middle), ReportPeriod(middle, self.end)


@dataclass
class ReportSummary:
    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    cancelled_tasks: int = 0
    items_processed: int = 0
    items_deleted: int = 0
    bytes_freed: int = 0
    total_duration_ms: int = 0

    @property
    def failure_rate(self) -> float:
        return self.failed_tasks * 100.0 / self.total_tasks if self.total_tasks else 0.0

    @property
    def average_duration_ms(self) -> float:
        return self.total_duration_ms / self.total_tasks if self.total_tasks else 0.0


@dataclass(frozen=True)
class Recommendation:
    kind: str
    message: str
    task_type: Optional[TaskType] = None


@dataclass(frozen=True)
class ScheduledTask:
    task_type: TaskType
    schedule: str
    next_run: Optional[datetime]


@dataclass
class CleanupReport:
    period: ReportPeriod
    summary: ReportSummary
    task_breakdown: Dict[TaskType, ReportSummary] = field(default_factory=dict)
    recommendations: List[Recommendation] = field(default_factory=list)
    next_scheduled_tasks: List[ScheduledTask] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TrendAnalysis:
    execution: str
    performance: str
    effectiveness: str


@dataclass
class TaskTypeReport:
    task_type: TaskType
    period: ReportPeriod
    summary: ReportSummary
    success_rate: float
    trends: TrendAnalysis
    recent_errors: List[str] = field(default_factory=list)


def summarize(results: List[CleanupResult]) -> ReportSummary:
    summary = ReportSummary()
    for result in results:
        summary.total_tasks += 1
        if result.status == TaskStatus.COMPLETED:
            summary.successful_tasks += 1
        elif result.status == TaskStatus.FAILED:
            summary.failed_tasks += 1
        else:
            summary.cancelled_tasks += 1
        summary.items_processed += result.stats.processed_count
        summary.items_deleted += result.stats.cleaned_count
        summary.bytes_freed += result.stats.bytes_freed
        summary.total_duration_ms += result.duration_ms
    return summary


def _relative_trend(older: float, recent: float, lower_is_better: bool = False) -> str:
    if older == 0:
        if recent == 0:
            return STABLE
        change = 1.0
    else:
        change = (recent - older) / older
    if abs(change) <= RELATIVE_TOLERANCE:
        return STABLE
    better = change < 0 if lower_is_better else change > 0
    return IMPROVED if better else DECLINED


class CleanupReporter:
    """清理报告生成器"""

    def __init__(self, task_manager: TaskManager, config_manager: ConfigManager):
        self.task_manager = task_manager
        self.config_manager = config_manager

    def _results_in(self, period: ReportPeriod, task_type: Optional[TaskType] = None) -> List[CleanupResult]:
        return [
            r for r in self.task_manager.get_task_history(task_type=task_type)
            if period.contains(r.start_time)
        ]

    # ========== 汇总报告 ==========

    def generate_report(self, period: Optional[ReportPeriod] = None) -> CleanupReport:
        """
        生成时间窗口内的汇总报告（默认最近 24 小时）
        """
        period = period or ReportPeriod.last(24)
        results = self._results_in(period)

        by_type: Dict[TaskType, List[CleanupResult]] = {}
        for result in results:
            by_type.setdefault(result.task_type, []).append(result)

        summary = summarize(results)
        report = CleanupReport(
            period=period,
            summary=summary,
            task_breakdown={t: summarize(rs) for t, rs in by_type.items()},
            recommendations=self._recommendations(summary, results),
            next_scheduled_tasks=self.get_next_scheduled_tasks(period.end),
        )
        logger.info(
            f"📊 Report {period.start:%Y-%m-%d %H:%M} ~ {period.end:%Y-%m-%d %H:%M}: "
            f"{summary.successful_tasks}/{summary.total_tasks} succeeded, "
            f"freed {format_bytes(summary.bytes_freed)}"
        )
        return report

    def _recommendations(
        self, summary: ReportSummary, results: List[CleanupResult]
    ) -> List[Recommendation]:
        recommendations: List[Recommendation] = []
        if not summary.total_tasks:
            return recommendations

        if summary.failure_rate > FAILURE_RATE_THRESHOLD:
            recommendations.append(Recommendation(
                kind="high_failure_rate",
                message=f"任务失败率 {summary.failure_rate:.1f}% 过高，建议检查任务配置和资源状态",
            ))

        if summary.average_duration_ms > SLOW_DURATION_MS:
            recommendations.append(Recommendation(
                kind="slow_execution",
                message="平均执行时间超过 5 分钟，建议优化清理策略或减小批大小",
            ))

        if summary.bytes_freed > EFFECTIVE_FREED_BYTES:
            recommendations.append(Recommendation(
                kind="effective_cleanup",
                message=f"已释放 {format_bytes(summary.bytes_freed)}，清理效果良好，建议保持当前频率",
            ))
        elif 0 < summary.bytes_freed < LOW_YIELD_FREED_BYTES:
            recommendations.append(Recommendation(
                kind="low_yield",
                message=f"仅释放 {format_bytes(summary.bytes_freed)}，建议降低清理频率",
            ))

        if summary.total_tasks > 1:
            task_type, count = Counter(r.task_type for r in results).most_common(1)[0]
            if count / summary.total_tasks > DOMINANT_SHARE:
                recommendations.append(Recommendation(
                    kind="dominant_task",
                    message=f"{task_type} 占全部执行次数的 {count * 100 // summary.total_tasks}%，建议检查其调度频率",
                    task_type=task_type,
                ))

        return recommendations

    def get_next_scheduled_tasks(self, now: Optional[datetime] = None) -> List[ScheduledTask]:
        """根据启用任务的调度提示计算下次运行时间（UTC）"""
        now = ensure_utc(now or utcnow())
        scheduled: List[ScheduledTask] = []

        for task_type in self.config_manager.get_enabled_tasks():
            schedule = self.config_manager.get_task_config(task_type).schedule
            if not schedule:
                continue
            try:
                trigger = CronTrigger.from_crontab(schedule, timezone=timezone.utc)
                fire_time = trigger.get_next_fire_time(None, now)
            except ValueError as e:
                logger.warning(f"[{task_type}] Invalid schedule '{schedule}': {e}")
                fire_time = None
            next_run = ensure_utc(fire_time) if fire_time else None
            scheduled.append(ScheduledTask(task_type, schedule, next_run))

        return sorted(scheduled, key=lambda s: (s.next_run is None, s.next_run or now))

    # ========== 单任务报告 ==========

    def generate_task_type_report(
        self, task_type: TaskType, period: Optional[ReportPeriod] = None
    ) -> TaskTypeReport:
        """
        单个任务类型的报告

        把窗口分成前后两半比较：
        - execution: 成功率变化超过 5 个百分点
        - performance: 平均耗时变化超过 10%（越短越好）
        - effectiveness: 平均每次删除数变化超过 10%
        """
        task_type = TaskType(task_type)
        period = period or ReportPeriod.last(24 * 7)
        results = self._results_in(period, task_type)
        summary = summarize(results)

        older_period, recent_period = period.split()
        older = [r for r in results if r.start_time < older_period.end]
        recent = [r for r in results if r.start_time >= recent_period.start]

        errors = [e for r in results if r.status == TaskStatus.FAILED for e in r.stats.errors]
        return TaskTypeReport(
            task_type=task_type,
            period=period,
            summary=summary,
            success_rate=summary.successful_tasks * 100.0 / summary.total_tasks if summary.total_tasks else 0.0,
            trends=self._trends(older, recent),
            recent_errors=errors[-10:],
        )

    @staticmethod
    def _trends(older: List[CleanupResult], recent: List[CleanupResult]) -> TrendAnalysis:
        if not older or not recent:
            return TrendAnalysis(STABLE, STABLE, STABLE)

        old, new = summarize(older), summarize(recent)

        old_rate = old.successful_tasks * 100.0 / old.total_tasks
        new_rate = new.successful_tasks * 100.0 / new.total_tasks
        if new_rate - old_rate > SUCCESS_RATE_TOLERANCE:
            execution = IMPROVED
        elif old_rate - new_rate > SUCCESS_RATE_TOLERANCE:
            execution = DECLINED
        else:
            execution = STABLE

        performance = _relative_trend(
            old.average_duration_ms, new.average_duration_ms, lower_is_better=True
        )
        effectiveness = _relative_trend(
            old.items_deleted / old.total_tasks, new.items_deleted / new.total_tasks
        )
        return TrendAnalysis(execution, performance, effectiveness)

    # ========== 导出 ==========

    def export_history(self, fmt: str = "json", period: Optional[ReportPeriod] = None) -> str:
        """
        导出历史（每条结果一行）

        Args:
            fmt: "json"（默认）或 "csv"
        """
        results = self._results_in(period) if period else self.task_manager.get_task_history()
        rows = [r.to_dict() for r in results]

        if fmt == "json":
            return json.dumps(rows, ensure_ascii=False, indent=2, default=str)

        if fmt == "csv":
            output = io.StringIO()
            fieldnames = [
                "task_type", "status", "start_time", "end_time", "duration_ms", "dry_run",
                "processed_count", "cleaned_count", "failed_count", "skipped_count",
                "bytes_freed", "execution_time_ms", "errors",
            ]
            writer = csv.DictWriter(output, fieldnames=fieldnames)
            writer.writeheader()
            for row in rows:
                row["errors"] = "; ".join(row["errors"])
                writer.writerow(row)
            return output.getvalue()

        raise ValueError(f"unsupported export format: {fmt}")


def report_to_dict(report: Any) -> Dict[str, Any]:
    """报告转为可 JSON 序列化的字典"""
    return json.loads(json.dumps(asdict(report), ensure_ascii=False, default=str))
