"""
清理任务编排引擎

对象存储、关系数据库、缓存、日志文件四个资源域的定期清理
"""

from .config import CleanupConfig, ConfigManager, TaskConfig, ValidationResult
from .executor import TaskExecutor
from .manager import TaskManager
from .observers import LoggingObserver, MetricsObserver, TaskObserver
from .reporter import CleanupReport, CleanupReporter, ReportPeriod
from .types import (
    CleanupOptions,
    CleanupResult,
    CleanupStats,
    ImpactEstimate,
    OrphanFileInfo,
    TaskProgress,
    TaskStatus,
    TaskType,
)

__all__ = [
    "CleanupConfig",
    "ConfigManager",
    "TaskConfig",
    "ValidationResult",
    "TaskExecutor",
    "TaskManager",
    "TaskObserver",
    "LoggingObserver",
    "MetricsObserver",
    "CleanupReport",
    "CleanupReporter",
    "ReportPeriod",
    "CleanupOptions",
    "CleanupResult",
    "CleanupStats",
    "ImpactEstimate",
    "OrphanFileInfo",
    "TaskProgress",
    "TaskStatus",
    "TaskType",
]
