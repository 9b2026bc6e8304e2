"""
清理任务类型定义
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from core.utils.time_utils import utcnow


class TaskType(str, Enum):
    """清理任务类型（统一的任务分类）"""

    # 对象存储
    ORPHAN_FILES = "orphan_files"
    TEMP_FILES = "temp_files"
    INCOMPLETE_UPLOADS = "incomplete_uploads"
    STORAGE_CLEANUP = "storage_cleanup"

    # 关系数据库
    EXPIRED_TRANSACTIONS = "expired_transactions"
    FAILED_COMPENSATIONS = "failed_compensations"
    LOG_TABLE_CLEANUP = "log_table_cleanup"
    DATABASE_CLEANUP = "database_cleanup"
    DATABASE_OPTIMIZATION = "database_optimization"

    # 缓存
    CACHE_CLEANUP = "cache_cleanup"
    SESSION_CLEANUP = "session_cleanup"
    THUMBNAIL_CACHE = "thumbnail_cache"

    # 日志文件
    LOG_CLEANUP = "log_cleanup"
    LOG_COMPRESSION = "log_compression"
    LOG_ARCHIVE = "log_archive"

    def __str__(self) -> str:
        return self.value


class ResourceDomain(str, Enum):
    """任务所属的资源域"""

    FILE = "file"
    DATABASE = "database"
    CACHE = "cache"
    LOG = "log"


TASK_DOMAINS: Dict[TaskType, ResourceDomain] = {
    TaskType.ORPHAN_FILES: ResourceDomain.FILE,
    TaskType.TEMP_FILES: ResourceDomain.FILE,
    TaskType.INCOMPLETE_UPLOADS: ResourceDomain.FILE,
    TaskType.STORAGE_CLEANUP: ResourceDomain.FILE,
    TaskType.EXPIRED_TRANSACTIONS: ResourceDomain.DATABASE,
    TaskType.FAILED_COMPENSATIONS: ResourceDomain.DATABASE,
    TaskType.LOG_TABLE_CLEANUP: ResourceDomain.DATABASE,
    TaskType.DATABASE_CLEANUP: ResourceDomain.DATABASE,
    TaskType.DATABASE_OPTIMIZATION: ResourceDomain.DATABASE,
    TaskType.CACHE_CLEANUP: ResourceDomain.CACHE,
    TaskType.SESSION_CLEANUP: ResourceDomain.CACHE,
    TaskType.THUMBNAIL_CACHE: ResourceDomain.CACHE,
    TaskType.LOG_CLEANUP: ResourceDomain.LOG,
    TaskType.LOG_COMPRESSION: ResourceDomain.LOG,
    TaskType.LOG_ARCHIVE: ResourceDomain.LOG,
}


class TaskStatus(str, Enum):
    """任务执行状态"""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class CleanupOptions(BaseModel):
    """
    调用时传入的执行选项

    所有字段均可为空，为空时使用任务配置中的默认值
    """

    model_config = ConfigDict(extra="forbid")

    retention_days: Optional[float] = Field(default=None, ge=0)
    batch_size: Optional[int] = Field(default=None, ge=1)
    dry_run: Optional[bool] = None
    tables: Optional[List[str]] = None
    patterns: Optional[List[str]] = None
    max_age: Optional[float] = Field(default=None, ge=0, description="最大存活时间（秒）")
    preserve_active: Optional[bool] = None
    compress_old: Optional[bool] = None
    archive_path: Optional[str] = None
    include_protected: Optional[bool] = None
    log_levels: Optional[List[str]] = None

    def merged_over(self, defaults: "CleanupOptions") -> "CleanupOptions":
        """以 defaults 为底，叠加本次调用显式给出的值（调用值优先）"""
        merged = defaults.model_dump(exclude_none=True)
        merged.update(self.model_dump(exclude_none=True))
        return CleanupOptions(**merged)


@dataclass(frozen=True)
class CleanupStats:
    """一次执行的统计结果（不可变）"""

    processed_count: int = 0
    cleaned_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    bytes_freed: int = 0
    execution_time_ms: int = 0
    errors: Tuple[str, ...] = ()

    @classmethod
    def failure(cls, error: str, execution_time_ms: int = 0) -> "CleanupStats":
        """任务级失败：计数清零，只记录一条错误"""
        return cls(failed_count=1, execution_time_ms=execution_time_ms, errors=(error,))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed_count": self.processed_count,
            "cleaned_count": self.cleaned_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "bytes_freed": self.bytes_freed,
            "execution_time_ms": self.execution_time_ms,
            "errors": list(self.errors),
        }


@dataclass
class StatsAccumulator:
    """处理过程中累积计数，结束时生成 CleanupStats"""

    processed_count: int = 0
    cleaned_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    bytes_freed: int = 0
    errors: List[str] = field(default_factory=list)

    def record_failure(self, error: str) -> None:
        self.failed_count += 1
        self.errors.append(error)

    def merge(self, other: CleanupStats) -> None:
        """合并另一段操作的统计（组合任务使用）"""
        self.processed_count += other.processed_count
        self.cleaned_count += other.cleaned_count
        self.failed_count += other.failed_count
        self.skipped_count += other.skipped_count
        self.bytes_freed += other.bytes_freed
        self.errors.extend(other.errors)

    def build(self, execution_time_ms: int) -> CleanupStats:
        return CleanupStats(
            processed_count=self.processed_count,
            cleaned_count=self.cleaned_count,
            failed_count=self.failed_count,
            skipped_count=self.skipped_count,
            bytes_freed=self.bytes_freed,
            execution_time_ms=execution_time_ms,
            errors=tuple(self.errors),
        )


@dataclass(frozen=True)
class CleanupResult:
    """清理结果（统计 + 状态 + 时间戳）"""

    task_type: TaskType
    status: TaskStatus
    stats: CleanupStats
    start_time: datetime
    end_time: datetime
    duration_ms: int
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_type": self.task_type.value,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_ms": self.duration_ms,
            "dry_run": self.dry_run,
            **self.stats.to_dict(),
        }


@dataclass
class TaskProgress:
    """正在执行的任务的实时进度"""

    task_type: TaskType
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0  # 0-100
    current_step: str = ""
    items_processed: int = 0
    estimated_total: Optional[int] = None
    start_time: datetime = field(default_factory=utcnow)


@dataclass
class OrphanFileInfo:
    """孤儿文件信息（扫描时产生，不持久化）"""

    key: str
    size: int
    last_modified: datetime
    is_protected: bool = False
    retention_expiry: Optional[datetime] = None


@dataclass(frozen=True)
class ImpactEstimate:
    """执行前的影响预估"""

    task_type: TaskType
    items: int
    bytes: int
    duration_ms: int
    heuristic: bool = False  # True 表示采用静态经验值
