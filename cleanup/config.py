"""
清理任务配置管理

- TaskConfig: 单个任务类型的运行策略
- CleanupConfig: 全局 + 存储 + 数据库 + 全部任务配置
- ConfigManager: 持有、校验、修改配置；导入失败时保留原配置
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.config import Settings
from core.exceptions import InvalidConfigException
from core.models import LOG_TABLES
from core.utils.validators import validate_cron_expression

from .types import CleanupOptions, TaskType


class TaskConfig(BaseModel):
    """单个任务类型的运行策略"""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    priority: int = 5  # 数字越小越优先
    schedule: Optional[str] = None  # 5 段 cron，仅作调度提示
    max_retries: int = 3
    timeout: Optional[float] = None  # 秒，未设置时使用 general.default_timeout
    retention_days: float = 7
    batch_size: int = 100
    dry_run: bool = False
    description: str = ""
    options: CleanupOptions = Field(default_factory=CleanupOptions)

    def default_options(self) -> CleanupOptions:
        """任务级默认执行选项（保留期、批大小、dry-run 覆盖 options 中的同名值）"""
        base = self.options.model_dump(exclude_none=True)
        base.update(
            retention_days=self.retention_days,
            batch_size=self.batch_size,
            dry_run=self.dry_run,
        )
        return CleanupOptions(**base)


def _task(**kwargs) -> TaskConfig:
    return TaskConfig(**kwargs)


DEFAULT_TASK_CONFIGS: Dict[TaskType, TaskConfig] = {
    TaskType.ORPHAN_FILES: _task(
        priority=2,
        schedule="0 2 * * *",
        timeout=1800,
        retention_days=7,
        batch_size=100,
        description="删除对象存储中无数据库引用的文件",
    ),
    TaskType.TEMP_FILES: _task(
        priority=3,
        schedule="0 */6 * * *",
        timeout=900,
        retention_days=1,
        batch_size=200,
        description="清理临时目录中的过期对象",
        options=CleanupOptions(patterns=["temp/", "thumbnails/", "processing/", "cache/"]),
    ),
    TaskType.INCOMPLETE_UPLOADS: _task(
        priority=3,
        schedule="0 */12 * * *",
        timeout=600,
        retention_days=1,
        description="中止超过 24 小时的分片上传",
    ),
    TaskType.STORAGE_CLEANUP: _task(
        priority=4,
        schedule="0 4 * * sun",
        timeout=1800,
        retention_days=1,
        batch_size=200,
        description="临时对象与未完成分片上传的综合清理",
    ),
    TaskType.EXPIRED_TRANSACTIONS: _task(
        priority=1,
        schedule="*/30 * * * *",
        timeout=600,
        retention_days=1,
        batch_size=100,
        description="清理过期且未完成的上传事务",
    ),
    TaskType.FAILED_COMPENSATIONS: _task(
        priority=1,
        schedule="0 * * * *",
        max_retries=3,
        timeout=600,
        batch_size=50,
        description="重试失败的补偿操作",
    ),
    TaskType.LOG_TABLE_CLEANUP: _task(
        priority=4,
        schedule="0 3 * * *",
        timeout=1800,
        retention_days=30,
        batch_size=1000,
        description="按保留期删除日志类表中的旧记录",
        options=CleanupOptions(tables=list(LOG_TABLES)),
    ),
    TaskType.DATABASE_CLEANUP: _task(
        priority=4,
        schedule="0 5 * * sun",
        timeout=1800,
        retention_days=1,
        batch_size=100,
        description="删除无媒体的内容记录和无父记录的媒体记录",
    ),
    TaskType.DATABASE_OPTIMIZATION: _task(
        priority=9,
        schedule="0 4 * * sun",
        timeout=3600,
        description="数据库表维护（ANALYZE / OPTIMIZE）",
    ),
    TaskType.CACHE_CLEANUP: _task(
        priority=5,
        schedule="0 * * * *",
        batch_size=500,
        description="清理过期缓存键",
        options=CleanupOptions(patterns=["cache:*", "temp:*"]),
    ),
    TaskType.SESSION_CLEANUP: _task(
        priority=5,
        schedule="0 */6 * * *",
        batch_size=500,
        description="清理过期会话",
        options=CleanupOptions(max_age=24 * 3600, preserve_active=True),
    ),
    TaskType.THUMBNAIL_CACHE: _task(
        priority=6,
        schedule="0 3 * * *",
        batch_size=500,
        description="清理过期缩略图缓存",
        options=CleanupOptions(max_age=7 * 24 * 3600),
    ),
    TaskType.LOG_CLEANUP: _task(
        priority=6,
        schedule="0 1 * * *",
        timeout=600,
        retention_days=30,
        description="删除过期日志文件",
    ),
    TaskType.LOG_COMPRESSION: _task(
        enabled=False,
        priority=7,
        schedule="0 2 * * *",
        timeout=1800,
        retention_days=7,
        description="压缩旧日志文件",
    ),
    TaskType.LOG_ARCHIVE: _task(
        enabled=False,
        priority=8,
        schedule="0 3 1 * *",
        timeout=1800,
        retention_days=90,
        description="归档旧日志文件",
        options=CleanupOptions(compress_old=True),
    ),
}


def default_task_configs() -> Dict[TaskType, TaskConfig]:
    return {task_type: cfg.model_copy(deep=True) for task_type, cfg in DEFAULT_TASK_CONFIGS.items()}


class GeneralConfig(BaseModel):
    """全局运行参数"""

    max_concurrent_tasks: int = 3
    default_timeout: float = 300
    retry_delay: float = 3600  # 补偿操作重试冷却（秒）
    history_limit: int = 1000
    log_level: str = "INFO"
    log_directory: str = "./logs"
    archive_directory: str = "./logs/archive"


class StorageConfig(BaseModel):
    """对象存储连接参数"""

    endpoint: str = ""
    region: str = "auto"
    bucket: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""


class DatabaseConfig(BaseModel):
    """持久化存储连接参数"""

    url: str = ""


class CleanupConfig(BaseModel):
    """完整配置"""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    tasks: Dict[TaskType, TaskConfig] = Field(default_factory=default_task_configs)

    @field_validator("tasks")
    @classmethod
    def fill_missing_tasks(cls, v: Dict[TaskType, TaskConfig]) -> Dict[TaskType, TaskConfig]:
        """未出现的任务类型使用默认配置，保证每个类型都有配置"""
        defaults = default_task_configs()
        defaults.update(v)
        return defaults

    @classmethod
    def from_settings(cls, settings: Settings) -> "CleanupConfig":
        """从环境配置构建初始配置"""
        return cls(
            general=GeneralConfig(
                max_concurrent_tasks=settings.MAX_CONCURRENT_TASKS,
                default_timeout=settings.DEFAULT_TIMEOUT,
                retry_delay=settings.RETRY_DELAY,
                history_limit=settings.HISTORY_LIMIT,
                log_level=settings.LOG_LEVEL,
                log_directory=settings.LOG_DIRECTORY,
                archive_directory=settings.LOG_ARCHIVE_DIRECTORY,
            ),
            storage=StorageConfig(
                endpoint=settings.STORAGE_ENDPOINT,
                region=settings.STORAGE_REGION,
                bucket=settings.STORAGE_BUCKET,
                access_key_id=settings.STORAGE_ACCESS_KEY_ID,
                secret_access_key=settings.STORAGE_SECRET_ACCESS_KEY,
            ),
            database=DatabaseConfig(url=settings.get_database_url()),
        )


@dataclass
class ValidationResult:
    """配置校验结果"""

    valid: bool
    errors: List[str] = field(default_factory=list)


def _deep_merge(base: Dict[str, Any], partial: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in partial.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _pydantic_errors(error: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(p) for p in item['loc'])}: {item['msg']}"
        for item in error.errors()
    ]


def collect_config_errors(config: CleanupConfig) -> List[str]:
    """
    按规则检查配置，返回全部错误（空列表表示通过）
    """
    errors: List[str] = []

    if config.general.max_concurrent_tasks <= 0:
        errors.append("general.max_concurrent_tasks must be greater than 0")
    if config.general.default_timeout <= 0:
        errors.append("general.default_timeout must be greater than 0")
    if config.general.retry_delay < 0:
        errors.append("general.retry_delay must not be negative")
    if config.general.history_limit <= 0:
        errors.append("general.history_limit must be greater than 0")

    storage = config.storage
    for name in ("endpoint", "bucket", "access_key_id", "secret_access_key"):
        if not getattr(storage, name).strip():
            errors.append(f"storage.{name} is required")

    if not config.database.url.strip():
        errors.append("database.url is required")

    for task_type, task in config.tasks.items():
        prefix = f"tasks.{task_type.value}"
        if task.timeout is not None and task.timeout <= 0:
            errors.append(f"{prefix}.timeout must be greater than 0")
        if task.max_retries < 0:
            errors.append(f"{prefix}.max_retries must not be negative")
        if task.batch_size <= 0:
            errors.append(f"{prefix}.batch_size must be greater than 0")
        if task.retention_days < 0:
            errors.append(f"{prefix}.retention_days must not be negative")
        if task.schedule is not None:
            schedule_error = validate_cron_expression(task.schedule)
            if schedule_error:
                errors.append(f"{prefix}.schedule: {schedule_error}")

    return errors


class ConfigManager:
    """
    配置管理器

    所有修改先在副本上完成并校验，通过后才替换当前配置
    """

    def __init__(self, config: Optional[CleanupConfig] = None):
        self._config = config.model_copy(deep=True) if config else CleanupConfig()
        self._initial = self._config.model_copy(deep=True)

    # ========== 读取 ==========

    def get_config(self) -> CleanupConfig:
        """返回当前配置的副本"""
        return self._config.model_copy(deep=True)

    def get_task_config(self, task_type: TaskType) -> TaskConfig:
        return self._config.tasks[TaskType(task_type)].model_copy(deep=True)

    def get_task_timeout(self, task_type: TaskType) -> float:
        """任务超时（秒），任务未单独设置时取 general.default_timeout"""
        timeout = self._config.tasks[TaskType(task_type)].timeout
        return timeout if timeout is not None else self._config.general.default_timeout

    def get_enabled_tasks(self) -> List[TaskType]:
        """已启用的任务类型（按优先级排序）"""
        enabled = [t for t, cfg in self._config.tasks.items() if cfg.enabled]
        return sorted(enabled, key=lambda t: self._config.tasks[t].priority)

    def is_enabled(self, task_type: TaskType) -> bool:
        return self._config.tasks[TaskType(task_type)].enabled

    @property
    def max_concurrent_tasks(self) -> int:
        return self._config.general.max_concurrent_tasks

    # ========== 修改 ==========

    def update_config(self, partial: Dict[str, Any]) -> CleanupConfig:
        """
        合并部分配置

        Raises:
            InvalidConfigException: 合并后的配置无效（当前配置不变）
        """
        merged = _deep_merge(self._config.model_dump(mode="json"), partial)
        self._commit(self._parse(merged))
        logger.info(f"Config updated: {sorted(partial)}")
        return self.get_config()

    def update_task_config(self, task_type: TaskType, partial: Dict[str, Any]) -> TaskConfig:
        """
        合并单个任务的部分配置

        Raises:
            InvalidConfigException: 合并后的配置无效（当前配置不变）
        """
        task_type = TaskType(task_type)
        self.update_config({"tasks": {task_type.value: partial}})
        return self.get_task_config(task_type)

    def enable_task(self, task_type: TaskType) -> None:
        self.update_task_config(task_type, {"enabled": True})
        logger.info(f"✓ Task enabled: {task_type}")

    def disable_task(self, task_type: TaskType) -> None:
        self.update_task_config(task_type, {"enabled": False})
        logger.info(f"Task disabled: {task_type}")

    def reset_to_defaults(self) -> CleanupConfig:
        """恢复为启动时的配置"""
        self._config = self._initial.model_copy(deep=True)
        logger.info("Config reset to defaults")
        return self.get_config()

    # ========== 校验 ==========

    def validate_config(self, config: Optional[CleanupConfig] = None) -> ValidationResult:
        errors = collect_config_errors(config or self._config)
        return ValidationResult(valid=not errors, errors=errors)

    # ========== 导入导出 ==========

    def export_config(self) -> str:
        """导出为 JSON 文本"""
        return json.dumps(self._config.model_dump(mode="json"), indent=2, ensure_ascii=False)

    def import_config(self, text: str) -> ValidationResult:
        """
        导入 JSON 配置文本

        校验失败时保留当前配置并返回错误列表，不会部分生效
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Config import rejected: invalid JSON ({e})")
            return ValidationResult(valid=False, errors=[f"invalid JSON: {e}"])

        return self._import_data(data)

    def load_config_file(self, path: Union[str, Path]) -> ValidationResult:
        """
        从 YAML/JSON 文件导入配置

        Args:
            path: 配置文件路径（.yaml / .yml / .json）
        """
        path = Path(path)
        try:
            data = load_config_file(path)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load config from {path}: {e}")
            return ValidationResult(valid=False, errors=[f"cannot read {path}: {e}"])

        if not isinstance(data, dict):
            return ValidationResult(valid=False, errors=[f"{path}: config root must be a mapping"])

        # 文件只需给出与当前配置不同的部分
        result = self._import_data(_deep_merge(self._config.model_dump(mode="json"), data))
        if result.valid:
            logger.info(f"✓ Config loaded from {path}")
        return result

    def _import_data(self, data: Any) -> ValidationResult:
        if not isinstance(data, dict):
            return ValidationResult(valid=False, errors=["config root must be a mapping"])

        try:
            candidate = CleanupConfig.model_validate(data)
        except ValidationError as e:
            errors = _pydantic_errors(e)
            logger.error(f"Config import rejected: {errors}")
            return ValidationResult(valid=False, errors=errors)

        result = self.validate_config(candidate)
        if not result.valid:
            logger.error(f"Config import rejected: {result.errors}")
            return result

        self._config = candidate
        logger.info("Config imported")
        return result

    def _parse(self, data: Dict[str, Any]) -> CleanupConfig:
        try:
            return CleanupConfig.model_validate(data)
        except ValidationError as e:
            raise InvalidConfigException(_pydantic_errors(e)) from e

    def _commit(self, candidate: CleanupConfig) -> None:
        errors = collect_config_errors(candidate)
        if errors:
            raise InvalidConfigException(errors)
        self._config = candidate


def load_config_file(path: Path) -> Dict[str, Any]:
    """
    读取配置文件内容

    Args:
        path: 配置文件路径

    Returns:
        配置字典（空文件返回空字典）
    """
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f) or {}
