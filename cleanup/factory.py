"""
编排器组装

显式构造所有组件并注入依赖（不使用全局单例编排器）
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from loguru import logger

from core.config import Settings, get_settings
from core.database import async_db
from core.exceptions import InvalidConfigException
from core.redis_client import RedisCacheBackend, redis_manager
from core.storage import S3StorageClient

from .config import CleanupConfig, ConfigManager
from .executor import TaskExecutor
from .handlers import (
    CacheCleanupHandler,
    DatabaseCleanupHandler,
    FileCleanupHandler,
    LogCleanupHandler,
    MemoryCache,
)
from .manager import TaskManager
from .observers import TaskObserver
from .reporter import CleanupReporter
from .repositories import (
    SqlCompensationRepository,
    SqlContentRepository,
    SqlLogTableRepository,
    SqlMaintenanceRepository,
    SqlMediaRepository,
    SqlOrphanFileRegistry,
    SqlProtectedFileRegistry,
    SqlTransactionRepository,
)


@dataclass
class Orchestrator:
    """组装好的清理编排器"""

    config_manager: ConfigManager
    task_manager: TaskManager
    executor: TaskExecutor
    reporter: CleanupReporter
    file_handler: FileCleanupHandler
    database_handler: DatabaseCleanupHandler
    cache_handler: CacheCleanupHandler
    log_handler: LogCleanupHandler

    async def close(self) -> None:
        """释放数据库和 Redis 连接"""
        await async_db.close()
        await redis_manager.close()


def build_config_manager(settings: Settings) -> ConfigManager:
    """
    从环境配置创建配置管理器，配置了 TASK_CONFIG_FILE 时叠加文件内容

    Raises:
        InvalidConfigException: 任务配置文件无效
    """
    config_manager = ConfigManager(CleanupConfig.from_settings(settings))

    if settings.TASK_CONFIG_FILE:
        result = config_manager.load_config_file(settings.TASK_CONFIG_FILE)
        if not result.valid:
            raise InvalidConfigException(result.errors)

    return config_manager


def build_orchestrator(
    settings: Optional[Settings] = None,
    observers: Optional[List[TaskObserver]] = None,
) -> Orchestrator:
    """
    构造编排器

    初始化数据库引擎、Redis 连接池和对象存储客户端，
    再把仓储实现注入到四个 handler
    """
    settings = settings or get_settings()
    config_manager = build_config_manager(settings)
    config = config_manager.get_config()

    async_db.init(config.database.url)
    redis_manager.init()

    storage = S3StorageClient(
        bucket=config.storage.bucket,
        endpoint=config.storage.endpoint,
        region=config.storage.region,
        access_key_id=config.storage.access_key_id,
        secret_access_key=config.storage.secret_access_key,
    )

    file_handler = FileCleanupHandler(
        storage=storage,
        media=SqlMediaRepository(),
        orphan_registry=SqlOrphanFileRegistry(),
        protected_registry=SqlProtectedFileRegistry(),
    )
    database_handler = DatabaseCleanupHandler(
        transactions=SqlTransactionRepository(),
        compensations=SqlCompensationRepository(),
        log_tables=SqlLogTableRepository(),
        content=SqlContentRepository(),
        maintenance=SqlMaintenanceRepository(),
        storage=storage,
        retry_cooldown=timedelta(seconds=config.general.retry_delay),
    )
    cache_handler = CacheCleanupHandler(
        backend=RedisCacheBackend(redis_manager.get_connection()),
        memory=MemoryCache(),
    )
    log_handler = LogCleanupHandler(
        log_directory=config.general.log_directory,
        archive_directory=config.general.archive_directory,
    )

    task_manager = TaskManager(history_limit=config.general.history_limit)
    executor = TaskExecutor(
        config_manager,
        [file_handler, database_handler, cache_handler, log_handler],
        task_manager=task_manager,
        observers=observers,
    )
    reporter = CleanupReporter(task_manager, config_manager)

    logger.info(f"✓ Orchestrator ready ({len(config_manager.get_enabled_tasks())} tasks enabled)")
    return Orchestrator(
        config_manager=config_manager,
        task_manager=task_manager,
        executor=executor,
        reporter=reporter,
        file_handler=file_handler,
        database_handler=database_handler,
        cache_handler=cache_handler,
        log_handler=log_handler,
    )
