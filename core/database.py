"""
数据库连接管理 - 异步模式
- 清理任务运行在 asyncio 事件循环中（PostgreSQL 使用 asyncpg）
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel
from loguru import logger

from .config import get_settings
from .exceptions import DatabaseNotInitializedException


class AsyncDatabaseManager:
    """
    异步数据库连接管理器
    使用 asyncpg 驱动实现高性能异步数据库操作
    """

    def __init__(self):
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    def init(self, database_url: Optional[str] = None) -> None:
        """
        初始化异步数据库引擎和会话工厂

        Args:
            database_url: 数据库连接串（为空时从配置读取）
        """
        if self._engine is not None:
            logger.warning("AsyncDatabaseManager 已经初始化过")
            return

        database_url = database_url or get_settings().get_database_url()

        engine_kwargs = {"echo": False, "pool_pre_ping": True}
        if not database_url.startswith("sqlite"):
            # 连接池参数仅对服务端数据库有效
            engine_kwargs.update(pool_size=20, max_overflow=10, pool_recycle=3600)

        self._engine = create_async_engine(database_url, **engine_kwargs)

        # 创建会话工厂
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        logger.info("异步数据库管理器初始化完成")

    async def close(self) -> None:
        """关闭数据库引擎并清理连接"""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("异步数据库连接已关闭")

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """
        获取一个异步数据库会话（上下文管理器）

        退出时提交，异常时回滚，整个 with 块即一个工作单元

        用法示例：
            async with async_db.get_session() as session:
                result = await session.execute(query)
        """
        if self._session_factory is None:
            raise DatabaseNotInitializedException("AsyncDatabaseManager")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """创建所有数据库表（用于开发/测试）"""
        if self._engine is None:
            raise DatabaseNotInitializedException("AsyncDatabaseManager")

        from . import models  # noqa: F401  注册所有表

        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

        logger.info("数据库表已创建")

    @property
    def engine(self) -> AsyncEngine:
        """获取异步引擎实例"""
        if self._engine is None:
            raise DatabaseNotInitializedException("AsyncDatabaseManager")
        return self._engine

    @property
    def dialect_name(self) -> str:
        """当前数据库方言名称（postgresql / sqlite / mysql）"""
        return self.engine.dialect.name


# 全局实例
async_db = AsyncDatabaseManager()
