"""
基础 Repository - 提供统一的会话管理
"""

from contextlib import asynccontextmanager
from typing import Optional

from loguru import logger

from core.database import AsyncDatabaseManager, async_db
from core.utils.time_utils import utcnow


class SqlRepository:
    """
    基于 AsyncDatabaseManager 的仓储基类

    使用方法:
        class TransactionRepository(SqlRepository):
            async def get(...):
                async with self._session() as session:
                    ...

    每个 with 块是一个工作单元：正常退出提交，异常回滚
    """

    def __init__(self, db: Optional[AsyncDatabaseManager] = None):
        self.db = db or async_db

    @asynccontextmanager
    async def _session(self):
        """
        统一的会话管理上下文

        自动处理:
        - 会话创建
        - 事务提交 / 错误回滚
        - 耗时日志
        """
        start_time = utcnow()
        async with self.db.get_session() as session:
            try:
                yield session
                duration = (utcnow() - start_time).total_seconds()
                logger.debug(f"[{self.__class__.__name__}] DB操作耗时: {duration:.3f}s")
            except Exception as e:
                logger.error(f"[{self.__class__.__name__}] DB操作失败: {e}")
                raise
