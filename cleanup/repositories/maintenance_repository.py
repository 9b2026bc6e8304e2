"""
数据库维护相关仓储

- 日志类表按时间删除
- 孤儿内容 / 媒体记录删除
- 表优化
"""

from datetime import datetime
from typing import List, Type

from loguru import logger
from sqlalchemy import delete, exists, func, or_, select, text
from sqlmodel import SQLModel

from core.models import LOG_TABLES, MAINTENANCE_TABLES, Post, PostMedia

from .base import SqlRepository


class SqlLogTableRepository(SqlRepository):
    """日志类表仓储（按表名访问）"""

    def list_tables(self) -> List[str]:
        return list(LOG_TABLES)

    @staticmethod
    def _model(table: str) -> Type[SQLModel]:
        model = LOG_TABLES.get(table)
        if model is None:
            raise ValueError(f"unknown log table: {table}")
        return model

    async def count_older_than(self, table: str, cutoff: datetime) -> int:
        model = self._model(table)
        async with self._session() as session:
            result = await session.execute(
                select(func.count()).select_from(model).where(model.created_at < cutoff)
            )
            return result.scalar_one()

    async def delete_older_than(self, table: str, cutoff: datetime, limit: int) -> int:
        model = self._model(table)
        async with self._session() as session:
            ids = (
                await session.execute(
                    select(model.id)
                    .where(model.created_at < cutoff)
                    .order_by(model.created_at)
                    .limit(limit)
                )
            ).scalars().all()
            if not ids:
                return 0

            result = await session.execute(delete(model).where(model.id.in_(ids)))
            return result.rowcount or 0


def _post_has_media():
    return exists().where(PostMedia.post_id == Post.id)


def _media_without_post():
    return or_(
        PostMedia.post_id.is_(None),
        ~exists().where(Post.id == PostMedia.post_id),
    )


class SqlContentRepository(SqlRepository):
    """内容 / 媒体记录仓储"""

    async def count_posts_without_media(self, created_before: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(Post)
                .where(Post.created_at < created_before, ~_post_has_media())
            )
            return result.scalar_one()

    async def delete_posts_without_media(self, created_before: datetime, limit: int) -> int:
        async with self._session() as session:
            ids = (
                await session.execute(
                    select(Post.id)
                    .where(Post.created_at < created_before, ~_post_has_media())
                    .limit(limit)
                )
            ).scalars().all()
            if not ids:
                return 0

            result = await session.execute(delete(Post).where(Post.id.in_(ids)))
            return result.rowcount or 0

    async def count_media_without_post(self) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count()).select_from(PostMedia).where(_media_without_post())
            )
            return result.scalar_one()

    async def delete_media_without_post(self, limit: int) -> int:
        async with self._session() as session:
            ids = (
                await session.execute(
                    select(PostMedia.id).where(_media_without_post()).limit(limit)
                )
            ).scalars().all()
            if not ids:
                return 0

            result = await session.execute(delete(PostMedia).where(PostMedia.id.in_(ids)))
            return result.rowcount or 0


class SqlMaintenanceRepository(SqlRepository):
    """表维护（按数据库方言选择语句）"""

    def list_tables(self) -> List[str]:
        return list(MAINTENANCE_TABLES)

    def _statement(self, table: str) -> str:
        if table not in MAINTENANCE_TABLES:
            raise ValueError(f"table not eligible for maintenance: {table}")

        dialect = self.db.dialect_name
        if dialect == "mysql":
            return f"OPTIMIZE TABLE {table}"
        return f"ANALYZE {table}"

    async def optimize_table(self, table: str) -> None:
        statement = self._statement(table)
        async with self._session() as session:
            await session.execute(text(statement))
        logger.debug(f"[{self.__class__.__name__}] {statement}")
