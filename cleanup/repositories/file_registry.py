"""
对象存储相关的数据库仓储

- 媒体表引用的对象键
- 孤儿文件登记（审计）
- 受保护文件登记
"""

from typing import List, Set

from loguru import logger
from sqlalchemy import select, update

from core.enums import OrphanFileStatus
from core.models import OrphanFile, PostMedia, ProtectedFile
from core.utils.time_utils import utcnow

from ..types import OrphanFileInfo
from .base import SqlRepository


class SqlMediaRepository(SqlRepository):
    """媒体表查询"""

    async def get_referenced_keys(self) -> Set[str]:
        async with self._session() as session:
            result = await session.execute(
                select(PostMedia.storage_key, PostMedia.thumbnail_key)
            )
            keys: Set[str] = set()
            for storage_key, thumbnail_key in result.all():
                if storage_key:
                    keys.add(storage_key)
                if thumbnail_key:
                    keys.add(thumbnail_key)
            return keys


class SqlOrphanFileRegistry(SqlRepository):
    """孤儿文件登记表"""

    async def record_orphans(self, orphans: List[OrphanFileInfo]) -> None:
        """
        登记孤儿文件

        已登记的只刷新 last_seen / size / last_modified，保留 first_seen
        """
        if not orphans:
            return

        now = utcnow()
        async with self._session() as session:
            keys = [o.key for o in orphans]
            result = await session.execute(
                select(OrphanFile).where(OrphanFile.storage_key.in_(keys))
            )
            existing = {row.storage_key: row for row in result.scalars().all()}

            for orphan in orphans:
                record = existing.get(orphan.key)
                if record is None:
                    session.add(
                        OrphanFile(
                            storage_key=orphan.key,
                            size=orphan.size,
                            last_modified=orphan.last_modified,
                            first_seen=now,
                            last_seen=now,
                        )
                    )
                else:
                    record.last_seen = now
                    record.size = orphan.size
                    record.last_modified = orphan.last_modified

            logger.debug(
                f"Orphan registry: {len(orphans) - len(existing)} new, {len(existing)} refreshed"
            )

    async def mark_cleaned(self, key: str) -> None:
        await self._set_status(key, OrphanFileStatus.CLEANED, cleaned_at=utcnow())

    async def mark_failed(self, key: str) -> None:
        await self._set_status(key, OrphanFileStatus.FAILED)

    async def _set_status(self, key: str, status: OrphanFileStatus, **values) -> None:
        async with self._session() as session:
            await session.execute(
                update(OrphanFile)
                .where(OrphanFile.storage_key == key)
                .values(status=status, **values)
            )


class SqlProtectedFileRegistry(SqlRepository):
    """受保护文件登记表"""

    async def get_protected_keys(self) -> Set[str]:
        async with self._session() as session:
            result = await session.execute(select(ProtectedFile.storage_key))
            return set(result.scalars().all())
