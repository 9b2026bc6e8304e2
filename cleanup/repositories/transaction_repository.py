"""
上传事务与补偿操作仓储
"""

from datetime import datetime
from typing import List

from loguru import logger
from sqlalchemy import delete, func, select, update

from core.enums import CompensationStatus, TransactionStatus
from core.models import CompensationAction, UploadTransaction
from core.utils.time_utils import utcnow

from ..interfaces import CompensationRecord, TransactionRecord
from .base import SqlRepository


class SqlTransactionRepository(SqlRepository):
    """上传事务仓储"""

    async def get_expired_transactions(self, now: datetime, limit: int) -> List[TransactionRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(UploadTransaction)
                .where(
                    UploadTransaction.expires_at < now,
                    UploadTransaction.status.in_(TransactionStatus.non_terminal()),
                )
                .order_by(UploadTransaction.expires_at)
                .limit(limit)
            )
            return [
                TransactionRecord(id=tx.id, status=tx.status, expires_at=tx.expires_at)
                for tx in result.scalars().all()
            ]

    async def cleanup_transaction(self, transaction_id: str) -> int:
        """
        删除事务的补偿操作并标记事务为 CLEANED（同一工作单元）

        状态条件更新保证重复执行无副作用
        """
        now = utcnow()
        async with self._session() as session:
            deleted = await session.execute(
                delete(CompensationAction).where(
                    CompensationAction.transaction_id == transaction_id
                )
            )
            await session.execute(
                update(UploadTransaction)
                .where(
                    UploadTransaction.id == transaction_id,
                    UploadTransaction.status.in_(TransactionStatus.non_terminal()),
                )
                .values(status=TransactionStatus.CLEANED, cleaned_at=now, updated_at=now)
            )
            logger.debug(
                f"[{self.__class__.__name__}] Transaction {transaction_id} cleaned, "
                f"{deleted.rowcount} compensation actions removed"
            )
            return deleted.rowcount or 0

    async def mark_rolled_back(self, transaction_id: str) -> bool:
        now = utcnow()
        async with self._session() as session:
            result = await session.execute(
                update(UploadTransaction)
                .where(UploadTransaction.id == transaction_id)
                .values(status=TransactionStatus.ROLLED_BACK, updated_at=now)
            )
            return result.rowcount > 0


class SqlCompensationRepository(SqlRepository):
    """补偿操作仓储"""

    async def get_retryable_actions(
        self, max_retries: int, retry_before: datetime, limit: int
    ) -> List[CompensationRecord]:
        last_attempt = func.coalesce(
            CompensationAction.last_retry_at, CompensationAction.created_at
        )
        return await self._find(
            CompensationAction.status == CompensationStatus.FAILED,
            CompensationAction.retry_count < max_retries,
            last_attempt < retry_before,
            limit=limit,
        )

    async def get_exhausted_actions(self, max_retries: int, limit: int) -> List[CompensationRecord]:
        return await self._find(
            CompensationAction.status == CompensationStatus.FAILED,
            CompensationAction.retry_count >= max_retries,
            limit=limit,
        )

    async def mark_retry_started(self, action_id: int, now: datetime) -> None:
        await self._update(
            action_id,
            retry_count=CompensationAction.retry_count + 1,
            last_retry_at=now,
        )

    async def mark_resolved(self, action_id: int, now: datetime) -> None:
        await self._update(action_id, status=CompensationStatus.RESOLVED, resolved_at=now)

    async def mark_permanently_failed(self, action_id: int, now: datetime) -> None:
        await self._update(
            action_id, status=CompensationStatus.PERMANENTLY_FAILED, failed_at=now
        )

    async def _find(self, *conditions, limit: int) -> List[CompensationRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(CompensationAction)
                .where(*conditions)
                .order_by(CompensationAction.created_at)
                .limit(limit)
            )
            return [
                CompensationRecord(
                    id=action.id,
                    transaction_id=action.transaction_id,
                    action_type=action.action_type,
                    retry_count=action.retry_count,
                    created_at=action.created_at,
                    last_retry_at=action.last_retry_at,
                    payload=dict(action.payload or {}),
                )
                for action in result.scalars().all()
            ]

    async def _update(self, action_id: int, **values) -> None:
        async with self._session() as session:
            await session.execute(
                update(CompensationAction)
                .where(
                    CompensationAction.id == action_id,
                    CompensationAction.status == CompensationStatus.FAILED,
                )
                .values(**values)
            )
