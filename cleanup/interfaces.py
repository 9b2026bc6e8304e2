"""
handler 依赖的外部能力接口

handler 只依赖这些窄接口，具体实现见 core.storage、core.redis_client
和 cleanup.repositories；测试中以内存实现替换
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Set

from core.enums import CompensationActionType, TransactionStatus
from core.storage import MultipartUpload, StorageObject

from .types import OrphanFileInfo


# ========== 记录类型 ==========


@dataclass(frozen=True)
class TransactionRecord:
    """上传事务（只读视图）"""

    id: str
    status: TransactionStatus
    expires_at: datetime


@dataclass(frozen=True)
class CompensationRecord:
    """补偿操作（只读视图）"""

    id: int
    transaction_id: str
    action_type: CompensationActionType
    retry_count: int
    created_at: datetime
    last_retry_at: Optional[datetime] = None
    payload: Dict[str, Any] = field(default_factory=dict)


# ========== 对象存储 ==========


class ObjectStorageClient(Protocol):
    async def list_objects(self, prefix: str = "") -> List[StorageObject]: ...

    async def delete_object(self, key: str) -> None: ...

    async def list_multipart_uploads(self) -> List[MultipartUpload]: ...

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None: ...


# ========== 缓存 ==========


class CacheBackend(Protocol):
    async def scan_keys(self, pattern: str) -> List[str]: ...

    async def ttl(self, key: str) -> int:
        """剩余秒数；-1 无过期时间，-2 已不存在"""
        ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> int: ...

    async def count_keys(self) -> int: ...

    async def flush_all(self) -> None: ...

    async def info(self, section: str) -> Dict[str, Any]: ...


# ========== 持久化存储 ==========


class MediaRepository(Protocol):
    async def get_referenced_keys(self) -> Set[str]:
        """媒体表引用的全部对象键（含缩略图）"""
        ...


class OrphanFileRegistry(Protocol):
    async def record_orphans(self, orphans: List[OrphanFileInfo]) -> None:
        """登记孤儿文件；已存在的只更新 last_seen"""
        ...

    async def mark_cleaned(self, key: str) -> None: ...

    async def mark_failed(self, key: str) -> None: ...


class ProtectedFileRegistry(Protocol):
    async def get_protected_keys(self) -> Set[str]: ...


class TransactionRepository(Protocol):
    async def get_expired_transactions(self, now: datetime, limit: int) -> List[TransactionRecord]:
        """已过期且仍处于非终态的事务"""
        ...

    async def cleanup_transaction(self, transaction_id: str) -> int:
        """
        在同一个工作单元内删除事务的补偿操作并标记事务为 CLEANED

        Returns:
            删除的补偿操作数量
        """
        ...

    async def mark_rolled_back(self, transaction_id: str) -> bool: ...


class CompensationRepository(Protocol):
    async def get_retryable_actions(
        self, max_retries: int, retry_before: datetime, limit: int
    ) -> List[CompensationRecord]:
        """FAILED、重试次数未耗尽、且上次尝试早于 retry_before 的补偿操作"""
        ...

    async def get_exhausted_actions(self, max_retries: int, limit: int) -> List[CompensationRecord]:
        """FAILED 且重试次数已耗尽的补偿操作"""
        ...

    async def mark_retry_started(self, action_id: int, now: datetime) -> None:
        """重试次数加一并记录尝试时间"""
        ...

    async def mark_resolved(self, action_id: int, now: datetime) -> None: ...

    async def mark_permanently_failed(self, action_id: int, now: datetime) -> None: ...


class LogTableRepository(Protocol):
    def list_tables(self) -> List[str]: ...

    async def count_older_than(self, table: str, cutoff: datetime) -> int: ...

    async def delete_older_than(self, table: str, cutoff: datetime, limit: int) -> int:
        """删除一批早于 cutoff 的记录，返回删除条数"""
        ...


class ContentRepository(Protocol):
    async def count_posts_without_media(self, created_before: datetime) -> int: ...

    async def delete_posts_without_media(self, created_before: datetime, limit: int) -> int: ...

    async def count_media_without_post(self) -> int: ...

    async def delete_media_without_post(self, limit: int) -> int: ...


class MaintenanceRepository(Protocol):
    def list_tables(self) -> List[str]: ...

    async def optimize_table(self, table: str) -> None: ...
