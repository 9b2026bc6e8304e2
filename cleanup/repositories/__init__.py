"""
清理任务的数据库仓储实现
"""

from .base import SqlRepository
from .file_registry import SqlMediaRepository, SqlOrphanFileRegistry, SqlProtectedFileRegistry
from .maintenance_repository import (
    SqlContentRepository,
    SqlLogTableRepository,
    SqlMaintenanceRepository,
)
from .transaction_repository import SqlCompensationRepository, SqlTransactionRepository

__all__ = [
    "SqlRepository",
    "SqlMediaRepository",
    "SqlOrphanFileRegistry",
    "SqlProtectedFileRegistry",
    "SqlTransactionRepository",
    "SqlCompensationRepository",
    "SqlLogTableRepository",
    "SqlContentRepository",
    "SqlMaintenanceRepository",
]
