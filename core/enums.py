"""
持久化实体的枚举类型定义
"""

from enum import Enum


class TransactionStatus(str, Enum):
    """上传事务状态枚举"""

    PENDING = "PENDING"  # 等待处理
    IN_PROGRESS = "IN_PROGRESS"  # 处理中
    COMPLETED = "COMPLETED"  # 已完成
    FAILED = "FAILED"  # 失败
    ROLLED_BACK = "ROLLED_BACK"  # 已回滚（补偿成功）
    CLEANED = "CLEANED"  # 过期后已清理

    @classmethod
    def non_terminal(cls) -> list:
        """仍可能被清理的状态"""
        return [cls.PENDING, cls.IN_PROGRESS]


class CompensationStatus(str, Enum):
    """补偿操作状态枚举"""

    PENDING = "PENDING"  # 等待执行
    FAILED = "FAILED"  # 执行失败，可重试
    RESOLVED = "RESOLVED"  # 重试成功
    PERMANENTLY_FAILED = "PERMANENTLY_FAILED"  # 重试次数耗尽，不再重试


class CompensationActionType(str, Enum):
    """补偿操作类型"""

    DELETE_FILE = "DELETE_FILE"  # 删除已上传的对象
    ROLLBACK_TRANSACTION = "ROLLBACK_TRANSACTION"  # 回滚上传事务


class OrphanFileStatus(str, Enum):
    """孤儿文件登记状态"""

    DETECTED = "DETECTED"  # 已发现
    CLEANED = "CLEANED"  # 已删除
    FAILED = "FAILED"  # 删除失败
