"""
SQLModel 数据库模型
清理任务需要读写的持久化实体
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import Field, SQLModel, Column, Index
from sqlalchemy import JSON, Text

from .enums import CompensationActionType, CompensationStatus, OrphanFileStatus, TransactionStatus
from .utils.time_utils import utcnow


class Post(SQLModel, table=True):
    """内容表 - 媒体资源的父记录"""

    __tablename__ = "posts"

    id: Optional[int] = Field(default=None, primary_key=True, description="内容ID")
    title: str = Field(default="", max_length=255, description="标题")
    created_at: datetime = Field(
        default_factory=utcnow,
        description="记录创建时间",
        index=True,
    )


class PostMedia(SQLModel, table=True):
    """媒体表 - 引用对象存储中的文件"""

    __tablename__ = "post_media"

    id: Optional[int] = Field(default=None, primary_key=True, description="媒体ID")
    post_id: Optional[int] = Field(
        default=None, foreign_key="posts.id", index=True, description="所属内容ID"
    )
    storage_key: Optional[str] = Field(
        default=None, max_length=1024, index=True, description="对象存储键"
    )
    thumbnail_key: Optional[str] = Field(
        default=None, max_length=1024, description="缩略图存储键"
    )
    size: int = Field(default=0, description="文件大小（字节）")
    created_at: datetime = Field(
        default_factory=utcnow, description="记录创建时间"
    )


class UploadTransaction(SQLModel, table=True):
    """上传事务表 - 跟踪多步骤上传流程"""

    __tablename__ = "upload_transactions"

    id: str = Field(primary_key=True, max_length=64, description="事务ID")
    status: TransactionStatus = Field(
        default=TransactionStatus.PENDING, index=True, description="事务状态"
    )
    expires_at: datetime = Field(description="过期时间", index=True)
    error_message: Optional[str] = Field(
        default=None, sa_column=Column(Text), description="错误信息"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    cleaned_at: Optional[datetime] = Field(default=None, description="清理时间")


class CompensationAction(SQLModel, table=True):
    """补偿操作表 - 上传失败后需要重试的补救操作"""

    __tablename__ = "compensation_actions"

    id: Optional[int] = Field(default=None, primary_key=True)
    transaction_id: str = Field(
        foreign_key="upload_transactions.id", index=True, max_length=64
    )
    action_type: CompensationActionType = Field(description="补偿类型")
    status: CompensationStatus = Field(
        default=CompensationStatus.PENDING, index=True, description="补偿状态"
    )
    retry_count: int = Field(default=0, description="已重试次数")
    payload: Optional[Dict[str, Any]] = Field(
        default=None, sa_column=Column(JSON), description="补偿所需参数"
    )
    created_at: datetime = Field(default_factory=utcnow)
    last_retry_at: Optional[datetime] = Field(default=None)
    resolved_at: Optional[datetime] = Field(default=None)
    failed_at: Optional[datetime] = Field(default=None)

    __table_args__ = (
        Index("idx_compensation_status_retry", "status", "retry_count"),
    )


class OrphanFile(SQLModel, table=True):
    """孤儿文件登记表 - 审计用，删除前先登记"""

    __tablename__ = "orphan_files"

    id: Optional[int] = Field(default=None, primary_key=True)
    storage_key: str = Field(max_length=1024, unique=True, index=True)
    size: int = Field(default=0)
    last_modified: Optional[datetime] = Field(default=None)
    first_seen: datetime = Field(default_factory=utcnow)
    last_seen: datetime = Field(default_factory=utcnow)
    status: OrphanFileStatus = Field(default=OrphanFileStatus.DETECTED, index=True)
    cleaned_at: Optional[datetime] = Field(default=None)


class ProtectedFile(SQLModel, table=True):
    """受保护文件表 - 不参与自动删除"""

    __tablename__ = "protected_files"

    id: Optional[int] = Field(default=None, primary_key=True)
    storage_key: str = Field(max_length=1024, unique=True, index=True)
    reason: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utcnow)


# ========== 日志类表 ==========


class LogRecordBase(SQLModel):
    """日志类表的公共字段"""

    id: Optional[int] = Field(default=None, primary_key=True)
    level: str = Field(default="INFO", max_length=20)
    message: str = Field(default="", max_length=2000)
    created_at: datetime = Field(default_factory=utcnow, index=True)


class CleanupLog(LogRecordBase, table=True):
    __tablename__ = "cleanup_logs"


class UploadLog(LogRecordBase, table=True):
    __tablename__ = "upload_logs"


class ErrorLog(LogRecordBase, table=True):
    __tablename__ = "error_logs"


class AuditLog(LogRecordBase, table=True):
    __tablename__ = "audit_logs"


# 按表名索引的日志类表（供日志表清理使用）
LOG_TABLES = {
    "cleanup_logs": CleanupLog,
    "upload_logs": UploadLog,
    "error_logs": ErrorLog,
    "audit_logs": AuditLog,
}

# 表优化时处理的表
MAINTENANCE_TABLES = [
    "posts",
    "post_media",
    "upload_transactions",
    "compensation_actions",
    "orphan_files",
    "cleanup_logs",
]
