"""
使用 Pydantic Settings 进行配置管理
从 app.properties 文件和环境变量加载配置
"""

from functools import lru_cache
from typing import Optional
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from loguru import logger


class Settings(BaseSettings):
    """应用配置，包含参数校验"""

    # 数据库配置
    POSTGRES_HOST: str = Field(default="localhost", description="PostgreSQL 主机")
    POSTGRES_PORT: int = Field(default=5432, description="PostgreSQL 端口")
    POSTGRES_DB: str = Field(default="media_janitor", description="PostgreSQL 数据库名称")
    POSTGRES_USER: str = Field(default="janitor", description="PostgreSQL 用户名")
    POSTGRES_PASSWORD: str = Field(default="", description="PostgreSQL 密码")
    DATABASE_URL: Optional[str] = Field(
        default=None, description="完整的数据库连接串（设置后覆盖 POSTGRES_* 配置）"
    )

    # Redis 配置
    REDIS_HOST: str = Field(default="localhost", description="Redis 主机")
    REDIS_PORT: int = Field(default=6379, description="Redis 端口")
    REDIS_DB: int = Field(default=0, description="Redis 数据库编号")
    REDIS_PASSWORD: Optional[str] = Field(default=None, description="Redis 密码")

    # 对象存储配置（S3 兼容，如 Cloudflare R2）
    STORAGE_ENDPOINT: str = Field(default="", description="对象存储 Endpoint")
    STORAGE_REGION: str = Field(default="auto", description="对象存储区域")
    STORAGE_BUCKET: str = Field(default="", description="存储桶名称")
    STORAGE_ACCESS_KEY_ID: str = Field(default="", description="访问密钥 ID")
    STORAGE_SECRET_ACCESS_KEY: str = Field(default="", description="访问密钥")

    # 清理任务全局配置
    MAX_CONCURRENT_TASKS: int = Field(default=3, description="最大并发清理任务数")
    DEFAULT_TIMEOUT: int = Field(default=300, description="默认任务超时时间（秒）")
    RETRY_DELAY: int = Field(default=3600, description="补偿操作重试冷却时间（秒）")
    HISTORY_LIMIT: int = Field(default=1000, description="保留的任务历史条数")
    TASK_CONFIG_FILE: Optional[str] = Field(
        default=None, description="任务配置文件路径（YAML/JSON）"
    )

    # 日志文件清理配置
    LOG_DIRECTORY: str = Field(default="./logs", description="待清理的日志目录")
    LOG_ARCHIVE_DIRECTORY: str = Field(
        default="./logs/archive", description="日志归档目录"
    )

    # 日志配置
    LOG_LEVEL: str = Field(default="INFO", description="日志级别")
    LOG_FILE: Optional[str] = Field(default=None, description="日志文件路径")

    model_config = SettingsConfigDict(
        env_file="app.properties",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("MAX_CONCURRENT_TASKS", "HISTORY_LIMIT")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("取值至少为 1")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"LOG_LEVEL 必须为 {valid_levels} 中的一项")
        return v_upper

    def get_database_url(self) -> str:
        """
        获取数据库连接 URL（asyncpg 驱动）

        返回:
            数据库连接 URL 字符串
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def ensure_directories(self) -> None:
        """确保所有需要的目录存在"""
        Path(self.LOG_DIRECTORY).mkdir(parents=True, exist_ok=True)
        Path(self.LOG_ARCHIVE_DIRECTORY).mkdir(parents=True, exist_ok=True)

        if self.LOG_FILE:
            Path(self.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)


# ========== 配置获取函数 ==========


@lru_cache()
def get_settings() -> Settings:
    """
    获取配置实例（单例）

    返回:
        配置实例
    """
    settings = Settings()
    logger.info("Settings loaded")
    return settings
