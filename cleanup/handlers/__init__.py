"""
资源清理 handler

每个 handler 负责一个资源域，互不依赖
"""

from .base import BaseCleanupHandler
from .cache_cleanup import CacheCleanupHandler, MemoryCache
from .database_cleanup import DatabaseCleanupHandler
from .file_cleanup import FileCleanupHandler
from .log_cleanup import LogCleanupHandler
from .metadata import HandlerMetadata, handler_metadata

__all__ = [
    "BaseCleanupHandler",
    "HandlerMetadata",
    "handler_metadata",
    "FileCleanupHandler",
    "DatabaseCleanupHandler",
    "CacheCleanupHandler",
    "MemoryCache",
    "LogCleanupHandler",
]
