"""
handler 元数据和装饰器
"""

from dataclasses import dataclass, field
from typing import List

from ..types import ResourceDomain


@dataclass(frozen=True)
class HandlerMetadata:
    """handler 元数据"""

    domain: ResourceDomain
    ms_per_item: int = 100  # 预估每项处理耗时（毫秒）
    # 预估失败时使用的静态经验值
    fallback_items: int = 0
    fallback_bytes: int = 0
    fallback_duration_ms: int = 0
    tags: List[str] = field(default_factory=list)


def handler_metadata(
    domain: ResourceDomain,
    ms_per_item: int = 100,
    fallback_items: int = 0,
    fallback_bytes: int = 0,
    fallback_duration_ms: int = 0,
    tags: List[str] = None,
):
    """
    handler 元数据装饰器

    使用示例:
        @handler_metadata(
            domain=ResourceDomain.FILE,
            ms_per_item=300,
            fallback_items=100,
            tags=["storage"],
        )
        class FileCleanupHandler(BaseCleanupHandler):
            pass
    """

    def decorator(cls):
        cls._metadata = HandlerMetadata(
            domain=domain,
            ms_per_item=ms_per_item,
            fallback_items=fallback_items,
            fallback_bytes=fallback_bytes,
            fallback_duration_ms=fallback_duration_ms,
            tags=tags or [],
        )
        return cls

    return decorator
