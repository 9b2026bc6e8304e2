"""
异步 Redis 连接管理器及缓存后端适配器
"""

from typing import Any, Dict, List, Optional

from redis.asyncio import ConnectionPool, Redis
from loguru import logger

from .config import get_settings
from .exceptions import RedisNotInitializedException


class RedisManager:
    """
    Redis连接管理器（通过模块级全局实例共享）
    """

    def __init__(self):
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None

    def init(self) -> None:
        """初始化Redis连接池"""
        if self._pool is not None:
            logger.warning("RedisManager 已经初始化")
            return

        settings = get_settings()

        # 缓存清理只处理字符串键值，直接解码
        self._pool = ConnectionPool(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
            max_connections=50,
            decode_responses=True,
        )
        self._redis = Redis(connection_pool=self._pool)

        logger.info(f"Redis管理器已初始化（{settings.REDIS_HOST}:{settings.REDIS_PORT}）")

    async def close(self) -> None:
        """关闭Redis连接"""
        if self._redis:
            await self._redis.aclose()

        if self._pool:
            await self._pool.disconnect()

        self._redis = None
        self._pool = None
        logger.info("Redis连接已关闭")

    def get_connection(self) -> Redis:
        """
        获取Redis连接

        返回:
            Redis客户端实例
        """
        if self._redis is None:
            raise RedisNotInitializedException()
        return self._redis


# 全局实例
redis_manager = RedisManager()


class RedisCacheBackend:
    """
    基于 redis.asyncio 的缓存后端

    只暴露缓存清理需要的能力：按模式扫描、查询 TTL、读取、删除、清空
    """

    def __init__(self, client: Redis, scan_count: int = 500):
        self.client = client
        self.scan_count = scan_count

    async def scan_keys(self, pattern: str) -> List[str]:
        """使用 SCAN 遍历匹配的键（避免 KEYS 阻塞服务端）"""
        return [
            key
            async for key in self.client.scan_iter(match=pattern, count=self.scan_count)
        ]

    async def ttl(self, key: str) -> int:
        """剩余存活时间（秒）；-1 表示未设置过期，-2 表示已不存在"""
        return await self.client.ttl(key)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def delete(self, key: str) -> int:
        return await self.client.delete(key)

    async def count_keys(self) -> int:
        return await self.client.dbsize()

    async def flush_all(self) -> None:
        await self.client.flushdb()

    async def info(self, section: str) -> Dict[str, Any]:
        return await self.client.info(section)
