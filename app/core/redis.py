"""Redis 客户端配置模块"""

from redis import Redis
from redis.asyncio import Redis as AsyncRedis
from redlock import Redlock

from app.core.config import settings

REDIS_URL = settings.redis_url

# 基础 Redis 客户端（库存可用量缓存）
redis_client = Redis.from_url(REDIS_URL, decode_responses=True)
async_redis = AsyncRedis.from_url(REDIS_URL, decode_responses=True)


def create_redlock(redis_hosts: str = None):
    """根据配置动态创建 Redlock 实例（支持单实例和多实例）"""
    redis_hosts = redis_hosts or settings.REDIS_HOSTS or settings.REDIS_HOST

    servers = [
        {"host": host.strip(), "port": settings.REDIS_PORT, "db": settings.REDIS_DB}
        for host in redis_hosts.split(",")
        if host.strip()
    ]

    return Redlock(
        servers,
        retry_count=settings.REDLOCK_RETRY_COUNT,
        retry_delay=settings.REDLOCK_RETRY_DELAY,
    )

redlock = create_redlock()

# 导出
__all__ = [
    "redis_client",
    "async_redis",
    "redlock",
    "create_redlock",
    "REDIS_URL"
]
