"""依赖注入配置模块"""

import logging
from typing import Generator, Optional

from fastapi import Depends
from redis import Redis
from redlock import Redlock

# 数据库会话依赖
from app.db.session import SessionLocal
from sqlalchemy.orm import Session

# Redis 依赖
from app.core.redis import redis_client, redlock

from app.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)


def get_redis() -> Optional[Redis]:
    """获取同步 Redis 客户端（不可用时返回 None，服务降级为直查数据库）"""
    try:
        redis_client.ping()
        return redis_client
    except Exception as e:
        logger.warning(f"Redis 不可用，跳过缓存: {e}")
        return None

def get_redlock() -> Optional[Redlock]:
    """获取 Redlock 分布式锁实例（可达节点不足多数时返回 None，只依赖数据库行锁）"""
    reachable = 0
    for server in redlock.servers:
        try:
            server.ping()
            reachable += 1
        except Exception as e:
            logger.warning(f"Redlock 节点不可用: {e}")

    quorum = len(redlock.servers) // 2 + 1
    if reachable < quorum:
        logger.warning(f"Redlock 可达节点 {reachable}/{len(redlock.servers)}，跳过分布式锁")
        return None
    return redlock

def get_db() -> Generator[Session, None, None]:
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_inventory_service(
    db: Session = Depends(get_db),
    redis = Depends(get_redis),
    rlock = Depends(get_redlock)
) -> InventoryService:
    """获取库存服务实例（依赖注入）"""
    return InventoryService(db=db, redis=redis, rlock=rlock)


InventoryServiceDep = Depends(get_inventory_service)
