"""库存预占相关的 Celery 任务"""

from celery_app import app
from app.db.session import SessionLocal
from app.services.inventory_service import InventoryService
from app.core.redis import redis_client, redlock
import logging

logger = logging.getLogger(__name__)

@app.task(name='tasks.inventory.cleanup_expired_reservations')
def cleanup_expired_reservations(batch_size: int = 500):
    """清理过期的预占记录（由 celery beat 定时触发）

    Args:
        batch_size: 批处理大小，默认500条

    Returns:
        清理的记录数量描述
    """
    db = SessionLocal()
    try:
        service = InventoryService(db, redis_client, redlock)
        count = service.cleanup_expired_reservations(batch_size)
        result = f"成功清理 {count} 条过期预占记录"
        logger.info(result)
        return result
    except Exception as e:
        logger.error(f"清理过期预占任务执行失败: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()

@app.task(name='tasks.inventory.release_order_reservations')
def release_order_reservations(order_id: str):
    """异步释放订单下的全部预占（支付失败 / 订单取消回调）

    Returns:
        {"order_id": ..., "released": 释放条数}
    """
    db = SessionLocal()
    try:
        service = InventoryService(db, redis_client, redlock)
        released = service.release_order_reservations(order_id)
        logger.info(f"订单预占释放完成: order_id={order_id}, released={released}")
        return {"order_id": order_id, "released": released}
    except Exception as e:
        logger.error(f"释放订单预占失败: order_id={order_id}, error={str(e)}")
        db.rollback()
        raise
    finally:
        db.close()

# 导出任务
__all__ = [
    'cleanup_expired_reservations',
    'release_order_reservations',
]
