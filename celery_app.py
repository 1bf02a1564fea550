"""Celery 配置文件"""

from celery import Celery

from app.core.config import settings

# 创建 Celery 应用实例
app = Celery('inventory_worker')

# 默认用 Redis 作为 broker 和 backend
app.conf.broker_url = (
    settings.CELERY_BROKER_URL
    or f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/1"
)
app.conf.result_backend = (
    settings.CELERY_RESULT_BACKEND
    or f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/2"
)

# 任务序列化配置
app.conf.task_serializer = 'json'
app.conf.result_serializer = 'json'
app.conf.accept_content = ['json']

# 时区配置
app.conf.timezone = 'UTC'
app.conf.enable_utc = True

# 任务路由配置
app.conf.task_routes = {
    'tasks.inventory.*': {'queue': 'inventory'},
}

# 定时清理过期预占（celery beat）
app.conf.beat_schedule = {
    'cleanup-expired-reservations': {
        'task': 'tasks.inventory.cleanup_expired_reservations',
        'schedule': float(settings.CLEANUP_INTERVAL_SECONDS),
        'kwargs': {'batch_size': settings.CLEANUP_BATCH_SIZE},
    },
}

# Worker 配置
app.conf.worker_prefetch_multiplier = 1
app.conf.task_acks_late = True

# 注册任务模块
app.conf.imports = ('tasks.inventory_tasks',)

# 导出应用实例
__all__ = ['app']
