from .base import Base
from .session import engine


def init_db(bind=None):
    """按模型建表（本地开发 / 测试用，生产走迁移）"""
    import app.models  # noqa: F401  注册所有模型

    Base.metadata.create_all(bind=bind or engine)


__all__ = ["Base", "engine", "init_db"]
