"""测试配置和 fixtures"""
import pytest
from unittest.mock import Mock
from redis import Redis
from redlock import Redlock
from sqlalchemy.orm import sessionmaker

from app.db import Base, init_db
from app.db.session import build_engine
from app.models import Product, ProductVariant


@pytest.fixture
def db_engine(tmp_path):
    """文件型 sqlite（多线程并发测试需要独立连接）"""
    engine = build_engine(f"sqlite:///{tmp_path / 'reservations.db'}")
    init_db(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(
        bind=db_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture
def db_session(session_factory):
    """创建数据库会话"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def mock_redis():
    """创建模拟 Redis 客户端"""
    redis_mock = Mock(spec=Redis)
    redis_mock.get.return_value = None
    redis_mock.setex.return_value = True
    redis_mock.delete.return_value = 1
    redis_mock.mget.return_value = [None, None]
    redis_mock.pipeline.return_value = Mock()
    return redis_mock


@pytest.fixture
def mock_redlock():
    """创建模拟 Redlock 分布式锁"""
    redlock_mock = Mock(spec=Redlock)
    lock_mock = Mock()
    redlock_mock.lock.return_value = lock_mock
    redlock_mock.unlock.return_value = True
    return redlock_mock


@pytest.fixture
def product(db_session):
    """库存为 10 的商品"""
    product = Product(sku="TEST001", name="测试商品", stock_quantity=10)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def variants(db_session, product):
    """同一商品下的两个规格，各自独立计数"""
    red = ProductVariant(product_id=product.id, sku="TEST001-RED", name="红色", stock_quantity=5)
    blue = ProductVariant(product_id=product.id, sku="TEST001-BLUE", name="蓝色", stock_quantity=4)
    db_session.add_all([red, blue])
    db_session.commit()
    return red, blue
