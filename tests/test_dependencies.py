"""依赖注入单元测试"""
import pytest
from unittest.mock import Mock, patch
from sqlalchemy.orm import Session
from redis import Redis
from redlock import Redlock

from app.core.dependencies import (
    get_db,
    get_redis,
    get_redlock,
    get_inventory_service
)
from app.core.redis import create_redlock
from app.services.inventory_service import InventoryService


class TestDependencies:
    """依赖注入测试类"""

    def test_get_db(self):
        """测试数据库会话依赖"""
        with patch('app.core.dependencies.SessionLocal') as mock_session_local:
            db_mock = Mock(spec=Session)
            mock_session_local.return_value = db_mock

            gen = get_db()
            db = next(gen)

            assert db == db_mock
            mock_session_local.assert_called_once()

            # 请求结束后关闭会话
            with pytest.raises(StopIteration):
                next(gen)
            db_mock.close.assert_called_once()

    def test_get_redis_success(self):
        """测试 Redis 连接成功"""
        with patch('app.core.dependencies.redis_client') as mock_redis_client:
            mock_redis_client.ping.return_value = True

            redis_conn = get_redis()

            assert redis_conn == mock_redis_client
            mock_redis_client.ping.assert_called_once()

    def test_get_redis_failure(self):
        """Redis 不可用时返回 None，服务直查数据库"""
        with patch('app.core.dependencies.redis_client') as mock_redis_client:
            mock_redis_client.ping.side_effect = Exception("连接失败")

            assert get_redis() is None

    def test_get_redlock_success(self):
        with patch('app.core.dependencies.redlock') as mock_redlock:
            mock_redlock.servers = [Mock()]

            assert get_redlock() == mock_redlock

    @pytest.mark.parametrize("down_count, expected_none", [(0, False), (1, False), (2, True), (3, True)])
    def test_get_redlock_requires_quorum(self, down_count, expected_none):
        """三节点 Redlock 需要至少两个节点可达"""
        servers = [Mock() for _ in range(3)]
        for server in servers[:down_count]:
            server.ping.side_effect = ConnectionError("down")

        with patch('app.core.dependencies.redlock') as mock_redlock:
            mock_redlock.servers = servers

            rlock = get_redlock()

        assert (rlock is None) is expected_none

    def test_get_redlock_without_servers(self):
        """无服务器配置时只依赖数据库行锁"""
        with patch('app.core.dependencies.redlock') as mock_redlock:
            mock_redlock.servers = []

            assert get_redlock() is None

    def test_get_inventory_service(self):
        """测试库存服务依赖注入"""
        db_mock = Mock(spec=Session)
        redis_mock = Mock(spec=Redis)
        redlock_mock = Mock(spec=Redlock)

        service = get_inventory_service(db=db_mock, redis=redis_mock, rlock=redlock_mock)

        assert isinstance(service, InventoryService)
        assert service.db == db_mock
        assert service.redis == redis_mock
        assert service.rlock == redlock_mock

    def test_get_inventory_service_partial_deps(self):
        """测试部分依赖不可用时的服务创建"""
        db_mock = Mock(spec=Session)

        service = get_inventory_service(db=db_mock, redis=None, rlock=None)

        assert isinstance(service, InventoryService)
        assert service.redis is None
        assert service.rlock is None


class TestRedlockFactory:
    """Redlock 实例创建"""

    def test_multiple_hosts(self):
        with patch('app.core.redis.Redlock') as mock_redlock_cls:
            create_redlock("redis-a, redis-b,")

            servers = mock_redlock_cls.call_args.args[0]
            assert [s["host"] for s in servers] == ["redis-a", "redis-b"]
