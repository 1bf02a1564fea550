"""模型单元测试"""
import pytest
from datetime import timedelta
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError

from app.models import Product, ProductVariant, InventoryReservation, ReservationStatus, InventoryLog, ChangeType
from app.services.inventory_service import utcnow


class TestModels:
    """数据模型测试类"""

    def test_product_model(self, db_session):
        """测试商品模型"""
        product = Product(sku="PROD001", name="测试商品", stock_quantity=100)
        db_session.add(product)
        db_session.commit()

        saved_product = db_session.execute(select(Product)).scalar_one()
        assert saved_product.id is not None
        assert saved_product.sku == "PROD001"
        assert saved_product.stock_quantity == 100
        assert saved_product.created_at is not None
        assert saved_product.updated_at is not None

    def test_product_stock_defaults_to_zero(self, db_session):
        product = Product(sku="PROD002", name="默认库存")
        db_session.add(product)
        db_session.commit()

        assert db_session.scalar(select(Product.stock_quantity)) == 0

    def test_negative_stock_rejected(self, db_session):
        db_session.add(Product(sku="PROD003", name="负库存", stock_quantity=-1))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_duplicate_sku_rejected(self, db_session, product):
        db_session.add(Product(sku=product.sku, name="重复"))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_variant_model(self, db_session, variants):
        red, blue = variants

        saved = db_session.execute(
            select(ProductVariant).order_by(ProductVariant.id)
        ).scalars().all()
        assert [v.sku for v in saved] == ["TEST001-RED", "TEST001-BLUE"]
        assert all(v.product_id == red.product_id for v in saved)

    def test_inventory_reservation_model(self, db_session, product):
        """测试库存预占模型"""
        reservation = InventoryReservation(
            product_id=product.id,
            quantity=3,
            session_id="anon-1",
            expires_at=utcnow() + timedelta(minutes=15),
        )
        db_session.add(reservation)
        db_session.commit()

        assert len(reservation.id) == 36
        assert reservation.status == ReservationStatus.ACTIVE
        assert reservation.is_terminal is False
        # 数据库保存的是小写状态值
        raw = db_session.execute(text("SELECT status FROM inventory_reservations")).scalar_one()
        assert raw == "active"

    @pytest.mark.parametrize("status", [
        ReservationStatus.COMMITTED,
        ReservationStatus.RELEASED,
        ReservationStatus.EXPIRED,
    ])
    def test_terminal_statuses(self, status):
        assert InventoryReservation(status=status).is_terminal is True

    def test_reservation_quantity_must_be_positive(self, db_session, product):
        db_session.add(InventoryReservation(
            product_id=product.id,
            quantity=0,
            user_id="user-1",
            expires_at=utcnow(),
        ))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    @pytest.mark.parametrize("holder", [
        {},
        {"user_id": "user-1", "session_id": "anon-1"},
    ])
    def test_reservation_requires_single_holder(self, db_session, product, holder):
        db_session.add(InventoryReservation(
            product_id=product.id,
            quantity=1,
            expires_at=utcnow(),
            **holder,
        ))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_inventory_log_model(self, db_session, product):
        """测试库存日志模型"""
        log = InventoryLog(
            product_id=product.id,
            reservation_id="res-1",
            change_type=ChangeType.RESERVE,
            quantity=-2,
            before_available=10,
            after_available=8,
            operator="user_1",
            source="checkout",
        )
        db_session.add(log)
        db_session.commit()

        saved_log = db_session.execute(select(InventoryLog)).scalar_one()
        assert saved_log.change_type == ChangeType.RESERVE
        assert saved_log.variant_id is None
        assert saved_log.created_at is not None
