import enum
import uuid

from sqlalchemy import (
    Column,
    String,
    Integer,
    TIMESTAMP,
    func,
    Enum,
    Index,
    ForeignKey,
    CheckConstraint,
)
from app.db.base import Base
from app.models.product import IdType



# 1️ 预占状态枚举（只有 ACTIVE 可以流转，其余均为终态）

class ReservationStatus(str, enum.Enum):
    ACTIVE = "active"         # 持有中
    COMMITTED = "committed"   # 已提交（库存已扣减）
    RELEASED = "released"     # 已释放
    EXPIRED = "expired"       # 已过期（清理任务置位）


TERMINAL_STATUSES = frozenset(
    {ReservationStatus.COMMITTED, ReservationStatus.RELEASED, ReservationStatus.EXPIRED}
)


def _new_reservation_id() -> str:
    return str(uuid.uuid4())



# 2️ 预占表

class InventoryReservation(Base):
    __tablename__ = "inventory_reservations"

    id = Column(
        String(36),
        primary_key=True,
        default=_new_reservation_id,
    )

    product_id = Column(
        IdType,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        comment="商品ID",
    )

    variant_id = Column(
        IdType,
        ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=True,
        comment="规格ID（为空表示商品本身的库存）",
    )

    quantity = Column(
        Integer,
        nullable=False,
        comment="预占数量",
    )

    user_id = Column(
        String(64),
        nullable=True,
        index=True,
        comment="登录用户ID",
    )

    session_id = Column(
        String(128),
        nullable=True,
        comment="匿名会话ID",
    )

    order_id = Column(
        String(64),
        nullable=True,
        index=True,
        comment="关联订单ID",
    )

    status = Column(
        Enum(
            ReservationStatus,
            name="reservation_status_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=ReservationStatus.ACTIVE,
        server_default=ReservationStatus.ACTIVE.value,
        comment="预占状态",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    expires_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        comment="预占过期时间",
    )

    released_at = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="释放/过期时间",
    )

    committed_at = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="提交时间",
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        # 持有人二选一：登录用户或匿名会话
        CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)",
            name="ck_reservation_single_holder",
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES



# 3️ 高频查询优化索引

Index(
    "idx_reservation_owner_status",
    InventoryReservation.product_id,
    InventoryReservation.variant_id,
    InventoryReservation.status,
)

Index(
    "idx_reservation_status_expires",
    InventoryReservation.status,
    InventoryReservation.expires_at,
)
