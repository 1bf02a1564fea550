from sqlalchemy import (
    Column,
    Integer,
    String,
    ForeignKey,
    CheckConstraint,
    TIMESTAMP,
    func,
)
from app.db.base import Base
from app.models.product import IdType


class ProductVariant(Base):
    """商品规格：拥有独立的库存计数，与父商品互不影响"""

    __tablename__ = "product_variants"

    id = Column(
        IdType,
        primary_key=True,
        autoincrement=True,
    )

    product_id = Column(
        IdType,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="所属商品ID",
    )

    sku = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="规格SKU",
    )

    name = Column(
        String(255),
        nullable=False,
        comment="规格名称（如 颜色/尺码）",
    )

    stock_quantity = Column(
        Integer,
        nullable=False,
        server_default="0",
        comment="规格实物库存",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "stock_quantity >= 0",
            name="ck_variant_stock_non_negative",
        ),
    )
