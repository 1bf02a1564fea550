"""库存预占业务异常

这些都是可预期的业务结果（参数错误、库存不足等），
只在服务内部用于中断事务，对外统一转换为 ReservationResult。
"""

import enum


class ReservationErrorCode(str, enum.Enum):
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    CONFLICT = "CONFLICT"  # 分布式锁争用，可重试


class ReservationError(Exception):
    code = ReservationErrorCode.INVALID_INPUT

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(ReservationError):
    code = ReservationErrorCode.INVALID_INPUT


class StockOwnerNotFoundError(ReservationError):
    code = ReservationErrorCode.NOT_FOUND

    def __init__(self, product_id: int, variant_id: int = None):
        if variant_id is None:
            message = f"Product {product_id} not found"
        else:
            message = f"Variant {variant_id} of product {product_id} not found"
        super().__init__(message)
        self.product_id = product_id
        self.variant_id = variant_id


class InsufficientStockError(ReservationError):
    code = ReservationErrorCode.INSUFFICIENT_STOCK

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Insufficient stock: {available} available, {requested} requested"
        )
        self.requested = requested
        self.available = available


class ReservationConflictError(ReservationError):
    code = ReservationErrorCode.CONFLICT

    def __init__(self, message: str = "Inventory is busy, please retry"):
        super().__init__(message)
