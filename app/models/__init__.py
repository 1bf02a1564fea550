# Models
from .product import Product
from .product_variant import ProductVariant
from .inventory_reservations import InventoryReservation, ReservationStatus
from .inventory_logs import InventoryLog, ChangeType

__all__ = [
    "Product",
    "ProductVariant",
    "InventoryReservation",
    "ReservationStatus",
    "InventoryLog",
    "ChangeType",
]
