from .catalog import SellableItem, Customer
from .inventory import InventoryRecord, StockMovement, StockReservation, ImmutableRowError
from .orders import Order, OrderItem, Payment, Refund, RefundLine, OrderSequence
from .drawer import CashDrawerSession, CashMovement
from .sync import HeldOrder, SyncQueueEntry

__all__ = [
    "SellableItem",
    "Customer",
    "InventoryRecord",
    "StockMovement",
    "StockReservation",
    "ImmutableRowError",
    "Order",
    "OrderItem",
    "Payment",
    "Refund",
    "RefundLine",
    "OrderSequence",
    "CashDrawerSession",
    "CashMovement",
    "HeldOrder",
    "SyncQueueEntry",
]
