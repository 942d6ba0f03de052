# Overview: Service-layer operations for orders; lookups, returned quantities and cancellation.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem, RefundLine, Refund
from ..validation import ConflictError, NotFoundError, ValidationError
from . import inventory_service, sync_service
from .concurrency import CONSISTENCY_ERRORS, begin_write, lock_for_update, run_with_retry


class OrderError(ConflictError):
    """Raised for order state conflicts."""


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

ORDER_PENDING = "pending"
ORDER_COMPLETED = "completed"
ORDER_CANCELLED = "cancelled"
ORDER_REFUNDED = "refunded"

VALID_ORDER_STATUSES = [ORDER_PENDING, ORDER_COMPLETED, ORDER_CANCELLED, ORDER_REFUNDED]


def get_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", code="ORDER_NOT_FOUND", details={"order_id": order_id})
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise NotFoundError(
            f"Order {order_number} not found",
            code="ORDER_NOT_FOUND",
            details={"order_number": order_number},
        )
    return order


def list_orders(*, cashier_id: int | None = None, status: str | None = None, limit: int = 50) -> list[Order]:
    if status and status not in VALID_ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_ORDER_STATUSES}")
    query = db.session.query(Order)
    if cashier_id is not None:
        query = query.filter_by(cashier_id=cashier_id)
    if status:
        query = query.filter_by(status=status)
    limit = max(1, min(limit, 500))
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def returned_quantities(order: Order) -> dict[int, int]:
    """Units already put back into stock, keyed by order item id."""
    rows = (
        db.session.query(RefundLine.order_item_id, db.func.sum(RefundLine.quantity))
        .join(Refund, Refund.id == RefundLine.refund_id)
        .filter(Refund.order_id == order.id)
        .group_by(RefundLine.order_item_id)
        .all()
    )
    return {order_item_id: int(qty or 0) for order_item_id, qty in rows}


def unreturned_quantities(order: Order) -> dict[int, int]:
    returned = returned_quantities(order)
    remaining = {}
    for item in order.items:
        left = item.quantity - returned.get(item.id, 0)
        if left > 0:
            remaining[item.id] = left
    return remaining


def restore_order_items(order: Order, quantities: dict[int, int], *, reference_type: str, reference_id: int, actor_id: int | None, notes: str) -> None:
    """Put units of the given order items back on hand (inside the caller's unit of work)."""
    items = {item.id: item for item in order.items}
    for order_item_id, quantity in quantities.items():
        item: OrderItem = items[order_item_id]
        if not item.tracks_inventory or quantity <= 0:
            continue
        inventory_service.restore_locked(
            item.item_id,
            quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            actor_id=actor_id,
            notes=notes,
        )


def cancel_order(order_id: int, *, actor_id: int, reason: str | None = None) -> Order:
    """
    Cancel an order and put its unreturned stock back.

    Raises:
        OrderError: order already cancelled or refunded
    """
    def _op():
        begin_write()
        order = get_order(order_id, lock=True)
        if order.status in (ORDER_CANCELLED, ORDER_REFUNDED):
            raise OrderError(
                f"Order {order.order_number} cannot be cancelled (status {order.status})",
                code="NOT_CANCELLABLE",
                details={"order_id": order.id, "status": order.status},
            )

        if order.status == ORDER_COMPLETED:
            remaining = unreturned_quantities(order)
            restore_order_items(
                order,
                remaining,
                reference_type="order",
                reference_id=order.id,
                actor_id=actor_id,
                notes=f"Cancelled order {order.order_number}",
            )

        order.status = ORDER_CANCELLED
        order.append_note(f"Order cancelled: {reason}" if reason else "Order cancelled")
        sync_service.enqueue("order", order.id, sync_service.ACTION_UPDATE)
        db.session.commit()
        return order

    try:
        order = run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)
    except CONSISTENCY_ERRORS as exc:
        raise OrderError("Order changed concurrently; please retry", code="CONCURRENT_UPDATE") from exc

    current_app.logger.info("Order %s cancelled by %s", order.order_number, actor_id)
    return order
