# Overview: Service-layer operations for refunds; bounded, inventory-restoring reversal of committed orders.

"""
Refund Engine

Refunds reverse a committed order, never a pending one. The cap
sum(refunds) <= order.total is checked under the order's write lock
before the refund row exists, so it can never be exceeded after the fact.

A refund is one unit of work: Refund row, stock restore, order status
transition, drawer movement and sync enqueue commit together or not at all.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Order, Refund, RefundLine
from ..money import prorate
from ..time_utils import days_between, utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from . import drawer_service, sync_service
from .concurrency import CONSISTENCY_ERRORS, begin_write, lock_for_update, run_with_retry
from .order_service import ORDER_CANCELLED, ORDER_COMPLETED, ORDER_REFUNDED, restore_order_items, unreturned_quantities
from .payment_service import PAYMENT_STATUS_REFUNDED


class RefundError(ConflictError):
    """Refund rejected. NOT_REFUNDABLE carries the reason, AMOUNT_EXCEEDS_REFUNDABLE the cap."""


# =============================================================================
# REFUND METHODS / TYPES (CONSTANTS)
# =============================================================================

REFUND_CASH = "cash"
REFUND_CARD = "card"
REFUND_MOBILE = "mobile"
REFUND_BANK_TRANSFER = "bank_transfer"
REFUND_STORE_CREDIT = "store_credit"
REFUND_OTHER = "other"

VALID_REFUND_METHODS = [
    REFUND_CASH,
    REFUND_CARD,
    REFUND_MOBILE,
    REFUND_BANK_TRANSFER,
    REFUND_STORE_CREDIT,
    REFUND_OTHER,
]

REFUND_TYPE_FULL = "full"
REFUND_TYPE_PARTIAL = "partial"
REFUND_TYPE_ITEMS = "items"


def refunded_amount(order: Order) -> int:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(Refund.amount_cents), 0))
        .filter(Refund.order_id == order.id)
        .scalar()
    )
    return int(total or 0)


def refunded_line_amounts(order: Order) -> dict[int, int]:
    """order_item_id -> cents already refunded against that line by item refunds."""
    rows = (
        db.session.query(RefundLine.order_item_id, db.func.sum(RefundLine.amount_cents))
        .join(Refund, Refund.id == RefundLine.refund_id)
        .filter(Refund.order_id == order.id)
        .group_by(RefundLine.order_item_id)
        .all()
    )
    return {order_item_id: int(total or 0) for order_item_id, total in rows}


def max_refundable(order: Order) -> int:
    return max(0, order.total_cents - refunded_amount(order))


def can_refund(order: Order, *, now: datetime | None = None) -> tuple[bool, str | None]:
    """
    Returns (True, None) or (False, reason).

    Refundable only when completed, not already fully refunded, and inside
    the configured REFUND_DAYS_LIMIT window (if any).
    """
    if order.status == ORDER_REFUNDED:
        return False, "Order has already been fully refunded"
    if order.status == ORDER_CANCELLED:
        return False, "Cancelled orders cannot be refunded"
    if order.status != ORDER_COMPLETED:
        return False, "Only completed orders can be refunded"
    if max_refundable(order) <= 0:
        return False, "Nothing left to refund"

    days_limit = current_app.config.get("REFUND_DAYS_LIMIT")
    if days_limit is not None and order.created_at is not None:
        if days_between(order.created_at, now or utcnow()) > days_limit:
            return False, f"Refund window of {days_limit} days has passed"
    return True, None


def _validate_request(reason: str, method: str) -> str:
    if method not in VALID_REFUND_METHODS:
        raise ValidationError(f"Invalid refund method: {method}. Must be one of {VALID_REFUND_METHODS}")
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")
    return str(reason).strip()


def _load_refundable_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", code="ORDER_NOT_FOUND", details={"order_id": order_id})
    ok, reason = can_refund(order)
    if not ok:
        raise RefundError(reason, code="NOT_REFUNDABLE", details={"order_id": order.id, "reason": reason})
    return order


def _check_cap(order: Order, amount_cents: int) -> None:
    remaining = max_refundable(order)
    if amount_cents > order.total_cents or amount_cents > remaining:
        raise RefundError(
            f"Refund of {amount_cents} cents exceeds refundable amount of {remaining} cents",
            code="AMOUNT_EXCEEDS_REFUNDABLE",
            details={
                "order_id": order.id,
                "requested_cents": amount_cents,
                "max_refundable_cents": remaining,
            },
        )


def _apply_refund(
    order: Order,
    amount_cents: int,
    *,
    refund_type: str,
    reason: str,
    method: str,
    actor_id: int,
    restore: dict[int, int],
    line_amounts: dict[int, int] | None = None,
) -> Refund:
    """Common path; runs inside the caller's unit of work."""
    refund = Refund(
        order_id=order.id,
        amount_cents=amount_cents,
        reason=reason,
        method=method,
        refund_type=refund_type,
        processed_by_id=actor_id,
        created_at=utcnow(),
    )
    order.refunds.append(refund)
    db.session.flush()

    for order_item_id, quantity in restore.items():
        refund.lines.append(
            RefundLine(
                order_item_id=order_item_id,
                quantity=quantity,
                amount_cents=(line_amounts or {}).get(order_item_id, 0),
            )
        )
    restore_order_items(
        order,
        restore,
        reference_type="refund",
        reference_id=refund.id,
        actor_id=actor_id,
        notes=f"Refund {refund.id} on {order.order_number}",
    )

    if refunded_amount(order) >= order.total_cents:
        order.status = ORDER_REFUNDED
        order.payment_status = PAYMENT_STATUS_REFUNDED

    if method == REFUND_CASH:
        drawer_service.record_cash_movement(
            actor_id,
            drawer_service.MOVEMENT_REFUND,
            amount_cents,
            order_id=order.id,
            refund_id=refund.id,
            reason=reason,
        )

    sync_service.enqueue("order", order.id, sync_service.ACTION_UPDATE)
    db.session.flush()
    return refund


def _run(op, order_id: int) -> Refund:
    try:
        refund = run_with_retry(op, retry_on=CONSISTENCY_ERRORS)
    except CONSISTENCY_ERRORS as exc:
        raise RefundError("Order changed concurrently; please retry", code="CONCURRENT_UPDATE") from exc
    current_app.logger.info(
        "Refund %s (%s, %s cents, %s) on order %s",
        refund.id,
        refund.refund_type,
        refund.amount_cents,
        refund.method,
        order_id,
    )
    return refund


def full_refund(order_id: int, *, reason: str, method: str, actor_id: int) -> Refund:
    """Refund everything still refundable and put every unreturned unit back."""
    reason = _validate_request(reason, method)

    def _op():
        begin_write()
        order = _load_refundable_order(order_id)
        amount = max_refundable(order)
        refund = _apply_refund(
            order,
            amount,
            refund_type=REFUND_TYPE_FULL,
            reason=reason,
            method=method,
            actor_id=actor_id,
            restore=unreturned_quantities(order),
        )
        db.session.commit()
        return refund

    return _run(_op, order_id)


def partial_refund(order_id: int, amount_cents: int, *, reason: str, method: str, actor_id: int) -> Refund:
    """
    Money refund. Stock is not touched unless this refund brings the order
    to its total, in which case every unreturned unit goes back on hand.

    Raises:
        ValidationError: amount <= 0
        RefundError: NOT_REFUNDABLE, or AMOUNT_EXCEEDS_REFUNDABLE when the
            amount is above the order total or above what is left
    """
    reason = _validate_request(reason, method)
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("Refund amount must be positive", code="INVALID_AMOUNT")

    def _op():
        begin_write()
        order = _load_refundable_order(order_id)
        _check_cap(order, amount_cents)
        closes_order = refunded_amount(order) + amount_cents >= order.total_cents
        refund = _apply_refund(
            order,
            amount_cents,
            refund_type=REFUND_TYPE_PARTIAL,
            reason=reason,
            method=method,
            actor_id=actor_id,
            restore=unreturned_quantities(order) if closes_order else {},
        )
        db.session.commit()
        return refund

    return _run(_op, order_id)


def item_refund(order_id: int, items: list[dict], *, reason: str, method: str, actor_id: int) -> Refund:
    """
    Refund specific order lines.

    items: [{"order_item_id": int, "quantity": int}]
    Amount per line = line total x qty / line qty (pre-tax line total).
    The refund that returns a line's last units pays whatever is left of
    the line, so rounding never pays out more than the line total.
    Only the listed units are restocked.
    """
    reason = _validate_request(reason, method)
    if not items:
        raise ValidationError("items must be a non-empty list")

    requested: dict[int, int] = {}
    for index, entry in enumerate(items):
        order_item_id = entry.get("order_item_id")
        quantity = entry.get("quantity")
        if isinstance(order_item_id, bool) or not isinstance(order_item_id, int):
            raise ValidationError(f"items[{index}].order_item_id must be an integer")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be a positive integer")
        requested[order_item_id] = requested.get(order_item_id, 0) + quantity

    def _op():
        begin_write()
        order = _load_refundable_order(order_id)
        lines = {item.id: item for item in order.items}
        remaining = unreturned_quantities(order)
        paid = refunded_line_amounts(order)

        amounts: dict[int, int] = {}
        for order_item_id, quantity in requested.items():
            line = lines.get(order_item_id)
            if line is None:
                raise ValidationError(
                    f"Order item {order_item_id} does not belong to order {order.order_number}",
                    details={"order_item_id": order_item_id},
                )
            left = remaining.get(order_item_id, 0)
            if quantity > left:
                raise RefundError(
                    f"Cannot refund {quantity} of {line.name}; only {left} left to return",
                    code="QUANTITY_EXCEEDS_REFUNDABLE",
                    details={"order_item_id": order_item_id, "requested": quantity, "refundable": left},
                )
            line_balance = max(0, line.total_cents - paid.get(order_item_id, 0))
            if quantity == left:
                amounts[order_item_id] = line_balance
            else:
                amounts[order_item_id] = min(prorate(line.total_cents, quantity, line.quantity), line_balance)

        amount = sum(amounts.values())
        if amount <= 0:
            raise ValidationError("Refund amount must be positive", code="INVALID_AMOUNT")
        _check_cap(order, amount)

        refund = _apply_refund(
            order,
            amount,
            refund_type=REFUND_TYPE_ITEMS,
            reason=reason,
            method=method,
            actor_id=actor_id,
            restore=requested,
            line_amounts=amounts,
        )
        db.session.commit()
        return refund

    return _run(_op, order_id)


# =============================================================================
# READS
# =============================================================================

def refund_history(order_id: int) -> list[Refund]:
    return (
        db.session.query(Refund)
        .filter_by(order_id=order_id)
        .order_by(Refund.created_at.asc(), Refund.id.asc())
        .all()
    )


def refund_status(order_id: int) -> dict:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", code="ORDER_NOT_FOUND", details={"order_id": order_id})
    ok, reason = can_refund(order)
    return {
        "order_id": order.id,
        "can_refund": ok,
        "reason": reason,
        "total_cents": order.total_cents,
        "refunded_cents": refunded_amount(order),
        "max_refundable_cents": max_refundable(order),
        "unreturned_quantities": unreturned_quantities(order),
    }


def refund_statistics(start: datetime | None = None, end: datetime | None = None) -> dict:
    query = db.session.query(Refund)
    if start is not None:
        query = query.filter(Refund.created_at >= start)
    if end is not None:
        query = query.filter(Refund.created_at <= end)
    refunds = query.all()

    by_method: dict[str, int] = {}
    for refund in refunds:
        by_method[refund.method] = by_method.get(refund.method, 0) + refund.amount_cents
    return {
        "count": len(refunds),
        "total_cents": sum(r.amount_cents for r in refunds),
        "by_method": by_method,
    }
