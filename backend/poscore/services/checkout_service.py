# Overview: Service-layer operations for checkout; atomic order creation, quick cash and held carts.

"""
Checkout Orchestrator

process_checkout() turns a cart plus tenders into a committed Order in one
unit of work:

    begin_write -> re-validate cart -> price -> check tenders
    -> allocate order number -> items + consume stock -> payments
    -> drawer movement -> sync enqueue -> customer stats -> commit

Any failure rolls the whole unit back: no Order, OrderItem, Payment,
StockMovement or CashMovement from a failed attempt is ever visible.
Lock waits, optimistic-lock conflicts and order-number races are retried
with backoff; once retries run out they surface as CONCURRENT_UPDATE.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import delete

from ..extensions import db
from ..models import Order, OrderItem, Payment, HeldOrder
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from . import catalog_service, cart_service, drawer_service, inventory_service, payment_service, sequence_service, sync_service
from .cart_service import Cart
from .concurrency import CONSISTENCY_ERRORS, begin_write, run_with_retry
from .order_service import ORDER_COMPLETED
from .payment_service import Tender, METHOD_CASH


class CheckoutError(ConflictError):
    """Checkout rejected; ``code`` says why, ``details`` carries the full error set."""


class InsufficientPaymentError(ConflictError):
    code = "INSUFFICIENT_PAYMENT"

    def __init__(self, total_cents: int, tendered_cents: int):
        shortfall = total_cents - tendered_cents
        super().__init__(
            f"Insufficient payment: {shortfall} cents short",
            details={
                "total_cents": total_cents,
                "tendered_cents": tendered_cents,
                "shortfall_cents": shortfall,
            },
        )
        self.shortfall_cents = shortfall


class DuplicateOfflineOrder(ConflictError):
    code = "DUPLICATE_OFFLINE_ORDER"


class HeldOrderNotFound(NotFoundError):
    code = "HELD_ORDER_NOT_FOUND"


def calculate_change(total_cents: int, tendered_cents: int) -> int:
    return max(0, tendered_cents - total_cents)


def _cart_error(errors: list[dict]) -> CheckoutError:
    codes = {error["code"] for error in errors}
    if "EMPTY_CART" in codes:
        return CheckoutError("Cart is empty", code="EMPTY_CART", details={"errors": errors})
    stock = [error for error in errors if error["code"] == "STOCK_UNAVAILABLE"]
    if stock:
        return CheckoutError(
            "One or more items are out of stock",
            code="STOCK_UNAVAILABLE",
            details={"items": stock, "errors": errors},
        )
    return CheckoutError("Cart failed validation", code="CART_INVALID", details={"errors": errors})


def _split_change(tenders: list[Tender], change_cents: int) -> list[int]:
    """Attribute change to cash tenders, last tender first."""
    allocation = [0] * len(tenders)
    remaining = change_cents
    for index in range(len(tenders) - 1, -1, -1):
        if remaining <= 0:
            break
        if tenders[index].method != METHOD_CASH:
            continue
        portion = min(remaining, tenders[index].amount_cents)
        allocation[index] = portion
        remaining -= portion
    return allocation


def _update_customer_stats(customer_id: int, total_cents: int) -> None:
    customer = catalog_service.get_customer(customer_id)
    customer.total_spent_cents = (customer.total_spent_cents or 0) + total_cents
    customer.total_orders = (customer.total_orders or 0) + 1
    customer.last_purchase_at = utcnow()


def process_checkout(
    cart: Cart,
    tenders: list[Tender],
    *,
    cashier_id: int,
    customer_id: int | None = None,
    cart_discount_cents: int = 0,
    notes: str | None = None,
    offline_reference: str | None = None,
) -> Order:
    """
    Commit a sale.

    Args:
        cart: lines to sell; re-validated against live stock here
        tenders: one or more payments; their sum must cover the total
        cashier_id: acting cashier (stamps order, movements, drawer)
        customer_id: optional customer, written once on the order
        cart_discount_cents: order-level discount, clamped to the subtotal
        notes: free-text order note
        offline_reference: client-side number of a replayed offline order

    Returns:
        The committed Order with items and payments loaded

    Raises:
        ValidationError: malformed tenders or discount
        CheckoutError: EMPTY_CART, STOCK_UNAVAILABLE, CART_INVALID, CONCURRENT_UPDATE
        InsufficientPaymentError: tenders below total (carries shortfall)
        InsufficientStockError: stock vanished between validation and consumption
    """
    if not tenders:
        raise ValidationError("At least one tender is required")
    for tender in tenders:
        payment_service.validate_tender(tender.method, tender.amount_cents)
    if cart_discount_cents < 0:
        raise ValidationError("cart_discount_cents cannot be negative")

    def _op():
        begin_write()

        if offline_reference:
            existing = db.session.query(Order).filter_by(offline_reference=offline_reference).first()
            if existing is not None:
                raise DuplicateOfflineOrder(
                    f"Offline order {offline_reference} was already synced as {existing.order_number}",
                    details={"order_id": existing.id, "order_number": existing.order_number},
                )

        errors = cart_service.validate_cart(cart)
        if errors:
            raise _cart_error(errors)
        if customer_id is not None:
            catalog_service.get_customer(customer_id)

        totals = cart_service.price_cart(cart, cart_discount_cents)

        tendered = sum(t.amount_cents for t in tenders)
        if tendered < totals.total_cents:
            raise InsufficientPaymentError(totals.total_cents, tendered)
        change = calculate_change(totals.total_cents, tendered)
        cash_tendered = sum(t.amount_cents for t in tenders if t.method == METHOD_CASH)
        if change > cash_tendered:
            raise ValidationError(
                "Non-cash tenders cannot exceed the order total",
                code="OVERPAYMENT",
                details={"total_cents": totals.total_cents, "tendered_cents": tendered},
            )

        now = utcnow()
        order = Order(
            order_number=sequence_service.next_order_number(at=now),
            customer_id=customer_id,
            cashier_id=cashier_id,
            status=ORDER_COMPLETED,
            payment_status=payment_service.PAYMENT_STATUS_PENDING,
            subtotal_cents=totals.subtotal_cents,
            discount_amount_cents=totals.cart_discount_cents,
            tax_amount_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            notes=notes,
            offline_reference=offline_reference,
            created_at=now,
        )
        db.session.add(order)
        db.session.flush()

        tokens = {line.item_id: line.reservation_token for line in cart.lines}
        for line in totals.lines:
            order.items.append(
                OrderItem(
                    item_id=line.item_id,
                    sku=line.sku,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    tax_rate_bps=line.tax_rate_bps,
                    tax_cents=line.tax_cents,
                    discount_cents=line.discount_cents,
                    subtotal_cents=line.subtotal_cents,
                    total_cents=line.total_cents,
                    tracks_inventory=line.tracks_inventory,
                )
            )
            if line.tracks_inventory:
                inventory_service.consume_locked(
                    line.item_id,
                    line.quantity,
                    reference_type="order",
                    reference_id=order.id,
                    actor_id=cashier_id,
                    hold=inventory_service.get_hold(tokens.get(line.item_id), line.item_id, lock=True),
                )

        for tender, change_part in zip(tenders, _split_change(tenders, change)):
            order.payments.append(
                Payment(
                    method=tender.method,
                    amount_cents=tender.amount_cents,
                    change_cents=change_part,
                    reference=tender.reference,
                    notes=tender.notes,
                    created_by_id=cashier_id,
                    created_at=now,
                )
            )
        db.session.flush()
        payment_service.refresh_payment_status(order)

        cash_retained = cash_tendered - change
        if cash_retained > 0:
            drawer_service.record_cash_movement(
                cashier_id,
                drawer_service.MOVEMENT_SALE,
                cash_retained,
                order_id=order.id,
                reason=f"Sale {order.order_number}",
            )

        sync_service.enqueue("order", order.id, sync_service.ACTION_CREATE)

        if customer_id is not None:
            _update_customer_stats(customer_id, totals.total_cents)

        db.session.commit()
        return order

    try:
        order = run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)
    except CONSISTENCY_ERRORS as exc:
        current_app.logger.warning("Checkout gave up after retries: %s", exc)
        raise CheckoutError(
            "Checkout could not complete due to concurrent updates; please retry",
            code="CONCURRENT_UPDATE",
        ) from exc

    current_app.logger.info(
        "Order %s completed by cashier %s: total %s cents, %d item(s)",
        order.order_number,
        cashier_id,
        order.total_cents,
        len(order.items),
    )
    return order


def quick_cash_checkout(
    cart: Cart,
    cash_tendered_cents: int,
    *,
    cashier_id: int,
    customer_id: int | None = None,
    cart_discount_cents: int = 0,
    notes: str | None = None,
) -> tuple[Order, int]:
    """Single cash tender. Returns (order, change_cents)."""
    order = process_checkout(
        cart,
        [Tender(method=METHOD_CASH, amount_cents=cash_tendered_cents)],
        cashier_id=cashier_id,
        customer_id=customer_id,
        cart_discount_cents=cart_discount_cents,
        notes=notes,
    )
    return order, calculate_change(order.total_cents, cash_tendered_cents)


def checkout_summary(cart: Cart, cart_discount_cents: int = 0, tenders: list[Tender] | None = None) -> dict:
    """Pricing preview; nothing is written."""
    summary = cart_service.cart_summary(cart, cart_discount_cents)
    if tenders is not None and summary["totals"] is not None:
        total = summary["totals"]["total_cents"]
        tendered = sum(t.amount_cents for t in tenders)
        summary["tendered_cents"] = tendered
        summary["remaining_cents"] = max(0, total - tendered)
        summary["change_cents"] = calculate_change(total, tendered)
    return summary


# =============================================================================
# HELD ORDERS
# =============================================================================

def hold_order(cart: Cart, *, cashier_id: int, customer_id: int | None = None, notes: str | None = None) -> HeldOrder:
    """Park a cart. Line reservations stay in place while it is held."""
    if cart is None or cart.is_empty:
        raise ValidationError("Cannot hold an empty cart", code="EMPTY_CART")
    if customer_id is not None:
        catalog_service.get_customer(customer_id)

    def _op():
        held = HeldOrder(
            cashier_id=cashier_id,
            customer_id=customer_id,
            cart_data=cart.to_dict(),
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(held)
        db.session.commit()
        return held

    held = run_with_retry(_op)
    current_app.logger.info("Cart held as %s by cashier %s", held.id, cashier_id)
    return held


def resume_held_order(held_order_id: int) -> tuple[Cart, int | None]:
    """
    Load and delete a held cart. A held order resumes exactly once; the
    second caller gets HeldOrderNotFound.
    """
    def _op():
        begin_write()
        held = db.session.get(HeldOrder, held_order_id)
        if held is None:
            raise HeldOrderNotFound(
                f"Held order {held_order_id} not found",
                details={"held_order_id": held_order_id},
            )
        cart = Cart.from_dict(held.cart_data)
        customer_id = held.customer_id
        result = db.session.execute(delete(HeldOrder).where(HeldOrder.id == held_order_id))
        if result.rowcount != 1:
            raise HeldOrderNotFound(
                f"Held order {held_order_id} was already resumed",
                details={"held_order_id": held_order_id},
            )
        db.session.commit()
        return cart, customer_id

    return run_with_retry(_op)


def list_held_orders(*, cashier_id: int | None = None) -> list[HeldOrder]:
    query = db.session.query(HeldOrder)
    if cashier_id is not None:
        query = query.filter_by(cashier_id=cashier_id)
    return query.order_by(HeldOrder.created_at.desc(), HeldOrder.id.desc()).all()


def expire_held_orders(*, max_age_hours: int | None = None, now: datetime | None = None) -> dict:
    """
    Drop held carts older than the cutoff and give their soft holds back.

    max_age_hours defaults to HELD_ORDER_TTL_HOURS.
    Returns {"expired": n, "units_released": m}.
    """
    if max_age_hours is None:
        max_age_hours = current_app.config.get("HELD_ORDER_TTL_HOURS", 24)
    if isinstance(max_age_hours, bool) or not isinstance(max_age_hours, int) or max_age_hours < 0:
        raise ValidationError("max_age_hours must be a non-negative integer")
    cutoff = (now or utcnow()) - timedelta(hours=max_age_hours)

    def _op():
        begin_write()
        stale = db.session.query(HeldOrder).filter(HeldOrder.created_at < cutoff).all()
        released = 0
        for held in stale:
            for line in Cart.from_dict(held.cart_data).lines:
                released += inventory_service.release_hold_locked(line.item_id, line.reservation_token)
            db.session.delete(held)
        db.session.commit()
        return {"expired": len(stale), "units_released": released}

    result = run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)
    if result["expired"]:
        current_app.logger.info(
            "Expired %d held cart(s) older than %s hour(s); released %d unit(s)",
            result["expired"],
            max_age_hours,
            result["units_released"],
        )
    return result
