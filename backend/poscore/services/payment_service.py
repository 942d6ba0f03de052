# Overview: Service-layer operations for payments; tenders against orders and derived payment status.

"""
Payment Ledger

Records tenders against an order (split tender = several rows) and derives
payment_status from them:

    paid     if net paid >= total
    partial  if net paid > 0
    pending  otherwise

refunded is terminal and set only by the refund engine. Net paid is the
tendered amount minus any change handed back.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Order, Payment
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_amount_cents, optional_str
from . import drawer_service
from .concurrency import CONSISTENCY_ERRORS, begin_write, lock_for_update, run_with_retry


class PaymentError(ConflictError):
    """Raised for payment operations that conflict with order state."""


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_MOBILE = "mobile"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_OTHER = "other"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_MOBILE,
    METHOD_BANK_TRANSFER,
    METHOD_OTHER,
]


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_REFUNDED = "refunded"


@dataclass
class Tender:
    method: str
    amount_cents: int
    reference: str | None = None
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> "Tender":
        if not isinstance(data, dict):
            raise ValidationError(f"tenders[{index}] must be an object")
        tender = cls(
            method=data.get("method"),
            amount_cents=coerce_amount_cents(data.get("amount_cents"), f"tenders[{index}].amount_cents"),
            reference=optional_str(data.get("reference"), f"tenders[{index}].reference", max_length=128),
            notes=optional_str(data.get("notes"), f"tenders[{index}].notes"),
        )
        validate_tender(tender.method, tender.amount_cents)
        return tender


def parse_tenders(raw) -> list[Tender]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("tenders must be a non-empty list")
    return [Tender.from_dict(entry, index) for index, entry in enumerate(raw)]


def validate_tender(method: str, amount_cents: int) -> None:
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}",
            code="INVALID_PAYMENT_METHOD",
        )
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("Payment amount must be positive", code="INVALID_AMOUNT")


def derive_payment_status(total_cents: int, paid_cents: int) -> str:
    if paid_cents >= total_cents:
        return PAYMENT_STATUS_PAID
    if paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_PENDING


def refresh_payment_status(order: Order) -> str:
    """Recompute from the payment rows. A refunded order stays refunded."""
    if order.payment_status != PAYMENT_STATUS_REFUNDED:
        order.payment_status = derive_payment_status(order.total_cents, order.amount_paid_cents)
    return order.payment_status


def _check_order_accepts_payments(order: Order) -> None:
    if order.status in ("cancelled", "refunded"):
        raise PaymentError(
            f"Cannot add payment to a {order.status} order",
            code="ORDER_CLOSED",
            details={"order_id": order.id, "status": order.status},
        )


def record_payment(
    order_id: int,
    method: str,
    amount_cents: int,
    *,
    actor_id: int,
    reference: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Add a tender to an existing order.

    Cash over-tender becomes change on the payment; other methods may not
    exceed the remaining balance.

    Raises:
        ValidationError: bad method or non-positive amount
        PaymentError: order closed, already paid, or non-cash overpayment
    """
    validate_tender(method, amount_cents)

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", code="ORDER_NOT_FOUND", details={"order_id": order_id})
        _check_order_accepts_payments(order)

        remaining = order.total_cents - order.amount_paid_cents
        if remaining <= 0:
            raise PaymentError(
                f"Order {order.order_number} is already fully paid",
                code="ALREADY_PAID",
                details={"order_id": order.id},
            )

        change = 0
        if amount_cents > remaining:
            if method != METHOD_CASH:
                raise PaymentError(
                    "Non-cash payment cannot exceed the remaining balance",
                    code="OVERPAYMENT",
                    details={"remaining_cents": remaining, "amount_cents": amount_cents},
                )
            change = amount_cents - remaining

        payment = Payment(
            method=method,
            amount_cents=amount_cents,
            change_cents=change,
            reference=reference,
            notes=notes,
            created_by_id=actor_id,
            created_at=utcnow(),
        )
        order.payments.append(payment)
        db.session.flush()

        refresh_payment_status(order)
        if method == METHOD_CASH:
            drawer_service.record_cash_movement(
                actor_id,
                drawer_service.MOVEMENT_SALE,
                amount_cents - change,
                order_id=order.id,
                reason=f"Payment on {order.order_number}",
            )
        db.session.commit()
        return payment

    return run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)


def void_payment(payment_id: int, *, actor_id: int, reason: str) -> Order:
    """
    Remove a payment and recompute the order's payment status.

    Raises:
        PaymentError: the order has been refunded
    """
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op():
        begin_write()
        payment = db.session.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", details={"payment_id": payment_id})
        order = lock_for_update(db.session.query(Order).filter_by(id=payment.order_id)).first()
        if order.status == "refunded":
            raise PaymentError(
                "Cannot void a payment on a refunded order",
                code="ORDER_REFUNDED",
                details={"order_id": order.id, "payment_id": payment_id},
            )

        retained = payment.amount_cents - (payment.change_cents or 0)
        method = payment.method
        order.payments.remove(payment)
        db.session.flush()

        refresh_payment_status(order)
        order.append_note(f"Payment voided: {reason.strip()}")
        if method == METHOD_CASH:
            drawer_service.record_cash_movement(
                actor_id,
                drawer_service.MOVEMENT_SALE,
                -retained,
                order_id=order.id,
                reason=f"Voided payment {payment_id}",
            )
        db.session.commit()
        return order

    order = run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)
    current_app.logger.info("Payment %s voided on order %s by %s", payment_id, order.order_number, actor_id)
    return order


def payment_summary(order_id: int) -> dict:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", code="ORDER_NOT_FOUND", details={"order_id": order_id})

    by_method: dict[str, int] = {}
    for payment in order.payments:
        by_method[payment.method] = by_method.get(payment.method, 0) + payment.amount_cents - (payment.change_cents or 0)

    return {
        "order_id": order.id,
        "total_cents": order.total_cents,
        "tendered_cents": order.amount_tendered_cents,
        "paid_cents": order.amount_paid_cents,
        "change_cents": order.change_cents,
        "remaining_cents": max(0, order.total_cents - order.amount_paid_cents),
        "payment_status": order.payment_status,
        "payment_count": len(order.payments),
        "by_method": by_method,
    }
