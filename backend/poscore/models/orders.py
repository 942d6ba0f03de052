from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Order(db.Model):
    """
    Sale aggregate root.

    STATUS: pending, completed, cancelled, refunded
    PAYMENT STATUS: pending, partial, paid, refunded

    Money invariant (all cents):
        sum(item.total_cents) == subtotal_cents
        subtotal_cents + tax_amount_cents - discount_amount_cents == total_cents

    subtotal_cents is net of line discounts; discount_amount_cents is the
    order-level (cart) discount. Line discounts stay on the items.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.UniqueConstraint("offline_reference", name="uq_orders_offline_reference"),
        db.Index("ix_orders_cashier_created", "cashier_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    # Client-side number of an order replayed from an offline terminal
    offline_reference = db.Column(db.String(64), nullable=True)

    is_synced = db.Column(db.Boolean, nullable=False, default=False)
    synced_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    payments = db.relationship(
        "Payment",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Payment.id",
    )
    refunds = db.relationship(
        "Refund",
        backref="order",
        lazy=True,
        order_by="Refund.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def line_discount_cents(self) -> int:
        return sum(item.discount_cents for item in self.items)

    @property
    def amount_tendered_cents(self) -> int:
        return sum(p.amount_cents for p in self.payments)

    @property
    def amount_paid_cents(self) -> int:
        """Tendered minus change handed back."""
        return sum(p.amount_cents - (p.change_cents or 0) for p in self.payments)

    @property
    def change_cents(self) -> int:
        return sum(p.change_cents or 0 for p in self.payments)

    @property
    def refunded_cents(self) -> int:
        return sum(r.amount_cents for r in self.refunds)

    def append_note(self, note: str) -> None:
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "subtotal_cents": self.subtotal_cents,
            "line_discount_cents": self.line_discount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "total_cents": self.total_cents,
            "amount_tendered_cents": self.amount_tendered_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_cents": self.change_cents,
            "refunded_cents": self.refunded_cents,
            "notes": self.notes,
            "offline_reference": self.offline_reference,
            "is_synced": self.is_synced,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class OrderItem(db.Model):
    """
    Price/tax/name snapshot taken at sale time.

    subtotal_cents = unit_price_cents * quantity
    total_cents = subtotal_cents - discount_cents (pre-tax)
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("sellable_items.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    tracks_inventory = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_id": self.item_id,
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
        }


class Payment(db.Model):
    """
    Tender record. Several per order for split tender.

    amount_cents is what the customer handed over; change_cents is what
    went back (cash only).
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # cash, card, mobile, bank_transfer, other
    method = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "change_cents": self.change_cents,
            "reference": self.reference,
            "notes": self.notes,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }


class Refund(db.Model):
    """Money returned against a committed order. sum(amount) <= order total."""
    __tablename__ = "refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    # full, partial, items
    refund_type = db.Column(db.String(16), nullable=False)

    processed_by_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    lines = db.relationship("RefundLine", backref="refund", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "method": self.method,
            "refund_type": self.refund_type,
            "processed_by_id": self.processed_by_id,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class RefundLine(db.Model):
    """Units put back into stock by a refund, per order item."""
    __tablename__ = "refund_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)

    order_item = db.relationship("OrderItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_item_id": self.order_item_id,
            "quantity": self.quantity,
            "amount_cents": self.amount_cents,
        }


class OrderSequence(db.Model):
    """Daily order-number counter. One row per business date (YYYYMMDD)."""
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("business_date", name="uq_order_sequences_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_date = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
