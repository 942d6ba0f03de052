from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class InventoryRecord(db.Model):
    """
    Stock position for one sellable item.

    on_hand_quantity: physical units in the store
    reserved_quantity: soft holds from open carts (never negative)

    Created lazily on the first stock-affecting operation and never deleted.
    Only the inventory service mutates these rows; version_id turns lost
    updates from concurrent terminals into StaleDataError.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("item_id", name="uq_inventory_records_item"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("sellable_items.id"), nullable=False)

    on_hand_quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    last_counted_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    item = db.relationship("SellableItem", backref=db.backref("inventory_record", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_quantity(self) -> int:
        return self.on_hand_quantity - self.reserved_quantity

    @property
    def is_low_stock(self) -> bool:
        return self.on_hand_quantity <= self.low_stock_threshold

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "on_hand_quantity": self.on_hand_quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "last_counted_at": to_utc_z(self.last_counted_at),
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """
    Append-only audit of every stock mutation.

    quantity_delta is signed: sale -, return +, adjustment +/-.
    reference_type/reference_id point at the causing order or refund.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_item_created", "item_id", "created_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("sellable_items.id"), nullable=False, index=True)

    # sale, return, adjustment, transfer
    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    actor_id = db.Column(db.Integer, nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "actor_id": self.actor_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class StockReservation(db.Model):
    """
    One cart line's soft hold.

    InventoryRecord.reserved_quantity is the sum of these rows plus any
    anonymous holds. The token travels with the cart line; only a line that
    presents it may count the held units as its own.
    """
    __tablename__ = "stock_reservations"
    __table_args__ = (
        db.UniqueConstraint("token", name="uq_stock_reservations_token"),
        db.CheckConstraint("quantity > 0", name="ck_stock_reservations_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(64), nullable=False)
    item_id = db.Column(db.Integer, db.ForeignKey("sellable_items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
        }


class ImmutableRowError(RuntimeError):
    """Raised when code tries to rewrite an append-only audit row."""


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ImmutableRowError(f"StockMovement {target.id} is append-only")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ImmutableRowError(f"StockMovement {target.id} cannot be deleted")
