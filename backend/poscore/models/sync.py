from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class HeldOrder(db.Model):
    """
    Parked cart. Created on hold, deleted on resume, never updated.

    cart_data holds the serialized cart lines (item refs, quantities and
    discounts), not prices; resuming reprices against the catalog.
    """
    __tablename__ = "held_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    cart_data = db.Column(db.JSON, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "customer_id": self.customer_id,
            "cart": self.cart_data,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class SyncQueueEntry(db.Model):
    """
    Pending propagation of an aggregate to the external order platform.

    Not authoritative state: a separate worker drains pending rows and
    reports back completed/failed.
    """
    __tablename__ = "sync_queue"
    __table_args__ = (
        db.Index("ix_sync_queue_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    aggregate_type = db.Column(db.String(32), nullable=False)
    aggregate_id = db.Column(db.Integer, nullable=False)
    # create, update
    action = db.Column(db.String(16), nullable=False)
    # pending, completed, failed
    status = db.Column(db.String(16), nullable=False, default="pending")

    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    processed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "aggregate_type": self.aggregate_type,
            "aggregate_id": self.aggregate_id,
            "action": self.action,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
        }
