from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class SellableItem(db.Model):
    """
    Catalog entry for anything that can be rung up.

    Owned by the catalog collaborator. The transactional core reads it
    for pricing snapshots and never writes pricing fields.
    """
    __tablename__ = "sellable_items"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_sellable_items_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=True)
    # 1000 bps = 10%
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    tracks_inventory = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<SellableItem id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tracks_inventory": self.tracks_inventory,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Customer(db.Model):
    """
    Customer reference. Group discount is master data; the purchase
    counters are maintained by checkout inside the order transaction.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)

    group_discount_bps = db.Column(db.Integer, nullable=False, default=0)

    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "group_discount_bps": self.group_discount_bps,
            "total_spent_cents": self.total_spent_cents,
            "total_orders": self.total_orders,
            "last_purchase_at": to_utc_z(self.last_purchase_at),
        }
