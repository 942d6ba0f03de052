# Overview: Read access to catalog master data (sellable items, customers).

from __future__ import annotations

from ..extensions import db
from ..models import SellableItem, Customer
from ..validation import NotFoundError, ValidationError


class CatalogError(NotFoundError):
    """Raised when a referenced catalog entry does not exist."""


def find_sellable_item(item_id: int) -> SellableItem | None:
    return db.session.get(SellableItem, item_id)


def get_sellable_item(item_id: int) -> SellableItem:
    item = find_sellable_item(item_id)
    if item is None:
        raise CatalogError(f"Item {item_id} not found", code="ITEM_NOT_FOUND", details={"item_id": item_id})
    return item


def get_sellable_items(item_ids) -> dict[int, SellableItem]:
    ids = list(set(item_ids))
    if not ids:
        return {}
    rows = db.session.query(SellableItem).filter(SellableItem.id.in_(ids)).all()
    return {row.id: row for row in rows}


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise CatalogError(
            f"Customer {customer_id} not found",
            code="CUSTOMER_NOT_FOUND",
            details={"customer_id": customer_id},
        )
    return customer


def create_sellable_item(
    *,
    sku: str,
    name: str,
    price_cents: int,
    tax_rate_bps: int = 0,
    cost_cents: int | None = None,
    tracks_inventory: bool = True,
) -> SellableItem:
    """
    Bootstrap helper for the catalog side (CLI seeding, fixtures).
    The transactional services never call this.
    """
    if price_cents < 0:
        raise ValidationError("price_cents must be >= 0")
    if not 0 <= tax_rate_bps <= 10_000:
        raise ValidationError("tax_rate_bps must be between 0 and 10000")
    if db.session.query(SellableItem.id).filter_by(sku=sku).first():
        raise ValidationError(f"SKU {sku} already exists", code="DUPLICATE_SKU")

    item = SellableItem(
        sku=sku,
        name=name,
        price_cents=price_cents,
        cost_cents=cost_cents,
        tax_rate_bps=tax_rate_bps,
        tracks_inventory=tracks_inventory,
        is_active=True,
    )
    db.session.add(item)
    db.session.commit()
    return item
