# Overview: Service-layer operations for the inventory ledger; stock positions, reservations and the movement log.

"""
Inventory Ledger

Owns InventoryRecord (on-hand / reserved per item) and the append-only
StockMovement log.

DESIGN:
- reserve/release move soft holds only; on-hand is untouched
- a cart line owns its hold through a StockReservation token; a sale may
  take free units plus its own held units, never another line's hold
- consume is the hard decrement at checkout commit, re-checked at that instant
- restore/adjust/count append movements and never rewrite history
- every mutation either fully applies or raises, leaving the record unchanged

The *_locked functions do the work without commit so orchestrators
(checkout, refunds, offline sync) can fold them into their own unit of
work. The public functions wrap them with begin_write + retry + commit.
"""

from __future__ import annotations

import secrets

from flask import current_app

from ..extensions import db
from ..models import InventoryRecord, StockMovement, StockReservation, SellableItem
from ..time_utils import utcnow
from ..validation import ConflictError, ValidationError
from . import catalog_service
from .concurrency import CONSISTENCY_ERRORS, begin_write, lock_for_update, run_with_retry
from .notification_service import crossed_low_stock, queue_low_stock_signal


class InventoryError(ConflictError):
    """Raised when a stock mutation would break a ledger rule."""


class InsufficientStockError(ConflictError):
    """Typed, recoverable shortage. Carries requested and available units."""

    code = "STOCK_UNAVAILABLE"

    def __init__(self, item_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for item {item_id}: requested {requested}, available {available}",
            details={"item_id": item_id, "requested": requested, "available": available},
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available


# =============================================================================
# MOVEMENT TYPES (CONSTANTS)
# =============================================================================

MOVEMENT_SALE = "sale"
MOVEMENT_RETURN = "return"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TRANSFER = "transfer"

VALID_MOVEMENT_TYPES = [
    MOVEMENT_SALE,
    MOVEMENT_RETURN,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_TRANSFER,
]


def _require_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if quantity <= 0:
        raise ValidationError("quantity must be positive")
    return quantity


def _get_record(item_id: int, *, lock: bool = False) -> InventoryRecord | None:
    query = db.session.query(InventoryRecord).filter_by(item_id=item_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def _get_or_create_record(item_id: int, *, lock: bool = True) -> InventoryRecord:
    """Records are created lazily on the first stock-affecting operation."""
    record = _get_record(item_id, lock=lock)
    if record is not None:
        return record

    catalog_service.get_sellable_item(item_id)
    record = InventoryRecord(
        item_id=item_id,
        on_hand_quantity=0,
        reserved_quantity=0,
        low_stock_threshold=current_app.config.get("LOW_STOCK_THRESHOLD", 10),
    )
    db.session.add(record)
    db.session.flush()
    return record


def _append_movement(
    record: InventoryRecord,
    *,
    movement_type: str,
    quantity_delta: int,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_id: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        item_id=record.item_id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        quantity_after=record.on_hand_quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        actor_id=actor_id,
        notes=notes,
        created_at=utcnow(),
    )
    db.session.add(movement)
    return movement


def _set_on_hand(record: InventoryRecord, new_quantity: int) -> None:
    previous = record.on_hand_quantity
    record.on_hand_quantity = new_quantity
    if crossed_low_stock(previous, new_quantity, record.low_stock_threshold):
        queue_low_stock_signal(
            item_id=record.item_id,
            previous=previous,
            current=new_quantity,
            threshold=record.low_stock_threshold,
        )


# =============================================================================
# UNIT-OF-WORK PRIMITIVES (no commit)
# =============================================================================

def reserve_locked(item_id: int, quantity: int) -> InventoryRecord:
    quantity = _require_positive_quantity(quantity)
    record = _get_or_create_record(item_id)
    available = record.available_quantity
    if available < quantity:
        raise InsufficientStockError(item_id, quantity, max(available, 0))
    record.reserved_quantity += quantity
    db.session.flush()
    return record


def release_locked(item_id: int, quantity: int) -> InventoryRecord | None:
    quantity = _require_positive_quantity(quantity)
    record = _get_record(item_id, lock=True)
    if record is None:
        current_app.logger.warning("Release of %s units for item %s with no inventory record", quantity, item_id)
        return None
    if quantity > record.reserved_quantity:
        current_app.logger.warning(
            "Over-release for item %s: releasing %s, only %s reserved",
            item_id,
            quantity,
            record.reserved_quantity,
        )
    record.reserved_quantity = max(0, record.reserved_quantity - quantity)
    db.session.flush()
    return record


def consume_locked(
    item_id: int,
    quantity: int,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_id: int | None = None,
    notes: str | None = None,
    hold: StockReservation | None = None,
) -> StockMovement:
    """
    Hard decrement at sale commit.

    The sale may take free units (on_hand - reserved) plus the units of its
    own hold. Units held for other carts are off limits, so the check fails
    without touching the record when free + own hold < qty. The hold is
    drawn down by min(reserved, held) and closed.
    """
    quantity = _require_positive_quantity(quantity)
    record = _get_or_create_record(item_id)
    if hold is not None and hold.item_id != item_id:
        hold = None
    held = min(hold.quantity, record.reserved_quantity) if hold is not None else 0
    available = record.available_quantity + held
    if available < quantity:
        raise InsufficientStockError(item_id, quantity, max(available, 0))

    _set_on_hand(record, record.on_hand_quantity - quantity)
    record.reserved_quantity -= held
    if hold is not None:
        db.session.delete(hold)
    movement = _append_movement(
        record,
        movement_type=MOVEMENT_SALE,
        quantity_delta=-quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        actor_id=actor_id,
        notes=notes,
    )
    db.session.flush()
    return movement


def restore_locked(
    item_id: int,
    quantity: int,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_id: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    quantity = _require_positive_quantity(quantity)
    record = _get_or_create_record(item_id)
    _set_on_hand(record, record.on_hand_quantity + quantity)
    movement = _append_movement(
        record,
        movement_type=MOVEMENT_RETURN,
        quantity_delta=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        actor_id=actor_id,
        notes=notes,
    )
    db.session.flush()
    return movement


def adjust_locked(
    item_id: int,
    quantity_delta: int,
    *,
    notes: str | None = None,
    actor_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> StockMovement:
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int):
        raise ValidationError("quantity_delta must be an integer")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero")

    record = _get_or_create_record(item_id)
    new_quantity = record.on_hand_quantity + quantity_delta
    if new_quantity < 0:
        raise InventoryError(
            f"Adjustment would make on-hand negative for item {item_id}",
            code="NEGATIVE_STOCK",
            details={"item_id": item_id, "on_hand": record.on_hand_quantity, "delta": quantity_delta},
        )
    _set_on_hand(record, new_quantity)
    movement = _append_movement(
        record,
        movement_type=MOVEMENT_ADJUSTMENT,
        quantity_delta=quantity_delta,
        reference_type=reference_type,
        reference_id=reference_id,
        actor_id=actor_id,
        notes=notes,
    )
    db.session.flush()
    return movement


def count_locked(
    item_id: int,
    counted_quantity: int,
    *,
    notes: str | None = None,
    actor_id: int | None = None,
) -> tuple[InventoryRecord, StockMovement | None]:
    """Stock count: one adjustment of (counted - current), then stamp last_counted_at."""
    if isinstance(counted_quantity, bool) or not isinstance(counted_quantity, int):
        raise ValidationError("counted_quantity must be an integer")
    if counted_quantity < 0:
        raise ValidationError("counted_quantity must be >= 0")

    record = _get_or_create_record(item_id)
    delta = counted_quantity - record.on_hand_quantity
    movement = None
    if delta != 0:
        movement = adjust_locked(
            item_id,
            delta,
            notes=notes or f"Stock count: {record.on_hand_quantity} -> {counted_quantity}",
            actor_id=actor_id,
        )
    record.last_counted_at = utcnow()
    db.session.flush()
    return record, movement


def _new_hold_token() -> str:
    return secrets.token_hex(16)


def get_hold(token: str | None, item_id: int, *, lock: bool = False) -> StockReservation | None:
    """The hold behind ``token``, or None when it is unknown or belongs to another item."""
    if not token:
        return None
    query = db.session.query(StockReservation).filter_by(token=token, item_id=item_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def held_quantity(token: str | None, item_id: int) -> int:
    hold = get_hold(token, item_id)
    return hold.quantity if hold else 0


def hold_locked(item_id: int, quantity: int, *, token: str | None = None) -> StockReservation | None:
    """
    Set a cart line's hold to ``quantity`` units.

    An unknown or missing token opens a new hold. Zero closes the hold and
    returns None. The difference goes through reserve/release, so growing
    a hold needs free stock.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise ValidationError("quantity must be a non-negative integer")

    hold = get_hold(token, item_id, lock=True)
    current = hold.quantity if hold else 0
    if quantity > current:
        reserve_locked(item_id, quantity - current)
    elif quantity < current:
        release_locked(item_id, current - quantity)

    if quantity == 0:
        if hold is not None:
            db.session.delete(hold)
            db.session.flush()
        return None
    if hold is None:
        hold = StockReservation(token=_new_hold_token(), item_id=item_id, quantity=quantity, created_at=utcnow())
        db.session.add(hold)
    else:
        hold.quantity = quantity
    db.session.flush()
    return hold


def release_hold_locked(item_id: int, token: str | None) -> int:
    """Close a hold. Returns the units given back (0 for an unknown token)."""
    hold = get_hold(token, item_id, lock=True)
    if hold is None:
        return 0
    released = hold.quantity
    hold_locked(item_id, 0, token=token)
    return released


# =============================================================================
# PUBLIC OPERATIONS (own transaction)
# =============================================================================

def hold_stock(item_id: int, quantity: int, *, token: str | None = None) -> StockReservation | None:
    """
    Create or resize a cart line's hold.

    Raises:
        InsufficientStockError: the hold grows by more than the free stock
    """
    def _op():
        begin_write()
        hold = hold_locked(item_id, quantity, token=token)
        db.session.commit()
        return hold

    return run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)


def release_hold(item_id: int, token: str | None) -> int:
    def _op():
        begin_write()
        released = release_hold_locked(item_id, token)
        db.session.commit()
        return released

    return run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)


def reserve_stock(item_id: int, quantity: int) -> InventoryRecord:
    """
    Soft-hold stock for a cart line.

    Raises:
        InsufficientStockError: available (on_hand - reserved) < quantity
    """
    def _op():
        begin_write()
        record = reserve_locked(item_id, quantity)
        db.session.commit()
        return record

    return run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)


def release_stock(item_id: int, quantity: int) -> InventoryRecord | None:
    """Drop a soft hold. Over-release is logged and floored at zero."""
    def _op():
        begin_write()
        record = release_locked(item_id, quantity)
        db.session.commit()
        return record

    return run_with_retry(_op)


def consume_stock(item_id: int, quantity: int, *, reference_type=None, reference_id=None, actor_id=None, notes=None, hold_token=None) -> StockMovement:
    def _op():
        begin_write()
        movement = consume_locked(
            item_id,
            quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            actor_id=actor_id,
            notes=notes,
            hold=get_hold(hold_token, item_id, lock=True),
        )
        db.session.commit()
        return movement

    return run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)


def restore_stock(item_id: int, quantity: int, *, reference_type=None, reference_id=None, actor_id=None, notes=None) -> StockMovement:
    def _op():
        begin_write()
        movement = restore_locked(
            item_id,
            quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            actor_id=actor_id,
            notes=notes,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)


def adjust_stock(item_id: int, quantity_delta: int, *, notes: str | None = None, actor_id: int | None = None) -> StockMovement:
    """Signed manual correction. Rejects zero deltas and negative results."""
    def _op():
        begin_write()
        movement = adjust_locked(item_id, quantity_delta, notes=notes, actor_id=actor_id)
        db.session.commit()
        return movement

    return run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)


def count_stock(item_id: int, counted_quantity: int, *, notes: str | None = None, actor_id: int | None = None) -> InventoryRecord:
    def _op():
        begin_write()
        record, _ = count_locked(item_id, counted_quantity, notes=notes, actor_id=actor_id)
        db.session.commit()
        return record

    return run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)


def bulk_adjust(adjustments: list[dict], *, actor_id: int | None = None) -> list[StockMovement]:
    """
    Apply several adjustments atomically.

    Each entry: {"item_id": int, "quantity_delta": int, "notes": str?}.
    One bad entry aborts the whole batch.
    """
    if not adjustments:
        raise ValidationError("adjustments must be a non-empty list")

    def _op():
        begin_write()
        movements = []
        for entry in adjustments:
            movements.append(
                adjust_locked(
                    entry["item_id"],
                    entry["quantity_delta"],
                    notes=entry.get("notes"),
                    actor_id=actor_id,
                )
            )
        db.session.commit()
        return movements

    return run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)


def update_low_stock_threshold(item_id: int, threshold: int) -> InventoryRecord:
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
        raise ValidationError("threshold must be a non-negative integer")

    def _op():
        begin_write()
        record = _get_or_create_record(item_id)
        record.low_stock_threshold = threshold
        db.session.commit()
        return record

    return run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)


# =============================================================================
# READS (derived at read time)
# =============================================================================

def get_record(item_id: int) -> InventoryRecord | None:
    return _get_record(item_id)


def get_available(item_id: int) -> int:
    record = _get_record(item_id)
    return record.available_quantity if record else 0


def is_in_stock(item_id: int, quantity: int = 1) -> bool:
    return get_available(item_id) >= quantity


def is_low_stock(item_id: int) -> bool:
    record = _get_record(item_id)
    if record is None:
        return True
    return record.is_low_stock


def get_stock_status(item_id: int) -> dict:
    item = catalog_service.get_sellable_item(item_id)
    record = _get_record(item_id)
    if record is None:
        return {
            "item_id": item_id,
            "sku": item.sku,
            "tracks_inventory": item.tracks_inventory,
            "on_hand_quantity": 0,
            "reserved_quantity": 0,
            "available_quantity": 0,
            "low_stock_threshold": current_app.config.get("LOW_STOCK_THRESHOLD", 10),
            "is_low_stock": True,
            "last_counted_at": None,
        }
    data = record.to_dict()
    data["sku"] = item.sku
    data["tracks_inventory"] = item.tracks_inventory
    return data


def list_low_stock(limit: int = 200) -> list[InventoryRecord]:
    return (
        db.session.query(InventoryRecord)
        .join(SellableItem, SellableItem.id == InventoryRecord.item_id)
        .filter(
            SellableItem.is_active.is_(True),
            SellableItem.tracks_inventory.is_(True),
            InventoryRecord.on_hand_quantity <= InventoryRecord.low_stock_threshold,
        )
        .order_by(InventoryRecord.on_hand_quantity.asc(), InventoryRecord.item_id.asc())
        .limit(limit)
        .all()
    )


def list_movements(item_id: int, limit: int = 200) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(item_id=item_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def ledger_quantity(item_id: int) -> int:
    """Sum of the movement log; equals on_hand for items whose history starts at zero."""
    total = (
        db.session.query(db.func.coalesce(db.func.sum(StockMovement.quantity_delta), 0))
        .filter(StockMovement.item_id == item_id)
        .scalar()
    )
    return int(total or 0)
