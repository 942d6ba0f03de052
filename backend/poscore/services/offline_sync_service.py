# Overview: Service-layer operations for offline terminals; replays queued sales and reconciles stock counts.

"""
Offline Sync Reconciler

A terminal that lost its connection keeps selling and counting. When it
comes back it uploads a batch:

    {"orders": [...], "inventory_deltas": [...]}

Orders are replayed one by one through the normal checkout path against
live stock, each in its own unit of work, and get a fresh order number.
The client's number is kept as offline_reference (which also makes a
resent batch idempotent) and in the order notes.

Inventory deltas are manual counts taken offline. The client count and the
server on-hand are resolved with min(client, server); a lower client count
is applied as a stock count adjustment.

Results are per payload. One failure never aborts the rest of the batch.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_int, coerce_optional_int, optional_str
from . import catalog_service, inventory_service
from .cart_service import Cart
from .checkout_service import DuplicateOfflineOrder, process_checkout
from .payment_service import parse_tenders


def resolve_quantity(client_quantity: int, server_quantity: int) -> int:
    """Overselling-averse: never trust a count higher than what the server holds."""
    return min(client_quantity, server_quantity)


def _failure(kind: str, reference, exc: Exception) -> dict:
    return {
        "type": kind,
        "reference": reference,
        "success": False,
        "error": str(exc),
        "code": getattr(exc, "code", None),
        "details": getattr(exc, "details", None) or {},
    }


def replay_offline_order(payload: dict, *, actor_id: int) -> dict:
    """
    Replay one offline order.

    payload: {"offline_order_number", "cart", "tenders", "cashier_id"?,
              "customer_id"?, "cart_discount_cents"?, "notes"?}
    """
    if not isinstance(payload, dict):
        raise ValidationError("order payload must be an object")
    offline_number = optional_str(payload.get("offline_order_number"), "offline_order_number", max_length=64)
    if not offline_number:
        raise ValidationError("offline_order_number is required")

    cart = Cart.from_dict(payload.get("cart"))
    tenders = parse_tenders(payload.get("tenders"))
    cashier_id = coerce_optional_int(payload.get("cashier_id"), "cashier_id", minimum=1) or actor_id
    customer_id = coerce_optional_int(payload.get("customer_id"), "customer_id", minimum=1)
    cart_discount = coerce_int(payload.get("cart_discount_cents", 0), "cart_discount_cents", minimum=0)

    note = f"Synced from offline order: {offline_number}"
    client_notes = optional_str(payload.get("notes"), "notes")
    if client_notes:
        note = f"{client_notes}\n{note}"

    try:
        order = process_checkout(
            cart,
            tenders,
            cashier_id=cashier_id,
            customer_id=customer_id,
            cart_discount_cents=cart_discount,
            notes=note,
            offline_reference=offline_number,
        )
    except DuplicateOfflineOrder as exc:
        current_app.logger.info("Offline order %s already synced; skipping", offline_number)
        return {
            "type": "order",
            "reference": offline_number,
            "success": True,
            "duplicate": True,
            "order_id": exc.details.get("order_id"),
            "order_number": exc.details.get("order_number"),
        }

    current_app.logger.info("Offline order %s synced as %s", offline_number, order.order_number)
    return {
        "type": "order",
        "reference": offline_number,
        "success": True,
        "duplicate": False,
        "order_id": order.id,
        "order_number": order.order_number,
        "total_cents": order.total_cents,
    }


def resolve_inventory_delta(payload: dict, *, actor_id: int) -> dict:
    """
    payload: {"item_id", "quantity", "notes"?}

    Applies min(client, server) as a stock count when it differs from the
    server's on-hand.
    """
    if not isinstance(payload, dict):
        raise ValidationError("inventory delta must be an object")
    item_id = coerce_int(payload.get("item_id"), "item_id", minimum=1)
    client_quantity = coerce_int(payload.get("quantity"), "quantity", minimum=0)
    catalog_service.get_sellable_item(item_id)

    record = inventory_service.get_record(item_id)
    server_quantity = record.on_hand_quantity if record else 0
    resolved = resolve_quantity(client_quantity, server_quantity)
    adjusted_by = resolved - server_quantity

    if client_quantity != server_quantity:
        current_app.logger.warning(
            "Inventory conflict for item %s: client reported %s, server has %s; resolved to %s",
            item_id,
            client_quantity,
            server_quantity,
            resolved,
        )

    if adjusted_by != 0:
        notes = f"Offline count reconciliation: client {client_quantity}, server {server_quantity}"
        extra = optional_str(payload.get("notes"), "notes")
        if extra:
            notes = f"{notes} ({extra})"
        inventory_service.count_stock(item_id, resolved, notes=notes, actor_id=actor_id)

    return {
        "type": "inventory",
        "reference": item_id,
        "success": True,
        "item_id": item_id,
        "client_quantity": client_quantity,
        "server_quantity": server_quantity,
        "resolved_quantity": resolved,
        "adjusted_by": adjusted_by,
        "conflict": client_quantity != server_quantity,
    }


def reconcile_batch(orders: list | None, inventory_deltas: list | None, *, actor_id: int) -> list[dict]:
    """
    Process a disconnected terminal's upload sequentially, in arrival
    order: orders first, then inventory deltas. Returns one result per
    payload.
    """
    results: list[dict] = []

    for index, payload in enumerate(orders or []):
        reference = payload.get("offline_order_number") if isinstance(payload, dict) else index
        try:
            results.append(replay_offline_order(payload, actor_id=actor_id))
        except (ValidationError, ConflictError, NotFoundError) as exc:
            current_app.logger.warning("Offline order %s rejected: %s", reference, exc)
            results.append(_failure("order", reference, exc))
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Failed to replay offline order %s", reference)
            results.append(_failure("order", reference, exc))

    for index, payload in enumerate(inventory_deltas or []):
        reference = payload.get("item_id") if isinstance(payload, dict) else index
        try:
            results.append(resolve_inventory_delta(payload, actor_id=actor_id))
        except (ValidationError, ConflictError, NotFoundError) as exc:
            current_app.logger.warning("Inventory delta for item %s rejected: %s", reference, exc)
            results.append(_failure("inventory", reference, exc))
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Failed to reconcile inventory for item %s", reference)
            results.append(_failure("inventory", reference, exc))

    succeeded = sum(1 for result in results if result["success"])
    current_app.logger.info("Offline batch reconciled: %d of %d payload(s) succeeded", succeeded, len(results))
    return results
