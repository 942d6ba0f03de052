# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/poscore/routes/inventory.py
"""
Inventory API Routes

Stock positions, soft holds and manual corrections for sellable items.
Every mutation appends to the movement log; nothing here rewrites history.

SECURITY:
- Any actor may read stock and reserve/release for a cart
- Adjustments, counts and threshold changes need manager or admin
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import (
    ROLE_ADMIN,
    ROLE_MANAGER,
    require_actor,
    require_json,
    require_role,
    service_errors,
)
from ..identity import current_actor_id
from ..services import inventory_service
from ..validation import ValidationError, coerce_int, optional_str


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/<int:item_id>")
@require_actor
@service_errors("load stock status")
def get_stock_route(item_id: int):
    return jsonify({"stock": inventory_service.get_stock_status(item_id)}), 200


@inventory_bp.post("/<int:item_id>/reserve")
@require_actor
@require_json
@service_errors("reserve stock")
def reserve_route(item_id: int):
    """
    Open or resize a soft hold for a cart line.

    Request body:
    {
        "quantity": 2,
        "reservation_token": "..."  (optional; resize this hold)
    }

    Returns:
        200: {"reservation": {...}, "stock": {...}}
        409: STOCK_UNAVAILABLE with requested/available
    """
    quantity = coerce_int(g.payload.get("quantity"), "quantity", minimum=1)
    token = optional_str(g.payload.get("reservation_token"), "reservation_token", max_length=64)
    hold = inventory_service.hold_stock(item_id, quantity, token=token)
    return jsonify({
        "reservation": hold.to_dict(),
        "stock": inventory_service.get_stock_status(item_id),
    }), 200


@inventory_bp.post("/<int:item_id>/release")
@require_actor
@require_json
@service_errors("release stock")
def release_route(item_id: int):
    """Request body: {"reservation_token": "..."}. Unknown tokens release nothing."""
    token = optional_str(g.payload.get("reservation_token"), "reservation_token", max_length=64)
    if not token:
        raise ValidationError("reservation_token is required")
    released = inventory_service.release_hold(item_id, token)
    return jsonify({"released": released, "stock": inventory_service.get_stock_status(item_id)}), 200


@inventory_bp.post("/<int:item_id>/adjust")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@require_json
@service_errors("adjust stock")
def adjust_route(item_id: int):
    """
    Signed manual correction.

    Request body:
    {
        "quantity_delta": -3,
        "notes": "Damaged in storage"  (optional)
    }

    Returns:
        201: movement created
        400: zero delta
        409: NEGATIVE_STOCK
    """
    delta = coerce_int(g.payload.get("quantity_delta"), "quantity_delta")
    movement = inventory_service.adjust_stock(
        item_id,
        delta,
        notes=optional_str(g.payload.get("notes"), "notes"),
        actor_id=current_actor_id(),
    )
    return jsonify({"movement": movement.to_dict()}), 201


@inventory_bp.post("/<int:item_id>/count")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@require_json
@service_errors("record stock count")
def count_route(item_id: int):
    """Request body: {"counted_quantity": 12, "notes": "..."}"""
    counted = coerce_int(g.payload.get("counted_quantity"), "counted_quantity", minimum=0)
    record = inventory_service.count_stock(
        item_id,
        counted,
        notes=optional_str(g.payload.get("notes"), "notes"),
        actor_id=current_actor_id(),
    )
    return jsonify({"stock": record.to_dict()}), 200


@inventory_bp.post("/<int:item_id>/threshold")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@require_json
@service_errors("update low stock threshold")
def threshold_route(item_id: int):
    threshold = coerce_int(g.payload.get("low_stock_threshold"), "low_stock_threshold", minimum=0)
    record = inventory_service.update_low_stock_threshold(item_id, threshold)
    return jsonify({"stock": record.to_dict()}), 200


@inventory_bp.get("/<int:item_id>/movements")
@require_actor
@service_errors("list stock movements")
def movements_route(item_id: int):
    limit = coerce_int(request.args.get("limit", 200), "limit", minimum=1, maximum=1000)
    movements = inventory_service.list_movements(item_id, limit=limit)
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200


@inventory_bp.get("/low-stock")
@require_actor
@service_errors("list low stock items")
def low_stock_route():
    records = inventory_service.list_low_stock()
    return jsonify({"items": [r.to_dict() for r in records], "count": len(records)}), 200


@inventory_bp.post("/bulk-adjust")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@require_json
@service_errors("apply bulk adjustment")
def bulk_adjust_route():
    """
    Apply several adjustments in one transaction; one bad line aborts all.

    Request body:
    {
        "adjustments": [
            {"item_id": 1, "quantity_delta": 5, "notes": "Delivery"},
            {"item_id": 2, "quantity_delta": -1}
        ]
    }
    """
    raw = g.payload.get("adjustments")
    if not isinstance(raw, list) or not raw:
        raise ValidationError("adjustments must be a non-empty list")

    adjustments = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"adjustments[{index}] must be an object")
        adjustments.append({
            "item_id": coerce_int(entry.get("item_id"), f"adjustments[{index}].item_id", minimum=1),
            "quantity_delta": coerce_int(entry.get("quantity_delta"), f"adjustments[{index}].quantity_delta"),
            "notes": optional_str(entry.get("notes"), f"adjustments[{index}].notes"),
        })

    movements = inventory_service.bulk_adjust(adjustments, actor_id=current_actor_id())
    return jsonify({"movements": [m.to_dict() for m in movements], "count": len(movements)}), 201
