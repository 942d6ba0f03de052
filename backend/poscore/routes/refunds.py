# Overview: Flask API routes for refunds; parses input and returns JSON responses.

# backend/poscore/routes/refunds.py
"""
Refund API Routes

One endpoint, three shapes:
- {"full": true}            refund everything still refundable, restock all
- {"amount_cents": 4000}    money only, no restock
- {"items": [...]}          specific lines, restock those units

SECURITY:
- Manager or admin only; every refund is stamped with the acting user
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import ROLE_ADMIN, ROLE_MANAGER, require_actor, require_json, require_role, service_errors
from ..identity import current_actor_id
from ..services import refund_service
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError, coerce_amount_cents, coerce_int, optional_str


refunds_bp = Blueprint("refunds", __name__, url_prefix="/api/refunds")


def _parse_items(raw) -> list[dict]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")
    items = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"items[{index}] must be an object")
        items.append({
            "order_item_id": coerce_int(entry.get("order_item_id"), f"items[{index}].order_item_id", minimum=1),
            "quantity": coerce_int(entry.get("quantity"), f"items[{index}].quantity", minimum=1),
        })
    return items


def _parse_bound(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


@refunds_bp.post("")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@require_json
@service_errors("process refund")
def create_refund_route():
    """
    Request body:
    {
        "order_id": 12,
        "reason": "Damaged on arrival",
        "method": "cash" | "card" | "mobile" | "bank_transfer" | "store_credit" | "other",
        one of:
          "full": true
          "amount_cents": 4000
          "items": [{"order_item_id": 31, "quantity": 1}]
    }

    Returns:
        201: {"refund": {...}, "max_refundable_cents": remaining}
        400: invalid input
        404: ORDER_NOT_FOUND
        409: NOT_REFUNDABLE, AMOUNT_EXCEEDS_REFUNDABLE (details.max_refundable_cents),
             QUANTITY_EXCEEDS_REFUNDABLE
    """
    data = g.payload
    order_id = coerce_int(data.get("order_id"), "order_id", minimum=1)
    reason = optional_str(data.get("reason"), "reason")
    method = data.get("method")
    if not reason:
        raise ValidationError("reason is required")

    shapes = [key for key in ("full", "amount_cents", "items") if data.get(key) not in (None, False)]
    if len(shapes) != 1:
        raise ValidationError("Provide exactly one of full, amount_cents or items")

    kwargs = {"reason": reason, "method": method, "actor_id": current_actor_id()}
    if shapes[0] == "full":
        if data.get("full") is not True:
            raise ValidationError("full must be true")
        refund = refund_service.full_refund(order_id, **kwargs)
    elif shapes[0] == "amount_cents":
        amount = coerce_amount_cents(data.get("amount_cents"), "amount_cents")
        refund = refund_service.partial_refund(order_id, amount, **kwargs)
    else:
        refund = refund_service.item_refund(order_id, _parse_items(data.get("items")), **kwargs)

    order = refund.order
    return jsonify({
        "refund": refund.to_dict(),
        "order_status": order.status,
        "max_refundable_cents": refund_service.max_refundable(order),
    }), 201


@refunds_bp.get("/orders/<int:order_id>/status")
@require_actor
@service_errors("load refund status")
def refund_status_route(order_id: int):
    return jsonify(refund_service.refund_status(order_id)), 200


@refunds_bp.get("/stats")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@service_errors("load refund statistics")
def refund_stats_route():
    """Query params: start, end (ISO-8601, optional)."""
    return jsonify(refund_service.refund_statistics(_parse_bound("start"), _parse_bound("end"))), 200
