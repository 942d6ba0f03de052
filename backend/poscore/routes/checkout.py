# Overview: Flask API routes for checkout; turns a posted cart and tenders into a committed order.

# backend/poscore/routes/checkout.py
"""
Checkout API Routes

POST /api/checkout is the one call that writes a sale. Everything it
touches (order, lines, stock, payments, drawer, sync queue) commits
together or not at all.
"""

from flask import Blueprint, g, jsonify

from ..decorators import require_actor, require_json, service_errors
from ..identity import current_actor_id
from ..services import checkout_service
from ..services.cart_service import Cart
from ..services.payment_service import parse_tenders
from ..validation import coerce_amount_cents, coerce_int, coerce_optional_int, optional_str


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _common_fields() -> dict:
    return {
        "customer_id": coerce_optional_int(g.payload.get("customer_id"), "customer_id", minimum=1),
        "cart_discount_cents": coerce_int(g.payload.get("cart_discount_cents", 0), "cart_discount_cents", minimum=0),
        "notes": optional_str(g.payload.get("notes"), "notes"),
    }


@checkout_bp.post("")
@require_actor
@require_json
@service_errors("process checkout")
def checkout_route():
    """
    Commit a sale.

    Request body:
    {
        "cart": {"lines": [{"item_id": 1, "quantity": 2}]},
        "tenders": [
            {"method": "cash", "amount_cents": 2500},
            {"method": "card", "amount_cents": 1000, "reference": "auth-123"}
        ],
        "customer_id": 3,  (optional)
        "cart_discount_cents": 0,  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        201: {"order": {...}, "change_cents": 300}
        400: malformed cart or tenders
        409: EMPTY_CART, STOCK_UNAVAILABLE, INSUFFICIENT_PAYMENT (details.shortfall_cents)
    """
    cart = Cart.from_dict(g.payload.get("cart"))
    tenders = parse_tenders(g.payload.get("tenders"))
    order = checkout_service.process_checkout(
        cart,
        tenders,
        cashier_id=current_actor_id(),
        **_common_fields(),
    )
    return jsonify({"order": order.to_dict(), "change_cents": order.change_cents}), 201


@checkout_bp.post("/quick-cash")
@require_actor
@require_json
@service_errors("process quick cash checkout")
def quick_cash_route():
    """Request body: {"cart": {...}, "cash_tendered_cents": 2500, ...}"""
    cart = Cart.from_dict(g.payload.get("cart"))
    tendered = coerce_amount_cents(g.payload.get("cash_tendered_cents"), "cash_tendered_cents")
    order, change = checkout_service.quick_cash_checkout(
        cart,
        tendered,
        cashier_id=current_actor_id(),
        **_common_fields(),
    )
    return jsonify({"order": order.to_dict(), "change_cents": change}), 201


@checkout_bp.post("/summary")
@require_actor
@require_json
@service_errors("summarize checkout")
def summary_route():
    """
    Pricing preview; nothing is written.

    Request body: {"cart": {...}, "cart_discount_cents": 0?, "tenders": [...]?}
    With tenders the response also carries tendered/remaining/change.
    """
    cart = Cart.from_dict(g.payload.get("cart"))
    cart_discount = coerce_int(g.payload.get("cart_discount_cents", 0), "cart_discount_cents", minimum=0)
    raw_tenders = g.payload.get("tenders")
    tenders = parse_tenders(raw_tenders) if raw_tenders is not None else None
    return jsonify(checkout_service.checkout_summary(cart, cart_discount, tenders)), 200
