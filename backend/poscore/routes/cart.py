# Overview: Flask API routes for cart operations; carts travel in the request body and come back updated.

# backend/poscore/routes/cart.py
"""
Cart API Routes

The server keeps no cart state. The terminal posts its cart with every
call and gets the updated cart back; only held carts are persisted.

Cart shape:
{
    "lines": [
        {"item_id": 1, "quantity": 2, "discount_type": "percentage", "discount_value": 1000}
    ]
}

A reserving line also carries "reservation_token"; the server fills in
"reserved_quantity" from the hold behind it.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_actor, require_json, service_errors
from ..identity import current_actor_id
from ..services import cart_service, checkout_service
from ..services.cart_service import Cart
from ..validation import ValidationError, coerce_int, coerce_optional_int, optional_str


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _cart_from_payload() -> Cart:
    return cart_service.load_reservations(Cart.from_dict(g.payload.get("cart")))


def _reserve_flag() -> bool:
    reserve = g.payload.get("reserve", False)
    if not isinstance(reserve, bool):
        raise ValidationError("reserve must be a boolean")
    return reserve


@cart_bp.post("/items")
@require_actor
@require_json
@service_errors("add item to cart")
def add_item_route():
    """
    Add units of an item; merges with an existing line.

    Request body:
    {
        "cart": {...},
        "item_id": 5,
        "quantity": 1,
        "reserve": false  (optional; soft-hold the units)
    }

    Returns:
        200: {"cart": {...}}
        400: ITEM_INACTIVE or bad quantity
        404: ITEM_NOT_FOUND
        409: STOCK_UNAVAILABLE
    """
    cart = _cart_from_payload()
    item_id = coerce_int(g.payload.get("item_id"), "item_id", minimum=1)
    quantity = coerce_int(g.payload.get("quantity", 1), "quantity", minimum=1)
    cart_service.add_item(cart, item_id, quantity, reserve=_reserve_flag())
    return jsonify({"cart": cart.to_dict()}), 200


@cart_bp.post("/items/quantity")
@require_actor
@require_json
@service_errors("update cart quantity")
def update_quantity_route():
    """Request body: {"cart": {...}, "item_id": 5, "quantity": 3}. Zero removes the line."""
    cart = _cart_from_payload()
    item_id = coerce_int(g.payload.get("item_id"), "item_id", minimum=1)
    quantity = coerce_int(g.payload.get("quantity"), "quantity", minimum=0)
    cart_service.update_quantity(cart, item_id, quantity)
    return jsonify({"cart": cart.to_dict()}), 200


@cart_bp.post("/items/remove")
@require_actor
@require_json
@service_errors("remove cart item")
def remove_item_route():
    cart = _cart_from_payload()
    item_id = coerce_int(g.payload.get("item_id"), "item_id", minimum=1)
    cart_service.remove_item(cart, item_id)
    return jsonify({"cart": cart.to_dict()}), 200


@cart_bp.post("/clear")
@require_actor
@require_json
@service_errors("clear cart")
def clear_route():
    """Releases every soft hold the cart still carries."""
    cart = _cart_from_payload()
    cart_service.clear_cart(cart)
    return jsonify({"cart": cart.to_dict()}), 200


@cart_bp.post("/discount")
@require_actor
@require_json
@service_errors("apply cart discount")
def discount_route():
    """
    Line discount, or remove it with "discount_type": null.

    Request body:
    {
        "cart": {...},
        "item_id": 5,
        "discount_type": "fixed" | "percentage" | null,
        "discount_value": 150  (cents for fixed, basis points for percentage)
    }
    """
    cart = _cart_from_payload()
    item_id = coerce_int(g.payload.get("item_id"), "item_id", minimum=1)
    discount_type = g.payload.get("discount_type")
    if discount_type is None:
        cart_service.remove_item_discount(cart, item_id)
    else:
        value = coerce_int(g.payload.get("discount_value"), "discount_value")
        cart_service.apply_item_discount(cart, item_id, discount_type, value)
    return jsonify({"cart": cart.to_dict()}), 200


@cart_bp.post("/customer-discount")
@require_actor
@require_json
@service_errors("apply customer discount")
def customer_discount_route():
    """Apply the customer's group discount to every undiscounted line."""
    cart = _cart_from_payload()
    customer_id = coerce_int(g.payload.get("customer_id"), "customer_id", minimum=1)
    touched = cart_service.apply_customer_group_discount(cart, customer_id)
    return jsonify({"cart": cart.to_dict(), "lines_discounted": touched}), 200


@cart_bp.post("/validate")
@require_actor
@require_json
@service_errors("validate cart")
def validate_route():
    """Full validation plus pricing. Always 200; problems are listed in "errors"."""
    cart = _cart_from_payload()
    cart_discount = coerce_int(g.payload.get("cart_discount_cents", 0), "cart_discount_cents", minimum=0)
    return jsonify(cart_service.cart_summary(cart, cart_discount)), 200


# =============================================================================
# HELD CARTS
# =============================================================================

@cart_bp.post("/hold")
@require_actor
@require_json
@service_errors("hold cart")
def hold_route():
    """
    Park the cart for later.

    Request body: {"cart": {...}, "customer_id": 3?, "notes": "..."?}

    Returns:
        201: {"held_order_id": 7, "held_order": {...}}
        400: EMPTY_CART
    """
    held = checkout_service.hold_order(
        _cart_from_payload(),
        cashier_id=current_actor_id(),
        customer_id=coerce_optional_int(g.payload.get("customer_id"), "customer_id", minimum=1),
        notes=optional_str(g.payload.get("notes"), "notes"),
    )
    return jsonify({"held_order_id": held.id, "held_order": held.to_dict()}), 201


@cart_bp.post("/resume")
@require_actor
@require_json
@service_errors("resume held cart")
def resume_route():
    """
    Load and delete a held cart. Works once; the second call is a 404.

    Request body: {"held_order_id": 7}
    """
    held_order_id = coerce_int(g.payload.get("held_order_id"), "held_order_id", minimum=1)
    cart, customer_id = checkout_service.resume_held_order(held_order_id)
    cart_service.load_reservations(cart)
    return jsonify({"cart": cart.to_dict(), "customer_id": customer_id}), 200


@cart_bp.get("/held")
@require_actor
@service_errors("list held carts")
def list_held_route():
    """Held carts for ?cashier_id=, or the acting cashier's own by default."""
    cashier_id = coerce_optional_int(request.args.get("cashier_id"), "cashier_id", minimum=1) or current_actor_id()
    held = checkout_service.list_held_orders(cashier_id=cashier_id)
    return jsonify({"held_orders": [h.to_dict() for h in held], "count": len(held)}), 200
