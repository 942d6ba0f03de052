# Overview: Flask API routes for orders; lookups, cancellation and follow-up payments.

from flask import Blueprint, g, jsonify, request

from ..decorators import ROLE_ADMIN, ROLE_MANAGER, require_actor, require_json, require_role, service_errors
from ..identity import current_actor_id
from ..services import order_service, payment_service, refund_service
from ..validation import ValidationError, coerce_amount_cents, coerce_int, coerce_optional_int, optional_str


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
@require_actor
@service_errors("list orders")
def list_orders_route():
    """Query params: cashier_id, status, limit (default 50, max 500)."""
    orders = order_service.list_orders(
        cashier_id=coerce_optional_int(request.args.get("cashier_id"), "cashier_id", minimum=1),
        status=request.args.get("status") or None,
        limit=coerce_int(request.args.get("limit", 50), "limit", minimum=1),
    )
    return jsonify({"orders": [o.to_dict(include_lines=False) for o in orders], "count": len(orders)}), 200


@orders_bp.get("/<int:order_id>")
@require_actor
@service_errors("load order")
def get_order_route(order_id: int):
    return jsonify({"order": order_service.get_order(order_id).to_dict()}), 200


@orders_bp.get("/by-number/<string:order_number>")
@require_actor
@service_errors("load order")
def get_order_by_number_route(order_number: str):
    return jsonify({"order": order_service.get_order_by_number(order_number).to_dict()}), 200


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@require_json
@service_errors("cancel order")
def cancel_order_route(order_id: int):
    """
    Cancel an order and put its unreturned stock back.

    Request body: {"reason": "Customer changed mind"}

    Returns:
        200: cancelled order
        409: NOT_CANCELLABLE
    """
    order = order_service.cancel_order(
        order_id,
        actor_id=current_actor_id(),
        reason=optional_str(g.payload.get("reason"), "reason"),
    )
    return jsonify({"order": order.to_dict()}), 200


# =============================================================================
# PAYMENTS
# =============================================================================

@orders_bp.post("/<int:order_id>/payments")
@require_actor
@require_json
@service_errors("record payment")
def add_payment_route(order_id: int):
    """
    Add a tender to an existing order.

    Request body:
    {
        "method": "card",
        "amount_cents": 1500,
        "reference": "auth-123",  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        201: payment plus the order's new payment status
        409: ORDER_CLOSED, ALREADY_PAID, OVERPAYMENT
    """
    payment = payment_service.record_payment(
        order_id,
        g.payload.get("method"),
        coerce_amount_cents(g.payload.get("amount_cents"), "amount_cents"),
        actor_id=current_actor_id(),
        reference=optional_str(g.payload.get("reference"), "reference", max_length=128),
        notes=optional_str(g.payload.get("notes"), "notes"),
    )
    return jsonify({
        "payment": payment.to_dict(),
        "summary": payment_service.payment_summary(order_id),
    }), 201


@orders_bp.post("/payments/<int:payment_id>/void")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@require_json
@service_errors("void payment")
def void_payment_route(payment_id: int):
    reason = optional_str(g.payload.get("reason"), "reason")
    if not reason:
        raise ValidationError("reason is required")
    order = payment_service.void_payment(payment_id, actor_id=current_actor_id(), reason=reason)
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.get("/<int:order_id>/payments/summary")
@require_actor
@service_errors("summarize payments")
def payment_summary_route(order_id: int):
    return jsonify(payment_service.payment_summary(order_id)), 200


@orders_bp.get("/<int:order_id>/refunds")
@require_actor
@service_errors("load refund history")
def refund_history_route(order_id: int):
    order_service.get_order(order_id)
    refunds = refund_service.refund_history(order_id)
    return jsonify({
        "refunds": [r.to_dict() for r in refunds],
        "status": refund_service.refund_status(order_id),
    }), 200
