# Overview: Flask API routes for cash drawer sessions; parses input and returns JSON responses.

# backend/poscore/routes/drawer.py
"""
Cash Drawer API Routes

Each cashier works against their own drawer: open and close act on the
acting user's session. Managers can read any session.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import ROLE_ADMIN, ROLE_MANAGER, require_actor, require_json, require_role, service_errors
from ..identity import current_actor_id
from ..services import drawer_service
from ..validation import coerce_amount_cents, coerce_int, coerce_optional_int, optional_str


drawer_bp = Blueprint("drawer", __name__, url_prefix="/api/drawer")


@drawer_bp.post("/open")
@require_actor
@require_json
@service_errors("open drawer session")
def open_route():
    """
    Request body: {"opening_balance_cents": 5000, "notes": "..."?}

    Returns:
        201: {"session": {...}}
        409: DRAWER_ALREADY_OPEN
    """
    session = drawer_service.open_session(
        current_actor_id(),
        coerce_amount_cents(g.payload.get("opening_balance_cents"), "opening_balance_cents", allow_zero=True),
        notes=optional_str(g.payload.get("notes"), "notes"),
    )
    return jsonify({"session": session.to_dict()}), 201


@drawer_bp.post("/close")
@require_actor
@require_json
@service_errors("close drawer session")
def close_route():
    """
    Close the acting cashier's drawer against the counted cash.

    Request body: {"counted_amount_cents": 6600, "notes": "..."?}

    Returns:
        200: {"session", "expected", "actual", "difference"}
        409: DRAWER_NOT_OPEN
    """
    result = drawer_service.close_cashier_session(
        current_actor_id(),
        coerce_amount_cents(g.payload.get("counted_amount_cents"), "counted_amount_cents", allow_zero=True),
        notes=optional_str(g.payload.get("notes"), "notes"),
    )
    result["session"] = result["session"].to_dict()
    return jsonify(result), 200


@drawer_bp.post("/movements")
@require_actor
@require_json
@service_errors("record drawer movement")
def movement_route():
    """Request body: {"movement_type": "deposit" | "withdrawal", "amount_cents": 2000, "reason": "..."}"""
    movement = drawer_service.add_movement(
        current_actor_id(),
        g.payload.get("movement_type"),
        coerce_amount_cents(g.payload.get("amount_cents"), "amount_cents"),
        reason=optional_str(g.payload.get("reason"), "reason"),
        actor_id=current_actor_id(),
    )
    return jsonify({"movement": movement.to_dict()}), 201


@drawer_bp.get("/current")
@require_actor
@service_errors("load current drawer session")
def current_route():
    session = drawer_service.get_open_session(current_actor_id())
    if session is None:
        return jsonify({"session": None}), 200
    return jsonify(drawer_service.session_summary(session.id)), 200


@drawer_bp.get("/sessions/<int:session_id>")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@service_errors("load drawer session")
def session_route(session_id: int):
    return jsonify(drawer_service.session_summary(session_id)), 200


@drawer_bp.get("/sessions")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@service_errors("list drawer sessions")
def list_sessions_route():
    sessions = drawer_service.list_sessions(
        cashier_id=coerce_optional_int(request.args.get("cashier_id"), "cashier_id", minimum=1),
        status=request.args.get("status") or None,
        limit=coerce_int(request.args.get("limit", 50), "limit", minimum=1, maximum=500),
    )
    return jsonify({"sessions": [s.to_dict() for s in sessions], "count": len(sessions)}), 200
