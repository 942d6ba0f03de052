# Overview: Request pipeline decorators for API routes (authorize -> validate -> execute).

from __future__ import annotations

from functools import wraps

from flask import current_app, g, jsonify, request

from .identity import current_actor_role
from .validation import ConflictError, NotFoundError, ValidationError, error_body


ROLE_CASHIER = "cashier"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"
VALID_ROLES = {ROLE_CASHIER, ROLE_MANAGER, ROLE_ADMIN}


def require_json(f):
    """Reject requests without a JSON object body; exposes it as g.payload."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "JSON object body required", "code": "VALIDATION_ERROR", "details": {}}), 400
        g.payload = payload
        return f(*args, **kwargs)

    return decorated_function


def require_actor(f):
    """
    Establish the acting user from the upstream identity headers.

    Authentication happens in front of this service; it forwards:
    - X-Actor-Id: integer user id (required)
    - X-Actor-Role: cashier, manager or admin (defaults to cashier)

    Sets g.actor_id and g.actor_role.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_id = request.headers.get("X-Actor-Id", "").strip()
        if not raw_id.isdigit() or int(raw_id) <= 0:
            return jsonify({"error": "Actor identity required", "code": "UNAUTHENTICATED", "details": {}}), 401

        role = request.headers.get("X-Actor-Role", ROLE_CASHIER).strip().lower()
        if role not in VALID_ROLES:
            return jsonify({"error": f"Unknown role: {role}", "code": "UNAUTHENTICATED", "details": {}}), 401

        g.actor_id = int(raw_id)
        g.actor_role = role
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Allow only the listed roles. Must be applied after require_actor."""
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = current_actor_role()
            if role not in allowed:
                return jsonify({
                    "error": "Permission denied",
                    "code": "FORBIDDEN",
                    "details": {"required": sorted(allowed)},
                }), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def service_errors(action: str):
    """
    Map typed service errors to JSON responses:
    ValidationError -> 400, NotFoundError -> 404, ConflictError -> 409.
    Anything else is logged with a traceback and returned as 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as exc:
                return jsonify(error_body(exc)), 400
            except NotFoundError as exc:
                return jsonify(error_body(exc)), 404
            except ConflictError as exc:
                return jsonify(error_body(exc)), 409
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR", "details": {}}), 500

        return decorated_function

    return decorator
