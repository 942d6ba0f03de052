# Overview: Flask API routes for offline sync; batch reconciliation and sync-queue bookkeeping.

# backend/poscore/routes/sync.py
"""
Sync API Routes

- POST /batch: a terminal uploads what it did while offline
- /queue/*: the outbound sync worker reports back on queued pushes
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import ROLE_ADMIN, ROLE_MANAGER, require_actor, require_json, require_role, service_errors
from ..identity import current_actor_id
from ..services import offline_sync_service, sync_service
from ..validation import ValidationError, coerce_int, optional_str


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.post("/batch")
@require_actor
@require_json
@service_errors("reconcile offline batch")
def batch_route():
    """
    Request body:
    {
        "orders": [
            {
                "offline_order_number": "T1-000042",
                "cart": {"lines": [{"item_id": 1, "quantity": 1, "unit_price_cents": 1000}]},
                "tenders": [{"method": "cash", "amount_cents": 1100}],
                "customer_id": null
            }
        ],
        "inventory_deltas": [{"item_id": 2, "quantity": 3}]
    }

    Returns:
        200: {"results": [...], "succeeded": n, "failed": m}
        Per-payload failures are reported in results, never as an HTTP error.
    """
    orders = g.payload.get("orders") or []
    deltas = g.payload.get("inventory_deltas") or []
    if not isinstance(orders, list) or not isinstance(deltas, list):
        raise ValidationError("orders and inventory_deltas must be lists")

    results = offline_sync_service.reconcile_batch(orders, deltas, actor_id=current_actor_id())
    succeeded = sum(1 for result in results if result["success"])
    return jsonify({
        "results": results,
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
    }), 200


@sync_bp.get("/queue")
@require_actor
@service_errors("list sync queue")
def queue_route():
    limit = coerce_int(request.args.get("limit", 100), "limit", minimum=1, maximum=1000)
    entries = sync_service.pending_entries(limit)
    return jsonify({
        "entries": [e.to_dict() for e in entries],
        "stats": sync_service.sync_stats(),
    }), 200


@sync_bp.post("/queue/<int:entry_id>/complete")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@service_errors("complete sync entry")
def complete_route(entry_id: int):
    entry = sync_service.mark_completed(entry_id)
    return jsonify({"entry": entry.to_dict()}), 200


@sync_bp.post("/queue/<int:entry_id>/fail")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@require_json
@service_errors("fail sync entry")
def fail_route(entry_id: int):
    error = optional_str(g.payload.get("error"), "error")
    if not error:
        raise ValidationError("error is required")
    entry = sync_service.mark_failed(entry_id, error)
    return jsonify({"entry": entry.to_dict()}), 200


@sync_bp.post("/queue/requeue")
@require_actor
@require_role(ROLE_MANAGER, ROLE_ADMIN)
@service_errors("requeue failed sync entries")
def requeue_route():
    max_attempts = coerce_int(request.args.get("max_attempts", 5), "max_attempts", minimum=1)
    count = sync_service.requeue_failed(max_attempts=max_attempts)
    return jsonify({"requeued": count}), 200
