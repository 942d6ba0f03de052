# backend/poscore/routes/system.py
"""
System health endpoint.

Reports database reachability and the outbound sync backlog so a terminal
can tell "server down" apart from "server up but behind".
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import SellableItem
from ..services import sync_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        item_count = db.session.query(SellableItem).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"sellable_items": item_count},
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_sync_queue_health() -> dict:
    """A failed entry means a push needs attention; the service still works."""
    start_time = time.time()
    try:
        stats = sync_service.sync_stats()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "degraded" if stats["failed"] else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": stats,
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Sync queue health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Sync queue error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    sync_health = check_sync_queue_health()

    all_checks = [database_health, sync_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "sync_queue": sync_health,
        },
    }, http_status
