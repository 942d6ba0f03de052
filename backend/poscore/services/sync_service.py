# Overview: Service-layer operations for the outbound sync queue; enqueue inside business transactions, drain bookkeeping.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, SyncQueueEntry
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from .concurrency import begin_write, run_with_retry


class SyncError(ConflictError):
    """Raised for invalid sync-queue transitions."""


ACTION_CREATE = "create"
ACTION_UPDATE = "update"
VALID_ACTIONS = [ACTION_CREATE, ACTION_UPDATE]

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


def enqueue(aggregate_type: str, aggregate_id: int, action: str) -> SyncQueueEntry:
    """Stage a sync pointer in the caller's transaction (no commit)."""
    if action not in VALID_ACTIONS:
        raise ValidationError(f"Invalid sync action: {action}. Must be one of {VALID_ACTIONS}")
    entry = SyncQueueEntry(
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        action=action,
        status=STATUS_PENDING,
        attempts=0,
        created_at=utcnow(),
    )
    db.session.add(entry)
    return entry


def get_entry(entry_id: int) -> SyncQueueEntry:
    entry = db.session.get(SyncQueueEntry, entry_id)
    if entry is None:
        raise NotFoundError(f"Sync entry {entry_id} not found", details={"entry_id": entry_id})
    return entry


def pending_entries(limit: int = 100) -> list[SyncQueueEntry]:
    return (
        db.session.query(SyncQueueEntry)
        .filter_by(status=STATUS_PENDING)
        .order_by(SyncQueueEntry.id.asc())
        .limit(limit)
        .all()
    )


def mark_completed(entry_id: int) -> SyncQueueEntry:
    """Called by the drain worker after a successful push."""
    def _op():
        begin_write()
        entry = get_entry(entry_id)
        if entry.status == STATUS_COMPLETED:
            raise SyncError(f"Sync entry {entry_id} already completed", code="ALREADY_COMPLETED")
        entry.status = STATUS_COMPLETED
        entry.attempts += 1
        entry.last_error = None
        entry.processed_at = utcnow()
        if entry.aggregate_type == "order":
            order = db.session.get(Order, entry.aggregate_id)
            if order is not None:
                order.is_synced = True
                order.synced_at = entry.processed_at
        db.session.commit()
        return entry

    entry = run_with_retry(_op)
    current_app.logger.info("Synced %s %s (%s)", entry.aggregate_type, entry.aggregate_id, entry.action)
    return entry


def mark_failed(entry_id: int, error: str) -> SyncQueueEntry:
    """Record a failed push. The entry stays out of the pending set until requeued."""
    def _op():
        begin_write()
        entry = get_entry(entry_id)
        if entry.status == STATUS_COMPLETED:
            raise SyncError(f"Sync entry {entry_id} already completed", code="ALREADY_COMPLETED")
        entry.status = STATUS_FAILED
        entry.attempts += 1
        entry.last_error = error
        entry.processed_at = utcnow()
        db.session.commit()
        return entry

    entry = run_with_retry(_op)
    current_app.logger.warning(
        "Sync failed for %s %s after %d attempt(s): %s",
        entry.aggregate_type,
        entry.aggregate_id,
        entry.attempts,
        error,
    )
    return entry


def requeue_failed(*, max_attempts: int = 5) -> int:
    """Move failed entries below ``max_attempts`` back to pending. Returns the count."""
    def _op():
        begin_write()
        count = (
            db.session.query(SyncQueueEntry)
            .filter(SyncQueueEntry.status == STATUS_FAILED, SyncQueueEntry.attempts < max_attempts)
            .update({SyncQueueEntry.status: STATUS_PENDING}, synchronize_session=False)
        )
        db.session.commit()
        return count

    return run_with_retry(_op)


def sync_stats() -> dict:
    pending = db.session.query(SyncQueueEntry).filter_by(status=STATUS_PENDING).count()
    failed = db.session.query(SyncQueueEntry).filter_by(status=STATUS_FAILED).count()
    last = (
        db.session.query(SyncQueueEntry)
        .filter_by(status=STATUS_COMPLETED)
        .order_by(SyncQueueEntry.processed_at.desc(), SyncQueueEntry.id.desc())
        .first()
    )
    return {
        "pending": pending,
        "failed": failed,
        "last_completed_at": last.to_dict()["processed_at"] if last else None,
    }
