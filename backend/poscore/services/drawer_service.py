# Overview: Service-layer operations for cash drawers; per-cashier sessions and the signed movement log.

"""
Cash-Drawer Tracker

One open session per cashier. Every cash event is a signed CashMovement;
the expected drawer balance is always recomputed from that log and is
only written to the session once, at close.

    expected = opening + sales - |refunds| - |withdrawals| + deposits
    difference = counted - expected
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import CashDrawerSession, CashMovement
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from .concurrency import CONSISTENCY_ERRORS, begin_write, lock_for_update, run_with_retry


class DrawerError(ConflictError):
    """Raised for drawer session state conflicts."""


# =============================================================================
# MOVEMENT TYPES (CONSTANTS)
# =============================================================================

MOVEMENT_SALE = "sale"
MOVEMENT_REFUND = "refund"
MOVEMENT_DEPOSIT = "deposit"
MOVEMENT_WITHDRAWAL = "withdrawal"

VALID_MOVEMENT_TYPES = [MOVEMENT_SALE, MOVEMENT_REFUND, MOVEMENT_DEPOSIT, MOVEMENT_WITHDRAWAL]
MANUAL_MOVEMENT_TYPES = [MOVEMENT_DEPOSIT, MOVEMENT_WITHDRAWAL]

SESSION_OPEN = "open"
SESSION_CLOSED = "closed"

# Differences within a cent are not flagged
DISCREPANCY_TOLERANCE_CENTS = 1


def get_open_session(cashier_id: int, *, lock: bool = False) -> CashDrawerSession | None:
    query = db.session.query(CashDrawerSession).filter_by(cashier_id=cashier_id, status=SESSION_OPEN)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_session(session_id: int) -> CashDrawerSession:
    session = db.session.get(CashDrawerSession, session_id)
    if session is None:
        raise NotFoundError(f"Drawer session {session_id} not found", details={"session_id": session_id})
    return session


def _signed_amount(movement_type: str, amount_cents: int) -> int:
    if movement_type in (MOVEMENT_REFUND, MOVEMENT_WITHDRAWAL):
        return -abs(amount_cents)
    if movement_type == MOVEMENT_DEPOSIT:
        return abs(amount_cents)
    # Sales keep their sign; a voided cash payment is a negative sale
    return amount_cents


def movement_totals(session: CashDrawerSession) -> dict:
    totals = {movement_type: 0 for movement_type in VALID_MOVEMENT_TYPES}
    movements = db.session.query(CashMovement).filter_by(session_id=session.id).all()
    for movement in movements:
        if movement.movement_type == MOVEMENT_SALE:
            totals[MOVEMENT_SALE] += movement.amount_cents
        else:
            totals[movement.movement_type] += abs(movement.amount_cents)
    return totals


def compute_expected_balance(session: CashDrawerSession) -> int:
    """Pure function of the opening balance and the movement log."""
    totals = movement_totals(session)
    return (
        session.opening_balance_cents
        + totals[MOVEMENT_SALE]
        - totals[MOVEMENT_REFUND]
        - totals[MOVEMENT_WITHDRAWAL]
        + totals[MOVEMENT_DEPOSIT]
    )


def record_cash_movement(
    cashier_id: int,
    movement_type: str,
    amount_cents: int,
    *,
    order_id: int | None = None,
    refund_id: int | None = None,
    reason: str | None = None,
    actor_id: int | None = None,
) -> CashMovement | None:
    """
    Append a movement to the cashier's open session inside the caller's
    transaction. Returns None when the cashier has no open drawer.
    """
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}. Must be one of {VALID_MOVEMENT_TYPES}")
    if amount_cents == 0:
        return None

    session = get_open_session(cashier_id, lock=True)
    if session is None:
        return None

    movement = CashMovement(
        session_id=session.id,
        movement_type=movement_type,
        amount_cents=_signed_amount(movement_type, amount_cents),
        order_id=order_id,
        refund_id=refund_id,
        reason=reason,
        actor_id=actor_id if actor_id is not None else cashier_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def open_session(cashier_id: int, opening_balance_cents: int, *, notes: str | None = None) -> CashDrawerSession:
    """
    Open a drawer session for a cashier.

    Raises:
        ValidationError: negative opening balance
        DrawerError: cashier already has an open session (DRAWER_ALREADY_OPEN)
    """
    if opening_balance_cents < 0:
        raise ValidationError("opening_balance_cents cannot be negative")

    def _op():
        begin_write()
        existing = get_open_session(cashier_id, lock=True)
        if existing is not None:
            raise DrawerError(
                f"Cashier {cashier_id} already has an open drawer session ({existing.id})",
                code="DRAWER_ALREADY_OPEN",
                details={"session_id": existing.id},
            )
        session = CashDrawerSession(
            cashier_id=cashier_id,
            status=SESSION_OPEN,
            opening_balance_cents=opening_balance_cents,
            opened_at=utcnow(),
            notes=notes,
        )
        db.session.add(session)
        db.session.commit()
        return session

    try:
        session = run_with_retry(_op, retry_on=CONSISTENCY_ERRORS)
    except CONSISTENCY_ERRORS as exc:
        raise DrawerError(
            f"Cashier {cashier_id} already has an open drawer session",
            code="DRAWER_ALREADY_OPEN",
        ) from exc

    current_app.logger.info("Drawer session %s opened by cashier %s", session.id, cashier_id)
    return session


def close_session(session_id: int, counted_amount_cents: int, *, notes: str | None = None) -> dict:
    """
    Close a session against the counted cash.

    Returns:
        {"session", "expected", "actual", "difference"} in cents
    """
    if counted_amount_cents < 0:
        raise ValidationError("counted_amount_cents cannot be negative")

    def _op():
        begin_write()
        session = lock_for_update(db.session.query(CashDrawerSession).filter_by(id=session_id)).first()
        if session is None:
            raise NotFoundError(f"Drawer session {session_id} not found", details={"session_id": session_id})
        if session.status != SESSION_OPEN:
            raise DrawerError(
                f"Drawer session {session_id} is not open",
                code="DRAWER_NOT_OPEN",
                details={"session_id": session_id, "status": session.status},
            )

        expected = compute_expected_balance(session)
        session.expected_balance_cents = expected
        session.closing_balance_cents = counted_amount_cents
        session.difference_cents = counted_amount_cents - expected
        session.status = SESSION_CLOSED
        session.closed_at = utcnow()
        if notes:
            session.notes = f"{session.notes}\n{notes}" if session.notes else notes
        db.session.commit()
        return session

    session = run_with_retry(_op)

    if abs(session.difference_cents) > DISCREPANCY_TOLERANCE_CENTS:
        current_app.logger.warning(
            "Drawer session %s closed with difference %s (expected %s, counted %s)",
            session.id,
            session.difference_cents,
            session.expected_balance_cents,
            session.closing_balance_cents,
        )
    else:
        current_app.logger.info("Drawer session %s closed balanced", session.id)

    return {
        "session": session,
        "expected": session.expected_balance_cents,
        "actual": session.closing_balance_cents,
        "difference": session.difference_cents,
    }


def close_cashier_session(cashier_id: int, counted_amount_cents: int, *, notes: str | None = None) -> dict:
    session = get_open_session(cashier_id)
    if session is None:
        raise DrawerError(f"Cashier {cashier_id} has no open drawer session", code="DRAWER_NOT_OPEN")
    return close_session(session.id, counted_amount_cents, notes=notes)


def add_movement(
    cashier_id: int,
    movement_type: str,
    amount_cents: int,
    *,
    reason: str,
    actor_id: int | None = None,
) -> CashMovement:
    """Manual cash in (deposit) or cash out (withdrawal) for the cashier's open session."""
    if movement_type not in MANUAL_MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}. Must be one of {MANUAL_MOVEMENT_TYPES}")
    if amount_cents <= 0:
        raise ValidationError("amount_cents must be positive")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op():
        begin_write()
        movement = record_cash_movement(
            cashier_id,
            movement_type,
            amount_cents,
            reason=reason.strip(),
            actor_id=actor_id,
        )
        if movement is None:
            raise DrawerError(f"Cashier {cashier_id} has no open drawer session", code="DRAWER_NOT_OPEN")
        db.session.commit()
        return movement

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def session_summary(session_id: int) -> dict:
    session = get_session(session_id)
    totals = movement_totals(session)
    expected = (
        session.expected_balance_cents
        if session.status == SESSION_CLOSED
        else compute_expected_balance(session)
    )
    difference = session.difference_cents
    return {
        "session": session.to_dict(),
        "totals": totals,
        "movement_count": db.session.query(CashMovement).filter_by(session_id=session.id).count(),
        "expected_balance_cents": expected,
        "difference_cents": difference,
        "has_discrepancy": difference is not None and abs(difference) > DISCREPANCY_TOLERANCE_CENTS,
        "is_over": difference is not None and difference > 0,
        "is_short": difference is not None and difference < 0,
    }


def list_sessions(*, cashier_id: int | None = None, status: str | None = None, limit: int = 50) -> list[CashDrawerSession]:
    query = db.session.query(CashDrawerSession)
    if cashier_id is not None:
        query = query.filter_by(cashier_id=cashier_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(CashDrawerSession.opened_at.desc(), CashDrawerSession.id.desc()).limit(limit).all()
