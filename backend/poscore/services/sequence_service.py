# Overview: Service-layer operations for order numbering; daily sequence allocation with collision checks.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Order, OrderSequence
from ..time_utils import business_date_key
from ..validation import ConflictError


class OrderNumberExhausted(ConflictError):
    code = "ORDER_NUMBER_EXHAUSTED"


def _allocate(business_date: str) -> int:
    """
    Atomically take the next value of the day's counter.

    A missing row is inserted; if a concurrent terminal inserts it first
    the flush raises IntegrityError and the caller's unit of work retries.
    """
    stmt = (
        update(OrderSequence)
        .where(OrderSequence.business_date == business_date)
        .values(next_number=OrderSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(OrderSequence.next_number)
            .filter_by(business_date=business_date)
            .scalar()
        )
        return current - 1

    db.session.add(OrderSequence(business_date=business_date, next_number=2))
    db.session.flush()
    return 1


def format_order_number(prefix: str, business_date: str, sequence: int, pad: int = 4) -> str:
    return f"{prefix}{business_date}-{sequence:0{pad}d}"


def next_order_number(*, at: datetime | None = None) -> str:
    """
    Generate PREFIX + YYYYMMDD + "-" + zero-padded daily sequence.

    Numbers already taken (imported or hand-entered orders) are skipped by
    taking the next value, never by failing. Must run inside the caller's
    write transaction.
    """
    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "POS-")
    pad = current_app.config.get("ORDER_NUMBER_PAD", 4)
    max_attempts = current_app.config.get("ORDER_NUMBER_MAX_ATTEMPTS", 50)
    business_date = business_date_key(at)

    for _ in range(max_attempts):
        number = format_order_number(prefix, business_date, _allocate(business_date), pad)
        taken = db.session.query(Order.id).filter_by(order_number=number).first()
        if taken is None:
            return number
        current_app.logger.warning("Order number %s already in use, taking next", number)

    raise OrderNumberExhausted(
        f"Could not allocate an order number for {business_date}",
        details={"business_date": business_date, "attempts": max_attempts},
    )
