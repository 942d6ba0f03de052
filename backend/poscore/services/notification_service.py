# Overview: Low-stock crossing signals, delivered to registered sinks after the transaction commits.

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Callable

from flask import current_app
from sqlalchemy import event
from sqlalchemy.orm import Session

from ..extensions import db


_PENDING_KEY = "pending_low_stock_signals"


@dataclass(frozen=True)
class LowStockSignal:
    item_id: int
    previous_quantity: int
    on_hand_quantity: int
    threshold: int

    def to_dict(self) -> dict:
        return asdict(self)


def log_low_stock(signal: LowStockSignal) -> None:
    current_app.logger.warning(
        "Low stock: item %s dropped from %s to %s (threshold %s)",
        signal.item_id,
        signal.previous_quantity,
        signal.on_hand_quantity,
        signal.threshold,
    )


_listeners: list[Callable[[LowStockSignal], None]] = [log_low_stock]
_hooks_installed = False


def register_low_stock_listener(listener: Callable[[LowStockSignal], None]) -> None:
    if listener not in _listeners:
        _listeners.append(listener)


def unregister_low_stock_listener(listener: Callable[[LowStockSignal], None]) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def crossed_low_stock(previous: int, current: int, threshold: int) -> bool:
    """True only on the downward transition from above to at-or-below threshold."""
    return previous > threshold >= current


def queue_low_stock_signal(*, item_id: int, previous: int, current: int, threshold: int) -> None:
    """
    Stage a signal on the current session. It is delivered after commit
    and discarded on rollback, so an aborted checkout never notifies.
    """
    pending = db.session.info.setdefault(_PENDING_KEY, [])
    pending.append(
        LowStockSignal(
            item_id=item_id,
            previous_quantity=previous,
            on_hand_quantity=current,
            threshold=threshold,
        )
    )


def deliver(signals: list[LowStockSignal]) -> None:
    """Fire-and-forget: sink failures are logged and never propagate."""
    for signal in signals:
        for listener in list(_listeners):
            try:
                listener(signal)
            except Exception:
                current_app.logger.exception(
                    "Low-stock listener %r failed for item %s", listener, signal.item_id
                )


def _after_commit(session: Session) -> None:
    signals = session.info.pop(_PENDING_KEY, None)
    if signals:
        deliver(signals)


def _after_rollback(session: Session, previous_transaction) -> None:
    session.info.pop(_PENDING_KEY, None)


def install_session_hooks() -> None:
    global _hooks_installed
    if _hooks_installed:
        return
    event.listen(Session, "after_commit", _after_commit)
    event.listen(Session, "after_soft_rollback", _after_rollback)
    _hooks_installed = True
