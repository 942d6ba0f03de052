from __future__ import annotations

from sqlalchemy import event, text

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .inventory import ImmutableRowError


class CashDrawerSession(db.Model):
    """
    Cash accountability period for one cashier.

    LIFECYCLE: open -> closed (closed sessions are never reopened)

    expected_balance_cents and difference_cents are written once, at close,
    from the movement log. While open, the expected balance is derived.
    """
    __tablename__ = "cash_drawer_sessions"
    __table_args__ = (
        # At most one open session per cashier
        db.Index(
            "uq_cash_drawer_sessions_open_cashier",
            "cashier_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="open", index=True)

    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_balance_cents = db.Column(db.Integer, nullable=True)
    expected_balance_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)

    opened_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    closed_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    movements = db.relationship(
        "CashMovement",
        backref="session",
        lazy=True,
        order_by="CashMovement.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "status": self.status,
            "opening_balance_cents": self.opening_balance_cents,
            "closing_balance_cents": self.closing_balance_cents,
            "expected_balance_cents": self.expected_balance_cents,
            "difference_cents": self.difference_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "notes": self.notes,
        }


class CashMovement(db.Model):
    """
    Signed cash entry in a drawer session.

    TYPES:
    - sale: +cash retained from a sale (negative when a cash payment is voided)
    - refund: -cash handed back
    - deposit: +cash added to the drawer
    - withdrawal: -cash removed from the drawer
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_session_type", "session_id", "movement_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_drawer_sessions.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=True, index=True)

    reason = db.Column(db.Text, nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "movement_type": self.movement_type,
            "amount_cents": self.amount_cents,
            "order_id": self.order_id,
            "refund_id": self.refund_id,
            "reason": self.reason,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(CashMovement, "before_update")
def _reject_cash_movement_update(mapper, connection, target):
    raise ImmutableRowError(f"CashMovement {target.id} is append-only")
