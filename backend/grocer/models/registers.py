from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class RegisterSession(db.Model):
    """
    Cashier shift at one terminal for one business day.

    WHY: Quick sales accumulate on the session's cart and are settled in a
    single close. The session also carries cash accountability.

    LIFECYCLE:
    1. OPEN: created on first use of the day (ensure_open is idempotent)
    2. CLOSED: settled into exactly one invoice; immutable afterwards

    At most one OPEN session exists per (cashier_id, terminal, business_date).
    Closing flips status with a conditional UPDATE so two concurrent closes
    cannot both succeed.
    """
    __tablename__ = "register_sessions"
    __table_args__ = (
        db.Index(
            "uq_register_sessions_open",
            "cashier_id",
            "terminal",
            "business_date",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        db.Index("ix_register_sessions_cashier_date", "cashier_id", "business_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    terminal = db.Column(db.String(32), nullable=False)
    business_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    close_reason = db.Column(db.String(255), nullable=True)

    # Cash accountability (all amounts in cents)
    opening_float_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)
    variance_cents = db.Column(db.Integer, nullable=True)

    # Running totals, recomputed on every line change and frozen at close
    gross_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    net_cents = db.Column(db.Integer, nullable=False, default=0)

    # Plain column: invoices already references this table
    invoice_id = db.Column(db.Integer, nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)

    cashier = db.relationship("User", foreign_keys=[cashier_id])

    def __repr__(self) -> str:
        return f"<RegisterSession id={self.id} cashier_id={self.cashier_id} terminal={self.terminal} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "terminal": self.terminal,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "closed_by_user_id": self.closed_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "close_reason": self.close_reason,
            "opening_float_cents": self.opening_float_cents,
            "closing_cash_cents": self.closing_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "variance_cents": self.variance_cents,
            "gross_cents": self.gross_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "net_cents": self.net_cents,
            "invoice_id": self.invoice_id,
            "notes": self.notes,
        }
