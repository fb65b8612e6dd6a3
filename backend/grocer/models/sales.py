from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .inventory import forbid_mutation


PAYMENT_METHODS = ("cash", "card", "wallet")


class Invoice(db.Model):
    """
    Settled sale document.

    WHY: The invoice is the single financial record of a closed session or a
    finalized cart. Its lines are matched one-to-one by SALE movements
    referencing it.

    IMMUTABLE: written once inside the settlement transaction.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("receipt_no", name="uq_invoices_receipt_no"),
        db.Index("ix_invoices_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable receipt number (e.g., "INV-000123")
    receipt_no = db.Column(db.String(64), nullable=False)

    register_session_id = db.Column(db.Integer, db.ForeignKey("register_sessions.id"), nullable=True, index=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=True, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    terminal = db.Column(db.String(32), nullable=True)

    # Totals (all amounts in cents)
    gross_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    net_cents = db.Column(db.Integer, nullable=False)

    meta = db.Column(db.JSON, nullable=True)
    request_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship("InvoiceLine", lazy=True, order_by="InvoiceLine.id", viewonly=True)
    payments = db.relationship("Payment", lazy=True, order_by="Payment.id", viewonly=True)

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} receipt_no={self.receipt_no!r} net={self.net_cents}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "receipt_no": self.receipt_no,
            "register_session_id": self.register_session_id,
            "cart_id": self.cart_id,
            "cashier_id": self.cashier_id,
            "terminal": self.terminal,
            "gross_cents": self.gross_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "net_cents": self.net_cents,
            "meta": self.meta or {},
            "request_id": self.request_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class InvoiceLine(db.Model):
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.Index("ix_invoice_lines_invoice", "invoice_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    cart_line_id = db.Column(db.Integer, db.ForeignKey("cart_lines.id"), nullable=True)

    qty = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "cart_line_id": self.cart_line_id,
            "qty": str(self.qty),
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    One tender applied to an invoice.

    A split payment is several rows; the sum matches invoice.net_cents.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("method IN ('cash', 'card', 'wallet')", name="ck_payments_method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    method = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "created_at": to_utc_z(self.created_at),
        }


forbid_mutation(Invoice)
forbid_mutation(InvoiceLine)
forbid_mutation(Payment)
