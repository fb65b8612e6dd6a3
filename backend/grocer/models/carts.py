from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..time_utils import to_utc_z


CART_STATUSES = ("DRAFT", "HOLD", "FINALIZED", "DISCARDED")


class Cart(db.Model):
    """
    Working basket at a terminal.

    LIFECYCLE:
    - DRAFT -> HOLD (parked under a hold name) -> DRAFT (resumed)
    - DRAFT -> FINALIZED (settled into an invoice)
    - DRAFT | HOLD -> DISCARDED

    A register session owns exactly one DRAFT cart for its quick-sale lines.
    Holds are keyed by (terminal, hold_name) while in HOLD.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.Index(
            "uq_carts_terminal_hold_name",
            "terminal",
            "hold_name",
            unique=True,
            sqlite_where=db.text("status = 'HOLD'"),
            postgresql_where=db.text("status = 'HOLD'"),
        ),
        db.Index("ix_carts_terminal_status", "terminal", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    terminal = db.Column(db.String(32), nullable=False)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    register_session_id = db.Column(db.Integer, db.ForeignKey("register_sessions.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    hold_name = db.Column(db.String(64), nullable=True)
    held_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Plain column: invoices already references this table
    invoice_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    lines = db.relationship(
        "CartLine",
        backref="cart",
        lazy=True,
        order_by="CartLine.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Cart id={self.id} terminal={self.terminal} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "terminal": self.terminal,
            "cashier_id": self.cashier_id,
            "register_session_id": self.register_session_id,
            "status": self.status,
            "hold_name": self.hold_name,
            "held_at": to_utc_z(self.held_at),
            "invoice_id": self.invoice_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class CartLine(db.Model):
    """
    One product on a cart.

    line_total_cents = qty * unit_price_cents - line_discount_cents + tax_cents, never < 0.

    DISCOUNTS:
    - auto_discount_cents: from the rule engine, recomputed on every cart change
    - manual_discount_cents: cashier override; when set it replaces the rule discount
    - line_discount_cents: the effective one
    """
    __tablename__ = "cart_lines"
    __table_args__ = (
        db.Index("ix_cart_lines_cart", "cart_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    qty = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    auto_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    manual_discount_cents = db.Column(db.Integer, nullable=True)
    line_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_reason = db.Column(db.String(255), nullable=True)
    applied_rules = db.Column(db.JSON, nullable=True)

    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)

    request_id = db.Column(db.String(64), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    @property
    def gross_cents(self) -> int:
        return int((Decimal(self.qty) * self.unit_price_cents).quantize(Decimal(1), rounding=ROUND_HALF_UP))

    def __repr__(self) -> str:
        return f"<CartLine id={self.id} cart_id={self.cart_id} product_id={self.product_id} qty={self.qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cart_id": self.cart_id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "name": self.product.name if self.product else None,
            "unit": self.product.unit if self.product else None,
            "qty": str(self.qty),
            "unit_price_cents": self.unit_price_cents,
            "gross_cents": self.gross_cents,
            "auto_discount_cents": self.auto_discount_cents,
            "manual_discount_cents": self.manual_discount_cents,
            "line_discount_cents": self.line_discount_cents,
            "discount_reason": self.discount_reason,
            "applied_rules": self.applied_rules or [],
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
            "request_id": self.request_id,
            "created_at": to_utc_z(self.created_at),
        }
