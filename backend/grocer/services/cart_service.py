# Overview: Service-layer operations for carts; lines, manual discounts, holds, and direct sale.

"""
Cart / Sale Engine

WHY: A cart is an explicit row, passed by id through every call. Nothing
about the "current sale" lives in process memory, so two terminals (or two
requests) can never see each other's lines.

STATE MACHINE:
- DRAFT -> HOLD -> DRAFT (resume)
- DRAFT -> FINALIZED (finalize_cart, or the owning session's close)
- DRAFT | HOLD -> DISCARDED

Every line mutation re-runs the discount engine over the whole cart, because
caps are shared across lines.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from flask import current_app
from sqlalchemy import update

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Cart, CartLine, Product
from ..permissions import AuthContext, require_action
from ..time_utils import utcnow
from ..validation import parse_scale_barcode, to_cents, to_decimal, validate_quantity
from .concurrency import lock_for_update, run_with_retry
from .discount_service import EvaluationResult, PricedLine, evaluate_with_config
from .invoice_service import settle_cart_inner


EDITABLE_STATUSES = ("DRAFT",)


def get_cart(cart_id: int, *, lock: bool = False) -> Cart:
    query = db.session.query(Cart).filter_by(id=cart_id)
    if lock:
        query = lock_for_update(query)
    cart = query.first()
    if cart is None:
        raise NotFoundError("Cart not found", {"cart_id": cart_id})
    return cart


def get_line(line_id: int) -> CartLine:
    line = db.session.get(CartLine, line_id)
    if line is None:
        raise NotFoundError("Cart line not found", {"line_id": line_id})
    return line


def _require_status(cart: Cart, *statuses: str) -> None:
    if cart.status not in statuses:
        raise ConflictError(
            f"Cart is {cart.status}",
            {"cart_id": cart.id, "status": cart.status, "expected": list(statuses)},
        )


def _require_standalone(cart: Cart) -> None:
    # Session-owned lines change only through register_service.
    if cart.register_session_id is not None:
        raise ConflictError(
            "Session carts are edited through the quick-sale session",
            {"cart_id": cart.id, "register_session_id": cart.register_session_id},
        )


def priced_lines(cart: Cart) -> list[PricedLine]:
    return [
        PricedLine(
            product_id=line.product_id,
            category_id=line.product.category_id if line.product else None,
            qty=Decimal(str(line.qty)),
            unit_price_cents=line.unit_price_cents,
            line_id=line.id,
            manual_discount_cents=line.manual_discount_cents,
            discount_reason=line.discount_reason,
        )
        for line in cart.lines
    ]


def evaluate_cart(cart: Cart) -> EvaluationResult:
    """Run the discount engine over ``cart`` without writing anything."""
    return evaluate_with_config(priced_lines(cart))


def reprice_cart_inner(cart: Cart) -> EvaluationResult:
    """Re-evaluate discounts and store the per-line results. Does not commit."""
    db.session.flush()
    db.session.expire(cart, ["lines"])
    evaluation = evaluate_cart(cart)
    by_id = {r.line.line_id: r for r in evaluation.lines}
    for line in cart.lines:
        result = by_id[line.id]
        line.auto_discount_cents = result.auto_discount_cents
        line.line_discount_cents = result.discount_cents
        line.tax_cents = result.tax_cents
        line.line_total_cents = result.total_cents
        line.applied_rules = [a.to_dict() for a in result.applied]
    for warning in evaluation.warnings:
        current_app.logger.info("Cart %s: %s", cart.id, warning)
    return evaluation


def create_cart(
    terminal: str,
    cashier_id: int | None = None,
    register_session_id: int | None = None,
    *,
    commit: bool = True,
) -> Cart:
    if not terminal or not str(terminal).strip():
        raise ValidationError("terminal is required")
    cart = Cart(
        terminal=str(terminal).strip(),
        cashier_id=cashier_id,
        register_session_id=register_session_id,
        status="DRAFT",
    )
    db.session.add(cart)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return cart


def add_line_inner(
    cart: Cart,
    product: Product,
    qty: Any,
    *,
    unit_price_cents: int | None = None,
    manual_discount_cents: int | None = None,
    discount_reason: str | None = None,
    ctx: AuthContext | None = None,
    request_id: str | None = None,
) -> CartLine:
    """Validate and append a line, then reprice. Does not commit."""
    _require_status(cart, *EDITABLE_STATUSES)
    if not product.is_active:
        raise ValidationError("Product is inactive", {"product_id": product.id})

    qty = validate_quantity(qty, product.unit, current_app.config.get("KG_DECIMALS", 3))
    if qty <= 0:
        raise ValidationError("Quantity must be positive", {"qty": str(qty)})

    manual = to_cents(manual_discount_cents, "discount_cents") if manual_discount_cents is not None else None
    line = CartLine(
        cart_id=cart.id,
        product_id=product.id,
        qty=qty,
        unit_price_cents=product.price_cents if unit_price_cents is None else unit_price_cents,
        manual_discount_cents=manual or None,
        discount_reason=discount_reason,
        request_id=request_id or (ctx.request_id if ctx else None),
        created_by_user_id=ctx.user_id if ctx else None,
    )
    db.session.add(line)
    reprice_cart_inner(cart)
    return line


def add_line(
    cart_id: int,
    product_id: int,
    qty: Any,
    *,
    manual_discount_cents: int | None = None,
    unit: str | None = None,
    discount_reason: str | None = None,
    ctx: AuthContext | None = None,
    request_id: str | None = None,
) -> CartLine:
    """
    Add a product to a DRAFT cart.

    ``unit``, when given, must match the product's unit; a caller that thinks
    it is selling kilograms of a piece item is rejected rather than guessed.
    """
    cart = get_cart(cart_id)
    _require_standalone(cart)
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", {"product_id": product_id})
    if unit is not None and unit != product.unit:
        raise ValidationError(
            f"Product is sold by {product.unit}, not {unit}",
            {"product_id": product_id, "unit": product.unit},
        )
    line = add_line_inner(
        cart,
        product,
        qty,
        manual_discount_cents=manual_discount_cents,
        discount_reason=discount_reason,
        ctx=ctx,
        request_id=request_id,
    )
    db.session.commit()
    return line


def add_scanned_line(cart_id: int, barcode: str, *, ctx: AuthContext | None = None) -> CartLine:
    """
    Add a line from a scanner payload.

    Scale labels carry either the weight in grams or a price override ("P" + cents).
    A plain barcode adds one piece; weighed items need a scale label.
    """
    scanned = parse_scale_barcode(barcode)
    product = db.session.query(Product).filter_by(barcode=scanned.barcode, is_active=True).first()
    if product is None:
        product = db.session.query(Product).filter_by(sku=scanned.barcode, is_active=True).first()
    if product is None:
        raise NotFoundError("No product for barcode", {"barcode": scanned.barcode})

    cart = get_cart(cart_id)
    _require_standalone(cart)
    if scanned.weight_kg is not None:
        if product.unit != "kg":
            raise ValidationError("Weight label scanned for a piece item", {"sku": product.sku})
        line = add_line_inner(cart, product, scanned.weight_kg, ctx=ctx)
    elif scanned.price_override_cents is not None:
        line = add_line_inner(
            cart, product, 1 if product.unit == "pc" else Decimal("1.000"),
            unit_price_cents=scanned.price_override_cents, ctx=ctx,
        )
    else:
        if product.unit == "kg":
            raise ValidationError("Weighed item requires a scale label", {"sku": product.sku})
        line = add_line_inner(cart, product, 1, ctx=ctx)
    db.session.commit()
    return line


def update_line_qty(line_id: int, qty: Any) -> CartLine | None:
    """Set a line's quantity. qty <= 0 removes the line and returns None."""
    line = get_line(line_id)
    cart = line.cart
    _require_standalone(cart)
    _require_status(cart, *EDITABLE_STATUSES)

    value = to_decimal(qty)
    if value <= 0:
        db.session.delete(line)
        reprice_cart_inner(cart)
        db.session.commit()
        return None

    line.qty = validate_quantity(value, line.product.unit, current_app.config.get("KG_DECIMALS", 3))
    reprice_cart_inner(cart)
    db.session.commit()
    return line


def remove_line_inner(line: CartLine) -> None:
    cart = line.cart
    _require_status(cart, *EDITABLE_STATUSES)
    db.session.delete(line)
    reprice_cart_inner(cart)


def remove_line(line_id: int) -> bool:
    line = get_line(line_id)
    _require_standalone(line.cart)
    remove_line_inner(line)
    db.session.commit()
    return True


def apply_line_discount(
    line_id: int,
    *,
    amount_cents: Any = None,
    percent: Any = None,
    reason: str | None = None,
    ctx: AuthContext | None = None,
) -> CartLine:
    """
    Set or clear the manual discount on a line.

    The manual value replaces the rule discount for that line. Give either
    amount_cents or percent; neither clears the override.
    """
    if ctx is not None:
        require_action(ctx, "APPLY_MANUAL_DISCOUNT")
    if amount_cents is not None and percent is not None:
        raise ValidationError("Give amount_cents or percent, not both")

    line = get_line(line_id)
    _require_standalone(line.cart)
    _require_status(line.cart, *EDITABLE_STATUSES)

    if amount_cents is not None:
        manual = to_cents(amount_cents, "amount_cents")
    elif percent is not None:
        pct = to_decimal(percent, "percent")
        if pct < 0 or pct > 100:
            raise ValidationError("percent must be between 0 and 100", {"percent": str(pct)})
        manual = int((Decimal(line.gross_cents) * pct / 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    else:
        manual = None

    if manual is not None and manual > line.gross_cents:
        manual = line.gross_cents
    manual = manual or None
    line.manual_discount_cents = manual
    line.discount_reason = reason if manual is not None else None
    reprice_cart_inner(line.cart)
    db.session.commit()
    return line


def get_totals(cart_id: int) -> dict:
    """
    gross = sum(qty * unit_price); net = gross - discount + tax.

    A net below zero is clamped to 0 and reported with anomaly=True.
    """
    cart = get_cart(cart_id)
    totals = evaluate_cart(cart).totals
    if totals["anomaly"]:
        current_app.logger.warning("Cart %s net total below zero; clamped to 0", cart.id)
    return totals


def hold_cart(cart_id: int, hold_name: str) -> Cart:
    """Park a DRAFT cart under (terminal, hold_name). Duplicate names conflict."""
    if not hold_name or not str(hold_name).strip():
        raise ValidationError("hold_name is required")
    hold_name = str(hold_name).strip()

    def _op():
        cart = get_cart(cart_id, lock=True)
        _require_status(cart, "DRAFT")
        if cart.register_session_id is not None:
            raise ConflictError("Session carts cannot be held", {"cart_id": cart.id})
        if not cart.lines:
            raise ValidationError("Cannot hold an empty cart", {"cart_id": cart.id})

        existing = db.session.query(Cart).filter_by(
            terminal=cart.terminal, hold_name=hold_name, status="HOLD"
        ).first()
        if existing:
            raise ConflictError(
                "A hold with this name already exists on this terminal",
                {"terminal": cart.terminal, "hold_name": hold_name},
            )

        cart.status = "HOLD"
        cart.hold_name = hold_name
        cart.held_at = utcnow()
        db.session.commit()
        return cart

    return run_with_retry(_op)


def resume_hold(terminal: str, hold_name: str) -> Cart:
    cart = db.session.query(Cart).filter_by(terminal=terminal, hold_name=hold_name, status="HOLD").first()
    if cart is None:
        raise NotFoundError("Hold not found", {"terminal": terminal, "hold_name": hold_name})
    cart.status = "DRAFT"
    cart.hold_name = None
    cart.held_at = None
    reprice_cart_inner(cart)
    db.session.commit()
    return cart


def list_holds(terminal: str | None = None) -> list[Cart]:
    q = db.session.query(Cart).filter_by(status="HOLD")
    if terminal:
        q = q.filter_by(terminal=terminal)
    return q.order_by(Cart.held_at.asc(), Cart.id.asc()).all()


def discard_cart(cart_id: int) -> Cart:
    cart = get_cart(cart_id)
    _require_status(cart, "DRAFT", "HOLD")
    if cart.register_session_id is not None:
        raise ConflictError("Session carts close with their session", {"cart_id": cart.id})
    cart.status = "DISCARDED"
    cart.hold_name = None
    db.session.commit()
    return cart


def finalize_cart(
    cart_id: int,
    *,
    ctx: AuthContext,
    tenders: Any = None,
    request_id: str | None = None,
) -> dict:
    """
    Settle a standalone DRAFT cart as a direct sale.

    Invoice, payments and SALE movements commit together; any failure rolls
    back and leaves the cart DRAFT.
    """
    require_action(ctx, "FINALIZE_SALE")
    cart = get_cart(cart_id)
    if cart.register_session_id is not None:
        raise ConflictError("Session carts settle on session close", {"cart_id": cart.id})
    _require_status(cart, "DRAFT")

    try:
        evaluation = reprice_cart_inner(cart)
        claimed = db.session.execute(
            update(Cart)
            .where(Cart.id == cart.id, Cart.status == "DRAFT")
            .values(status="FINALIZED")
        )
        if claimed.rowcount != 1:
            raise ConflictError("Cart was already finalized", {"cart_id": cart.id})
        invoice, payments = settle_cart_inner(
            cart,
            evaluation,
            ctx=ctx,
            source="pos",
            tenders=tenders,
            request_id=request_id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Cart %s finalized as %s net=%s request_id=%s",
        cart.id, invoice.receipt_no, invoice.net_cents, request_id or ctx.request_id,
    )
    return {
        "invoice_id": invoice.id,
        "receipt_no": invoice.receipt_no,
        "totals": evaluation.totals,
        "payments": [p.to_dict() for p in payments],
    }
