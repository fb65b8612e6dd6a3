# Overview: Settlement of an evaluated cart into invoice, payments, and SALE movements.

"""
Settlement Invariants (authoritative)

- One invoice per settled cart; receipt numbers come from the INVOICE sequence.
- One invoice line and one SALE movement per cart line, linked by invoice_line_id.
- One payment row per tender method used; the sum equals invoice net within
  PAYMENT_TOLERANCE_CENTS.
- settle_cart_inner never commits. The caller owns the transaction, so a
  failure anywhere leaves no invoice, payment, or movement behind.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Cart, Invoice, InvoiceLine, Payment, PAYMENT_METHODS, Product
from ..permissions import AuthContext
from ..validation import to_cents
from . import inventory_service
from .discount_service import EvaluationResult
from .document_service import next_receipt_number
from .ledger_service import append_ledger_event


def normalize_tenders(tenders: Any, net_cents: int) -> list[tuple[str, int]]:
    """
    Turn caller tenders into [(method, amount_cents)], one entry per method.

    Accepts None (all cash), {"cash": 500, "card": 700}, or
    [{"method": "cash", "amount_cents": 500}, ...]. Zero amounts are dropped.
    """
    if not tenders:
        return [("cash", net_cents)]

    if isinstance(tenders, dict):
        items = list(tenders.items())
    elif isinstance(tenders, list):
        items = []
        for t in tenders:
            if not isinstance(t, dict):
                raise ValidationError("Each tender must be an object")
            items.append((t.get("method"), t.get("amount_cents")))
    else:
        raise ValidationError("tenders must be an object or a list")

    merged: "OrderedDict[str, int]" = OrderedDict()
    for method, amount in items:
        method = (method or "").lower()
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method {method!r}", {"allowed": list(PAYMENT_METHODS)})
        merged[method] = merged.get(method, 0) + to_cents(amount, f"{method} amount_cents")

    payments = [(m, a) for m, a in merged.items() if a > 0]
    if not payments:
        payments = [("cash", 0)] if net_cents == 0 else []

    paid = sum(a for _, a in payments)
    tolerance = current_app.config.get("PAYMENT_TOLERANCE_CENTS", 1)
    if abs(paid - net_cents) > tolerance:
        raise ValidationError(
            "Tender total does not match invoice total",
            {"tendered_cents": paid, "net_cents": net_cents},
        )
    return payments


def settle_cart_inner(
    cart: Cart,
    evaluation: EvaluationResult,
    *,
    ctx: AuthContext | None,
    source: str,
    tenders: Any = None,
    register_session_id: int | None = None,
    request_id: str | None = None,
) -> tuple[Invoice, list[Payment]]:
    """
    Write invoice, invoice lines, SALE movements and payments for ``cart``.

    Flushes but does not commit.
    """
    if not evaluation.lines:
        raise ValidationError("Cannot settle an empty cart", {"cart_id": cart.id})

    totals = evaluation.totals
    tender_rows = normalize_tenders(tenders, totals["net_cents"])
    request_id = request_id or (ctx.request_id if ctx else None)

    invoice = Invoice(
        receipt_no=next_receipt_number(),
        register_session_id=register_session_id,
        cart_id=cart.id,
        cashier_id=cart.cashier_id,
        terminal=cart.terminal,
        gross_cents=totals["gross_cents"],
        discount_cents=totals["discount_cents"],
        tax_cents=totals["tax_cents"],
        net_cents=totals["net_cents"],
        meta={"source": source, "line_count": totals["line_count"]},
        request_id=request_id,
    )
    db.session.add(invoice)
    db.session.flush()

    for result in evaluation.lines:
        line = result.line
        product = db.session.get(Product, line.product_id)
        if product is None:
            raise NotFoundError("Product not found", {"product_id": line.product_id})

        invoice_line = InvoiceLine(
            invoice_id=invoice.id,
            product_id=line.product_id,
            cart_line_id=line.line_id,
            qty=line.qty,
            unit_price_cents=line.unit_price_cents,
            discount_cents=result.discount_cents,
            tax_cents=result.tax_cents,
            line_total_cents=result.total_cents,
        )
        db.session.add(invoice_line)
        db.session.flush()

        inventory_service.record_sale_movement(
            product_id=line.product_id,
            qty=line.qty,
            invoice_id=invoice.id,
            invoice_line_id=invoice_line.id,
            ctx=ctx,
            terminal=cart.terminal,
            unit_cost_cents=product.cost_cents,
            request_id=request_id,
        )

    payments = []
    for method, amount in tender_rows:
        payment = Payment(invoice_id=invoice.id, method=method, amount_cents=amount)
        db.session.add(payment)
        payments.append(payment)

    cart.status = "FINALIZED"
    cart.invoice_id = invoice.id
    db.session.flush()

    append_ledger_event(
        event_type="sales.invoice_created",
        event_category="sales",
        entity_type="invoice",
        entity_id=invoice.id,
        actor_user_id=ctx.user_id if ctx else None,
        register_session_id=register_session_id,
        invoice_id=invoice.id,
        request_id=request_id,
        note=invoice.receipt_no,
        payload={"tenders": [{"method": m, "amount_cents": a} for m, a in tender_rows]},
    )
    return invoice, payments


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", {"invoice_id": invoice_id})
    return invoice


def get_invoice_by_receipt(receipt_no: str) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(receipt_no=receipt_no).first()
    if invoice is None:
        raise NotFoundError("Invoice not found", {"receipt_no": receipt_no})
    return invoice
