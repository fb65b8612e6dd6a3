"""
Register Session Service (quick sales)

WHY: A cashier rings up lines all day against one session per terminal;
the session is settled into a single invoice at close. Close is the one
operation that must be all-or-nothing.

DESIGN PRINCIPLES:
- ensure_open is idempotent per (cashier, terminal, business day)
- Each session owns one DRAFT cart; lines live there until close
- Line removal and close need a manager PIN, checked on every call
- Close flips OPEN -> CLOSED with a conditional UPDATE inside the same
  transaction that writes invoice, payments and SALE movements; losing the
  race yields CONFLICT and nothing else is written
- Sessions are immutable once closed
"""

from __future__ import annotations

from datetime import date
from typing import Any

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Cart, CartLine, Invoice, Product, RegisterSession, User
from ..permissions import AuthContext, approver_role_for, require_action
from ..time_utils import business_date, utcnow
from ..validation import to_cents
from . import auth_service, cart_service
from .concurrency import run_with_retry
from .invoice_service import settle_cart_inner
from .ledger_service import append_ledger_event


MAX_LIST_LIMIT = 500
DEFAULT_LIST_LIMIT = 200


# =============================================================================
# LOOKUPS
# =============================================================================

def _terminal(terminal: str | None) -> str:
    return (terminal or current_app.config.get("DEFAULT_TERMINAL", "T1")).strip()


def get_session(session_id: int) -> RegisterSession:
    session = db.session.get(RegisterSession, session_id)
    if session is None:
        raise NotFoundError("Session not found", {"session_id": session_id})
    return session


def get_open_session(cashier_id: int, terminal: str | None = None, day: date | None = None) -> RegisterSession | None:
    return (
        db.session.query(RegisterSession)
        .filter_by(
            cashier_id=cashier_id,
            terminal=_terminal(terminal),
            business_date=day or business_date(),
            status="OPEN",
        )
        .first()
    )


def get_session_cart(session: RegisterSession) -> Cart:
    cart = (
        db.session.query(Cart)
        .filter_by(register_session_id=session.id)
        .order_by(Cart.id.asc())
        .first()
    )
    if cart is None:
        raise NotFoundError("Session has no cart", {"session_id": session.id})
    return cart


def list_sessions(
    *,
    cashier_id: int | None = None,
    terminal: str | None = None,
    day: date | None = None,
    status: str | None = None,
    limit: int = 50,
) -> list[RegisterSession]:
    q = db.session.query(RegisterSession)
    if cashier_id is not None:
        q = q.filter(RegisterSession.cashier_id == cashier_id)
    if terminal:
        q = q.filter(RegisterSession.terminal == terminal)
    if day is not None:
        q = q.filter(RegisterSession.business_date == day)
    if status:
        q = q.filter(RegisterSession.status == status.upper())
    return q.order_by(RegisterSession.id.desc()).limit(limit).all()


def _sync_totals(session: RegisterSession, cart: Cart) -> None:
    """Copy the cart's stored line figures onto the session's running totals."""
    db.session.flush()
    db.session.expire(cart, ["lines"])
    gross = sum(line.gross_cents for line in cart.lines)
    discount = sum(line.line_discount_cents for line in cart.lines)
    tax = sum(line.tax_cents for line in cart.lines)
    session.gross_cents = gross
    session.discount_cents = discount
    session.tax_cents = tax
    session.net_cents = max(gross - discount + tax, 0)


def _append_note(session: RegisterSession, text: str) -> None:
    stamp = utcnow().strftime("%Y-%m-%d %H:%M:%S")
    entry = f"[{stamp}] {text}"
    session.notes = f"{session.notes}\n{entry}" if session.notes else entry


# =============================================================================
# OPEN
# =============================================================================

def ensure_open(
    cashier_id: int,
    terminal: str | None = None,
    opening_float_cents: Any = 0,
    *,
    ctx: AuthContext | None = None,
) -> RegisterSession:
    """
    Return today's OPEN session for cashier + terminal, creating it if needed.

    An existing session is returned unchanged (its opening float is not
    touched). A new session gets its own DRAFT cart.
    """
    terminal = _terminal(terminal)
    existing = get_open_session(cashier_id, terminal)
    if existing:
        return existing

    cashier = db.session.get(User, cashier_id)
    if cashier is None or not cashier.is_active:
        raise NotFoundError("Cashier not found", {"cashier_id": cashier_id})
    opening_float = to_cents(opening_float_cents or 0, "opening_float_cents")

    def _op():
        session = RegisterSession(
            cashier_id=cashier_id,
            terminal=terminal,
            business_date=business_date(),
            opened_at=utcnow(),
            status="OPEN",
            opening_float_cents=opening_float,
            expected_cash_cents=opening_float,
        )
        db.session.add(session)
        db.session.flush()

        cart_service.create_cart(terminal, cashier_id, register_session_id=session.id, commit=False)

        append_ledger_event(
            event_type="register.session_opened",
            event_category="register",
            entity_type="register_session",
            entity_id=session.id,
            actor_user_id=ctx.user_id if ctx else cashier_id,
            register_session_id=session.id,
            request_id=ctx.request_id if ctx else None,
            occurred_at=session.opened_at,
            payload={"terminal": terminal, "opening_float_cents": opening_float},
        )
        db.session.commit()
        return session

    try:
        session = run_with_retry(_op)
    except IntegrityError:
        # Another request opened it first
        db.session.rollback()
        existing = get_open_session(cashier_id, terminal)
        if existing:
            return existing
        raise

    current_app.logger.info(
        "Session %s opened for cashier %s on %s", session.id, cashier_id, terminal
    )
    return session


# =============================================================================
# LINES
# =============================================================================

def add_line(
    product_id: int,
    qty: Any,
    discount: Any = None,
    unit: str | None = None,
    request_id: str | None = None,
    ctx: AuthContext | None = None,
    *,
    terminal: str | None = None,
    discount_reason: str | None = None,
) -> CartLine:
    """
    Add a quick-sale line to the acting cashier's session for today.

    ``discount`` is a manual discount in cents for this line; a positive value
    replaces any rule discount, 0 or None leaves the rules in force. The
    session is opened on first use.
    """
    require_action(ctx, "ADD_LINE")
    request_id = request_id or ctx.request_id

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", {"product_id": product_id})
    if unit is not None and unit != product.unit:
        raise ValidationError(
            f"Product is sold by {product.unit}, not {unit}",
            {"product_id": product_id, "unit": product.unit},
        )

    session = ensure_open(ctx.user_id, terminal, ctx=ctx)
    cart = get_session_cart(session)
    try:
        line = cart_service.add_line_inner(
            cart,
            product,
            qty,
            manual_discount_cents=discount,
            discount_reason=discount_reason,
            ctx=ctx,
            request_id=request_id,
        )
        _sync_totals(session, cart)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Session %s: added line %s (product %s qty %s) request_id=%s",
        session.id, line.id, product_id, line.qty, request_id,
    )
    return line


def list_lines(
    session_id: int | None = None,
    limit: Any = DEFAULT_LIST_LIMIT,
    request_id: str | None = None,
    *,
    cursor: Any = None,
    ctx: AuthContext | None = None,
    terminal: str | None = None,
) -> dict:
    """
    Page through a session's lines in insertion order.

    Without ``session_id`` the acting cashier's open session for today is
    used. ``cursor`` is the last line id of the previous page.
    """
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValidationError("limit must be an integer")
    if limit < 1 or limit > MAX_LIST_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIST_LIMIT}", {"limit": limit})
    try:
        cursor_id = int(cursor) if cursor not in (None, "") else 0
    except (TypeError, ValueError):
        raise ValidationError("cursor must be a line id")

    if session_id is not None:
        session = get_session(session_id)
    else:
        require_action(ctx, "VIEW_LINES")
        session = get_open_session(ctx.user_id, terminal)

    empty = {
        "session_id": session.id if session else None,
        "lines": [],
        "has_more": False,
        "next_cursor": None,
        "total_lines": 0,
        "total_amount_cents": 0,
    }
    if session is None:
        return empty
    cart = get_session_cart(session)

    rows = (
        db.session.query(CartLine)
        .filter(CartLine.cart_id == cart.id, CartLine.id > cursor_id)
        .order_by(CartLine.id.asc())
        .limit(limit + 1)
        .all()
    )
    has_more = len(rows) > limit
    page = rows[:limit]

    total_lines, total_amount = (
        db.session.query(
            db.func.count(CartLine.id),
            db.func.coalesce(db.func.sum(CartLine.line_total_cents), 0),
        )
        .filter(CartLine.cart_id == cart.id)
        .one()
    )

    current_app.logger.debug(
        "Listed %d line(s) for session %s request_id=%s", len(page), session.id, request_id
    )
    return {
        "session_id": session.id,
        "lines": [line.to_dict() for line in page],
        "has_more": has_more,
        "next_cursor": str(page[-1].id) if has_more else None,
        "total_lines": int(total_lines),
        "total_amount_cents": int(total_amount),
    }


def remove_line(
    line_id: int,
    request_id: str | None,
    ctx: AuthContext | None,
    pin: str | None,
    reason: str | None,
) -> bool:
    """
    Remove a quick-sale line with manager approval.

    Returns False when the line's session is no longer OPEN. The removal is
    noted on the session and in the audit ledger with actor, approver and reason.

    Raises:
        PinRequiredError, ForbiddenError: PIN missing or not a manager's
        ValidationError: no reason given
        NotFoundError: unknown line
    """
    require_action(ctx, "REMOVE_LINE")
    approver = auth_service.verify_pin(pin, approver_role_for("REMOVE_LINE"))
    if not reason or not str(reason).strip():
        raise ValidationError("A reason is required to remove a line")
    reason = str(reason).strip()
    request_id = request_id or ctx.request_id

    line = db.session.get(CartLine, line_id)
    if line is None:
        raise NotFoundError("Line not found", {"line_id": line_id})
    cart = line.cart
    session = db.session.get(RegisterSession, cart.register_session_id) if cart.register_session_id else None
    if session is None or session.status != "OPEN" or cart.status != "DRAFT":
        current_app.logger.warning(
            "Refused removal of line %s: session not open request_id=%s", line_id, request_id
        )
        return False

    snapshot = line.to_dict()
    try:
        cart_service.remove_line_inner(line)
        _sync_totals(session, cart)
        _append_note(
            session,
            f"Line {line_id} ({snapshot['sku']} x {snapshot['qty']}) removed by "
            f"{ctx.username or ctx.user_id}, approved by {approver.username}: {reason}",
        )
        append_ledger_event(
            event_type="register.line_removed",
            event_category="register",
            entity_type="cart_line",
            entity_id=line_id,
            actor_user_id=ctx.user_id,
            approver_user_id=approver.id,
            register_session_id=session.id,
            request_id=request_id,
            note=reason,
            payload={"line": snapshot},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Session %s: line %s removed by %s approved by %s request_id=%s",
        session.id, line_id, ctx.user_id, approver.id, request_id,
    )
    return True


# =============================================================================
# CLOSE
# =============================================================================

def close_session(
    session_id: int,
    reason: str | None,
    ctx: AuthContext | None,
    pin: str | None,
    *,
    tenders: Any = None,
    closing_cash_cents: Any = None,
    request_id: str | None = None,
) -> dict:
    """
    Settle and close a session.

    Order of checks: session must be OPEN (CONFLICT), PIN present
    (PIN_REQUIRED) and a manager's (FORBIDDEN), cart not empty (VALIDATION).
    Then one transaction writes the invoice, one payment per tender (all cash
    by default), one SALE movement per line, and the CLOSED session. Any
    failure rolls the whole thing back and the session stays OPEN.

    Returns {"invoice_id", "receipt_no", "totals", "session"}.
    """
    require_action(ctx, "CLOSE_SESSION")
    request_id = request_id or ctx.request_id

    session = get_session(session_id)
    if session.status != "OPEN":
        raise ConflictError("Session is already closed", {"session_id": session_id, "status": session.status})

    approver = auth_service.verify_pin(pin, approver_role_for("CLOSE_SESSION"))
    closing_cash = to_cents(closing_cash_cents, "closing_cash_cents") if closing_cash_cents is not None else None

    try:
        cart = get_session_cart(session)
        evaluation = cart_service.reprice_cart_inner(cart)
        if not evaluation.lines:
            raise ValidationError("No lines to close", {"session_id": session_id})

        now = utcnow()
        claimed = db.session.execute(
            update(RegisterSession)
            .where(RegisterSession.id == session_id, RegisterSession.status == "OPEN")
            .values(
                status="CLOSED",
                closed_at=now,
                closed_by_user_id=ctx.user_id,
                approved_by_user_id=approver.id,
                close_reason=reason,
            )
        )
        if claimed.rowcount != 1:
            raise ConflictError("Session was closed concurrently", {"session_id": session_id})

        invoice, payments = settle_cart_inner(
            cart,
            evaluation,
            ctx=ctx,
            source="quick-sale",
            tenders=tenders,
            register_session_id=session.id,
            request_id=request_id,
        )

        totals = evaluation.totals
        cash_in = sum(p.amount_cents for p in payments if p.method == "cash")
        session.gross_cents = totals["gross_cents"]
        session.discount_cents = totals["discount_cents"]
        session.tax_cents = totals["tax_cents"]
        session.net_cents = totals["net_cents"]
        session.invoice_id = invoice.id
        session.expected_cash_cents = session.opening_float_cents + cash_in
        if closing_cash is not None:
            session.closing_cash_cents = closing_cash
            session.variance_cents = closing_cash - session.expected_cash_cents

        append_ledger_event(
            event_type="register.session_closed",
            event_category="register",
            entity_type="register_session",
            entity_id=session.id,
            actor_user_id=ctx.user_id,
            approver_user_id=approver.id,
            register_session_id=session.id,
            invoice_id=invoice.id,
            request_id=request_id,
            occurred_at=now,
            note=reason,
            payload={"receipt_no": invoice.receipt_no, "net_cents": invoice.net_cents},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.warning("Close of session %s rolled back request_id=%s", session_id, request_id)
        raise

    current_app.logger.info(
        "Session %s closed as %s net=%s approved_by=%s request_id=%s",
        session.id, invoice.receipt_no, invoice.net_cents, approver.id, request_id,
    )
    return {
        "invoice_id": invoice.id,
        "receipt_no": invoice.receipt_no,
        "totals": totals,
        "payments": [p.to_dict() for p in payments],
        "session": session.to_dict(),
    }


def close_session_for_cashier(
    cashier_id: int,
    reason: str | None,
    request_id: str | None,
    ctx: AuthContext | None,
    pin: str | None,
    *,
    terminal: str | None = None,
    tenders: Any = None,
    closing_cash_cents: Any = None,
) -> dict:
    """
    Close the cashier's session for today on ``terminal``.

    The most recent session of the day is chosen, so a second call after a
    successful close reports CONFLICT rather than NOT_FOUND.
    """
    session = (
        db.session.query(RegisterSession)
        .filter_by(cashier_id=cashier_id, terminal=_terminal(terminal), business_date=business_date())
        .order_by(RegisterSession.id.desc())
        .first()
    )
    if session is None:
        raise NotFoundError("No session today for cashier", {"cashier_id": cashier_id})
    return close_session(
        session.id,
        reason,
        ctx,
        pin,
        tenders=tenders,
        closing_cash_cents=closing_cash_cents,
        request_id=request_id,
    )


def get_session_summary(session_id: int) -> dict:
    """Session with line count and, once closed, its invoice and payments."""
    session = get_session(session_id)
    cart = get_session_cart(session)
    data = {
        "session": session.to_dict(),
        "cart_id": cart.id,
        "line_count": len(cart.lines),
        "invoice": None,
    }
    if session.invoice_id:
        invoice = db.session.get(Invoice, session.invoice_id)
        data["invoice"] = invoice.to_dict(include_lines=True) if invoice else None
    return data
