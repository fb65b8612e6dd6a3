# Overview: Service-layer operations for the inventory movement ledger.

# backend/grocer/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryMovement, Product
from ..permissions import AuthContext, require_action
from ..validation import to_cents, validate_quantity
from .concurrency import run_with_retry
from .ledger_service import append_ledger_event
"""
Inventory Invariants (authoritative)

- Stock is ledger-derived: SUM(qty) over inventory_movements per product.
  There is no stored on-hand column anywhere.
- Movements are append-only; a correction is a new ADJUST row.
- RECEIVE rows are positive, WASTE and SALE rows negative, ADJUST signed.
- A batch posting is all-or-nothing: every line is resolved and validated
  before the first row is written, and the batch commits once.
- Negative stock is allowed (the shelf is the truth) but logged.
"""


QTY_QUANT = Decimal("0.001")
ADJUST_MODES = ("ADJUST", "WASTE")


@dataclass
class PreparedLine:
    """A batch line after SKU resolution and precision validation."""
    index: int
    product_id: int
    sku: str
    unit: str
    qty: Decimal
    cost_cents: int | None = None
    note: str | None = None


def to_qty(value) -> Decimal:
    """Normalize a DB numeric (may come back as float on SQLite) to 3-decimal Decimal."""
    if value is None:
        return Decimal("0.000")
    return Decimal(str(value)).quantize(QTY_QUANT, rounding=ROUND_HALF_UP)


def resolve_product(*, sku: str | None = None, product_id: int | None = None) -> Product:
    """Look up a product by id or SKU; NotFoundError if neither matches."""
    product = None
    if product_id is not None:
        product = db.session.get(Product, product_id)
    elif sku:
        product = db.session.query(Product).filter_by(sku=str(sku).strip()).first()
    if product is None:
        raise NotFoundError(
            f"Unknown product {sku or product_id}",
            {"sku": sku, "product_id": product_id},
        )
    return product


def get_current_stock(product_ids: Iterable[int] | None = None) -> dict[int, Decimal]:
    """
    Stock on hand per product, derived from movements.

    Products with no movements report 0. With ``product_ids=None`` every
    product is reported.
    """
    if product_ids is None:
        ids = [pid for (pid,) in db.session.query(Product.id).all()]
    else:
        ids = list(product_ids)
    stock = {pid: Decimal("0.000") for pid in ids}
    if not ids:
        return stock

    rows = (
        db.session.query(
            InventoryMovement.product_id,
            func.coalesce(func.sum(InventoryMovement.qty), 0),
        )
        .filter(InventoryMovement.product_id.in_(ids))
        .group_by(InventoryMovement.product_id)
        .all()
    )
    for pid, total in rows:
        stock[pid] = to_qty(total)
    return stock


def get_quantity_on_hand(product_id: int) -> Decimal:
    return get_current_stock([product_id])[product_id]


def _prepare_lines(lines: list[dict[str, Any]]) -> list[PreparedLine]:
    """
    Resolve and validate every line before any write.

    Raises NotFoundError for the first unknown SKU and PrecisionError for the
    first quantity that violates its unit's precision.
    """
    if not isinstance(lines, list) or not lines:
        raise ValidationError("lines must be a non-empty list")

    kg_decimals = current_app.config.get("KG_DECIMALS", 3)
    prepared = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError("Each line must be an object", {"line": index})
        if raw.get("product_id") is None and not raw.get("sku"):
            raise ValidationError("sku or product_id required", {"line": index})

        product = resolve_product(sku=raw.get("sku"), product_id=raw.get("product_id"))
        try:
            qty = validate_quantity(raw.get("qty"), product.unit, kg_decimals)
        except ValidationError as exc:
            exc.details.update({"line": index, "sku": product.sku})
            raise

        cost = raw.get("cost_cents", raw.get("cost"))
        prepared.append(
            PreparedLine(
                index=index,
                product_id=product.id,
                sku=product.sku,
                unit=product.unit,
                qty=qty,
                cost_cents=to_cents(cost, "cost_cents") if cost is not None else None,
                note=raw.get("note"),
            )
        )
    return prepared


def _skip(line: PreparedLine, reason: str) -> dict:
    return {"line": line.index, "sku": line.sku, "qty": str(line.qty), "reason": reason}


def _write_movement(
    *,
    product_id: int,
    qty: Decimal,
    type: str,
    ctx: AuthContext | None,
    reason: str | None = None,
    note: str | None = None,
    terminal: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    invoice_line_id: int | None = None,
    unit_cost_cents: int | None = None,
    request_id: str | None = None,
) -> InventoryMovement:
    movement = InventoryMovement(
        product_id=product_id,
        qty=qty,
        type=type,
        reason=reason,
        note=note,
        terminal=terminal,
        cashier=ctx.username if ctx else None,
        reference_type=reference_type,
        reference_id=reference_id,
        invoice_line_id=invoice_line_id,
        unit_cost_cents=unit_cost_cents,
        created_by_user_id=ctx.user_id if ctx else None,
        request_id=request_id or (ctx.request_id if ctx else None),
    )
    db.session.add(movement)
    return movement


def _warn_if_negative(product_ids: Iterable[int], request_id: str | None) -> None:
    db.session.flush()
    for pid, qty in get_current_stock(set(product_ids)).items():
        if qty < 0:
            current_app.logger.warning(
                "Stock for product %s is negative (%s) request_id=%s", pid, qty, request_id
            )


def post_receive(
    lines: list[dict[str, Any]],
    *,
    ctx: AuthContext,
    update_cost: bool = False,
    terminal: str | None = None,
) -> dict:
    """
    Post a batch of goods received.

    Each line: {"sku" | "product_id", "qty", "cost_cents"?, "note"?}.
    Lines with qty <= 0 are skipped and reported. With ``update_cost`` the
    line's cost becomes the product's current cost.

    Returns {"posted": [movement...], "skipped": [...]}.
    """
    require_action(ctx, "RECEIVE_STOCK")
    prepared = _prepare_lines(lines)

    valid = [p for p in prepared if p.qty > 0]
    skipped = [_skip(p, "qty must be positive") for p in prepared if p.qty <= 0]
    if not valid:
        raise ValidationError("No valid lines to receive", {"skipped": skipped})

    def _op():
        movements = []
        for line in valid:
            movements.append(
                _write_movement(
                    product_id=line.product_id,
                    qty=abs(line.qty),
                    type="RECEIVE",
                    ctx=ctx,
                    reason="Receive",
                    note=line.note,
                    terminal=terminal,
                    unit_cost_cents=line.cost_cents,
                )
            )
            if update_cost and line.cost_cents is not None:
                product = db.session.get(Product, line.product_id)
                product.cost_cents = line.cost_cents
        db.session.flush()

        append_ledger_event(
            event_type="inventory.received",
            event_category="inventory",
            entity_type="inventory_movement",
            entity_id=movements[0].id,
            actor_user_id=ctx.user_id,
            request_id=ctx.request_id,
            note=f"{len(movements)} line(s) received",
            payload={"movement_ids": [m.id for m in movements], "update_cost": update_cost},
        )
        db.session.commit()
        return movements

    movements = run_with_retry(_op)
    current_app.logger.info(
        "Received %d line(s), skipped %d request_id=%s", len(movements), len(skipped), ctx.request_id
    )
    return {"posted": [m.to_dict() for m in movements], "skipped": skipped}


def post_adjust(
    lines: list[dict[str, Any]],
    *,
    mode: str,
    reason: str,
    ctx: AuthContext,
    terminal: str | None = None,
) -> dict:
    """
    Post manual adjustments or waste.

    ADJUST writes each signed delta as given (zero lines are skipped).
    WASTE writes -abs(qty) whatever sign the caller sent.
    """
    mode = (mode or "").upper()
    if mode not in ADJUST_MODES:
        raise ValidationError("mode must be ADJUST or WASTE", {"mode": mode})
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")
    require_action(ctx, "ADJUST_STOCK")

    prepared = _prepare_lines(lines)
    valid = [p for p in prepared if p.qty != 0]
    skipped = [_skip(p, "qty is zero") for p in prepared if p.qty == 0]
    if not valid:
        raise ValidationError("No valid lines to adjust", {"skipped": skipped})

    def _op():
        movements = [
            _write_movement(
                product_id=line.product_id,
                qty=-abs(line.qty) if mode == "WASTE" else line.qty,
                type=mode,
                ctx=ctx,
                reason=str(reason).strip(),
                note=line.note,
                terminal=terminal,
            )
            for line in valid
        ]
        db.session.flush()
        append_ledger_event(
            event_type="inventory.adjusted" if mode == "ADJUST" else "inventory.wasted",
            event_category="inventory",
            entity_type="inventory_movement",
            entity_id=movements[0].id,
            actor_user_id=ctx.user_id,
            request_id=ctx.request_id,
            note=str(reason).strip(),
            payload={"movement_ids": [m.id for m in movements]},
        )
        _warn_if_negative([m.product_id for m in movements], ctx.request_id)
        db.session.commit()
        return movements

    movements = run_with_retry(_op)
    current_app.logger.info(
        "Posted %d %s line(s) reason=%r request_id=%s", len(movements), mode, reason, ctx.request_id
    )
    return {"posted": [m.to_dict() for m in movements], "skipped": skipped}


def post_stock_adjustments_inner(
    adjustments: list[tuple[int, Decimal, str]],
    *,
    reason: str,
    ctx: AuthContext,
    terminal: str | None = None,
) -> list[InventoryMovement]:
    """
    Write ADJUST rows for (product_id, delta, note) tuples. Does not commit.

    Used by stocktake reconciliation, which has already validated the batch.
    """
    movements = [
        _write_movement(
            product_id=product_id,
            qty=delta,
            type="ADJUST",
            ctx=ctx,
            reason=reason,
            note=note,
            terminal=terminal,
        )
        for product_id, delta, note in adjustments
    ]
    db.session.flush()
    return movements


def record_sale_movement(
    *,
    product_id: int,
    qty: Decimal,
    invoice_id: int,
    invoice_line_id: int | None,
    ctx: AuthContext | None,
    terminal: str | None = None,
    unit_cost_cents: int | None = None,
    request_id: str | None = None,
) -> InventoryMovement:
    """
    Write the SALE deduction for one invoice line. Does not commit.

    qty is the sold quantity (positive); the row stores its negation.
    """
    if qty <= 0:
        raise ValidationError("Sale quantity must be positive", {"product_id": product_id, "qty": str(qty)})
    movement = _write_movement(
        product_id=product_id,
        qty=-abs(qty),
        type="SALE",
        ctx=ctx,
        reason="Sale",
        terminal=terminal,
        reference_type="invoice",
        reference_id=invoice_id,
        invoice_line_id=invoice_line_id,
        unit_cost_cents=unit_cost_cents,
        request_id=request_id,
    )
    db.session.flush()
    return movement


def list_movements(
    *,
    product_id: int | None = None,
    sku: str | None = None,
    type: str | None = None,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[InventoryMovement]:
    """Movement log, newest first. Date bounds are inclusive."""
    q = db.session.query(InventoryMovement)
    if sku:
        product_id = resolve_product(sku=sku).id
    if product_id is not None:
        q = q.filter(InventoryMovement.product_id == product_id)
    if type:
        q = q.filter(InventoryMovement.type == type.upper())
    if reason:
        q = q.filter(InventoryMovement.reason == reason)
    if reference_type:
        q = q.filter(InventoryMovement.reference_type == reference_type)
    if reference_id is not None:
        q = q.filter(InventoryMovement.reference_id == reference_id)
    if date_from is not None:
        q = q.filter(InventoryMovement.created_at >= date_from)
    if date_to is not None:
        q = q.filter(InventoryMovement.created_at <= date_to)

    limit = max(1, min(int(limit), 1000))
    return (
        q.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .offset(max(0, int(offset)))
        .limit(limit)
        .all()
    )
