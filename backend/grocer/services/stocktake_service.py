# backend/grocer/services/stocktake_service.py
"""
Stocktake reconciliation service.

WHY: A physical count is the truth for the shelf. Reconciliation turns the
difference between counted and ledger-derived stock into ADJUST movements
so the ledger matches the shelf again.

DESIGN:
- Input rows are (sku, counted_qty[, note]); counted_qty is non-negative and
  follows the unit precision rule
- Only non-zero deltas are written, so re-running the same count after a
  partial failure writes nothing twice
- The whole batch is validated before anything is written, and commits once
"""
from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..permissions import AuthContext, require_action
from ..validation import to_decimal, validate_quantity
from .concurrency import run_with_retry
from .inventory_service import get_current_stock, post_stock_adjustments_inner, resolve_product
from .ledger_service import append_ledger_event


STOCKTAKE_REASON = "Stocktake"


@dataclass
class CountRow:
    sku: str
    counted_qty: Any
    note: str | None = None


@dataclass
class StockDifference:
    product_id: int
    sku: str
    unit: str
    current: Decimal
    counted: Decimal
    delta: Decimal
    note: str | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "sku": self.sku,
            "unit": self.unit,
            "current": str(self.current),
            "counted": str(self.counted),
            "delta": str(self.delta),
            "note": self.note,
        }


def format_qty(value: Decimal, unit: str) -> str:
    """3 decimals for kg, whole number for pieces."""
    if unit == "pc":
        return str(value.quantize(Decimal(1)))
    return str(value.quantize(Decimal("0.001")))


def normalize_count_rows(rows: Iterable[Any]) -> list[CountRow]:
    """
    Accept dicts ({"sku", "counted_qty", "note"?}) or sequences (sku, counted_qty[, note]).
    """
    result = []
    for index, row in enumerate(rows):
        if isinstance(row, CountRow):
            result.append(row)
            continue
        if isinstance(row, dict):
            sku, qty, note = row.get("sku"), row.get("counted_qty"), row.get("note")
        elif isinstance(row, (list, tuple)) and len(row) >= 2:
            sku, qty = row[0], row[1]
            note = row[2] if len(row) > 2 else None
        else:
            raise ValidationError("Count row must be sku, counted_qty[, note]", {"row": index})

        if not sku or not str(sku).strip():
            raise ValidationError("sku is required", {"row": index})
        result.append(CountRow(sku=str(sku).strip(), counted_qty=qty, note=(note or None)))
    return result


def parse_count_csv(text: str) -> list[CountRow]:
    """
    Parse a count file: one ``sku,counted_qty[,note]`` row per line.

    A first row whose counted_qty column is not numeric is treated as a header.
    Blank lines are ignored.
    """
    rows = [r for r in csv.reader(io.StringIO(text)) if r and any(cell.strip() for cell in r)]
    if rows:
        try:
            to_decimal(rows[0][1] if len(rows[0]) > 1 else None, "counted_qty")
        except ValidationError:
            rows = rows[1:]
    return normalize_count_rows([[cell.strip() for cell in r] for r in rows])


def calculate_differences(counted: Iterable[Any]) -> list[StockDifference]:
    """
    Compare counts to ledger stock without writing anything.

    Raises NotFoundError for an unknown SKU, ValidationError for a negative
    count, PrecisionError for a count finer than its unit allows.
    """
    rows = normalize_count_rows(counted)
    if not rows:
        raise ValidationError("No count rows supplied")

    kg_decimals = current_app.config.get("KG_DECIMALS", 3)
    resolved = []
    for index, row in enumerate(rows):
        product = resolve_product(sku=row.sku)
        try:
            qty = validate_quantity(row.counted_qty, product.unit, kg_decimals)
        except ValidationError as exc:
            exc.details.update({"row": index, "sku": row.sku})
            raise
        if qty < 0:
            raise ValidationError("counted_qty cannot be negative", {"row": index, "sku": row.sku})
        resolved.append((product, qty, row.note))

    stock = get_current_stock({product.id for product, _, _ in resolved})
    return [
        StockDifference(
            product_id=product.id,
            sku=product.sku,
            unit=product.unit,
            current=stock[product.id],
            counted=qty,
            delta=qty - stock[product.id],
            note=note,
        )
        for product, qty, note in resolved
    ]


def reconcile_stocktake(
    counted: Iterable[Any],
    *,
    ctx: AuthContext,
    terminal: str | None = None,
) -> dict:
    """
    Apply a count: one ADJUST movement per non-zero delta.

    Returns {"adjusted": [...], "unchanged": [...], "movements": [...]}.
    Zero-delta rows appear in "unchanged" and write nothing.
    """
    require_action(ctx, "STOCKTAKE")
    counted = list(counted)

    def _op():
        differences = calculate_differences(counted)
        changed = [d for d in differences if d.delta != 0]
        unchanged = [d for d in differences if d.delta == 0]

        movements = post_stock_adjustments_inner(
            [
                (
                    d.product_id,
                    d.delta,
                    f"Stocktake: {format_qty(d.current, d.unit)} → {format_qty(d.counted, d.unit)}"
                    + (f" ({d.note})" if d.note else ""),
                )
                for d in changed
            ],
            reason=STOCKTAKE_REASON,
            ctx=ctx,
            terminal=terminal,
        )
        if movements:
            append_ledger_event(
                event_type="stocktake.reconciled",
                event_category="stocktake",
                entity_type="inventory_movement",
                entity_id=movements[0].id,
                actor_user_id=ctx.user_id,
                request_id=ctx.request_id,
                note=f"{len(movements)} adjustment(s), {len(unchanged)} unchanged",
                payload={"movement_ids": [m.id for m in movements]},
            )
        db.session.commit()
        return changed, unchanged, movements

    changed, unchanged, movements = run_with_retry(_op)
    current_app.logger.info(
        "Stocktake applied: %d adjusted, %d unchanged request_id=%s",
        len(changed), len(unchanged), ctx.request_id,
    )
    return {
        "adjusted": [d.to_dict() for d in changed],
        "unchanged": [d.to_dict() for d in unchanged],
        "movements": [m.to_dict() for m in movements],
    }
