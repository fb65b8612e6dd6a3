"""
Stocktake reconciliation tests.

Verifies:
- Counts become ADJUST movements with reason "Stocktake"
- Re-applying the same count writes nothing
- Invalid rows abort the whole count
"""

from decimal import Decimal

import pytest

from grocer.errors import ForbiddenError, NotFoundError, PrecisionError, ValidationError
from grocer.extensions import db
from grocer.models import InventoryMovement
from grocer.services import stocktake_service
from grocer.services.stocktake_service import CountRow, parse_count_csv

from conftest import stock_of


def _stocktake_rows():
    return db.session.query(InventoryMovement).filter_by(reason=stocktake_service.STOCKTAKE_REASON).all()


class TestReconcile:

    def test_counts_become_adjustments(self, stocked, manager_ctx):
        result = stocktake_service.reconcile_stocktake(
            [
                {"sku": "APL-1", "counted_qty": 47},
                {"sku": "BAN-1", "counted_qty": "12.750", "note": "back room"},
                {"sku": "MLK-1", "counted_qty": 30},
            ],
            ctx=manager_ctx,
        )
        assert [d["sku"] for d in result["adjusted"]] == ["APL-1", "BAN-1"]
        assert [d["sku"] for d in result["unchanged"]] == ["MLK-1"]

        assert stock_of(stocked["apple"]) == Decimal("47.000")
        assert stock_of(stocked["bananas"]) == Decimal("12.750")
        assert stock_of(stocked["milk"]) == Decimal("30.000")

        notes = {m.product_id: m.note for m in _stocktake_rows()}
        assert notes[stocked["apple"].id] == "Stocktake: 50 → 47"
        assert notes[stocked["bananas"].id] == "Stocktake: 12.500 → 12.750 (back room)"
        assert all(m.type == "ADJUST" for m in _stocktake_rows())

    def test_idempotent(self, stocked, manager_ctx):
        counts = [("APL-1", 40), ("BRD-1", 25)]
        stocktake_service.reconcile_stocktake(counts, ctx=manager_ctx)
        first = len(_stocktake_rows())

        again = stocktake_service.reconcile_stocktake(counts, ctx=manager_ctx)
        assert again["adjusted"] == []
        assert len(again["unchanged"]) == 2
        assert len(_stocktake_rows()) == first == 2

    def test_unknown_sku_aborts(self, stocked, manager_ctx):
        with pytest.raises(NotFoundError):
            stocktake_service.reconcile_stocktake([("APL-1", 1), ("NOPE", 3)], ctx=manager_ctx)
        assert _stocktake_rows() == []

    def test_negative_count_rejected(self, stocked, manager_ctx):
        with pytest.raises(ValidationError) as exc:
            stocktake_service.reconcile_stocktake([("APL-1", -1)], ctx=manager_ctx)
        assert exc.value.code == "VALIDATION"

    def test_precision_enforced(self, stocked, manager_ctx):
        with pytest.raises(PrecisionError):
            stocktake_service.reconcile_stocktake([CountRow("BAN-1", "1.0005")], ctx=manager_ctx)

    def test_requires_manager(self, stocked, cashier_ctx):
        with pytest.raises(ForbiddenError):
            stocktake_service.reconcile_stocktake([("APL-1", 1)], ctx=cashier_ctx)


class TestPreview:

    def test_differences_write_nothing(self, stocked):
        diffs = stocktake_service.calculate_differences([("APL-1", 45)])
        assert diffs[0].current == Decimal("50.000")
        assert diffs[0].delta == Decimal("-5.000")
        assert _stocktake_rows() == []


class TestCsv:

    def test_header_and_blank_lines(self):
        rows = parse_count_csv("sku,counted_qty,note\nAPL-1,12\n\nBAN-1, 2.500 ,shelf\n")
        assert rows == [
            CountRow(sku="APL-1", counted_qty="12", note=None),
            CountRow(sku="BAN-1", counted_qty="2.500", note="shelf"),
        ]

    def test_no_header(self):
        rows = parse_count_csv("APL-1,3\n")
        assert rows == [CountRow(sku="APL-1", counted_qty="3", note=None)]
