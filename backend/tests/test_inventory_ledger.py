"""
Inventory movement ledger tests.

Verifies:
- Stock on hand is always the sum of movements
- WASTE is stored negative whatever sign the caller sends
- Batches are validated in full before anything is written
- Movements cannot be edited or deleted
"""

from decimal import Decimal

import pytest

from grocer.errors import ForbiddenError, NotFoundError, PrecisionError, ValidationError
from grocer.extensions import db
from grocer.models import ImmutableRecordError, InventoryMovement, MasterLedgerEvent
from grocer.services import inventory_service

from conftest import stock_of


def _movement_sum(product):
    return sum(
        (Decimal(str(m.qty)) for m in db.session.query(InventoryMovement).filter_by(product_id=product.id)),
        Decimal("0"),
    )


class TestReceive:

    def test_receive_increases_stock(self, apple, bananas, cashier_ctx):
        result = inventory_service.post_receive(
            [{"sku": "APL-1", "qty": 12, "cost_cents": 550}, {"sku": "BAN-1", "qty": "3.250"}],
            ctx=cashier_ctx,
        )
        assert len(result["posted"]) == 2
        assert result["skipped"] == []
        assert stock_of(apple) == Decimal("12.000")
        assert stock_of(bananas) == Decimal("3.250")

        movement = db.session.query(InventoryMovement).filter_by(product_id=apple.id).one()
        assert movement.type == "RECEIVE"
        assert movement.unit_cost_cents == 550
        assert movement.created_by_user_id == cashier_ctx.user_id
        assert movement.cashier == "cashier"

    def test_update_cost(self, apple, cashier_ctx):
        inventory_service.post_receive([{"sku": "APL-1", "qty": 1, "cost_cents": 575}], ctx=cashier_ctx, update_cost=True)
        db.session.refresh(apple)
        assert apple.cost_cents == 575

    def test_non_positive_lines_skipped(self, apple, bread, cashier_ctx):
        result = inventory_service.post_receive(
            [{"sku": "APL-1", "qty": 5}, {"sku": "BRD-1", "qty": 0}, {"sku": "BRD-1", "qty": -3}],
            ctx=cashier_ctx,
        )
        assert len(result["posted"]) == 1
        assert [s["line"] for s in result["skipped"]] == [1, 2]
        assert stock_of(bread) == Decimal("0.000")

    def test_all_lines_invalid_is_validation(self, apple, cashier_ctx):
        with pytest.raises(ValidationError) as exc:
            inventory_service.post_receive([{"sku": "APL-1", "qty": 0}], ctx=cashier_ctx)
        assert exc.value.code == "VALIDATION"
        assert db.session.query(InventoryMovement).count() == 0

    def test_unknown_sku_writes_nothing(self, apple, cashier_ctx):
        with pytest.raises(NotFoundError):
            inventory_service.post_receive(
                [{"sku": "APL-1", "qty": 5}, {"sku": "NOPE", "qty": 1}],
                ctx=cashier_ctx,
            )
        assert db.session.query(InventoryMovement).count() == 0

    def test_precision_violation_writes_nothing(self, apple, bananas, cashier_ctx):
        with pytest.raises(PrecisionError) as exc:
            inventory_service.post_receive(
                [{"sku": "BAN-1", "qty": "1.000"}, {"sku": "APL-1", "qty": "1.5"}],
                ctx=cashier_ctx,
            )
        assert exc.value.details["sku"] == "APL-1"
        assert exc.value.details["line"] == 1
        assert db.session.query(InventoryMovement).count() == 0

    def test_receive_writes_ledger_event(self, apple, cashier_ctx):
        inventory_service.post_receive([{"sku": "APL-1", "qty": 2}], ctx=cashier_ctx)
        event = db.session.query(MasterLedgerEvent).filter_by(event_type="inventory.received").one()
        assert event.actor_user_id == cashier_ctx.user_id
        assert event.request_id == "req-cashier"


class TestAdjustAndWaste:

    def test_waste_is_always_negative(self, stocked, manager_ctx):
        apple = stocked["apple"]
        inventory_service.post_adjust([{"sku": "APL-1", "qty": 3}], mode="WASTE", reason="Bruised", ctx=manager_ctx)
        inventory_service.post_adjust([{"sku": "APL-1", "qty": -2}], mode="WASTE", reason="Bruised", ctx=manager_ctx)

        wastes = db.session.query(InventoryMovement).filter_by(product_id=apple.id, type="WASTE").all()
        assert sorted(Decimal(str(m.qty)) for m in wastes) == [Decimal("-3"), Decimal("-2")]
        assert stock_of(apple) == Decimal("45.000")

    def test_adjust_keeps_sign(self, stocked, manager_ctx):
        bananas = stocked["bananas"]
        inventory_service.post_adjust(
            [{"sku": "BAN-1", "qty": "-0.250"}, {"sku": "BAN-1", "qty": "1.000"}],
            mode="ADJUST", reason="Recount", ctx=manager_ctx,
        )
        assert stock_of(bananas) == Decimal("13.250")

    def test_zero_lines_skipped(self, stocked, manager_ctx):
        result = inventory_service.post_adjust(
            [{"sku": "APL-1", "qty": 0}, {"sku": "APL-1", "qty": 1}],
            mode="ADJUST", reason="Found", ctx=manager_ctx,
        )
        assert len(result["posted"]) == 1
        assert len(result["skipped"]) == 1

    def test_negative_stock_allowed(self, apple, manager_ctx):
        inventory_service.post_adjust([{"sku": "APL-1", "qty": 4}], mode="WASTE", reason="Spoiled", ctx=manager_ctx)
        assert stock_of(apple) == Decimal("-4.000")

    def test_reason_required(self, stocked, manager_ctx):
        with pytest.raises(ValidationError):
            inventory_service.post_adjust([{"sku": "APL-1", "qty": 1}], mode="ADJUST", reason=" ", ctx=manager_ctx)

    def test_unknown_mode(self, stocked, manager_ctx):
        with pytest.raises(ValidationError):
            inventory_service.post_adjust([{"sku": "APL-1", "qty": 1}], mode="SALE", reason="x", ctx=manager_ctx)

    def test_cashier_cannot_adjust(self, stocked, cashier_ctx):
        with pytest.raises(ForbiddenError):
            inventory_service.post_adjust([{"sku": "APL-1", "qty": 1}], mode="ADJUST", reason="x", ctx=cashier_ctx)


class TestStockInvariant:

    def test_stock_equals_sum_of_movements(self, stocked, manager_ctx):
        inventory_service.post_adjust([{"sku": "MLK-1", "qty": 2}], mode="WASTE", reason="Expired", ctx=manager_ctx)
        inventory_service.post_adjust([{"sku": "BAN-1", "qty": "-0.125"}], mode="ADJUST", reason="Scale", ctx=manager_ctx)
        inventory_service.post_receive([{"sku": "MLK-1", "qty": 6}], ctx=manager_ctx)

        stock = inventory_service.get_current_stock()
        for product in stocked.values():
            assert stock[product.id] == _movement_sum(product).quantize(Decimal("0.001"))

    def test_products_without_movements_report_zero(self, apple):
        assert inventory_service.get_current_stock() == {apple.id: Decimal("0.000")}


class TestImmutability:

    def test_movement_cannot_be_updated(self, stocked):
        movement = db.session.query(InventoryMovement).first()
        movement.qty = Decimal("999")
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()

    def test_movement_cannot_be_deleted(self, stocked):
        movement = db.session.query(InventoryMovement).first()
        db.session.delete(movement)
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()


class TestListMovements:

    def test_filters_by_sku_and_type(self, stocked, manager_ctx):
        inventory_service.post_adjust([{"sku": "APL-1", "qty": 1}], mode="WASTE", reason="Dropped", ctx=manager_ctx)
        rows = inventory_service.list_movements(sku="APL-1")
        assert [m.type for m in rows] == ["WASTE", "RECEIVE"]
        assert [m.type for m in inventory_service.list_movements(type="waste")] == ["WASTE"]
