"""
Register session (quick sale) tests.

Verifies:
- ensure_open is idempotent per cashier, terminal and day
- Line removal and close are gated by a manager PIN
- Close settles everything in one transaction, or nothing
- A closed session cannot be closed again
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from grocer.errors import ConflictError, ForbiddenError, NotFoundError, PinRequiredError, ValidationError
from grocer.extensions import db
from grocer.models import Cart, DiscountRule, Invoice, InventoryMovement, MasterLedgerEvent, Payment, RegisterSession
from grocer.services import inventory_service, register_service

from conftest import CASHIER_PIN, MANAGER_PIN, stock_of


def _sale_movements():
    return db.session.query(InventoryMovement).filter_by(type="SALE").all()


@pytest.fixture
def rung_up(stocked, cashier_ctx):
    """A session with three lines: 1 apple, 2 bread, 3 milk."""
    lines = [
        register_service.add_line(stocked["apple"].id, 1, ctx=cashier_ctx),
        register_service.add_line(stocked["bread"].id, 2, ctx=cashier_ctx),
        register_service.add_line(stocked["milk"].id, 3, ctx=cashier_ctx),
    ]
    session = register_service.get_open_session(cashier_ctx.user_id)
    return session, lines


class TestEnsureOpen:

    def test_idempotent(self, cashier, cashier_ctx):
        first = register_service.ensure_open(cashier.id, "T1", 5000, ctx=cashier_ctx)
        second = register_service.ensure_open(cashier.id, "T1", 9999, ctx=cashier_ctx)
        assert first.id == second.id
        assert second.opening_float_cents == 5000
        assert db.session.query(RegisterSession).count() == 1
        assert db.session.query(Cart).filter_by(register_session_id=first.id).count() == 1

    def test_one_session_per_terminal(self, cashier, cashier_ctx):
        t1 = register_service.ensure_open(cashier.id, "T1", ctx=cashier_ctx)
        t2 = register_service.ensure_open(cashier.id, "T2", ctx=cashier_ctx)
        assert t1.id != t2.id

    def test_open_writes_ledger_event(self, cashier, cashier_ctx):
        session = register_service.ensure_open(cashier.id, ctx=cashier_ctx)
        event = db.session.query(MasterLedgerEvent).filter_by(event_type="register.session_opened").one()
        assert event.register_session_id == session.id

    def test_unknown_cashier(self, db_session):
        with pytest.raises(NotFoundError):
            register_service.ensure_open(9999)


class TestLines:

    def test_add_line_opens_session_and_tracks_totals(self, rung_up):
        session, _ = rung_up
        db.session.refresh(session)
        assert session.status == "OPEN"
        assert session.gross_cents == 14000
        assert session.net_cents == 14000

    def test_list_lines_pages(self, rung_up):
        session, lines = rung_up
        page = register_service.list_lines(session.id, limit=2)
        assert [l["id"] for l in page["lines"]] == [lines[0].id, lines[1].id]
        assert page["has_more"] is True
        assert page["total_lines"] == 3

        rest = register_service.list_lines(session.id, limit=2, cursor=page["next_cursor"])
        assert [l["id"] for l in rest["lines"]] == [lines[2].id]
        assert rest["has_more"] is False
        assert rest["next_cursor"] is None

    @pytest.mark.parametrize("limit", [0, 501, "many"])
    def test_limit_bounds(self, rung_up, limit):
        session, _ = rung_up
        with pytest.raises(ValidationError):
            register_service.list_lines(session.id, limit=limit)

    def test_list_without_session(self, cashier_ctx):
        result = register_service.list_lines(ctx=cashier_ctx)
        assert result["session_id"] is None
        assert result["lines"] == []

    def test_manual_discount_on_line(self, stocked, cashier_ctx):
        line = register_service.add_line(stocked["milk"].id, 1, 500, ctx=cashier_ctx, discount_reason="dented")
        assert line.manual_discount_cents == 500
        assert line.line_total_cents == 2500

    def test_zero_discount_leaves_rules_in_force(self, stocked, cashier_ctx):
        db.session.add(DiscountRule(
            name="Apples 10%", applies_to="PRODUCT", target_id=stocked["apple"].id,
            kind="PERCENT", value=Decimal("10"),
        ))
        db.session.commit()

        without = register_service.add_line(stocked["apple"].id, 1, None, ctx=cashier_ctx)
        zero = register_service.add_line(stocked["apple"].id, 1, 0, ctx=cashier_ctx)
        assert zero.manual_discount_cents is None
        assert without.line_discount_cents == zero.line_discount_cents == 100


class TestRemoveLine:

    def test_requires_pin(self, rung_up, cashier_ctx):
        _, lines = rung_up
        with pytest.raises(PinRequiredError) as exc:
            register_service.remove_line(lines[0].id, None, cashier_ctx, "", "changed mind")
        assert exc.value.code == "PIN_REQUIRED"

    def test_cashier_pin_is_not_enough(self, rung_up, cashier_ctx):
        _, lines = rung_up
        with pytest.raises(ForbiddenError):
            register_service.remove_line(lines[0].id, None, cashier_ctx, CASHIER_PIN, "changed mind")

    def test_requires_reason(self, rung_up, cashier_ctx, manager):
        _, lines = rung_up
        with pytest.raises(ValidationError):
            register_service.remove_line(lines[0].id, None, cashier_ctx, MANAGER_PIN, "  ")

    def test_unknown_line(self, rung_up, cashier_ctx, manager):
        with pytest.raises(NotFoundError):
            register_service.remove_line(9999, None, cashier_ctx, MANAGER_PIN, "oops")

    def test_removal_is_audited(self, rung_up, cashier_ctx, manager):
        session, lines = rung_up
        assert register_service.remove_line(lines[0].id, "req-1", cashier_ctx, MANAGER_PIN, "changed mind") is True

        event = db.session.query(MasterLedgerEvent).filter_by(event_type="register.line_removed").one()
        assert event.approver_user_id == manager.id
        assert event.actor_user_id == cashier_ctx.user_id
        assert event.note == "changed mind"
        assert "changed mind" in db.session.get(RegisterSession, session.id).notes


class TestEndToEnd:

    def test_quick_sale_flow(self, rung_up, cashier, cashier_ctx, manager):
        session, lines = rung_up

        listed = register_service.list_lines(session.id)
        assert len(listed["lines"]) == 3
        assert sum(l["line_total_cents"] for l in listed["lines"]) == listed["total_amount_cents"]
        before_total = listed["total_amount_cents"]
        removed_total = listed["lines"][0]["line_total_cents"]

        # Nothing is settled before close
        assert _sale_movements() == []
        assert db.session.query(Payment).count() == 0
        assert db.session.query(Invoice).count() == 0

        assert register_service.remove_line(lines[0].id, None, cashier_ctx, MANAGER_PIN, "changed mind")
        listed = register_service.list_lines(session.id)
        assert len(listed["lines"]) == 2
        assert listed["total_amount_cents"] == before_total - removed_total

        result = register_service.close_session(session.id, "End of day", cashier_ctx, MANAGER_PIN)
        invoice = db.session.get(Invoice, result["invoice_id"])
        assert invoice.register_session_id == session.id
        assert invoice.net_cents == 13000

        payments = db.session.query(Payment).filter_by(invoice_id=invoice.id).all()
        assert [(p.method, p.amount_cents) for p in payments] == [("cash", invoice.net_cents)]

        sales = _sale_movements()
        assert {m.product_id for m in sales} == {lines[1].product_id, lines[2].product_id}
        assert all(m.reference_type == "invoice" and m.reference_id == invoice.id for m in sales)
        assert all(m.qty < 0 for m in sales)

        with pytest.raises(ConflictError):
            register_service.close_session(session.id, "again", cashier_ctx, MANAGER_PIN)

        fresh = register_service.ensure_open(cashier.id, "T9", ctx=cashier_ctx)
        with pytest.raises(PinRequiredError):
            register_service.close_session(fresh.id, "End of day", cashier_ctx, "")


class TestClose:

    def test_close_records_cash_and_approver(self, stocked, cashier, cashier_ctx, manager):
        register_service.ensure_open(cashier.id, opening_float_cents=5000, ctx=cashier_ctx)
        register_service.add_line(stocked["bread"].id, 2, ctx=cashier_ctx)

        result = register_service.close_session_for_cashier(
            cashier.id, "End of day", None, cashier_ctx, MANAGER_PIN, closing_cash_cents=8900,
        )
        session = result["session"]
        assert session["status"] == "CLOSED"
        assert session["approved_by_user_id"] == manager.id
        assert session["closed_by_user_id"] == cashier.id
        assert session["expected_cash_cents"] == 9000
        assert session["variance_cents"] == -100
        assert session["invoice_id"] == result["invoice_id"]

        event = db.session.query(MasterLedgerEvent).filter_by(event_type="register.session_closed").one()
        assert event.approver_user_id == manager.id

    def test_close_for_cashier_twice_conflicts(self, rung_up, cashier, cashier_ctx, manager):
        register_service.close_session_for_cashier(cashier.id, "EOD", None, cashier_ctx, MANAGER_PIN)
        with pytest.raises(ConflictError):
            register_service.close_session_for_cashier(cashier.id, "EOD", None, cashier_ctx, MANAGER_PIN)

    def test_close_loses_race_to_concurrent_close(self, rung_up, cashier_ctx, manager, monkeypatch):
        session, _ = rung_up
        real_get_session = register_service.get_session

        def closed_behind_our_back(session_id):
            loaded = real_get_session(session_id)
            # Another terminal closes the row after our status check has loaded it as OPEN.
            db.session.execute(
                update(RegisterSession)
                .where(RegisterSession.id == session_id)
                .values(status="CLOSED")
                .execution_options(synchronize_session=False)
            )
            return loaded

        monkeypatch.setattr(register_service, "get_session", closed_behind_our_back)
        with pytest.raises(ConflictError) as exc:
            register_service.close_session(session.id, "EOD", cashier_ctx, MANAGER_PIN)
        assert exc.value.message == "Session was closed concurrently"

        assert db.session.query(Invoice).count() == 0
        assert db.session.query(Payment).count() == 0
        assert _sale_movements() == []
        assert db.session.query(MasterLedgerEvent).filter_by(event_type="register.session_closed").count() == 0
        assert db.session.query(Cart).filter_by(register_session_id=session.id).one().status == "DRAFT"

    def test_close_for_cashier_without_session(self, cashier, cashier_ctx, manager):
        with pytest.raises(NotFoundError):
            register_service.close_session_for_cashier(cashier.id, "EOD", None, cashier_ctx, MANAGER_PIN)

    def test_split_tenders(self, rung_up, cashier_ctx, manager):
        session, _ = rung_up
        result = register_service.close_session(
            session.id, "EOD", cashier_ctx, MANAGER_PIN, tenders={"card": 10000, "cash": 4000},
        )
        assert sorted((p["method"], p["amount_cents"]) for p in result["payments"]) == [
            ("card", 10000), ("cash", 4000),
        ]
        assert result["session"]["expected_cash_cents"] == 4000

    def test_empty_session(self, cashier, cashier_ctx, manager):
        session = register_service.ensure_open(cashier.id, ctx=cashier_ctx)
        with pytest.raises(ValidationError):
            register_service.close_session(session.id, "EOD", cashier_ctx, MANAGER_PIN)
        assert db.session.get(RegisterSession, session.id).status == "OPEN"

    def test_wrong_pin(self, rung_up, cashier_ctx, manager):
        session, _ = rung_up
        with pytest.raises(ForbiddenError):
            register_service.close_session(session.id, "EOD", cashier_ctx, "9999")
        assert db.session.get(RegisterSession, session.id).status == "OPEN"

    def test_remove_after_close_returns_false(self, rung_up, cashier_ctx, manager):
        session, lines = rung_up
        register_service.close_session(session.id, "EOD", cashier_ctx, MANAGER_PIN)
        assert register_service.remove_line(lines[0].id, None, cashier_ctx, MANAGER_PIN, "late") is False

    def test_failure_during_close_rolls_back(self, rung_up, cashier_ctx, manager, monkeypatch):
        session, lines = rung_up
        real = inventory_service.record_sale_movement
        calls = []

        def fail_on_second(**kwargs):
            calls.append(kwargs["product_id"])
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return real(**kwargs)

        monkeypatch.setattr(inventory_service, "record_sale_movement", fail_on_second)
        with pytest.raises(RuntimeError):
            register_service.close_session(session.id, "EOD", cashier_ctx, MANAGER_PIN)

        assert db.session.get(RegisterSession, session.id).status == "OPEN"
        assert db.session.query(Invoice).count() == 0
        assert db.session.query(Payment).count() == 0
        assert _sale_movements() == []
        assert db.session.query(MasterLedgerEvent).filter_by(event_type="register.session_closed").count() == 0
        assert len(register_service.list_lines(session.id)["lines"]) == 3
        assert stock_of(lines[0].product) == Decimal("50.000")

        monkeypatch.setattr(inventory_service, "record_sale_movement", real)
        result = register_service.close_session(session.id, "EOD", cashier_ctx, MANAGER_PIN)
        assert result["receipt_no"] == "INV-000001"
        assert len(_sale_movements()) == 3
