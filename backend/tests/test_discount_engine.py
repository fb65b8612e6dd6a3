"""
Discount engine tests.

The engine is a pure function of lines and rules, so most cases build
RuleSnapshot/PricedLine values directly. Rule lookup is tested against the
database at the end.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from grocer.errors import ValidationError
from grocer.extensions import db
from grocer.models import DiscountRule
from grocer.services.discount_service import (
    PricedLine,
    RuleSnapshot,
    compute_tax_cents,
    evaluate,
    get_effective_rules,
    round_cents,
)
from grocer.time_utils import utcnow


APPLE, BANANAS, BREAD = 1, 2, 3
FRUIT = 10


def rule(id, kind="PERCENT", value="10", *, applies_to="PRODUCT", target_id=APPLE, **kwargs):
    return RuleSnapshot(
        id=id,
        name=kwargs.pop("name", f"rule-{id}"),
        applies_to=applies_to,
        target_id=target_id,
        kind=kind,
        value=Decimal(value),
        **kwargs,
    )


def apple_line(qty, line_id=None, **kwargs):
    return PricedLine(product_id=APPLE, qty=Decimal(qty), unit_price_cents=1000, category_id=FRUIT, line_id=line_id, **kwargs)


class TestCaps:

    def test_cap_limits_discounted_quantity(self):
        result = evaluate([apple_line(4)], [rule(1, max_qty_or_weight=Decimal(3))])
        line = result.lines[0]
        assert line.gross_cents == 4000
        assert line.discount_cents == 300
        assert result.totals["net_cents"] == 3700

    def test_cap_shared_across_lines(self):
        lines = [apple_line(2, 1), apple_line(2, 2), apple_line(1, 3)]
        result = evaluate(lines, [rule(1, name="Apples 10%", max_qty_or_weight=Decimal(3))])
        assert [r.discount_cents for r in result.lines] == [200, 100, 0]
        assert result.applied_rules[1].remaining_cap == Decimal(0)
        assert result.warnings == ['Cap reached for rule "Apples 10%"']

    def test_uncapped_rule_covers_everything(self):
        result = evaluate([apple_line(4), apple_line(1)], [rule(1)])
        assert [r.discount_cents for r in result.lines] == [400, 100]
        assert result.warnings == []


class TestAccumulation:

    def test_same_scope_first_priority_wins(self):
        rules = [rule(2, value="50", priority=20), rule(1, value="10", priority=10)]
        result = evaluate([apple_line(1)], rules)
        assert result.lines[0].discount_cents == 100
        assert [a.rule_id for a in result.applied_rules] == [1]

    def test_equal_priority_ties_break_on_id(self):
        rules = [rule(7, value="20", priority=5), rule(3, value="10", priority=5)]
        result = evaluate([apple_line(1)], rules)
        assert [a.rule_id for a in result.applied_rules] == [3]

    def test_different_scopes_accumulate(self):
        rules = [
            rule(1, value="10", priority=1),
            rule(2, kind="AMOUNT", value="100", applies_to="CATEGORY", target_id=FRUIT, priority=2),
        ]
        result = evaluate([apple_line(1)], rules)
        assert result.lines[0].discount_cents == 200
        assert [a.rule_id for a in result.lines[0].applied] == [1, 2]

    def test_exclusive_rule_stops_later_rules(self):
        rules = [
            rule(1, value="10", priority=1, exclusive=True),
            rule(2, kind="AMOUNT", value="100", applies_to="CATEGORY", target_id=FRUIT, priority=2),
        ]
        result = evaluate([apple_line(1)], rules)
        assert result.lines[0].discount_cents == 100
        assert [a.rule_id for a in result.applied_rules] == [1]

    def test_category_rule_skips_other_categories(self):
        bread = PricedLine(product_id=BREAD, qty=Decimal(1), unit_price_cents=2000)
        result = evaluate([bread], [rule(1, applies_to="CATEGORY", target_id=FRUIT)])
        assert result.lines[0].discount_cents == 0

    def test_amount_never_exceeds_line(self):
        result = evaluate([apple_line(1)], [rule(1, kind="AMOUNT", value="5000")])
        assert result.lines[0].discount_cents == 1000
        assert result.lines[0].total_cents == 0
        assert result.totals["anomaly"] is False


class TestManualDiscount:

    def test_manual_overrides_rules_and_keeps_cap(self):
        lines = [apple_line(2, 1, manual_discount_cents=50), apple_line(3, 2)]
        result = evaluate(lines, [rule(1, max_qty_or_weight=Decimal(3))])
        assert result.lines[0].discount_cents == 50
        assert result.lines[0].applied == []
        assert result.lines[1].discount_cents == 300

    def test_zero_manual_is_no_override(self):
        result = evaluate([apple_line(2, 1, manual_discount_cents=0)], [rule(1)])
        assert result.lines[0].discount_cents == 200
        assert [a.rule_id for a in result.lines[0].applied] == [1]

    def test_manual_capped_at_gross(self):
        result = evaluate([apple_line(1, manual_discount_cents=5000)], [])
        assert result.lines[0].discount_cents == 1000


class TestRoundingAndTax:

    @pytest.mark.parametrize(
        "mode,expected",
        [("NEAREST_1", 500), ("NEAREST_0_50", 500), ("NEAREST_0_10", 490), ("NEAREST_0_01", 494)],
    )
    def test_line_discount_rounding(self, mode, expected):
        line = PricedLine(product_id=BANANAS, qty=Decimal("1.235"), unit_price_cents=4000)
        result = evaluate([line], [rule(1, target_id=BANANAS)], rounding_mode=mode)
        assert result.lines[0].gross_cents == 4940
        assert result.lines[0].discount_cents == expected

    def test_round_cents_half_up(self):
        assert round_cents(Decimal("150"), "NEAREST_1") == 200
        assert round_cents(Decimal("149.99"), "NEAREST_1") == 100
        assert round_cents(Decimal("25"), "NEAREST_0_50") == 50

    def test_unknown_rounding_mode(self):
        with pytest.raises(ValidationError):
            round_cents(Decimal(1), "NEAREST_2")

    def test_tax_on_discounted_amount(self):
        result = evaluate([apple_line(1)], [rule(1)], tax_rate_bps=1000)
        line = result.lines[0]
        assert line.tax_cents == 90
        assert line.total_cents == 990
        assert result.totals == {
            "gross_cents": 1000,
            "discount_cents": 100,
            "tax_cents": 90,
            "net_cents": 990,
            "anomaly": False,
            "line_count": 1,
            "total_qty": "1.000",
        }

    def test_compute_tax_zero_rate(self):
        assert compute_tax_cents(1000, 0) == 0


class TestReasons:

    def test_missing_reason_reported(self):
        result = evaluate([apple_line(1, 5)], [rule(1, name="Staff", reason_required=True)])
        assert result.missing_reasons == [{"rule_id": 1, "rule_name": "Staff", "line_id": 5}]

    def test_reason_recorded(self):
        result = evaluate([apple_line(1, 5, discount_reason="staff card")], [rule(1, reason_required=True)])
        assert result.missing_reasons == []
        assert result.applied_rules[0].reason == "staff card"


class TestEffectiveRules:

    def _add(self, **kwargs):
        values = dict(name="r", applies_to="PRODUCT", target_id=APPLE, kind="PERCENT", value=Decimal("10"))
        values.update(kwargs)
        rule_row = DiscountRule(**values)
        db.session.add(rule_row)
        db.session.commit()
        return rule_row

    def test_window_and_active_flag(self, db_session):
        now = utcnow()
        self._add(name="current", active_from=now - timedelta(days=1), active_to=now + timedelta(days=1))
        self._add(name="open", priority=50)
        self._add(name="expired", active_to=now - timedelta(hours=1))
        self._add(name="future", active_from=now + timedelta(hours=1))
        self._add(name="off", active=False)

        names = [r.name for r in get_effective_rules(now)]
        assert names == ["open", "current"]

    def test_target_filter(self, db_session):
        self._add(name="apple")
        self._add(name="fruit", applies_to="CATEGORY", target_id=FRUIT)
        self._add(name="bread", target_id=BREAD)

        names = {r.name for r in get_effective_rules(product_ids=[APPLE], category_ids=[FRUIT])}
        assert names == {"apple", "fruit"}
