# Overview: Discount rule lookup and the pure cart discount evaluator.

"""
Discount Engine

WHY: Promotions are data (DiscountRule rows), not code. Evaluation is a pure
function of cart lines and rules so the cart, the session close and the
preview endpoint all compute identical numbers.

EVALUATION ORDER:
1. Rules sorted by priority ascending, ties by id ascending
2. Each rule walks the cart lines in order; a capped rule consumes its
   max_qty_or_weight across lines until exhausted
3. PERCENT: value% of (eligible_qty * unit_price)
   AMOUNT:  flat value in cents per line
   Neither may exceed what is left of the line after earlier rules
4. Cumulative across scopes; within one scope (applies_to, target_id) the
   first rule wins; an exclusive rule ends evaluation for its lines
5. Accumulate in Decimal cents, round each line once with ROUNDING_MODE

Lines carrying a manual discount are skipped by the rules (the override
replaces the rule discount) and do not consume caps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import DiscountRule
from ..time_utils import utcnow


ROUNDING_STEPS = {
    "NEAREST_1": Decimal(100),
    "NEAREST_0_50": Decimal(50),
    "NEAREST_0_10": Decimal(10),
    "NEAREST_0_01": Decimal(1),
}

HUNDRED = Decimal(100)


def round_cents(amount: Decimal, mode: str = "NEAREST_1") -> int:
    """Round a cent amount half-up to the currency step of ``mode``."""
    try:
        step = ROUNDING_STEPS[mode]
    except KeyError:
        raise ValidationError(f"Unknown rounding mode {mode!r}", {"allowed": sorted(ROUNDING_STEPS)})
    return int((Decimal(amount) / step).quantize(Decimal(1), rounding=ROUND_HALF_UP) * step)


def compute_tax_cents(taxable_cents: int, tax_rate_bps: int) -> int:
    if not tax_rate_bps or taxable_cents <= 0:
        return 0
    return int((Decimal(taxable_cents) * tax_rate_bps / Decimal(10000)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class RuleSnapshot:
    """Plain-value copy of a DiscountRule; keeps evaluation independent of the ORM session."""
    id: int
    name: str
    applies_to: str
    target_id: int
    kind: str
    value: Decimal
    priority: int = 100
    max_qty_or_weight: Decimal | None = None
    exclusive: bool = False
    reason_required: bool = False

    @classmethod
    def from_model(cls, rule: DiscountRule) -> "RuleSnapshot":
        return cls(
            id=rule.id,
            name=rule.name,
            applies_to=rule.applies_to,
            target_id=rule.target_id,
            kind=rule.kind,
            value=Decimal(str(rule.value)),
            priority=rule.priority if rule.priority is not None else 100,
            max_qty_or_weight=(
                Decimal(str(rule.max_qty_or_weight))
                if rule.max_qty_or_weight is not None and Decimal(str(rule.max_qty_or_weight)) > 0
                else None
            ),
            exclusive=bool(rule.exclusive),
            reason_required=bool(rule.reason_required),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "applies_to": self.applies_to,
            "target_id": self.target_id,
            "kind": self.kind,
            "value": str(self.value),
            "priority": self.priority,
            "max_qty_or_weight": str(self.max_qty_or_weight) if self.max_qty_or_weight is not None else None,
            "exclusive": self.exclusive,
            "reason_required": self.reason_required,
        }

    @property
    def scope(self) -> tuple[str, int]:
        return (self.applies_to, self.target_id)

    def matches(self, line: "PricedLine") -> bool:
        if self.applies_to == "PRODUCT":
            return line.product_id == self.target_id
        if self.applies_to == "CATEGORY":
            return line.category_id is not None and line.category_id == self.target_id
        return False


@dataclass
class PricedLine:
    """Engine input: one cart line as plain values. A manual discount of 0 is no override."""
    product_id: int
    qty: Decimal
    unit_price_cents: int
    category_id: int | None = None
    line_id: int | None = None
    manual_discount_cents: int | None = None
    discount_reason: str | None = None

    @property
    def gross(self) -> Decimal:
        return Decimal(self.qty) * self.unit_price_cents


@dataclass
class AppliedRule:
    rule_id: int
    rule_name: str
    line_id: int | None
    product_id: int
    amount: Decimal
    eligible_qty: Decimal
    remaining_cap: Decimal | None = None
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "line_id": self.line_id,
            "product_id": self.product_id,
            "amount": str(self.amount.quantize(Decimal("0.01"))),
            "eligible_qty": str(self.eligible_qty),
            "remaining_cap": str(self.remaining_cap) if self.remaining_cap is not None else None,
            "reason": self.reason,
        }


@dataclass
class LineResult:
    line: PricedLine
    gross_cents: int
    auto_discount_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int
    applied: list[AppliedRule] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "line_id": self.line.line_id,
            "product_id": self.line.product_id,
            "qty": str(self.line.qty),
            "unit_price_cents": self.line.unit_price_cents,
            "gross_cents": self.gross_cents,
            "auto_discount_cents": self.auto_discount_cents,
            "manual_discount_cents": self.line.manual_discount_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "applied_rules": [a.to_dict() for a in self.applied],
        }


@dataclass
class EvaluationResult:
    lines: list[LineResult]
    applied_rules: list[AppliedRule]
    warnings: list[str]
    missing_reasons: list[dict]

    @property
    def totals(self) -> dict:
        gross = sum(r.gross_cents for r in self.lines)
        discount = sum(r.discount_cents for r in self.lines)
        tax = sum(r.tax_cents for r in self.lines)
        net = gross - discount + tax
        return {
            "gross_cents": gross,
            "discount_cents": discount,
            "tax_cents": tax,
            "net_cents": max(net, 0),
            "anomaly": net < 0,
            "line_count": len(self.lines),
            "total_qty": str(sum((Decimal(r.line.qty) for r in self.lines), Decimal("0.000"))),
        }

    def to_dict(self) -> dict:
        return {
            "lines": [r.to_dict() for r in self.lines],
            "totals": self.totals,
            "applied_rules": [a.to_dict() for a in self.applied_rules],
            "warnings": self.warnings,
            "missing_reasons": self.missing_reasons,
        }


def get_effective_rules(
    now: datetime | None = None,
    *,
    product_ids: Iterable[int] | None = None,
    category_ids: Iterable[int] | None = None,
) -> list[RuleSnapshot]:
    """
    Active rules whose window contains ``now``, optionally narrowed to targets.

    A missing active_from/active_to bound is open-ended. Ordered by priority, id.
    """
    now = now or utcnow()
    q = db.session.query(DiscountRule).filter(
        DiscountRule.active.is_(True),
        db.or_(DiscountRule.active_from.is_(None), DiscountRule.active_from <= now),
        db.or_(DiscountRule.active_to.is_(None), DiscountRule.active_to >= now),
    )
    if product_ids is not None or category_ids is not None:
        product_ids = list(product_ids or [])
        category_ids = [c for c in (category_ids or []) if c is not None]
        q = q.filter(
            db.or_(
                db.and_(DiscountRule.applies_to == "PRODUCT", DiscountRule.target_id.in_(product_ids)),
                db.and_(DiscountRule.applies_to == "CATEGORY", DiscountRule.target_id.in_(category_ids)),
            )
        )
    rules = q.order_by(DiscountRule.priority.asc(), DiscountRule.id.asc()).all()
    return [RuleSnapshot.from_model(r) for r in rules]


def evaluate(
    lines: Sequence[PricedLine],
    rules: Iterable[RuleSnapshot],
    *,
    rounding_mode: str = "NEAREST_1",
    tax_rate_bps: int = 0,
) -> EvaluationResult:
    """
    Compute per-line discounts, tax and totals. No I/O, no mutation of inputs.
    """
    ordered = sorted(rules, key=lambda r: (r.priority, r.id))

    raw = [Decimal(0) for _ in lines]
    remaining = [line.gross for line in lines]
    claimed: list[set] = [set() for _ in lines]
    locked = [bool(line.manual_discount_cents) for line in lines]
    applied_per_line: list[list[AppliedRule]] = [[] for _ in lines]

    applied_rules: list[AppliedRule] = []
    warnings: list[str] = []
    missing_reasons: list[dict] = []

    for rule in ordered:
        cap = rule.max_qty_or_weight
        for idx, line in enumerate(lines):
            if locked[idx] or not rule.matches(line) or rule.scope in claimed[idx]:
                continue
            if line.qty <= 0 or remaining[idx] <= 0:
                continue
            if cap is not None and cap <= 0:
                warnings.append(f'Cap reached for rule "{rule.name}"')
                break

            eligible_qty = min(Decimal(line.qty), cap) if cap is not None else Decimal(line.qty)
            if rule.kind == "PERCENT":
                candidate = eligible_qty * line.unit_price_cents * rule.value / HUNDRED
            elif rule.kind == "AMOUNT":
                candidate = rule.value
            else:
                continue
            candidate = min(candidate, remaining[idx])
            if candidate <= 0:
                continue

            raw[idx] += candidate
            remaining[idx] -= candidate
            claimed[idx].add(rule.scope)
            if cap is not None:
                cap -= eligible_qty
            if rule.exclusive:
                locked[idx] = True

            reason = (line.discount_reason or "").strip() or None
            if rule.reason_required and reason is None:
                missing_reasons.append({"rule_id": rule.id, "rule_name": rule.name, "line_id": line.line_id})

            applied = AppliedRule(
                rule_id=rule.id,
                rule_name=rule.name,
                line_id=line.line_id,
                product_id=line.product_id,
                amount=candidate,
                eligible_qty=eligible_qty,
                remaining_cap=cap,
                reason=reason if rule.reason_required else None,
            )
            applied_per_line[idx].append(applied)
            applied_rules.append(applied)

    results = []
    for idx, line in enumerate(lines):
        gross_cents = int(line.gross.quantize(Decimal(1), rounding=ROUND_HALF_UP))
        auto_cents = min(round_cents(raw[idx], rounding_mode), gross_cents) if raw[idx] > 0 else 0
        if line.manual_discount_cents:
            discount_cents = max(0, min(int(line.manual_discount_cents), gross_cents))
        else:
            discount_cents = auto_cents
        tax_cents = compute_tax_cents(gross_cents - discount_cents, tax_rate_bps)
        results.append(
            LineResult(
                line=line,
                gross_cents=gross_cents,
                auto_discount_cents=auto_cents,
                discount_cents=discount_cents,
                tax_cents=tax_cents,
                total_cents=max(gross_cents - discount_cents + tax_cents, 0),
                applied=applied_per_line[idx],
            )
        )

    return EvaluationResult(
        lines=results,
        applied_rules=applied_rules,
        warnings=warnings,
        missing_reasons=missing_reasons,
    )


def evaluate_with_config(lines: Sequence[PricedLine], rules: Iterable[RuleSnapshot] | None = None) -> EvaluationResult:
    """evaluate() with rounding and tax taken from the app config; rules default to the effective set."""
    if rules is None:
        rules = get_effective_rules(
            product_ids={line.product_id for line in lines},
            category_ids={line.category_id for line in lines},
        )
    return evaluate(
        lines,
        rules,
        rounding_mode=current_app.config.get("ROUNDING_MODE", "NEAREST_1"),
        tax_rate_bps=current_app.config.get("TAX_RATE_BPS", 0),
    )
