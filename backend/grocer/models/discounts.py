from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class DiscountRule(db.Model):
    """
    Automatic discount rule.

    TARGETING:
    - applies_to=PRODUCT: target_id is a product id
    - applies_to=CATEGORY: target_id is a category id

    KIND:
    - PERCENT: value is a percentage (e.g. 10 = 10%)
    - AMOUNT: value is cents off per line

    max_qty_or_weight caps the discounted quantity across the whole cart.
    Lower priority numbers are evaluated first.
    """
    __tablename__ = "discount_rules"
    __table_args__ = (
        db.Index("ix_discount_rules_target", "applies_to", "target_id"),
        db.Index("ix_discount_rules_active_window", "active", "active_from", "active_to"),
        db.CheckConstraint("applies_to IN ('PRODUCT', 'CATEGORY')", name="ck_discount_rules_applies_to"),
        db.CheckConstraint("kind IN ('PERCENT', 'AMOUNT')", name="ck_discount_rules_kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)

    applies_to = db.Column(db.String(16), nullable=False)
    target_id = db.Column(db.Integer, nullable=False)

    kind = db.Column(db.String(16), nullable=False)
    value = db.Column(db.Numeric(12, 2), nullable=False)
    max_qty_or_weight = db.Column(db.Numeric(14, 3), nullable=True)

    active_from = db.Column(db.DateTime(timezone=True), nullable=True)
    active_to = db.Column(db.DateTime(timezone=True), nullable=True)
    priority = db.Column(db.Integer, nullable=False, default=100)

    reason_required = db.Column(db.Boolean, nullable=False, default=False)
    exclusive = db.Column(db.Boolean, nullable=False, default=False)
    active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<DiscountRule id={self.id} name={self.name!r} {self.kind} {self.value} priority={self.priority}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "applies_to": self.applies_to,
            "target_id": self.target_id,
            "kind": self.kind,
            "value": str(self.value),
            "max_qty_or_weight": str(self.max_qty_or_weight) if self.max_qty_or_weight is not None else None,
            "active_from": to_utc_z(self.active_from),
            "active_to": to_utc_z(self.active_to),
            "priority": self.priority,
            "reason_required": self.reason_required,
            "exclusive": self.exclusive,
            "active": self.active,
        }
