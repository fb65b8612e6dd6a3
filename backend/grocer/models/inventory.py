from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from ..time_utils import to_utc_z


MOVEMENT_TYPES = ("RECEIVE", "ADJUST", "WASTE", "SALE")


class ImmutableRecordError(Exception):
    """Raised when code tries to update or delete an append-only row."""


class InventoryMovement(db.Model):
    """
    Append-only stock movement.

    WHY: Stock on hand is SUM(qty) over this table. There is no stored
    quantity to drift out of sync; corrections are new rows.

    SIGN CONVENTION:
    - RECEIVE: qty > 0
    - WASTE:   qty < 0 (normalized on write)
    - SALE:    qty < 0, reference_type="invoice", reference_id=invoice id
    - ADJUST:  signed delta (stocktake corrections use reason "Stocktake")

    IMMUTABLE: ORM listeners below refuse UPDATE and DELETE.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_product_created", "product_id", "created_at"),
        db.Index("ix_inventory_movements_reference", "reference_type", "reference_id"),
        db.CheckConstraint(
            "type IN ('RECEIVE', 'ADJUST', 'WASTE', 'SALE')",
            name="ck_inventory_movements_type",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Signed quantity (pieces or kg)
    qty = db.Column(db.Numeric(14, 3), nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)

    reason = db.Column(db.String(128), nullable=True, index=True)
    note = db.Column(db.Text, nullable=True)

    terminal = db.Column(db.String(32), nullable=True)
    cashier = db.Column(db.String(64), nullable=True)

    # Link to the originating document (invoice for SALE)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    invoice_line_id = db.Column(db.Integer, db.ForeignKey("invoice_lines.id"), nullable=True, index=True)

    unit_cost_cents = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    request_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))

    def __repr__(self) -> str:
        return f"<InventoryMovement id={self.id} product_id={self.product_id} type={self.type} qty={self.qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "qty": str(self.qty) if self.qty is not None else None,
            "type": self.type,
            "reason": self.reason,
            "note": self.note,
            "terminal": self.terminal,
            "cashier": self.cashier,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "invoice_line_id": self.invoice_line_id,
            "unit_cost_cents": self.unit_cost_cents,
            "created_by_user_id": self.created_by_user_id,
            "request_id": self.request_id,
            "created_at": to_utc_z(self.created_at),
        }


def forbid_mutation(model) -> None:
    """
    Register before_update/before_delete listeners that reject changes to ``model`` rows.

    Only column changes count; a relationship collection being touched marks
    the row dirty without altering it.
    """
    name = model.__name__

    @event.listens_for(model, "before_update")
    def _reject_update(mapper, connection, target):
        state = inspect(target)
        changed = [
            prop.key for prop in mapper.column_attrs
            if state.attrs[prop.key].history.has_changes()
        ]
        if changed:
            raise ImmutableRecordError(
                f"{name} {target.id} is append-only and cannot be updated ({', '.join(changed)})"
            )

    @event.listens_for(model, "before_delete")
    def _reject_delete(mapper, connection, target):
        raise ImmutableRecordError(f"{name} {target.id} is append-only and cannot be deleted")


forbid_mutation(InventoryMovement)
