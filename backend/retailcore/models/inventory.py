from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


MOVEMENT_INBOUND = "INBOUND"
MOVEMENT_OUTBOUND = "OUTBOUND"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_RETURN_CREDIT = "RETURN_CREDIT"

MOVEMENT_KINDS = (
    MOVEMENT_INBOUND,
    MOVEMENT_OUTBOUND,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN_CREDIT,
)


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    INVARIANTS:
    - quantity_after = quantity_before + quantity_delta
    - quantity_after >= 0
    - quantity_delta != 0
    - rows are never updated or deleted

    reference ties the movement to the document that caused it
    ("sale:V-20260101-00001", "void:...", "return:12", "replenishment:...").
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity_after >= 0", name="ck_movements_after_non_negative"),
        db.CheckConstraint("quantity_delta <> 0", name="ck_movements_delta_non_zero"),
        db.CheckConstraint(
            "quantity_after = quantity_before + quantity_delta",
            name="ck_movements_chain",
        ),
        db.Index("ix_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_movements_kind_occurred", "kind", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False)

    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    note = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(64), nullable=True, index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "kind": self.kind,
            "quantity_delta": self.quantity_delta,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "reference": self.reference,
        }
