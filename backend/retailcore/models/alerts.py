from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


ALERT_LOW_STOCK = "LOW_STOCK"
ALERT_OUT_OF_STOCK = "OUT_OF_STOCK"
ALERT_REORDER = "REORDER"
ALERT_EXCESS = "EXCESS"

ALERT_KINDS = (ALERT_LOW_STOCK, ALERT_OUT_OF_STOCK, ALERT_REORDER, ALERT_EXCESS)

URGENCY_LOW = "LOW"
URGENCY_MEDIUM = "MEDIUM"
URGENCY_HIGH = "HIGH"
URGENCY_CRITICAL = "CRITICAL"

# Ascending severity; the rank drives ordering
URGENCY_RANK = {
    URGENCY_LOW: 1,
    URGENCY_MEDIUM: 2,
    URGENCY_HIGH: 3,
    URGENCY_CRITICAL: 4,
}


class StockAlert(db.Model):
    """
    Threshold alert raised by the alerting engine.

    At most one UNREAD alert exists per (product, kind). Reading an alert is
    the only way to close it; rising stock does not clear it.
    """
    __tablename__ = "stock_alerts"
    __table_args__ = (
        db.Index("ix_alerts_product_kind_read", "product_id", "kind", "is_read"),
        # One open alert per (product, kind); read alerts are history
        db.Index(
            "uq_alerts_unread_product_kind",
            "product_id",
            "kind",
            unique=True,
            sqlite_where=db.text("is_read = 0"),
            postgresql_where=db.text("is_read = false"),
        ),
        db.Index("ix_alerts_read_urgency", "is_read", "urgency"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False)
    urgency = db.Column(db.String(16), nullable=False)

    message = db.Column(db.String(255), nullable=True)
    stock_at_alert = db.Column(db.Integer, nullable=True)
    threshold_at_alert = db.Column(db.Integer, nullable=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime, nullable=True)
    read_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Free-text follow-up recorded by staff ("PO RP-... raised")
    action_note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "kind": self.kind,
            "urgency": self.urgency,
            "message": self.message,
            "stock_at_alert": self.stock_at_alert,
            "threshold_at_alert": self.threshold_at_alert,
            "is_read": self.is_read,
            "read_at": to_utc_z(self.read_at) if self.read_at else None,
            "read_by_user_id": self.read_by_user_id,
            "action_note": self.action_note,
            "created_at": to_utc_z(self.created_at),
        }
