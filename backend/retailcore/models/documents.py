from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


RETURN_STATUS_PENDING = "PENDING"
RETURN_STATUS_APPROVED = "APPROVED"
RETURN_STATUS_COMPLETED = "COMPLETED"
RETURN_STATUS_REJECTED = "REJECTED"

REPLENISHMENT_STATUS_PENDING = "PENDING"
REPLENISHMENT_STATUS_APPROVED = "APPROVED"
REPLENISHMENT_STATUS_ORDERED = "ORDERED"
REPLENISHMENT_STATUS_PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
REPLENISHMENT_STATUS_COMPLETED = "COMPLETED"
REPLENISHMENT_STATUS_CANCELLED = "CANCELLED"

REPLENISHMENT_PRIORITIES = ("LOW", "NORMAL", "HIGH", "URGENT")


class Return(db.Model):
    """
    Customer return document referencing a prior sale.

    LIFECYCLE:
    1. PENDING: Return requested, stock untouched
    2. APPROVED: Manager approved, ready to process
    3. COMPLETED: Stock credited (RETURN_CREDIT movements), refund fixed
    4. REJECTED: Manager rejected the request (terminal)

    For every (sale, product), the APPROVED + COMPLETED returned quantity
    never exceeds the quantity sold.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index("ix_returns_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "R-000123")
    document_number = db.Column(db.String(32), nullable=False, unique=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_PENDING, index=True)

    # Customer explanation
    motive = db.Column(db.String(255), nullable=True)

    refund_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    completed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    rejection_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    lines = db.relationship("ReturnLine", back_populates="return_doc", order_by="ReturnLine.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "sale_id": self.sale_id,
            "status": self.status,
            "motive": self.motive,
            "refund_cents": self.refund_cents,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "completed_by_user_id": self.completed_by_user_id,
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejection_reason": self.rejection_reason,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class ReturnLine(db.Model):
    """Individual line items on a return document."""
    __tablename__ = "return_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_return_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    # Copied from the sale line at request time
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_refund_cents = db.Column(db.Integer, nullable=False)

    motive = db.Column(db.String(255), nullable=True)

    # Ledger entry that credited stock (set on completion)
    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    return_doc = db.relationship("Return", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_refund_cents": self.line_refund_cents,
            "motive": self.motive,
            "movement_id": self.movement_id,
        }


class ReplenishmentOrder(db.Model):
    """
    Supplier restocking order.

    LIFECYCLE:
    PENDING -> APPROVED -> ORDERED -> PARTIALLY_RECEIVED* -> COMPLETED
    CANCELLED is reachable from any non-terminal state.

    Every receipt credits the ledger with an INBOUND movement, so one line
    may own several ledger entries. Stock already received is kept if the
    order is cancelled afterwards.
    """
    __tablename__ = "replenishment_orders"
    __table_args__ = (
        db.Index("ix_replenishments_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable code (e.g., "RP-20260115-00003")
    code = db.Column(db.String(32), nullable=False, unique=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    priority = db.Column(db.String(16), nullable=False, default="NORMAL", index=True)
    status = db.Column(db.String(24), nullable=False, default=REPLENISHMENT_STATUS_PENDING, index=True)

    expected_at = db.Column(db.DateTime, nullable=True)
    estimated_total_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    ordered_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    # Set when the order is force-closed with outstanding quantity
    close_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")
    lines = db.relationship("ReplenishmentLine", back_populates="order", order_by="ReplenishmentLine.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_fully_received(self) -> bool:
        return bool(self.lines) and all(line.outstanding == 0 for line in self.lines)

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "code": self.code,
            "supplier_id": self.supplier_id,
            "requested_by_user_id": self.requested_by_user_id,
            "priority": self.priority,
            "status": self.status,
            "expected_at": to_utc_z(self.expected_at) if self.expected_at else None,
            "estimated_total_cents": self.estimated_total_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "approved_by_user_id": self.approved_by_user_id,
            "ordered_at": to_utc_z(self.ordered_at) if self.ordered_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "close_reason": self.close_reason,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class ReplenishmentLine(db.Model):
    __tablename__ = "replenishment_lines"
    __table_args__ = (
        db.CheckConstraint("quantity_requested > 0", name="ck_replenishment_lines_requested_positive"),
        db.CheckConstraint(
            "quantity_received >= 0 AND quantity_received <= quantity_requested",
            name="ck_replenishment_lines_received_range",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("replenishment_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_requested = db.Column(db.Integer, nullable=False)
    quantity_received = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    order = db.relationship("ReplenishmentOrder", back_populates="lines")
    product = db.relationship("Product")

    @property
    def outstanding(self) -> int:
        return self.quantity_requested - (self.quantity_received or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity_requested": self.quantity_requested,
            "quantity_received": self.quantity_received,
            "outstanding": self.outstanding,
            "unit_cost_cents": self.unit_cost_cents,
        }


class DocumentSequence(db.Model):
    """
    Per-type counter backing human-readable document codes.

    next_number is the number the NEXT allocation will hand out.
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
        }
