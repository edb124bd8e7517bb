# Overview: Replenishment workflow; supplier orders received into the ledger.

"""
Replenishment Orders

LIFECYCLE:
    PENDING -> APPROVED -> ORDERED -> PARTIALLY_RECEIVED* -> COMPLETED
    CANCELLED from any non-terminal state

DESIGN:
- Each receipt credits stock with an INBOUND movement referencing the order code
- Receiving more than a line's outstanding quantity is rejected
- Cancelling keeps whatever stock was already received
- close_partial() finishes an order that will never be delivered in full
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from flask import current_app

from ..extensions import db
from ..exceptions import NotFoundError, InvalidQuantityError, IllegalTransitionError
from ..models import ReplenishmentOrder, ReplenishmentLine
from ..models.documents import (
    REPLENISHMENT_PRIORITIES,
    REPLENISHMENT_STATUS_PENDING,
    REPLENISHMENT_STATUS_APPROVED,
    REPLENISHMENT_STATUS_ORDERED,
    REPLENISHMENT_STATUS_PARTIALLY_RECEIVED,
    REPLENISHMENT_STATUS_COMPLETED,
    REPLENISHMENT_STATUS_CANCELLED,
)
from ..models.inventory import MOVEMENT_INBOUND
from ..pagination import paginate
from ..time_utils import utcnow
from ..validation import ValidationError
from . import ledger_service
from .catalog_service import get_product, get_user, require_supplier
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_document_number
from .state_machine import require_transition, is_terminal


RECEIVABLE_STATUSES = (REPLENISHMENT_STATUS_ORDERED, REPLENISHMENT_STATUS_PARTIALLY_RECEIVED)
URGENT_PRIORITIES = ("HIGH", "URGENT")


def _lock_order(order_id: int) -> ReplenishmentOrder:
    order = lock_for_update(db.session.query(ReplenishmentOrder).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError("ReplenishmentOrder", order_id)
    return order


def _order_code_exists(code: str) -> bool:
    return db.session.query(ReplenishmentOrder.id).filter_by(code=code).first() is not None


def _merge_lines(lines: list[dict]) -> dict[int, dict]:
    """One order line per product; repeated products are summed."""
    if not lines:
        raise InvalidQuantityError("An order needs at least one line", details={"lines": 0})

    merged: dict[int, dict] = {}
    for index, line in enumerate(lines):
        quantity = line.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(
                "Order quantity must be a positive integer",
                details={"line": index, "product_id": line.get("product_id"), "quantity": quantity},
            )
        unit_cost = line.get("unit_cost_cents")
        if unit_cost is not None and unit_cost < 0:
            raise ValidationError(
                "unit_cost_cents cannot be negative",
                details={"line": index, "unit_cost_cents": unit_cost},
            )

        product = get_product(line.get("product_id"))
        entry = merged.setdefault(product.id, {"quantity": 0, "unit_cost_cents": unit_cost})
        entry["quantity"] += quantity
        if unit_cost is not None:
            entry["unit_cost_cents"] = unit_cost
    return merged


def create_order(
    supplier_id: int,
    user_id: int,
    lines: list[dict],
    priority: str = "NORMAL",
    expected_at: Optional[datetime] = None,
    notes: str | None = None,
) -> ReplenishmentOrder:
    priority = (priority or "NORMAL").upper()
    if priority not in REPLENISHMENT_PRIORITIES:
        raise ValidationError(
            f"Unknown priority: {priority}",
            details={"priority": priority, "allowed": list(REPLENISHMENT_PRIORITIES)},
        )

    def _op():
        begin_write()
        require_supplier(supplier_id)
        get_user(user_id)
        merged = _merge_lines(lines)

        order = ReplenishmentOrder(
            code=next_document_number(document_type="REPLENISHMENT", prefix="RP", exists=_order_code_exists),
            supplier_id=supplier_id,
            requested_by_user_id=user_id,
            priority=priority,
            status=REPLENISHMENT_STATUS_PENDING,
            expected_at=expected_at,
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(order)
        db.session.flush()

        estimated = 0
        for product_id, entry in merged.items():
            db.session.add(ReplenishmentLine(
                order_id=order.id,
                product_id=product_id,
                quantity_requested=entry["quantity"],
                quantity_received=0,
                unit_cost_cents=entry["unit_cost_cents"],
            ))
            estimated += entry["quantity"] * (entry["unit_cost_cents"] or 0)

        order.estimated_total_cents = estimated
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Replenishment order %s created (priority %s)", order.code, order.priority)
    return order


def _transition(order_id: int, user_id: int, target: str, apply) -> ReplenishmentOrder:
    def _op():
        begin_write()
        order = _lock_order(order_id)
        get_user(user_id)
        require_transition("replenishment", order.status, target, entity_id=order.id)
        apply(order)
        order.status = target
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Replenishment order %s -> %s by user %s", order.code, target, user_id)
    return order


def approve_order(order_id: int, user_id: int) -> ReplenishmentOrder:
    def _apply(order):
        order.approved_at = utcnow()
        order.approved_by_user_id = user_id
    return _transition(order_id, user_id, REPLENISHMENT_STATUS_APPROVED, _apply)


def mark_ordered(order_id: int, user_id: int) -> ReplenishmentOrder:
    def _apply(order):
        order.ordered_at = utcnow()
    return _transition(order_id, user_id, REPLENISHMENT_STATUS_ORDERED, _apply)


def cancel_order(order_id: int, user_id: int, reason: str) -> ReplenishmentOrder:
    """Cancel a non-terminal order. Stock already received stays on hand."""
    if not reason or not reason.strip():
        raise ValidationError("A cancellation reason is required", details={"order_id": order_id})

    def _apply(order):
        order.cancelled_at = utcnow()
        order.cancelled_by_user_id = user_id
        order.cancel_reason = reason.strip()[:255]
    return _transition(order_id, user_id, REPLENISHMENT_STATUS_CANCELLED, _apply)


def close_partial(order_id: int, user_id: int, reason: str) -> ReplenishmentOrder:
    """Force PARTIALLY_RECEIVED -> COMPLETED when the rest will never arrive."""
    if not reason or not reason.strip():
        raise ValidationError("A closing reason is required", details={"order_id": order_id})

    def _apply(order):
        if order.status != REPLENISHMENT_STATUS_PARTIALLY_RECEIVED:
            raise IllegalTransitionError(
                f"Only partially received orders can be closed (order is {order.status})",
                details={"entity": "replenishment", "id": order.id, "current_status": order.status},
            )
        order.completed_at = utcnow()
        order.close_reason = reason.strip()[:255]
    return _transition(order_id, user_id, REPLENISHMENT_STATUS_COMPLETED, _apply)


def _match_line(order: ReplenishmentOrder, receipt: dict, index: int) -> ReplenishmentLine:
    line_id = receipt.get("line_id")
    product_id = receipt.get("product_id")
    for line in order.lines:
        if line_id is not None and line.id == line_id:
            return line
        if line_id is None and product_id is not None and line.product_id == product_id:
            return line
    raise NotFoundError(
        "ReplenishmentLine",
        line_id if line_id is not None else product_id,
        message=f"Receipt {index} does not match a line of order {order.code}",
    )


def receive(order_id: int, user_id: int, receipts: list[dict]) -> ReplenishmentOrder:
    """
    Book delivered quantities against an ORDERED / PARTIALLY_RECEIVED order.

    CRITICAL: every receipt of one call credits the ledger in the same
    transaction; one bad receipt rejects the whole delivery.
    """
    if not receipts:
        raise InvalidQuantityError("At least one receipt is required", details={"order_id": order_id})

    def _op():
        begin_write()
        order = _lock_order(order_id)
        get_user(user_id)

        if order.status not in RECEIVABLE_STATUSES:
            raise IllegalTransitionError(
                f"Order {order.code} is {order.status}; receipts are not accepted",
                details={"entity": "replenishment", "id": order.id, "current_status": order.status},
            )

        pending: dict[int, int] = {}
        matched = []
        for index, receipt in enumerate(receipts):
            quantity = receipt.get("quantity")
            line = _match_line(order, receipt, index)
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise InvalidQuantityError(
                    "Received quantity must be a positive integer",
                    details={"line_id": line.id, "product_id": line.product_id, "quantity": quantity},
                )
            pending[line.id] = pending.get(line.id, 0) + quantity
            if pending[line.id] > line.outstanding:
                raise InvalidQuantityError(
                    f"Receipt exceeds outstanding quantity for product {line.product_id}",
                    details={
                        "line_id": line.id,
                        "product_id": line.product_id,
                        "requested": line.quantity_requested,
                        "received": line.quantity_received,
                        "outstanding": line.outstanding,
                        "attempted": pending[line.id],
                    },
                )
            matched.append((line, quantity))

        for line, quantity in matched:
            ledger_service.apply_movement(
                line.product_id,
                MOVEMENT_INBOUND,
                quantity,
                user_id,
                f"Receipt for order {order.code}",
                reference=f"replenishment:{order.code}",
                commit=False,
            )
            line.quantity_received += quantity

        target = (
            REPLENISHMENT_STATUS_COMPLETED if order.is_fully_received
            else REPLENISHMENT_STATUS_PARTIALLY_RECEIVED
        )
        require_transition("replenishment", order.status, target, entity_id=order.id)
        order.status = target
        if target == REPLENISHMENT_STATUS_COMPLETED:
            order.completed_at = utcnow()
        db.session.commit()
        return order, [line.product_id for line, _ in matched]

    order, product_ids = run_with_retry(_op)
    current_app.logger.info("Receipt booked on order %s; status %s", order.code, order.status)
    ledger_service.notify_alerts(product_ids)
    return order


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> ReplenishmentOrder:
    order = db.session.get(ReplenishmentOrder, order_id)
    if not order:
        raise NotFoundError("ReplenishmentOrder", order_id)
    return order


def search_orders(
    *,
    supplier_id: int | None = None,
    status: str | None = None,
    priority: str | None = None,
    user_id: int | None = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    per_page: int | None = None,
):
    query = db.session.query(ReplenishmentOrder)
    if supplier_id is not None:
        query = query.filter(ReplenishmentOrder.supplier_id == supplier_id)
    if status:
        query = query.filter(ReplenishmentOrder.status == status)
    if priority:
        query = query.filter(ReplenishmentOrder.priority == priority.upper())
    if user_id is not None:
        query = query.filter(ReplenishmentOrder.requested_by_user_id == user_id)
    if start is not None:
        query = query.filter(ReplenishmentOrder.created_at >= start)
    if end is not None:
        query = query.filter(ReplenishmentOrder.created_at <= end)

    query = query.order_by(ReplenishmentOrder.created_at.desc(), ReplenishmentOrder.id.desc())
    return paginate(query, page, per_page)


def list_pending_receipt() -> list[ReplenishmentOrder]:
    """Orders placed with the supplier that still expect goods."""
    return (
        db.session.query(ReplenishmentOrder)
        .filter(ReplenishmentOrder.status.in_(RECEIVABLE_STATUSES))
        .order_by(ReplenishmentOrder.created_at.asc(), ReplenishmentOrder.id.asc())
        .all()
    )


def list_urgent() -> list[ReplenishmentOrder]:
    orders = (
        db.session.query(ReplenishmentOrder)
        .filter(ReplenishmentOrder.priority.in_(URGENT_PRIORITIES))
        .order_by(ReplenishmentOrder.created_at.asc(), ReplenishmentOrder.id.asc())
        .all()
    )
    open_orders = [o for o in orders if not is_terminal("replenishment", o.status)]
    # URGENT before HIGH, oldest first within a priority
    return sorted(open_orders, key=lambda o: REPLENISHMENT_PRIORITIES.index(o.priority), reverse=True)
