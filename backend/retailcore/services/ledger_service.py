# Overview: Stock ledger; the only writer of Product.quantity_on_hand.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import func, case

from ..extensions import db
from ..exceptions import InvalidQuantityError, InsufficientStockError
from ..models import Product, StockMovement
from ..models.inventory import (
    MOVEMENT_INBOUND,
    MOVEMENT_OUTBOUND,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN_CREDIT,
    MOVEMENT_KINDS,
)
from ..pagination import paginate
from ..time_utils import utcnow
from . import alert_service
from .catalog_service import get_product, get_user
from .concurrency import begin_write, run_with_retry

"""
Stock Ledger Invariants (authoritative)

- apply_movement is the only code path that changes quantity_on_hand.
- Each change appends exactly one StockMovement in the same transaction.
- quantity_after = quantity_before + quantity_delta, quantity_after >= 0.
- Products start at zero; replaying all movements reproduces the stored quantity.
- Movements are never updated or deleted.
"""


def _resolve_delta(kind: str, quantity: int, before: int) -> int:
    """
    Turn the caller's quantity into a signed delta for the kind.

    INBOUND / RETURN_CREDIT: quantity is the positive delta
    OUTBOUND: quantity is the negative delta
    ADJUSTMENT: quantity is the target on-hand, delta = target - before
    """
    if kind not in MOVEMENT_KINDS:
        raise InvalidQuantityError(
            f"Unknown movement kind: {kind}",
            details={"kind": kind, "allowed": list(MOVEMENT_KINDS)},
        )
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError("quantity must be an integer", details={"quantity": quantity})

    if kind == MOVEMENT_ADJUSTMENT:
        if quantity < 0:
            raise InvalidQuantityError(
                "Adjustment target cannot be negative",
                details={"target_quantity": quantity},
            )
        delta = quantity - before
    else:
        delta = quantity

    if delta == 0:
        raise InvalidQuantityError(
            "Movement would not change stock",
            details={"kind": kind, "quantity": quantity, "on_hand": before},
        )
    if kind == MOVEMENT_OUTBOUND and delta > 0:
        raise InvalidQuantityError(
            "OUTBOUND movements must be negative",
            details={"kind": kind, "quantity": quantity},
        )
    if kind in (MOVEMENT_INBOUND, MOVEMENT_RETURN_CREDIT) and delta < 0:
        raise InvalidQuantityError(
            f"{kind} movements must be positive",
            details={"kind": kind, "quantity": quantity},
        )
    return delta


def _apply_locked(
    product: Product,
    kind: str,
    quantity: int,
    actor_user_id: int,
    note: str | None,
    reference: str | None,
) -> StockMovement:
    """Write the new quantity and append the movement. Product row must already be locked."""
    before = product.quantity_on_hand
    delta = _resolve_delta(kind, quantity, before)
    after = before + delta

    if after < 0:
        if kind == MOVEMENT_OUTBOUND:
            raise InsufficientStockError(
                f"Insufficient stock for product {product.id}",
                details={
                    "product_id": product.id,
                    "on_hand": before,
                    "requested_quantity": -delta,
                },
            )
        raise InvalidQuantityError(
            "Movement would drive stock below zero",
            details={"product_id": product.id, "on_hand": before, "quantity_delta": delta},
        )

    product.quantity_on_hand = after

    movement = StockMovement(
        product_id=product.id,
        kind=kind,
        quantity_delta=delta,
        quantity_before=before,
        quantity_after=after,
        actor_user_id=actor_user_id,
        occurred_at=utcnow(),
        note=note,
        reference=reference,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def apply_movement(
    product_id: int,
    kind: str,
    quantity: int,
    actor_user_id: int,
    note: str | None = None,
    *,
    reference: str | None = None,
    commit: bool = True,
) -> StockMovement:
    """
    Change a product's on-hand quantity and record why.

    CRITICAL: read-current / compute-new / write-new / append-movement run
    under the product row lock (BEGIN IMMEDIATE on SQLite) and the product's
    version_id. Conflicts are retried, then surface as ConcurrencyConflictError.

    commit=False joins the caller's open transaction and skips alerting; the
    caller commits and then calls notify_alerts().
    """
    def _op():
        if commit:
            begin_write()
        get_user(actor_user_id)
        product = get_product(product_id, lock=True)
        movement = _apply_locked(product, kind, quantity, actor_user_id, note, reference)
        if commit:
            db.session.commit()
        return movement

    if not commit:
        return _op()

    movement = run_with_retry(_op)
    current_app.logger.info(
        "Stock movement %s: product=%s kind=%s delta=%s after=%s",
        movement.id, movement.product_id, movement.kind,
        movement.quantity_delta, movement.quantity_after,
    )
    notify_alerts([movement.product_id])
    return movement


def notify_alerts(product_ids) -> None:
    """
    Run the alerting engine for products whose stock just changed.

    Each product is evaluated in its own transaction. A failure is logged and
    rolled back; the committed stock change is never undone.
    """
    for product_id in dict.fromkeys(product_ids):
        try:
            begin_write()
            product = get_product(product_id, lock=True)
            alert_service.evaluate(product.id, product.quantity_on_hand, product.min_stock)
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.warning(
                "Alert evaluation failed for product %s", product_id, exc_info=True
            )


def register_inbound(product_id: int, quantity: int, actor_user_id: int, note: str | None = None) -> StockMovement:
    """Manual stock entry (delivery without an order, opening stock)."""
    return apply_movement(product_id, MOVEMENT_INBOUND, quantity, actor_user_id, note or "Manual inbound")


def register_adjustment(product_id: int, target_quantity: int, actor_user_id: int, note: str | None = None) -> StockMovement:
    """Stock-take: set on-hand to the counted quantity."""
    return apply_movement(product_id, MOVEMENT_ADJUSTMENT, target_quantity, actor_user_id, note or "Stock count adjustment")


# =============================================================================
# TRACEABILITY
# =============================================================================

def get_traceability(product_id: int) -> list[StockMovement]:
    """Full movement history of a product, oldest first."""
    get_product(product_id)
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.occurred_at.asc(), StockMovement.id.asc())
        .all()
    )


def search_movements(
    *,
    product_id: int | None = None,
    kind: str | None = None,
    actor_user_id: int | None = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    per_page: int | None = None,
):
    query = db.session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if kind:
        query = query.filter(StockMovement.kind == kind)
    if actor_user_id is not None:
        query = query.filter(StockMovement.actor_user_id == actor_user_id)
    if start is not None:
        query = query.filter(StockMovement.occurred_at >= start)
    if end is not None:
        query = query.filter(StockMovement.occurred_at <= end)

    query = query.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
    return paginate(query, page, per_page)


def get_movement_totals(
    product_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    """Units in vs units out for a product over a period (inclusive bounds)."""
    get_product(product_id)

    inbound = func.coalesce(
        func.sum(case((StockMovement.quantity_delta > 0, StockMovement.quantity_delta), else_=0)), 0
    )
    outbound = func.coalesce(
        func.sum(case((StockMovement.quantity_delta < 0, -StockMovement.quantity_delta), else_=0)), 0
    )

    query = db.session.query(inbound, outbound, func.count(StockMovement.id)).filter(
        StockMovement.product_id == product_id
    )
    if start is not None:
        query = query.filter(StockMovement.occurred_at >= start)
    if end is not None:
        query = query.filter(StockMovement.occurred_at <= end)

    units_in, units_out, count = query.one()
    return {
        "product_id": product_id,
        "inbound_units": int(units_in),
        "outbound_units": int(units_out),
        "net_units": int(units_in) - int(units_out),
        "movement_count": int(count),
    }


def verify_chain(product_id: int) -> dict:
    """
    Replay a product's history and check it against the stored quantity.

    Reports the first movement whose before/after values break the chain.
    """
    product = get_product(product_id)
    movements = get_traceability(product_id)

    running = 0
    first_break = None
    for movement in movements:
        if movement.quantity_before != running or movement.quantity_after != movement.quantity_before + movement.quantity_delta:
            first_break = movement.id
            break
        running = movement.quantity_after

    consistent = first_break is None and running == product.quantity_on_hand
    return {
        "product_id": product.id,
        "movement_count": len(movements),
        "replayed_quantity": running,
        "quantity_on_hand": product.quantity_on_hand,
        "first_break_movement_id": first_break,
        "consistent": consistent,
    }
