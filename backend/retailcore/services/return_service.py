# Overview: Return workflow; customer returns against PAID sales.

"""
Return Processing

LIFECYCLE:
    PENDING --approve--> APPROVED --complete--> COMPLETED
    PENDING --reject---> REJECTED

DESIGN:
- Requests are accepted only within RETURN_WINDOW_DAYS of the sale
- For every (sale, product): APPROVED + COMPLETED returned quantity <= sold
- Stock is credited (RETURN_CREDIT) only on completion
- Refund uses the unit price the product was sold at on that sale
- Approval and rejection apply to the whole request
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..exceptions import (
    NotFoundError,
    InvalidQuantityError,
    IllegalTransitionError,
    OutOfWindowError,
)
from ..models import Sale, Return, ReturnLine
from ..models.sales import SALE_STATUS_PAID
from ..models.documents import (
    RETURN_STATUS_PENDING,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_COMPLETED,
    RETURN_STATUS_REJECTED,
)
from ..models.inventory import MOVEMENT_RETURN_CREDIT
from ..pagination import paginate
from ..time_utils import to_utc_z, utcnow
from ..validation import ValidationError
from . import ledger_service
from .catalog_service import get_user
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_document_number
from .state_machine import require_transition


# Statuses whose quantities count against what is still returnable
COUNTED_STATUSES = (RETURN_STATUS_APPROVED, RETURN_STATUS_COMPLETED)


def _sold_quantity(sale: Sale, product_id: int) -> int:
    return sum(line.quantity for line in sale.lines if line.product_id == product_id)


def _refund_unit_price(sale: Sale, product_id: int, sale_line_id: int | None = None) -> int:
    """
    Unit price refunded for a returned product.

    A product sold on several lines at different prices needs the return
    line to name the sale line it refers to; one price is never guessed.
    """
    candidates = [line for line in sale.lines if line.product_id == product_id]
    if sale_line_id is not None:
        for line in candidates:
            if line.id == sale_line_id:
                return line.unit_price_cents
        raise ValidationError(
            f"Sale line {sale_line_id} does not sell product {product_id} on sale {sale.code}",
            details={"sale_id": sale.id, "product_id": product_id, "sale_line_id": sale_line_id},
        )

    prices = sorted({line.unit_price_cents for line in candidates})
    if len(prices) > 1:
        raise ValidationError(
            f"Product {product_id} was sold at several prices on sale {sale.code}; sale_line_id required",
            details={
                "sale_id": sale.id,
                "product_id": product_id,
                "unit_prices_cents": prices,
                "sale_line_ids": [line.id for line in candidates],
            },
        )
    return prices[0]


def _returned_quantity(sale_id: int, product_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(ReturnLine.quantity), 0))
        .join(Return, ReturnLine.return_id == Return.id)
        .filter(
            Return.sale_id == sale_id,
            Return.status.in_(COUNTED_STATUSES),
            ReturnLine.product_id == product_id,
        )
        .scalar()
    )
    return int(total or 0)


def _window_deadline(sale: Sale) -> datetime:
    return sale.created_at + timedelta(days=current_app.config["RETURN_WINDOW_DAYS"])


def _check_window(sale: Sale, now: datetime) -> None:
    deadline = _window_deadline(sale)
    if now > deadline:
        raise OutOfWindowError(
            f"Return window for sale {sale.code} has closed",
            details={"sale_id": sale.id, "created_at": sale.created_at.isoformat(), "deadline": deadline.isoformat()},
        )


def _check_quantities(sale: Sale, requested: dict[int, int]) -> None:
    for product_id, quantity in requested.items():
        sold = _sold_quantity(sale, product_id)
        already_returned = _returned_quantity(sale.id, product_id)
        if quantity <= 0 or quantity > sold - already_returned:
            raise InvalidQuantityError(
                f"Cannot return {quantity} of product {product_id} on sale {sale.code}",
                details={
                    "sale_id": sale.id,
                    "product_id": product_id,
                    "sold": sold,
                    "already_returned": already_returned,
                    "requested_quantity": quantity,
                },
            )


def _aggregate(lines: list[dict]) -> dict[int, int]:
    """Sum quantities per product; duplicates in one request are checked together."""
    requested: dict[int, int] = {}
    for index, line in enumerate(lines):
        quantity = line.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(
                "Return quantity must be a positive integer",
                details={"line": index, "product_id": line.get("product_id"), "requested_quantity": quantity},
            )
        requested[line["product_id"]] = requested.get(line["product_id"], 0) + quantity
    return requested


def _lock_return(return_id: int) -> Return:
    return_doc = lock_for_update(db.session.query(Return).filter_by(id=return_id)).first()
    if not return_doc:
        raise NotFoundError("Return", return_id)
    return return_doc


def _return_number_exists(code: str) -> bool:
    return db.session.query(Return.id).filter_by(document_number=code).first() is not None


def create_return(sale_id: int, user_id: int, motive: str | None, lines: list[dict]) -> Return:
    """Open a PENDING return request. Stock is not touched."""
    if not lines:
        raise InvalidQuantityError("A return needs at least one line", details={"sale_id": sale_id})

    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError("Sale", sale_id)
        get_user(user_id)

        if sale.status != SALE_STATUS_PAID:
            raise IllegalTransitionError(
                f"Sale {sale.code} is {sale.status}; only PAID sales accept returns",
                details={"sale_id": sale.id, "current_status": sale.status},
            )
        _check_window(sale, utcnow())

        requested = _aggregate(lines)
        _check_quantities(sale, requested)

        return_doc = Return(
            document_number=next_document_number(
                document_type="RETURN", prefix="R", pad=6, dated=False, exists=_return_number_exists
            ),
            sale_id=sale.id,
            status=RETURN_STATUS_PENDING,
            motive=motive,
            created_by_user_id=user_id,
            created_at=utcnow(),
        )
        db.session.add(return_doc)
        db.session.flush()

        refund = 0
        for line in lines:
            unit_price = _refund_unit_price(sale, line["product_id"], line.get("sale_line_id"))
            line_refund = unit_price * line["quantity"]
            refund += line_refund
            db.session.add(ReturnLine(
                return_id=return_doc.id,
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price_cents=unit_price,
                line_refund_cents=line_refund,
                motive=line.get("motive") or motive,
            ))

        return_doc.refund_cents = refund
        db.session.commit()
        return return_doc

    return_doc = run_with_retry(_op)
    current_app.logger.info("Return %s created for sale %s", return_doc.document_number, sale_id)
    return return_doc


def approve_return(return_id: int, user_id: int) -> Return:
    """PENDING -> APPROVED. The returnable quantity is re-checked under the lock."""
    def _op():
        begin_write()
        return_doc = _lock_return(return_id)
        get_user(user_id)
        require_transition("return", return_doc.status, RETURN_STATUS_APPROVED, entity_id=return_doc.id)

        requested: dict[int, int] = {}
        for line in return_doc.lines:
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
        _check_quantities(return_doc.sale, requested)

        return_doc.status = RETURN_STATUS_APPROVED
        return_doc.approved_at = utcnow()
        return_doc.approved_by_user_id = user_id
        db.session.commit()
        return return_doc

    return_doc = run_with_retry(_op)
    current_app.logger.info("Return %s approved by user %s", return_doc.document_number, user_id)
    return return_doc


def reject_return(return_id: int, user_id: int, reason: str) -> Return:
    if not reason or not reason.strip():
        raise ValidationError("A rejection reason is required", details={"return_id": return_id})

    def _op():
        begin_write()
        return_doc = _lock_return(return_id)
        get_user(user_id)
        require_transition("return", return_doc.status, RETURN_STATUS_REJECTED, entity_id=return_doc.id)

        return_doc.status = RETURN_STATUS_REJECTED
        return_doc.rejected_at = utcnow()
        return_doc.rejected_by_user_id = user_id
        return_doc.rejection_reason = reason.strip()
        db.session.commit()
        return return_doc

    return_doc = run_with_retry(_op)
    current_app.logger.info("Return %s rejected by user %s", return_doc.document_number, user_id)
    return return_doc


def complete_return(return_id: int, user_id: int) -> Return:
    """
    APPROVED -> COMPLETED.

    Credits stock with one RETURN_CREDIT movement per line and fixes the
    refund at quantity x sale unit price.
    """
    def _op():
        begin_write()
        return_doc = _lock_return(return_id)
        get_user(user_id)
        require_transition("return", return_doc.status, RETURN_STATUS_COMPLETED, entity_id=return_doc.id)

        refund = 0
        for line in return_doc.lines:
            movement = ledger_service.apply_movement(
                line.product_id,
                MOVEMENT_RETURN_CREDIT,
                line.quantity,
                user_id,
                f"Return {return_doc.document_number}",
                reference=f"return:{return_doc.id}",
                commit=False,
            )
            line.movement_id = movement.id
            line.line_refund_cents = line.quantity * line.unit_price_cents
            refund += line.line_refund_cents

        return_doc.refund_cents = refund
        return_doc.status = RETURN_STATUS_COMPLETED
        return_doc.completed_at = utcnow()
        return_doc.completed_by_user_id = user_id
        db.session.commit()
        return return_doc

    return_doc = run_with_retry(_op)
    current_app.logger.info(
        "Return %s completed: refund_cents=%s", return_doc.document_number, return_doc.refund_cents
    )
    ledger_service.notify_alerts([line.product_id for line in return_doc.lines])
    return return_doc


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> Return:
    return_doc = db.session.get(Return, return_id)
    if not return_doc:
        raise NotFoundError("Return", return_id)
    return return_doc


def list_sale_returns(sale_id: int) -> list[Return]:
    if not db.session.get(Sale, sale_id):
        raise NotFoundError("Sale", sale_id)
    return (
        db.session.query(Return)
        .filter(Return.sale_id == sale_id)
        .order_by(Return.created_at.asc(), Return.id.asc())
        .all()
    )


def search_returns(
    *,
    sale_id: int | None = None,
    client_id: int | None = None,
    user_id: int | None = None,
    status: str | None = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    per_page: int | None = None,
):
    query = db.session.query(Return)
    if client_id is not None:
        query = query.join(Sale, Return.sale_id == Sale.id).filter(Sale.client_id == client_id)
    if sale_id is not None:
        query = query.filter(Return.sale_id == sale_id)
    if user_id is not None:
        query = query.filter(Return.created_by_user_id == user_id)
    if status:
        query = query.filter(Return.status == status)
    if start is not None:
        query = query.filter(Return.created_at >= start)
    if end is not None:
        query = query.filter(Return.created_at <= end)

    query = query.order_by(Return.created_at.desc(), Return.id.desc())
    return paginate(query, page, per_page)


def _require_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError("Sale", sale_id)
    return sale


def is_within_window(sale_id: int) -> bool:
    """True while a return may still be requested; the deadline instant itself is inside."""
    return utcnow() <= _window_deadline(_require_sale(sale_id))


def window_remaining_days(sale_id: int) -> int:
    """
    Whole days left to request a return; 0 once the window has closed.

    Also 0 during the last open day, so pair it with is_within_window().
    """
    remaining = _window_deadline(_require_sale(sale_id)) - utcnow()
    return max(0, remaining.days)


def get_window_status(sale_id: int) -> dict:
    sale = _require_sale(sale_id)
    now = utcnow()
    deadline = _window_deadline(sale)
    return {
        "sale_id": sale.id,
        "within_window": now <= deadline,
        "deadline": to_utc_z(deadline),
        "remaining_days": max(0, (deadline - now).days),
    }


def is_quantity_returnable(sale_id: int, product_id: int, quantity: int) -> bool:
    sale = db.session.get(Sale, sale_id)
    if not sale or quantity <= 0:
        return False
    return quantity <= _sold_quantity(sale, product_id) - _returned_quantity(sale_id, product_id)


def analyze_motives(start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict[str, int]:
    """Number of return requests per motive in a period."""
    query = db.session.query(Return.motive, func.count(Return.id))
    if start is not None:
        query = query.filter(Return.created_at >= start)
    if end is not None:
        query = query.filter(Return.created_at <= end)
    rows = query.group_by(Return.motive).all()
    return {(motive or "unspecified"): count for motive, count in rows}


def most_returned_products(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 10,
) -> list[dict]:
    """Products ranked by units in approved or completed returns."""
    units = func.sum(ReturnLine.quantity)
    query = (
        db.session.query(ReturnLine.product_id, units, func.count(func.distinct(Return.id)))
        .join(Return, ReturnLine.return_id == Return.id)
        .filter(Return.status.in_(COUNTED_STATUSES))
    )
    if start is not None:
        query = query.filter(Return.created_at >= start)
    if end is not None:
        query = query.filter(Return.created_at <= end)

    rows = (
        query.group_by(ReturnLine.product_id)
        .order_by(units.desc(), ReturnLine.product_id.asc())
        .limit(limit)
        .all()
    )
    return [
        {"product_id": product_id, "units_returned": int(quantity), "return_count": int(count)}
        for product_id, quantity, count in rows
    ]
