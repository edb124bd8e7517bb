"""
Sale Transaction Manager

WHY: A sale is the main consumer of stock. Registration must debit every
line through the ledger or debit nothing, and a void must give back exactly
what the sale took.

LIFECYCLE: PAID -> VOIDED (within VOID_WINDOW_HOURS, no open returns).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..exceptions import (
    StockCoreError,
    NotFoundError,
    InvalidQuantityError,
    InsufficientStockError,
    IllegalTransitionError,
    OutOfWindowError,
)
from ..models import Sale, SaleLine, Return
from ..models.sales import SALE_STATUS_PAID, SALE_STATUS_VOIDED
from ..models.documents import RETURN_STATUS_REJECTED
from ..models.inventory import MOVEMENT_OUTBOUND, MOVEMENT_INBOUND
from ..pagination import paginate
from ..time_utils import utcnow
from ..validation import ValidationError
from . import ledger_service
from .catalog_service import get_product, get_user, require_client, require_payment_method
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_document_number
from .state_machine import require_transition


def compute_totals(lines: list[dict], tax_rate_bps: int | None = None) -> dict:
    """
    Money math for a set of resolved lines (integer cents).

    line_total = quantity * unit_price - discount
    subtotal   = SUM(line_total)
    tax        = round_half_up(subtotal * tax_rate_bps / 10000)
    total      = subtotal + tax
    """
    if tax_rate_bps is None:
        tax_rate_bps = current_app.config["TAX_RATE_BPS"]

    line_totals = []
    discount = 0
    for line in lines:
        line_discount = line.get("discount_cents", 0) or 0
        line_totals.append(line["quantity"] * line["unit_price_cents"] - line_discount)
        discount += line_discount

    subtotal = sum(line_totals)
    tax = (subtotal * tax_rate_bps + 5000) // 10000
    return {
        "line_totals_cents": line_totals,
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "tax_cents": tax,
        "total_cents": subtotal + tax,
    }


def _resolve_lines(lines: list[dict]) -> list[dict]:
    """Validate each requested line and fill price defaults from the product."""
    if not lines:
        raise InvalidQuantityError("A sale needs at least one line", details={"lines": 0})

    resolved = []
    for index, line in enumerate(lines):
        product_id = line.get("product_id")
        quantity = line.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(
                "Line quantity must be a positive integer",
                details={"line": index, "product_id": product_id, "quantity": quantity},
            )

        product = get_product(product_id)
        if not product.is_active:
            err = NotFoundError("Product", product_id, message=f"Product {product_id} is inactive")
            err.details["reason"] = "inactive"
            raise err

        unit_price = line.get("unit_price_cents")
        if unit_price is None:
            unit_price = product.price_cents
        if unit_price <= 0:
            raise ValidationError(
                "unit_price_cents must be positive",
                details={"line": index, "product_id": product_id, "unit_price_cents": unit_price},
            )

        discount = line.get("discount_cents") or 0
        if discount < 0 or discount > quantity * unit_price:
            raise ValidationError(
                "discount_cents must be between 0 and the line amount",
                details={"line": index, "product_id": product_id, "discount_cents": discount, "limit": quantity * unit_price},
            )

        resolved.append({
            "product_id": product.id,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "discount_cents": discount,
        })
    return resolved


def _validate_on_hand(lines: list[dict]) -> None:
    product_totals: dict[int, int] = {}
    for line in lines:
        product_totals[line["product_id"]] = product_totals.get(line["product_id"], 0) + line["quantity"]

    insufficient = []
    # Rows are locked in product id order
    for product_id in sorted(product_totals):
        qty = product_totals[product_id]
        on_hand = get_product(product_id, lock=True).quantity_on_hand
        if on_hand < qty:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": qty,
                "on_hand": on_hand,
            })

    if insufficient:
        raise InsufficientStockError(
            "Insufficient stock to register sale",
            details={"items": insufficient},
        )


def _sale_code_exists(code: str) -> bool:
    return db.session.query(Sale.id).filter_by(code=code).first() is not None


def register_sale(
    client_id: int,
    user_id: int,
    payment_method_id: int,
    lines: list[dict],
    notes: str | None = None,
) -> Sale:
    """
    Register a PAID sale and debit stock for every line.

    CRITICAL: sale, lines and the OUTBOUND movements commit together. Any
    failure (unknown product, short stock, lock conflict) rolls back all of it.
    """
    def _op():
        begin_write()
        require_client(client_id)
        get_user(user_id)
        require_payment_method(payment_method_id)

        resolved = _resolve_lines(lines)
        _validate_on_hand(resolved)
        totals = compute_totals(resolved)

        code = next_document_number(document_type="SALE", prefix="V", exists=_sale_code_exists)
        sale = Sale(
            code=code,
            client_id=client_id,
            created_by_user_id=user_id,
            payment_method_id=payment_method_id,
            status=SALE_STATUS_PAID,
            subtotal_cents=totals["subtotal_cents"],
            discount_cents=totals["discount_cents"],
            tax_cents=totals["tax_cents"],
            total_cents=totals["total_cents"],
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(sale)
        db.session.flush()

        for line, line_total in zip(resolved, totals["line_totals_cents"]):
            sale_line = SaleLine(
                sale_id=sale.id,
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                discount_cents=line["discount_cents"],
                line_total_cents=line_total,
            )
            db.session.add(sale_line)
            movement = ledger_service.apply_movement(
                line["product_id"],
                MOVEMENT_OUTBOUND,
                -line["quantity"],
                user_id,
                f"Sale {code}",
                reference=f"sale:{code}",
                commit=False,
            )
            sale_line.movement_id = movement.id

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info("Sale %s registered: total_cents=%s lines=%s", sale.code, sale.total_cents, len(sale.lines))
    ledger_service.notify_alerts([line.product_id for line in sale.lines])
    return sale


# =============================================================================
# VOID
# =============================================================================

def _check_voidable(sale: Sale, now: datetime) -> None:
    require_transition("sale", sale.status, SALE_STATUS_VOIDED, entity_id=sale.id)

    deadline = sale.created_at + timedelta(hours=current_app.config["VOID_WINDOW_HOURS"])
    if now > deadline:
        raise OutOfWindowError(
            f"Sale {sale.code} can no longer be voided",
            details={"sale_id": sale.id, "created_at": sale.created_at.isoformat(), "deadline": deadline.isoformat()},
        )

    open_returns = (
        db.session.query(Return.id)
        .filter(Return.sale_id == sale.id, Return.status != RETURN_STATUS_REJECTED)
        .all()
    )
    if open_returns:
        raise IllegalTransitionError(
            f"Sale {sale.code} has returns and cannot be voided",
            details={"sale_id": sale.id, "return_ids": [row.id for row in open_returns]},
        )


def void_sale(sale_id: int, user_id: int, reason: str) -> Sale:
    """
    Void a PAID sale and give its stock back with one INBOUND movement per line.
    """
    if not reason or not reason.strip():
        raise ValidationError("A void reason is required", details={"sale_id": sale_id})

    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError("Sale", sale_id)
        get_user(user_id)

        now = utcnow()
        _check_voidable(sale, now)

        for line in sale.lines:
            ledger_service.apply_movement(
                line.product_id,
                MOVEMENT_INBOUND,
                line.quantity,
                user_id,
                f"Void of sale {sale.code}: {reason.strip()}"[:255],
                reference=f"void:{sale.code}",
                commit=False,
            )

        sale.status = SALE_STATUS_VOIDED
        sale.voided_at = now
        sale.voided_by_user_id = user_id
        sale.void_reason = reason.strip()[:255]
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info("Sale %s voided by user %s", sale.code, user_id)
    ledger_service.notify_alerts([line.product_id for line in sale.lines])
    return sale


def can_void(sale_id: int) -> bool:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        return False
    try:
        _check_voidable(sale, utcnow())
    except StockCoreError:
        return False
    return True


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError("Sale", sale_id)
    return sale


def get_sale_by_code(code: str) -> Sale:
    sale = db.session.query(Sale).filter_by(code=code).first()
    if not sale:
        raise NotFoundError("Sale", code)
    return sale


def search_sales(
    *,
    code: str | None = None,
    client_id: int | None = None,
    user_id: int | None = None,
    status: str | None = None,
    payment_method_id: int | None = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    per_page: int | None = None,
):
    query = db.session.query(Sale)
    if code:
        query = query.filter(Sale.code.ilike(f"%{code}%"))
    if client_id is not None:
        query = query.filter(Sale.client_id == client_id)
    if user_id is not None:
        query = query.filter(Sale.created_by_user_id == user_id)
    if status:
        query = query.filter(Sale.status == status)
    if payment_method_id is not None:
        query = query.filter(Sale.payment_method_id == payment_method_id)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)

    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    return paginate(query, page, per_page)


def get_period_totals(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user_id: int | None = None,
) -> dict:
    """Count and money totals of PAID sales in a period. Voided sales are excluded."""
    query = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.subtotal_cents), 0),
        func.coalesce(func.sum(Sale.tax_cents), 0),
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).filter(Sale.status == SALE_STATUS_PAID)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    if user_id is not None:
        query = query.filter(Sale.created_by_user_id == user_id)

    count, subtotal, tax, total = query.one()
    return {
        "sale_count": int(count),
        "subtotal_cents": int(subtotal),
        "tax_cents": int(tax),
        "total_cents": int(total),
    }
