# Overview: Alerting engine; raises, deduplicates and closes stock alerts.

"""
Stock Alerting

WHY: Staff must learn about empty or thin shelves as soon as the ledger
records the movement that caused it, without a dashboard poll.

DESIGN:
- evaluate() is called after every committed stock change
- At most one UNREAD alert per (product, kind); a repeat returns the open one
- Rising stock never closes an alert; only mark_read() does
- Urgency bands come from config (ALERT_CRITICAL_BAND, min_stock // 2)
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..exceptions import DuplicateAlertError, NotFoundError
from ..models import Product, StockAlert
from ..models.alerts import (
    ALERT_KINDS,
    ALERT_LOW_STOCK,
    ALERT_OUT_OF_STOCK,
    ALERT_REORDER,
    ALERT_EXCESS,
    URGENCY_LOW,
    URGENCY_MEDIUM,
    URGENCY_HIGH,
    URGENCY_CRITICAL,
    URGENCY_RANK,
)
from ..pagination import paginate
from ..time_utils import utcnow
from ..validation import ValidationError
from .catalog_service import get_product, get_user
from .concurrency import begin_write, lock_for_update, run_with_retry


DEFAULT_URGENCY = {
    ALERT_OUT_OF_STOCK: URGENCY_CRITICAL,
    ALERT_LOW_STOCK: URGENCY_HIGH,
    ALERT_REORDER: URGENCY_HIGH,
    ALERT_EXCESS: URGENCY_LOW,
}

_urgency_rank = case(URGENCY_RANK, value=StockAlert.urgency, else_=0)


def low_stock_urgency(quantity: int, min_threshold: int) -> str:
    if quantity <= current_app.config["ALERT_CRITICAL_BAND"]:
        return URGENCY_CRITICAL
    if quantity <= min_threshold // 2:
        return URGENCY_HIGH
    return URGENCY_MEDIUM


def _find_unread(product_id: int, kind: str) -> StockAlert | None:
    return (
        db.session.query(StockAlert)
        .filter_by(product_id=product_id, kind=kind, is_read=False)
        .order_by(StockAlert.id.asc())
        .first()
    )


def _duplicate(product_id: int, kind: str, existing: StockAlert) -> DuplicateAlertError:
    return DuplicateAlertError(
        f"Unread {kind} alert already open for product {product_id}",
        details={"alert_id": existing.id, "product_id": product_id, "kind": kind},
    )


def _create_unique(
    product: Product,
    kind: str,
    urgency: str,
    message: str,
    stock: int | None,
    threshold: int | None,
) -> StockAlert:
    """
    Insert a new unread alert; raise DuplicateAlertError if one is already open.

    Callers hold the product lock. The partial unique index on unread
    (product_id, kind) still rejects an insert that slipped past the check,
    and that IntegrityError is reported as the same duplicate.
    """
    existing = _find_unread(product.id, kind)
    if existing:
        raise _duplicate(product.id, kind, existing)

    alert = StockAlert(
        product_id=product.id,
        kind=kind,
        urgency=urgency,
        message=message,
        stock_at_alert=stock,
        threshold_at_alert=threshold,
        is_read=False,
        created_at=utcnow(),
    )
    try:
        with db.session.begin_nested():
            db.session.add(alert)
    except IntegrityError:
        existing = _find_unread(product.id, kind)
        if not existing:
            raise
        raise _duplicate(product.id, kind, existing)
    current_app.logger.info(
        "Alert %s raised: product=%s kind=%s urgency=%s", alert.id, product.id, kind, urgency
    )
    return alert


def _ensure_alert(product, kind, urgency, message, stock, threshold) -> tuple[StockAlert, bool]:
    try:
        return _create_unique(product, kind, urgency, message, stock, threshold), True
    except DuplicateAlertError as e:
        return db.session.get(StockAlert, e.details["alert_id"]), False


def _evaluate(product_id: int, new_quantity: int, min_threshold: int) -> tuple[StockAlert | None, bool]:
    product = get_product(product_id)

    if new_quantity == 0:
        return _ensure_alert(
            product,
            ALERT_OUT_OF_STOCK,
            URGENCY_CRITICAL,
            f"{product.name} is out of stock",
            new_quantity,
            min_threshold,
        )

    if new_quantity <= min_threshold:
        return _ensure_alert(
            product,
            ALERT_LOW_STOCK,
            low_stock_urgency(new_quantity, min_threshold),
            f"{product.name} is low on stock: {new_quantity} left (minimum {min_threshold})",
            new_quantity,
            min_threshold,
        )

    return None, False


def evaluate(product_id: int, new_quantity: int, min_threshold: int) -> StockAlert | None:
    """
    Decide whether a post-change quantity warrants an alert.

    Does not commit; the ledger commits the evaluation in its own transaction
    after locking the product.
    """
    begin_write()
    alert, _ = _evaluate(product_id, new_quantity, min_threshold)
    return alert


def _scan_product(product_id: int) -> StockAlert | None:
    def _op():
        begin_write()
        product = get_product(product_id, lock=True)
        if not product.is_active or product.quantity_on_hand > product.min_stock:
            db.session.rollback()
            return None
        alert, is_new = _evaluate(product.id, product.quantity_on_hand, product.min_stock)
        db.session.commit()
        return alert if is_new else None

    return run_with_retry(_op)


def scan_all_products() -> list[StockAlert]:
    """
    Re-evaluate every active product. Returns only alerts created by this pass.

    The candidate list is a snapshot; each product is re-read under its lock
    and evaluated in its own transaction, like the post-movement hook.
    """
    product_ids = [
        product_id
        for (product_id,) in (
            db.session.query(Product.id)
            .filter(Product.is_active.is_(True))
            .filter(Product.quantity_on_hand <= Product.min_stock)
            .order_by(Product.id.asc())
            .all()
        )
    ]
    created = []
    for product_id in product_ids:
        alert = _scan_product(product_id)
        if alert is not None:
            created.append(alert)
    current_app.logger.info("Alert scan: %s products checked, %s alerts raised", len(product_ids), len(created))
    return created


def raise_alert(
    product_id: int,
    kind: str,
    urgency: str | None = None,
    message: str | None = None,
) -> StockAlert:
    """Manual alert (REORDER, EXCESS, ...) with the same one-unread-per-kind rule."""
    if kind not in ALERT_KINDS:
        raise ValidationError(
            f"Unknown alert kind: {kind}", details={"kind": kind, "allowed": list(ALERT_KINDS)}
        )
    if urgency is None:
        urgency = DEFAULT_URGENCY[kind]
    if urgency not in URGENCY_RANK:
        raise ValidationError(
            f"Unknown urgency: {urgency}", details={"urgency": urgency, "allowed": list(URGENCY_RANK)}
        )

    def _op():
        begin_write()
        product = get_product(product_id, lock=True)
        alert, _ = _ensure_alert(
            product,
            kind,
            urgency,
            message or f"{kind.replace('_', ' ').capitalize()} for {product.name}",
            product.quantity_on_hand,
            product.min_stock,
        )
        db.session.commit()
        return alert

    return run_with_retry(_op)


# =============================================================================
# READ / ACTION
# =============================================================================

def get_alert(alert_id: int, *, lock: bool = False) -> StockAlert:
    query = db.session.query(StockAlert).filter_by(id=alert_id)
    if lock:
        query = lock_for_update(query)
    alert = query.first()
    if not alert:
        raise NotFoundError("StockAlert", alert_id)
    return alert


def _mark(alert: StockAlert, user_id: int) -> None:
    # First read wins; later reads keep the original stamp
    if alert.is_read:
        return
    alert.is_read = True
    alert.read_at = utcnow()
    alert.read_by_user_id = user_id


def mark_read(alert_id: int, user_id: int) -> StockAlert:
    def _op():
        begin_write()
        alert = get_alert(alert_id, lock=True)
        get_user(user_id)
        _mark(alert, user_id)
        db.session.commit()
        return alert

    return run_with_retry(_op)


def mark_many_read(alert_ids, user_id: int) -> list[int]:
    """Best effort bulk read. Unknown ids are skipped; returns the ids marked."""
    def _op():
        begin_write()
        get_user(user_id)
        marked = []
        for alert_id in sorted(set(alert_ids)):
            alert = lock_for_update(db.session.query(StockAlert).filter_by(id=alert_id)).first()
            if not alert:
                current_app.logger.warning("mark_many_read: alert %s not found", alert_id)
                continue
            _mark(alert, user_id)
            marked.append(alert.id)
        db.session.commit()
        return marked

    return run_with_retry(_op)


def record_action(alert_id: int, note: str) -> StockAlert:
    if not note or not note.strip():
        raise ValidationError("Action note required", details={"alert_id": alert_id})

    def _op():
        begin_write()
        alert = get_alert(alert_id, lock=True)
        alert.action_note = note.strip()[:255]
        db.session.commit()
        return alert

    return run_with_retry(_op)


def list_unread(page: int = 1, per_page: int | None = None):
    """Unread alerts, most urgent first, oldest first within an urgency."""
    query = (
        db.session.query(StockAlert)
        .filter(StockAlert.is_read.is_(False))
        .order_by(_urgency_rank.desc(), StockAlert.created_at.asc(), StockAlert.id.asc())
    )
    return paginate(query, page, per_page)


def list_by_urgency(urgency: str, unread_only: bool = True) -> list[StockAlert]:
    query = db.session.query(StockAlert).filter(StockAlert.urgency == urgency)
    if unread_only:
        query = query.filter(StockAlert.is_read.is_(False))
    return query.order_by(StockAlert.created_at.asc(), StockAlert.id.asc()).all()


def list_critical() -> list[StockAlert]:
    return list_by_urgency(URGENCY_CRITICAL)


def count_unread_by_urgency() -> dict[str, int]:
    counts = {urgency: 0 for urgency in URGENCY_RANK}
    rows = (
        db.session.query(StockAlert.urgency, func.count(StockAlert.id))
        .filter(StockAlert.is_read.is_(False))
        .group_by(StockAlert.urgency)
        .all()
    )
    for urgency, count in rows:
        counts[urgency] = count
    return counts


def search_alerts(
    *,
    product_id: int | None = None,
    kind: str | None = None,
    urgency: str | None = None,
    is_read: bool | None = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    per_page: int | None = None,
):
    query = db.session.query(StockAlert)
    if product_id is not None:
        query = query.filter(StockAlert.product_id == product_id)
    if kind:
        query = query.filter(StockAlert.kind == kind)
    if urgency:
        query = query.filter(StockAlert.urgency == urgency)
    if is_read is not None:
        query = query.filter(StockAlert.is_read.is_(is_read))
    if start is not None:
        query = query.filter(StockAlert.created_at >= start)
    if end is not None:
        query = query.filter(StockAlert.created_at <= end)

    query = query.order_by(StockAlert.created_at.desc(), StockAlert.id.desc())
    return paginate(query, page, per_page)
