# Overview: Identity and master-data lookups used by the stock core.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..exceptions import NotFoundError
from ..models import Product, User, Client, Supplier, PaymentMethod
from .concurrency import lock_for_update


def get_product(product_id: int, *, lock: bool = False) -> Product:
    """
    Resolve a product or raise NotFoundError.

    Inactive products are returned; callers that sell decide what
    "inactive" means for them.
    """
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if not product:
        raise NotFoundError("Product", product_id)
    return product


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if not user:
        raise NotFoundError("User", user_id)
    return user


def require_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id) if client_id is not None else None
    if not client:
        raise NotFoundError("Client", client_id)
    return client


def require_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id) if supplier_id is not None else None
    if not supplier:
        raise NotFoundError("Supplier", supplier_id)
    return supplier


def require_payment_method(payment_method_id: int) -> PaymentMethod:
    method = db.session.get(PaymentMethod, payment_method_id) if payment_method_id is not None else None
    if not method:
        raise NotFoundError("PaymentMethod", payment_method_id)
    return method


def create_product(
    *,
    sku: str,
    name: str,
    price_cents: int,
    min_stock: int | None = None,
) -> Product:
    """
    Register a product with zero stock.

    Opening stock is booked through the ledger (register_inbound) so the
    movement history explains every unit on hand.
    """
    if min_stock is None:
        min_stock = current_app.config["DEFAULT_MIN_STOCK"]
    if min_stock < 0:
        raise ValueError("min_stock cannot be negative")
    if price_cents < 0:
        raise ValueError("price_cents cannot be negative")

    product = Product(
        sku=sku,
        name=name,
        price_cents=price_cents,
        quantity_on_hand=0,
        min_stock=min_stock,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()
    return product


def set_product_active(product_id: int, active: bool) -> Product:
    """Soft lifecycle toggle. Products are never physically deleted."""
    product = get_product(product_id)
    if product.is_active == active:
        return product
    product.is_active = active
    db.session.commit()
    current_app.logger.info(
        "Product %s %s", product.id, "activated" if active else "deactivated"
    )
    return product
