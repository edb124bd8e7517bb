# Overview: Flask API routes for stock levels, manual movements and traceability.

"""
Inventory API Routes

Manual stock changes go through the same ledger call as sales and
receipts: an INBOUND entry for deliveries without an order, and an
ADJUSTMENT to the counted quantity after a stock-take.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_admin
from ..exceptions import StockCoreError
from ..pagination import page_to_dict
from ..services import catalog_service, ledger_service
from ..validation import (
    json_body,
    require_int,
    optional_int,
    optional_text,
    optional_datetime,
    page_args,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@inventory_bp.post("/products/<int:product_id>/activate")
@require_actor
def activate_product_route(product_id: int):
    try:
        product = catalog_service.set_product_active(product_id, True)
        return jsonify({"product": product.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@inventory_bp.post("/products/<int:product_id>/deactivate")
@require_actor
def deactivate_product_route(product_id: int):
    try:
        product = catalog_service.set_product_active(product_id, False)
        return jsonify({"product": product.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@inventory_bp.post("/inbound")
@require_actor
def inbound_route():
    """
    Manual stock entry.

    Request body: {"product_id": 1, "quantity": 12, "note": "Opening stock"}
    """
    try:
        data = json_body(request)
        movement = ledger_service.register_inbound(
            product_id=require_int(data, "product_id"),
            quantity=require_int(data, "quantity"),
            actor_user_id=g.current_user.id,
            note=optional_text(data, "note"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to register inbound stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjustments")
@require_actor
@require_admin
def adjustment_route():
    """
    Stock-take adjustment to an explicit counted quantity.

    Request body: {"product_id": 1, "target_quantity": 7, "note": "Cycle count"}
    """
    try:
        data = json_body(request)
        movement = ledger_service.register_adjustment(
            product_id=require_int(data, "product_id"),
            target_quantity=require_int(data, "target_quantity"),
            actor_user_id=g.current_user.id,
            note=optional_text(data, "note"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to register adjustment")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/movements")
def traceability_route(product_id: int):
    try:
        movements = ledger_service.get_traceability(product_id)
        return jsonify({"product_id": product_id, "movements": [m.to_dict() for m in movements]}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@inventory_bp.get("/products/<int:product_id>/totals")
def movement_totals_route(product_id: int):
    try:
        args = request.args
        totals = ledger_service.get_movement_totals(
            product_id,
            start=optional_datetime(args, "start"),
            end=optional_datetime(args, "end"),
        )
        return jsonify(totals), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@inventory_bp.get("/products/<int:product_id>/verify")
def verify_chain_route(product_id: int):
    try:
        return jsonify(ledger_service.verify_chain(product_id)), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@inventory_bp.get("/movements")
def search_movements_route():
    try:
        args = request.args
        page, per_page = page_args(args)
        result = ledger_service.search_movements(
            product_id=optional_int(args, "product_id"),
            kind=optional_text(args, "kind"),
            actor_user_id=optional_int(args, "actor_user_id"),
            start=optional_datetime(args, "start"),
            end=optional_datetime(args, "end"),
            page=page,
            per_page=per_page,
        )
        return jsonify(page_to_dict(result)), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to search movements")
        return jsonify({"error": "Internal server error"}), 500
