# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""
Sales API Routes

WHY: Point-of-sale front ends register and void sales over HTTP.

DESIGN:
- POST registers a PAID sale in one call (lines + payment method)
- Voids are limited to the void window and to sales without returns
- Acting user comes from X-User-Id (require_actor)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..exceptions import StockCoreError
from ..pagination import page_to_dict
from ..services import sales_service
from ..validation import (
    json_body,
    require_int,
    require_text,
    optional_int,
    optional_text,
    optional_datetime,
    parse_lines,
    page_args,
)


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
@require_actor
def register_sale_route():
    """
    Register a sale.

    Request body:
    {
        "client_id": 1,
        "payment_method_id": 1,
        "notes": "optional",
        "lines": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1500, "discount_cents": 0}]
    }

    Returns:
        201: Sale with lines
        409: Insufficient stock (details.items lists every short product)
    """
    try:
        data = json_body(request)
        lines = parse_lines(
            data,
            int_fields=("product_id", "quantity", "unit_price_cents", "discount_cents"),
            required=("product_id", "quantity"),
        )
        sale = sales_service.register_sale(
            client_id=require_int(data, "client_id"),
            user_id=g.current_user.id,
            payment_method_id=require_int(data, "payment_method_id"),
            lines=lines,
            notes=optional_text(data, "notes"),
        )
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 201

    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to register sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
def search_sales_route():
    try:
        args = request.args
        page, per_page = page_args(args)
        result = sales_service.search_sales(
            code=optional_text(args, "code"),
            client_id=optional_int(args, "client_id"),
            user_id=optional_int(args, "user_id"),
            status=optional_text(args, "status"),
            payment_method_id=optional_int(args, "payment_method_id"),
            start=optional_datetime(args, "start"),
            end=optional_datetime(args, "end"),
            page=page,
            per_page=per_page,
        )
        return jsonify(page_to_dict(result)), 200

    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to search sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/totals")
def period_totals_route():
    try:
        args = request.args
        totals = sales_service.get_period_totals(
            start=optional_datetime(args, "start"),
            end=optional_datetime(args, "end"),
            user_id=optional_int(args, "user_id"),
        )
        return jsonify(totals), 200

    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to compute sale totals")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@sales_bp.get("/code/<code>")
def get_sale_by_code_route(code: str):
    try:
        sale = sales_service.get_sale_by_code(code)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@sales_bp.get("/<int:sale_id>/can-void")
def can_void_route(sale_id: int):
    return jsonify({"sale_id": sale_id, "can_void": sales_service.can_void(sale_id)}), 200


@sales_bp.post("/<int:sale_id>/void")
@require_actor
def void_sale_route(sale_id: int):
    """
    Void a sale and restore its stock.

    Request body: {"reason": "Customer changed their mind"}

    Returns:
        200: Voided sale
        409: Already voided or has returns
        422: Void window elapsed
    """
    try:
        data = json_body(request)
        sale = sales_service.void_sale(
            sale_id=sale_id,
            user_id=g.current_user.id,
            reason=require_text(data, "reason"),
        )
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200

    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500
