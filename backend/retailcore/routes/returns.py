# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

"""
Return Processing API Routes

DESIGN:
- Create returns referencing a PAID sale (status: PENDING)
- Manager approval/rejection of the whole request
- Complete returns to credit stock back through the ledger
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..exceptions import StockCoreError
from ..pagination import page_to_dict
from ..services import return_service
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


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("/")
@require_actor
def create_return_route():
    """
    Create a new return document (status: PENDING).

    Request body:
    {
        "sale_id": 123,
        "motive": "Defective",
        "lines": [{"product_id": 1, "quantity": 2, "sale_line_id": 7, "motive": "optional per-line"}]
    }

    Returns:
        201: Return created with PENDING status
        400: Product sold at several prices without sale_line_id
        409: Sale is not PAID
        422: Window closed or quantity over what is returnable
    """
    try:
        data = json_body(request)
        lines = parse_lines(
            data,
            int_fields=("product_id", "quantity", "sale_line_id"),
            required=("product_id", "quantity"),
            text_fields=("motive",),
        )
        return_doc = return_service.create_return(
            sale_id=require_int(data, "sale_id"),
            user_id=g.current_user.id,
            motive=optional_text(data, "motive"),
            lines=lines,
        )
        return jsonify({"return": return_doc.to_dict(include_lines=True)}), 201

    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# APPROVAL WORKFLOW
# =============================================================================

@returns_bp.post("/<int:return_id>/approve")
@require_actor
def approve_return_route(return_id: int):
    try:
        return_doc = return_service.approve_return(return_id, g.current_user.id)
        return jsonify({"return": return_doc.to_dict(include_lines=True)}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to approve return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/reject")
@require_actor
def reject_return_route(return_id: int):
    """Request body: {"reason": "Outside policy"}"""
    try:
        data = json_body(request)
        return_doc = return_service.reject_return(return_id, g.current_user.id, require_text(data, "reason"))
        return jsonify({"return": return_doc.to_dict(include_lines=True)}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reject return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/complete")
@require_actor
def complete_return_route(return_id: int):
    try:
        return_doc = return_service.complete_return(return_id, g.current_user.id)
        return jsonify({"return": return_doc.to_dict(include_lines=True)}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to complete return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@returns_bp.get("/")
def search_returns_route():
    try:
        args = request.args
        page, per_page = page_args(args)
        result = return_service.search_returns(
            sale_id=optional_int(args, "sale_id"),
            client_id=optional_int(args, "client_id"),
            user_id=optional_int(args, "user_id"),
            status=optional_text(args, "status"),
            start=optional_datetime(args, "start"),
            end=optional_datetime(args, "end"),
            page=page,
            per_page=per_page,
        )
        return jsonify(page_to_dict(result)), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to search returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        return_doc = return_service.get_return(return_id)
        return jsonify({"return": return_doc.to_dict(include_lines=True)}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@returns_bp.get("/sale/<int:sale_id>")
def sale_returns_route(sale_id: int):
    """Returns of one sale plus how many days are left to request another."""
    try:
        returns = return_service.list_sale_returns(sale_id)
        return jsonify({
            "sale_id": sale_id,
            "within_window": return_service.is_within_window(sale_id),
            "window_remaining_days": return_service.window_remaining_days(sale_id),
            "returns": [r.to_dict(include_lines=True) for r in returns],
        }), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@returns_bp.get("/sale/<int:sale_id>/window")
def sale_window_route(sale_id: int):
    """
    Return window of a sale.

    Returns:
        200: {"sale_id", "within_window", "deadline", "remaining_days"}
        404: Sale not found
    """
    try:
        return jsonify(return_service.get_window_status(sale_id)), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@returns_bp.get("/sale/<int:sale_id>/returnable")
def sale_returnable_route(sale_id: int):
    """Query args: product_id, quantity. Answers whether that many units can still be returned."""
    try:
        args = request.args
        product_id = require_int(args, "product_id")
        quantity = require_int(args, "quantity")
        return jsonify({
            "sale_id": sale_id,
            "product_id": product_id,
            "quantity": quantity,
            "returnable": return_service.is_quantity_returnable(sale_id, product_id, quantity),
        }), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@returns_bp.get("/analysis/motives")
def motives_route():
    try:
        args = request.args
        motives = return_service.analyze_motives(
            start=optional_datetime(args, "start"),
            end=optional_datetime(args, "end"),
        )
        return jsonify({"motives": motives}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@returns_bp.get("/analysis/products")
def most_returned_route():
    try:
        args = request.args
        limit = optional_int(args, "limit") or 10
        products = return_service.most_returned_products(
            start=optional_datetime(args, "start"),
            end=optional_datetime(args, "end"),
            limit=max(1, min(limit, current_app.config["MAX_PAGE_SIZE"])),
        )
        return jsonify({"products": products}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
