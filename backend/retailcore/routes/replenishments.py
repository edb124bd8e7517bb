# Overview: Flask API routes for supplier replenishment orders.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..exceptions import StockCoreError
from ..pagination import page_to_dict
from ..services import replenishment_service
from ..validation import (
    ValidationError,
    json_body,
    require_int,
    require_text,
    optional_int,
    optional_text,
    optional_datetime,
    parse_lines,
    page_args,
)


replenishments_bp = Blueprint("replenishments", __name__, url_prefix="/api/replenishments")


def _order_response(order, status: int = 200):
    return jsonify({"order": order.to_dict(include_lines=True)}), status


@replenishments_bp.post("/")
@require_actor
def create_order_route():
    """
    Create a replenishment order (status: PENDING).

    Request body:
    {
        "supplier_id": 1,
        "priority": "HIGH",
        "expected_at": "2026-02-01T00:00:00Z",
        "notes": "optional",
        "lines": [{"product_id": 1, "quantity": 24, "unit_cost_cents": 800}]
    }
    """
    try:
        data = json_body(request)
        lines = parse_lines(
            data,
            int_fields=("product_id", "quantity", "unit_cost_cents"),
            required=("product_id", "quantity"),
        )
        order = replenishment_service.create_order(
            supplier_id=require_int(data, "supplier_id"),
            user_id=g.current_user.id,
            lines=lines,
            priority=optional_text(data, "priority") or "NORMAL",
            expected_at=optional_datetime(data, "expected_at"),
            notes=optional_text(data, "notes"),
        )
        return _order_response(order, 201)

    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create replenishment order")
        return jsonify({"error": "Internal server error"}), 500


@replenishments_bp.post("/<int:order_id>/approve")
@require_actor
def approve_order_route(order_id: int):
    try:
        return _order_response(replenishment_service.approve_order(order_id, g.current_user.id))
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to approve replenishment order")
        return jsonify({"error": "Internal server error"}), 500


@replenishments_bp.post("/<int:order_id>/order")
@require_actor
def mark_ordered_route(order_id: int):
    try:
        return _order_response(replenishment_service.mark_ordered(order_id, g.current_user.id))
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark replenishment order as ordered")
        return jsonify({"error": "Internal server error"}), 500


@replenishments_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    try:
        data = json_body(request)
        order = replenishment_service.cancel_order(order_id, g.current_user.id, require_text(data, "reason"))
        return _order_response(order)
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel replenishment order")
        return jsonify({"error": "Internal server error"}), 500


@replenishments_bp.post("/<int:order_id>/receive")
@require_actor
def receive_route(order_id: int):
    """
    Book a delivery.

    Request body:
    {"receipts": [{"product_id": 1, "quantity": 10}, {"line_id": 7, "quantity": 5}]}

    Returns:
        200: Order (PARTIALLY_RECEIVED or COMPLETED)
        409: Order not in a receivable state
        422: Receipt over the outstanding quantity
    """
    try:
        data = json_body(request)
        raw = data.get("receipts")
        if not isinstance(raw, list) or not raw:
            raise ValidationError("receipts must be a non-empty array")
        receipts = parse_lines(
            {"lines": raw},
            int_fields=("line_id", "product_id", "quantity"),
            required=("quantity",),
        )
        for index, receipt in enumerate(receipts):
            if "line_id" not in receipt and "product_id" not in receipt:
                raise ValidationError(f"receipts[{index}] needs line_id or product_id")

        order = replenishment_service.receive(order_id, g.current_user.id, receipts)
        return _order_response(order)

    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to receive replenishment order")
        return jsonify({"error": "Internal server error"}), 500


@replenishments_bp.post("/<int:order_id>/close")
@require_actor
def close_partial_route(order_id: int):
    try:
        data = json_body(request)
        order = replenishment_service.close_partial(order_id, g.current_user.id, require_text(data, "reason"))
        return _order_response(order)
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to close replenishment order")
        return jsonify({"error": "Internal server error"}), 500


@replenishments_bp.get("/")
def search_orders_route():
    try:
        args = request.args
        page, per_page = page_args(args)
        result = replenishment_service.search_orders(
            supplier_id=optional_int(args, "supplier_id"),
            status=optional_text(args, "status"),
            priority=optional_text(args, "priority"),
            user_id=optional_int(args, "user_id"),
            start=optional_datetime(args, "start"),
            end=optional_datetime(args, "end"),
            page=page,
            per_page=per_page,
        )
        return jsonify(page_to_dict(result)), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to search replenishment orders")
        return jsonify({"error": "Internal server error"}), 500


@replenishments_bp.get("/pending-receipt")
def pending_receipt_route():
    orders = replenishment_service.list_pending_receipt()
    return jsonify({"orders": [o.to_dict(include_lines=True) for o in orders]}), 200


@replenishments_bp.get("/urgent")
def urgent_route():
    orders = replenishment_service.list_urgent()
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@replenishments_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        return _order_response(replenishment_service.get_order(order_id))
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
