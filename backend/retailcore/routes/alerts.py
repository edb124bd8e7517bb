# Overview: Flask API routes for stock alerts.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..exceptions import StockCoreError
from ..pagination import page_to_dict
from ..services import alert_service
from ..validation import (
    ValidationError,
    json_body,
    coerce_int,
    require_int,
    require_text,
    optional_int,
    optional_bool,
    optional_text,
    optional_datetime,
    page_args,
)


alerts_bp = Blueprint("alerts", __name__, url_prefix="/api/alerts")


@alerts_bp.get("/")
def search_alerts_route():
    try:
        args = request.args
        page, per_page = page_args(args)
        result = alert_service.search_alerts(
            product_id=optional_int(args, "product_id"),
            kind=optional_text(args, "kind"),
            urgency=optional_text(args, "urgency"),
            is_read=optional_bool(args, "is_read"),
            start=optional_datetime(args, "start"),
            end=optional_datetime(args, "end"),
            page=page,
            per_page=per_page,
        )
        return jsonify(page_to_dict(result)), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to search alerts")
        return jsonify({"error": "Internal server error"}), 500


@alerts_bp.get("/unread")
def unread_route():
    """Unread alerts, CRITICAL first."""
    try:
        page, per_page = page_args(request.args)
        result = alert_service.list_unread(page, per_page)
        return jsonify(page_to_dict(result)), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@alerts_bp.get("/critical")
def critical_route():
    alerts = alert_service.list_critical()
    return jsonify({"alerts": [a.to_dict() for a in alerts]}), 200


@alerts_bp.get("/counts")
def counts_route():
    return jsonify({"unread": alert_service.count_unread_by_urgency()}), 200


@alerts_bp.post("/")
@require_actor
def raise_alert_route():
    """
    Manual alert (e.g. REORDER, EXCESS).

    Request body: {"product_id": 1, "kind": "REORDER", "urgency": "HIGH", "message": "optional"}
    """
    try:
        data = json_body(request)
        alert = alert_service.raise_alert(
            product_id=require_int(data, "product_id"),
            kind=require_text(data, "kind").upper(),
            urgency=(optional_text(data, "urgency") or "").upper() or None,
            message=optional_text(data, "message"),
        )
        return jsonify({"alert": alert.to_dict()}), 201
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to raise alert")
        return jsonify({"error": "Internal server error"}), 500


@alerts_bp.post("/<int:alert_id>/read")
@require_actor
def mark_read_route(alert_id: int):
    try:
        alert = alert_service.mark_read(alert_id, g.current_user.id)
        return jsonify({"alert": alert.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark alert read")
        return jsonify({"error": "Internal server error"}), 500


@alerts_bp.post("/read")
@require_actor
def mark_many_read_route():
    """Request body: {"alert_ids": [1, 2, 3]}"""
    try:
        data = json_body(request)
        raw = data.get("alert_ids")
        if not isinstance(raw, list) or not raw:
            raise ValidationError("alert_ids must be a non-empty array")
        alert_ids = [coerce_int(f"alert_ids[{i}]", value) for i, value in enumerate(raw)]
        marked = alert_service.mark_many_read(alert_ids, g.current_user.id)
        return jsonify({"marked": marked}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark alerts read")
        return jsonify({"error": "Internal server error"}), 500


@alerts_bp.post("/<int:alert_id>/action")
@require_actor
def record_action_route(alert_id: int):
    """Request body: {"note": "Order RP-20260115-00003 raised"}"""
    try:
        data = json_body(request)
        alert = alert_service.record_action(alert_id, require_text(data, "note"))
        return jsonify({"alert": alert.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record alert action")
        return jsonify({"error": "Internal server error"}), 500


@alerts_bp.post("/scan")
@require_actor
def scan_route():
    try:
        created = alert_service.scan_all_products()
        return jsonify({"created": [a.to_dict() for a in created]}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to scan products for alerts")
        return jsonify({"error": "Internal server error"}), 500
