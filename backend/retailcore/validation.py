from __future__ import annotations

from datetime import datetime
from typing import Any

from flask import current_app

from .exceptions import StockCoreError
from .time_utils import parse_iso_datetime


class ValidationError(StockCoreError, ValueError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"
    http_status = 400


def coerce_int(key: str, value: Any) -> int:
    """
    Strict integer coercion for JSON/query input.

    Rejects bools, floats, decimals and scientific notation so that
    "2.5" units or "1e3" cents never reach the services.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def require_int(payload: dict, key: str) -> int:
    if payload.get(key) is None:
        raise ValidationError(f"{key} required")
    return coerce_int(key, payload[key])


def optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return coerce_int(key, value)


def require_text(payload: dict, key: str) -> str:
    value = payload.get(key)
    if value is None or not str(value).strip():
        raise ValidationError(f"{key} required")
    return str(value).strip()


def optional_datetime(payload: dict, key: str) -> datetime | None:
    value = payload.get(key)
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")


def parse_lines(payload: dict, *, int_fields: tuple[str, ...], required: tuple[str, ...], text_fields: tuple[str, ...] = ()) -> list[dict]:
    """
    Normalize a "lines" array from a request body.

    Only the listed fields are copied; everything else is dropped.
    """
    raw = payload.get("lines")
    if not isinstance(raw, list) or not raw:
        raise ValidationError("lines must be a non-empty array")

    lines = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"lines[{i}] must be an object")
        line = {}
        for field in int_fields:
            if item.get(field) is None:
                if field in required:
                    raise ValidationError(f"lines[{i}].{field} required")
                continue
            line[field] = coerce_int(f"lines[{i}].{field}", item[field])
        for field in text_fields:
            if item.get(field) is not None:
                line[field] = str(item[field]).strip()
        lines.append(line)
    return lines


def page_args(args) -> tuple[int, int]:
    """Read page/per_page from query args, clamped to configured limits."""
    page = coerce_int("page", args.get("page", 1))
    per_page = coerce_int("per_page", args.get("per_page", current_app.config["DEFAULT_PAGE_SIZE"]))
    if page < 1:
        page = 1
    max_per_page = current_app.config["MAX_PAGE_SIZE"]
    per_page = max(1, min(per_page, max_per_page))
    return page, per_page


def json_body(request) -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def optional_text(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def optional_bool(payload: dict, key: str) -> bool | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in ("1", "true", "yes"):
        return True
    if lowered in ("0", "false", "no"):
        return False
    raise ValidationError(f"{key} must be a boolean")
