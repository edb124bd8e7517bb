# Overview: Domain error kinds raised by the stock core services.

"""
Every business-rule violation is detected before any write and raised as a
StockCoreError subclass. Each error carries a stable code, an HTTP status for
the API layer, and a details dict (entity id, attempted quantity, limit) so the
caller can render a specific message.
"""

from __future__ import annotations


class StockCoreError(Exception):
    """Base class for domain errors."""
    code = "STOCK_CORE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": self.code,
            "details": self.details,
        }


class NotFoundError(StockCoreError):
    """Referenced entity is absent."""
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id, message: str | None = None):
        super().__init__(
            message or f"{entity} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )


class InvalidQuantityError(StockCoreError):
    """Zero, negative, wrongly signed or over-limit quantity."""
    code = "INVALID_QUANTITY"
    http_status = 422


class InsufficientStockError(StockCoreError):
    """Movement would drive on-hand quantity below zero."""
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class IllegalTransitionError(StockCoreError):
    """State machine violation."""
    code = "ILLEGAL_TRANSITION"
    http_status = 409


class OutOfWindowError(StockCoreError):
    """Time-boxed rule violated (void after 24h, return after 30 days)."""
    code = "OUT_OF_WINDOW"
    http_status = 422


class DuplicateAlertError(StockCoreError):
    """An unread alert of the same kind already exists. Never leaves the alert service."""
    code = "DUPLICATE_ALERT"
    http_status = 409


class ConcurrencyConflictError(StockCoreError):
    """Optimistic/lock retries exhausted."""
    code = "CONCURRENCY_CONFLICT"
    http_status = 409
