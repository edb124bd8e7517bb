# Overview: Page helpers shared by service queries and API responses.

from __future__ import annotations

from flask import current_app


def paginate(query, page: int = 1, per_page: int | None = None):
    """Paginate a Flask-SQLAlchemy query without raising on out-of-range pages."""
    if per_page is None:
        per_page = current_app.config["DEFAULT_PAGE_SIZE"]
    return query.paginate(
        page=max(1, page),
        per_page=per_page,
        max_per_page=current_app.config["MAX_PAGE_SIZE"],
        error_out=False,
    )


def page_to_dict(pagination, serialize=None) -> dict:
    if serialize is None:
        serialize = lambda obj: obj.to_dict()
    return {
        "items": [serialize(item) for item in pagination.items],
        "page": pagination.page,
        "per_page": pagination.per_page,
        "total": pagination.total,
        "pages": pagination.pages,
    }
