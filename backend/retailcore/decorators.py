# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .exceptions import NotFoundError
from .services.catalog_service import get_user
from .validation import ValidationError, coerce_int


def require_actor(f):
    """
    Resolve the acting user for a write request.

    Sets g.current_user from the X-User-Id header. There is no credential
    check here; callers are trusted front ends that already know the user.

    Returns 401 when the header is missing, 400 when it is not an integer and
    404 when the user does not exist or is inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id")
        if raw is None or not raw.strip():
            return jsonify({"error": "X-User-Id header required", "code": "ACTOR_REQUIRED", "details": {}}), 401

        try:
            user_id = coerce_int("X-User-Id", raw)
            user = get_user(user_id)
        except (ValidationError, NotFoundError) as e:
            return jsonify(e.to_dict()), e.http_status

        if not user.is_active:
            err = NotFoundError("User", user_id, message=f"User {user_id} is inactive")
            return jsonify(err.to_dict()), err.http_status

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Restrict a route to administrators.

    Must be stacked under @require_actor, which sets g.current_user.
    Returns 403 for any other user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            return jsonify({"error": "X-User-Id header required", "code": "ACTOR_REQUIRED", "details": {}}), 401
        if not user.is_admin:
            current_app.logger.warning("User %s denied admin route %s", user.id, request.path)
            return jsonify({
                "error": "Administrator required",
                "code": "ADMIN_REQUIRED",
                "details": {"user_id": user.id},
            }), 403
        return f(*args, **kwargs)

    return decorated_function
