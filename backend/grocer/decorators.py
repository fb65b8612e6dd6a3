# Overview: Request context decorators and error responses for API routes.

import uuid
from functools import wraps

from flask import g, jsonify, request

from .errors import LedgerError
from .services import auth_service


def _request_id() -> str:
    return request.headers.get("X-Request-Id") or uuid.uuid4().hex


def require_context(f):
    """
    Establish the acting user for a request.

    Sets:
    - g.ctx: AuthContext built from X-User-Id (must be an active user)
    - g.request_id: X-Request-Id, or a generated id

    Returns 401 if the header is missing or names no active user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.request_id = _request_id()
        raw = request.headers.get("X-User-Id")
        if not raw:
            return jsonify({"error": "Authentication required", "request_id": g.request_id}), 401
        try:
            user_id = int(raw)
        except ValueError:
            return jsonify({"error": "Invalid X-User-Id", "request_id": g.request_id}), 401

        ctx = auth_service.context_for_user(user_id, g.request_id)
        if ctx is None:
            return jsonify({"error": "Unknown or inactive user", "request_id": g.request_id}), 401
        g.ctx = ctx
        return f(*args, **kwargs)

    return decorated_function


def error_response(exc: LedgerError):
    """JSON body and status for a domain error."""
    body = exc.to_dict()
    body["request_id"] = getattr(g, "request_id", None)
    return jsonify(body), exc.http_status
