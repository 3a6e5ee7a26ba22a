# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def require_auth(f):
    """
    Require a bearer token and establish the acting identity.

    Sets g.actor (services.access_service.Actor) for the handler.
    Returns 401 when the header is missing or the token does not resolve
    (unknown, expired, revoked, or user/organization deactivated).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"ok": False, "error": {"code": "UNAUTHENTICATED", "message": "Authentication required"}}), 401

        token = auth_header.split(" ", 1)[1]
        actor = session_service.resolve_actor(token)

        if actor is None:
            return jsonify({"ok": False, "error": {"code": "UNAUTHENTICATED", "message": "Invalid or expired token"}}), 401

        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function
