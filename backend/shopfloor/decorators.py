# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import current_app, request, jsonify, g

from .extensions import db
from .models import User


SUPER_ADMIN = "Super Admin"
ADMIN = "Admin"
OFFICE_EMPLOYEE = "Office Employee"
WAREHOUSE_STAFF = "Warehouse Staff"


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def _resolve_forwarded_user():
    header = current_app.config.get("AUTH_USER_HEADER", "X-Authenticated-User-Id")
    raw = request.headers.get(header)
    if not raw:
        return None
    try:
        user_id = int(raw)
    except ValueError:
        return None
    return db.session.get(User, user_id)


def require_auth(f):
    """
    Require an authenticated user.

    Authentication is done by the upstream auth provider, which forwards the
    local user id in AUTH_USER_HEADER. This decorator only resolves it.

    Sets g.current_user. Returns 401 if:
    - The header is missing or not an integer
    - The user does not exist
    - The user account is deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _resolve_forwarded_user()
        if user is None:
            return jsonify({"error": "Authentication required", "kind": "AUTHENTICATION_ERROR"}), 401
        if not user.is_active:
            return jsonify({"error": "User account is deactivated", "kind": "AUTHENTICATION_ERROR"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(*role_names):
    """
    Require any of the given roles. Super Admin passes every role check.

    Must be stacked under @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "kind": "AUTHENTICATION_ERROR"}), 401

            user_roles = g.current_user.role_names
            if SUPER_ADMIN in user_roles or user_roles.intersection(role_names):
                return f(*args, **kwargs)

            return jsonify({
                "error": "Permission denied",
                "kind": "PERMISSION_DENIED",
                "required_roles": list(role_names),
                "message": f"Requires any of: {', '.join(role_names)}",
            }), 403

        return decorated_function
    return decorator
