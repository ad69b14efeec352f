# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import session_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session token.

    Sets g.current_user to the authenticated User.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({
                "success": False,
                "error": "Authentication required",
                "code": "UNAUTHENTICATED",
                "details": {},
            }), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({
                "success": False,
                "error": "Invalid or expired token",
                "code": "UNAUTHENTICATED",
                "details": {},
            }), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function
