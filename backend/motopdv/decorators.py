# Overview: Request and access-mode decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import access_service, pin_service
from .services.pin_service import AuthorizationError, AuthorizationRequiredError

GRANT_HEADER = "X-Authorization-Grant"


def _is_authenticated() -> bool:
    return hasattr(g, 'access') and g.access.is_authenticated


def authorization_grant(data: dict | None = None) -> str | None:
    """Manager grant presented with a request: header first, then JSON body."""
    grant = request.headers.get(GRANT_HEADER)
    if grant:
        return grant
    if data and isinstance(data, dict):
        return data.get("authorization_grant")
    return None


def authorization_error_response(e: AuthorizationError):
    """JSON body + status for a refused privileged action."""
    if isinstance(e, AuthorizationRequiredError):
        return jsonify({
            "error": str(e),
            "authorization_required": True,
            "action": e.action,
            "details": e.details,
        }), 403
    return jsonify({"error": str(e), "details": e.details}), 403


def require_access(f):
    """
    Require an access session (GESTOR or OPERACIONAL).

    Sets g.access to the session's AccessContext.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Unknown, revoked, expired or idle token
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = access_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.access = context
        return f(*args, **kwargs)

    return decorated_function


def require_gestor(f):
    """Require manager mode. Must be applied after @require_access."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401

        if not g.access.is_gestor:
            pin_service.log_security_event(
                "ACCESS_DENIED",
                success=False,
                action=request.method,
                reason=f"Manager mode required for {request.path}",
                access_session_id=g.access.session_id,
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
                commit=True,
            )
            return jsonify({"error": "Manager access required", "mode": g.access.mode.value}), 403

        return f(*args, **kwargs)

    return decorated_function


def require_gestor_or_grant(action: str):
    """
    Manager mode passes; an operator must present an unspent grant for
    `action`, which is consumed by the request.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not g.access.is_gestor:
                try:
                    pin_service.consume_grant(authorization_grant(request.get_json(silent=True)), action)
                except AuthorizationError as e:
                    return authorization_error_response(e)

            return f(*args, **kwargs)

        return decorated_function

    return decorator
