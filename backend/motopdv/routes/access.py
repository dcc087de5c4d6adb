# Overview: Flask API routes for access modes; parses input and returns JSON responses.

"""
Access mode routes

- POST /api/access/gestor               manager PIN -> GESTOR session token
- POST /api/access/operacional          counter-only session, no PIN
- POST /api/access/switch-operacional   GESTOR -> OPERACIONAL on the same token (PIN)
- POST /api/access/logout               revoke the token
- GET  /api/access/me                   current mode and PIN lockout state

SECURITY FEATURES:
- Manager PIN entry shares the PIN lockout with every authorization challenge
- Locked PIN entry answers 429 with the remaining seconds
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_access, require_gestor
from ..services import access_service, pin_service, settings_service
from ..services.access_service import (
    AccessContext,
    AccessEvent,
    AccessTransitionError,
    OPERACIONAL_CONTEXT,
)
from ..services.pin_service import ACTION_MODE_SWITCH, PinLockedError

access_bp = Blueprint("access", __name__, url_prefix="/api/access")


def _setup_required():
    return jsonify({"error": "Workshop setup not completed", "setup_required": True}), 409


def _locked_response(e: PinLockedError):
    seconds = e.seconds_remaining
    return jsonify({
        "error": str(e),
        "locked": True,
        "retry_after_seconds": seconds,
        "retry_after_minutes": (seconds // 60) + 1 if seconds else None,
    }), 429


def _invalid_pin_response():
    status = pin_service.get_lockout_status()
    remaining = status["max_attempts"] - status["failed_attempts"]
    body = {"error": "Invalid PIN", **status}
    if status["locked"]:
        return jsonify(body), 429
    if remaining <= 3:
        body["warning"] = f"{remaining} attempts remaining before PIN lockout"
    return jsonify(body), 401


@access_bp.post("/gestor")
def enter_gestor_route():
    try:
        if not settings_service.is_configured():
            return _setup_required()

        data = request.get_json(silent=True) or {}
        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        ok = pin_service.verify_manager_pin(
            data.get("pin"),
            action="LOGIN_GESTOR",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        if not ok:
            return _invalid_pin_response()

        context = access_service.transition(AccessContext(), AccessEvent.ENTER_GESTOR, pin_verified=True)
        session, token, context = access_service.open_session(
            context, user_agent=user_agent, ip_address=ip_address
        )
        return jsonify({
            "token": token,
            "access": context.to_dict(),
            "expires_at": session.to_dict()["expires_at"],
        }), 200

    except PinLockedError as e:
        return _locked_response(e)
    except Exception:
        current_app.logger.exception("Failed to enter manager mode")
        return jsonify({"error": "Internal server error"}), 500


@access_bp.post("/operacional")
def enter_operacional_route():
    try:
        if not settings_service.is_configured():
            return _setup_required()

        session, token, context = access_service.open_session(
            OPERACIONAL_CONTEXT,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({
            "token": token,
            "access": context.to_dict(),
            "expires_at": session.to_dict()["expires_at"],
        }), 200

    except Exception:
        current_app.logger.exception("Failed to enter operator mode")
        return jsonify({"error": "Internal server error"}), 500


@access_bp.post("/switch-operacional")
@require_access
@require_gestor
def switch_operacional_route():
    """Lock this terminal down to the counter; the manager PIN confirms it."""
    try:
        data = request.get_json(silent=True) or {}
        ok = pin_service.verify_manager_pin(
            data.get("pin"),
            action=ACTION_MODE_SWITCH,
            access_session_id=g.access.session_id,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        if not ok:
            return _invalid_pin_response()

        context = access_service.apply_event(g.access, AccessEvent.ENTER_OPERACIONAL, pin_verified=True)
        return jsonify({"access": context.to_dict()}), 200

    except PinLockedError as e:
        return _locked_response(e)
    except AccessTransitionError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to switch to operator mode")
        return jsonify({"error": "Internal server error"}), 500


@access_bp.post("/logout")
@require_access
def logout_route():
    try:
        context = access_service.apply_event(g.access, AccessEvent.LOGOUT)
        return jsonify({"access": context.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to log out")
        return jsonify({"error": "Internal server error"}), 500


@access_bp.get("/me")
@require_access
def me_route():
    return jsonify({
        "access": g.access.to_dict(),
        "pin_lockout": pin_service.get_lockout_status(),
    }), 200
