# Overview: Flask API routes for manager PIN challenges; parses input and returns JSON responses.

"""
Manager authorization challenges.

Flow for an operator action that needs the manager:
1. POST /api/authorizations {"action": "SALE_DISCOUNT"}   -> challenge id
2. POST /api/authorizations/<id>/pin {"pin": "1234"}     -> grant (one-shot, 2 minutes)
3. Repeat the privileged request with the grant in the
   X-Authorization-Grant header (or "authorization_grant" in the body)

POST /api/authorizations/<id>/cancel abandons the request; nothing else changes.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_access
from ..services import pin_service
from ..services.pin_service import (
    AuthorizationError,
    STATUS_AUTHORIZED,
    STATUS_LOCKED,
)

authorizations_bp = Blueprint("authorizations", __name__, url_prefix="/api/authorizations")


@authorizations_bp.post("")
@require_access
def open_challenge_route():
    try:
        data = request.get_json(silent=True) or {}
        action = data.get("action")
        if not action:
            return jsonify({"error": "action required"}), 400

        challenge = pin_service.open_challenge(
            action,
            title=data.get("title"),
            description=data.get("description"),
        )
        return jsonify({"challenge": challenge.to_dict()}), 201

    except AuthorizationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to open authorization challenge")
        return jsonify({"error": "Internal server error"}), 500


@authorizations_bp.post("/<int:challenge_id>/pin")
@require_access
def submit_pin_route(challenge_id: int):
    """
    200 AUTHORIZED (with grant), 401 DENIED (with attempt counter),
    429 LOCKED (with seconds until unlock).
    """
    try:
        data = request.get_json(silent=True) or {}
        result = pin_service.submit_pin(
            challenge_id,
            data.get("pin"),
            access_session_id=g.access.session_id,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )

        if result.status == STATUS_AUTHORIZED:
            return jsonify(result.to_dict()), 200
        if result.status == STATUS_LOCKED:
            return jsonify(result.to_dict()), 429
        return jsonify(result.to_dict()), 401

    except AuthorizationError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to verify authorization PIN")
        return jsonify({"error": "Internal server error"}), 500


@authorizations_bp.post("/<int:challenge_id>/cancel")
@require_access
def cancel_challenge_route(challenge_id: int):
    try:
        challenge = pin_service.cancel_challenge(challenge_id)
        return jsonify({"challenge": challenge.to_dict()}), 200

    except AuthorizationError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to cancel authorization challenge")
        return jsonify({"error": "Internal server error"}), 500
