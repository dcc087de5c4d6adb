# Overview: Flask API routes for workshop settings; parses input and returns JSON responses.

"""
Workshop settings routes.

- POST /api/settings/setup   one-time setup, only while unconfigured
- GET  /api/settings         public: the login screen needs the workshop name
- PATCH /api/settings        GESTOR
- POST /api/settings/pin     GESTOR, change the manager PIN
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_access, require_gestor
from ..services import settings_service, pin_service
from ..services.pin_service import AuthorizationError, PinLockedError
from ..services.settings_service import SetupError
from ..validation import ValidationError, ConflictError

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.post("/setup")
def setup_route():
    try:
        data = dict(request.get_json(silent=True) or {})
        pin = data.pop("pin", None)
        pin_confirm = data.pop("pin_confirm", None)

        settings = settings_service.setup_workshop(data, pin, pin_confirm)
        return jsonify({"settings": settings.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to complete workshop setup")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.get("")
def get_settings_route():
    settings = settings_service.get_settings()
    return jsonify({
        "configured": settings is not None,
        "settings": settings.to_dict() if settings else None,
        "installment_rates": {str(k): v for k, v in settings_service.get_installment_rates().items()},
    }), 200


@settings_bp.patch("")
@require_access
@require_gestor
def update_settings_route():
    try:
        data = dict(request.get_json(silent=True) or {})
        rates = data.pop("installment_rates", None)

        settings = settings_service.update_settings(data)
        if rates is not None:
            settings_service.set_installment_rates(rates)

        return jsonify({
            "settings": settings.to_dict(),
            "installment_rates": {str(k): v for k, v in settings_service.get_installment_rates().items()},
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SetupError as e:
        return jsonify({"error": str(e), "setup_required": True}), 409
    except Exception:
        current_app.logger.exception("Failed to update settings")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.post("/pin")
@require_access
@require_gestor
def change_pin_route():
    try:
        data = request.get_json(silent=True) or {}
        settings_service.change_manager_pin(
            data.get("current_pin"),
            data.get("new_pin"),
            data.get("new_pin_confirm"),
        )
        return jsonify({"message": "PIN updated"}), 200

    except PinLockedError as e:
        return jsonify({"error": str(e), "locked": True, **e.details}), 429
    except AuthorizationError as e:
        status = pin_service.get_lockout_status()
        return jsonify({"error": str(e), **status}), 401
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SetupError as e:
        return jsonify({"error": str(e), "setup_required": True}), 409
    except Exception:
        current_app.logger.exception("Failed to change manager PIN")
        return jsonify({"error": "Internal server error"}), 500
