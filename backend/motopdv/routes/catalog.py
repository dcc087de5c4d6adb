# Overview: Flask API routes for services and employees; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_access, require_gestor
from ..models import Employee, Service
from ..services import catalog_service
from ..services.catalog_service import EMPLOYEE_POLICY, SERVICE_POLICY, CatalogNotFoundError
from ..validation import validate_payload, ValidationError

services_bp = Blueprint("services", __name__, url_prefix="/api/services")
employees_bp = Blueprint("employees", __name__, url_prefix="/api/employees")


@services_bp.get("")
@require_access
def list_services():
    services = catalog_service.list_services()
    return {"items": [s.to_dict() for s in services], "count": len(services)}


@services_bp.post("")
@require_access
@require_gestor
def create_service():
    try:
        patch = validate_payload(
            model=Service,
            payload=request.get_json(silent=True),
            policy=SERVICE_POLICY,
            partial=False,
        )
        s = catalog_service.create_service(patch=patch)
        return jsonify(s.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create service")
        return jsonify({"error": "Internal server error"}), 500


@services_bp.patch("/<int:service_id>")
@require_access
@require_gestor
def update_service(service_id: int):
    try:
        patch = validate_payload(
            model=Service,
            payload=request.get_json(silent=True),
            policy=SERVICE_POLICY,
            partial=True,
        )
        s = catalog_service.update_service(service_id=service_id, patch=patch)
        return jsonify(s.to_dict()), 200

    except CatalogNotFoundError:
        return jsonify({"error": "Not found"}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update service")
        return jsonify({"error": "Internal server error"}), 500


@services_bp.delete("/<int:service_id>")
@require_access
@require_gestor
def delete_service(service_id: int):
    if not catalog_service.delete_service(service_id):
        return jsonify({"error": "Not found"}), 404
    return jsonify({"deleted": True}), 200


@employees_bp.get("")
@require_access
def list_employees():
    """
    Query params:
    - active: "1" to list active employees only
    """
    employees = catalog_service.list_employees(active_only=request.args.get("active") == "1")
    return {"items": [e.to_dict() for e in employees], "count": len(employees)}


@employees_bp.post("")
@require_access
@require_gestor
def create_employee():
    try:
        patch = validate_payload(
            model=Employee,
            payload=request.get_json(silent=True),
            policy=EMPLOYEE_POLICY,
            partial=False,
        )
        e = catalog_service.create_employee(patch=patch)
        return jsonify(e.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create employee")
        return jsonify({"error": "Internal server error"}), 500


@employees_bp.patch("/<int:employee_id>")
@require_access
@require_gestor
def update_employee(employee_id: int):
    try:
        patch = validate_payload(
            model=Employee,
            payload=request.get_json(silent=True),
            policy=EMPLOYEE_POLICY,
            partial=True,
        )
        e = catalog_service.update_employee(employee_id=employee_id, patch=patch)
        return jsonify(e.to_dict()), 200

    except CatalogNotFoundError:
        return jsonify({"error": "Not found"}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update employee")
        return jsonify({"error": "Internal server error"}), 500
