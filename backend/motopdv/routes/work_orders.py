# Overview: Flask API routes for work orders and commissions; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_access, require_gestor
from ..services import work_order_service
from ..services.concurrency import PersistenceError
from ..services.work_order_service import (
    WorkOrderAlreadySettledError,
    WorkOrderError,
    WorkOrderNotFoundError,
)
from ..validation import ValidationError

work_orders_bp = Blueprint("work_orders", __name__, url_prefix="/api/work-orders")
commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/commissions")


@work_orders_bp.get("")
@require_access
def list_work_orders_route():
    """
    Query params:
    - search: customer name or plate
    - status: ABERTA | EM_ANDAMENTO | AGUARDANDO_PECA | FINALIZADA | CANCELADA
    """
    try:
        orders = work_order_service.list_work_orders(
            search=request.args.get("search"),
            status=request.args.get("status"),
        )
        return {"items": [o.to_dict() for o in orders], "count": len(orders)}
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@work_orders_bp.post("")
@require_access
def create_work_order_route():
    try:
        order = work_order_service.create_work_order(request.get_json(silent=True) or {})
        return jsonify({"order": order.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create work order")
        return jsonify({"error": "Internal server error"}), 500


@work_orders_bp.get("/<int:order_id>")
@require_access
def get_work_order_route(order_id: int):
    order = work_order_service.get_work_order(order_id)
    if not order:
        return jsonify({"error": "Not found"}), 404
    return jsonify({"order": order.to_dict()}), 200


@work_orders_bp.post("/<int:order_id>/items")
@require_access
def add_item_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        service_id = data.get("service_id")
        if not isinstance(service_id, int) or isinstance(service_id, bool):
            return jsonify({"error": "service_id required"}), 400

        employee_id = data.get("employee_id")
        if employee_id is not None and (not isinstance(employee_id, int) or isinstance(employee_id, bool)):
            return jsonify({"error": "employee_id must be an integer"}), 400

        item = work_order_service.add_item(
            order_id,
            service_id=service_id,
            employee_id=employee_id,
            price=data.get("price_cents"),
        )
        order = work_order_service.get_work_order(order_id)
        return jsonify({"item": item.to_dict(), "order": order.to_dict()}), 201

    except WorkOrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except WorkOrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add work order item")
        return jsonify({"error": "Internal server error"}), 500


@work_orders_bp.delete("/<int:order_id>/items/<int:item_id>")
@require_access
def remove_item_route(order_id: int, item_id: int):
    try:
        order = work_order_service.remove_item(order_id, item_id)
        return jsonify({"order": order.to_dict()}), 200

    except WorkOrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except WorkOrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to remove work order item")
        return jsonify({"error": "Internal server error"}), 500


@work_orders_bp.post("/<int:order_id>/status")
@require_access
def change_status_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        order = work_order_service.change_status(order_id, status)
        return jsonify({"order": order.to_dict()}), 200

    except WorkOrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except WorkOrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to change work order status")
        return jsonify({"error": "Internal server error"}), 500


@work_orders_bp.post("/<int:order_id>/finalize")
@require_access
def finalize_route(order_id: int):
    """Settle the order and confirm its commissions; a second call is rejected."""
    try:
        result = work_order_service.finalize_work_order(order_id)
        return jsonify(result.to_dict()), 200

    except WorkOrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except WorkOrderAlreadySettledError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except WorkOrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except PersistenceError as e:
        return jsonify({"error": str(e), "details": e.details}), 500
    except Exception:
        current_app.logger.exception("Failed to finalize work order")
        return jsonify({"error": "Internal server error"}), 500


@commissions_bp.get("")
@require_access
@require_gestor
def list_commissions_route():
    """
    Query params:
    - employee_id: int (optional)
    - order_id: int (optional)
    """
    commissions = work_order_service.list_commissions(
        employee_id=request.args.get("employee_id", type=int),
        order_id=request.args.get("order_id", type=int),
    )
    return {"items": [c.to_dict() for c in commissions], "count": len(commissions)}
