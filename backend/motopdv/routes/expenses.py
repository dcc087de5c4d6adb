# Overview: Flask API routes for expenses and cash withdrawals; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_access, require_gestor
from ..models import Expense
from ..services import expense_service
from ..services.expense_service import EXPENSE_POLICY
from ..time_utils import parse_iso_date
from ..validation import validate_payload, ValidationError

expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.get("")
@require_access
def list_expenses_route():
    """
    Query params:
    - search: description or category
    - start, end: YYYY-MM-DD, inclusive
    """
    try:
        start = parse_iso_date(request.args.get("start"))
        end = parse_iso_date(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "Dates must be YYYY-MM-DD"}), 400

    expenses = expense_service.list_expenses(request.args.get("search"), start=start, end=end)
    return {
        "items": [e.to_dict() for e in expenses],
        "count": len(expenses),
        "total_cents": sum(e.amount_cents for e in expenses),
    }


@expenses_bp.post("")
@require_access
def create_expense_route():
    try:
        patch = validate_payload(
            model=Expense,
            payload=request.get_json(silent=True),
            policy=EXPENSE_POLICY,
            partial=False,
        )
        expense = expense_service.create_expense(patch=patch)
        return jsonify(expense.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.post("/withdrawal")
@require_access
def withdrawal_route():
    """Sangria from the counter: {"amount_cents": 5000, "reason": "troco"}."""
    try:
        data = request.get_json(silent=True) or {}
        amount = data.get("amount_cents")
        if amount is None:
            return jsonify({"error": "amount_cents required"}), 400

        expense = expense_service.record_cash_withdrawal(amount, reason=data.get("reason"))
        return jsonify(expense.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record cash withdrawal")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.delete("/<int:expense_id>")
@require_access
@require_gestor
def delete_expense_route(expense_id: int):
    if not expense_service.delete_expense(expense_id):
        return jsonify({"error": "Not found"}), 404
    return jsonify({"deleted": True}), 200
