# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""
Counter sales (PDV).

Checkout body:
{
  "items": [{"product_id": 1, "quantity": 2}],
  "discount_cents": 500,
  "payment_method": "PIX" | "CREDITO" | "DEBITO" | "DINHEIRO",
  "installments": 1,
  "authorization_grant": "..."      (operator discount above the limit)
}

Items are priced at the current sell price. The sale is written already
paid, with the stock decrement, in one transaction.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_access, authorization_grant, authorization_error_response
from ..services import checkout_service
from ..services.checkout_service import CheckoutError
from ..services.concurrency import PersistenceError
from ..services.pin_service import AuthorizationError
from ..services.pricing import PAYMENT_METHODS, PAYMENT_PIX
from ..time_utils import day_bounds, parse_iso_date

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _cart_from_request(data: dict):
    lines = checkout_service.build_cart_lines(data.get("items") or [])
    payment_method = data.get("payment_method") or PAYMENT_PIX
    if payment_method not in PAYMENT_METHODS:
        raise CheckoutError(
            "Invalid payment method",
            details={"payment_method": payment_method, "allowed": list(PAYMENT_METHODS)},
        )
    return lines, data.get("discount_cents", 0), payment_method, data.get("installments", 1)


@sales_bp.get("")
@require_access
def list_sales_route():
    """
    Query params:
    - search: sale number prefix or payment method
    - start, end: YYYY-MM-DD, inclusive
    """
    try:
        start = parse_iso_date(request.args.get("start"))
        end = parse_iso_date(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "Dates must be YYYY-MM-DD"}), 400

    lo = day_bounds(start, start)[0] if start else None
    hi = day_bounds(end, end)[1] if end else None
    sales = checkout_service.list_sales(request.args.get("search"), start=lo, end=hi)
    return {"items": [s.to_dict() for s in sales], "count": len(sales)}


@sales_bp.get("/<sale_id>")
@require_access
def get_sale_route(sale_id: str):
    """Receipt data: id, timestamp, items, totals and payment method."""
    sale = checkout_service.get_sale(sale_id)
    if not sale:
        return jsonify({"error": "Not found"}), 404
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/quote")
@require_access
def quote_route():
    try:
        data = request.get_json(silent=True) or {}
        lines, discount, payment_method, installments = _cart_from_request(data)

        totals = checkout_service.quote(lines, discount, payment_method, installments)
        return jsonify({
            "lines": [line.to_dict() for line in lines],
            "totals": totals.to_dict(),
            "requires_authorization": checkout_service.discount_needs_authorization(totals, g.access),
        }), 200

    except CheckoutError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to quote sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/checkout")
@require_access
def checkout_route():
    try:
        data = request.get_json(silent=True) or {}
        lines, discount, payment_method, installments = _cart_from_request(data)

        sale = checkout_service.commit_sale(
            lines=lines,
            access=g.access,
            discount=discount,
            payment_method=payment_method,
            installments=installments,
            authorization_grant=authorization_grant(data),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except CheckoutError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except AuthorizationError as e:
        return authorization_error_response(e)
    except PersistenceError as e:
        return jsonify({"error": str(e), "details": e.details}), 500
    except Exception:
        current_app.logger.exception("Failed to commit sale")
        return jsonify({"error": "Internal server error"}), 500
