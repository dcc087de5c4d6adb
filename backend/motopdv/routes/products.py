# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product (estoque) routes.

SECURITY: All routes require an access session.
- Both modes may list, create and restock products
- Changing a price in operator mode requires a PRODUCT_PRICE_EDIT grant
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_access, authorization_grant, authorization_error_response
from ..models import Product
from ..services import products_service
from ..services.concurrency import PersistenceError
from ..services.pin_service import AuthorizationError
from ..services.products_service import PRODUCT_POLICY, ProductNotFoundError
from ..validation import validate_payload, ValidationError, ConflictError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_access
def list_products():
    """
    Query params:
    - search: str (optional) - matches name or SKU
    """
    products = products_service.list_products(request.args.get("search"))
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/low-stock")
@require_access
def low_stock():
    """Checklist of products at or below their minimum stock."""
    products = products_service.low_stock_products()
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/<int:product_id>")
@require_access
def get_product(product_id: int):
    p = products_service.get_product(product_id)
    if not p:
        return {"error": "Not found"}, 404
    return p.to_dict()


@products_bp.post("")
@require_access
def create_product():
    try:
        patch = validate_payload(
            model=Product,
            payload=request.get_json(silent=True),
            policy=PRODUCT_POLICY,
            partial=False,
        )
        p = products_service.create_product(patch=patch)
        return jsonify(p.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>")
@require_access
def update_product(product_id: int):
    try:
        data = dict(request.get_json(silent=True) or {})
        grant = authorization_grant(data)
        data.pop("authorization_grant", None)

        patch = validate_payload(model=Product, payload=data, policy=PRODUCT_POLICY, partial=True)
        p = products_service.update_product(
            product_id=product_id,
            patch=patch,
            access=g.access,
            authorization_grant=grant,
        )
        return jsonify(p.to_dict()), 200

    except ProductNotFoundError:
        return jsonify({"error": "Not found"}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except AuthorizationError as e:
        return authorization_error_response(e)
    except PersistenceError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500
