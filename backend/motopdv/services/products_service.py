# Overview: Service-layer operations for products (estoque); search, CRUD and the low-stock checklist.

"""
Products Service

Prices edited in operator mode need a PRODUCT_PRICE_EDIT grant from the
manager; quantity and descriptive fields can be changed freely.
"""
from __future__ import annotations

import logging

from sqlalchemy import or_

from ..extensions import db
from ..models import Product
from ..validation import ConflictError, ModelValidationPolicy, enforce_rules_product
from . import pin_service
from .access_service import AccessContext
from .concurrency import run_atomic
from .pin_service import ACTION_PRODUCT_PRICE_EDIT, AuthorizationRequiredError

logger = logging.getLogger(__name__)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "sku", "quantity", "min_stock",
        "price_cost_cents", "price_sell_cents", "observation",
    },
    required_on_create={"name", "price_sell_cents"},
)

PRICE_FIELDS = ("price_cost_cents", "price_sell_cents")


class ProductNotFoundError(LookupError):
    pass


def _normalize_sku(patch: dict) -> None:
    if "sku" in patch and patch["sku"] == "":
        patch["sku"] = None


def _check_sku_unique(sku: str | None, *, exclude_id: int | None = None) -> None:
    if not sku:
        return
    query = db.session.query(Product).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("SKU already exists.")


def list_products(search: str | None = None) -> list[Product]:
    """Alphabetical; search matches name or SKU, case-insensitive."""
    query = db.session.query(Product)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def low_stock_products() -> list[Product]:
    """Shopping checklist: products at or below their minimum stock."""
    return (
        db.session.query(Product)
        .filter(Product.quantity <= Product.min_stock)
        .order_by(Product.quantity.asc(), Product.name.asc())
        .all()
    )


def create_product(*, patch: dict) -> Product:
    """
    Create a product from a validated patch dict.

    Raises:
        ConflictError: If the SKU is already used
    """
    _normalize_sku(patch)
    enforce_rules_product(patch)
    _check_sku_unique(patch.get("sku"))

    p = Product()
    for k, v in patch.items():
        setattr(p, k, v)
    db.session.add(p)
    db.session.commit()
    logger.info("Product %s created (sku=%s)", p.id, p.sku)
    return p


def update_product(
    *,
    product_id: int,
    patch: dict,
    access: AccessContext,
    authorization_grant: str | None = None,
) -> Product:
    """
    Apply a validated patch.

    An operator changing either price must present an unspent
    PRODUCT_PRICE_EDIT grant; it is consumed with the update.

    Raises:
        ProductNotFoundError, ConflictError, AuthorizationRequiredError,
        AuthorizationError, PersistenceError
    """
    _normalize_sku(patch)
    enforce_rules_product(patch)

    def _op() -> Product:
        p = db.session.get(Product, product_id)
        if p is None:
            raise ProductNotFoundError(f"Product {product_id} not found")

        price_changed = [f for f in PRICE_FIELDS if f in patch and patch[f] != getattr(p, f)]
        if price_changed and not access.is_gestor:
            if not authorization_grant:
                raise AuthorizationRequiredError(
                    ACTION_PRODUCT_PRICE_EDIT,
                    details={"product_id": product_id, "fields": price_changed},
                )
            pin_service.consume_grant(authorization_grant, ACTION_PRODUCT_PRICE_EDIT, commit=False)

        if "sku" in patch:
            _check_sku_unique(patch["sku"], exclude_id=p.id)

        for k, v in patch.items():
            setattr(p, k, v)
        db.session.commit()
        if price_changed:
            logger.info("Product %s price changed by %s: %s", p.id, access.mode.value, ", ".join(price_changed))
        return p

    return run_atomic(_op)

