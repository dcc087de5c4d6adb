"""
Checkout Service - counter (PDV) cart and sale commit

WHY: A sale is only written once, already paid, together with the stock
decrement of every product in the cart. Both writes happen in one
transaction: a reader never sees stock taken without the sale, or a sale
without its stock movement.

Cart lifecycle (Checkout):
    BUILDING -> AWAITING_AUTH (operator + discount above the limit)
             -> COMMITTING -> COMMITTED
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Product, Sale, SaleItem
from motopdv.time_utils import utcnow
from . import pin_service, settings_service
from .access_service import AccessContext
from .authorization import AuthorizationGate
from .concurrency import lock_for_update, run_atomic
from .pin_service import ACTION_SALE_DISCOUNT, AuthorizationRequiredError
from .pricing import (
    PAYMENT_METHODS,
    PAYMENT_PIX,
    SaleTotals,
    calculate_totals,
    clamp_installments,
    coerce_cents,
    requires_authorization,
)

logger = logging.getLogger(__name__)

SALE_STATUS_ABERTA = "ABERTA"
SALE_STATUS_PAGA = "PAGA"
SALE_STATUS_CANCELADA = "CANCELADA"

SALE_ID_ATTEMPTS = 20


class CheckoutError(Exception):
    """Raised for checkout validation errors; nothing was written."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class CheckoutState(str, Enum):
    BUILDING = "BUILDING"
    AWAITING_AUTH = "AWAITING_AUTH"
    COMMITTING = "COMMITTING"
    COMMITTED = "COMMITTED"


@dataclass
class CartLine:
    product_id: int
    name: str
    quantity: int
    unit_price_cents: int

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }


def _use_configured_limit() -> bool:
    return bool(current_app.config.get("USE_CONFIGURED_DISCOUNT_LIMIT", False))


def quote(
    lines: Iterable[CartLine],
    discount=0,
    payment_method: str = PAYMENT_PIX,
    installments=1,
) -> SaleTotals:
    """Totals for a cart using the workshop's installment rate table."""
    return calculate_totals(
        lines,
        discount=discount,
        payment_method=payment_method,
        installments=installments,
        rate_table=settings_service.get_installment_rates(),
    )


def discount_needs_authorization(totals: SaleTotals, access: AccessContext) -> bool:
    if access.is_gestor:
        return False
    threshold = settings_service.discount_threshold_percent(_use_configured_limit())
    return requires_authorization(totals.discount_cents, totals.subtotal_cents, threshold)


def build_cart_lines(items: list[dict]) -> list[CartLine]:
    """
    Turn [{"product_id", "quantity"}] into cart lines priced at the current
    sell price, merging repeated products.
    """
    if not isinstance(items, list):
        raise CheckoutError("items must be a list")

    quantities: dict[int, int] = {}
    for raw in items:
        if not isinstance(raw, dict):
            raise CheckoutError("Each item must be an object")
        product_id = raw.get("product_id")
        quantity = raw.get("quantity", 1)
        if not isinstance(product_id, int) or isinstance(product_id, bool):
            raise CheckoutError("product_id must be an integer")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise CheckoutError("quantity must be a positive integer", details={"product_id": product_id})
        quantities[product_id] = quantities.get(product_id, 0) + quantity

    if not quantities:
        return []

    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(list(quantities))).all()
    }
    missing = sorted(pid for pid in quantities if pid not in products)
    if missing:
        raise CheckoutError("Product not found", details={"product_ids": missing})

    return [
        CartLine(
            product_id=pid,
            name=products[pid].name,
            quantity=qty,
            unit_price_cents=products[pid].price_sell_cents or 0,
        )
        for pid, qty in quantities.items()
    ]


def _next_sale_id() -> str:
    """Random six-digit sale number not used yet."""
    for _ in range(SALE_ID_ATTEMPTS):
        candidate = str(100000 + secrets.randbelow(900000))
        if db.session.get(Sale, candidate) is None:
            return candidate
    raise CheckoutError("Could not allocate a sale number")


def _validate_lines(lines: list[CartLine]) -> None:
    if not lines:
        raise CheckoutError("Cannot finalize an empty cart")
    for line in lines:
        if line.quantity < 1:
            raise CheckoutError("Line quantity must be at least 1", details={"product_id": line.product_id})
        if line.unit_price_cents < 0:
            raise CheckoutError("Line price cannot be negative", details={"product_id": line.product_id})


def commit_sale(
    *,
    lines: Iterable[CartLine],
    access: AccessContext,
    discount=0,
    payment_method: str = PAYMENT_PIX,
    installments=1,
    authorization_grant: str | None = None,
) -> Sale:
    """
    Write a PAGA sale and decrement stock, as one unit.

    An operator discount above the limit needs an unspent SALE_DISCOUNT
    grant. It is consumed in the same transaction as the sale, so a failed
    write leaves it unspent.

    Raises CheckoutError, AuthorizationRequiredError, AuthorizationError,
    PersistenceError. On any error nothing is written.
    """
    lines = list(lines)
    _validate_lines(lines)

    if not access.is_authenticated:
        raise CheckoutError("An access session is required to sell")
    if payment_method not in PAYMENT_METHODS:
        raise CheckoutError(
            "Invalid payment method",
            details={"payment_method": payment_method, "allowed": list(PAYMENT_METHODS)},
        )

    totals = quote(lines, discount, payment_method, installments)
    needs_auth = discount_needs_authorization(totals, access)
    if needs_auth and not authorization_grant:
        raise AuthorizationRequiredError(
            ACTION_SALE_DISCOUNT,
            details={
                "discount_cents": totals.discount_cents,
                "subtotal_cents": totals.subtotal_cents,
            },
        )

    def _op():
        authorization_id = None
        if needs_auth:
            challenge = pin_service.consume_grant(authorization_grant, ACTION_SALE_DISCOUNT, commit=False)
            authorization_id = challenge.id

        product_ids = sorted({line.product_id for line in lines})
        products = {
            p.id: p
            for p in lock_for_update(
                db.session.query(Product).filter(Product.id.in_(product_ids))
            ).all()
        }
        missing = [pid for pid in product_ids if pid not in products]
        if missing:
            raise CheckoutError("Product not found", details={"product_ids": missing})

        sale = Sale(
            id=_next_sale_id(),
            status=SALE_STATUS_PAGA,
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            interest_rate=totals.interest_rate,
            interest_cents=totals.interest_cents,
            installments=totals.installments,
            total_cents=totals.total_cents,
            payment_method=payment_method,
            actor_type=access.mode.value,
            authorization_id=authorization_id,
            created_at=utcnow(),
        )
        for position, line in enumerate(lines):
            sale.items.append(SaleItem(
                position=position,
                product_id=line.product_id,
                name=line.name,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                subtotal_cents=line.subtotal_cents,
            ))
        db.session.add(sale)

        for line in lines:
            product = products[line.product_id]
            remaining = (product.quantity or 0) - line.quantity
            if remaining < 0:
                logger.warning(
                    "Sale %s oversells product %s by %s unit(s); stock clamped at 0",
                    sale.id, product.id, -remaining,
                )
            product.quantity = max(0, remaining)

        db.session.commit()
        return sale

    sale = run_atomic(_op)
    logger.info(
        "Sale %s committed: %s item(s), total %s cents, %s by %s",
        sale.id, len(lines), sale.total_cents, sale.payment_method, sale.actor_type,
    )
    return sale


class Checkout:
    """
    One in-progress cart at the counter.

    Prices are snapshotted when a product is added; later product price
    changes do not touch an open cart.
    """

    def __init__(self, access: AccessContext):
        self.access = access
        self.lines: list[CartLine] = []
        self.discount_cents = 0
        self.payment_method = PAYMENT_PIX
        self.installments = 1
        self.state = CheckoutState.BUILDING
        self.last_sale: Sale | None = None
        self.gate: AuthorizationGate | None = None

    # -- cart editing -----------------------------------------------------

    def _editable(self) -> None:
        if self.state == CheckoutState.COMMITTING:
            raise CheckoutError("Sale is being committed")
        if self.state == CheckoutState.AWAITING_AUTH:
            self.abandon_authorization()
        if self.state == CheckoutState.COMMITTED:
            self.state = CheckoutState.BUILDING

    def _find(self, product_id: int) -> CartLine | None:
        return next((line for line in self.lines if line.product_id == product_id), None)

    def add_item(self, product: Product) -> CartLine:
        self._editable()
        line = self._find(product.id)
        if line:
            line.quantity += 1
            return line
        line = CartLine(
            product_id=product.id,
            name=product.name,
            quantity=1,
            unit_price_cents=product.price_sell_cents or 0,
        )
        self.lines.append(line)
        return line

    def update_quantity(self, product_id: int, delta: int) -> CartLine | None:
        """Quantity never drops below 1; use remove_item to drop a line."""
        self._editable()
        line = self._find(product_id)
        if line:
            line.quantity = max(1, line.quantity + int(delta))
        return line

    def remove_item(self, product_id: int) -> None:
        self._editable()
        self.lines = [line for line in self.lines if line.product_id != product_id]

    def set_discount(self, value) -> None:
        self._editable()
        self.discount_cents = max(0, coerce_cents(value))

    def set_payment(self, payment_method: str, installments=1) -> None:
        self._editable()
        if payment_method not in PAYMENT_METHODS:
            raise CheckoutError("Invalid payment method", details={"payment_method": payment_method})
        self.payment_method = payment_method
        self.installments = clamp_installments(installments)

    # -- totals -----------------------------------------------------------

    @property
    def subtotal_cents(self) -> int:
        return sum(line.subtotal_cents for line in self.lines)

    def totals(self) -> SaleTotals:
        return quote(self.lines, self.discount_cents, self.payment_method, self.installments)

    def requires_authorization(self) -> bool:
        return discount_needs_authorization(self.totals(), self.access)

    # -- finalization -----------------------------------------------------

    def finish(self, gate: AuthorizationGate | None = None) -> Sale | None:
        """
        Empty cart -> no-op (None).
        Operator discount above the limit -> AWAITING_AUTH, commit deferred
        to the gate's success callback (None now).
        Otherwise -> committed Sale.
        """
        if not self.lines:
            return None
        if self.state in (CheckoutState.COMMITTING, CheckoutState.AWAITING_AUTH):
            raise CheckoutError(f"Checkout is {self.state.value}")

        if self.requires_authorization():
            if gate is None:
                raise AuthorizationRequiredError(ACTION_SALE_DISCOUNT)
            self.gate = gate
            self.state = CheckoutState.AWAITING_AUTH
            gate.request(
                ACTION_SALE_DISCOUNT,
                on_success=self.commit,
            )
            return None

        return self.commit()

    def abandon_authorization(self) -> None:
        """Give up on the pending PIN; the cart stays as it was."""
        if self.state != CheckoutState.AWAITING_AUTH:
            return
        if self.gate is not None:
            self.gate.cancel()
        self.gate = None
        self.state = CheckoutState.BUILDING

    def commit(self, authorization_grant: str | None = None) -> Sale:
        previous_state = self.state
        self.state = CheckoutState.COMMITTING
        try:
            sale = commit_sale(
                lines=self.lines,
                access=self.access,
                discount=self.discount_cents,
                payment_method=self.payment_method,
                installments=self.installments,
                authorization_grant=authorization_grant,
            )
        except Exception:
            self.state = CheckoutState.BUILDING if previous_state == CheckoutState.AWAITING_AUTH else previous_state
            self.gate = None
            raise

        self.last_sale = sale
        self.lines = []
        self.discount_cents = 0
        self.gate = None
        self.state = CheckoutState.COMMITTED
        return sale


def get_sale(sale_id: str) -> Sale | None:
    return db.session.get(Sale, str(sale_id))


def list_sales(search: str | None = None, start=None, end=None) -> list[Sale]:
    """Newest first; search matches the sale number or the payment method."""
    query = db.session.query(Sale)
    if search:
        term = search.strip()
        query = query.filter(or_(Sale.id.like(f"{term}%"), Sale.payment_method == term.upper()))
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at < end)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()
