"""
Pricing & discount calculator for the counter (PDV).

Pure functions only: no database, no Flask context. Malformed numbers are
coerced to zero instead of raising, and every result is floored at zero.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Mapping

PAYMENT_PIX = "PIX"
PAYMENT_CREDITO = "CREDITO"
PAYMENT_DEBITO = "DEBITO"
PAYMENT_DINHEIRO = "DINHEIRO"
PAYMENT_METHODS = (PAYMENT_PIX, PAYMENT_CREDITO, PAYMENT_DEBITO, PAYMENT_DINHEIRO)

MIN_INSTALLMENTS = 1
MAX_INSTALLMENTS = 12

# Discounts above this share of the subtotal need a manager authorization
DISCOUNT_AUTH_THRESHOLD_PERCENT = 5.0

# Credit card interest (percent of the discounted amount) per installment count
DEFAULT_INSTALLMENT_RATES: dict[int, float] = {
    1: 0.0,
    2: 3.2,
    3: 4.8,
    4: 6.4,
    5: 7.9,
    6: 9.4,
    7: 10.9,
    8: 12.3,
    9: 13.7,
    10: 15.1,
    11: 16.5,
    12: 17.9,
}


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    discount_cents: int
    interest_rate: float
    interest_cents: int
    total_cents: int
    installments: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "interest_rate": self.interest_rate,
            "interest_cents": self.interest_cents,
            "total_cents": self.total_cents,
            "installments": self.installments,
        }


def coerce_cents(value: Any) -> int:
    """int/float/numeric string -> int cents; anything else -> 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return 0
    if not dec.is_finite():
        return 0
    return int(dec.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def coerce_rate(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(rate) or math.isinf(rate) or rate < 0:
        return 0.0
    return rate


def clamp_installments(value: Any) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return MIN_INSTALLMENTS
    return max(MIN_INSTALLMENTS, min(MAX_INSTALLMENTS, n))


def percent_of(amount_cents: int, percent: float) -> int:
    """amount x percent / 100, rounded half-up to the cent."""
    result = Decimal(amount_cents) * Decimal(str(percent)) / Decimal(100)
    return int(result.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _line_subtotal(item: Any) -> int:
    if isinstance(item, Mapping):
        return coerce_cents(item.get("subtotal_cents"))
    return coerce_cents(getattr(item, "subtotal_cents", 0))


def subtotal_of(items: Iterable[Any]) -> int:
    return max(0, sum(_line_subtotal(item) for item in items))


def installment_rate(
    payment_method: str,
    installments: Any,
    rate_table: Mapping[Any, Any] | None = None,
) -> float:
    """Interest percent for a payment; only credit card sales carry interest."""
    if payment_method != PAYMENT_CREDITO:
        return 0.0
    n = clamp_installments(installments)
    table = rate_table or DEFAULT_INSTALLMENT_RATES
    # JSON round-trips turn the keys into strings
    raw = table.get(n, table.get(str(n)))
    if raw is None:
        raw = DEFAULT_INSTALLMENT_RATES.get(n, 0.0)
    return coerce_rate(raw)


def calculate_totals(
    items: Iterable[Any],
    discount: Any = 0,
    payment_method: str = PAYMENT_PIX,
    installments: Any = 1,
    rate_table: Mapping[Any, Any] | None = None,
) -> SaleTotals:
    """
    subtotal = sum(line subtotals)
    interest = max(0, subtotal - discount) x rate / 100
    total    = max(0, subtotal - discount + interest)
    """
    subtotal = subtotal_of(items)
    discount_cents = max(0, coerce_cents(discount))
    n = clamp_installments(installments) if payment_method == PAYMENT_CREDITO else MIN_INSTALLMENTS

    rate = installment_rate(payment_method, n, rate_table)
    interest = percent_of(max(0, subtotal - discount_cents), rate) if rate else 0
    total = max(0, subtotal - discount_cents + interest)

    return SaleTotals(
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        interest_rate=rate,
        interest_cents=interest,
        total_cents=total,
        installments=n,
    )


def requires_authorization(
    discount: Any,
    subtotal: Any,
    threshold_percent: float = DISCOUNT_AUTH_THRESHOLD_PERCENT,
) -> bool:
    """True when the discount is strictly above threshold_percent of the subtotal."""
    discount_cents = max(0, coerce_cents(discount))
    subtotal_cents = max(0, coerce_cents(subtotal))
    # Compare in integer space: discount > subtotal x threshold / 100
    return Decimal(discount_cents) * 100 > Decimal(subtotal_cents) * Decimal(str(coerce_rate(threshold_percent)))
