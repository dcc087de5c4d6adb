"""
Commission rule for settled work-order lines.

Precedence:
1. no employee on the line       -> 0
2. service known                 -> FIXED value, or price x value / 100 for PERCENT
3. service unknown, employee has a positive default percent -> price x percent / 100
4. otherwise                     -> 0
"""

from __future__ import annotations

from typing import Any

from .pricing import coerce_cents, coerce_rate, percent_of

COMMISSION_FIXED = "FIXED"
COMMISSION_PERCENT = "PERCENT"
COMMISSION_TYPES = (COMMISSION_FIXED, COMMISSION_PERCENT)


def compute_commission(item: Any, service: Any = None, employee: Any = None) -> int:
    """Commission in cents for one order line. Never raises."""
    if getattr(item, "employee_id", None) in (None, ""):
        return 0

    price_cents = max(0, coerce_cents(getattr(item, "price_cents", 0)))

    if service is not None:
        commission_type = getattr(service, "commission_type", None)
        if commission_type == COMMISSION_FIXED:
            return max(0, coerce_cents(getattr(service, "commission_value", 0)))
        if commission_type == COMMISSION_PERCENT:
            return percent_of(price_cents, coerce_rate(getattr(service, "commission_value", 0)))
        return 0

    if employee is not None:
        percent = coerce_rate(getattr(employee, "default_commission_percent", 0))
        if percent > 0:
            return percent_of(price_cents, percent)

    return 0
