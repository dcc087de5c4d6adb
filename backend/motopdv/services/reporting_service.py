# Overview: Service-layer operations for reporting; read-only revenue, stock and cash figures.

"""
Revenue comes from two sources: counter sales (by created_at) and settled
work orders (FINALIZADA, by paid_at). Ranges are inclusive calendar days in
UTC. Nothing here writes.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta

from sqlalchemy import func

from motopdv.extensions import db
from motopdv.models import Commission, Employee, Expense, Product, Sale, WorkOrder
from motopdv.time_utils import day_bounds, parse_iso_date, utcnow
from motopdv.services.pricing import PAYMENT_METHODS
from motopdv.services.work_order_service import STATUS_FINALIZADA, TERMINAL_STATUSES

SALE_STATUS_CANCELADA = "CANCELADA"
DASHBOARD_SERIES_DAYS = 30
MAX_RANGE_DAYS = 366


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def parse_range(start: str | None, end: str | None, *, default_days: int = DASHBOARD_SERIES_DAYS) -> tuple[date, date]:
    """Query-string range -> (start_day, end_day); defaults to the last `default_days` days."""
    try:
        end_day = parse_iso_date(end) if end else None
        start_day = parse_iso_date(start) if start else None
    except ValueError:
        raise ReportError("Dates must be YYYY-MM-DD")

    end_day = end_day or utcnow().date()
    start_day = start_day or end_day - timedelta(days=default_days - 1)
    _check_range(start_day, end_day)
    return start_day, end_day


def _check_range(start: date, end: date) -> None:
    if start > end:
        raise ReportError("start must be on or before end")
    if (end - start).days >= MAX_RANGE_DAYS:
        raise ReportError(f"Range cannot exceed {MAX_RANGE_DAYS} days")


def _sales_in(start: date, end: date) -> list[Sale]:
    lo, hi = day_bounds(start, end)
    return (
        db.session.query(Sale)
        .filter(Sale.created_at >= lo, Sale.created_at < hi, Sale.status != SALE_STATUS_CANCELADA)
        .all()
    )


def _settled_orders_in(start: date, end: date) -> list[WorkOrder]:
    lo, hi = day_bounds(start, end)
    return (
        db.session.query(WorkOrder)
        .filter(
            WorkOrder.status == STATUS_FINALIZADA,
            WorkOrder.paid_at >= lo,
            WorkOrder.paid_at < hi,
        )
        .all()
    )


def revenue_between(start: date, end: date) -> int:
    """Sales totals plus settled order totals, in cents."""
    _check_range(start, end)
    sales = sum(s.total_cents or 0 for s in _sales_in(start, end))
    orders = sum(o.total_amount_cents or 0 for o in _settled_orders_in(start, end))
    return sales + orders


def revenue_series(start: date, end: date) -> list[dict]:
    """One bucket per calendar day, zero-filled, oldest first."""
    _check_range(start, end)

    buckets: dict[date, dict] = {}
    day = start
    while day <= end:
        buckets[day] = {"sales_cents": 0, "orders_cents": 0}
        day += timedelta(days=1)

    for sale in _sales_in(start, end):
        buckets[sale.created_at.date()]["sales_cents"] += sale.total_cents or 0
    for order in _settled_orders_in(start, end):
        buckets[order.paid_at.date()]["orders_cents"] += order.total_amount_cents or 0

    return [
        {
            "date": day.isoformat(),
            "sales_cents": b["sales_cents"],
            "orders_cents": b["orders_cents"],
            "revenue_cents": b["sales_cents"] + b["orders_cents"],
        }
        for day, b in buckets.items()
    ]


def stock_valuation() -> int:
    """Σ quantity x cost price over every product, in cents."""
    total = db.session.query(
        func.coalesce(func.sum(Product.quantity * Product.price_cost_cents), 0)
    ).scalar()
    return int(total or 0)


def active_order_count() -> int:
    return (
        db.session.query(func.count(WorkOrder.id))
        .filter(WorkOrder.status.notin_(TERMINAL_STATUSES))
        .scalar()
    ) or 0


def dashboard_summary(today: date | None = None) -> dict:
    today = today or utcnow().date()
    month_start = today.replace(day=1)
    series_start = today - timedelta(days=DASHBOARD_SERIES_DAYS - 1)
    low_stock = (
        db.session.query(func.count(Product.id))
        .filter(Product.quantity <= Product.min_stock)
        .scalar()
    ) or 0
    return {
        "date": today.isoformat(),
        "revenue_today_cents": revenue_between(today, today),
        "revenue_month_cents": revenue_between(month_start, today),
        "stock_valuation_cents": stock_valuation(),
        "active_orders": active_order_count(),
        "low_stock_count": low_stock,
        "series": revenue_series(series_start, today),
    }


def commission_summary(start: date, end: date) -> dict:
    """Confirmed commissions per employee for the range."""
    _check_range(start, end)
    lo, hi = day_bounds(start, end)

    rows = (
        db.session.query(
            Commission.employee_id,
            func.count(Commission.id).label("count"),
            func.coalesce(func.sum(Commission.value_cents), 0).label("total_cents"),
        )
        .filter(Commission.created_at >= lo, Commission.created_at < hi)
        .group_by(Commission.employee_id)
        .all()
    )
    names = {
        e.id: e.name
        for e in db.session.query(Employee).filter(Employee.id.in_([r.employee_id for r in rows])).all()
    } if rows else {}

    employees = sorted(
        (
            {
                "employee_id": r.employee_id,
                "employee_name": names.get(r.employee_id),
                "count": int(r.count),
                "total_cents": int(r.total_cents),
            }
            for r in rows
        ),
        key=lambda row: row["total_cents"],
        reverse=True,
    )
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "employees": employees,
        "total_cents": sum(row["total_cents"] for row in employees),
    }


def cash_closing(day: date | None = None) -> dict:
    """Fechamento de Caixa: what came in and went out on one day."""
    day = day or utcnow().date()

    by_method: dict[str, dict] = {m: {"count": 0, "total_cents": 0} for m in PAYMENT_METHODS}
    sales = _sales_in(day, day)
    for sale in sales:
        bucket = by_method.setdefault(sale.payment_method, {"count": 0, "total_cents": 0})
        bucket["count"] += 1
        bucket["total_cents"] += sale.total_cents or 0

    orders = _settled_orders_in(day, day)
    expenses = db.session.query(Expense).filter(Expense.date == day).all()
    expenses_by_category: dict[str, int] = defaultdict(int)
    for expense in expenses:
        expenses_by_category[expense.category] += expense.amount_cents or 0

    sales_total = sum(b["total_cents"] for b in by_method.values())
    orders_total = sum(o.total_amount_cents or 0 for o in orders)
    expenses_total = sum(expenses_by_category.values())

    return {
        "date": day.isoformat(),
        "sales": {"count": len(sales), "total_cents": sales_total, "by_payment_method": by_method},
        "work_orders": {"count": len(orders), "total_cents": orders_total},
        "expenses": {"count": len(expenses), "total_cents": expenses_total, "by_category": dict(expenses_by_category)},
        "revenue_cents": sales_total + orders_total,
        "net_cents": sales_total + orders_total - expenses_total,
    }
