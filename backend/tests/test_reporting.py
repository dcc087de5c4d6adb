"""
Reporting tests.

Revenue = counter sales (by created_at) + settled work orders (by paid_at).
"""

from datetime import datetime, timedelta

import pytest

from motopdv.extensions import db
from motopdv.models import Commission, Employee, Expense, OSItem, Product, Sale, WorkOrder
from motopdv.services import reporting_service
from motopdv.services.reporting_service import ReportError
from motopdv.time_utils import utcnow


def _sale(sale_id, total, when, method="PIX", status="PAGA"):
    sale = Sale(
        id=sale_id,
        status=status,
        subtotal_cents=total,
        total_cents=total,
        payment_method=method,
        actor_type="GESTOR",
        created_at=when,
    )
    db.session.add(sale)
    return sale


def _order(total, status="FINALIZADA", paid_at=None):
    order = WorkOrder(
        customer_name="Cliente",
        vehicle_plate="AAA0A00",
        status=status,
        total_amount_cents=total,
        created_at=utcnow(),
        paid_at=paid_at,
    )
    db.session.add(order)
    return order


@pytest.fixture
def today():
    return utcnow().date()


@pytest.fixture
def noon(today):
    return datetime.combine(today, datetime.min.time()) + timedelta(hours=12)


class TestRevenue:
    def test_sales_plus_settled_orders(self, db_session, today, noon):
        _sale("100001", 20000, noon)
        _sale("100002", 5000, noon - timedelta(days=1))
        _order(15000, paid_at=noon)
        _order(99999, status="EM_ANDAMENTO")
        db.session.commit()

        assert reporting_service.revenue_between(today, today) == 35000
        assert reporting_service.revenue_between(today - timedelta(days=1), today) == 40000

    def test_cancelled_sales_excluded(self, db_session, today, noon):
        _sale("100001", 20000, noon, status="CANCELADA")
        db.session.commit()

        assert reporting_service.revenue_between(today, today) == 0

    def test_series_is_zero_filled(self, db_session, today, noon):
        _sale("100001", 1000, noon)
        _order(2000, paid_at=noon - timedelta(days=2))
        db.session.commit()

        series = reporting_service.revenue_series(today - timedelta(days=3), today)

        assert [b["date"] for b in series] == [
            (today - timedelta(days=n)).isoformat() for n in (3, 2, 1, 0)
        ]
        assert [b["revenue_cents"] for b in series] == [0, 2000, 0, 1000]
        assert series[1]["orders_cents"] == 2000
        assert series[3]["sales_cents"] == 1000

    def test_inverted_range(self, db_session, today):
        with pytest.raises(ReportError):
            reporting_service.revenue_between(today, today - timedelta(days=1))

    def test_range_too_long(self, db_session, today):
        with pytest.raises(ReportError):
            reporting_service.revenue_series(today - timedelta(days=400), today)


class TestParseRange:
    def test_defaults_to_last_thirty_days(self):
        start, end = reporting_service.parse_range(None, "2024-03-31")
        assert end.isoformat() == "2024-03-31"
        assert start.isoformat() == "2024-03-02"

    def test_explicit(self):
        start, end = reporting_service.parse_range("2024-01-01", "2024-01-31")
        assert (start.isoformat(), end.isoformat()) == ("2024-01-01", "2024-01-31")

    @pytest.mark.parametrize("start,end", [("01/02/2024", None), ("2024-02-10", "2024-02-01")])
    def test_invalid(self, start, end):
        with pytest.raises(ReportError):
            reporting_service.parse_range(start, end)


class TestStockAndOrders:
    def test_stock_valuation(self, oil, brake_pads):
        # 10 x 30.00 + 5 x 20.00
        assert reporting_service.stock_valuation() == 40000

    def test_stock_valuation_empty(self, db_session):
        assert reporting_service.stock_valuation() == 0

    def test_active_orders(self, db_session):
        _order(0, status="ABERTA")
        _order(0, status="AGUARDANDO_PECA")
        _order(0, status="CANCELADA")
        _order(0, status="FINALIZADA", paid_at=utcnow())
        db.session.commit()

        assert reporting_service.active_order_count() == 2

    def test_dashboard(self, oil, brake_pads, today, noon):
        db.session.add(Product(name="Vela", quantity=1, min_stock=2, price_cost_cents=500))
        _sale("100001", 20000, noon)
        _order(0, status="ABERTA")
        db.session.commit()

        summary = reporting_service.dashboard_summary(today)

        assert summary["revenue_today_cents"] == 20000
        assert summary["revenue_month_cents"] == 20000
        assert summary["stock_valuation_cents"] == 40500
        assert summary["active_orders"] == 1
        assert summary["low_stock_count"] == 1
        assert len(summary["series"]) == reporting_service.DASHBOARD_SERIES_DAYS


class TestCashClosing:
    def test_breakdown(self, db_session, today, noon):
        _sale("100001", 20000, noon, method="PIX")
        _sale("100002", 5000, noon, method="DINHEIRO")
        _sale("100003", 3000, noon, method="DINHEIRO")
        _sale("100004", 7000, noon - timedelta(days=1), method="PIX")
        _order(15000, paid_at=noon)
        db.session.add(Expense(description="Sangria de Caixa", amount_cents=4000, category="Sangria / Retirada", date=today))
        db.session.add(Expense(description="Conta de luz", amount_cents=1000, category="Geral", date=today))
        db.session.commit()

        closing = reporting_service.cash_closing(today)

        assert closing["sales"]["count"] == 3
        assert closing["sales"]["by_payment_method"]["DINHEIRO"] == {"count": 2, "total_cents": 8000}
        assert closing["sales"]["by_payment_method"]["CREDITO"] == {"count": 0, "total_cents": 0}
        assert closing["work_orders"]["total_cents"] == 15000
        assert closing["expenses"]["by_category"] == {"Sangria / Retirada": 4000, "Geral": 1000}
        assert closing["revenue_cents"] == 43000
        assert closing["net_cents"] == 38000


class TestCommissionSummary:
    def test_grouped_by_employee(self, db_session, today):
        ana = Employee(name="Ana")
        bia = Employee(name="Bia")
        db.session.add_all([ana, bia])
        order = _order(0, paid_at=utcnow())
        db.session.flush()
        now = utcnow()
        for position, (employee, value) in enumerate(((ana, 1000), (ana, 500), (bia, 2500))):
            item = OSItem(
                order_id=order.id,
                position=position,
                service_name="Serviço",
                employee_id=employee.id,
                price_cents=value,
            )
            db.session.add(item)
            db.session.flush()
            db.session.add(Commission(
                order_id=order.id,
                order_item_id=item.id,
                employee_id=employee.id,
                value_cents=value,
                created_at=now,
            ))
        db.session.commit()

        summary = reporting_service.commission_summary(today, today)

        assert summary["total_cents"] == 4000
        assert summary["employees"][0] == {
            "employee_id": bia.id, "employee_name": "Bia", "count": 1, "total_cents": 2500,
        }
        assert summary["employees"][1]["count"] == 2

    def test_empty_range(self, db_session, today):
        summary = reporting_service.commission_summary(today, today)
        assert summary == {
            "start": today.isoformat(),
            "end": today.isoformat(),
            "employees": [],
            "total_cents": 0,
        }
