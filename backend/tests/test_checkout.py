"""
Checkout tests.

Verifies:
- Sale and stock decrement are written together, or not at all
- Operator discounts above the limit pause for the manager PIN
- Cancelling the PIN prompt leaves the cart untouched
- Stock is clamped at zero, never negative
- Prices are snapshotted when a product enters the cart
"""

import pytest
from sqlalchemy.exc import IntegrityError

from motopdv.extensions import db
from motopdv.models import PinChallenge, Product, Sale, SaleItem, SystemSettings
from motopdv.services import checkout_service, pin_service
from motopdv.services.authorization import AuthorizationGate
from motopdv.services.checkout_service import (
    CartLine,
    Checkout,
    CheckoutError,
    CheckoutState,
    build_cart_lines,
    commit_sale,
)
from motopdv.services.concurrency import PersistenceError
from motopdv.services.pin_service import (
    ACTION_SALE_DISCOUNT,
    AuthorizationError,
    AuthorizationRequiredError,
)
from motopdv.services.pricing import PAYMENT_CREDITO, PAYMENT_PIX

from conftest import MANAGER_PIN, WRONG_PIN


def _grant() -> str:
    challenge = pin_service.open_challenge(ACTION_SALE_DISCOUNT)
    return pin_service.submit_pin(challenge.id, MANAGER_PIN).grant


def _sale_count() -> int:
    return db.session.query(Sale).count()


class TestCheckoutScenarios:
    def test_plain_sale_commits_and_decrements_stock(self, operador, oil):
        checkout = Checkout(operador)
        checkout.add_item(oil)
        checkout.add_item(oil)
        checkout.set_payment(PAYMENT_PIX)

        sale = checkout.finish()

        assert sale is not None
        assert sale.status == "PAGA"
        assert sale.subtotal_cents == 20000
        assert sale.interest_cents == 0
        assert sale.total_cents == 20000
        assert sale.actor_type == "OPERACIONAL"
        assert sale.authorization_id is None
        assert db.session.get(Product, oil.id).quantity == 8
        assert checkout.state == CheckoutState.COMMITTED
        assert checkout.lines == []
        assert checkout.last_sale is sale

    def test_large_operator_discount_waits_for_pin(self, operador, brake_pads):
        checkout = Checkout(operador)
        checkout.add_item(brake_pads)
        checkout.set_discount(1000)
        gate = AuthorizationGate()

        assert checkout.finish(gate) is None
        assert checkout.state == CheckoutState.AWAITING_AUTH
        assert _sale_count() == 0
        assert gate.is_open

        denied = gate.challenge(WRONG_PIN)
        assert denied.status == "DENIED"
        assert _sale_count() == 0

        result = gate.challenge(MANAGER_PIN)

        assert result.authorized
        sale = gate.callback_result
        assert sale.total_cents == 4000
        assert sale.discount_cents == 1000
        assert sale.authorization_id == result.challenge.id
        assert checkout.state == CheckoutState.COMMITTED
        assert db.session.get(Product, brake_pads.id).quantity == 4
        assert _sale_count() == 1

    def test_discounted_commit_needs_a_real_grant(self, operador, brake_pads):
        checkout = Checkout(operador)
        checkout.add_item(brake_pads)
        checkout.set_discount(1000)

        with pytest.raises(AuthorizationRequiredError):
            checkout.commit()
        with pytest.raises(AuthorizationError):
            checkout.commit("987654")

        assert checkout.state == CheckoutState.BUILDING
        assert len(checkout.lines) == 1
        assert _sale_count() == 0
        assert db.session.get(Product, brake_pads.id).quantity == 5

    def test_gate_grant_cannot_authorize_a_second_sale(self, operador, brake_pads):
        first = Checkout(operador)
        first.add_item(brake_pads)
        first.set_discount(1000)
        gate = AuthorizationGate()
        first.finish(gate)
        result = gate.challenge(MANAGER_PIN)
        assert first.state == CheckoutState.COMMITTED

        second = Checkout(operador)
        second.add_item(brake_pads)
        second.set_discount(1000)
        with pytest.raises(AuthorizationError):
            second.commit(result.grant)

        assert _sale_count() == 1
        assert db.session.get(PinChallenge, result.challenge.id).status == "CONSUMED"

    def test_failed_write_after_pin_keeps_cart_and_grant(self, operador, brake_pads):
        checkout = Checkout(operador)
        checkout.add_item(brake_pads)
        checkout.set_discount(1000)
        gate = AuthorizationGate()
        checkout.finish(gate)
        checkout.lines.append(CartLine(product_id=9999, name="Fantasma", quantity=1, unit_price_cents=0))

        with pytest.raises(CheckoutError):
            gate.challenge(MANAGER_PIN)

        assert checkout.state == CheckoutState.BUILDING
        assert len(checkout.lines) == 2
        assert _sale_count() == 0
        assert db.session.query(PinChallenge).one().status == "AUTHORIZED"

    def test_cancelled_pin_keeps_cart(self, operador, brake_pads):
        checkout = Checkout(operador)
        checkout.add_item(brake_pads)
        checkout.set_discount(1000)
        gate = AuthorizationGate()
        checkout.finish(gate)

        checkout.abandon_authorization()

        assert checkout.state == CheckoutState.BUILDING
        assert len(checkout.lines) == 1
        assert checkout.discount_cents == 1000
        assert _sale_count() == 0
        assert db.session.get(Product, brake_pads.id).quantity == 5
        assert db.session.query(PinChallenge).one().status == "CANCELED"

    def test_editing_cart_abandons_pending_authorization(self, operador, brake_pads):
        checkout = Checkout(operador)
        checkout.add_item(brake_pads)
        checkout.set_discount(1000)
        gate = AuthorizationGate()
        checkout.finish(gate)

        checkout.set_discount(200)

        assert checkout.state == CheckoutState.BUILDING
        assert gate.is_open is False
        assert checkout.finish().total_cents == 4800

    def test_credit_installments_add_interest(self, gestor, db_session):
        product = Product(name="Capacete", quantity=3, price_sell_cents=30000)
        db_session.add(product)
        db_session.commit()

        checkout = Checkout(gestor)
        checkout.add_item(product)
        checkout.set_payment(PAYMENT_CREDITO, 3)
        sale = checkout.finish()

        assert sale.interest_rate == 4.8
        assert sale.interest_cents == 1440
        assert sale.total_cents == 31440
        assert sale.installments == 3

    def test_stock_never_goes_negative(self, operador, brake_pads, caplog):
        checkout = Checkout(operador)
        for _ in range(7):
            checkout.add_item(brake_pads)
        assert checkout.lines[0].quantity == 7

        sale = checkout.finish()

        assert sale.items[0].quantity == 7
        assert db.session.get(Product, brake_pads.id).quantity == 0
        assert "stock clamped at 0" in caplog.text


class TestCheckoutEdgeCases:
    def test_empty_cart_is_noop(self, operador):
        checkout = Checkout(operador)
        assert checkout.finish() is None
        assert checkout.state == CheckoutState.BUILDING
        assert _sale_count() == 0

    def test_small_discount_needs_no_pin(self, operador, oil):
        checkout = Checkout(operador)
        checkout.add_item(oil)
        checkout.set_discount(500)  # exactly 5%

        assert checkout.requires_authorization() is False
        assert checkout.finish().total_cents == 9500

    def test_manager_bypasses_discount_limit(self, gestor, oil):
        checkout = Checkout(gestor)
        checkout.add_item(oil)
        checkout.set_discount(5000)

        sale = checkout.finish()

        assert sale.total_cents == 5000
        assert sale.actor_type == "GESTOR"
        assert db.session.query(PinChallenge).count() == 0

    def test_finish_without_gate_raises(self, operador, oil):
        checkout = Checkout(operador)
        checkout.add_item(oil)
        checkout.set_discount(2000)

        with pytest.raises(AuthorizationRequiredError):
            checkout.finish()
        assert checkout.state == CheckoutState.BUILDING
        assert _sale_count() == 0

    def test_price_snapshot_at_add_time(self, operador, oil):
        checkout = Checkout(operador)
        checkout.add_item(oil)

        oil.price_sell_cents = 99999
        db.session.commit()

        sale = checkout.finish()
        assert sale.items[0].unit_price_cents == 10000
        assert sale.total_cents == 10000

    def test_quantity_floor_is_one(self, operador, oil):
        checkout = Checkout(operador)
        checkout.add_item(oil)
        checkout.update_quantity(oil.id, -5)
        assert checkout.lines[0].quantity == 1

        checkout.update_quantity(oil.id, 3)
        assert checkout.lines[0].quantity == 4

        checkout.remove_item(oil.id)
        assert checkout.lines == []

    def test_sale_number_is_six_digits(self, operador, oil):
        checkout = Checkout(operador)
        checkout.add_item(oil)
        sale = checkout.finish()

        assert len(sale.id) == 6
        assert sale.id.isdigit()
        assert sale.id[0] != "0"

    def test_invalid_payment_method(self, operador):
        checkout = Checkout(operador)
        with pytest.raises(CheckoutError):
            checkout.set_payment("CHEQUE")

    def test_configured_discount_limit(self, app, operador, oil, monkeypatch):
        monkeypatch.setitem(app.config, "USE_CONFIGURED_DISCOUNT_LIMIT", True)
        settings = db.session.get(SystemSettings, 1)
        settings.max_discount_sem_pin = 20
        db.session.commit()

        checkout = Checkout(operador)
        checkout.add_item(oil)
        checkout.set_discount(1500)

        assert checkout.requires_authorization() is False
        checkout.set_discount(2500)
        assert checkout.requires_authorization() is True


class TestCommitSale:
    def test_grant_authorizes_discount_once(self, operador, brake_pads):
        lines = build_cart_lines([{"product_id": brake_pads.id, "quantity": 1}])
        grant = _grant()

        sale = commit_sale(lines=lines, access=operador, discount=1000, authorization_grant=grant)

        assert sale.total_cents == 4000
        assert sale.authorization_id is not None
        with pytest.raises(AuthorizationError):
            commit_sale(lines=lines, access=operador, discount=1000, authorization_grant=grant)
        assert _sale_count() == 1

    def test_discount_without_grant_rejected(self, operador, brake_pads):
        lines = build_cart_lines([{"product_id": brake_pads.id, "quantity": 1}])

        with pytest.raises(AuthorizationRequiredError):
            commit_sale(lines=lines, access=operador, discount=1000)
        assert _sale_count() == 0
        assert db.session.get(Product, brake_pads.id).quantity == 5

    def test_missing_product_writes_nothing(self, operador, oil, brake_pads):
        lines = [
            CartLine(product_id=oil.id, name=oil.name, quantity=1, unit_price_cents=10000),
            CartLine(product_id=9999, name="Fantasma", quantity=1, unit_price_cents=100),
        ]

        with pytest.raises(CheckoutError) as exc:
            commit_sale(lines=lines, access=operador)

        assert exc.value.details["product_ids"] == [9999]
        assert _sale_count() == 0
        assert db.session.query(SaleItem).count() == 0
        assert db.session.get(Product, oil.id).quantity == 10

    def test_failed_commit_leaves_grant_unspent(self, operador, brake_pads):
        grant = _grant()
        lines = [
            CartLine(product_id=brake_pads.id, name="x", quantity=1, unit_price_cents=5000),
            CartLine(product_id=9999, name="Fantasma", quantity=1, unit_price_cents=0),
        ]

        with pytest.raises(CheckoutError):
            commit_sale(lines=lines, access=operador, discount=1000, authorization_grant=grant)

        assert db.session.query(PinChallenge).one().status == "AUTHORIZED"

    def test_store_failure_writes_nothing(self, operador, oil, brake_pads, monkeypatch):
        grant = _grant()
        lines = build_cart_lines([
            {"product_id": oil.id, "quantity": 1},
            {"product_id": brake_pads.id, "quantity": 2},
        ])
        real_item = checkout_service.SaleItem
        built = []

        def flaky_item(**kwargs):
            if built:
                raise IntegrityError("INSERT INTO sale_items", {}, Exception("disk full"))
            built.append(kwargs)
            return real_item(**kwargs)

        monkeypatch.setattr(checkout_service, "SaleItem", flaky_item)

        with pytest.raises(PersistenceError):
            commit_sale(lines=lines, access=operador, discount=3000, authorization_grant=grant)

        assert _sale_count() == 0
        assert db.session.query(SaleItem).count() == 0
        assert db.session.get(Product, oil.id).quantity == 10
        assert db.session.get(Product, brake_pads.id).quantity == 5
        assert db.session.query(PinChallenge).one().status == "AUTHORIZED"

    def test_empty_cart_rejected(self, operador):
        with pytest.raises(CheckoutError):
            commit_sale(lines=[], access=operador)

    def test_unauthenticated_access_rejected(self, workshop, oil):
        from motopdv.services.access_service import AccessContext

        lines = build_cart_lines([{"product_id": oil.id, "quantity": 1}])
        with pytest.raises(CheckoutError):
            commit_sale(lines=lines, access=AccessContext())


class TestBuildCartLines:
    def test_merges_repeated_products(self, oil):
        lines = build_cart_lines([
            {"product_id": oil.id, "quantity": 2},
            {"product_id": oil.id, "quantity": 3},
        ])
        assert len(lines) == 1
        assert lines[0].quantity == 5
        assert lines[0].subtotal_cents == 50000

    def test_unknown_product(self, oil):
        with pytest.raises(CheckoutError) as exc:
            build_cart_lines([{"product_id": 4242, "quantity": 1}])
        assert exc.value.details["product_ids"] == [4242]

    @pytest.mark.parametrize("items", [
        "not-a-list",
        [{"product_id": "1", "quantity": 1}],
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": True}],
        ["oops"],
    ])
    def test_malformed_items(self, db_session, items):
        with pytest.raises(CheckoutError):
            build_cart_lines(items)


class TestSaleListing:
    def test_newest_first_and_search(self, gestor, oil, brake_pads):
        first = commit_sale(lines=build_cart_lines([{"product_id": oil.id}]), access=gestor)
        second = commit_sale(
            lines=build_cart_lines([{"product_id": brake_pads.id}]),
            access=gestor,
            payment_method="DINHEIRO",
        )

        sales = checkout_service.list_sales()
        assert {s.id for s in sales} == {first.id, second.id}
        assert checkout_service.list_sales(search="dinheiro") == [second]
        assert checkout_service.list_sales(search=first.id) == [first]
        assert checkout_service.get_sale(first.id) is first
