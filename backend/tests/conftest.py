"""
Pytest fixtures for MotoPDV backend tests.

Provides test database setup, a configured workshop, access sessions for
both modes, a small catalog and the test client.
"""

import pytest
from motopdv import create_app
from motopdv.extensions import db
from motopdv.models import Employee, Product, Service
from motopdv.services import access_service, settings_service
from motopdv.services.access_service import GESTOR_CONTEXT, OPERACIONAL_CONTEXT

MANAGER_PIN = "4321"
WRONG_PIN = "0000"

WORKSHOP_DATA = {
    "workshop_name": "Moto Center Teste",
    "cnpj": "12.345.678/0001-90",
    "phone_whatsapp": "(11) 99999-0000",
    "address_street": "Rua das Motos",
    "address_number": "100",
    "address_city": "São Paulo",
    "address_state": "SP",
    "address_zip": "01000-000",
    "manager_name": "Ana Gestora",
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh tables for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def workshop(db_session):
    """Configured workshop with MANAGER_PIN."""
    return settings_service.setup_workshop(dict(WORKSHOP_DATA), MANAGER_PIN, MANAGER_PIN)


@pytest.fixture(scope='function')
def gestor(workshop):
    """Manager access context backed by a session row."""
    _, token, context = access_service.open_session(GESTOR_CONTEXT)
    return context


@pytest.fixture(scope='function')
def operador(workshop):
    """Operator access context backed by a session row."""
    _, token, context = access_service.open_session(OPERACIONAL_CONTEXT)
    return context


@pytest.fixture(scope='function')
def gestor_token(workshop):
    _, token, _ = access_service.open_session(GESTOR_CONTEXT)
    return token


@pytest.fixture(scope='function')
def operador_token(workshop):
    _, token, _ = access_service.open_session(OPERACIONAL_CONTEXT)
    return token


@pytest.fixture(scope='function')
def oil(db_session):
    product = Product(
        name="Óleo 10W40 1L",
        sku="OLEO-10W40",
        quantity=10,
        min_stock=3,
        price_cost_cents=3000,
        price_sell_cents=10000,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def brake_pads(db_session):
    product = Product(
        name="Pastilha de Freio",
        sku="PAST-01",
        quantity=5,
        min_stock=2,
        price_cost_cents=2000,
        price_sell_cents=5000,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def oil_change(db_session):
    """Service paying a FIXED R$ 25,00 commission."""
    service = Service(
        name="Troca de Óleo",
        base_price_cents=10000,
        commission_type="FIXED",
        commission_value=2500,
    )
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture(scope='function')
def mechanic(db_session):
    employee = Employee(name="Carlos", default_commission_percent=10)
    db_session.add(employee)
    db_session.commit()
    return employee


def auth_headers(token: str, grant: str | None = None) -> dict:
    """Helper to create Authorization headers."""
    headers = {'Authorization': f'Bearer {token}'}
    if grant:
        headers['X-Authorization-Grant'] = grant
    return headers
