# Overview: Service-layer operations for the workshop catalog; services and employees.

from __future__ import annotations

from ..extensions import db
from ..models import Employee, Service
from ..validation import ModelValidationPolicy, enforce_rules_employee, enforce_rules_service
from .commission_rules import COMMISSION_FIXED

SERVICE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "base_price_cents", "commission_type", "commission_value", "description"},
    required_on_create={"name"},
)

EMPLOYEE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "default_commission_percent", "is_active"},
    required_on_create={"name"},
)


class CatalogNotFoundError(LookupError):
    pass


def list_services() -> list[Service]:
    return db.session.query(Service).order_by(Service.name.asc(), Service.id.asc()).all()


def create_service(*, patch: dict) -> Service:
    """New services default to a FIXED commission of zero."""
    patch.setdefault("commission_type", COMMISSION_FIXED)
    enforce_rules_service(patch)
    s = Service()
    for k, v in patch.items():
        setattr(s, k, v)
    db.session.add(s)
    db.session.commit()
    return s


def update_service(*, service_id: int, patch: dict) -> Service:
    s = db.session.get(Service, service_id)
    if s is None:
        raise CatalogNotFoundError(f"Service {service_id} not found")
    # PERCENT bound is checked against the resulting type
    enforce_rules_service({"commission_type": s.commission_type, "commission_value": s.commission_value, **patch})
    for k, v in patch.items():
        setattr(s, k, v)
    db.session.commit()
    return s


def delete_service(service_id: int) -> bool:
    """Order lines keep the service name snapshot, so removal is safe."""
    s = db.session.get(Service, service_id)
    if s is None:
        return False
    db.session.delete(s)
    db.session.commit()
    return True


def list_employees(active_only: bool = False) -> list[Employee]:
    query = db.session.query(Employee)
    if active_only:
        query = query.filter(Employee.is_active.is_(True))
    return query.order_by(Employee.name.asc(), Employee.id.asc()).all()


def create_employee(*, patch: dict) -> Employee:
    enforce_rules_employee(patch)
    e = Employee()
    for k, v in patch.items():
        setattr(e, k, v)
    db.session.add(e)
    db.session.commit()
    return e


def update_employee(*, employee_id: int, patch: dict) -> Employee:
    e = db.session.get(Employee, employee_id)
    if e is None:
        raise CatalogNotFoundError(f"Employee {employee_id} not found")
    enforce_rules_employee(patch)
    for k, v in patch.items():
        setattr(e, k, v)
    db.session.commit()
    return e
