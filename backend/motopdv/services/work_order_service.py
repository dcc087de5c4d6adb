# Overview: Service-layer operations for work orders (OS); encapsulates the lifecycle and commission settlement.

"""
Work Order Settlement

================================================================================
PURPOSE: Close a repair order exactly once and pay out its commissions
================================================================================

STATE MACHINE:
    ABERTA <-> EM_ANDAMENTO <-> AGUARDANDO_PECA   (any order, freely)
    any of the above -> CANCELADA                 (terminal)
    any of the above -> FINALIZADA                (terminal, finalize only)

RULES:
1. FINALIZADA is only reached through finalize_work_order, which sets paid_at
2. Finalizing a terminal order is rejected; nothing is written
3. The order update and its commission batch are written in one transaction
4. Lines are editable only while the order is not terminal

================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import or_

from ..extensions import db
from ..models import Commission, Employee, OSItem, Service, WorkOrder
from ..validation import ModelValidationPolicy, ValidationError, validate_payload
from motopdv.time_utils import utcnow
from .commission_rules import compute_commission
from .concurrency import lock_for_update, run_atomic
from .pricing import coerce_cents

logger = logging.getLogger(__name__)


STATUS_ABERTA = "ABERTA"
STATUS_EM_ANDAMENTO = "EM_ANDAMENTO"
STATUS_AGUARDANDO_PECA = "AGUARDANDO_PECA"
STATUS_FINALIZADA = "FINALIZADA"
STATUS_CANCELADA = "CANCELADA"

OPEN_STATUSES = (STATUS_ABERTA, STATUS_EM_ANDAMENTO, STATUS_AGUARDANDO_PECA)
TERMINAL_STATUSES = (STATUS_FINALIZADA, STATUS_CANCELADA)
VALID_STATUSES = OPEN_STATUSES + TERMINAL_STATUSES

COMMISSION_STATUS_CONFIRMADA = "CONFIRMADA"

CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"customer_name", "vehicle_model", "vehicle_plate", "total_amount_cents"},
    required_on_create={"customer_name", "vehicle_plate"},
)


class WorkOrderError(Exception):
    """Raised for work order rule violations; nothing was written."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class WorkOrderNotFoundError(WorkOrderError):
    def __init__(self, order_id: int):
        super().__init__("Work order not found", details={"order_id": order_id})


class WorkOrderAlreadySettledError(WorkOrderError):
    """Raised when finalizing an order that is already FINALIZADA or CANCELADA."""
    def __init__(self, order: WorkOrder):
        super().__init__(
            f"Work order {order.id} is already {order.status}",
            details={"order_id": order.id, "status": order.status},
        )


@dataclass
class SettlementResult:
    order: WorkOrder
    commissions: list[Commission] = field(default_factory=list)

    @property
    def commission_count(self) -> int:
        return len(self.commissions)

    @property
    def commission_total_cents(self) -> int:
        return sum(c.value_cents for c in self.commissions)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "commissions": [c.to_dict() for c in self.commissions],
            "commission_count": self.commission_count,
            "commission_total_cents": self.commission_total_cents,
        }


def get_work_order(order_id: int) -> WorkOrder | None:
    return db.session.get(WorkOrder, order_id)


def _require_order(order_id: int) -> WorkOrder:
    order = get_work_order(order_id)
    if order is None:
        raise WorkOrderNotFoundError(order_id)
    return order


def _require_open(order: WorkOrder) -> None:
    if order.status in TERMINAL_STATUSES:
        raise WorkOrderError(
            f"Work order {order.id} is {order.status} and can no longer be changed",
            details={"order_id": order.id, "status": order.status},
        )


def _recompute_total(order: WorkOrder) -> None:
    order.total_amount_cents = sum(item.price_cents or 0 for item in order.items)


def create_work_order(data: dict) -> WorkOrder:
    """
    Open a new order in ABERTA.

    The plate is stored upper-cased. total_amount_cents may be given for
    orders quoted without service lines; adding lines recomputes it.
    """
    patch = validate_payload(model=WorkOrder, payload=data, policy=CREATE_POLICY, partial=False)

    total = patch.get("total_amount_cents") or 0
    if total < 0:
        raise ValidationError("total_amount_cents must be >= 0")

    order = WorkOrder(
        customer_name=patch["customer_name"],
        vehicle_model=patch.get("vehicle_model") or "",
        vehicle_plate=patch["vehicle_plate"].upper(),
        status=STATUS_ABERTA,
        total_amount_cents=total,
        created_at=utcnow(),
    )
    db.session.add(order)
    db.session.commit()
    logger.info("Work order %s opened for plate %s", order.id, order.vehicle_plate)
    return order


def add_item(order_id: int, *, service_id: int, employee_id: int | None = None, price=None) -> OSItem:
    """
    Append a service line. Name and price are snapshotted from the service
    unless a price is given.
    """
    order = _require_order(order_id)
    _require_open(order)

    service = db.session.get(Service, service_id)
    if service is None:
        raise WorkOrderError("Service not found", details={"service_id": service_id})

    if employee_id is not None:
        employee = db.session.get(Employee, employee_id)
        if employee is None:
            raise WorkOrderError("Employee not found", details={"employee_id": employee_id})
        if not employee.is_active:
            raise WorkOrderError("Employee is inactive", details={"employee_id": employee_id})

    price_cents = service.base_price_cents if price is None else coerce_cents(price)
    if price_cents < 0:
        raise ValidationError("price_cents must be >= 0")

    item = OSItem(
        position=len(order.items),
        service_id=service.id,
        service_name=service.name,
        employee_id=employee_id,
        price_cents=price_cents,
    )
    order.items.append(item)
    _recompute_total(order)
    db.session.commit()
    return item


def remove_item(order_id: int, item_id: int) -> WorkOrder:
    order = _require_order(order_id)
    _require_open(order)

    item = next((i for i in order.items if i.id == item_id), None)
    if item is None:
        raise WorkOrderError("Work order item not found", details={"order_id": order_id, "item_id": item_id})

    order.items.remove(item)
    for position, remaining in enumerate(order.items):
        remaining.position = position
    _recompute_total(order)
    db.session.commit()
    return order


def change_status(order_id: int, status: str) -> WorkOrder:
    """Move an open order between open states, or cancel it."""
    if status not in VALID_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    if status == STATUS_FINALIZADA:
        raise WorkOrderError("Use finalize to close a work order", details={"order_id": order_id})

    order = _require_order(order_id)
    _require_open(order)

    previous = order.status
    order.status = status
    db.session.commit()
    logger.info("Work order %s: %s -> %s", order.id, previous, status)
    return order


def finalize_work_order(order_id: int) -> SettlementResult:
    """
    Settle an order: FINALIZADA + paid_at and one CONFIRMADA commission per
    line whose computed value is above zero.

    Raises WorkOrderError (not found), WorkOrderAlreadySettledError,
    PersistenceError. On any error nothing is written.
    """
    def _op() -> SettlementResult:
        order = lock_for_update(
            db.session.query(WorkOrder).filter(WorkOrder.id == order_id)
        ).first()
        if order is None:
            raise WorkOrderNotFoundError(order_id)
        if order.status in TERMINAL_STATUSES:
            raise WorkOrderAlreadySettledError(order)

        now = utcnow()
        order.status = STATUS_FINALIZADA
        order.paid_at = now

        service_ids = {item.service_id for item in order.items if item.service_id is not None}
        employee_ids = {item.employee_id for item in order.items if item.employee_id is not None}
        services = {
            s.id: s for s in db.session.query(Service).filter(Service.id.in_(service_ids)).all()
        } if service_ids else {}
        employees = {
            e.id: e for e in db.session.query(Employee).filter(Employee.id.in_(employee_ids)).all()
        } if employee_ids else {}

        commissions: list[Commission] = []
        for item in order.items:
            value = compute_commission(
                item,
                service=services.get(item.service_id),
                employee=employees.get(item.employee_id),
            )
            if value <= 0:
                continue
            commission = Commission(
                order_id=order.id,
                order_item_id=item.id,
                employee_id=item.employee_id,
                value_cents=value,
                status=COMMISSION_STATUS_CONFIRMADA,
                created_at=now,
            )
            db.session.add(commission)
            commissions.append(commission)

        db.session.commit()
        return SettlementResult(order=order, commissions=commissions)

    result = run_atomic(_op)
    logger.info(
        "Work order %s finalized: %s cents, %s commission(s) totalling %s cents",
        result.order.id, result.order.total_amount_cents,
        result.commission_count, result.commission_total_cents,
    )
    return result


def list_work_orders(search: str | None = None, status: str | None = None) -> list[WorkOrder]:
    """Newest first; search matches customer name or plate, case-insensitive."""
    query = db.session.query(WorkOrder)
    if status:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        query = query.filter(WorkOrder.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            WorkOrder.customer_name.ilike(pattern),
            WorkOrder.vehicle_plate.ilike(pattern),
        ))
    return query.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc()).all()


def list_commissions(employee_id: int | None = None, order_id: int | None = None) -> list[Commission]:
    query = db.session.query(Commission)
    if employee_id is not None:
        query = query.filter(Commission.employee_id == employee_id)
    if order_id is not None:
        query = query.filter(Commission.order_id == order_id)
    return query.order_by(Commission.created_at.desc(), Commission.id.desc()).all()
