from __future__ import annotations

from ..extensions import db
from motopdv.time_utils import to_utc_z


class WorkOrder(db.Model):
    """
    Ordem de Servico (OS) for a vehicle repair.

    Lifecycle: ABERTA -> EM_ANDAMENTO -> AGUARDANDO_PECA, all non-terminal and
    interchangeable; FINALIZADA and CANCELADA are terminal. paid_at is set iff
    status == FINALIZADA, and only settlement sets it.
    """
    __tablename__ = "work_orders"
    __table_args__ = (
        db.Index("ix_work_orders_status_paid", "status", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    customer_name = db.Column(db.String(255), nullable=False)
    vehicle_model = db.Column(db.String(255), nullable=False, default="")
    vehicle_plate = db.Column(db.String(16), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="ABERTA", index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OSItem",
        backref="order",
        lazy=True,
        order_by="OSItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_name": self.customer_name,
            "vehicle_model": self.vehicle_model,
            "vehicle_plate": self.vehicle_plate,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "items": [item.to_dict() for item in self.items],
            "version_id": self.version_id,
        }


class OSItem(db.Model):
    """Service line on a work order; the employee is optional (no commission when absent)."""
    __tablename__ = "work_order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("work_orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # Plain ids: services and employees may be removed without touching history
    service_id = db.Column(db.Integer, nullable=True)
    service_name = db.Column(db.String(255), nullable=False)
    employee_id = db.Column(db.Integer, nullable=True)

    price_cents = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "service_id": self.service_id,
            "service_name": self.service_name,
            "employee_id": self.employee_id,
            "price_cents": self.price_cents,
        }


class Commission(db.Model):
    """
    Amount owed to an employee for a settled order line.

    Created in one batch at work-order finalization; the status is always
    CONFIRMADA.
    """
    __tablename__ = "commissions"
    __table_args__ = (
        db.UniqueConstraint("order_item_id", name="uq_commissions_order_item"),
        db.Index("ix_commissions_employee_created", "employee_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("work_orders.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, nullable=False)
    employee_id = db.Column(db.Integer, nullable=False)

    value_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="CONFIRMADA")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "employee_id": self.employee_id,
            "value_cents": self.value_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
