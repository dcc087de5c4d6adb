from __future__ import annotations

from ..extensions import db
from motopdv.time_utils import to_utc_z


class Product(db.Model):
    """
    Inventory item sold at the counter (PDV).

    Quantity is decremented by checkout and never goes below zero. Prices are
    stored in cents; a price change made in operator mode needs a manager
    authorization (see products_service).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    # Optional, but unique when present
    sku = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents (frontend may only format for display)
    price_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    price_sell_cents = db.Column(db.Integer, nullable=False, default=0)

    observation = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} qty={self.quantity}>"

    @property
    def is_low_stock(self) -> bool:
        return (self.quantity or 0) <= (self.min_stock or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "quantity": self.quantity,
            "min_stock": self.min_stock,
            "price_cost_cents": self.price_cost_cents,
            "price_sell_cents": self.price_sell_cents,
            "observation": self.observation,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Service(db.Model):
    """
    Workshop service definition with its default commission rule.

    commission_value is an amount in cents when commission_type is FIXED and
    a percentage of the line price when it is PERCENT.
    """
    __tablename__ = "services"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    base_price_cents = db.Column(db.Integer, nullable=False, default=0)

    commission_type = db.Column(db.String(16), nullable=False, default="PERCENT")  # FIXED, PERCENT
    commission_value = db.Column(db.Float, nullable=False, default=0)

    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "base_price_cents": self.base_price_cents,
            "commission_type": self.commission_type,
            "commission_value": self.commission_value,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class Employee(db.Model):
    """Mechanic or attendant who may receive commissions."""
    __tablename__ = "employees"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    # Fallback only: used when the order line's service is unknown
    default_commission_percent = db.Column(db.Float, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "default_commission_percent": self.default_commission_percent,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
