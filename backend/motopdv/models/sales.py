from __future__ import annotations

from ..extensions import db
from motopdv.time_utils import to_utc_z


class Sale(db.Model):
    """
    Finalized counter sale.

    Created exactly once per checkout, already PAGA. Never updated afterwards;
    receipts are rendered from this record and its items.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "status", "created_at"),
    )

    # Six-digit numeric document number, e.g. "482913"
    id = db.Column(db.String(6), primary_key=True)

    # ABERTA, PAGA, CANCELADA
    status = db.Column(db.String(16), nullable=False, default="PAGA", index=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    interest_rate = db.Column(db.Float, nullable=False, default=0)
    interest_cents = db.Column(db.Integer, nullable=False, default=0)
    installments = db.Column(db.Integer, nullable=False, default=1)
    total_cents = db.Column(db.Integer, nullable=False)

    # PIX, CREDITO, DEBITO, DINHEIRO
    payment_method = db.Column(db.String(16), nullable=False, index=True)

    # Access mode that performed the sale (GESTOR / OPERACIONAL)
    actor_type = db.Column(db.String(16), nullable=False)

    # Set when an operator sale went through a manager PIN challenge
    authorization_id = db.Column(db.Integer, db.ForeignKey("pin_challenges.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        order_by="SaleItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "interest_rate": self.interest_rate,
            "interest_cents": self.interest_cents,
            "installments": self.installments,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "actor_type": self.actor_type,
            "authorization_id": self.authorization_id,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class SaleItem(db.Model):
    """Line of a sale; name and unit price are snapshots taken at add-to-cart time."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.String(6), db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }
