from __future__ import annotations

from ..extensions import db
from motopdv.time_utils import to_utc_z


class Expense(db.Model):
    """
    Outgoing money entry (despesa).

    Independent ledger row, created manually or by the cash-drawer withdrawal
    (sangria) shortcut at the counter.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_date", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(64), nullable=False, default="Geral")
    date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "date": self.date.isoformat() if self.date else None,
            "created_at": to_utc_z(self.created_at),
        }
