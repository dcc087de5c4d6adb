# Overview: Service-layer operations for expenses (despesas) and cash-drawer withdrawals.

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import or_

from ..extensions import db
from ..models import Expense
from ..validation import ModelValidationPolicy, ValidationError, enforce_rules_expense
from motopdv.time_utils import utcnow
from .pricing import coerce_cents

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Geral"
WITHDRAWAL_CATEGORY = "Sangria / Retirada"
WITHDRAWAL_DESCRIPTION = "Sangria de Caixa"

EXPENSE_POLICY = ModelValidationPolicy(
    writable_fields={"description", "amount_cents", "category", "date"},
    required_on_create={"description", "amount_cents"},
)


def create_expense(*, patch: dict) -> Expense:
    """Date defaults to today (UTC), category to Geral."""
    enforce_rules_expense(patch)
    expense = Expense(
        description=patch["description"],
        amount_cents=patch["amount_cents"],
        category=patch.get("category") or DEFAULT_CATEGORY,
        date=patch.get("date") or utcnow().date(),
    )
    db.session.add(expense)
    db.session.commit()
    logger.info("Expense %s recorded: %s cents (%s)", expense.id, expense.amount_cents, expense.category)
    return expense


def record_cash_withdrawal(amount, reason: str | None = None, day: date | None = None) -> Expense:
    """Sangria: take cash out of the drawer, booked as an expense."""
    amount_cents = coerce_cents(amount)
    if amount_cents <= 0:
        raise ValidationError("Withdrawal amount must be > 0")

    description = WITHDRAWAL_DESCRIPTION
    if reason and reason.strip():
        description = f"{WITHDRAWAL_DESCRIPTION}: {reason.strip()}"[:255]

    return create_expense(patch={
        "description": description,
        "amount_cents": amount_cents,
        "category": WITHDRAWAL_CATEGORY,
        "date": day,
    })


def list_expenses(
    search: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[Expense]:
    """Newest first; search matches description or category."""
    query = db.session.query(Expense)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Expense.description.ilike(pattern), Expense.category.ilike(pattern)))
    if start is not None:
        query = query.filter(Expense.date >= start)
    if end is not None:
        query = query.filter(Expense.date <= end)
    return query.order_by(Expense.date.desc(), Expense.id.desc()).all()


def delete_expense(expense_id: int) -> bool:
    expense = db.session.get(Expense, expense_id)
    if expense is None:
        return False
    db.session.delete(expense)
    db.session.commit()
    logger.info("Expense %s deleted", expense_id)
    return True
