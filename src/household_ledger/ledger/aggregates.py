from collections import defaultdict
from datetime import date
from decimal import Decimal

from sqlalchemy import ColumnElement, select
from sqlalchemy.orm import Session

from household_ledger.db.schema import CategoryRow, TransactionRow
from household_ledger.models import CashFlow, CategorySpend

ZERO = Decimal("0.00")


def _countable(household_id: str, start: date, end: date) -> tuple[ColumnElement[bool], ...]:
    # Split parents are carried by their children; transfers net to zero
    return (
        TransactionRow.household_id == household_id,
        TransactionRow.is_split.is_(False),
        TransactionRow.is_transfer.is_(False),
        TransactionRow.date >= start,
        TransactionRow.date <= end,
    )


def cash_flow(session: Session, household_id: str, start: date, end: date) -> CashFlow:
    amounts = session.scalars(select(TransactionRow.amount).where(*_countable(household_id, start, end)))
    income = ZERO
    expenses = ZERO
    for amount in amounts:
        if amount < 0:
            income += -amount
        elif amount > 0:
            expenses += amount
    return CashFlow(income=income, expenses=expenses, net=income - expenses)


def spending_by_category(session: Session, household_id: str, start: date, end: date) -> list[CategorySpend]:
    rows = session.execute(
        select(TransactionRow.category_id, CategoryRow.name, TransactionRow.amount)
        .outerjoin(CategoryRow, CategoryRow.id == TransactionRow.category_id)
        .where(*_countable(household_id, start, end), TransactionRow.amount > 0)
    ).all()
    totals: dict[str | None, Decimal] = defaultdict(lambda: ZERO)
    names: dict[str | None, str | None] = {}
    for category_id, category_name, amount in rows:
        totals[category_id] += amount
        names[category_id] = category_name
    spends = [
        CategorySpend(category_id=category_id, category_name=names[category_id], total=total)
        for category_id, total in totals.items()
    ]
    spends.sort(key=lambda spend: spend.total, reverse=True)
    return spends


def recent(session: Session, household_id: str, limit: int = 10) -> list[TransactionRow]:
    return list(
        session.scalars(
            select(TransactionRow)
            .where(TransactionRow.household_id == household_id, TransactionRow.is_split.is_(False))
            .order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
            .limit(limit)
        )
    )
