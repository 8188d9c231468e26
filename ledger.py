"""Pure money arithmetic over already-fetched transaction rows.

Nothing here touches the database; callers load the user and the rows and
pass them in. All amounts are ``Decimal``.

Balance policy: only transactions with status ``paid`` move the balance.
Due and to-pay rows are commitments, not money that has moved, so they are
left out on both the income and the expense side.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from models import TransactionStatus, TransactionType
from periods import resolve_month

ZERO = Decimal("0.00")


class LedgerRow(Protocol):
    user_id: int
    type: TransactionType
    amount: Decimal
    status: TransactionStatus
    date: datetime


@dataclass(frozen=True)
class MonthlySummary:
    year: int
    month: int
    total_income: Decimal
    total_expense: Decimal


@dataclass(frozen=True)
class OverdraftPosition:
    balance: Decimal
    overdraft_limit: Decimal
    available: Decimal
    over_limit: bool


def signed_amount(row: LedgerRow) -> Decimal:
    amount = Decimal(row.amount)
    if row.type == TransactionType.income:
        return amount
    return -amount


def compute_balance(
    initial_balance: Decimal, transactions: Iterable[LedgerRow]
) -> Decimal:
    balance = Decimal(initial_balance)
    for row in transactions:
        if row.status != TransactionStatus.paid:
            continue
        balance += signed_amount(row)
    return balance


def compute_monthly_summary(
    user_id: int,
    year: Optional[object],
    month: Optional[object],
    transactions: Iterable[LedgerRow],
    *,
    today: Optional[date] = None,
) -> MonthlySummary:
    """Income and paid expense inside one calendar month.

    Income counts whatever its status; an expense only counts once paid.
    A year or month that does not parse falls back to today's.
    """
    period = resolve_month(year, month, today=today)
    total_income = ZERO
    total_expense = ZERO
    for row in transactions:
        if row.user_id != user_id or not period.contains(row.date):
            continue
        if row.type == TransactionType.income:
            total_income += Decimal(row.amount)
        elif row.status == TransactionStatus.paid:
            total_expense += Decimal(row.amount)
    return MonthlySummary(
        year=period.year,
        month=period.month,
        total_income=total_income,
        total_expense=total_expense,
    )


def overdraft_position(balance: Decimal, overdraft_limit: Decimal) -> OverdraftPosition:
    limit = Decimal(overdraft_limit)
    deficit = -balance if balance < 0 else ZERO
    return OverdraftPosition(
        balance=balance,
        overdraft_limit=limit,
        available=balance + limit,
        over_limit=deficit > limit,
    )
