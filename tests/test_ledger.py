from datetime import date, datetime, timedelta
from decimal import Decimal

from ledger import compute_balance, compute_monthly_summary, overdraft_position
from models import Transaction, TransactionStatus, TransactionType


def _txn(
    type_: TransactionType,
    amount: str,
    status: TransactionStatus,
    when: datetime,
    user_id: int = 1,
) -> Transaction:
    return Transaction(
        user_id=user_id,
        type=type_,
        amount=Decimal(amount),
        status=status,
        date=when,
        category_id=1,
        description="test",
    )


def test_balance_adds_paid_income_and_subtracts_paid_expense():
    rows = [
        _txn(TransactionType.income, "500.00", TransactionStatus.paid, datetime(2024, 3, 1)),
        _txn(TransactionType.expense, "200.00", TransactionStatus.paid, datetime(2024, 3, 2)),
    ]
    assert compute_balance(Decimal("1000.00"), rows) == Decimal("1300.00")


def test_balance_ignores_unpaid_rows():
    rows = [
        _txn(TransactionType.income, "500.00", TransactionStatus.due, datetime(2024, 3, 1)),
        _txn(TransactionType.expense, "80.00", TransactionStatus.to_pay, datetime(2024, 3, 2)),
        _txn(TransactionType.expense, "20.00", TransactionStatus.paid, datetime(2024, 3, 3)),
    ]
    assert compute_balance(Decimal("100.00"), rows) == Decimal("80.00")


def test_balance_without_transactions_is_initial_balance():
    assert compute_balance(Decimal("42.50"), []) == Decimal("42.50")


def test_balance_keeps_cents_exact():
    rows = [
        _txn(TransactionType.expense, "0.10", TransactionStatus.paid, datetime(2024, 1, 1))
        for _ in range(3)
    ]
    assert compute_balance(Decimal("0.30"), rows) == Decimal("0.00")


def test_monthly_summary_counts_income_regardless_of_status():
    rows = [
        _txn(TransactionType.income, "300", TransactionStatus.due, datetime(2024, 3, 10)),
        _txn(TransactionType.expense, "100", TransactionStatus.paid, datetime(2024, 3, 15)),
        _txn(TransactionType.expense, "50", TransactionStatus.due, datetime(2024, 3, 20)),
    ]
    summary = compute_monthly_summary(1, 2024, 3, rows)
    assert summary.year == 2024
    assert summary.month == 3
    assert summary.total_income == Decimal("300")
    assert summary.total_expense == Decimal("100")


def test_monthly_summary_month_bounds_are_inclusive():
    first = datetime(2024, 2, 1)
    last = datetime(2024, 2, 29, 23, 59, 59, 999000)
    rows = [
        _txn(TransactionType.income, "1", TransactionStatus.paid, first),
        _txn(TransactionType.income, "2", TransactionStatus.paid, last),
        _txn(TransactionType.income, "4", TransactionStatus.paid, first - timedelta(milliseconds=1)),
        _txn(TransactionType.income, "8", TransactionStatus.paid, datetime(2024, 3, 1)),
    ]
    summary = compute_monthly_summary(1, 2024, 2, rows)
    assert summary.total_income == Decimal("3")


def test_monthly_summary_skips_other_users():
    rows = [
        _txn(TransactionType.income, "10", TransactionStatus.paid, datetime(2024, 5, 5)),
        _txn(TransactionType.income, "99", TransactionStatus.paid, datetime(2024, 5, 5), user_id=2),
    ]
    summary = compute_monthly_summary(1, 2024, 5, rows)
    assert summary.total_income == Decimal("10")
    assert summary.total_expense == Decimal("0")


def test_monthly_summary_empty_month_is_zero():
    summary = compute_monthly_summary(1, 2023, 11, [])
    assert summary.total_income == Decimal("0")
    assert summary.total_expense == Decimal("0")


def test_monthly_summary_malformed_input_falls_back_to_today():
    today = date(2025, 7, 14)
    rows = [_txn(TransactionType.income, "5", TransactionStatus.paid, datetime(2025, 7, 1))]
    summary = compute_monthly_summary(1, "abc", "13", rows, today=today)
    assert (summary.year, summary.month) == (2025, 7)
    assert summary.total_income == Decimal("5")


def test_overdraft_position_within_limit():
    position = overdraft_position(Decimal("-50.00"), Decimal("100.00"))
    assert position.available == Decimal("50.00")
    assert position.over_limit is False


def test_overdraft_position_past_limit():
    position = overdraft_position(Decimal("-150.00"), Decimal("100.00"))
    assert position.available == Decimal("-50.00")
    assert position.over_limit is True
