import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from config import DEFAULT_TIMEZONE
from models import RecurrenceType, Reminder, Transaction, TransactionStatus
from periods import as_local_naive, days_in_month
from schemas import TransactionIn

logger = logging.getLogger(__name__)


def local_now(timezone: str) -> datetime:
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)


def add_months(base: datetime, months: int) -> datetime:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1

    # Snap to the last day when the target month is shorter (Jan 31 -> Feb 29).
    day = min(base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def installment_dates(base: datetime, total: int) -> list[datetime]:
    return [add_months(base, offset) for offset in range(total)]


def installment_description(description: str, index: int, total: int) -> str:
    return f"{description} ({index}/{total})"


def reminder_dates(due: datetime, now: datetime) -> list[datetime]:
    if due <= now:
        return []
    dates: list[datetime] = []
    day_before = due - timedelta(days=1)
    if day_before > now:
        dates.append(day_before)
    dates.append(due)
    return dates


def attach_reminders(txn: Transaction, now: datetime) -> list[Reminder]:
    """Queue the day-before and same-day reminders for a future due payment."""
    if txn.status != TransactionStatus.due:
        return []
    reminders = [
        Reminder(user_id=txn.user_id, reminder_date=when, sent=False)
        for when in reminder_dates(txn.date, now)
    ]
    txn.reminders.extend(reminders)
    return reminders


def new_group_id() -> str:
    return uuid.uuid4().hex


@dataclass
class InstallmentBatch:
    recurring_group_id: str
    transactions: list[Transaction]
    reminders: list[Reminder]


class InstallmentEngine:
    """Expands one installment plan into dated transaction rows.

    Rows and reminders are added to the session and flushed, never
    committed; the caller owns the unit of work and rolls back on failure.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        max_installments: int = 120,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.max_installments = max_installments
        self.timezone = timezone

    def expand(
        self,
        data: TransactionIn,
        *,
        now: Optional[datetime] = None,
        group_id: Optional[str] = None,
    ) -> InstallmentBatch:
        if not data.expands_to_installments:
            raise ValueError("Transaction is not an installment plan")
        total = data.total_installments or 0
        if total < 2:
            raise ValueError("Installment plans need at least 2 installments")
        if total > self.max_installments:
            raise ValueError(f"At most {self.max_installments} installments are allowed")

        now = now or local_now(self.timezone)
        group_id = group_id or new_group_id()
        created: list[Transaction] = []
        reminders: list[Reminder] = []
        base = as_local_naive(data.date, self.timezone)
        for index, due in enumerate(installment_dates(base, total), start=1):
            txn = self._build_installment(data, index, total, due, group_id)
            self.session.add(txn)
            reminders.extend(attach_reminders(txn, now))
            created.append(txn)
        self.session.flush()

        logger.info(
            f"installments_expanded: user_id={self.user_id} group={group_id} "
            f"count={len(created)} reminders={len(reminders)}"
        )
        return InstallmentBatch(
            recurring_group_id=group_id, transactions=created, reminders=reminders
        )

    def _build_installment(
        self,
        data: TransactionIn,
        index: int,
        total: int,
        due: datetime,
        group_id: str,
    ) -> Transaction:
        return Transaction(
            user_id=self.user_id,
            type=data.type,
            amount=data.amount,
            date=due,
            category_id=data.category_id,
            description=installment_description(data.description, index, total),
            notes=data.notes,
            status=data.status,
            invoice_id=data.invoice_id,
            is_recurring=True,
            recurrence_type=RecurrenceType.installments,
            total_installments=total,
            current_installment=index,
            recurring_group_id=group_id,
        )
