from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from auth import hash_password, verify_password
from config import DEFAULT_TIMEZONE
from invoices import (
    PDF_CONTENT_TYPE,
    ProcessedUpload,
    TextExtractor,
    process_upload,
    validate_upload,
)
from ledger import (
    MonthlySummary,
    OverdraftPosition,
    compute_balance,
    compute_monthly_summary,
    overdraft_position,
)
from models import (
    Category,
    Invoice,
    Reminder,
    Transaction,
    TransactionStatus,
    User,
)
from periods import MonthPeriod, as_local_naive, recent_months, resolve_month
from recurrence import InstallmentBatch, InstallmentEngine, attach_reminders, local_now
from schemas import (
    CategoryIn,
    RegisterIn,
    SettingsIn,
    TransactionIn,
    TransactionUpdateIn,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    "Food",
    "Housing",
    "Transportation",
    "Leisure",
    "Health",
    "Education",
    "Credit Card",
    "Legal Settlement",
    "Parking",
    "Other",
)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise ValueError("User not found")
        return user

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )

    def register(self, data: RegisterIn) -> User:
        if self.get_by_email(data.email):
            raise ValueError("Email already registered")
        username = data.username.strip()
        taken = self.session.scalar(select(User.id).where(User.username == username))
        if taken:
            raise ValueError("Username already taken")

        user = User(
            username=username,
            email=data.email.strip().lower(),
            password_hash=hash_password(data.password),
            initial_balance=data.initial_balance,
            overdraft_limit=data.overdraft_limit,
            notifications_enabled=data.notifications_enabled,
        )
        self.session.add(user)
        self.session.flush()
        self.session.add_all(
            [Category(user_id=user.id, name=name) for name in DEFAULT_CATEGORIES]
        )
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.get_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            raise ValueError("Invalid email or password")
        return user

    def update_settings(self, user_id: int, data: SettingsIn) -> User:
        user = self.get(user_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            setattr(user, field, value)
        self.session.commit()
        self.session.refresh(user)
        return user


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name, Category.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == name.lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(user_id=self.user_id, name=name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class TransactionService:
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

    def _check_references(
        self, category_id: Optional[int], invoice_id: Optional[int]
    ) -> None:
        if category_id is not None:
            CategoryService(self.session, self.user_id).get(category_id)
        if invoice_id is not None:
            invoice = self.session.get(Invoice, invoice_id)
            if not invoice or invoice.user_id != self.user_id:
                raise ValueError("Invoice not found")

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise ValueError("Transaction not found")
        return txn

    def list_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def list_between(self, start: datetime, end: datetime) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date >= start,
                Transaction.date <= end,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def recent(self, limit: int = 5) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def upcoming(
        self, limit: int = 5, *, today: Optional[date] = None
    ) -> list[Transaction]:
        today = today or local_now(self.timezone).date()
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.status == TransactionStatus.due,
                Transaction.date >= datetime.combine(today, time.min),
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: TransactionIn, *, now: Optional[datetime] = None) -> Transaction:
        if data.expands_to_installments:
            raise ValueError("Use create_installments for installment plans")
        self._check_references(data.category_id, data.invoice_id)
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            amount=data.amount,
            date=as_local_naive(data.date, self.timezone),
            category_id=data.category_id,
            description=data.description,
            notes=data.notes,
            status=data.status,
            invoice_id=data.invoice_id,
            is_recurring=data.is_recurring,
            recurrence_type=data.recurrence_type,
            total_installments=data.total_installments,
        )
        self.session.add(txn)
        attach_reminders(txn, now or local_now(self.timezone))
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def create_installments(
        self, data: TransactionIn, *, now: Optional[datetime] = None
    ) -> InstallmentBatch:
        self._check_references(data.category_id, data.invoice_id)
        engine = InstallmentEngine(
            self.session,
            self.user_id,
            max_installments=self.max_installments,
            timezone=self.timezone,
        )
        try:
            batch = engine.expand(data, now=now)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        for txn in batch.transactions:
            self.session.refresh(txn)
        return batch

    def update(
        self,
        transaction_id: int,
        data: TransactionUpdateIn,
        *,
        now: Optional[datetime] = None,
    ) -> Transaction:
        txn = self.get(transaction_id)
        changes = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None or field in {"notes", "invoice_id"}
        }
        self._check_references(changes.get("category_id"), changes.get("invoice_id"))
        if changes.get("date") is not None:
            changes["date"] = as_local_naive(changes["date"], self.timezone)

        reschedule = "date" in changes or "status" in changes
        for field, value in changes.items():
            setattr(txn, field, value)
        if reschedule:
            self._refresh_reminders(txn, now or local_now(self.timezone))
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def set_status(
        self,
        transaction_id: int,
        status: TransactionStatus,
        *,
        now: Optional[datetime] = None,
    ) -> Transaction:
        txn = self.get(transaction_id)
        txn.status = status
        self._refresh_reminders(txn, now or local_now(self.timezone))
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def _refresh_reminders(self, txn: Transaction, now: datetime) -> None:
        txn.reminders = [reminder for reminder in txn.reminders if reminder.sent]
        attach_reminders(txn, now)

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def delete_all(self) -> int:
        self.session.execute(delete(Reminder).where(Reminder.user_id == self.user_id))
        result = self.session.execute(
            delete(Transaction).where(Transaction.user_id == self.user_id)
        )
        self.session.commit()
        count = result.rowcount or 0
        logger.info(f"transactions_cleared: user_id={self.user_id} count={count}")
        return count


class InvoiceService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        extractor: Optional[TextExtractor] = None,
        max_upload_bytes: int = 5 * 1024 * 1024,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.extractor = extractor
        self.max_upload_bytes = max_upload_bytes

    def list_all(self) -> list[Invoice]:
        stmt = (
            select(Invoice)
            .where(Invoice.user_id == self.user_id)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, invoice_id: int) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if not invoice or invoice.user_id != self.user_id:
            raise ValueError("Invoice not found")
        return invoice

    def upload(
        self,
        content: Optional[bytes],
        original_name: Optional[str],
        content_type: Optional[str],
        barcode: Optional[str] = None,
    ) -> tuple[Invoice, ProcessedUpload]:
        if content is not None:
            validate_upload(content_type, len(content), self.max_upload_bytes)
            if content_type != PDF_CONTENT_TYPE and self.extractor is None:
                raise ValueError("No text extractor configured")
        processed = process_upload(
            content, original_name, content_type, barcode, self.extractor
        )
        invoice = Invoice(
            user_id=self.user_id,
            filename=processed.filename,
            content_type=processed.content_type,
            file_content=processed.content,
            processed_text=processed.processed_text,
        )
        self.session.add(invoice)
        self.session.commit()
        self.session.refresh(invoice)
        logger.info(
            f"invoice_uploaded: user_id={self.user_id} invoice_id={invoice.id} "
            f"content_type={processed.content_type}"
        )
        return invoice, processed

    def delete(self, invoice_id: int) -> None:
        invoice = self.get(invoice_id)
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.invoice_id == invoice.id,
            )
            .values(invoice_id=None)
        )
        self.session.delete(invoice)
        self.session.commit()


class ReminderService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.timezone = timezone

    def list_all(self) -> list[Reminder]:
        stmt = (
            select(Reminder)
            .where(Reminder.user_id == self.user_id)
            .order_by(Reminder.reminder_date.desc(), Reminder.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def upcoming(self, *, now: Optional[datetime] = None) -> list[Reminder]:
        now = now or local_now(self.timezone)
        stmt = (
            select(Reminder)
            .where(
                Reminder.user_id == self.user_id,
                Reminder.sent.is_(False),
                Reminder.reminder_date >= now,
            )
            .order_by(Reminder.reminder_date.asc(), Reminder.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def mark_sent(self, reminder_id: int) -> Reminder:
        reminder = self.session.get(Reminder, reminder_id)
        if not reminder or reminder.user_id != self.user_id:
            raise ValueError("Reminder not found")
        reminder.sent = True
        self.session.commit()
        return reminder

    def dispatch_due(self, *, now: Optional[datetime] = None) -> int:
        """Mark every reminder whose time has come as sent, across users."""
        now = now or local_now(self.timezone)
        stmt = (
            select(Reminder)
            .join(User, User.id == Reminder.user_id)
            .join(Transaction, Transaction.id == Reminder.transaction_id)
            .where(
                Reminder.sent.is_(False),
                Reminder.reminder_date <= now,
                User.notifications_enabled.is_(True),
            )
            .order_by(Reminder.reminder_date.asc(), Reminder.id.asc())
        )
        if self.user_id is not None:
            stmt = stmt.where(Reminder.user_id == self.user_id)
        reminders = self.session.scalars(stmt).all()
        for reminder in reminders:
            txn = reminder.transaction
            logger.info(
                f"reminder_due: user_id={reminder.user_id} reminder_id={reminder.id} "
                f"transaction_id={txn.id} due={txn.date.isoformat()} "
                f"amount={txn.amount} description={txn.description!r}"
            )
            reminder.sent = True
        self.session.flush()
        return len(reminders)


class DashboardService:
    def __init__(
        self, session: Session, user_id: int, *, timezone: str = DEFAULT_TIMEZONE
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.timezone = timezone

    def balance(self) -> OverdraftPosition:
        user = UserService(self.session).get(self.user_id)
        transactions = TransactionService(self.session, self.user_id).list_all()
        balance = compute_balance(user.initial_balance, transactions)
        return overdraft_position(balance, user.overdraft_limit)

    def monthly_summary(
        self,
        year: Optional[object],
        month: Optional[object],
        *,
        today: Optional[date] = None,
    ) -> MonthlySummary:
        today = today or local_now(self.timezone).date()
        period = resolve_month(year, month, today=today)
        rows = TransactionService(self.session, self.user_id).list_between(
            period.start, period.end
        )
        return compute_monthly_summary(
            self.user_id, period.year, period.month, rows, today=today
        )

    def recent_summaries(
        self, count: int = 6, *, today: Optional[date] = None
    ) -> list[tuple[MonthPeriod, MonthlySummary]]:
        today = today or local_now(self.timezone).date()
        periods = recent_months(today, count)
        rows = TransactionService(self.session, self.user_id).list_between(
            periods[0].start, periods[-1].end
        )
        return [
            (
                period,
                compute_monthly_summary(
                    self.user_id, period.year, period.month, rows, today=today
                ),
            )
            for period in periods
        ]
