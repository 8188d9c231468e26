from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from database import Base, create_db_engine, create_session_factory
from invoices import PDF_PLACEHOLDER_TEXT
from models import Reminder, Transaction, TransactionStatus, TransactionType
from schemas import (
    CategoryIn,
    RegisterIn,
    SettingsIn,
    TransactionIn,
    TransactionUpdateIn,
)
from services import (
    DEFAULT_CATEGORIES,
    CategoryService,
    DashboardService,
    InvoiceService,
    ReminderService,
    TransactionService,
    UserService,
)

NOW = datetime(2024, 3, 1, 9, 0)


class StubExtractor:
    def __init__(self, text: str = "") -> None:
        self.text = text

    def extract(self, content: bytes) -> str:
        return self.text


def make_session():
    engine = create_db_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return create_session_factory(engine)()


def _register(session, name: str = "ana", **overrides):
    payload = dict(
        username=name,
        email=f"{name}@example.com",
        password="secret1",
        confirm_password="secret1",
    )
    payload.update(overrides)
    return UserService(session).register(RegisterIn(**payload))


def _expense(category_id: int, when: datetime, amount: str = "10.00", **overrides):
    payload = dict(
        type=TransactionType.expense,
        amount=Decimal(amount),
        date=when,
        category_id=category_id,
        description="Groceries",
    )
    payload.update(overrides)
    return TransactionIn(**payload)


def test_register_seeds_default_categories_and_hashes_password():
    session = make_session()
    user = _register(session)
    names = {c.name for c in CategoryService(session, user.id).list_all()}
    assert names == set(DEFAULT_CATEGORIES)
    assert user.password_hash != "secret1"
    assert UserService(session).authenticate("ANA@example.com", "secret1").id == user.id


def test_register_rejects_duplicate_email_and_bad_login():
    session = make_session()
    _register(session)
    with pytest.raises(ValueError, match="Email already registered"):
        _register(session, username="other", email="ana@example.com")
    with pytest.raises(ValueError, match="Invalid email or password"):
        UserService(session).authenticate("ana@example.com", "wrong-pass")


def test_category_names_are_unique_per_user():
    session = make_session()
    ana = _register(session)
    bob = _register(session, "bob")
    with pytest.raises(ValueError):
        CategoryService(session, ana.id).create(CategoryIn(name="food"))
    created = CategoryService(session, bob.id).create(CategoryIn(name="Pets"))
    assert created.user_id == bob.id


def test_create_due_transaction_schedules_reminders():
    session = make_session()
    user = _register(session)
    category = CategoryService(session, user.id).list_all()[0]
    txn = TransactionService(session, user.id).create(
        _expense(category.id, datetime(2024, 3, 10, 9, 0)), now=NOW
    )
    assert [r.reminder_date for r in txn.reminders] == [
        datetime(2024, 3, 9, 9, 0),
        datetime(2024, 3, 10, 9, 0),
    ]
    assert all(r.user_id == user.id for r in txn.reminders)


def test_paid_transaction_gets_no_reminders():
    session = make_session()
    user = _register(session)
    category = CategoryService(session, user.id).list_all()[0]
    txn = TransactionService(session, user.id).create(
        _expense(category.id, datetime(2024, 3, 10), status=TransactionStatus.paid),
        now=NOW,
    )
    assert txn.reminders == []


def test_create_rejects_category_of_another_user():
    session = make_session()
    ana = _register(session)
    bob = _register(session, "bob")
    foreign = CategoryService(session, bob.id).list_all()[0]
    with pytest.raises(ValueError, match="Category not found"):
        TransactionService(session, ana.id).create(
            _expense(foreign.id, datetime(2024, 3, 10)), now=NOW
        )


def test_transactions_of_other_users_are_not_found():
    session = make_session()
    ana = _register(session)
    bob = _register(session, "bob")
    category = CategoryService(session, ana.id).list_all()[0]
    txn = TransactionService(session, ana.id).create(
        _expense(category.id, datetime(2024, 3, 10)), now=NOW
    )
    other = TransactionService(session, bob.id)
    with pytest.raises(ValueError, match="Transaction not found"):
        other.get(txn.id)
    with pytest.raises(ValueError):
        other.delete(txn.id)
    assert other.list_all() == []


def test_marking_paid_drops_pending_reminders():
    session = make_session()
    user = _register(session)
    category = CategoryService(session, user.id).list_all()[0]
    service = TransactionService(session, user.id)
    txn = service.create(_expense(category.id, datetime(2024, 3, 10)), now=NOW)

    service.set_status(txn.id, TransactionStatus.paid, now=NOW)

    assert session.scalar(select(func.count(Reminder.id))) == 0


def test_moving_date_reschedules_reminders():
    session = make_session()
    user = _register(session)
    category = CategoryService(session, user.id).list_all()[0]
    service = TransactionService(session, user.id)
    txn = service.create(_expense(category.id, datetime(2024, 3, 10)), now=NOW)

    updated = service.update(
        txn.id, TransactionUpdateIn(date=datetime(2024, 4, 2)), now=NOW
    )

    assert [r.reminder_date for r in updated.reminders] == [
        datetime(2024, 4, 1),
        datetime(2024, 4, 2),
    ]
    assert session.scalar(select(func.count(Reminder.id))) == 2


def test_delete_all_removes_only_own_rows():
    session = make_session()
    ana = _register(session)
    bob = _register(session, "bob")
    ana_category = CategoryService(session, ana.id).list_all()[0]
    bob_category = CategoryService(session, bob.id).list_all()[0]
    for day in (5, 6, 7):
        TransactionService(session, ana.id).create(
            _expense(ana_category.id, datetime(2024, 3, day)), now=NOW
        )
    TransactionService(session, bob.id).create(
        _expense(bob_category.id, datetime(2024, 3, 8)), now=NOW
    )

    assert TransactionService(session, ana.id).delete_all() == 3
    assert session.scalar(select(func.count(Transaction.id))) == 1
    assert session.scalar(select(func.count(Reminder.id))) == 2


def test_deleting_invoice_detaches_transactions():
    session = make_session()
    user = _register(session)
    category = CategoryService(session, user.id).list_all()[0]
    invoices = InvoiceService(session, user.id, extractor=StubExtractor("total 10"))
    invoice, _ = invoices.upload(b"\x89PNG", "receipt.png", "image/png")
    txn = TransactionService(session, user.id).create(
        _expense(category.id, datetime(2024, 3, 10), invoice_id=invoice.id), now=NOW
    )

    invoices.delete(invoice.id)
    session.refresh(txn)

    assert txn.invoice_id is None
    assert invoices.list_all() == []


def test_upload_rejects_oversized_file():
    session = make_session()
    user = _register(session)
    invoices = InvoiceService(
        session, user.id, extractor=StubExtractor(), max_upload_bytes=4
    )
    with pytest.raises(ValueError, match="File too large"):
        invoices.upload(b"12345", "big.png", "image/png")


def test_dispatch_due_marks_reminders_sent_for_notified_users():
    session = make_session()
    ana = _register(session)
    bob = _register(session, "bob", notifications_enabled=False)
    for user in (ana, bob):
        category = CategoryService(session, user.id).list_all()[0]
        TransactionService(session, user.id).create(
            _expense(category.id, datetime(2024, 3, 10, 9, 0)), now=NOW
        )

    dispatched = ReminderService(session).dispatch_due(now=datetime(2024, 3, 9, 12, 0))
    session.commit()

    assert dispatched == 1
    assert len(ReminderService(session, ana.id).upcoming(now=datetime(2024, 3, 9, 12, 0))) == 1
    assert len(ReminderService(session, bob.id).upcoming(now=datetime(2024, 3, 9, 12, 0))) == 1


def test_mark_sent_is_scoped_to_owner():
    session = make_session()
    ana = _register(session)
    bob = _register(session, "bob")
    category = CategoryService(session, ana.id).list_all()[0]
    txn = TransactionService(session, ana.id).create(
        _expense(category.id, datetime(2024, 3, 10)), now=NOW
    )
    reminder_id = txn.reminders[0].id
    with pytest.raises(ValueError, match="Reminder not found"):
        ReminderService(session, bob.id).mark_sent(reminder_id)
    assert ReminderService(session, ana.id).mark_sent(reminder_id).sent is True


def test_dashboard_balance_and_summaries():
    session = make_session()
    user = _register(
        session, initial_balance=Decimal("1000.00"), overdraft_limit=Decimal("200.00")
    )
    category = CategoryService(session, user.id).list_all()[0]
    service = TransactionService(session, user.id)
    service.create(
        _expense(
            category.id,
            datetime(2024, 3, 2),
            amount="500.00",
            type=TransactionType.income,
            status=TransactionStatus.paid,
        ),
        now=NOW,
    )
    service.create(
        _expense(category.id, datetime(2024, 3, 3), amount="200.00", status=TransactionStatus.paid),
        now=NOW,
    )
    service.create(_expense(category.id, datetime(2024, 3, 20), amount="75.00"), now=NOW)

    dashboard = DashboardService(session, user.id)
    position = dashboard.balance()
    assert position.balance == Decimal("1300.00")
    assert position.available == Decimal("1500.00")
    assert position.over_limit is False

    summary = dashboard.monthly_summary(2024, 3)
    assert summary.total_income == Decimal("500.00")
    assert summary.total_expense == Decimal("200.00")

    history = dashboard.recent_summaries(6, today=date(2024, 4, 15))
    assert [period.name for period, _ in history] == [
        "November",
        "December",
        "January",
        "February",
        "March",
        "April",
    ]
    assert history[4][1].total_income == Decimal("500.00")
    assert history[5][1].total_income == Decimal("0")


def test_update_settings_ignores_missing_fields():
    session = make_session()
    user = _register(session, initial_balance=Decimal("10.00"))
    updated = UserService(session).update_settings(
        user.id, SettingsIn(overdraft_limit=Decimal("50.00"))
    )
    assert updated.initial_balance == Decimal("10.00")
    assert updated.overdraft_limit == Decimal("50.00")


def test_upcoming_lists_due_from_today():
    session = make_session()
    user = _register(session)
    category = CategoryService(session, user.id).list_all()[0]
    service = TransactionService(session, user.id)
    service.create(_expense(category.id, datetime(2024, 2, 28)), now=NOW)
    later = service.create(_expense(category.id, datetime(2024, 3, 12)), now=NOW)
    soon = service.create(_expense(category.id, datetime(2024, 3, 1, 8, 0)), now=NOW)
    service.create(
        _expense(category.id, datetime(2024, 3, 5), status=TransactionStatus.paid),
        now=NOW,
    )
    upcoming = service.upcoming(5, today=date(2024, 3, 1))
    assert [t.id for t in upcoming] == [soon.id, later.id]


def test_aware_dates_are_stored_in_service_timezone():
    session = make_session()
    user = _register(session)
    category = CategoryService(session, user.id).list_all()[0]
    service = TransactionService(session, user.id, timezone="Asia/Tokyo")
    txn = service.create(
        _expense(category.id, datetime.fromisoformat("2024-03-31T20:00:00+00:00")),
        now=NOW,
    )
    assert txn.date == datetime(2024, 4, 1, 5, 0)

    updated = service.update(
        txn.id,
        TransactionUpdateIn(date=datetime.fromisoformat("2024-04-10T00:00:00+00:00")),
        now=NOW,
    )
    assert updated.date == datetime(2024, 4, 10, 9, 0)


def test_pdf_upload_needs_no_text_extractor():
    session = make_session()
    user = _register(session)
    invoice, processed = InvoiceService(session, user.id).upload(
        b"%PDF-1.4", "bill.pdf", "application/pdf"
    )
    assert invoice.content_type == "application/pdf"
    assert processed.processed_text == PDF_PLACEHOLDER_TEXT
    with pytest.raises(ValueError, match="No text extractor configured"):
        InvoiceService(session, user.id).upload(b"img", "scan.png", "image/png")
