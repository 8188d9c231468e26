from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    model_validator,
)

from models import RecurrenceType, TransactionStatus, TransactionType

# Money leaves the API as a fixed two-decimal string, never a float.
Money = Annotated[
    Decimal, PlainSerializer(lambda v: f"{v:.2f}", return_type=str, when_used="json")
]

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterIn(BaseModel):
    username: str = Field(..., min_length=1, max_length=80)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)
    confirm_password: str = Field(..., min_length=6, max_length=128)
    initial_balance: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    overdraft_limit: Decimal = Field(
        default=Decimal("0"), ge=0, max_digits=10, decimal_places=2
    )
    notifications_enabled: bool = True

    @model_validator(mode="after")
    def _passwords_match(self) -> "RegisterIn":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginIn(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)


class SettingsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    initial_balance: Optional[Decimal] = Field(
        default=None, max_digits=10, decimal_places=2
    )
    overdraft_limit: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=10, decimal_places=2
    )
    notifications_enabled: Optional[bool] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class TransactionIn(BaseModel):
    type: TransactionType
    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    date: datetime
    category_id: int
    description: str = Field(..., min_length=1, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)
    status: TransactionStatus = TransactionStatus.due
    invoice_id: Optional[int] = None
    is_recurring: bool = False
    recurrence_type: Optional[RecurrenceType] = None
    total_installments: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_recurrence(self) -> "TransactionIn":
        if self.recurrence_type is not None and not self.is_recurring:
            raise ValueError("recurrence_type requires is_recurring")
        if self.is_recurring and self.recurrence_type is None:
            raise ValueError("Recurring transactions need a recurrence_type")
        if self.recurrence_type == RecurrenceType.installments:
            if self.total_installments is None or self.total_installments < 2:
                raise ValueError("Installment plans need at least 2 installments")
        return self

    @property
    def expands_to_installments(self) -> bool:
        return self.is_recurring and self.recurrence_type == RecurrenceType.installments


class TransactionUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    date: Optional[datetime] = None
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[TransactionStatus] = None
    invoice_id: Optional[int] = None


class StatusIn(BaseModel):
    status: TransactionStatus


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    initial_balance: Money
    overdraft_limit: Money
    notifications_enabled: bool


class AuthOut(BaseModel):
    message: str
    user: UserOut
    csrf_token: str


class UserMessageOut(BaseModel):
    message: str
    user: UserOut


class SessionOut(BaseModel):
    is_authenticated: bool
    user: Optional[UserOut] = None
    csrf_token: Optional[str] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    amount: Money
    date: datetime
    category_id: int
    description: str
    notes: Optional[str]
    status: TransactionStatus
    invoice_id: Optional[int]
    is_recurring: bool
    recurrence_type: Optional[RecurrenceType]
    total_installments: Optional[int]
    current_installment: Optional[int]
    recurring_group_id: Optional[str]
    created_at: datetime


class InstallmentsOut(BaseModel):
    message: str
    transactions: list[TransactionOut]
    recurring_group_id: str


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    content_type: Optional[str]
    processed_text: Optional[str]
    created_at: datetime


class InvoiceDetailOut(InvoiceOut):
    file_content: str


class InvoiceUploadOut(BaseModel):
    id: int
    filename: str
    processed_text: Optional[str]
    created_at: datetime
    barcode: Optional[str]


class ReminderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: int
    reminder_date: datetime
    sent: bool


class BalanceOut(BaseModel):
    balance: Money
    initial_balance: Money
    overdraft_limit: Money
    available: Money
    over_limit: bool


class MonthlySummaryOut(BaseModel):
    year: int
    month: int
    total_income: Money
    total_expense: Money


class MonthlySummaryPoint(BaseModel):
    month: str
    year: int
    income: Money
    expense: Money


class MessageOut(BaseModel):
    message: str
