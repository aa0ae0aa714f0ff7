from datetime import datetime, time
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ledger import MAX_STORED_AMOUNT, to_cents
from models import BudgetPeriod, Frequency, PaymentType
from periods import to_utc_naive

MAX_EXPENSE_AMOUNT = Decimal("10000")


def _missing(data: Any, fields: tuple[str, ...]) -> bool:
    if not isinstance(data, dict):
        return False
    return any(data.get(field) is None for field in fields)


def _check_amount(value: Decimal) -> Decimal:
    if value < 0:
        raise ValueError("Amount cannot be negative")
    if value > MAX_EXPENSE_AMOUNT:
        raise ValueError("Amount cannot exceed 10,000")
    return value


def _check_storable(value: Decimal) -> Decimal:
    if abs(value) > MAX_STORED_AMOUNT:
        raise ValueError("Amount is too large")
    return value


def _choice(value: Any, enum_cls, message: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str) or value not in {m.value for m in enum_cls}:
        raise ValueError(message)
    return value


def _parse_timestamp(value: Any) -> Any:
    # Bare dates are booked at noon, like recurring occurrences.
    if isinstance(value, str) and len(value.strip()) == 10:
        return datetime.combine(datetime.fromisoformat(value.strip()).date(), time(12, 0))
    return value


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ProfileIn(ApiModel):
    name: Optional[str] = Field(default=None, max_length=120)
    email: Optional[str] = Field(default=None, max_length=254)


class BalanceIn(ApiModel):
    cash_amount: Decimal
    online_amount: Decimal

    @model_validator(mode="before")
    @classmethod
    def require_both(cls, data: Any) -> Any:
        if isinstance(data, dict):
            cash = data.get("cashAmount", data.get("cash_amount"))
            online = data.get("onlineAmount", data.get("online_amount"))
            if cash is None or online is None:
                raise ValueError("Both cashAmount and onlineAmount are required")
        return data

    @field_validator("cash_amount", "online_amount")
    @classmethod
    def storable_amount(cls, value: Decimal) -> Decimal:
        return _check_storable(value)


class ExpenseIn(ApiModel):
    amount: Decimal
    type: PaymentType
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    date: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def require_fields(cls, data: Any) -> Any:
        if _missing(data, ("amount", "type", "category")):
            raise ValueError("Amount, type, and category are required")
        return data

    @field_validator("amount")
    @classmethod
    def amount_in_range(cls, value: Decimal) -> Decimal:
        return _check_amount(value)

    @field_validator("type", mode="before")
    @classmethod
    def known_type(cls, value: Any) -> Any:
        return _choice(value, PaymentType, "Type must be cash or online")

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, value: Any) -> Any:
        return value or ""

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        return _parse_timestamp(value) if value else None

    @field_validator("date")
    @classmethod
    def date_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc_naive(value) if value else None


class ExpenseUpdateIn(ExpenseIn):
    """Edit payload: only the amount is mandatory.

    An omitted type or category keeps the stored value.
    """

    type: Optional[PaymentType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)

    @model_validator(mode="before")
    @classmethod
    def require_fields(cls, data: Any) -> Any:
        if _missing(data, ("amount",)):
            raise ValueError("Amount is required")
        return data

    @field_validator("type", mode="before")
    @classmethod
    def known_type(cls, value: Any) -> Any:
        if value is None:
            return None
        return _choice(value, PaymentType, "Type must be cash or online")


class BudgetIn(ApiModel):
    category: str = Field(..., min_length=1, max_length=100)
    limit_amount: Decimal
    period: BudgetPeriod

    @model_validator(mode="before")
    @classmethod
    def require_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            limit = data.get("limitAmount", data.get("limit_amount"))
            if limit is None or _missing(data, ("category", "period")):
                raise ValueError("Category, limitAmount, and period are required")
        return data

    @field_validator("limit_amount")
    @classmethod
    def positive_limit(cls, value: Decimal) -> Decimal:
        _check_storable(value)
        if to_cents(value) <= 0:
            raise ValueError("limitAmount must be greater than 0")
        return value

    @field_validator("period", mode="before")
    @classmethod
    def known_period(cls, value: Any) -> Any:
        return _choice(value, BudgetPeriod, "Period must be daily, weekly, or monthly")


class RecurringIn(ApiModel):
    amount: Decimal
    type: PaymentType
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    frequency: Frequency

    @model_validator(mode="before")
    @classmethod
    def require_fields(cls, data: Any) -> Any:
        if _missing(data, ("amount", "type", "category", "frequency")):
            raise ValueError("Amount, type, category, and frequency are required")
        return data

    @field_validator("amount")
    @classmethod
    def amount_in_range(cls, value: Decimal) -> Decimal:
        return _check_amount(value)

    @field_validator("type", mode="before")
    @classmethod
    def known_type(cls, value: Any) -> Any:
        return _choice(value, PaymentType, "Type must be cash or online")

    @field_validator("frequency", mode="before")
    @classmethod
    def known_frequency(cls, value: Any) -> Any:
        return _choice(value, Frequency, "Invalid frequency")

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, value: Any) -> Any:
        return value or ""


class RecurringToggleIn(ApiModel):
    active: bool
