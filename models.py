import re
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum

import pycountry
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import DateTime
from sqlmodel import Field, Relationship, SQLModel

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


class RecurringInterval(str, Enum):
    """Billing cycle of a recurring expense"""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to timestamps read back from backends that drop the offset (SQLite)."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


# ============================================
# DATABASE MODELS (Tables)
# ============================================


class User(SQLModel, table=True):
    """Account allowed to sign in to the dashboard"""

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    password_hash: str
    first_name: str | None = None
    last_name: str | None = None
    roles: str = Field(default="ROLE_USER")  # Comma-separated
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class RefreshToken(SQLModel, table=True):
    """Long-lived credential used only to mint new access tokens"""

    id: int | None = Field(default=None, primary_key=True)
    refresh_token: str = Field(unique=True, index=True, max_length=128)
    username: str = Field(index=True)
    valid_until: datetime = Field(sa_type=DateTime(timezone=True), index=True)


class RecurringCategory(SQLModel, table=True):
    """Tag grouping recurring expenses (e.g. Streaming, Utilities)"""

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True, max_length=255)


class RecurringExpense(SQLModel, table=True):
    """Subscription or bill that repeats on a fixed interval"""

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, max_length=255)
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    currency: str = Field(max_length=3)
    interval: RecurringInterval
    next_billing_date: date = Field(index=True)
    category_id: int | None = Field(
        default=None, foreign_key="recurringcategory.id", ondelete="SET NULL", index=True
    )
    is_active: bool = Field(default=True)
    notes: str | None = Field(default=None, max_length=1024)

    category: RecurringCategory | None = Relationship()


# ============================================
# REQUEST MODELS (Pydantic validation)
# ============================================


def _not_blank(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("This value should not be blank.")
    return v


def _normalize_currency(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip().upper()
    if not CURRENCY_PATTERN.match(v) or pycountry.currencies.get(alpha_3=v) is None:
        raise ValueError("Currency must be a 3-letter ISO 4217 code (e.g., EUR)")
    return v


class Credentials(SQLModel):
    """Body of POST /login_check"""

    email: str = Field(description="Account email", schema_extra={"examples": ["johndoe@example.com"]})
    password: str = Field(description="Account password", schema_extra={"examples": ["apassword"]})


class RefreshRequest(SQLModel):
    """Body of POST /token/refresh"""

    refresh_token: str = Field(min_length=1)


class TokenPair(SQLModel):
    """Access token plus the refresh token that can renew it"""

    token: str
    refresh_token: str


class UserCreate(SQLModel):
    """Model for creating dashboard accounts"""

    email: str = Field(description="User's email address")
    password: str = Field(min_length=8, max_length=72, description="Plain-text password")
    first_name: str | None = Field(default=None, description="Given name")
    last_name: str | None = Field(default=None, description="Family name")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("Invalid email format")
        return v.strip().lower()


class RecurringCategoryCreate(SQLModel):
    """Model for creating categories"""

    name: str = Field(min_length=1, max_length=255, description="Category name")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _not_blank(v)


class RecurringCategoryUpdate(SQLModel):
    """Partial update of a category"""

    name: str | None = Field(default=None, min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str:
        if v is None:
            raise ValueError("This value should not be null.")
        return _not_blank(v)


class RecurringExpenseCreate(SQLModel):
    """Model for creating recurring expenses"""

    name: str = Field(min_length=1, max_length=255, description="Subscription or bill name")
    amount: Decimal = Field(ge=0, max_digits=14, decimal_places=2, description="Amount per cycle")
    currency: str = Field(description="3-letter ISO currency code")
    interval: RecurringInterval = Field(description="weekly, monthly, quarterly or yearly")
    next_billing_date: date = Field(description="Next due date (YYYY-MM-DD)")
    category_id: int | None = Field(default=None, description="Category ID, if tagged")
    is_active: bool = Field(default=True)
    notes: str | None = Field(default=None, max_length=1024)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _not_blank(v)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _normalize_currency(v)


class RecurringExpenseUpdate(SQLModel):
    """Partial update of a recurring expense; only fields sent are changed"""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    amount: Decimal | None = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    currency: str | None = None
    interval: RecurringInterval | None = None
    next_billing_date: date | None = None
    category_id: int | None = None
    is_active: bool | None = None
    notes: str | None = Field(default=None, max_length=1024)

    @field_validator("name", "amount", "currency", "interval", "next_billing_date", "is_active")
    @classmethod
    def reject_null(cls, v):
        # Only runs for values present in the payload
        if v is None:
            raise ValueError("This value should not be null.")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _not_blank(v)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _normalize_currency(v)


# ============================================
# RESPONSE MODELS
# ============================================


class RecurringCategoryRead(SQLModel):
    id: int
    name: str


class RecurringExpenseRead(SQLModel):
    id: int
    name: str
    amount: Decimal
    currency: str
    interval: RecurringInterval
    next_billing_date: date
    category: RecurringCategoryRead | None = None
    is_active: bool
    notes: str | None = None


class _Collection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_items: int = PydanticField(alias="hydra:totalItems")
    page: int
    items_per_page: int


class RecurringCategoryCollection(_Collection):
    member: list[RecurringCategoryRead] = PydanticField(alias="hydra:member")


class RecurringExpenseCollection(_Collection):
    member: list[RecurringExpenseRead] = PydanticField(alias="hydra:member")
