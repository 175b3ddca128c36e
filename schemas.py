import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from models import TransactionType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name cannot be empty")
        return value


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[TransactionType] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("Name cannot be empty")
        return value


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    created_at: datetime
    updated_at: datetime


class BudgetIn(BaseModel):
    category_id: int
    limit_amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)


class BudgetUpdate(BaseModel):
    category_id: Optional[int] = None
    limit_amount: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    category_id: int
    limit_amount: Decimal
    created_at: datetime
    updated_at: datetime


class TransactionIn(BaseModel):
    category_id: int
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)
    description: Optional[str] = None
    date: date


class TransactionUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied."""

    category_id: Optional[int] = None
    amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    description: Optional[str] = None
    date: Optional[dt.date] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    category_id: int
    amount: Decimal
    description: Optional[str]
    date: date
    created_at: datetime
    updated_at: datetime


class TransactionPage(BaseModel):
    data: list[TransactionOut]
    total_count: int
    current_page: int
    per_page: int
    total_pages: int


class BudgetStatistics(BaseModel):
    total: Decimal
    average: Decimal
    max: Decimal
    min: Decimal


class CategoryBucket(BaseModel):
    count: int
    total: Decimal


class BudgetReportOut(BaseModel):
    statistics: BudgetStatistics
    budgets_by_category: dict[str, CategoryBucket]
    data: list[BudgetOut]
    total_count: int
    current_page: int
    per_page: int
    total_pages: int


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    password_confirmation: str


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenOut(BaseModel):
    token: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
