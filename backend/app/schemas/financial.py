"""Pydantic v2 request/response schemas for the financial admin endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

FinancialType = Literal["income", "expense"]

# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class CategoryCreate(BaseModel):
    """Schema for creating a financial category."""

    name: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9_]+$")
    label: str = Field(..., min_length=1, max_length=100)
    type: FinancialType
    group: str = Field(..., min_length=1, max_length=50)
    description: str | None = Field(None, max_length=500)
    sort_order: int = 0
    is_active: bool = True


class CategoryUpdate(BaseModel):
    """Partial category update. All fields optional."""

    name: str | None = Field(None, min_length=1, max_length=100, pattern=r"^[a-z0-9_]+$")
    label: str | None = Field(None, min_length=1, max_length=100)
    type: FinancialType | None = None
    group: str | None = Field(None, min_length=1, max_length=50)
    description: str | None = Field(None, max_length=500)
    sort_order: int | None = None
    is_active: bool | None = None


class CategoryResponse(BaseModel):
    id: uuid.UUID
    name: str
    label: str
    type: str
    group: str
    description: str | None = None
    sort_order: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    page: int
    total: int
    total_pages: int
    size: int


class CategoryListResponse(BaseModel):
    items: list[CategoryResponse]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TransactionCreate(BaseModel):
    """Manual income/expense entry. The type is taken from the category."""

    category_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    currency: str = Field("USD", min_length=3, max_length=3)
    description: str = Field(..., min_length=1, max_length=500)
    notes: str | None = None
    user_id: uuid.UUID | None = None
    affiliate_id: str | None = Field(None, max_length=255)
    external_id: str | None = Field(None, max_length=255)
    provider: str | None = Field(None, max_length=50)
    metadata: dict | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None


class TransactionUpdate(BaseModel):
    """Partial transaction update. Changing the category re-derives the type."""

    category_id: uuid.UUID | None = None
    amount: Decimal | None = Field(None, gt=0, max_digits=10, decimal_places=2)
    currency: str | None = Field(None, min_length=3, max_length=3)
    description: str | None = Field(None, min_length=1, max_length=500)
    notes: str | None = None
    user_id: uuid.UUID | None = None
    affiliate_id: str | None = Field(None, max_length=255)
    external_id: str | None = Field(None, max_length=255)
    provider: str | None = Field(None, max_length=50)
    metadata: dict | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None


class TransactionResponse(BaseModel):
    id: uuid.UUID
    category_id: uuid.UUID
    category: CategoryResponse
    type: str
    amount: Decimal
    currency: str
    description: str
    notes: str | None = None
    user_id: uuid.UUID | None = None
    affiliate_id: str | None = None
    external_id: str | None = None
    provider: str | None = None
    metadata: dict | None = Field(None, validation_alias="meta")
    period_start: datetime | None = None
    period_end: datetime | None = None
    created_by_id: uuid.UUID | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    pagination: Pagination


class TransactionSummary(BaseModel):
    """Income/expense totals as 2-decimal strings."""

    total_income: str
    total_expense: str
    net: str
    income_count: int
    expense_count: int
    total_count: int
