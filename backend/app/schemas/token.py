"""Pydantic v2 schemas for token balance and ledger history endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BalanceResponse(BaseModel):
    balance: int


class TokenTransactionResponse(BaseModel):
    """One ledger entry."""

    id: int
    amount: int
    transaction_type: str
    description: str | None = None
    balance_after: int
    metadata: dict | None = Field(None, validation_alias="meta")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TokenHistoryResponse(BaseModel):
    items: list[TokenTransactionResponse]


class AdminTokenAdjustment(BaseModel):
    """Admin credit (positive) or debit (negative) of a user's balance."""

    user_id: uuid.UUID
    amount: int = Field(..., description="Non-zero; negative values debit")
    description: str | None = Field(None, max_length=500)
