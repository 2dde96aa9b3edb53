"""Financial transactions admin API — the income/expense ledger.

Payment reconciliation writes income rows automatically; this router lets
admins browse them, summarise totals, and record manual entries.
"""

import logging
import math
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_admin_user, get_db
from app.models.financial import FinancialCategory, FinancialTransaction
from app.models.user import User
from app.schemas.auth import MessageResponse
from app.schemas.financial import (
    Pagination,
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    TransactionSummary,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin/financial-transactions", tags=["financial", "admin"])

_CENTS = Decimal("0.01")


async def _query_filters(
    type: Literal["income", "expense"] | None = None,
    category_id: uuid.UUID | None = None,
    provider: str | None = None,
    user_id: uuid.UUID | None = None,
    affiliate_id: str | None = None,
    start_date: datetime | None = Query(None, description="Inclusive lower bound on created_at"),
    end_date: datetime | None = Query(None, description="Inclusive upper bound on created_at"),
    search: str | None = Query(None, description="Search description, notes, or external id"),
) -> list:
    """Filters shared by the list and summary endpoints."""
    filters = []
    if type:
        filters.append(FinancialTransaction.type == type)
    if category_id:
        filters.append(FinancialTransaction.category_id == category_id)
    if provider:
        filters.append(FinancialTransaction.provider == provider)
    if user_id:
        filters.append(FinancialTransaction.user_id == user_id)
    if affiliate_id:
        filters.append(FinancialTransaction.affiliate_id == affiliate_id)
    if start_date:
        filters.append(FinancialTransaction.created_at >= start_date)
    if end_date:
        filters.append(FinancialTransaction.created_at <= end_date)
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                FinancialTransaction.description.ilike(pattern),
                FinancialTransaction.notes.ilike(pattern),
                FinancialTransaction.external_id.ilike(pattern),
            )
        )
    return filters


async def _get_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> FinancialTransaction:
    transaction = await db.get(FinancialTransaction, transaction_id)
    if transaction is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Transaction not found",
        )
    return transaction


async def _get_category(db: AsyncSession, category_id: uuid.UUID) -> FinancialCategory:
    category = await db.get(FinancialCategory, category_id)
    if category is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Category not found",
        )
    return category


async def _ensure_user_exists(db: AsyncSession, user_id: uuid.UUID) -> None:
    if await db.get(User, user_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )


async def _ensure_external_id_free(
    db: AsyncSession,
    external_id: str,
    exclude_id: uuid.UUID | None = None,
) -> None:
    query = select(FinancialTransaction.id).where(FinancialTransaction.external_id == external_id)
    if exclude_id is not None:
        query = query.where(FinancialTransaction.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Transaction with this external_id already exists",
        )


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=TransactionListResponse, summary="List financial transactions")
async def list_transactions(
    filters: list = Depends(_query_filters),
    sort_by: Literal["created_at", "amount", "description"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_admin_user),
) -> TransactionListResponse:
    total = (await db.execute(select(func.count()).select_from(FinancialTransaction).where(*filters))).scalar_one()

    column = getattr(FinancialTransaction, sort_by)
    order = column.asc() if sort_order == "asc" else column.desc()
    result = await db.execute(
        select(FinancialTransaction)
        .where(*filters)
        .order_by(order, FinancialTransaction.id)
        .offset((page - 1) * size)
        .limit(size)
    )

    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in result.scalars().all()],
        pagination=Pagination(page=page, total=total, total_pages=math.ceil(total / size), size=size),
    )


@router.get("/providers", response_model=list[str], summary="Distinct payment providers")
async def list_providers(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_admin_user),
) -> list[str]:
    result = await db.execute(
        select(FinancialTransaction.provider)
        .where(FinancialTransaction.provider.is_not(None))
        .distinct()
        .order_by(FinancialTransaction.provider)
    )
    return list(result.scalars().all())


@router.get("/summary", response_model=TransactionSummary, summary="Income and expense totals")
async def get_summary(
    filters: list = Depends(_query_filters),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_admin_user),
) -> TransactionSummary:
    result = await db.execute(
        select(
            FinancialTransaction.type,
            func.coalesce(func.sum(FinancialTransaction.amount), 0),
            func.count(),
        )
        .where(*filters)
        .group_by(FinancialTransaction.type)
    )
    totals = {kind: (Decimal(str(amount)), count) for kind, amount, count in result.all()}

    income, income_count = totals.get("income", (Decimal("0"), 0))
    expense, expense_count = totals.get("expense", (Decimal("0"), 0))

    return TransactionSummary(
        total_income=str(income.quantize(_CENTS)),
        total_expense=str(expense.quantize(_CENTS)),
        net=str((income - expense).quantize(_CENTS)),
        income_count=income_count,
        expense_count=expense_count,
        total_count=income_count + expense_count,
    )


@router.get("/{transaction_id}", response_model=TransactionResponse, summary="Get a transaction")
async def get_transaction(
    transaction_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_admin_user),
) -> FinancialTransaction:
    return await _get_transaction(db, transaction_id)


# ---------------------------------------------------------------------------
# Write endpoints
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a manual transaction",
)
async def create_transaction(
    body: TransactionCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_admin_user),
) -> FinancialTransaction:
    category = await _get_category(db, body.category_id)
    if body.user_id is not None:
        await _ensure_user_exists(db, body.user_id)
    if body.external_id is not None:
        await _ensure_external_id_free(db, body.external_id)

    data = body.model_dump(exclude={"metadata"})
    transaction = FinancialTransaction(
        **data,
        category=category,
        type=category.type,
        meta=body.metadata,
        created_by_id=admin.id,
    )
    db.add(transaction)
    await db.flush()

    logger.info(
        "Admin %s recorded %s of %s %s (%s)",
        admin.id,
        transaction.type,
        transaction.amount,
        transaction.currency,
        category.name,
    )
    return transaction


@router.patch("/{transaction_id}", response_model=TransactionResponse, summary="Update a transaction")
async def update_transaction(
    transaction_id: uuid.UUID,
    body: TransactionUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_admin_user),
) -> FinancialTransaction:
    transaction = await _get_transaction(db, transaction_id)
    update_data = body.model_dump(exclude_unset=True)

    category_id = update_data.pop("category_id", None)
    if category_id is not None and category_id != transaction.category_id:
        category = await _get_category(db, category_id)
        transaction.category = category
        transaction.category_id = category.id
        transaction.type = category.type

    if update_data.get("user_id") is not None:
        await _ensure_user_exists(db, update_data["user_id"])
    if update_data.get("external_id") is not None and update_data["external_id"] != transaction.external_id:
        await _ensure_external_id_free(db, update_data["external_id"], exclude_id=transaction.id)

    if "metadata" in update_data:
        transaction.meta = update_data.pop("metadata")
    for field, value in update_data.items():
        setattr(transaction, field, value)

    await db.flush()
    return transaction


@router.delete("/{transaction_id}", response_model=MessageResponse, summary="Delete a transaction")
async def delete_transaction(
    transaction_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_admin_user),
) -> MessageResponse:
    transaction = await _get_transaction(db, transaction_id)
    await db.delete(transaction)
    await db.flush()
    return MessageResponse(message="Transaction deleted")
