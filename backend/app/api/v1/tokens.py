"""Token API router — balance, ledger history, and admin adjustments."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_admin_user, get_current_active_user, get_db, get_uow
from app.database import UnitOfWork
from app.models.user import User
from app.schemas.token import (
    AdminTokenAdjustment,
    BalanceResponse,
    TokenHistoryResponse,
    TokenTransactionResponse,
)
from app.services.token_service import (
    InsufficientTokensError,
    UserNotFoundError,
    add_tokens,
    deduct_tokens,
    get_balance,
    get_transaction_history,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["tokens"])


@router.get("/tokens/balance", response_model=BalanceResponse)
async def read_balance(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> BalanceResponse:
    """Return the caller's token balance."""
    return BalanceResponse(balance=await get_balance(db, current_user.id))


@router.get("/tokens/transactions", response_model=TokenHistoryResponse)
async def read_transactions(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> TokenHistoryResponse:
    """Return the caller's ledger entries, newest first."""
    items = await get_transaction_history(db, current_user.id, limit=limit)
    return TokenHistoryResponse(items=[TokenTransactionResponse.model_validate(item) for item in items])


@router.post("/admin/tokens/adjust", response_model=BalanceResponse)
async def adjust_tokens(
    body: AdminTokenAdjustment,
    uow: UnitOfWork = Depends(get_uow),
    admin: User = Depends(get_admin_user),
) -> BalanceResponse:
    """Credit or debit a user's balance. Raises 403 if a debit exceeds the balance."""
    if body.amount == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Amount must be non-zero",
        )

    metadata = {"adjusted_by": str(admin.id)}
    try:
        if body.amount > 0:
            balance = await add_tokens(
                uow, body.user_id, body.amount, "admin_adjustment", body.description, metadata
            )
        else:
            balance = await deduct_tokens(
                uow, body.user_id, -body.amount, "admin_adjustment", body.description, metadata
            )
    except UserNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from None
    except InsufficientTokensError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient tokens",
        ) from None

    logger.info("Admin %s adjusted balance of user %s by %d", admin.id, body.user_id, body.amount)
    return BalanceResponse(balance=balance)
