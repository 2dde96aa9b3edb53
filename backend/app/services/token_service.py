"""Token ledger — the only code allowed to change ``User.token_balance``.

Every mutation locks the user row, writes the new balance, and appends exactly
one ``TokenTransaction`` whose ``balance_after`` matches it. Mutations join the
caller's ``UnitOfWork`` and only flush; the owner of the unit of work commits.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import UnitOfWork
from app.models.token_transaction import TokenTransaction
from app.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class UserNotFoundError(LookupError):
    """The user whose balance is being changed does not exist."""


class InsufficientTokensError(Exception):
    """A deduction would take the balance below zero."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__("Insufficient tokens")
        self.required = required
        self.available = available


async def _lock_user(session: AsyncSession, user_id: uuid.UUID) -> User:
    """Load the user with a row lock held until the surrounding transaction ends."""
    result = await session.execute(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(f"User {user_id} not found")
    return user


def _check_amount(amount: int) -> None:
    if amount <= 0:
        raise ValueError(f"Token amount must be positive, got {amount}")


async def _apply(
    uow: UnitOfWork,
    user: User,
    delta: int,
    transaction_type: str,
    description: str | None,
    metadata: dict | None,
) -> int:
    new_balance = user.token_balance + delta
    user.token_balance = new_balance
    uow.session.add(
        TokenTransaction(
            user_id=user.id,
            amount=delta,
            transaction_type=transaction_type,
            description=description,
            balance_after=new_balance,
            meta=metadata,
        )
    )
    await uow.flush()
    return new_balance


async def add_tokens(
    uow: UnitOfWork,
    user_id: uuid.UUID,
    amount: int,
    transaction_type: str,
    description: str | None = None,
    metadata: dict | None = None,
) -> int:
    """Credit ``amount`` tokens and return the new balance."""
    _check_amount(amount)
    user = await _lock_user(uow.session, user_id)
    new_balance = await _apply(uow, user, amount, transaction_type, description, metadata)
    logger.info("Credited %d tokens to user %s (%s), balance now %d", amount, user_id, transaction_type, new_balance)
    return new_balance


async def deduct_tokens(
    uow: UnitOfWork,
    user_id: uuid.UUID,
    amount: int,
    transaction_type: str,
    description: str | None = None,
    metadata: dict | None = None,
) -> int:
    """Debit ``amount`` tokens and return the new balance.

    Raises:
        InsufficientTokensError: If the balance is lower than ``amount``.
            Nothing is written in that case.
    """
    _check_amount(amount)
    user = await _lock_user(uow.session, user_id)
    if user.token_balance < amount:
        logger.info(
            "Rejected deduction of %d tokens from user %s: balance %d",
            amount,
            user_id,
            user.token_balance,
        )
        raise InsufficientTokensError(required=amount, available=user.token_balance)

    new_balance = await _apply(uow, user, -amount, transaction_type, description, metadata)
    logger.info("Debited %d tokens from user %s (%s), balance now %d", amount, user_id, transaction_type, new_balance)
    return new_balance


async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Current balance, or 0 for an unknown user."""
    result = await db.execute(select(User.token_balance).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    return balance or 0


async def get_transaction_history(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[TokenTransaction]:
    """Most recent ledger entries first."""
    result = await db.execute(
        select(TokenTransaction)
        .where(TokenTransaction.user_id == user_id)
        .order_by(TokenTransaction.created_at.desc(), TokenTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def has_enough_tokens(db: AsyncSession, user_id: uuid.UUID, required: int) -> bool:
    return await get_balance(db, user_id) >= required
