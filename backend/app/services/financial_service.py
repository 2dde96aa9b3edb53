"""Financial service — categories and income records written by payment reconciliation."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import UnitOfWork
from app.models.financial import FinancialCategory, FinancialTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryDefinition:
    """Definition of a system category that is created on first use."""

    name: str
    label: str
    type: str
    group: str
    description: str


SUBSCRIPTION_INCOME = CategoryDefinition(
    name="subscription_income",
    label="Subscription Income",
    type="income",
    group="subscriptions",
    description="Income from subscription payments",
)

TOKEN_PURCHASE_INCOME = CategoryDefinition(
    name="token_purchase_income",
    label="Token Purchase Income",
    type="income",
    group="token_sales",
    description="Income from token purchases",
)


async def get_or_create_category(uow: UnitOfWork, definition: CategoryDefinition) -> FinancialCategory:
    """Return the category named ``definition.name``, creating it if absent."""
    result = await uow.session.execute(select(FinancialCategory).where(FinancialCategory.name == definition.name))
    category = result.scalar_one_or_none()
    if category is not None:
        return category

    logger.info("Creating financial category %s", definition.name)
    category = FinancialCategory(
        name=definition.name,
        label=definition.label,
        type=definition.type,
        group=definition.group,
        description=definition.description,
    )
    uow.session.add(category)
    await uow.flush()
    return category


async def find_by_external_id(db: AsyncSession, external_id: str) -> FinancialTransaction | None:
    """The transaction recorded for an external payment id, if any."""
    result = await db.execute(select(FinancialTransaction).where(FinancialTransaction.external_id == external_id))
    return result.scalar_one_or_none()


async def record_income(
    uow: UnitOfWork,
    category: FinancialCategory,
    amount: Decimal,
    description: str,
    user_id: uuid.UUID,
    external_id: str,
    provider: str,
    metadata: dict,
    period_start: datetime | None = None,
    period_end: datetime | None = None,
) -> FinancialTransaction:
    """Insert an income record tied to an external payment id."""
    transaction = FinancialTransaction(
        category_id=category.id,
        category=category,
        type="income",
        amount=amount,
        currency="USD",
        description=description,
        user_id=user_id,
        external_id=external_id,
        provider=provider,
        meta=metadata,
        period_start=period_start,
        period_end=period_end,
    )
    uow.session.add(transaction)
    await uow.flush()
    return transaction
