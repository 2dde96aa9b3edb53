"""Token purchase reconciliation — credit a paid token package exactly once."""

import logging
import uuid
from decimal import Decimal

from app.billing.catalog import TokenPackage, get_token_package, list_token_packages
from app.database import UnitOfWork
from app.services.financial_service import (
    TOKEN_PURCHASE_INCOME,
    find_by_external_id,
    get_or_create_category,
    record_income,
)
from app.services.token_service import add_tokens

logger = logging.getLogger(__name__)

__all__ = ["get_all_packages", "get_token_package", "process_token_purchase"]


def get_all_packages() -> list[TokenPackage]:
    return list_token_packages()


async def process_token_purchase(
    uow: UnitOfWork,
    user_id: uuid.UUID,
    package_id: str,
    invoice_id: str,
    payment_amount: Decimal,
    provider: str = "nowpayments",
) -> bool:
    """Credit a purchased package and record the income.

    Payment webhooks can be delivered more than once, so ``invoice_id`` is the
    idempotency key: if an income record for it already exists this is a
    no-op and returns False.

    Raises:
        UnknownTokenPackageError: If ``package_id`` is not in the catalog.
    """
    package = get_token_package(package_id)

    if await find_by_external_id(uow.session, invoice_id) is not None:
        logger.info("Token purchase %s already processed; ignoring replay", invoice_id)
        return False

    await add_tokens(
        uow,
        user_id,
        package.total_tokens,
        "purchase",
        description=f"Purchased {package.tokens} tokens (+{package.bonus_tokens} bonus)",
        metadata={
            "invoice_id": invoice_id,
            "package_id": package.id,
            "base_tokens": package.tokens,
            "bonus_tokens": package.bonus_tokens,
        },
    )

    category = await get_or_create_category(uow, TOKEN_PURCHASE_INCOME)
    bonus_note = f" (+{package.bonus_tokens} bonus)" if package.bonus_tokens else ""
    await record_income(
        uow,
        category,
        amount=Decimal(payment_amount),
        description=f"Token purchase: {package.tokens} tokens{bonus_note} via {provider}",
        user_id=user_id,
        external_id=invoice_id,
        provider=provider,
        metadata={
            "package_id": package.id,
            "base_tokens": package.tokens,
            "bonus_percent": package.bonus or 0,
            "bonus_tokens": package.bonus_tokens,
            "total_tokens": package.total_tokens,
            "payment_method": "crypto",
        },
    )

    logger.info(
        "Processed token purchase %s for user %s: %s, %d tokens via %s",
        invoice_id,
        user_id,
        package.id,
        package.total_tokens,
        provider,
    )
    return True
