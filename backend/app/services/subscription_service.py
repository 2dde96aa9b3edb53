"""Subscription service — activation, cancellation, and the expiry sweep."""

import calendar
import logging
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.catalog import get_subscription_months
from app.billing.nowpayments import NowPaymentsClient
from app.config import settings
from app.database import UnitOfWork, utcnow
from app.models.subscription import Subscription, SubscriptionPlan
from app.services.financial_service import (
    SUBSCRIPTION_INCOME,
    find_by_external_id,
    get_or_create_category,
    record_income,
)
from app.services.token_service import add_tokens

logger = logging.getLogger(__name__)


class SubscriptionNotFoundError(LookupError):
    """The user has no subscription row."""


def add_months(value: datetime, months: int) -> datetime:
    """Shift ``value`` by whole calendar months, clamping the day to the month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


async def get_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    result = await db.execute(select(Subscription).where(Subscription.user_id == user_id))
    return result.scalar_one_or_none()


async def find_by_nowpayments_subscription_id(db: AsyncSession, subscription_id: str) -> Subscription | None:
    """Look up a subscription by its NOWPayments id (used by webhooks)."""
    result = await db.execute(
        select(Subscription).where(Subscription.nowpayments_subscription_id == str(subscription_id))
    )
    return result.scalar_one_or_none()


async def get_plan(db: AsyncSession, plan_id: uuid.UUID) -> SubscriptionPlan | None:
    return await db.get(SubscriptionPlan, plan_id)


async def get_active_plan(db: AsyncSession, billing_cycle: str) -> SubscriptionPlan | None:
    """The active plan offered for a billing cycle, if one is configured."""
    result = await db.execute(
        select(SubscriptionPlan)
        .where(SubscriptionPlan.billing_cycle == billing_cycle, SubscriptionPlan.is_active.is_(True))
        .order_by(SubscriptionPlan.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def upsert_pending_subscription(
    uow: UnitOfWork,
    user_id: uuid.UUID,
    billing_cycle: str,
    provider: str,
    external_order_id: str | None = None,
    nowpayments_subscription_id: str | None = None,
    plan_id: uuid.UUID | None = None,
) -> Subscription:
    """Record a checkout in progress; the paid webhook later activates it."""
    subscription = await get_subscription(uow.session, user_id)
    if subscription is None:
        subscription = Subscription(user_id=user_id, billing_cycle=billing_cycle)
        uow.session.add(subscription)

    subscription.billing_cycle = billing_cycle
    subscription.status = "pending"
    subscription.provider = provider
    if external_order_id is not None:
        subscription.external_order_id = external_order_id
    if nowpayments_subscription_id is not None:
        subscription.nowpayments_subscription_id = str(nowpayments_subscription_id)
    if plan_id is not None:
        subscription.plan_id = plan_id

    await uow.flush()
    logger.info("Subscription for user %s pending via %s (%s)", user_id, provider, billing_cycle)
    return subscription


async def _resolve_token_grant(
    session: AsyncSession,
    months: int,
    plan_id: uuid.UUID | None,
    tokens_granted: int | None,
) -> int:
    """First non-zero grant of: the explicit override, the plan, the monthly default."""
    if tokens_granted:
        return tokens_granted
    if plan_id is not None:
        plan = await get_plan(session, plan_id)
        if plan is not None and plan.tokens_granted:
            return plan.tokens_granted
    return settings.default_tokens_per_month * months


async def activate_subscription(
    uow: UnitOfWork,
    user_id: uuid.UUID,
    billing_cycle: str,
    invoice_id: str,
    payment_amount: Decimal,
    provider: str = "nowpayments",
    nowpayments_subscription_id: str | None = None,
    plan_id: uuid.UUID | None = None,
    tokens_granted: int | None = None,
) -> bool:
    """Activate a paid subscription period.

    Within the caller's unit of work this upserts the subscription to
    ``active`` for ``months(billing_cycle)`` from now, credits the token grant,
    and records the income against ``invoice_id``.

    Returns False, changing nothing, if ``invoice_id`` was already recorded
    (a duplicate webhook delivery).
    """
    months = get_subscription_months(billing_cycle)

    if await find_by_external_id(uow.session, invoice_id) is not None:
        logger.info("Invoice %s already recorded; skipping activation for user %s", invoice_id, user_id)
        return False

    grant = await _resolve_token_grant(uow.session, months, plan_id, tokens_granted)
    period_start = utcnow()
    period_end = add_months(period_start, months)

    subscription = await get_subscription(uow.session, user_id)
    if subscription is None:
        subscription = Subscription(user_id=user_id, billing_cycle=billing_cycle)
        uow.session.add(subscription)

    subscription.billing_cycle = billing_cycle
    subscription.status = "active"
    subscription.provider = provider
    subscription.current_period_start = period_start
    subscription.current_period_end = period_end
    subscription.cancelled_at = None
    if provider == "coinremitter":
        subscription.external_order_id = invoice_id
    if nowpayments_subscription_id is not None:
        subscription.nowpayments_subscription_id = str(nowpayments_subscription_id)
    if plan_id is not None:
        subscription.plan_id = plan_id
    await uow.flush()

    if grant > 0:
        await add_tokens(
            uow,
            user_id,
            grant,
            "subscription_renewal",
            description=f"{billing_cycle} subscription activated - {grant} tokens",
            metadata={
                "invoice_id": invoice_id,
                "billing_cycle": billing_cycle,
                "provider": provider,
                "plan_id": str(plan_id) if plan_id else None,
            },
        )

    category = await get_or_create_category(uow, SUBSCRIPTION_INCOME)
    await record_income(
        uow,
        category,
        amount=Decimal(payment_amount),
        description=f"{billing_cycle} subscription payment via {provider}",
        user_id=user_id,
        external_id=invoice_id,
        provider=provider,
        metadata={
            "billing_cycle": billing_cycle,
            "tokens_granted": grant,
            "payment_method": "crypto",
            "nowpayments_subscription_id": nowpayments_subscription_id,
        },
        period_start=period_start,
        period_end=period_end,
    )

    logger.info(
        "Activated %s subscription for user %s via %s (invoice %s, %d tokens, ends %s)",
        billing_cycle,
        user_id,
        provider,
        invoice_id,
        grant,
        period_end.isoformat(),
    )
    return True


async def cancel_subscription(
    uow: UnitOfWork,
    user_id: uuid.UUID,
    nowpayments: NowPaymentsClient | None = None,
) -> Subscription:
    """Cancel locally, first trying to cancel the provider subscription.

    A failed remote cancellation is logged and does not block the local one.

    Raises:
        SubscriptionNotFoundError: If the user has no subscription.
    """
    subscription = await get_subscription(uow.session, user_id)
    if subscription is None:
        raise SubscriptionNotFoundError(f"No subscription for user {user_id}")

    if subscription.nowpayments_subscription_id and nowpayments is not None:
        try:
            await nowpayments.cancel_subscription(subscription.nowpayments_subscription_id)
        except Exception:
            logger.exception(
                "Failed to cancel NOWPayments subscription %s for user %s; cancelling locally",
                subscription.nowpayments_subscription_id,
                user_id,
            )

    subscription.status = "cancelled"
    subscription.cancelled_at = utcnow()
    await uow.flush()
    logger.info("Cancelled subscription for user %s", user_id)
    return subscription


async def check_and_expire_subscriptions(uow: UnitOfWork, now: datetime | None = None) -> int:
    """Mark every active subscription whose period has ended as expired. Returns the count."""
    now = now or utcnow()
    result = await uow.session.execute(
        update(Subscription)
        .where(Subscription.status == "active", Subscription.current_period_end < now)
        .values(status="expired", updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    await uow.flush()
    count = result.rowcount or 0
    if count:
        logger.info("Expired %d lapsed subscriptions", count)
    return count


def days_remaining(subscription: Subscription, now: datetime | None = None) -> int:
    """Whole days left in the current period (0 once it has ended)."""
    if subscription.current_period_end is None:
        return 0
    now = now or utcnow()
    seconds = (subscription.current_period_end - now).total_seconds()
    return max(0, -int(-seconds // 86400))
