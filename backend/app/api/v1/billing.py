"""Billing API endpoints — crypto subscription checkout, status, cancellation, token packs, plans."""

import logging
import math
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_admin_user,
    get_coinremitter_client,
    get_current_active_user,
    get_db,
    get_nowpayments_client,
    get_uow,
    require_permission,
)
from app.billing.catalog import UnknownTokenPackageError, get_token_package, list_token_packages
from app.billing.coinremitter import CoinremitterClient
from app.billing.exceptions import PaymentProviderError, PaymentProviderNotConfiguredError
from app.billing.nowpayments import NowPaymentsClient, months_to_interval_days
from app.config import settings
from app.database import UnitOfWork
from app.models.subscription import Subscription, SubscriptionPlan
from app.models.user import User
from app.schemas.auth import MessageResponse
from app.schemas.billing import (
    AdminPlanListResponse,
    AdminSubscriptionListResponse,
    AdminSubscriptionResponse,
    BillingCycle,
    CheckoutResponse,
    ExpireResponse,
    PlanCreate,
    PlanResponse,
    PlansListResponse,
    PlanUpdate,
    SubscriptionCheckoutRequest,
    SubscriptionResponse,
    TokenCheckoutRequest,
    TokenPackageResponse,
    TokenPackagesResponse,
)
from app.services.subscription_service import (
    SubscriptionNotFoundError,
    cancel_subscription,
    check_and_expire_subscriptions,
    days_remaining,
    get_active_plan,
    get_subscription,
    upsert_pending_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _provider_unavailable(exc: PaymentProviderError) -> HTTPException:
    if isinstance(exc, PaymentProviderNotConfiguredError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider is not configured",
        )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Failed to create checkout session",
    )


async def _ensure_not_active(db: AsyncSession, user: User) -> None:
    existing = await get_subscription(db, user.id)
    if existing is not None and existing.status == "active":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="You already have an active subscription",
        )


# ---------------------------------------------------------------------------
# Public catalog
# ---------------------------------------------------------------------------


@router.get("/plans", response_model=PlansListResponse)
async def list_plans(db: AsyncSession = Depends(get_db)) -> PlansListResponse:
    """List active subscription plans (public, no auth required)."""
    result = await db.execute(
        select(SubscriptionPlan).where(SubscriptionPlan.is_active.is_(True)).order_by(SubscriptionPlan.months)
    )
    return PlansListResponse(plans=[PlanResponse.model_validate(plan) for plan in result.scalars().all()])


@router.get("/token-packages", response_model=TokenPackagesResponse)
async def list_packages() -> TokenPackagesResponse:
    """List token packages at current prices (public)."""
    return TokenPackagesResponse(
        packages=[
            TokenPackageResponse.model_validate(package)
            for package in list_token_packages(settings.payments_test_mode)
        ]
    )


# ---------------------------------------------------------------------------
# Subscription status and cancellation
# ---------------------------------------------------------------------------


@router.get("/subscription", response_model=SubscriptionResponse)
async def read_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """Return the caller's subscription with the days left in the period."""
    subscription = await get_subscription(db, current_user.id)
    if subscription is None:
        return SubscriptionResponse(has_subscription=False)

    return SubscriptionResponse(
        has_subscription=True,
        billing_cycle=subscription.billing_cycle,
        status=subscription.status,
        provider=subscription.provider,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        cancelled_at=subscription.cancelled_at,
        days_remaining=days_remaining(subscription),
    )


@router.post("/subscription/cancel", response_model=MessageResponse)
async def cancel(
    uow: UnitOfWork = Depends(get_uow),
    nowpayments: NowPaymentsClient = Depends(get_nowpayments_client),
    current_user: User = Depends(get_current_active_user),
) -> MessageResponse:
    """Cancel the caller's active subscription. Access continues until the period ends."""
    subscription = await get_subscription(uow.session, current_user.id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No subscription found",
        )
    if subscription.status != "active":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Subscription is not active",
        )

    try:
        await cancel_subscription(uow, current_user.id, nowpayments)
    except SubscriptionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No subscription found",
        ) from None

    return MessageResponse(
        message="Subscription cancelled. You will retain access until the end of your billing period."
    )


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


@router.post("/checkout/nowpayments", response_model=CheckoutResponse)
async def create_nowpayments_checkout(
    body: SubscriptionCheckoutRequest,
    uow: UnitOfWork = Depends(get_uow),
    nowpayments: NowPaymentsClient = Depends(get_nowpayments_client),
    current_user: User = Depends(get_current_active_user),
) -> CheckoutResponse:
    """Create a NOWPayments email subscription; the payment link is sent to the user's email."""
    await _ensure_not_active(uow.session, current_user)

    plan = await get_active_plan(uow.session, body.billing_cycle)
    if plan is None or not plan.nowpayments_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"No active subscription plan found for {body.billing_cycle} billing cycle",
        )

    try:
        remote = await nowpayments.create_email_subscription(plan.nowpayments_id, current_user.email)
    except PaymentProviderError as exc:
        logger.exception("NOWPayments checkout failed for user %s", current_user.id)
        raise _provider_unavailable(exc) from exc

    remote_id = str(remote.get("id")) if remote.get("id") is not None else None
    await upsert_pending_subscription(
        uow,
        current_user.id,
        body.billing_cycle,
        provider="nowpayments",
        nowpayments_subscription_id=remote_id,
        plan_id=plan.id,
    )
    return CheckoutResponse(provider="nowpayments", payment_id=remote_id, status=remote.get("status"))


@router.post("/checkout/coinremitter", response_model=CheckoutResponse)
async def create_coinremitter_checkout(
    body: SubscriptionCheckoutRequest,
    uow: UnitOfWork = Depends(get_uow),
    coinremitter: CoinremitterClient = Depends(get_coinremitter_client),
    current_user: User = Depends(get_current_active_user),
) -> CheckoutResponse:
    """Create a Coinremitter invoice for a subscription and return its payment URL."""
    await _ensure_not_active(uow.session, current_user)

    try:
        invoice = await coinremitter.create_invoice(str(current_user.id), body.billing_cycle, current_user.email)
    except PaymentProviderError as exc:
        logger.exception("Coinremitter checkout failed for user %s", current_user.id)
        raise _provider_unavailable(exc) from exc

    invoice_id = invoice.get("invoice_id")
    await upsert_pending_subscription(
        uow,
        current_user.id,
        body.billing_cycle,
        provider="coinremitter",
        external_order_id=invoice_id,
    )
    return CheckoutResponse(provider="coinremitter", payment_id=invoice_id, url=invoice.get("url"))


async def _require_active_subscription(db: AsyncSession, user: User) -> None:
    subscription = await get_subscription(db, user.id)
    if subscription is None or subscription.status != "active":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Active subscription required to purchase tokens",
        )


def _validate_package(package_id: str) -> None:
    try:
        get_token_package(package_id)
    except UnknownTokenPackageError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid token package",
        ) from None


@router.post("/tokens/checkout", response_model=CheckoutResponse)
async def create_token_checkout(
    body: TokenCheckoutRequest,
    db: AsyncSession = Depends(get_db),
    nowpayments: NowPaymentsClient = Depends(get_nowpayments_client),
    current_user: User = Depends(get_current_active_user),
) -> CheckoutResponse:
    """Create a NOWPayments one-time payment for a token package (subscribers only)."""
    await _require_active_subscription(db, current_user)
    _validate_package(body.package_id)

    try:
        payment = await nowpayments.create_token_payment(str(current_user.id), body.package_id)
    except PaymentProviderError as exc:
        logger.exception("NOWPayments token checkout failed for user %s", current_user.id)
        raise _provider_unavailable(exc) from exc

    payment_id = payment.get("payment_id")
    return CheckoutResponse(
        provider="nowpayments",
        payment_id=str(payment_id) if payment_id is not None else None,
        url=payment.get("invoice_url"),
        status=payment.get("payment_status"),
    )


@router.post("/tokens/checkout/coinremitter", response_model=CheckoutResponse)
async def create_token_checkout_coinremitter(
    body: TokenCheckoutRequest,
    db: AsyncSession = Depends(get_db),
    coinremitter: CoinremitterClient = Depends(get_coinremitter_client),
    current_user: User = Depends(get_current_active_user),
) -> CheckoutResponse:
    """Create a Coinremitter invoice for a token package (subscribers only)."""
    await _require_active_subscription(db, current_user)
    _validate_package(body.package_id)

    try:
        invoice = await coinremitter.create_token_purchase_invoice(
            str(current_user.id), body.package_id, current_user.email
        )
    except PaymentProviderError as exc:
        logger.exception("Coinremitter token checkout failed for user %s", current_user.id)
        raise _provider_unavailable(exc) from exc

    return CheckoutResponse(provider="coinremitter", payment_id=invoice.get("invoice_id"), url=invoice.get("url"))


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get(
    "/admin/subscriptions",
    response_model=AdminSubscriptionListResponse,
    dependencies=[Depends(require_permission("subscription", "read"))],
)
async def list_subscriptions(
    status_filter: str | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> AdminSubscriptionListResponse:
    """Page through all subscriptions, newest first."""
    filters = [Subscription.status == status_filter] if status_filter else []

    total = (await db.execute(select(func.count()).select_from(Subscription).where(*filters))).scalar_one()
    result = await db.execute(
        select(Subscription)
        .where(*filters)
        .order_by(Subscription.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return AdminSubscriptionListResponse(
        items=[AdminSubscriptionResponse.model_validate(sub) for sub in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )


@router.post("/admin/subscriptions/expire", response_model=ExpireResponse)
async def expire_subscriptions(
    uow: UnitOfWork = Depends(get_uow),
    admin: User = Depends(get_admin_user),
) -> ExpireResponse:
    """Run the expiry sweep now."""
    expired = await check_and_expire_subscriptions(uow)
    logger.info("Admin %s ran the expiry sweep: %d expired", admin.id, expired)
    return ExpireResponse(expired=expired)


def _price_per_month(price: Decimal, months: int) -> Decimal:
    return (price / months).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@router.post("/admin/plans", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
    body: PlanCreate,
    db: AsyncSession = Depends(get_db),
    nowpayments: NowPaymentsClient = Depends(get_nowpayments_client),
    admin: User = Depends(get_admin_user),
) -> SubscriptionPlan:
    """Create a plan at NOWPayments first, then save it locally with the provider id."""
    try:
        remote = await nowpayments.create_plan(
            title=body.label,
            interval_days=months_to_interval_days(body.months),
            amount=body.price,
        )
    except PaymentProviderError as exc:
        logger.exception("Failed to create plan %r at NOWPayments", body.label)
        raise _provider_unavailable(exc) from exc

    plan = SubscriptionPlan(
        nowpayments_id=str(remote.get("id")) if remote.get("id") is not None else None,
        billing_cycle=body.billing_cycle,
        label=body.label,
        months=body.months,
        price=body.price,
        price_per_month=_price_per_month(body.price, body.months),
        tokens_granted=body.tokens_granted,
        discount=body.discount,
        is_active=body.is_active,
    )
    db.add(plan)
    await db.flush()
    logger.info("Admin %s created plan %s (NOWPayments %s)", admin.id, plan.id, plan.nowpayments_id)
    return plan


@router.patch("/admin/plans/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: uuid.UUID,
    body: PlanUpdate,
    db: AsyncSession = Depends(get_db),
    nowpayments: NowPaymentsClient = Depends(get_nowpayments_client),
    admin: User = Depends(get_admin_user),
) -> SubscriptionPlan:
    """Update a plan; label and price changes are pushed to NOWPayments first."""
    plan = await db.get(SubscriptionPlan, plan_id)
    if plan is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Plan not found",
        )

    update_data = body.model_dump(exclude_unset=True)
    label_changed = "label" in update_data and update_data["label"] != plan.label
    price_changed = "price" in update_data and update_data["price"] != plan.price

    if plan.nowpayments_id and (label_changed or price_changed):
        try:
            await nowpayments.update_plan(
                plan.nowpayments_id,
                title=update_data["label"] if label_changed else None,
                amount=update_data["price"] if price_changed else None,
            )
        except PaymentProviderError as exc:
            logger.exception("Failed to update plan %s at NOWPayments", plan.id)
            raise _provider_unavailable(exc) from exc

    for field, value in update_data.items():
        setattr(plan, field, value)
    if price_changed:
        plan.price_per_month = _price_per_month(plan.price, plan.months)

    await db.flush()
    logger.info("Admin %s updated plan %s", admin.id, plan.id)
    return plan


@router.get(
    "/admin/plans",
    response_model=AdminPlanListResponse,
    dependencies=[Depends(get_admin_user)],
)
async def list_plans_admin(
    billing_cycle: BillingCycle | None = None,
    is_active: bool | None = None,
    sort_by: Literal["created_at", "months", "price"] = "months",
    sort_order: Literal["asc", "desc"] = "asc",
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> AdminPlanListResponse:
    """Page through every plan, inactive ones included."""
    filters = []
    if billing_cycle:
        filters.append(SubscriptionPlan.billing_cycle == billing_cycle)
    if is_active is not None:
        filters.append(SubscriptionPlan.is_active.is_(is_active))

    total = (await db.execute(select(func.count()).select_from(SubscriptionPlan).where(*filters))).scalar_one()

    column = getattr(SubscriptionPlan, sort_by)
    order = column.asc() if sort_order == "asc" else column.desc()
    result = await db.execute(
        select(SubscriptionPlan)
        .where(*filters)
        .order_by(order, SubscriptionPlan.label)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return AdminPlanListResponse(
        items=[PlanResponse.model_validate(plan) for plan in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )


@router.delete("/admin/plans/{plan_id}", response_model=MessageResponse)
async def delete_plan(
    plan_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_admin_user),
) -> MessageResponse:
    """Delete a plan no subscription references. Referenced plans should be deactivated."""
    plan = await db.get(SubscriptionPlan, plan_id)
    if plan is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Plan not found",
        )

    in_use = (
        await db.execute(select(func.count()).select_from(Subscription).where(Subscription.plan_id == plan.id))
    ).scalar_one()
    if in_use > 0:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot delete plan: {in_use} subscription(s) are using it. Deactivate instead.",
        )

    await db.delete(plan)
    await db.flush()
    logger.info("Admin %s deleted plan %s", admin.id, plan_id)
    return MessageResponse(message="Plan deleted")
