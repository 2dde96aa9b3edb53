"""Pydantic v2 request/response schemas for billing endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

BillingCycle = Literal["monthly", "quarterly", "annually"]
SubscriptionStatus = Literal["active", "pending", "cancelled", "expired"]

# --- Request schemas ---


class SubscriptionCheckoutRequest(BaseModel):
    """Start a subscription checkout for a billing cycle."""

    billing_cycle: BillingCycle


class TokenCheckoutRequest(BaseModel):
    """Start a one-time token package checkout."""

    package_id: str = Field(..., min_length=1, max_length=50)


class PlanCreate(BaseModel):
    """Admin: create a subscription plan (mirrored at NOWPayments)."""

    billing_cycle: BillingCycle
    label: str = Field(..., min_length=1, max_length=100)
    months: int = Field(..., ge=1)
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    tokens_granted: int = Field(..., ge=0)
    discount: int | None = Field(None, ge=0, le=100)
    is_active: bool = True


class PlanUpdate(BaseModel):
    """Admin: partially update a subscription plan."""

    label: str | None = Field(None, min_length=1, max_length=100)
    price: Decimal | None = Field(None, gt=0, max_digits=10, decimal_places=2)
    tokens_granted: int | None = Field(None, ge=0)
    discount: int | None = Field(None, ge=0, le=100)
    is_active: bool | None = None


# --- Response schemas ---


class PlanResponse(BaseModel):
    """Subscription plan for display."""

    id: uuid.UUID
    nowpayments_id: str | None = None
    billing_cycle: str
    label: str
    months: int
    price: Decimal
    price_per_month: Decimal
    tokens_granted: int
    discount: int | None = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class PlansListResponse(BaseModel):
    """Available plans."""

    plans: list[PlanResponse]


class AdminPlanListResponse(BaseModel):
    items: list[PlanResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class TokenPackageResponse(BaseModel):
    """A purchasable token package."""

    id: str
    tokens: int
    price: Decimal
    bonus: int | None = None
    bonus_tokens: int
    total_tokens: int

    model_config = ConfigDict(from_attributes=True)


class TokenPackagesResponse(BaseModel):
    packages: list[TokenPackageResponse]


class SubscriptionResponse(BaseModel):
    """Current subscription status."""

    has_subscription: bool
    billing_cycle: str | None = None
    status: str | None = None
    provider: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancelled_at: datetime | None = None
    days_remaining: int = 0


class CheckoutResponse(BaseModel):
    """Provider checkout handle returned to the client."""

    provider: str
    payment_id: str | None = None
    url: str | None = None
    status: str | None = None


class AdminSubscriptionResponse(BaseModel):
    """Subscription row as shown on the admin dashboard."""

    id: uuid.UUID
    user_id: uuid.UUID
    billing_cycle: str
    status: str
    provider: str | None = None
    external_order_id: str | None = None
    nowpayments_subscription_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AdminSubscriptionListResponse(BaseModel):
    items: list[AdminSubscriptionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ExpireResponse(BaseModel):
    expired: int
