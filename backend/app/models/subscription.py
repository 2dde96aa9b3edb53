"""Subscription models — per-user crypto subscription state and plan catalog."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

SUBSCRIPTION_STATUSES = ("active", "pending", "cancelled", "expired")


class SubscriptionPlan(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A purchasable subscription plan, mirrored at NOWPayments."""

    __tablename__ = "subscription_plans"

    nowpayments_id: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    months: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    price_per_month: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tokens_granted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(id={self.id}, billing_cycle={self.billing_cycle}, price={self.price})>"


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks a user's subscription and billing period."""

    __tablename__ = "subscriptions"

    # One subscription per user (UNIQUE enforces one-to-one)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )

    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending", index=True)
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Provider identifiers
    external_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)  # Coinremitter invoice
    nowpayments_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    plan_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("subscription_plans.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Billing period
    current_period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="subscription", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821
    plan: Mapped["SubscriptionPlan | None"] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, "
            f"billing_cycle={self.billing_cycle}, status={self.status})>"
        )
