"""Financial models — income/expense categories and transactions."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow

FINANCIAL_TYPES = ("income", "expense")


class FinancialCategory(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A named bucket for financial transactions, e.g. ``token_purchase_income``."""

    __tablename__ = "financial_categories"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    group: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<FinancialCategory name={self.name!r} type={self.type}>"


class FinancialTransaction(UUIDPrimaryKeyMixin, Base):
    """An income or expense record.

    ``external_id`` holds the payment provider's invoice/payment id and is
    unique: reconciliation of one external payment records at most one row.
    """

    __tablename__ = "financial_transactions"

    category_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("financial_categories.id"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    affiliate_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    external_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(nullable=True)

    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False, index=True)

    category: Mapped["FinancialCategory"] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<FinancialTransaction id={self.id} type={self.type} amount={self.amount} external_id={self.external_id!r}>"
