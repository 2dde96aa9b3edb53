"""Token transaction model — append-only ledger of balance mutations."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow

TRANSACTION_TYPES = (
    "purchase",
    "subscription_renewal",
    "usage",
    "refund",
    "bonus",
    "admin_adjustment",
)


class TokenTransaction(Base):
    """One row per ledger mutation. Rows are never updated or deleted."""

    __tablename__ = "token_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # signed
    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return (
            f"<TokenTransaction id={self.id} user_id={self.user_id} "
            f"amount={self.amount} balance_after={self.balance_after}>"
        )
