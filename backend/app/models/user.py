"""User model — authentication, role, and token balance."""

import uuid

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Platform user account.

    ``token_balance`` is owned by the token ledger (``app.services.token_service``)
    and must not be assigned anywhere else.
    """

    __tablename__ = "users"
    __table_args__ = (CheckConstraint("token_balance >= 0", name="ck_users_token_balance_non_negative"),)

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    token_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    role_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("roles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Relationships
    role: Mapped["Role | None"] = relationship("Role", back_populates="users", lazy="selectin")  # noqa: F821
    subscription: Mapped["Subscription | None"] = relationship(  # noqa: F821
        "Subscription", back_populates="user", uselist=False, lazy="selectin"
    )

    @property
    def role_name(self) -> str | None:
        return self.role.name if self.role is not None else None

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} balance={self.token_balance}>"
