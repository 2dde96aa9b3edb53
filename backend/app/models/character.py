"""Character model — AI companion profiles."""

import uuid

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Character(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A chat character. Attribute columns hold the selected taxonomy option names."""

    __tablename__ = "characters"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    gender: Mapped[str] = mapped_column(String(50), nullable=False)
    style: Mapped[str] = mapped_column(String(50), nullable=False)
    ethnicity: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hair_style: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hair_color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    eye_color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    body_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    breast_size: Mapped[str | None] = mapped_column(String(50), nullable=True)
    personality: Mapped[str | None] = mapped_column(String(50), nullable=True)
    relationship: Mapped[str | None] = mapped_column(String(50), nullable=True)
    occupation: Mapped[str | None] = mapped_column(String(50), nullable=True)
    voice: Mapped[str | None] = mapped_column(String(50), nullable=True)
    kinks: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_live: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Character id={self.id} name={self.name!r}>"
