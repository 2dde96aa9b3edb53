"""Character property taxonomies — the option lists a character is built from.

Gender and style are top-level taxonomies. Every other taxonomy is scoped to a
(gender, style) pair so that, for example, hair styles can differ between a
realistic female and an anime male character.
"""

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from app.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class CharacterPropertyMixin(UUIDPrimaryKeyMixin, TimestampMixin):
    """Columns shared by every property taxonomy table."""

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    emoji: Mapped[str | None] = mapped_column(String(16), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    video_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ScopedPropertyMixin(CharacterPropertyMixin):
    """A taxonomy whose options belong to one gender and one style."""

    @declared_attr
    def gender_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(ForeignKey("character_genders.id", ondelete="CASCADE"), nullable=False, index=True)

    @declared_attr
    def style_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(ForeignKey("character_styles.id", ondelete="CASCADE"), nullable=False, index=True)


class CharacterGender(CharacterPropertyMixin, Base):
    __tablename__ = "character_genders"


class CharacterStyle(CharacterPropertyMixin, Base):
    __tablename__ = "character_styles"


class CharacterEthnicity(ScopedPropertyMixin, Base):
    __tablename__ = "character_ethnicities"


class CharacterHairStyle(ScopedPropertyMixin, Base):
    __tablename__ = "character_hair_styles"


class CharacterHairColor(ScopedPropertyMixin, Base):
    __tablename__ = "character_hair_colors"


class CharacterEyeColor(ScopedPropertyMixin, Base):
    __tablename__ = "character_eye_colors"


class CharacterBodyType(ScopedPropertyMixin, Base):
    __tablename__ = "character_body_types"


class CharacterBreastSize(ScopedPropertyMixin, Base):
    __tablename__ = "character_breast_sizes"


class CharacterPersonality(ScopedPropertyMixin, Base):
    __tablename__ = "character_personalities"


class CharacterRelationship(ScopedPropertyMixin, Base):
    __tablename__ = "character_relationships"


class CharacterOccupation(ScopedPropertyMixin, Base):
    __tablename__ = "character_occupations"
