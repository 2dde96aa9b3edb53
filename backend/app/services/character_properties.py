"""Character property registry — generic CRUD over the 11 taxonomy tables.

Each property type tag (``gender``, ``hair_style``, ...) maps to a
``PropertyHandler`` bound to its model, so routers dispatch through one
lookup instead of branching per type.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import UnitOfWork
from app.models.character_property import (
    CharacterBodyType,
    CharacterBreastSize,
    CharacterEthnicity,
    CharacterEyeColor,
    CharacterGender,
    CharacterHairColor,
    CharacterHairStyle,
    CharacterOccupation,
    CharacterPersonality,
    CharacterPropertyMixin,
    CharacterRelationship,
    CharacterStyle,
    ScopedPropertyMixin,
)

logger = logging.getLogger(__name__)

SCOPE_FIELDS = ("gender_id", "style_id")


class UnknownPropertyTypeError(LookupError):
    """Raised for a property type tag with no registered handler."""

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"Unknown property type: {tag}")


class InvalidScopeError(ValueError):
    """Raised when a scoped property is missing, or references an unknown, gender/style."""


@dataclass(frozen=True)
class PropertyHandler:
    """CRUD operations for one property taxonomy table."""

    tag: str
    model: type[CharacterPropertyMixin]

    @property
    def scoped(self) -> bool:
        """True if rows belong to a (gender, style) pair."""
        return issubclass(self.model, ScopedPropertyMixin)

    async def get(self, db: AsyncSession, property_id: uuid.UUID) -> CharacterPropertyMixin | None:
        return await db.get(self.model, property_id)

    async def next_sort_order(self, db: AsyncSession) -> int:
        """One past the current maximum, or 0 for an empty table."""
        result = await db.execute(select(func.max(self.model.sort_order)))
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def create(self, uow: UnitOfWork, data: dict[str, Any]) -> CharacterPropertyMixin:
        """Insert a row at the end of the sort order.

        Raises:
            InvalidScopeError: If a scoped type lacks a valid gender_id/style_id.
        """
        values = dict(data)
        if self.scoped:
            await self._check_scope(uow.session, values.get("gender_id"), values.get("style_id"))
        else:
            for key in SCOPE_FIELDS:
                values.pop(key, None)

        values["sort_order"] = await self.next_sort_order(uow.session)
        item = self.model(**values)
        uow.session.add(item)
        await uow.flush()
        logger.info("Created %s option %r (sort_order=%d)", self.tag, item.name, item.sort_order)
        return item

    async def update(
        self,
        uow: UnitOfWork,
        property_id: uuid.UUID,
        data: dict[str, Any],
    ) -> CharacterPropertyMixin | None:
        """Apply a partial update. Returns None if the row does not exist."""
        item = await self.get(uow.session, property_id)
        if item is None:
            return None

        values = dict(data)
        if self.scoped:
            if any(values.get(key) is not None for key in SCOPE_FIELDS):
                await self._check_scope(
                    uow.session,
                    values.get("gender_id") or item.gender_id,
                    values.get("style_id") or item.style_id,
                )
            values = {k: v for k, v in values.items() if k not in SCOPE_FIELDS or v is not None}
        else:
            for key in SCOPE_FIELDS:
                values.pop(key, None)

        for field, value in values.items():
            setattr(item, field, value)
        await uow.flush()
        return item

    async def delete(self, uow: UnitOfWork, property_id: uuid.UUID) -> bool:
        """Delete a row. Returns False if it did not exist."""
        item = await self.get(uow.session, property_id)
        if item is None:
            return False
        await uow.session.delete(item)
        await uow.flush()
        logger.info("Deleted %s option %s", self.tag, property_id)
        return True

    async def reorder(self, uow: UnitOfWork, ids: list[uuid.UUID]) -> list[uuid.UUID]:
        """Set ``sort_order`` to each id's position in ``ids``. Returns the ids that were not found."""
        missing = []
        for position, property_id in enumerate(ids):
            item = await self.get(uow.session, property_id)
            if item is None:
                missing.append(property_id)
                continue
            item.sort_order = position
        await uow.flush()
        return missing

    async def _check_scope(
        self,
        db: AsyncSession,
        gender_id: uuid.UUID | None,
        style_id: uuid.UUID | None,
    ) -> None:
        if gender_id is None or style_id is None:
            raise InvalidScopeError(f"gender_id and style_id are required for {self.tag}")
        if await db.get(CharacterGender, gender_id) is None:
            raise InvalidScopeError(f"Unknown gender_id: {gender_id}")
        if await db.get(CharacterStyle, style_id) is None:
            raise InvalidScopeError(f"Unknown style_id: {style_id}")

    async def list_all(
        self,
        db: AsyncSession,
        gender_id: uuid.UUID | None = None,
        style_id: uuid.UUID | None = None,
    ) -> list[CharacterPropertyMixin]:
        query = select(self.model)
        if self.scoped:
            if gender_id is not None:
                query = query.where(self.model.gender_id == gender_id)
            if style_id is not None:
                query = query.where(self.model.style_id == style_id)
        result = await db.execute(query.order_by(self.model.sort_order, self.model.name))
        return list(result.scalars().all())


PROPERTY_HANDLERS: dict[str, PropertyHandler] = {
    handler.tag: handler
    for handler in (
        PropertyHandler("gender", CharacterGender),
        PropertyHandler("style", CharacterStyle),
        PropertyHandler("ethnicity", CharacterEthnicity),
        PropertyHandler("hair_style", CharacterHairStyle),
        PropertyHandler("hair_color", CharacterHairColor),
        PropertyHandler("eye_color", CharacterEyeColor),
        PropertyHandler("body_type", CharacterBodyType),
        PropertyHandler("breast_size", CharacterBreastSize),
        PropertyHandler("personality", CharacterPersonality),
        PropertyHandler("relationship", CharacterRelationship),
        PropertyHandler("occupation", CharacterOccupation),
    )
}


def get_handler(tag: str) -> PropertyHandler:
    """Look up the handler for a property type tag.

    Raises:
        UnknownPropertyTypeError: If no handler is registered for ``tag``.
    """
    try:
        return PROPERTY_HANDLERS[tag]
    except KeyError:
        raise UnknownPropertyTypeError(tag) from None
