"""Tests for the character property registry."""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import UnitOfWork
from app.models.character_property import CharacterGender, CharacterHairColor, CharacterStyle
from app.services.character_properties import (
    PROPERTY_HANDLERS,
    InvalidScopeError,
    UnknownPropertyTypeError,
    get_handler,
)


async def _scope(uow: UnitOfWork) -> tuple[CharacterGender, CharacterStyle]:
    gender = await get_handler("gender").create(uow, {"name": "female", "label": "Female"})
    style = await get_handler("style").create(uow, {"name": "realistic", "label": "Realistic"})
    return gender, style


class TestRegistry:
    def test_all_taxonomies_registered(self):
        assert set(PROPERTY_HANDLERS) == {
            "gender",
            "style",
            "ethnicity",
            "hair_style",
            "hair_color",
            "eye_color",
            "body_type",
            "breast_size",
            "personality",
            "relationship",
            "occupation",
        }

    def test_scoped_flag(self):
        assert not get_handler("gender").scoped
        assert not get_handler("style").scoped
        assert get_handler("hair_color").scoped
        assert get_handler("hair_color").model is CharacterHairColor

    def test_unknown_tag(self):
        with pytest.raises(UnknownPropertyTypeError) as exc_info:
            get_handler("shoe_size")
        assert exc_info.value.tag == "shoe_size"


class TestCreate:
    async def test_sort_order_appends(self, db_session: AsyncSession):
        uow = UnitOfWork(db_session)
        handler = get_handler("gender")

        assert await handler.next_sort_order(db_session) == 0
        first = await handler.create(uow, {"name": "female", "label": "Female"})
        second = await handler.create(uow, {"name": "male", "label": "Male"})

        assert first.sort_order == 0
        assert second.sort_order == 1
        assert await handler.next_sort_order(db_session) == 2

    async def test_unscoped_type_drops_scope_keys(self, db_session: AsyncSession):
        item = await get_handler("style").create(
            UnitOfWork(db_session),
            {"name": "anime", "label": "Anime", "gender_id": uuid.uuid4(), "style_id": None},
        )
        assert item.name == "anime"
        assert not hasattr(item, "gender_id")

    async def test_scoped_type_requires_scope(self, db_session: AsyncSession):
        with pytest.raises(InvalidScopeError, match="gender_id and style_id are required for hair_color"):
            await get_handler("hair_color").create(UnitOfWork(db_session), {"name": "blonde", "label": "Blonde"})

    async def test_scoped_type_rejects_unknown_gender(self, db_session: AsyncSession):
        uow = UnitOfWork(db_session)
        _, style = await _scope(uow)
        with pytest.raises(InvalidScopeError, match="Unknown gender_id"):
            await get_handler("hair_color").create(
                uow, {"name": "blonde", "label": "Blonde", "gender_id": uuid.uuid4(), "style_id": style.id}
            )

    async def test_scoped_type_created(self, db_session: AsyncSession):
        uow = UnitOfWork(db_session)
        gender, style = await _scope(uow)
        item = await get_handler("hair_color").create(
            uow, {"name": "blonde", "label": "Blonde", "gender_id": gender.id, "style_id": style.id}
        )
        assert item.gender_id == gender.id
        assert item.style_id == style.id
        assert item.sort_order == 0


class TestListUpdateDelete:
    async def test_list_filters_by_scope(self, db_session: AsyncSession):
        uow = UnitOfWork(db_session)
        gender, style = await _scope(uow)
        other_gender = await get_handler("gender").create(uow, {"name": "male", "label": "Male"})
        handler = get_handler("eye_color")
        await handler.create(uow, {"name": "blue", "label": "Blue", "gender_id": gender.id, "style_id": style.id})
        await handler.create(
            uow, {"name": "green", "label": "Green", "gender_id": other_gender.id, "style_id": style.id}
        )

        assert [i.name for i in await handler.list_all(db_session)] == ["blue", "green"]
        assert [i.name for i in await handler.list_all(db_session, gender_id=gender.id)] == ["blue"]
        assert [i.name for i in await handler.list_all(db_session, gender_id=other_gender.id, style_id=style.id)] == [
            "green"
        ]

    async def test_partial_update(self, db_session: AsyncSession):
        uow = UnitOfWork(db_session)
        handler = get_handler("gender")
        item = await handler.create(uow, {"name": "female", "label": "Female"})

        updated = await handler.update(uow, item.id, {"label": "Woman", "emoji": "x"})
        assert updated.label == "Woman"
        assert updated.name == "female"
        assert updated.emoji == "x"

    async def test_update_missing_returns_none(self, db_session: AsyncSession):
        assert await get_handler("gender").update(UnitOfWork(db_session), uuid.uuid4(), {"label": "x"}) is None

    async def test_scoped_update_keeps_scope_when_omitted(self, db_session: AsyncSession):
        uow = UnitOfWork(db_session)
        gender, style = await _scope(uow)
        handler = get_handler("occupation")
        item = await handler.create(
            uow, {"name": "nurse", "label": "Nurse", "gender_id": gender.id, "style_id": style.id}
        )

        updated = await handler.update(uow, item.id, {"label": "Nurse (RN)", "gender_id": None})
        assert updated.gender_id == gender.id
        assert updated.label == "Nurse (RN)"

    async def test_scoped_update_rejects_unknown_style(self, db_session: AsyncSession):
        uow = UnitOfWork(db_session)
        gender, style = await _scope(uow)
        handler = get_handler("occupation")
        item = await handler.create(
            uow, {"name": "nurse", "label": "Nurse", "gender_id": gender.id, "style_id": style.id}
        )
        with pytest.raises(InvalidScopeError, match="Unknown style_id"):
            await handler.update(uow, item.id, {"style_id": uuid.uuid4()})

    async def test_delete(self, db_session: AsyncSession):
        uow = UnitOfWork(db_session)
        handler = get_handler("style")
        item = await handler.create(uow, {"name": "anime", "label": "Anime"})

        assert await handler.delete(uow, item.id) is True
        assert await handler.get(db_session, item.id) is None
        assert await handler.delete(uow, item.id) is False


class TestReorder:
    async def test_reorder_sets_positions(self, db_session: AsyncSession):
        uow = UnitOfWork(db_session)
        handler = get_handler("gender")
        a = await handler.create(uow, {"name": "a", "label": "A"})
        b = await handler.create(uow, {"name": "b", "label": "B"})
        c = await handler.create(uow, {"name": "c", "label": "C"})

        missing = await handler.reorder(uow, [c.id, a.id, b.id])

        assert missing == []
        assert [i.name for i in await handler.list_all(db_session)] == ["c", "a", "b"]

    async def test_reorder_reports_missing_ids(self, db_session: AsyncSession):
        uow = UnitOfWork(db_session)
        handler = get_handler("gender")
        a = await handler.create(uow, {"name": "a", "label": "A"})
        ghost = uuid.uuid4()

        assert await handler.reorder(uow, [ghost, a.id]) == [ghost]
        assert a.sort_order == 1
