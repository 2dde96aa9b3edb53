"""Characters API router — public gallery and feed, admin-only management."""

import logging
import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_admin_user, get_db
from app.database import utcnow
from app.models.character import Character
from app.models.user import User
from app.schemas.auth import MessageResponse
from app.schemas.character import (
    CharacterCard,
    CharacterCreate,
    CharacterFeedResponse,
    CharacterResponse,
    CharacterUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/characters", tags=["characters"])

# Characters younger than this are flagged as new in the gallery.
NEW_CHARACTER_WINDOW = timedelta(days=7)

_VISIBLE = (Character.is_public.is_(True), Character.is_active.is_(True))


def _card(character: Character) -> CharacterCard:
    return CharacterCard(
        id=character.id,
        name=character.name,
        age=character.age,
        image_url=character.image_url,
        is_live=character.is_live,
        is_new=utcnow() - character.created_at < NEW_CHARACTER_WINDOW,
    )


def _attribute_filters(style: str | None, gender: str | None) -> list:
    filters = []
    if style:
        filters.append(Character.style == style)
    if gender:
        filters.append(Character.gender == gender)
    return filters


async def _get_character(db: AsyncSession, character_id: uuid.UUID) -> Character:
    character = await db.get(Character, character_id)
    if character is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Character not found",
        )
    return character


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=list[CharacterCard], summary="List public characters")
async def list_characters(db: AsyncSession = Depends(get_db)) -> list[CharacterCard]:
    result = await db.execute(select(Character).where(*_VISIBLE).order_by(Character.created_at.desc()))
    return [_card(c) for c in result.scalars().all()]


@router.get("/feed", response_model=CharacterFeedResponse, summary="Infinite-scroll character feed")
async def character_feed(
    cursor: uuid.UUID | None = Query(None, description="Id of the first character of the page"),
    limit: int = Query(16, ge=1, le=50),
    style: str | None = None,
    gender: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> CharacterFeedResponse:
    """Public, active, non-live characters, newest first. Live characters have their own section."""
    filters = [*_VISIBLE, Character.is_live.is_(False), *_attribute_filters(style, gender)]

    if cursor is not None:
        anchor = await db.get(Character, cursor)
        if anchor is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid cursor",
            )
        filters.append(
            or_(
                Character.created_at < anchor.created_at,
                and_(Character.created_at == anchor.created_at, Character.id <= anchor.id),
            )
        )

    result = await db.execute(
        select(Character).where(*filters).order_by(Character.created_at.desc(), Character.id.desc()).limit(limit + 1)
    )
    characters = list(result.scalars().all())

    next_cursor = None
    if len(characters) > limit:
        next_cursor = characters.pop().id

    return CharacterFeedResponse(items=[_card(c) for c in characters], next_cursor=next_cursor)


@router.get("/live", response_model=list[CharacterCard], summary="List live characters")
async def list_live_characters(
    style: str | None = None,
    gender: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> list[CharacterCard]:
    result = await db.execute(
        select(Character)
        .where(*_VISIBLE, Character.is_live.is_(True), *_attribute_filters(style, gender))
        .order_by(Character.created_at.desc())
    )
    return [_card(c) for c in result.scalars().all()]


@router.get("/{character_id}", response_model=CharacterResponse, summary="Get a character")
async def get_character(
    character_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> Character:
    return await _get_character(db, character_id)


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=CharacterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a character",
)
async def create_character(
    body: CharacterCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_admin_user),
) -> Character:
    character = Character(**body.model_dump(), created_by_id=admin.id)
    db.add(character)
    await db.flush()
    await db.refresh(character)
    logger.info("Admin %s created character %s", admin.id, character.id)
    return character


@router.patch("/{character_id}", response_model=CharacterResponse, summary="Update a character")
async def update_character(
    character_id: uuid.UUID,
    body: CharacterUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_admin_user),
) -> Character:
    character = await _get_character(db, character_id)
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(character, field, value)
    await db.flush()
    await db.refresh(character)
    return character


@router.delete("/{character_id}", response_model=MessageResponse, summary="Deactivate a character")
async def delete_character(
    character_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_admin_user),
) -> MessageResponse:
    """Soft delete: the character is hidden but its chats and media survive."""
    character = await _get_character(db, character_id)
    character.is_active = False
    await db.flush()
    logger.info("Admin %s deactivated character %s", admin.id, character.id)
    return MessageResponse(message="Character deleted")
