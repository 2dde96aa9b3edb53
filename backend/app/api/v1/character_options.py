"""Character options API — CRUD and ordering for the property taxonomies.

One set of routes serves every taxonomy; ``{property_type}`` selects the
handler from the registry in ``app.services.character_properties``.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_admin_user, get_db, get_uow
from app.database import UnitOfWork
from app.schemas.auth import MessageResponse
from app.schemas.character_option import (
    PropertyCreate,
    PropertyResponse,
    PropertyUpdate,
    ReorderRequest,
)
from app.services.character_properties import (
    InvalidScopeError,
    PropertyHandler,
    UnknownPropertyTypeError,
    get_handler,
)

router = APIRouter(prefix="/api/v1/character-options", tags=["character-options"])


def get_property_handler(property_type: str) -> PropertyHandler:
    """Resolve the ``{property_type}`` path segment; unknown types are 404."""
    try:
        return get_handler(property_type)
    except UnknownPropertyTypeError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from None


def _not_found(handler: PropertyHandler) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{handler.tag} option not found",
    )


@router.get("/{property_type}", response_model=list[PropertyResponse], summary="List options")
async def list_options(
    gender_id: uuid.UUID | None = None,
    style_id: uuid.UUID | None = None,
    handler: PropertyHandler = Depends(get_property_handler),
    db: AsyncSession = Depends(get_db),
):
    """Options in display order. ``gender_id``/``style_id`` filter scoped types and are ignored otherwise."""
    return await handler.list_all(db, gender_id=gender_id, style_id=style_id)


@router.post(
    "/{property_type}",
    response_model=PropertyResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(get_admin_user)],
    summary="Create an option",
)
async def create_option(
    body: PropertyCreate,
    handler: PropertyHandler = Depends(get_property_handler),
    uow: UnitOfWork = Depends(get_uow),
):
    try:
        item = await handler.create(uow, body.model_dump())
    except InvalidScopeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from None
    await uow.session.refresh(item)
    return item


@router.put(
    "/{property_type}/reorder",
    response_model=MessageResponse,
    dependencies=[Depends(get_admin_user)],
    summary="Reorder options",
)
async def reorder_options(
    body: ReorderRequest,
    handler: PropertyHandler = Depends(get_property_handler),
    uow: UnitOfWork = Depends(get_uow),
) -> MessageResponse:
    missing = await handler.reorder(uow, body.ids)
    if missing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown {handler.tag} ids: {', '.join(str(i) for i in missing)}",
        )
    return MessageResponse(message=f"Reordered {len(body.ids)} {handler.tag} options")


@router.patch(
    "/{property_type}/{property_id}",
    response_model=PropertyResponse,
    dependencies=[Depends(get_admin_user)],
    summary="Update an option",
)
async def update_option(
    property_id: uuid.UUID,
    body: PropertyUpdate,
    handler: PropertyHandler = Depends(get_property_handler),
    uow: UnitOfWork = Depends(get_uow),
):
    try:
        item = await handler.update(uow, property_id, body.model_dump(exclude_unset=True))
    except InvalidScopeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from None
    if item is None:
        raise _not_found(handler)
    await uow.session.refresh(item)
    return item


@router.delete(
    "/{property_type}/{property_id}",
    response_model=MessageResponse,
    dependencies=[Depends(get_admin_user)],
    summary="Delete an option",
)
async def delete_option(
    property_id: uuid.UUID,
    handler: PropertyHandler = Depends(get_property_handler),
    uow: UnitOfWork = Depends(get_uow),
) -> MessageResponse:
    if not await handler.delete(uow, property_id):
        raise _not_found(handler)
    return MessageResponse(message=f"{handler.tag} option deleted")
