"""Roles admin API — named permission maps behind ``require_permission``."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_admin_user, get_db
from app.models.role import Role
from app.models.user import User
from app.schemas.auth import MessageResponse
from app.schemas.role import RoleCreate, RoleListItem, RoleMember, RoleResponse, RoleUpdate

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/admin/roles",
    tags=["roles", "admin"],
    dependencies=[Depends(get_admin_user)],
)

MEMBER_PREVIEW = 4


async def _get_role(db: AsyncSession, role_id: uuid.UUID) -> Role:
    role = await db.get(Role, role_id)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Role not found",
        )
    return role


async def _ensure_name_free(db: AsyncSession, name: str) -> None:
    if (await db.execute(select(Role.id).where(Role.name == name))).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A role with this name already exists",
        )


async def _user_count(db: AsyncSession, role_id: uuid.UUID) -> int:
    result = await db.execute(select(func.count()).select_from(User).where(User.role_id == role_id))
    return result.scalar_one()


def _to_response(role: Role, user_count: int) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        permissions=role.permissions,
        user_count=user_count,
        created_at=role.created_at,
        updated_at=role.updated_at,
    )


@router.get("", response_model=list[RoleListItem], summary="List roles")
async def list_roles(db: AsyncSession = Depends(get_db)) -> list[RoleListItem]:
    """All roles, newest first, with member counts and a short member preview."""
    roles = (await db.execute(select(Role).order_by(Role.created_at.desc(), Role.name))).scalars().all()
    grouped = await db.execute(
        select(User.role_id, func.count()).where(User.role_id.is_not(None)).group_by(User.role_id)
    )
    counts = dict(grouped.all())

    items = []
    for role in roles:
        members = await db.execute(
            select(User).where(User.role_id == role.id).order_by(User.name).limit(MEMBER_PREVIEW)
        )
        item = RoleListItem(
            **_to_response(role, counts.get(role.id, 0)).model_dump(),
            users=[RoleMember.model_validate(user) for user in members.scalars().all()],
        )
        items.append(item)
    return items


@router.get("/{role_id}", response_model=RoleResponse, summary="Get a role")
async def get_role(role_id: uuid.UUID, db: AsyncSession = Depends(get_db)) -> RoleResponse:
    role = await _get_role(db, role_id)
    return _to_response(role, await _user_count(db, role.id))


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED, summary="Create a role")
async def create_role(
    body: RoleCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_admin_user),
) -> RoleResponse:
    await _ensure_name_free(db, body.name)

    role = Role(name=body.name, permissions=body.permissions.model_dump())
    db.add(role)
    await db.flush()
    await db.refresh(role)

    logger.info("Admin %s created role %r", admin.id, role.name)
    return _to_response(role, 0)


@router.put("/{role_id}", response_model=RoleResponse, summary="Replace a role's name and permissions")
async def update_role(
    role_id: uuid.UUID,
    body: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_admin_user),
) -> RoleResponse:
    role = await _get_role(db, role_id)
    if body.name != role.name:
        await _ensure_name_free(db, body.name)

    role.name = body.name
    role.permissions = body.permissions.model_dump()
    await db.flush()
    await db.refresh(role)

    logger.info("Admin %s updated role %r", admin.id, role.name)
    return _to_response(role, await _user_count(db, role.id))


@router.delete("/{role_id}", response_model=MessageResponse, summary="Delete a role")
async def delete_role(
    role_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_admin_user),
) -> MessageResponse:
    """Delete an unassigned role. Roles still held by users are refused with 409."""
    role = await _get_role(db, role_id)

    assigned = await _user_count(db, role.id)
    if assigned > 0:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot delete role: {assigned} user(s) are still assigned to this role",
        )

    await db.execute(delete(Role).where(Role.id == role.id))
    db.expunge(role)

    logger.info("Admin %s deleted role %r", admin.id, role.name)
    return MessageResponse(message="Role deleted")
