"""Financial categories admin API — CRUD over income/expense buckets."""

import math
import uuid
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_admin_user, get_db
from app.models.financial import FinancialCategory, FinancialTransaction
from app.schemas.auth import MessageResponse
from app.schemas.financial import (
    CategoryCreate,
    CategoryListResponse,
    CategoryResponse,
    CategoryUpdate,
    Pagination,
)

router = APIRouter(
    prefix="/api/v1/admin/financial-categories",
    tags=["financial", "admin"],
    dependencies=[Depends(get_admin_user)],
)


async def _get_category(db: AsyncSession, category_id: uuid.UUID) -> FinancialCategory:
    category = await db.get(FinancialCategory, category_id)
    if category is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Category not found",
        )
    return category


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: uuid.UUID | None = None) -> None:
    query = select(FinancialCategory.id).where(FinancialCategory.name == name)
    if exclude_id is not None:
        query = query.where(FinancialCategory.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Category with this name already exists",
        )


@router.get("", response_model=CategoryListResponse, summary="List financial categories")
async def list_categories(
    type: Literal["income", "expense"] | None = None,
    group: str | None = None,
    is_active: bool | None = None,
    search: str | None = Query(None, description="Search name, label, or description"),
    sort_by: Literal["name", "label", "sort_order", "created_at"] = "sort_order",
    sort_order: Literal["asc", "desc"] = "asc",
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> CategoryListResponse:
    filters = []
    if type:
        filters.append(FinancialCategory.type == type)
    if group:
        filters.append(FinancialCategory.group == group)
    if is_active is not None:
        filters.append(FinancialCategory.is_active.is_(is_active))
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                FinancialCategory.name.ilike(pattern),
                FinancialCategory.label.ilike(pattern),
                FinancialCategory.description.ilike(pattern),
            )
        )

    total = (await db.execute(select(func.count()).select_from(FinancialCategory).where(*filters))).scalar_one()

    column = getattr(FinancialCategory, sort_by)
    order = column.asc() if sort_order == "asc" else column.desc()
    result = await db.execute(
        select(FinancialCategory)
        .where(*filters)
        .order_by(order, FinancialCategory.name)
        .offset((page - 1) * size)
        .limit(size)
    )

    return CategoryListResponse(
        items=[CategoryResponse.model_validate(c) for c in result.scalars().all()],
        pagination=Pagination(page=page, total=total, total_pages=math.ceil(total / size), size=size),
    )


@router.get("/groups", response_model=list[str], summary="Distinct category groups")
async def list_groups(db: AsyncSession = Depends(get_db)) -> list[str]:
    result = await db.execute(select(FinancialCategory.group).distinct().order_by(FinancialCategory.group))
    return list(result.scalars().all())


@router.get("/{category_id}", response_model=CategoryResponse, summary="Get a category")
async def get_category(
    category_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> FinancialCategory:
    return await _get_category(db, category_id)


@router.post(
    "",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a category",
)
async def create_category(
    body: CategoryCreate,
    db: AsyncSession = Depends(get_db),
) -> FinancialCategory:
    await _ensure_name_free(db, body.name)
    category = FinancialCategory(**body.model_dump())
    db.add(category)
    await db.flush()
    await db.refresh(category)
    return category


@router.patch("/{category_id}", response_model=CategoryResponse, summary="Update a category")
async def update_category(
    category_id: uuid.UUID,
    body: CategoryUpdate,
    db: AsyncSession = Depends(get_db),
) -> FinancialCategory:
    category = await _get_category(db, category_id)
    update_data = body.model_dump(exclude_unset=True)

    if "name" in update_data and update_data["name"] != category.name:
        await _ensure_name_free(db, update_data["name"], exclude_id=category.id)

    for field, value in update_data.items():
        setattr(category, field, value)

    await db.flush()
    await db.refresh(category)
    return category


@router.delete("/{category_id}", response_model=MessageResponse, summary="Delete a category")
async def delete_category(
    category_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    category = await _get_category(db, category_id)

    in_use = await db.execute(
        select(func.count()).select_from(FinancialTransaction).where(FinancialTransaction.category_id == category.id)
    )
    if in_use.scalar_one() > 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Category has transactions. Deactivate it instead.",
        )

    await db.delete(category)
    await db.flush()
    return MessageResponse(message="Category deleted")
