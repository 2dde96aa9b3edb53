"""Support ticket API — user-facing ticket threads and the admin support desk.

Users can open tickets, reply, and close their own tickets. Support staff
(admin roles or roles granting ``ticket`` permissions) triage, assign, and
move tickets through ``open -> in_progress -> resolved/closed``. Every status,
priority, and assignment change appends a ``TicketActivity`` audit row.
"""

import logging
import math
import uuid
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_active_user, get_db, has_permission, require_permission
from app.database import utcnow
from app.models.role import Role
from app.models.ticket import (
    RESOLVED_STATUSES,
    TICKET_CATEGORIES,
    TICKET_PRIORITIES,
    TICKET_STATUSES,
    Ticket,
    TicketActivity,
    TicketReply,
)
from app.models.user import User
from app.schemas.auth import UserSummary
from app.schemas.ticket import (
    ActivityResponse,
    NoteCreate,
    ReplyCreate,
    ReplyResponse,
    TicketAssign,
    TicketCreate,
    TicketListResponse,
    TicketPriorityUpdate,
    TicketResponse,
    TicketStatsResponse,
    TicketStatusUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/tickets", tags=["tickets"])
admin_router = APIRouter(prefix="/api/v1/admin/tickets", tags=["tickets", "admin"])

_PRIORITY_RANK = case({p: i for i, p in enumerate(TICKET_PRIORITIES)}, value=Ticket.priority)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _get_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> Ticket:
    ticket = await db.get(Ticket, ticket_id)
    if ticket is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Ticket not found",
        )
    return ticket


def _check_access(user: User, ticket: Ticket, action: str) -> None:
    """Owners always have access; others need the ``ticket.<action>`` permission."""
    if ticket.user_id != user.id and not has_permission(user, "ticket", action):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have access to this ticket",
        )


async def _reply_counts(db: AsyncSession, ticket_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    if not ticket_ids:
        return {}
    result = await db.execute(
        select(TicketReply.ticket_id, func.count())
        .where(TicketReply.ticket_id.in_(ticket_ids))
        .group_by(TicketReply.ticket_id)
    )
    return {ticket_id: count for ticket_id, count in result.all()}


async def _page(
    db: AsyncSession,
    filters: list,
    order_by: list,
    page: int,
    page_size: int,
) -> TicketListResponse:
    total = (await db.execute(select(func.count()).select_from(Ticket).where(*filters))).scalar_one()
    result = await db.execute(
        select(Ticket).where(*filters).order_by(*order_by).offset((page - 1) * page_size).limit(page_size)
    )
    tickets = list(result.scalars().all())
    counts = await _reply_counts(db, [t.id for t in tickets])

    items = []
    for ticket in tickets:
        item = TicketResponse.model_validate(ticket)
        item.reply_count = counts.get(ticket.id, 0)
        items.append(item)

    return TicketListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )


async def _add_activity(
    db: AsyncSession,
    ticket: Ticket,
    user: User,
    activity_type: str,
    content: str,
    metadata: dict | None = None,
) -> TicketActivity:
    activity = TicketActivity(
        ticket_id=ticket.id,
        user_id=user.id,
        type=activity_type,
        content=content,
        meta=metadata,
    )
    db.add(activity)
    await db.flush()
    return activity


def _set_status(ticket: Ticket, new_status: str) -> None:
    """Apply a status change; done states stamp resolved_at once, reopening clears it."""
    if new_status in RESOLVED_STATUSES:
        if ticket.resolved_at is None:
            ticket.resolved_at = utcnow()
    else:
        ticket.resolved_at = None
    ticket.status = new_status


# ---------------------------------------------------------------------------
# User endpoints
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a support ticket",
)
async def create_ticket(
    body: TicketCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Ticket:
    ticket = Ticket(user_id=current_user.id, **body.model_dump())
    db.add(ticket)
    await db.flush()

    await _add_activity(
        db,
        ticket,
        current_user,
        "created",
        f"Ticket created with priority {ticket.priority} in category {ticket.category}",
    )
    logger.info("User %s opened ticket %s", current_user.id, ticket.id)
    return ticket


@router.get("/mine", response_model=TicketListResponse, summary="List my tickets")
async def list_my_tickets(
    status_filter: Literal["open", "in_progress", "resolved", "closed"] | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> TicketListResponse:
    filters = [Ticket.user_id == current_user.id]
    if status_filter:
        filters.append(Ticket.status == status_filter)
    return await _page(db, filters, [Ticket.created_at.desc()], page, page_size)


@router.get("/{ticket_id}", response_model=TicketResponse, summary="Get a ticket")
async def get_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> TicketResponse:
    ticket = await _get_ticket(db, ticket_id)
    _check_access(current_user, ticket, "read")
    response = TicketResponse.model_validate(ticket)
    response.reply_count = (await _reply_counts(db, [ticket.id])).get(ticket.id, 0)
    return response


@router.get("/{ticket_id}/replies", response_model=list[ReplyResponse], summary="List ticket replies")
async def list_replies(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> list[TicketReply]:
    ticket = await _get_ticket(db, ticket_id)
    _check_access(current_user, ticket, "read")

    filters = [TicketReply.ticket_id == ticket.id]
    # Internal notes are for support staff only
    if not has_permission(current_user, "ticket", "read"):
        filters.append(TicketReply.is_internal.is_(False))

    result = await db.execute(select(TicketReply).where(*filters).order_by(TicketReply.created_at))
    return list(result.scalars().all())


@router.post(
    "/{ticket_id}/replies",
    response_model=ReplyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Reply to a ticket",
)
async def add_reply(
    ticket_id: uuid.UUID,
    body: ReplyCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> TicketReply:
    ticket = await _get_ticket(db, ticket_id)
    _check_access(current_user, ticket, "update")

    if ticket.status == "closed":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot reply to a closed ticket",
        )

    is_staff = has_permission(current_user, "ticket", "update")
    reply = TicketReply(
        ticket_id=ticket.id,
        user_id=current_user.id,
        message=body.message,
        is_internal=body.is_internal and is_staff,
    )
    db.add(reply)
    ticket.updated_at = utcnow()
    await db.flush()
    return reply


@router.post("/{ticket_id}/close", response_model=TicketResponse, summary="Close my ticket")
async def close_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Ticket:
    ticket = await _get_ticket(db, ticket_id)
    if ticket.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only close your own tickets",
        )
    if ticket.status == "closed":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Ticket is already closed",
        )

    ticket.status = "closed"
    ticket.resolved_at = utcnow()
    await db.flush()
    return ticket


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@admin_router.get(
    "",
    response_model=TicketListResponse,
    dependencies=[Depends(require_permission("ticket", "read"))],
    summary="List all tickets",
)
async def list_tickets(
    status_filter: Literal["open", "in_progress", "resolved", "closed"] | None = Query(None, alias="status"),
    priority: Literal["low", "normal", "high", "urgent"] | None = None,
    category: Literal["billing", "technical", "account", "content", "other"] | None = None,
    assigned_to_id: str | None = Query(None, description="User id, or 'unassigned'"),
    search: str | None = Query(None, description="Search subject and description"),
    sort_by: Literal["created_at", "updated_at", "priority"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> TicketListResponse:
    filters = []
    if status_filter:
        filters.append(Ticket.status == status_filter)
    if priority:
        filters.append(Ticket.priority == priority)
    if category:
        filters.append(Ticket.category == category)
    if assigned_to_id == "unassigned":
        filters.append(Ticket.assigned_to_id.is_(None))
    elif assigned_to_id:
        try:
            filters.append(Ticket.assigned_to_id == uuid.UUID(assigned_to_id))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="assigned_to_id must be a UUID or 'unassigned'",
            ) from None
    if search:
        pattern = f"%{search}%"
        filters.append(or_(Ticket.subject.ilike(pattern), Ticket.description.ilike(pattern)))

    column = _PRIORITY_RANK if sort_by == "priority" else getattr(Ticket, sort_by)
    order = column.asc() if sort_order == "asc" else column.desc()
    return await _page(db, filters, [order, Ticket.id], page, page_size)


@admin_router.get(
    "/stats",
    response_model=TicketStatsResponse,
    dependencies=[Depends(require_permission("ticket", "read"))],
    summary="Ticket statistics",
)
async def ticket_stats(db: AsyncSession = Depends(get_db)) -> TicketStatsResponse:
    async def _counts(column, values: tuple[str, ...]) -> dict[str, int]:
        result = await db.execute(select(column, func.count()).group_by(column))
        found = dict(result.all())
        return {value: found.get(value, 0) for value in values}

    by_status = await _counts(Ticket.status, TICKET_STATUSES)
    by_priority = await _counts(Ticket.priority, TICKET_PRIORITIES)
    by_category = await _counts(Ticket.category, TICKET_CATEGORIES)

    result = await db.execute(
        select(Ticket.created_at, Ticket.resolved_at).where(
            Ticket.status.in_(RESOLVED_STATUSES),
            Ticket.resolved_at.is_not(None),
        )
    )
    durations = [(resolved - created).total_seconds() / 3600 for created, resolved in result.all()]
    avg_hours = round(sum(durations) / len(durations), 1) if durations else None

    return TicketStatsResponse(
        total=sum(by_status.values()),
        by_status=by_status,
        by_priority=by_priority,
        by_category=by_category,
        avg_resolution_hours=avg_hours,
    )


@admin_router.get("/assigned-to-me", response_model=TicketListResponse, summary="Tickets assigned to me")
async def list_assigned_to_me(
    status_filter: Literal["open", "in_progress", "resolved", "closed"] | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("ticket", "read")),
) -> TicketListResponse:
    filters = [Ticket.assigned_to_id == current_user.id]
    if status_filter:
        filters.append(Ticket.status == status_filter)
    return await _page(db, filters, [Ticket.updated_at.desc()], page, page_size)


@admin_router.get(
    "/assignable-users",
    response_model=list[UserSummary],
    dependencies=[Depends(require_permission("ticket", "update"))],
    summary="Users who can be assigned tickets",
)
async def list_assignable_users(
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> list[User]:
    """Active users whose role is an admin role or grants ``ticket.update``."""
    query = select(User).join(Role, User.role_id == Role.id).where(User.is_active.is_(True))
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    result = await db.execute(query.order_by(User.name))
    users = [user for user in result.scalars().all() if user.role is not None and user.role.allows("ticket", "update")]
    return users[:50]


@admin_router.post("/{ticket_id}/assign", response_model=TicketResponse, summary="Assign a ticket")
async def assign_ticket(
    ticket_id: uuid.UUID,
    body: TicketAssign,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("ticket", "update")),
) -> Ticket:
    """Assign to the given user (default: the caller). An open ticket moves to in_progress."""
    ticket = await _get_ticket(db, ticket_id)

    assignee_id = body.assigned_to_id or current_user.id
    assignee = await db.get(User, assignee_id)
    if assignee is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assignee not found",
        )

    old_status = ticket.status
    ticket.assigned_to_id = assignee.id
    if old_status == "open":
        _set_status(ticket, "in_progress")
    await db.flush()

    await _add_activity(
        db,
        ticket,
        current_user,
        "assigned",
        f"Ticket assigned to {assignee.name}",
        {"assigned_to_id": str(assignee.id), "assigned_to_name": assignee.name},
    )
    if ticket.status != old_status:
        await _add_activity(
            db,
            ticket,
            current_user,
            "status_change",
            f"Status changed from {old_status} to {ticket.status}",
            {"old_status": old_status, "new_status": ticket.status},
        )

    logger.info("Ticket %s assigned to %s by %s", ticket.id, assignee.id, current_user.id)
    return ticket


@admin_router.patch("/{ticket_id}/status", response_model=TicketResponse, summary="Change ticket status")
async def update_ticket_status(
    ticket_id: uuid.UUID,
    body: TicketStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("ticket", "update")),
) -> Ticket:
    ticket = await _get_ticket(db, ticket_id)
    old_status = ticket.status
    _set_status(ticket, body.status)
    await db.flush()

    await _add_activity(
        db,
        ticket,
        current_user,
        "status_change",
        f"Status changed from {old_status} to {body.status}",
        {"old_status": old_status, "new_status": body.status},
    )
    return ticket


@admin_router.patch("/{ticket_id}/priority", response_model=TicketResponse, summary="Change ticket priority")
async def update_ticket_priority(
    ticket_id: uuid.UUID,
    body: TicketPriorityUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("ticket", "update")),
) -> Ticket:
    ticket = await _get_ticket(db, ticket_id)
    old_priority = ticket.priority
    ticket.priority = body.priority
    await db.flush()

    await _add_activity(
        db,
        ticket,
        current_user,
        "priority_change",
        f"Priority changed from {old_priority} to {body.priority}",
        {"old_priority": old_priority, "new_priority": body.priority},
    )
    return ticket


@admin_router.get(
    "/{ticket_id}/activities",
    response_model=list[ActivityResponse],
    dependencies=[Depends(require_permission("ticket", "read"))],
    summary="Ticket audit trail",
)
async def list_activities(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> list[TicketActivity]:
    ticket = await _get_ticket(db, ticket_id)
    result = await db.execute(
        select(TicketActivity).where(TicketActivity.ticket_id == ticket.id).order_by(TicketActivity.created_at.desc())
    )
    return list(result.scalars().all())


@admin_router.post(
    "/{ticket_id}/activities",
    response_model=ActivityResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an internal note",
)
async def add_note(
    ticket_id: uuid.UUID,
    body: NoteCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("ticket", "update")),
) -> TicketActivity:
    ticket = await _get_ticket(db, ticket_id)
    return await _add_activity(db, ticket, current_user, "note", body.content)
