"""Pydantic v2 request/response schemas for support ticket endpoints."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

TicketStatus = Literal["open", "in_progress", "resolved", "closed"]
TicketPriority = Literal["low", "normal", "high", "urgent"]
TicketCategory = Literal["billing", "technical", "account", "content", "other"]

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class TicketCreate(BaseModel):
    """Schema for opening a ticket."""

    subject: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=20, max_length=5000)
    category: TicketCategory
    priority: TicketPriority = "normal"


class ReplyCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
    is_internal: bool = False


class TicketAssign(BaseModel):
    """Assign a ticket. Omitting the assignee assigns it to the caller."""

    assigned_to_id: uuid.UUID | None = None


class TicketStatusUpdate(BaseModel):
    status: TicketStatus


class TicketPriorityUpdate(BaseModel):
    priority: TicketPriority


class NoteCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class TicketResponse(BaseModel):
    """Ticket as returned by the API."""

    id: uuid.UUID
    user_id: uuid.UUID
    subject: str
    description: str
    category: str
    priority: str
    status: str
    assigned_to_id: uuid.UUID | None = None
    resolved_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    reply_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class TicketListResponse(BaseModel):
    """Paginated list of tickets."""

    items: list[TicketResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ReplyResponse(BaseModel):
    id: uuid.UUID
    ticket_id: uuid.UUID
    user_id: uuid.UUID
    message: str
    is_internal: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ActivityResponse(BaseModel):
    id: uuid.UUID
    ticket_id: uuid.UUID
    user_id: uuid.UUID
    type: str
    content: str
    metadata: dict | None = Field(None, validation_alias="meta")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TicketStatsResponse(BaseModel):
    """Ticket counts for the admin dashboard."""

    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    by_category: dict[str, int]
    avg_resolution_hours: float | None = None
