"""Pydantic v2 schemas for character property taxonomy endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PropertyCreate(BaseModel):
    """Create a taxonomy option. ``gender_id``/``style_id`` are required for scoped types."""

    name: str = Field(..., min_length=1, max_length=100)
    label: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    emoji: str | None = Field(None, max_length=16)
    image_url: str | None = Field(None, max_length=512)
    video_url: str | None = Field(None, max_length=512)
    is_active: bool = True
    gender_id: uuid.UUID | None = None
    style_id: uuid.UUID | None = None


class PropertyUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    label: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    emoji: str | None = Field(None, max_length=16)
    image_url: str | None = Field(None, max_length=512)
    video_url: str | None = Field(None, max_length=512)
    is_active: bool | None = None
    gender_id: uuid.UUID | None = None
    style_id: uuid.UUID | None = None


class ReorderRequest(BaseModel):
    """Option ids in their new display order."""

    ids: list[uuid.UUID] = Field(..., min_length=1)


class PropertyResponse(BaseModel):
    id: uuid.UUID
    name: str
    label: str
    description: str | None = None
    emoji: str | None = None
    image_url: str | None = None
    video_url: str | None = None
    sort_order: int
    is_active: bool
    gender_id: uuid.UUID | None = None
    style_id: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
