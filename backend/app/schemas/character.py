"""Pydantic v2 request/response schemas for character endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class CharacterCreate(BaseModel):
    """Schema for creating a character. Attribute values are taxonomy option names."""

    name: str = Field(..., min_length=1, max_length=100)
    age: int = Field(..., ge=18, le=99)
    description: str | None = None
    image_url: str | None = Field(None, max_length=512)
    gender: str = Field(..., min_length=1, max_length=50)
    style: str = Field(..., min_length=1, max_length=50)
    ethnicity: str | None = Field(None, max_length=50)
    hair_style: str | None = Field(None, max_length=50)
    hair_color: str | None = Field(None, max_length=50)
    eye_color: str | None = Field(None, max_length=50)
    body_type: str | None = Field(None, max_length=50)
    breast_size: str | None = Field(None, max_length=50)
    personality: str | None = Field(None, max_length=50)
    relationship: str | None = Field(None, max_length=50)
    occupation: str | None = Field(None, max_length=50)
    voice: str | None = Field(None, max_length=50)
    kinks: list[str] = Field(default_factory=list)
    is_public: bool = True
    is_live: bool = False


class CharacterUpdate(BaseModel):
    """Partial character update. All fields optional."""

    name: str | None = Field(None, min_length=1, max_length=100)
    age: int | None = Field(None, ge=18, le=99)
    description: str | None = None
    image_url: str | None = Field(None, max_length=512)
    gender: str | None = Field(None, min_length=1, max_length=50)
    style: str | None = Field(None, min_length=1, max_length=50)
    ethnicity: str | None = Field(None, max_length=50)
    hair_style: str | None = Field(None, max_length=50)
    hair_color: str | None = Field(None, max_length=50)
    eye_color: str | None = Field(None, max_length=50)
    body_type: str | None = Field(None, max_length=50)
    breast_size: str | None = Field(None, max_length=50)
    personality: str | None = Field(None, max_length=50)
    relationship: str | None = Field(None, max_length=50)
    occupation: str | None = Field(None, max_length=50)
    voice: str | None = Field(None, max_length=50)
    kinks: list[str] | None = None
    is_public: bool | None = None
    is_live: bool | None = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class CharacterResponse(BaseModel):
    """Full character profile."""

    id: uuid.UUID
    name: str
    age: int
    description: str | None = None
    image_url: str | None = None
    gender: str
    style: str
    ethnicity: str | None = None
    hair_style: str | None = None
    hair_color: str | None = None
    eye_color: str | None = None
    body_type: str | None = None
    breast_size: str | None = None
    personality: str | None = None
    relationship: str | None = None
    occupation: str | None = None
    voice: str | None = None
    kinks: list[str] = Field(default_factory=list)
    is_public: bool
    is_live: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CharacterCard(BaseModel):
    """Gallery card for a character."""

    id: uuid.UUID
    name: str
    age: int
    image_url: str | None = None
    is_live: bool
    is_new: bool


class CharacterFeedResponse(BaseModel):
    """One page of the infinite-scroll feed. ``next_cursor`` is the first id of the next page."""

    items: list[CharacterCard]
    next_cursor: uuid.UUID | None = None
