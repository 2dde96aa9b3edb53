"""Pydantic v2 request/response schemas for role management."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PermissionValue(BaseModel):
    """CRUD grants on one resource."""

    create: bool
    read: bool
    update: bool
    delete: bool

    model_config = ConfigDict(extra="forbid")


class Permissions(BaseModel):
    """Full permission map; every resource must be present."""

    user: PermissionValue
    character: PermissionValue
    chat: PermissionValue
    media: PermissionValue
    content: PermissionValue
    visual_novel: PermissionValue
    ticket: PermissionValue
    subscription: PermissionValue
    affiliate: PermissionValue
    auth: PermissionValue

    model_config = ConfigDict(extra="forbid")


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    permissions: Permissions


class RoleUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    permissions: Permissions


class RoleMember(BaseModel):
    id: uuid.UUID
    name: str

    model_config = ConfigDict(from_attributes=True)


class RoleResponse(BaseModel):
    id: uuid.UUID
    name: str
    permissions: dict[str, dict[str, bool]]
    user_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleListItem(RoleResponse):
    """A role with a preview of up to four of its members."""

    users: list[RoleMember] = []
