"""Shared API dependencies — single import point for all routers.

Re-exports database session, authentication, authorization, and payment
client dependencies so that router modules can import everything they need
from one place::

    from app.api.deps import get_db, get_current_active_user, require_permission
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import (
    get_admin_user,
    get_current_active_user,
    get_current_user,
    has_permission,
    is_admin,
    require_permission,
)
from app.billing.dependencies import get_coinremitter_client, get_nowpayments_client
from app.database import UnitOfWork, get_db


async def get_uow(db: AsyncSession = Depends(get_db)) -> UnitOfWork:
    """Unit of work bound to the request session (committed by ``get_db``)."""
    return UnitOfWork(db)


__all__ = [
    "get_db",
    "get_uow",
    "get_current_user",
    "get_current_active_user",
    "get_admin_user",
    "has_permission",
    "is_admin",
    "require_permission",
    "get_coinremitter_client",
    "get_nowpayments_client",
]
