"""Role model — named permission sets."""

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

# Resources a role's permission map may grant actions on.
RESOURCES = (
    "user",
    "character",
    "chat",
    "media",
    "content",
    "visual_novel",
    "ticket",
    "subscription",
    "affiliate",
    "auth",
)

ACTIONS = ("create", "read", "update", "delete")

# Role names that bypass permission checks (compared case-insensitively).
ADMIN_ROLE_NAMES = frozenset({"admin", "superadmin"})


class Role(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A role with a ``{resource: {action: bool}}`` permission map."""

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    permissions: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    users: Mapped[list["User"]] = relationship("User", back_populates="role")  # noqa: F821

    @property
    def is_admin(self) -> bool:
        return self.name.lower() in ADMIN_ROLE_NAMES

    def allows(self, resource: str, action: str) -> bool:
        """Return True if this role grants ``action`` on ``resource``."""
        if self.is_admin:
            return True
        grants = (self.permissions or {}).get(resource) or {}
        return bool(grants.get(action, False))

    def __repr__(self) -> str:
        return f"<Role name={self.name!r}>"
