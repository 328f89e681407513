"""User model: tenant members, agents and API principals."""

import enum
import uuid
from typing import Any

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crm_api.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class UserRole(enum.StrEnum):
    """Role hierarchy used for access control and imported accounts."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    AGENT = "agent"
    STANDARD = "standard"

    @classmethod
    def parse(cls, value: str | None) -> "UserRole | None":
        """Resolve a free-text role from a CSV cell, or None when unknown."""
        if not value:
            return None
        key = value.strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            return None


class User(Base, UUIDMixin, TimestampMixin):
    """A user of a tenant.

    Phone and email are unique per tenant; imports either create users or are
    rejected when a row collides with one that already exists.
    """

    __tablename__ = "users"

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    phone_code: Mapped[str | None] = mapped_column(String(5), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    codigo: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Display name FOH files use to reference an agent, e.g. "ANDREA GARCIA"
    import_string: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserRole.STANDARD, server_default=UserRole.STANDARD.value
    )
    manager_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    custom_fields: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    # Plain reference: imports may be deleted while the records they created stay
    import_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    __table_args__ = (
        UniqueConstraint("client_id", "email", name="uq_users_client_email"),
        UniqueConstraint("client_id", "phone", name="uq_users_client_phone"),
        Index("ix_users_email", "email"),
        Index("ix_users_client_import_string", "client_id", "import_string"),
    )

    @property
    def full_name(self) -> str:
        """First and last name joined, skipping blanks."""
        return " ".join(part for part in (self.first_name, self.last_name) if part)
