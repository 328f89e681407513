"""Prospect model: a lead not yet promoted to a user account."""

import enum
import uuid

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crm_api.models.base import Base, TimestampMixin, UUIDMixin


class ProspectStatus(enum.StrEnum):
    """Prospect lifecycle status."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class Prospect(Base, UUIDMixin, TimestampMixin):
    """A tenant lead identified by phone number."""

    __tablename__ = "prospects"

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    manager_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    phone_code: Mapped[str | None] = mapped_column(String(5), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProspectStatus.ACTIVE, server_default=ProspectStatus.ACTIVE.value
    )
    upgraded_to_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    # Plain reference: imports may be deleted while the records they created stay
    import_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    __table_args__ = (UniqueConstraint("client_id", "phone", name="uq_prospects_client_phone"),)
