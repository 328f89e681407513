"""ImportMappingTemplate model: a reusable header-to-field mapping."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from crm_api.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class ImportMappingTemplate(Base, UUIDMixin, TimestampMixin):
    """Named column mapping saved by a tenant.

    Templates are applied by value (header name -> field) so deleting one
    never affects imports that already used it.
    """

    __tablename__ = "import_mapping_templates"

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_foh: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    column_mapping: Mapped[dict[str, str]] = mapped_column(JSONType, nullable=False)
    headers: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    # Set per statement rather than per transaction; newest-wins matching relies on it
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), server_default=func.now(), nullable=False
    )

    __table_args__ = (UniqueConstraint("client_id", "name", name="uq_import_mapping_templates_client_name"),)
