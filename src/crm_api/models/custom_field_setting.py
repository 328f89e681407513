"""CustomFieldSetting model: a tenant's known custom/CRM field labels."""

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crm_api.models.base import Base, TimestampMixin, UUIDMixin


class CustomFieldSetting(Base, UUIDMixin, TimestampMixin):
    """A custom field label shown for the tenant's users."""

    __tablename__ = "custom_field_settings"

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    __table_args__ = (UniqueConstraint("client_id", "label", name="uq_custom_field_settings_client_label"),)
