"""Client model: a tenant organization."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from crm_api.models.base import Base, TimestampMixin, UUIDMixin


class Client(Base, UUIDMixin, TimestampMixin):
    """A tenant. Nearly every other record is scoped by ``client_id``."""

    __tablename__ = "clients"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
