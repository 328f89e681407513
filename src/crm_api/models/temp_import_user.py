"""TempImportUser model: one staged CSV row of an import."""

import uuid
from typing import Any

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crm_api.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class TempImportUser(Base, UUIDMixin, TimestampMixin):
    """A staging row awaiting validation and commit.

    ``error_message`` is None exactly when the row is valid. ``row_number`` is
    the 1-based position of the data row in the uploaded file and decides
    which of two colliding rows is reported as the duplicate.
    """

    __tablename__ = "temp_import_users"

    import_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("imports.id", ondelete="CASCADE"), nullable=False
    )
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    phone_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Unbounded so any cell can be staged; the validator enforces target widths
    codigo: Mapped[str | None] = mapped_column(Text, nullable=True)
    first_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    manager_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str | None] = mapped_column(Text, nullable=True)
    custom_fields: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    crm_fields: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    __table_args__ = (
        Index("ix_temp_import_users_import_row", "import_id", "row_number"),
        Index("ix_temp_import_users_import_phone", "import_id", "phone"),
        Index("ix_temp_import_users_import_email", "import_id", "email"),
    )

    @property
    def is_valid(self) -> bool:
        return self.error_message is None
