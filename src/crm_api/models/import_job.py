"""ImportJob model: one CSV upload moving through the import pipeline."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crm_api.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class ImportType(enum.StrEnum):
    """What a committed row becomes."""

    USER = "user"
    PROSPECT = "prospect"
    FOH = "foh"


class ImportStatus(enum.StrEnum):
    """Import lifecycle status."""

    PENDING = "pending"
    MAPPING = "mapping"
    VALIDATING = "validating"
    VALIDATED = "validated"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[ImportStatus] = frozenset(
    {ImportStatus.COMPLETED, ImportStatus.ERROR, ImportStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: dict[ImportStatus, frozenset[ImportStatus]] = {
    ImportStatus.PENDING: frozenset({ImportStatus.MAPPING, ImportStatus.VALIDATING, ImportStatus.CANCELLED}),
    ImportStatus.MAPPING: frozenset({ImportStatus.VALIDATING, ImportStatus.CANCELLED}),
    ImportStatus.VALIDATING: frozenset({ImportStatus.VALIDATED, ImportStatus.ERROR, ImportStatus.CANCELLED}),
    ImportStatus.VALIDATED: frozenset({ImportStatus.VALIDATING, ImportStatus.PROCESSING, ImportStatus.CANCELLED}),
    ImportStatus.PROCESSING: frozenset({ImportStatus.COMPLETED, ImportStatus.ERROR, ImportStatus.CANCELLED}),
    ImportStatus.COMPLETED: frozenset(),
    ImportStatus.ERROR: frozenset(),
    ImportStatus.CANCELLED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Return True when ``current -> target`` is a legal status change."""
    return ImportStatus(target) in ALLOWED_TRANSITIONS[ImportStatus(current)]


def statuses_allowing(target: str) -> list[ImportStatus]:
    """Statuses that may move to ``target``, for compare-and-set UPDATEs."""
    wanted = ImportStatus(target)
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if wanted in targets]


class ImportJob(Base, UUIDMixin, TimestampMixin):
    """Tracks a CSV import for one tenant.

    The row is the durable job state: status, counters and error log are
    written as the pipeline advances, so progress survives restarts.
    """

    __tablename__ = "imports"

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    import_type: Mapped[str] = mapped_column(String(20), nullable=False, default=ImportType.USER)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ImportStatus.PENDING, server_default=ImportStatus.PENDING.value
    )
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # {"storage", "key", "filename", "size", "mime_type"}
    file_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Record counts
    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    valid_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    invalid_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    records_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    records_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Error tracking
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_log: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)

    # Mapping state
    unmatched_columns: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    column_mapping: Mapped[dict[str, str] | None] = mapped_column(JSONType, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_imports_status", "status"),
        Index("ix_imports_client_created", "client_id", "created_at"),
    )

    @property
    def is_foh(self) -> bool:
        return self.import_type == ImportType.FOH

    @property
    def is_terminal(self) -> bool:
        return ImportStatus(self.status) in TERMINAL_STATUSES
