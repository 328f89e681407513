"""Import pipeline Pydantic v2 request/response schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from crm_api.schemas.common import PaginationMeta


class ImportJobResponse(BaseModel):
    """Import status and counters."""

    id: UUID
    client_id: UUID
    user_id: UUID | None = None
    import_type: str
    status: str
    file_name: str | None = None
    total_records: int
    valid_count: int
    invalid_count: int
    progress: int
    records_created: int
    records_failed: int
    error_summary: str | None = None
    error_log: list[dict[str, Any]] | None = None
    unmatched_columns: list[dict[str, Any]] | None = None
    column_mapping: dict[str, str] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaginatedImportJobResponse(BaseModel):
    """Paginated list of imports."""

    items: list[ImportJobResponse]
    pagination: PaginationMeta


class ImportProgressResponse(BaseModel):
    """Counters for polling a running import."""

    id: UUID
    status: str
    total_records: int
    valid_count: int
    invalid_count: int
    progress: int
    records_created: int
    records_failed: int
    percent: int = Field(ge=0, le=100)
    error_summary: str | None = None


class MappingColumn(BaseModel):
    """One header column with its suggested target."""

    index: int
    header: str
    suggestion: str | None = Field(default=None, description="Suggested field; custom fields show as 'custom_field'")
    target: str | None = Field(default=None, description="Full suggested target, e.g. 'custom_field:Sede'")
    sample_data: list[str] = Field(default_factory=list)


class MatchedTemplate(BaseModel):
    """A saved template whose headers match the upload."""

    id: UUID
    name: str
    column_mapping: dict[str, str] = Field(description="Column index -> field, ready to confirm")


class MappingSuggestionsResponse(BaseModel):
    """Header analysis for the mapping step."""

    import_id: UUID
    columns: list[MappingColumn]
    total_rows: int
    unmatched_columns: list[dict[str, Any]] = Field(default_factory=list)
    matched_template: MatchedTemplate | None = None


class ConfirmMappingRequest(BaseModel):
    """Mapping confirmed by the user: column index (string) -> field or 'ignore'."""

    column_mapping: dict[str, str | None] = Field(min_length=1)


class StagingRowResponse(BaseModel):
    """A staged CSV row and its validation verdict."""

    id: UUID
    row_number: int
    phone_order: int | None = None
    codigo: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    phone_code: str | None = None
    email: str | None = None
    manager_email: str | None = None
    role: str | None = None
    custom_fields: dict[str, Any] | None = None
    crm_fields: dict[str, Any] | None = None
    error_message: str | None = None
    processed: bool

    model_config = {"from_attributes": True}


class PaginatedStagingRowResponse(BaseModel):
    """Paginated staging rows with the import's current counters."""

    items: list[StagingRowResponse]
    pagination: PaginationMeta
    valid_count: int
    invalid_count: int


class StagingRowUpdateRequest(BaseModel):
    """Inline edit of a staging row; omitted fields are left unchanged."""

    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    phone_code: str | None = None
    email: str | None = None
    codigo: str | None = None
    role: str | None = None
    manager_email: str | None = None


class RevalidateAffectedRequest(BaseModel):
    """Values a row had before an edit or delete."""

    row_id: UUID | None = None
    old_phone: str | None = None
    old_email: str | None = None


class RevalidationResponse(BaseModel):
    """Counters after a revalidation."""

    valid_count: int
    invalid_count: int
    revalidated: int | None = None


class AcceptColumnsRequest(BaseModel):
    """Unmatched column names to keep as custom fields."""

    column_names: list[str] = Field(min_length=1)
