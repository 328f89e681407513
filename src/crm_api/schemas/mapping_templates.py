"""Mapping template Pydantic v2 schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class MappingTemplateCreateRequest(BaseModel):
    """Save a header -> field mapping under a name."""

    name: str = Field(min_length=1, max_length=255)
    is_foh: bool = False
    column_mapping: dict[str, str] = Field(min_length=1, description="Header text -> target field")
    headers: list[str] = Field(min_length=1)


class MappingTemplateMatchRequest(BaseModel):
    """Headers of a new upload to match against saved templates."""

    headers: list[str] = Field(min_length=1)
    is_foh: bool = False


class MappingTemplateResponse(BaseModel):
    """A saved mapping template."""

    id: UUID
    name: str
    is_foh: bool
    column_mapping: dict[str, str]
    headers: list[str]
    created_at: datetime

    model_config = {"from_attributes": True}
