"""Mapping template API endpoints.

GET /mapping-templates, POST /mapping-templates, POST /mapping-templates/match,
DELETE /mapping-templates/{template_id}.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.core.dependencies import IMPORT_ROLES, get_async_session, require_role
from crm_api.models.user import User
from crm_api.schemas.mapping_templates import (
    MappingTemplateCreateRequest,
    MappingTemplateMatchRequest,
    MappingTemplateResponse,
)
from crm_api.services import mapping_template_service

router = APIRouter(prefix="/mapping-templates", tags=["mapping-templates"])


@router.get("", response_model=list[MappingTemplateResponse])
async def list_templates(
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    is_foh: bool | None = None,
) -> list[MappingTemplateResponse]:
    """List the tenant's mapping templates."""
    templates = await mapping_template_service.list_templates(session, current_user.client_id, is_foh=is_foh)
    return [MappingTemplateResponse.model_validate(t) for t in templates]


@router.post("", response_model=MappingTemplateResponse, status_code=201)
async def create_template(
    body: MappingTemplateCreateRequest,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> MappingTemplateResponse:
    """Save a mapping template under a unique name."""
    template = await mapping_template_service.save_template(
        session,
        client_id=current_user.client_id,
        name=body.name,
        is_foh=body.is_foh,
        column_mapping=body.column_mapping,
        headers=body.headers,
    )
    return MappingTemplateResponse.model_validate(template)


@router.post("/match", response_model=MappingTemplateResponse | None)
async def match_template(
    body: MappingTemplateMatchRequest,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> MappingTemplateResponse | None:
    """Return the newest template whose header set equals the given headers, or null."""
    template = await mapping_template_service.find_matching_template(
        session, client_id=current_user.client_id, headers=body.headers, is_foh=body.is_foh
    )
    if template is None:
        return None
    return MappingTemplateResponse.model_validate(template)


@router.delete("/{template_id}", status_code=204)
async def delete_template(
    template_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> None:
    """Delete a mapping template."""
    template = await mapping_template_service.get_template(session, template_id, client_id=current_user.client_id)
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Mapping template not found")
    await mapping_template_service.delete_template(session, template)
