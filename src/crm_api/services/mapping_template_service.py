"""Mapping template service: named, reusable header-to-field mappings."""

import uuid

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.lib.importer.errors import TemplateValidationError
from crm_api.lib.importer.sniffer import header_key
from crm_api.models.import_mapping_template import ImportMappingTemplate


async def list_templates(
    session: AsyncSession,
    client_id: uuid.UUID,
    *,
    is_foh: bool | None = None,
) -> list[ImportMappingTemplate]:
    """List a tenant's templates ordered by name.

    Args:
        session: Database session.
        client_id: Tenant ID.
        is_foh: Restrict to FOH (True) or standard (False) templates.

    Returns:
        The templates.
    """
    query = select(ImportMappingTemplate).where(ImportMappingTemplate.client_id == client_id)
    if is_foh is not None:
        query = query.where(ImportMappingTemplate.is_foh.is_(is_foh))
    result = await session.execute(query.order_by(ImportMappingTemplate.name))
    return list(result.scalars().all())


async def get_template(
    session: AsyncSession, template_id: uuid.UUID, *, client_id: uuid.UUID
) -> ImportMappingTemplate | None:
    """Get a tenant's template by ID, or None."""
    result = await session.execute(
        select(ImportMappingTemplate).where(
            ImportMappingTemplate.id == template_id, ImportMappingTemplate.client_id == client_id
        )
    )
    return result.scalar_one_or_none()


async def save_template(
    session: AsyncSession,
    *,
    client_id: uuid.UUID,
    name: str,
    is_foh: bool,
    column_mapping: dict[str, str],
    headers: list[str],
) -> ImportMappingTemplate:
    """Persist a new template.

    Args:
        session: Database session.
        client_id: Tenant ID.
        name: Template name, unique per tenant.
        is_foh: Whether the template is for FOH imports.
        column_mapping: Header text -> target field.
        headers: Original header row, in file order.

    Returns:
        The created template.

    Raises:
        TemplateValidationError: If a part is empty or the name is taken.
    """
    clean_name = name.strip()
    clean_mapping = {h.strip(): f.strip() for h, f in column_mapping.items() if h.strip() and f and f.strip()}
    clean_headers = [h.strip() for h in headers if h.strip()]
    if not clean_name:
        msg = "Template name is required"
        raise TemplateValidationError(msg)
    if not clean_mapping:
        msg = "Template mapping is required"
        raise TemplateValidationError(msg)
    if not clean_headers:
        msg = "Template headers are required"
        raise TemplateValidationError(msg)

    existing = await session.execute(
        select(ImportMappingTemplate.id).where(
            ImportMappingTemplate.client_id == client_id,
            func.lower(ImportMappingTemplate.name) == clean_name.lower(),
        )
    )
    if existing.scalar_one_or_none() is not None:
        msg = f"A template named '{clean_name}' already exists"
        raise TemplateValidationError(msg)

    template = ImportMappingTemplate(
        client_id=client_id,
        name=clean_name,
        is_foh=is_foh,
        column_mapping=clean_mapping,
        headers=clean_headers,
    )
    session.add(template)
    await session.commit()
    await session.refresh(template)
    logger.info(f"Saved mapping template '{clean_name}' for client {client_id}")
    return template


async def delete_template(session: AsyncSession, template: ImportMappingTemplate) -> None:
    """Delete a template. Imports that used it keep their own copy of the mapping."""
    await session.delete(template)
    await session.commit()


async def find_matching_template(
    session: AsyncSession,
    *,
    client_id: uuid.UUID,
    headers: list[str],
    is_foh: bool,
) -> ImportMappingTemplate | None:
    """Find the template whose header set equals the given headers.

    Comparison ignores order, case and surrounding whitespace. When several
    templates match, the most recently created one is returned.

    Args:
        session: Database session.
        client_id: Tenant ID.
        headers: Header row of the new upload.
        is_foh: Template kind to search.

    Returns:
        The matching template or None.
    """
    wanted = {header_key(h) for h in headers if h.strip()}
    if not wanted:
        return None
    result = await session.execute(
        select(ImportMappingTemplate)
        .where(ImportMappingTemplate.client_id == client_id, ImportMappingTemplate.is_foh.is_(is_foh))
        .order_by(ImportMappingTemplate.created_at.desc(), ImportMappingTemplate.name.desc())
    )
    for template in result.scalars().all():
        if {header_key(h) for h in template.headers} == wanted:
            return template
    return None
