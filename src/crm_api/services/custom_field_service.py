"""Custom field label service: the tenant's known extra CSV columns."""

import uuid
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.models.custom_field_setting import CustomFieldSetting


async def list_labels(session: AsyncSession, client_id: uuid.UUID) -> list[str]:
    """Return the tenant's visible custom field labels in display order."""
    result = await session.execute(
        select(CustomFieldSetting.label)
        .where(CustomFieldSetting.client_id == client_id, CustomFieldSetting.is_visible.is_(True))
        .order_by(CustomFieldSetting.position, CustomFieldSetting.label)
    )
    return list(result.scalars().all())


async def ensure_labels(session: AsyncSession, client_id: uuid.UUID, labels: Iterable[str]) -> list[str]:
    """Register labels the tenant does not have yet.

    Matching is case-insensitive. The caller owns the transaction; new rows
    are flushed, not committed.

    Args:
        session: Database session.
        client_id: Tenant ID.
        labels: Candidate labels.

    Returns:
        The labels that were created.
    """
    wanted: dict[str, str] = {}
    for label in labels:
        cleaned = label.strip()
        if cleaned:
            wanted.setdefault(cleaned.lower(), cleaned)
    if not wanted:
        return []

    existing_result = await session.execute(
        select(func.lower(CustomFieldSetting.label)).where(CustomFieldSetting.client_id == client_id)
    )
    existing = set(existing_result.scalars().all())
    position = (
        await session.execute(
            select(func.coalesce(func.max(CustomFieldSetting.position), 0)).where(
                CustomFieldSetting.client_id == client_id
            )
        )
    ).scalar_one()

    created: list[str] = []
    for key, label in wanted.items():
        if key in existing:
            continue
        position += 1
        session.add(CustomFieldSetting(client_id=client_id, label=label, position=position))
        created.append(label)
    if created:
        await session.flush()
    return created
