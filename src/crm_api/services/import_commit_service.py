"""Commit service: promote validated staging rows into users or prospects.

The commit is split in two so the API can answer a double submit right
away: ``begin_commit`` flips ``validated -> processing`` with a single
compare-and-set UPDATE, and ``process_commit`` walks the rows (usually from
the background task runner). Each row is created in its own transaction and
the import status is re-read before every row, so a cancel lands between
rows and never leaves a half-created record.
"""

import asyncio
import uuid
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.core.database import session_scope
from crm_api.core.logging import import_context
from crm_api.core.security import generate_random_password, hash_password
from crm_api.lib.importer.errors import ImportStateError
from crm_api.lib.importer.validator import (
    MSG_EMAIL_TAKEN,
    MSG_MANAGER_MISSING,
    MSG_PHONE_TAKEN,
    normalize_email,
    normalize_reference,
)
from crm_api.models.client import Client
from crm_api.models.import_job import ImportJob, ImportStatus, ImportType, statuses_allowing
from crm_api.models.prospect import Prospect, ProspectStatus
from crm_api.models.temp_import_user import TempImportUser
from crm_api.models.user import User, UserRole
from crm_api.services import custom_field_service

MSG_INTEGRITY = "commit: record conflicts with an existing one"
MSG_DATA = "commit: value does not fit the target column"


async def begin_commit(session: AsyncSession, import_id: uuid.UUID) -> None:
    """Atomically move an import from ``validated`` to ``processing``.

    Raises:
        ImportStateError: If the import is not ``validated`` (already
            committed, committing, cancelled, or never validated).
    """
    result = await session.execute(
        update(ImportJob)
        .where(ImportJob.id == import_id, ImportJob.status.in_(statuses_allowing(ImportStatus.PROCESSING)))
        .values(
            status=ImportStatus.PROCESSING,
            started_at=datetime.now(UTC),
            progress=0,
            records_created=0,
            records_failed=0,
            error_summary=None,
            error_log=None,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await session.rollback()
        msg = "Only a validated import can be committed"
        raise ImportStateError(msg)
    await session.commit()
    logger.info(f"Import {import_id} commit started")


async def _current_status(session: AsyncSession, import_id: uuid.UUID) -> str | None:
    result = await session.execute(select(ImportJob.status).where(ImportJob.id == import_id))
    return result.scalar_one_or_none()


async def _find_manager_id(session: AsyncSession, client_id: uuid.UUID, reference: str) -> uuid.UUID | None:
    result = await session.execute(
        select(User.id)
        .where(
            User.client_id == client_id,
            or_(
                func.lower(User.email) == reference,
                func.lower(User.username) == reference,
                func.lower(User.import_string) == reference,
            ),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _conflict(session: AsyncSession, job: ImportJob, row: TempImportUser) -> str | None:
    """Re-check uniqueness right before insert (rows may have raced in since validation)."""
    model: type[User] | type[Prospect] = Prospect if job.import_type == ImportType.PROSPECT else User
    if row.phone:
        found = await session.execute(
            select(model.id).where(model.client_id == job.client_id, model.phone == row.phone).limit(1)
        )
        if found.scalar_one_or_none() is not None:
            return MSG_PHONE_TAKEN
    email = normalize_email(row.email)
    if email:
        found = await session.execute(
            select(model.id).where(model.client_id == job.client_id, func.lower(model.email) == email).limit(1)
        )
        if found.scalar_one_or_none() is not None:
            return MSG_EMAIL_TAKEN
    return None


async def promote_row(session: AsyncSession, job: ImportJob, row: TempImportUser) -> str | None:
    """Create the User or Prospect for one staging row.

    Adds the record to the session and flushes; the caller commits.

    Args:
        session: Database session.
        job: The processing import.
        row: A valid, unprocessed staging row.

    Returns:
        None on success, otherwise the reason the row could not be created.

    Raises:
        IntegrityError: If the flush hits a unique constraint.
        DataError: If a value is rejected by a column type.
    """
    conflict = await _conflict(session, job, row)
    if conflict is not None:
        return conflict

    manager_id = None
    reference = normalize_reference(row.manager_email)
    if reference:
        manager_id = await _find_manager_id(session, job.client_id, reference)
        if manager_id is None:
            return MSG_MANAGER_MISSING

    if job.import_type == ImportType.PROSPECT:
        name = " ".join(part for part in (row.first_name, row.last_name) if part) or None
        session.add(
            Prospect(
                client_id=job.client_id,
                manager_id=manager_id,
                name=name,
                phone=row.phone,
                phone_code=row.phone_code,
                email=normalize_email(row.email),
                status=ProspectStatus.ACTIVE,
                import_id=job.id,
            )
        )
    else:
        custom_fields = {**(row.crm_fields or {}), **(row.custom_fields or {})}
        email = normalize_email(row.email)
        user = User(
            client_id=job.client_id,
            email=email,
            username=email,
            phone=row.phone,
            phone_code=row.phone_code,
            first_name=row.first_name,
            last_name=row.last_name,
            codigo=row.codigo,
            role=UserRole.parse(row.role) or UserRole.STANDARD,
            manager_id=manager_id,
            custom_fields=custom_fields or None,
            import_id=job.id,
            hashed_password=hash_password(generate_random_password()),
        )
        user.import_string = user.full_name[:255] or None
        session.add(user)
    await session.flush()
    return None


async def process_commit(
    session: AsyncSession,
    import_id: uuid.UUID,
    *,
    cooldown_seconds: float = 0.0,
) -> ImportJob:
    """Create records for every valid, unprocessed staging row.

    Failures on individual rows are logged to the import's ``error_log``
    and the loop continues. The final status is written only while the
    import is still ``processing``, so a cancel is never overwritten.

    Args:
        session: Database session.
        import_id: An import already moved to ``processing``.
        cooldown_seconds: Pause between rows.

    Returns:
        The import after the run.

    Raises:
        ImportStateError: If the import is not ``processing``.
    """
    job = await session.get(ImportJob, import_id, populate_existing=True)
    if job is None or job.status != ImportStatus.PROCESSING:
        msg = "Import is not processing"
        raise ImportStateError(msg)

    result = await session.execute(
        select(TempImportUser.id)
        .where(
            TempImportUser.import_id == import_id,
            TempImportUser.error_message.is_(None),
            TempImportUser.processed.is_(False),
        )
        .order_by(TempImportUser.row_number)
    )
    row_ids = list(result.scalars().all())
    logger.info(f"Import {import_id}: committing {len(row_ids)} rows")

    attempted = job.progress
    created = job.records_created
    failures: list[dict[str, Any]] = list(job.error_log or [])
    custom_keys: set[str] = set()
    cancelled = False

    try:
        for index, row_id in enumerate(row_ids):
            if index and cooldown_seconds > 0:
                await asyncio.sleep(cooldown_seconds)
            if await _current_status(session, import_id) != ImportStatus.PROCESSING:
                cancelled = True
                logger.info(f"Import {import_id} stopped after {attempted} rows: no longer processing")
                break

            row = await session.get(TempImportUser, row_id)
            if row is None or row.processed or not row.is_valid:
                continue
            row_number, row_phone = row.row_number, row.phone

            try:
                error = await promote_row(session, job, row)
            except (IntegrityError, DataError) as exc:
                await session.rollback()
                job = await session.get(ImportJob, import_id, populate_existing=True)
                row = await session.get(TempImportUser, row_id, populate_existing=True)
                error = MSG_INTEGRITY if isinstance(exc, IntegrityError) else MSG_DATA

            attempted += 1
            row.processed = True
            if error is None:
                created += 1
                custom_keys.update((row.custom_fields or {}).keys())
                custom_keys.update((row.crm_fields or {}).keys())
            else:
                row.error_message = error
                failures.append({"row": row_number, "phone": row_phone, "error": error})
                logger.warning(f"Import {import_id} row {row_number} failed: {error}")

            job.progress = attempted
            job.records_created = created
            job.records_failed = len(failures)
            job.error_log = list(failures) or None
            await session.commit()

        if custom_keys and job.import_type != ImportType.PROSPECT:
            await custom_field_service.ensure_labels(session, job.client_id, sorted(custom_keys))
            await session.commit()

        if not cancelled:
            final_status = ImportStatus.ERROR if failures else ImportStatus.COMPLETED
            summary = f"{len(failures)} of {attempted} rows failed to import" if failures else None
            await session.execute(
                update(ImportJob)
                .where(ImportJob.id == import_id, ImportJob.status == ImportStatus.PROCESSING)
                .values(status=final_status, error_summary=summary, completed_at=datetime.now(UTC))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
    except Exception:
        logger.exception(f"Import {import_id} commit aborted")
        await session.rollback()
        await session.execute(
            update(ImportJob)
            .where(ImportJob.id == import_id, ImportJob.status == ImportStatus.PROCESSING)
            .values(
                status=ImportStatus.ERROR,
                error_summary="Commit aborted by an unexpected error",
                completed_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        raise

    job = await session.get(ImportJob, import_id, populate_existing=True)
    logger.info(
        f"Import {import_id} commit finished: status={job.status}, "
        f"{created} created, {len(failures)} failed"
    )
    return job


async def commit_import(
    session: AsyncSession,
    import_id: uuid.UUID,
    *,
    cooldown_seconds: float = 0.0,
) -> ImportJob:
    """Begin and run a commit in one call (CLI and tests).

    Raises:
        ImportStateError: If the import is not ``validated``.
    """
    with import_context(import_id):
        await begin_commit(session, import_id)
        return await process_commit(session, import_id, cooldown_seconds=cooldown_seconds)


async def run_commit_job(import_id: uuid.UUID, *, cooldown_seconds: float = 0.0) -> None:
    """Background entry point: run ``process_commit`` in its own session."""
    with import_context(import_id):
        async with session_scope() as session:
            await process_commit(session, import_id, cooldown_seconds=cooldown_seconds)
