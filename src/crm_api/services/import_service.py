"""Import service: upload, column mapping, staging validation and row editing.

Validation and revalidation run inside the request. Committing staged rows
lives in ``import_commit_service`` because it runs in the background.
"""

import math
import uuid
from collections.abc import Collection, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.lib.importer import (
    ParsedCsv,
    ValidationContext,
    build_staging_row,
    clean_mapping,
    display_suggestion,
    evaluate_rows,
    generate_sample_csv,
    mapping_from_template,
    normalize_email,
    normalize_phone,
    parse_csv,
    sniff_headers,
)
from crm_api.lib.importer.errors import ImportStateError, ImportStructureError
from crm_api.lib.importer.sniffer import CUSTOM_FIELD_PREFIX
from crm_api.lib.importer.validator import normalize_reference, synthesized_email
from crm_api.lib.storage import FileStorage
from crm_api.models.client import Client
from crm_api.models.import_job import (
    ImportJob,
    ImportStatus,
    ImportType,
    can_transition,
    statuses_allowing,
)
from crm_api.models.prospect import Prospect
from crm_api.models.temp_import_user import TempImportUser
from crm_api.models.user import User
from crm_api.services import custom_field_service, mapping_template_service

# Keep IN clauses well under asyncpg's 32767 parameter limit
_IN_CLAUSE_BATCH = 5000

EDITABLE_FIELDS: frozenset[str] = frozenset(
    {"first_name", "last_name", "phone", "phone_code", "email", "codigo", "role", "manager_email"}
)

ROW_FILTERS: frozenset[str] = frozenset({"all", "errors", "valid"})


def _batched(values: Collection[str]) -> Iterable[list[str]]:
    items = list(values)
    for i in range(0, len(items), _IN_CLAUSE_BATCH):
        yield items[i : i + _IN_CLAUSE_BATCH]


def _require_status(job: ImportJob, allowed: Collection[str], action: str) -> None:
    if job.status not in allowed:
        msg = f"Cannot {action} an import in status '{job.status}'"
        raise ImportStateError(msg)


def _require_transition(job: ImportJob, target: ImportStatus, action: str) -> None:
    if not can_transition(job.status, target):
        msg = f"Cannot {action} an import in status '{job.status}'"
        raise ImportStateError(msg)


# ---------------------------------------------------------------------------
# Upload & lookup
# ---------------------------------------------------------------------------


async def create_import(
    session: AsyncSession,
    storage: FileStorage,
    *,
    client_id: uuid.UUID,
    user_id: uuid.UUID | None,
    content: bytes,
    filename: str,
    import_type: str = ImportType.USER,
    mime_type: str | None = None,
    max_bytes: int | None = None,
) -> ImportJob:
    """Store an upload and open an import in ``mapping`` status.

    The file is parsed once up front so empty or header-only files are
    rejected before anything is persisted.

    Args:
        session: Database session.
        storage: Upload storage backend.
        client_id: Tenant ID.
        user_id: Uploading user.
        content: Raw file bytes.
        filename: Original filename.
        import_type: ``user``, ``prospect`` or ``foh``.
        mime_type: Content type reported by the client.
        max_bytes: Optional size limit.

    Returns:
        The created ImportJob.

    Raises:
        ImportStructureError: If the file is empty, too large or unparseable.
    """
    import_type = ImportType(import_type)
    if not content:
        msg = "The file is empty"
        raise ImportStructureError(msg)
    if max_bytes is not None and len(content) > max_bytes:
        msg = f"File exceeds the maximum size of {max_bytes // (1024 * 1024)} MB"
        raise ImportStructureError(msg)

    parsed = parse_csv(content)
    labels = await custom_field_service.list_labels(session, client_id)
    sniffed = sniff_headers(parsed.headers, is_foh=import_type == ImportType.FOH, custom_labels=labels)

    job = ImportJob(
        client_id=client_id,
        user_id=user_id,
        import_type=import_type,
        status=ImportStatus.PENDING,
        file_name=filename,
        total_records=parsed.total_rows,
    )
    session.add(job)
    await session.commit()

    stored_path = await storage.save(content, filename)
    job.file_data = {
        "storage": storage.backend,
        "key": stored_path,
        "filename": filename,
        "size": len(content),
        "mime_type": mime_type or "text/csv",
    }
    job.unmatched_columns = [col.as_dict() for col in sniffed.unmatched]
    job.status = ImportStatus.MAPPING
    await session.commit()
    await session.refresh(job)
    logger.info(
        f"Import {job.id} created: type={import_type}, file={filename!r}, "
        f"{parsed.total_rows} rows, {len(sniffed.unmatched)} unmatched columns"
    )
    return job


async def get_import(
    session: AsyncSession,
    import_id: uuid.UUID,
    *,
    client_id: uuid.UUID | None = None,
) -> ImportJob | None:
    """Get an import by ID, optionally scoped to a tenant.

    Args:
        session: Database session.
        import_id: The import ID.
        client_id: When set, imports of other tenants are not found.

    Returns:
        The ImportJob or None if not found.
    """
    query = select(ImportJob).where(ImportJob.id == import_id)
    if client_id is not None:
        query = query.where(ImportJob.client_id == client_id)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def list_imports(
    session: AsyncSession,
    *,
    client_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
    status: str | None = None,
    import_type: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[ImportJob], int]:
    """List a tenant's imports, newest first.

    Args:
        session: Database session.
        client_id: Tenant ID.
        user_id: Restrict to imports uploaded by this user.
        status: Filter by status.
        import_type: Filter by import type.
        page: Page number.
        page_size: Items per page.

    Returns:
        Tuple of (imports, total count).
    """
    filters = [ImportJob.client_id == client_id]
    if user_id is not None:
        filters.append(ImportJob.user_id == user_id)
    if status:
        filters.append(ImportJob.status == status)
    if import_type:
        filters.append(ImportJob.import_type == import_type)

    total = (await session.execute(select(func.count(ImportJob.id)).where(*filters))).scalar_one()
    offset = (page - 1) * page_size
    result = await session.execute(
        select(ImportJob).where(*filters).order_by(ImportJob.created_at.desc()).offset(offset).limit(page_size)
    )
    return list(result.scalars().all()), total


def get_progress(job: ImportJob) -> dict[str, Any]:
    """Summarize counters for polling clients.

    ``percent`` is rows attempted by the commit over valid rows, and 100
    once the import has completed.
    """
    if job.status == ImportStatus.COMPLETED:
        percent = 100
    elif job.valid_count:
        percent = min(100, math.floor(job.progress * 100 / job.valid_count))
    else:
        percent = 100 if job.is_terminal else 0
    return {
        "id": job.id,
        "status": job.status,
        "total_records": job.total_records,
        "valid_count": job.valid_count,
        "invalid_count": job.invalid_count,
        "progress": job.progress,
        "records_created": job.records_created,
        "records_failed": job.records_failed,
        "percent": percent,
        "error_summary": job.error_summary,
    }


# ---------------------------------------------------------------------------
# Stored file access
# ---------------------------------------------------------------------------


async def load_file(storage: FileStorage, job: ImportJob) -> bytes:
    """Fetch the stored upload for an import.

    Raises:
        ImportStructureError: If no file is stored or it has disappeared.
    """
    key = (job.file_data or {}).get("key")
    if not key:
        msg = "The import has no stored file"
        raise ImportStructureError(msg)
    try:
        return await storage.load(key)
    except FileNotFoundError as exc:
        msg = "The stored file for this import is missing"
        raise ImportStructureError(msg) from exc


async def load_parsed_file(storage: FileStorage, job: ImportJob) -> ParsedCsv:
    """Fetch and parse the stored upload."""
    return parse_csv(await load_file(storage, job))


async def download_file(storage: FileStorage, job: ImportJob) -> tuple[bytes, str, str]:
    """Return ``(content, filename, mime_type)`` of the original upload."""
    content = await load_file(storage, job)
    data = job.file_data or {}
    return content, data.get("filename") or job.file_name or "import.csv", data.get("mime_type") or "text/csv"


async def sample_csv(session: AsyncSession, *, client_id: uuid.UUID | None, import_type: str) -> bytes:
    """Build the sample CSV for an import type, with the tenant's custom labels."""
    labels = await custom_field_service.list_labels(session, client_id) if client_id else []
    return generate_sample_csv(import_type, labels)


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------


async def get_mapping_suggestions(session: AsyncSession, storage: FileStorage, job: ImportJob) -> dict[str, Any]:
    """Propose a mapping for the import's header row.

    Returns one entry per column with the suggested field, up to two sample
    values, and the most recent template whose header set matches.

    Args:
        session: Database session.
        storage: Upload storage backend.
        job: The import.

    Returns:
        Dict with ``columns``, ``total_rows``, ``unmatched_columns`` and
        ``matched_template`` (None when no template matches).
    """
    parsed = await load_parsed_file(storage, job)
    labels = await custom_field_service.list_labels(session, job.client_id)
    sniffed = sniff_headers(parsed.headers, is_foh=job.is_foh, custom_labels=labels)

    columns = []
    for index, header in enumerate(parsed.headers):
        samples = [row[index] for row in parsed.rows[:2] if index < len(row) and row[index]]
        target = sniffed.suggestions.get(index)
        columns.append(
            {
                "index": index,
                "header": header,
                "suggestion": display_suggestion(target),
                "target": target,
                "sample_data": samples,
            }
        )

    template = await mapping_template_service.find_matching_template(
        session, client_id=job.client_id, headers=parsed.headers, is_foh=job.is_foh
    )
    matched = None
    if template is not None:
        applied = mapping_from_template(parsed.headers, template.column_mapping)
        matched = {
            "id": template.id,
            "name": template.name,
            "column_mapping": {str(i): field for i, field in applied.items()},
        }

    return {
        "import_id": job.id,
        "columns": columns,
        "total_rows": parsed.total_rows,
        "unmatched_columns": [col.as_dict() for col in sniffed.unmatched],
        "matched_template": matched,
    }


async def confirm_mapping(
    session: AsyncSession,
    storage: FileStorage,
    job: ImportJob,
    *,
    column_mapping: Mapping[str, str | None],
    default_phone_code: str = "51",
) -> ImportJob:
    """Apply a confirmed mapping: rebuild the staging rows and validate them all.

    Any staging rows from a previous mapping are discarded.

    Args:
        session: Database session.
        storage: Upload storage backend.
        job: The import (pending, mapping or validated).
        column_mapping: Column index (as string) -> target field.
        default_phone_code: Country code for rows without one.

    Returns:
        The import in ``validated`` status.

    Raises:
        ImportStateError: If the import cannot be (re)mapped in its status.
        ImportStructureError: If the file is unusable or phone is not mapped.
    """
    _require_transition(job, ImportStatus.VALIDATING, "map")
    parsed = await load_parsed_file(storage, job)
    mapping = clean_mapping(column_mapping, len(parsed.headers))
    if "phone" not in mapping.values():
        msg = "A column must be mapped to phone"
        raise ImportStructureError(msg)

    client = await session.get(Client, job.client_id)
    client_name = client.name if client is not None else None
    import_id = job.id

    job.status = ImportStatus.VALIDATING
    job.column_mapping = {str(i): field for i, field in sorted(mapping.items())}
    job.started_at = datetime.now(UTC)
    job.error_summary = None
    job.error_log = None
    await session.commit()

    try:
        await session.execute(delete(TempImportUser).where(TempImportUser.import_id == job.id))
        for position, values in enumerate(parsed.rows, start=1):
            staged = build_staging_row(
                values,
                mapping,
                row_number=position,
                is_foh=job.is_foh,
                client_name=client_name,
                default_phone_code=default_phone_code,
            )
            session.add(TempImportUser(import_id=job.id, **staged.as_model_kwargs()))
        await session.flush()

        job.total_records = parsed.total_rows
        job.progress = 0
        job.records_created = 0
        job.records_failed = 0
        await _validate_all(session, job)
        job.status = ImportStatus.VALIDATED
        await session.commit()
    except Exception as exc:
        await session.rollback()
        await _mark_error(session, import_id, f"Validation failed: {exc}")
        raise

    await session.refresh(job)
    logger.info(f"Import {job.id} validated: {job.valid_count} valid, {job.invalid_count} invalid")
    return job


async def _mark_error(session: AsyncSession, import_id: uuid.UUID, summary: str) -> None:
    await session.execute(
        update(ImportJob)
        .where(ImportJob.id == import_id, ImportJob.status.in_(statuses_allowing(ImportStatus.ERROR)))
        .values(status=ImportStatus.ERROR, error_summary=summary, completed_at=datetime.now(UTC))
    )
    await session.commit()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


async def _persisted_keys(
    session: AsyncSession, job: ImportJob, phones: set[str], emails: set[str]
) -> tuple[set[str], set[str]]:
    model: type[User] | type[Prospect] = Prospect if job.import_type == ImportType.PROSPECT else User
    taken_phones: set[str] = set()
    taken_emails: set[str] = set()
    for batch in _batched(phones):
        result = await session.execute(
            select(model.phone).where(model.client_id == job.client_id, model.phone.in_(batch))
        )
        taken_phones.update(p for p in result.scalars().all() if p)
    for batch in _batched(emails):
        result = await session.execute(
            select(func.lower(model.email)).where(
                model.client_id == job.client_id, func.lower(model.email).in_(batch)
            )
        )
        taken_emails.update(e for e in result.scalars().all() if e)
    return taken_phones, taken_emails


async def _known_managers(session: AsyncSession, client_id: uuid.UUID, references: set[str]) -> set[str]:
    known: set[str] = set()
    for batch in _batched(references):
        result = await session.execute(
            select(func.lower(User.email), func.lower(User.username), func.lower(User.import_string)).where(
                User.client_id == client_id,
                or_(
                    func.lower(User.email).in_(batch),
                    func.lower(User.username).in_(batch),
                    func.lower(User.import_string).in_(batch),
                ),
            )
        )
        for matches in result.all():
            known.update(value for value in matches if value in references)
    return known


async def build_validation_context(
    session: AsyncSession, job: ImportJob, rows: Iterable[TempImportUser]
) -> ValidationContext:
    """Load the tenant state needed to validate ``rows``."""
    phones: set[str] = set()
    emails: set[str] = set()
    managers: set[str] = set()
    for row in rows:
        if row.phone:
            phones.add(row.phone)
        email = normalize_email(row.email)
        if email:
            emails.add(email)
        reference = normalize_reference(row.manager_email)
        if reference:
            managers.add(reference)
    taken_phones, taken_emails = await _persisted_keys(session, job, phones, emails)
    known = await _known_managers(session, job.client_id, managers)
    return ValidationContext(
        is_foh=job.is_foh,
        persisted_phones=taken_phones,
        persisted_emails=taken_emails,
        known_managers=known,
    )


async def _refresh_counts(session: AsyncSession, job: ImportJob) -> None:
    result = await session.execute(
        select(
            func.count(TempImportUser.id),
            func.coalesce(func.sum(case((TempImportUser.error_message.is_(None), 1), else_=0)), 0),
        ).where(TempImportUser.import_id == job.id)
    )
    total, valid = result.one()
    job.valid_count = valid
    job.invalid_count = total - valid


async def _validate_all(session: AsyncSession, job: ImportJob) -> None:
    result = await session.execute(
        select(TempImportUser).where(TempImportUser.import_id == job.id).order_by(TempImportUser.row_number)
    )
    rows = list(result.scalars().all())
    context = await build_validation_context(session, job, rows)
    verdicts = evaluate_rows(rows, context)
    for row in rows:
        row.error_message = verdicts[row.row_number]
    await session.flush()
    await _refresh_counts(session, job)


async def revalidate_import(session: AsyncSession, job: ImportJob) -> ImportJob:
    """Re-run validation over every staging row of a validated import.

    Raises:
        ImportStateError: If the import is not in ``validated`` status.
    """
    _require_status(job, {ImportStatus.VALIDATED}, "revalidate")
    await _validate_all(session, job)
    await session.commit()
    await session.refresh(job)
    logger.info(f"Import {job.id} revalidated: {job.valid_count} valid, {job.invalid_count} invalid")
    return job


async def revalidate_affected(
    session: AsyncSession,
    job: ImportJob,
    *,
    row_id: uuid.UUID | None = None,
    phones: Iterable[str | None] = (),
    emails: Iterable[str | None] = (),
) -> list[uuid.UUID]:
    """Revalidate only the rows a change could have affected.

    The affected set is the changed row plus every row of the import whose
    phone or email equals one of the given (old or new) values. A row's
    verdict depends only on its own values and on rows with a lower row
    number sharing a key, so this gives the same result as revalidating
    the whole import.

    Args:
        session: Database session.
        job: The import (must be ``validated``).
        row_id: The edited row, if it still exists.
        phones: Phone values before and after the change.
        emails: Email values before and after the change.

    Returns:
        IDs of the revalidated rows.

    Raises:
        ImportStateError: If the import is not in ``validated`` status.
    """
    _require_status(job, {ImportStatus.VALIDATED}, "revalidate")
    phone_keys = {p for p in (normalize_phone(v) for v in phones) if p}
    email_keys = {e for e in (normalize_email(v) for v in emails) if e}

    conditions = []
    if row_id is not None:
        conditions.append(TempImportUser.id == row_id)
    if phone_keys:
        conditions.append(TempImportUser.phone.in_(phone_keys))
    if email_keys:
        conditions.append(func.lower(TempImportUser.email).in_(email_keys))
    if not conditions:
        return []

    result = await session.execute(
        select(TempImportUser).where(TempImportUser.import_id == job.id, or_(*conditions))
    )
    affected = list(result.scalars().all())
    if not affected:
        await _refresh_counts(session, job)
        await session.commit()
        return []

    # Every row sharing a key with an affected row decides its batch verdict.
    related_phones = {r.phone for r in affected if r.phone}
    related_emails = {e for e in (normalize_email(r.email) for r in affected) if e}
    related_conditions = []
    if related_phones:
        related_conditions.append(TempImportUser.phone.in_(related_phones))
    if related_emails:
        related_conditions.append(func.lower(TempImportUser.email).in_(related_emails))
    related: dict[uuid.UUID, TempImportUser] = {r.id: r for r in affected}
    if related_conditions:
        result = await session.execute(
            select(TempImportUser).where(TempImportUser.import_id == job.id, or_(*related_conditions))
        )
        for row in result.scalars().all():
            related.setdefault(row.id, row)

    context = await build_validation_context(session, job, affected)
    verdicts = evaluate_rows(related.values(), context, targets={r.row_number for r in affected})
    for row in affected:
        row.error_message = verdicts[row.row_number]
    await session.flush()
    await _refresh_counts(session, job)
    await session.commit()
    logger.debug(f"Import {job.id}: revalidated {len(affected)} affected rows")
    return [row.id for row in affected]


# ---------------------------------------------------------------------------
# Staging rows
# ---------------------------------------------------------------------------


async def list_staging_rows(
    session: AsyncSession,
    import_id: uuid.UUID,
    *,
    row_filter: str = "all",
    search: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[TempImportUser], int]:
    """List an import's staging rows in file order.

    Args:
        session: Database session.
        import_id: The import ID.
        row_filter: ``all``, ``errors`` or ``valid``.
        search: Case-insensitive text matched against names, phone and email.
        page: Page number.
        page_size: Items per page.

    Returns:
        Tuple of (rows, total count).

    Raises:
        ValueError: If the filter is unknown.
    """
    if row_filter not in ROW_FILTERS:
        msg = f"Unknown filter '{row_filter}'"
        raise ValueError(msg)
    filters = [TempImportUser.import_id == import_id]
    if row_filter == "errors":
        filters.append(TempImportUser.error_message.is_not(None))
    elif row_filter == "valid":
        filters.append(TempImportUser.error_message.is_(None))
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(TempImportUser.first_name).like(pattern),
                func.lower(TempImportUser.last_name).like(pattern),
                TempImportUser.phone.like(pattern),
                func.lower(TempImportUser.email).like(pattern),
            )
        )

    total = (await session.execute(select(func.count(TempImportUser.id)).where(*filters))).scalar_one()
    offset = (page - 1) * page_size
    result = await session.execute(
        select(TempImportUser)
        .where(*filters)
        .order_by(TempImportUser.row_number)
        .offset(offset)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def get_staging_row(
    session: AsyncSession, import_id: uuid.UUID, row_id: uuid.UUID
) -> TempImportUser | None:
    """Get a staging row of an import, or None."""
    result = await session.execute(
        select(TempImportUser).where(TempImportUser.id == row_id, TempImportUser.import_id == import_id)
    )
    return result.scalar_one_or_none()


async def _rederive_email(
    session: AsyncSession,
    job: ImportJob,
    row: TempImportUser,
    *,
    old_phone: str | None,
    old_email: str | None,
    explicit: bool,
) -> None:
    client = await session.get(Client, job.client_id)
    client_name = client.name if client is not None else None
    if job.is_foh:
        row.email = synthesized_email(row.phone, is_foh=True, client_name=client_name) if row.phone else None
        return
    if explicit or old_phone is None:
        return
    if old_email == synthesized_email(old_phone, is_foh=False, client_name=client_name):
        row.email = synthesized_email(row.phone, is_foh=False, client_name=client_name) if row.phone else None


async def update_staging_row(
    session: AsyncSession,
    job: ImportJob,
    row: TempImportUser,
    fields: Mapping[str, str | None],
) -> TempImportUser:
    """Edit a staging row inline and revalidate the rows it affects.

    Phone and email are normalized the same way as on upload. A phone edit
    re-derives the email when it was synthesized from the old phone (always
    for FOH imports) and no email was given in the same edit.

    Args:
        session: Database session.
        job: The owning import (must be ``validated``).
        row: The row to edit.
        fields: Field -> new value; only editable fields are applied.

    Returns:
        The updated row with its fresh verdict.

    Raises:
        ImportStateError: If the import is not in ``validated`` status.
        ValueError: If a field is not editable.
    """
    _require_status(job, {ImportStatus.VALIDATED}, "edit")
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        msg = f"Fields not editable: {', '.join(sorted(unknown))}"
        raise ValueError(msg)

    old_phone, old_email = row.phone, row.email
    for name, value in fields.items():
        cleaned = value.strip() if isinstance(value, str) else value
        if name == "phone":
            cleaned = normalize_phone(cleaned)
        elif name == "email":
            cleaned = normalize_email(cleaned)
        elif name == "phone_code":
            cleaned = normalize_phone(cleaned) or cleaned
        setattr(row, name, cleaned or None)
    if row.phone != old_phone:
        await _rederive_email(session, job, row, old_phone=old_phone, old_email=old_email, explicit="email" in fields)
    await session.flush()

    await revalidate_affected(
        session,
        job,
        row_id=row.id,
        phones=(old_phone, row.phone),
        emails=(old_email, row.email),
    )
    await session.refresh(row)
    return row


async def delete_staging_row(session: AsyncSession, job: ImportJob, row: TempImportUser) -> None:
    """Delete a staging row and revalidate the rows that shared its phone or email.

    Raises:
        ImportStateError: If the import is not in ``validated`` status.
    """
    _require_status(job, {ImportStatus.VALIDATED}, "edit")
    old_phone, old_email = row.phone, row.email
    await session.delete(row)
    await session.flush()
    job.total_records = max(0, job.total_records - 1)
    await revalidate_affected(session, job, phones=(old_phone,), emails=(old_email,))
    await _refresh_counts(session, job)
    await session.commit()


async def accept_unmatched_columns(
    session: AsyncSession,
    storage: FileStorage,
    job: ImportJob,
    column_names: list[str],
) -> ImportJob:
    """Turn unmatched columns into tenant custom fields.

    The labels are registered for the tenant. For a validated import the
    column values are also copied into each staging row's custom fields.

    Args:
        session: Database session.
        storage: Upload storage backend.
        job: The import (mapping or validated).
        column_names: Header names of the unmatched columns to accept.

    Returns:
        The updated import.

    Raises:
        ImportStateError: If the import is past validation.
    """
    _require_status(job, {ImportStatus.MAPPING, ImportStatus.VALIDATED}, "accept columns for")
    wanted = {name.strip().lower() for name in column_names if name.strip()}
    unmatched = list(job.unmatched_columns or [])
    accepted = [col for col in unmatched if str(col.get("name", "")).strip().lower() in wanted]
    if not accepted:
        return job

    await custom_field_service.ensure_labels(session, job.client_id, [str(col["name"]) for col in accepted])

    if job.status == ImportStatus.VALIDATED:
        parsed = await load_parsed_file(storage, job)
        result = await session.execute(select(TempImportUser).where(TempImportUser.import_id == job.id))
        for row in result.scalars().all():
            if row.row_number > len(parsed.rows):
                continue
            values = parsed.rows[row.row_number - 1]
            custom = dict(row.custom_fields or {})
            for col in accepted:
                index = int(col["index"])
                if index < len(values) and values[index]:
                    custom[str(col["name"])] = values[index]
            row.custom_fields = custom or None
        mapping = dict(job.column_mapping or {})
        for col in accepted:
            mapping[str(col["index"])] = f"{CUSTOM_FIELD_PREFIX}{col['name']}"
        job.column_mapping = mapping

    accepted_indexes = {col["index"] for col in accepted}
    job.unmatched_columns = [col for col in unmatched if col["index"] not in accepted_indexes]
    await session.commit()
    await session.refresh(job)
    logger.info(f"Import {job.id}: accepted {len(accepted)} columns as custom fields")
    return job


# ---------------------------------------------------------------------------
# Cancel / delete / sweep
# ---------------------------------------------------------------------------


async def cancel_import(session: AsyncSession, job: ImportJob) -> ImportJob:
    """Cancel a non-terminal import.

    A running commit notices the status before its next row and stops;
    records it already created are kept.

    Raises:
        ImportStateError: If the import already finished.
    """
    result = await session.execute(
        update(ImportJob)
        .where(ImportJob.id == job.id, ImportJob.status.in_(statuses_allowing(ImportStatus.CANCELLED)))
        .values(status=ImportStatus.CANCELLED, completed_at=datetime.now(UTC))
    )
    if result.rowcount == 0:
        await session.rollback()
        await session.refresh(job)
        msg = f"Cannot cancel an import in status '{job.status}'"
        raise ImportStateError(msg)
    await session.commit()
    await session.refresh(job)
    logger.info(f"Import {job.id} cancelled")
    return job


async def delete_import(session: AsyncSession, storage: FileStorage, job: ImportJob) -> None:
    """Delete an import, its staging rows and its stored file.

    Records already created by the import are kept.

    Raises:
        ImportStateError: If a commit is running (cancel it first).
    """
    if job.status == ImportStatus.PROCESSING:
        msg = "Cannot delete an import while it is processing; cancel it first"
        raise ImportStateError(msg)
    key = (job.file_data or {}).get("key")
    await session.execute(delete(TempImportUser).where(TempImportUser.import_id == job.id))
    await session.delete(job)
    await session.commit()
    if key:
        try:
            await storage.delete(key)
        except FileNotFoundError:
            logger.warning(f"Stored file {key} for import {job.id} was already gone")
    logger.info(f"Import {job.id} deleted")


async def sweep_stalled_imports(session: AsyncSession, *, older_than_minutes: int = 30) -> int:
    """Move imports stuck in validating/processing to ``error``.

    An import counts as stalled when it has not been updated for the given
    number of minutes, e.g. after the process running its commit died.

    Returns:
        Number of imports marked as errored.
    """
    cutoff = datetime.now(UTC) - timedelta(minutes=older_than_minutes)
    result = await session.execute(
        update(ImportJob)
        .where(
            ImportJob.status.in_(statuses_allowing(ImportStatus.ERROR)),
            ImportJob.updated_at < cutoff,
        )
        .values(
            status=ImportStatus.ERROR,
            error_summary=f"Import stalled for more than {older_than_minutes} minutes",
            completed_at=datetime.now(UTC),
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if result.rowcount:
        logger.warning(f"Marked {result.rowcount} stalled imports as error")
    return result.rowcount
