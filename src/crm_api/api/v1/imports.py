"""Import API endpoints.

Upload (POST /imports, POST /imports/foh), listing and status
(GET /imports, GET /imports/{import_id}, GET /imports/{import_id}/progress),
column mapping (GET/POST /imports/{import_id}/mapping), staging row review
(GET /imports/{import_id}/rows, PATCH/DELETE /imports/{import_id}/rows/{row_id}),
revalidation, commit (POST /imports/{import_id}/confirm), cancel and delete.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, UploadFile, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.core.background import BackgroundTaskRunner
from crm_api.core.config import Settings, get_settings
from crm_api.core.dependencies import (
    ADMIN_ROLES,
    IMPORT_ROLES,
    get_async_session,
    get_file_storage,
    get_task_runner,
    require_role,
)
from crm_api.core.logging import import_context
from crm_api.lib.storage import FileStorage
from crm_api.models.import_job import ImportJob, ImportStatus, ImportType
from crm_api.models.temp_import_user import TempImportUser
from crm_api.models.user import User
from crm_api.schemas.common import PaginationMeta, PaginationParams
from crm_api.schemas.imports import (
    AcceptColumnsRequest,
    ConfirmMappingRequest,
    ImportJobResponse,
    ImportProgressResponse,
    MappingSuggestionsResponse,
    PaginatedImportJobResponse,
    PaginatedStagingRowResponse,
    RevalidateAffectedRequest,
    RevalidationResponse,
    StagingRowResponse,
    StagingRowUpdateRequest,
)
from crm_api.services import import_commit_service, import_service

router = APIRouter(prefix="/imports", tags=["imports"])

_NO_FILE_DETAIL = "No file provided"
_IMPORT_NOT_FOUND = "Import not found"


async def _get_import_or_404(session: AsyncSession, import_id: uuid.UUID, user: User) -> ImportJob:
    """Load an import of the user's tenant; supervisors only see their own uploads."""
    job = await import_service.get_import(session, import_id, client_id=user.client_id)
    if job is None or (user.role not in ADMIN_ROLES and job.user_id != user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_IMPORT_NOT_FOUND)
    return job


async def _get_row_or_404(session: AsyncSession, job: ImportJob, row_id: uuid.UUID) -> TempImportUser:
    row = await import_service.get_staging_row(session, job.id, row_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Row not found")
    return row


async def _upload(
    file: UploadFile,
    import_type: str,
    current_user: User,
    session: AsyncSession,
    storage: FileStorage,
    settings: Settings,
) -> ImportJobResponse:
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_NO_FILE_DETAIL)
    content = await file.read()
    max_bytes = settings.import_max_file_size_bytes
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds maximum size of {settings.import_max_file_size_mb} MB",
        )
    job = await import_service.create_import(
        session,
        storage,
        client_id=current_user.client_id,
        user_id=current_user.id,
        content=content,
        filename=file.filename,
        import_type=import_type,
        mime_type=file.content_type,
        max_bytes=max_bytes,
    )
    return ImportJobResponse.model_validate(job)


@router.post("", response_model=ImportJobResponse, status_code=201)
async def upload_import(
    file: UploadFile,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    storage: Annotated[FileStorage, Depends(get_file_storage)],
    settings: Annotated[Settings, Depends(get_settings)],
    import_type: ImportType = ImportType.USER,
) -> ImportJobResponse:
    """Upload a user or prospect CSV and open an import in mapping status."""
    return await _upload(file, import_type, current_user, session, storage, settings)


@router.post("/foh", response_model=ImportJobResponse, status_code=201)
async def upload_foh_import(
    file: UploadFile,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    storage: Annotated[FileStorage, Depends(get_file_storage)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ImportJobResponse:
    """Upload a FOH agent list."""
    return await _upload(file, ImportType.FOH, current_user, session, storage, settings)


@router.get("", response_model=PaginatedImportJobResponse)
async def list_imports(
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    pagination: Annotated[PaginationParams, Depends()],
    status_filter: Annotated[ImportStatus | None, Query(alias="status")] = None,
    import_type: ImportType | None = None,
) -> PaginatedImportJobResponse:
    """List imports of the user's tenant, newest first."""
    jobs, total = await import_service.list_imports(
        session,
        client_id=current_user.client_id,
        user_id=None if current_user.role in ADMIN_ROLES else current_user.id,
        status=status_filter,
        import_type=import_type,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return PaginatedImportJobResponse(
        items=[ImportJobResponse.model_validate(j) for j in jobs],
        pagination=PaginationMeta.build(total=total, page=pagination.page, page_size=pagination.page_size),
    )


@router.get("/sample-csv")
async def download_sample_csv(
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    import_type: ImportType = ImportType.USER,
) -> Response:
    """Download a sample CSV for the import type, including the tenant's custom fields."""
    content = await import_service.sample_csv(session, client_id=current_user.client_id, import_type=import_type)
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="sample_{import_type}_import.csv"'},
    )


@router.get("/{import_id}", response_model=ImportJobResponse)
async def get_import(
    import_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> ImportJobResponse:
    """Get an import's status and counters."""
    job = await _get_import_or_404(session, import_id, current_user)
    return ImportJobResponse.model_validate(job)


@router.get("/{import_id}/progress", response_model=ImportProgressResponse)
async def get_import_progress(
    import_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> ImportProgressResponse:
    """Poll the progress of a validating or committing import."""
    job = await _get_import_or_404(session, import_id, current_user)
    return ImportProgressResponse(**import_service.get_progress(job))


@router.get("/{import_id}/download")
async def download_import_file(
    import_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    storage: Annotated[FileStorage, Depends(get_file_storage)],
) -> Response:
    """Download the original uploaded file."""
    job = await _get_import_or_404(session, import_id, current_user)
    content, filename, mime_type = await import_service.download_file(storage, job)
    return Response(
        content=content,
        media_type=mime_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{import_id}/mapping", response_model=MappingSuggestionsResponse)
async def get_mapping(
    import_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    storage: Annotated[FileStorage, Depends(get_file_storage)],
) -> MappingSuggestionsResponse:
    """Suggest a field for each column and report a matching saved template."""
    job = await _get_import_or_404(session, import_id, current_user)
    return MappingSuggestionsResponse(**await import_service.get_mapping_suggestions(session, storage, job))


@router.post("/{import_id}/mapping", response_model=ImportJobResponse)
async def confirm_mapping(
    import_id: uuid.UUID,
    body: ConfirmMappingRequest,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    storage: Annotated[FileStorage, Depends(get_file_storage)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ImportJobResponse:
    """Apply a column mapping, stage every row and validate."""
    job = await _get_import_or_404(session, import_id, current_user)
    with import_context(import_id):
        job = await import_service.confirm_mapping(
            session,
            storage,
            job,
            column_mapping=body.column_mapping,
            default_phone_code=settings.import_default_phone_code,
        )
    return ImportJobResponse.model_validate(job)


@router.get("/{import_id}/rows", response_model=PaginatedStagingRowResponse)
async def list_rows(
    import_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    pagination: Annotated[PaginationParams, Depends()],
    row_filter: Annotated[str, Query(alias="filter", pattern="^(all|errors|valid)$")] = "all",
    search: str | None = None,
) -> PaginatedStagingRowResponse:
    """List staging rows with their validation verdicts."""
    job = await _get_import_or_404(session, import_id, current_user)
    rows, total = await import_service.list_staging_rows(
        session,
        job.id,
        row_filter=row_filter,
        search=search,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return PaginatedStagingRowResponse(
        items=[StagingRowResponse.model_validate(r) for r in rows],
        pagination=PaginationMeta.build(total=total, page=pagination.page, page_size=pagination.page_size),
        valid_count=job.valid_count,
        invalid_count=job.invalid_count,
    )


@router.get("/{import_id}/errors", response_model=PaginatedStagingRowResponse)
async def list_error_rows(
    import_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    pagination: Annotated[PaginationParams, Depends()],
) -> PaginatedStagingRowResponse:
    """List only the rows that failed validation."""
    return await list_rows(import_id, current_user, session, pagination, row_filter="errors", search=None)


@router.patch("/{import_id}/rows/{row_id}", response_model=StagingRowResponse)
async def update_row(
    import_id: uuid.UUID,
    row_id: uuid.UUID,
    body: StagingRowUpdateRequest,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> StagingRowResponse:
    """Edit a staging row; the row and the rows sharing its keys are revalidated."""
    job = await _get_import_or_404(session, import_id, current_user)
    row = await _get_row_or_404(session, job, row_id)
    row = await import_service.update_staging_row(session, job, row, body.model_dump(exclude_unset=True))
    return StagingRowResponse.model_validate(row)


@router.delete("/{import_id}/rows/{row_id}", status_code=204)
async def delete_row(
    import_id: uuid.UUID,
    row_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> None:
    """Remove a staging row from the import."""
    job = await _get_import_or_404(session, import_id, current_user)
    row = await _get_row_or_404(session, job, row_id)
    await import_service.delete_staging_row(session, job, row)


@router.post("/{import_id}/revalidate", response_model=RevalidationResponse)
async def revalidate(
    import_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> RevalidationResponse:
    """Revalidate every staging row against the current tenant data."""
    job = await _get_import_or_404(session, import_id, current_user)
    job = await import_service.revalidate_import(session, job)
    return RevalidationResponse(valid_count=job.valid_count, invalid_count=job.invalid_count)


@router.post("/{import_id}/revalidate-affected", response_model=RevalidationResponse)
async def revalidate_affected(
    import_id: uuid.UUID,
    body: RevalidateAffectedRequest,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> RevalidationResponse:
    """Revalidate the rows an external change could have affected."""
    job = await _get_import_or_404(session, import_id, current_user)
    phones: list[str | None] = [body.old_phone]
    emails: list[str | None] = [body.old_email]
    if body.row_id is not None:
        row = await import_service.get_staging_row(session, job.id, body.row_id)
        if row is not None:
            phones.append(row.phone)
            emails.append(row.email)
    revalidated = await import_service.revalidate_affected(
        session, job, row_id=body.row_id, phones=phones, emails=emails
    )
    await session.refresh(job)
    return RevalidationResponse(
        valid_count=job.valid_count, invalid_count=job.invalid_count, revalidated=len(revalidated)
    )


@router.post("/{import_id}/accept-columns", response_model=ImportJobResponse)
async def accept_columns(
    import_id: uuid.UUID,
    body: AcceptColumnsRequest,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    storage: Annotated[FileStorage, Depends(get_file_storage)],
) -> ImportJobResponse:
    """Keep unmatched columns as custom fields."""
    job = await _get_import_or_404(session, import_id, current_user)
    job = await import_service.accept_unmatched_columns(session, storage, job, body.column_names)
    return ImportJobResponse.model_validate(job)


@router.post("/{import_id}/confirm", response_model=ImportJobResponse, status_code=202)
async def confirm_import(
    import_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    runner: Annotated[BackgroundTaskRunner, Depends(get_task_runner)],
) -> ImportJobResponse:
    """Start creating records for the valid rows; progress is polled separately."""
    job = await _get_import_or_404(session, import_id, current_user)
    await import_commit_service.begin_commit(session, job.id)
    runner.submit_task(
        import_commit_service.run_commit_job(job.id, cooldown_seconds=settings.import_commit_cooldown_seconds),
        name=f"commit-import-{job.id}",
    )
    await session.refresh(job)
    logger.info(f"Import {job.id} commit submitted by user {current_user.id}")
    return ImportJobResponse.model_validate(job)


@router.post("/{import_id}/cancel", response_model=ImportJobResponse)
async def cancel_import(
    import_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> ImportJobResponse:
    """Cancel an import; a running commit stops before its next row."""
    job = await _get_import_or_404(session, import_id, current_user)
    job = await import_service.cancel_import(session, job)
    return ImportJobResponse.model_validate(job)


@router.delete("/{import_id}", status_code=204)
async def delete_import(
    import_id: uuid.UUID,
    current_user: Annotated[User, Depends(require_role(*IMPORT_ROLES))],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    storage: Annotated[FileStorage, Depends(get_file_storage)],
) -> None:
    """Delete an import with its staging rows and stored file."""
    job = await _get_import_or_404(session, import_id, current_user)
    await import_service.delete_import(session, storage, job)
