"""CSV import CLI commands."""

import asyncio
from pathlib import Path

import typer

import_app = typer.Typer()


@import_app.command("csv")
def import_csv(
    file: Path = typer.Argument(..., help="Path to the CSV file", exists=True),  # noqa: B008
    client: str = typer.Option(..., "--client", help="Tenant name"),
    import_type: str = typer.Option("user", "--type", help="Import type (user/prospect/foh)"),
    user_email: str | None = typer.Option(None, "--user", help="Email of the user recorded as uploader"),
    commit: bool = typer.Option(False, "--commit", help="Create records for the valid rows after validation"),
) -> None:
    """Upload, auto-map and validate a CSV; optionally commit the valid rows.

    The saved template matching the file's headers is used when there is
    one, otherwise the suggested mapping.
    """
    asyncio.run(_import_csv(file, client, import_type, user_email, commit=commit))


async def _import_csv(
    file_path: Path,
    client_name: str,
    import_type: str,
    user_email: str | None,
    *,
    commit: bool,
) -> None:
    """Async implementation of the CSV import."""
    from sqlalchemy import func, select

    from crm_api.core.config import get_settings
    from crm_api.core.database import dispose_engine, init_engine, session_scope
    from crm_api.lib.storage import build_file_storage
    from crm_api.models.user import User
    from crm_api.services.auth_service import get_client_by_name
    from crm_api.services.import_commit_service import commit_import
    from crm_api.services.import_service import confirm_mapping, create_import, get_mapping_suggestions

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    storage = build_file_storage(settings)

    try:
        async with session_scope() as session:
            tenant = await get_client_by_name(session, client_name)
            if tenant is None:
                typer.echo(f"Error: tenant '{client_name}' not found", err=True)
                raise typer.Exit(code=1)
            user_id = None
            if user_email:
                result = await session.execute(
                    select(User.id).where(User.client_id == tenant.id, func.lower(User.email) == user_email.lower())
                )
                user_id = result.scalar_one_or_none()

            try:
                job = await create_import(
                    session,
                    storage,
                    client_id=tenant.id,
                    user_id=user_id,
                    content=file_path.read_bytes(),
                    filename=file_path.name,
                    import_type=import_type,
                    max_bytes=settings.import_max_file_size_bytes,
                )
                typer.echo(f"Import created: {job.id} ({job.total_records} rows)")

                suggestions = await get_mapping_suggestions(session, storage, job)
                if suggestions["matched_template"] is not None:
                    mapping = suggestions["matched_template"]["column_mapping"]
                    typer.echo(f"Using template '{suggestions['matched_template']['name']}'")
                else:
                    mapping = {str(col["index"]): col["target"] for col in suggestions["columns"] if col["target"]}
                for col in suggestions["unmatched_columns"]:
                    typer.echo(f"  Unmatched column: {col['name']}")

                job = await confirm_mapping(
                    session,
                    storage,
                    job,
                    column_mapping=mapping,
                    default_phone_code=settings.import_default_phone_code,
                )
                typer.echo(f"Validated: {job.valid_count} valid, {job.invalid_count} invalid")

                if commit:
                    job = await commit_import(
                        session, job.id, cooldown_seconds=settings.import_commit_cooldown_seconds
                    )
                    typer.echo(f"\nImport {job.status}:")
                    typer.echo(f"  Created: {job.records_created}")
                    typer.echo(f"  Failed:  {job.records_failed}")
                    if job.error_summary:
                        typer.echo(f"  {job.error_summary}")
            except ValueError as e:
                typer.echo(f"Error: {e}", err=True)
                raise typer.Exit(code=1) from e
    finally:
        await dispose_engine()


@import_app.command("sweep-stalled")
def sweep_stalled(
    older_than: int | None = typer.Option(
        None, "--older-than", help="Minutes without progress (defaults to IMPORT_STALLED_AFTER_MINUTES)"
    ),
) -> None:
    """Mark imports stuck in validating/processing as errored."""
    asyncio.run(_sweep_stalled(older_than))


async def _sweep_stalled(older_than: int | None) -> None:
    from crm_api.core.config import get_settings
    from crm_api.core.database import dispose_engine, init_engine, session_scope
    from crm_api.services.import_service import sweep_stalled_imports

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        async with session_scope() as session:
            count = await sweep_stalled_imports(
                session, older_than_minutes=older_than or settings.import_stalled_after_minutes
            )
            typer.echo(f"Marked {count} stalled imports as error")
    finally:
        await dispose_engine()


@import_app.command("sample")
def write_sample(
    output: Path = typer.Argument(..., help="Where to write the sample CSV"),  # noqa: B008
    import_type: str = typer.Option("user", "--type", help="Import type (user/prospect/foh)"),
) -> None:
    """Write a sample CSV for an import type."""
    from crm_api.lib.importer.parser import generate_sample_csv

    output.write_bytes(generate_sample_csv(import_type))
    typer.echo(f"Sample written to {output}")
