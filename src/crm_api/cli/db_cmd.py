"""Database migration CLI commands (``crm-api db ...``) backed by Alembic."""

from pathlib import Path

import typer
from loguru import logger

db_app = typer.Typer()

# Dropping to base removes every tenant, user and import table
_DESTRUCTIVE_REVISIONS = {"base"}


def _alembic_config(ini_path: Path):  # type: ignore[no-untyped-def]
    from alembic.config import Config

    if not ini_path.exists():
        typer.echo(f"Alembic config not found: {ini_path}", err=True)
        raise typer.Exit(code=1)
    return Config(str(ini_path))


_INI_OPTION = typer.Option(Path("alembic.ini"), "--config", "-c", help="Path to alembic.ini")


@db_app.command()
def upgrade(
    revision: str = typer.Argument("head", help="Target revision"),
    sql: bool = typer.Option(False, "--sql", help="Print the SQL instead of running it"),
    ini_path: Path = _INI_OPTION,
) -> None:
    """Apply migrations up to the target revision."""
    from alembic import command

    logger.info(f"Upgrading database to {revision}{' (offline SQL)' if sql else ''}")
    command.upgrade(_alembic_config(ini_path), revision, sql=sql)
    if not sql:
        logger.info("Database upgrade complete")


@db_app.command()
def downgrade(
    revision: str = typer.Argument("-1", help="Target revision"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation for destructive targets"),
    ini_path: Path = _INI_OPTION,
) -> None:
    """Roll migrations back to the target revision (one step by default)."""
    from alembic import command

    if revision in _DESTRUCTIVE_REVISIONS and not yes:
        typer.confirm(f"Downgrading to '{revision}' drops all CRM tables. Continue?", abort=True)
    logger.info(f"Downgrading database to {revision}")
    command.downgrade(_alembic_config(ini_path), revision)
    logger.info("Database downgrade complete")


@db_app.command()
def current(ini_path: Path = _INI_OPTION) -> None:
    """Show the revision the database is at."""
    from alembic import command

    command.current(_alembic_config(ini_path), verbose=True)


@db_app.command()
def history(ini_path: Path = _INI_OPTION) -> None:
    """List the migration history."""
    from alembic import command

    command.history(_alembic_config(ini_path), indicate_current=True)
