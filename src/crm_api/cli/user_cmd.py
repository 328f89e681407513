"""User and tenant management CLI commands."""

import asyncio

import typer

user_app = typer.Typer()


@user_app.command("create")
def create_user(
    client: str = typer.Option(..., "--client", prompt=True, help="Tenant name (created if missing)"),
    email: str = typer.Option(..., prompt=True, help="Email address"),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True, help="Password"),
    role: str = typer.Option("admin", prompt=True, help="User role (super_admin/admin/supervisor/agent/standard)"),
    first_name: str | None = typer.Option(None, "--first-name", help="First name"),
    last_name: str | None = typer.Option(None, "--last-name", help="Last name"),
    if_not_exists: bool = typer.Option(
        False,
        "--if-not-exists",
        help="Exit successfully if the user already exists in the tenant",
    ),
) -> None:
    """Create a user, creating the tenant when it does not exist yet."""
    asyncio.run(
        _create_user(client, email, password, role, first_name, last_name, if_not_exists=if_not_exists)
    )


async def _create_user(
    client_name: str,
    email: str,
    password: str,
    role: str,
    first_name: str | None,
    last_name: str | None,
    *,
    if_not_exists: bool = False,
) -> None:
    """Async implementation of user creation."""
    from crm_api.core.config import get_settings
    from crm_api.core.database import dispose_engine, init_engine, session_scope
    from crm_api.services.auth_service import create_user, get_or_create_client

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        async with session_scope() as session:
            client = await get_or_create_client(session, client_name)
            user = await create_user(
                session,
                client_id=client.id,
                email=email,
                password=password,
                role=role,
                first_name=first_name,
                last_name=last_name,
            )
            typer.echo(f"User '{user.email}' created in '{client.name}' with role '{user.role}'")
    except ValueError as e:
        if if_not_exists and "already exists" in str(e):
            typer.echo(f"User '{email}' already exists, skipping (--if-not-exists)")
            return
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        await dispose_engine()


@user_app.command("token")
def issue_token(
    email: str = typer.Option(..., prompt=True, help="Email address"),
    password: str = typer.Option(..., prompt=True, hide_input=True, help="Password"),
) -> None:
    """Print an access token for a user (handy for scripting the API)."""
    asyncio.run(_issue_token(email, password))


async def _issue_token(email: str, password: str) -> None:
    from crm_api.core.config import get_settings
    from crm_api.core.database import dispose_engine, init_engine, session_scope
    from crm_api.services.auth_service import authenticate_user, generate_token

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        async with session_scope() as session:
            user = await authenticate_user(session, email, password)
            if user is None:
                typer.echo("Error: incorrect email or password", err=True)
                raise typer.Exit(code=1)
            typer.echo(generate_token(user, settings).access_token)
    finally:
        await dispose_engine()
