"""FastAPI dependency injection for database sessions, auth, and access control.

Provides get_async_session, get_current_user, role-based access control, and
the storage/task-runner collaborators used by the import routes.
"""

import uuid
from collections.abc import AsyncGenerator, Callable
from typing import Annotated, Any

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.core.background import BackgroundTaskRunner, task_runner
from crm_api.core.config import Settings, get_settings
from crm_api.core.database import get_session_factory
from crm_api.core.security import decode_token
from crm_api.lib.storage import FileStorage, build_file_storage
from crm_api.models.user import User, UserRole

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/login")

ADMIN_ROLES: tuple[str, ...] = (UserRole.SUPER_ADMIN, UserRole.ADMIN)
IMPORT_ROLES: tuple[str, ...] = (UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.SUPERVISOR)


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield an async database session with per-request lifecycle."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> User:
    """Decode JWT and return the authenticated user.

    Args:
        token: The JWT bearer token.
        session: The database session.
        settings: Application settings.

    Returns:
        The authenticated User model instance.

    Raises:
        HTTPException: If the token is invalid or user not found.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token, settings.jwt_secret_key, settings.jwt_algorithm)
        subject: str | None = payload.get("sub")
        if subject is None:
            raise credentials_exception
        user_id = uuid.UUID(subject)
    except Exception as exc:
        raise credentials_exception from exc

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def require_role(*roles: str) -> Callable[..., Any]:
    """Factory that creates a dependency requiring specific user roles.

    Args:
        *roles: Allowed role names (e.g., "admin", "supervisor").

    Returns:
        A FastAPI dependency function that validates the user's role.
    """

    async def role_checker(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{current_user.role}' does not have access to this resource",
            )
        return current_user

    return role_checker


def get_file_storage(
    settings: Annotated[Settings, Depends(get_settings)],
) -> FileStorage:
    """Return the upload storage backend selected by settings."""
    return build_file_storage(settings)


def get_task_runner() -> BackgroundTaskRunner:
    """Return the process-wide background task runner."""
    return task_runner
