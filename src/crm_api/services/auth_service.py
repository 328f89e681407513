"""Authentication and tenant bootstrap service.

Handles login by email, token generation, and creation of tenants and
their first users from the CLI.
"""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.core.config import Settings
from crm_api.core.security import create_access_token, hash_password, verify_password
from crm_api.models.client import Client
from crm_api.models.user import User, UserRole
from crm_api.schemas.auth import TokenResponse


async def authenticate_user(session: AsyncSession, email: str, password: str) -> User | None:
    """Authenticate a user by email and password.

    Emails are unique per tenant, so every active account with the email is
    tried and the first whose password verifies wins.

    Args:
        session: The database session.
        email: Login email (case-insensitive).
        password: The plaintext password.

    Returns:
        The User if authentication succeeds, None otherwise.
    """
    result = await session.execute(
        select(User).where(func.lower(User.email) == email.strip().lower(), User.is_active.is_(True))
    )
    for user in result.scalars().all():
        if verify_password(password, user.hashed_password):
            return user
    return None


async def get_client_by_name(session: AsyncSession, name: str) -> Client | None:
    """Look up a tenant by exact name."""
    result = await session.execute(select(Client).where(Client.name == name))
    return result.scalar_one_or_none()


async def get_or_create_client(session: AsyncSession, name: str) -> Client:
    """Return the named tenant, creating it when missing."""
    client = await get_client_by_name(session, name)
    if client is not None:
        return client
    client = Client(name=name)
    session.add(client)
    await session.commit()
    await session.refresh(client)
    return client


async def create_user(
    session: AsyncSession,
    *,
    client_id: uuid.UUID,
    email: str,
    password: str,
    role: str = UserRole.ADMIN,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> User:
    """Create a user in a tenant.

    Raises:
        ValueError: If the email already exists in the tenant or the role is unknown.
    """
    parsed_role = UserRole.parse(role)
    if parsed_role is None:
        msg = f"Unknown role: {role}"
        raise ValueError(msg)
    normalized_email = email.strip().lower()
    existing = await session.execute(
        select(User.id).where(User.client_id == client_id, func.lower(User.email) == normalized_email)
    )
    if existing.scalar_one_or_none() is not None:
        msg = "Email already exists in this tenant"
        raise ValueError(msg)

    user = User(
        client_id=client_id,
        email=normalized_email,
        username=normalized_email,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        role=parsed_role,
        hashed_password=hash_password(password),
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


def generate_token(user: User, settings: Settings) -> TokenResponse:
    """Generate an access token for a user.

    Args:
        user: The authenticated user.
        settings: Application settings.

    Returns:
        Token response carrying the tenant and role claims.
    """
    access_token = create_access_token(
        subject=str(user.id),
        role=user.role,
        client_id=str(user.client_id),
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        expires_minutes=settings.jwt_access_token_expire_minutes,
    )
    return TokenResponse(
        access_token=access_token,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )
