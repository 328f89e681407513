"""Shared test fixtures for async database, sessions, tenants, users and upload storage."""

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crm_api.core.config import Settings
from crm_api.core.security import create_access_token, hash_password
from crm_api.lib.storage import LocalFileStorage
from crm_api.models.base import Base
from crm_api.models.client import Client
from crm_api.models.import_job import ImportJob
from crm_api.models.user import User, UserRole
from crm_api.services import import_service

TEST_SECRET = "test-secret-key-not-for-production-use"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test application settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret_key=TEST_SECRET,
        jwt_algorithm="HS256",
        jwt_access_token_expire_minutes=30,
        import_upload_dir=str(tmp_path / "uploads"),
    )


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory async SQLite engine shared by every session of a test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _fk_pragma(dbapi_conn, _record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Create a per-test async session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path: Path) -> LocalFileStorage:
    """Upload storage rooted in the test's temp directory."""
    return LocalFileStorage(tmp_path / "uploads")


@pytest.fixture
async def tenant(async_session: AsyncSession) -> Client:
    """A tenant named like a real customer (used for synthesized emails)."""
    client = Client(name="Financiera Oh")
    async_session.add(client)
    await async_session.commit()
    await async_session.refresh(client)
    return client


@pytest.fixture
async def admin_user(async_session: AsyncSession, tenant: Client) -> User:
    """An admin of the test tenant."""
    user = User(
        client_id=tenant.id,
        email="admin@financiera.pe",
        username="admin@financiera.pe",
        first_name="Ada",
        role=UserRole.ADMIN,
        hashed_password=hash_password("testpassword123"),
    )
    async_session.add(user)
    await async_session.commit()
    await async_session.refresh(user)
    return user


@pytest.fixture
def admin_token(settings: Settings, admin_user: User) -> str:
    """Generate a JWT access token for the admin user."""
    return create_access_token(
        subject=str(admin_user.id),
        role=admin_user.role,
        client_id=str(admin_user.client_id),
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


ImportFactory = Callable[..., Awaitable[ImportJob]]


@pytest.fixture
def create_validated_import(
    async_session: AsyncSession, storage: LocalFileStorage, tenant: Client, admin_user: User
) -> ImportFactory:
    """Upload CSV text and confirm a mapping; returns the validated import."""

    async def _create(
        csv_text: str,
        mapping: dict[str, str],
        *,
        import_type: str = "user",
        client_id: uuid.UUID | None = None,
    ) -> ImportJob:
        job = await import_service.create_import(
            async_session,
            storage,
            client_id=client_id or tenant.id,
            user_id=admin_user.id,
            content=csv_text.encode("utf-8"),
            filename="contacts.csv",
            import_type=import_type,
        )
        return await import_service.confirm_mapping(async_session, storage, job, column_mapping=mapping)

    return _create
