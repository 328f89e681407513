"""Integration tests for login and tenant bootstrap."""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.core.config import Settings
from crm_api.core.security import decode_token
from crm_api.models.client import Client
from crm_api.models.user import User
from crm_api.services import auth_service


class TestAuthenticateUser:
    @pytest.mark.asyncio
    async def test_login_by_email_is_case_insensitive(self, async_session: AsyncSession, admin_user: User) -> None:
        user = await auth_service.authenticate_user(async_session, " ADMIN@financiera.pe", "testpassword123")
        assert user is not None
        assert user.id == admin_user.id

    @pytest.mark.asyncio
    async def test_wrong_password(self, async_session: AsyncSession, admin_user: User) -> None:
        assert await auth_service.authenticate_user(async_session, admin_user.email, "nope") is None

    @pytest.mark.asyncio
    async def test_inactive_user(self, async_session: AsyncSession, admin_user: User) -> None:
        admin_user.is_active = False
        await async_session.commit()
        assert await auth_service.authenticate_user(async_session, admin_user.email, "testpassword123") is None


class TestCreateUser:
    @pytest.mark.asyncio
    async def test_creates_tenant_and_user(self, async_session: AsyncSession) -> None:
        client = await auth_service.get_or_create_client(async_session, "Nueva Empresa")
        assert (await auth_service.get_or_create_client(async_session, "Nueva Empresa")).id == client.id

        user = await auth_service.create_user(
            async_session, client_id=client.id, email="Jefe@Empresa.pe", password="secret123", role="supervisor"
        )
        assert user.email == "jefe@empresa.pe"
        assert user.role == "supervisor"

    @pytest.mark.asyncio
    async def test_duplicate_email_in_tenant(self, async_session: AsyncSession, tenant: Client, admin_user: User) -> None:
        with pytest.raises(ValueError, match="already exists"):
            await auth_service.create_user(
                async_session, client_id=tenant.id, email=admin_user.email.upper(), password="secret123"
            )

    @pytest.mark.asyncio
    async def test_unknown_role(self, async_session: AsyncSession, tenant: Client) -> None:
        with pytest.raises(ValueError, match="Unknown role"):
            await auth_service.create_user(
                async_session, client_id=tenant.id, email="x@y.pe", password="secret123", role="wizard"
            )


class TestGenerateToken:
    def test_token_carries_tenant_and_role(self, settings: Settings) -> None:
        user = User(
            id=uuid.uuid4(),
            client_id=uuid.uuid4(),
            email="a@b.pe",
            role="admin",
            hashed_password="x",
        )
        token = auth_service.generate_token(user, settings)
        payload = decode_token(token.access_token, settings.jwt_secret_key)
        assert payload["sub"] == str(user.id)
        assert payload["client_id"] == str(user.client_id)
        assert payload["role"] == "admin"
        assert token.expires_in == 30 * 60
