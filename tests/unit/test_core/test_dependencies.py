"""Tests for FastAPI dependency injection module."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException

from crm_api.core.config import Settings
from crm_api.core.dependencies import IMPORT_ROLES, get_current_user, get_file_storage, require_role
from crm_api.core.security import create_access_token
from crm_api.lib.storage import LocalFileStorage

SECRET = "test-secret-key-not-for-production-use"


def _settings(**overrides) -> Settings:
    return Settings(database_url="sqlite+aiosqlite:///:memory:", jwt_secret_key=SECRET, **overrides)


def _session_returning(user: object) -> AsyncMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = user
    session = AsyncMock()
    session.execute.return_value = result
    return session


class TestRequireRole:
    """Tests for require_role factory."""

    @pytest.mark.asyncio
    async def test_allowed_role_passes(self) -> None:
        checker = require_role(*IMPORT_ROLES)
        user = MagicMock()
        user.role = "supervisor"

        result = await checker(current_user=user)
        assert result is user

    @pytest.mark.asyncio
    async def test_agent_rejected_from_imports(self) -> None:
        checker = require_role(*IMPORT_ROLES)
        user = MagicMock()
        user.role = "agent"

        with pytest.raises(HTTPException) as exc_info:
            await checker(current_user=user)
        assert exc_info.value.status_code == 403
        assert "agent" in str(exc_info.value.detail)


class TestGetCurrentUser:
    """Tests for bearer token resolution."""

    @pytest.mark.asyncio
    async def test_valid_token_returns_active_user(self) -> None:
        user = MagicMock()
        user.is_active = True
        token = create_access_token(str(uuid.uuid4()), "admin", str(uuid.uuid4()), SECRET)

        result = await get_current_user(token=token, session=_session_returning(user), settings=_settings())
        assert result is user

    @pytest.mark.asyncio
    async def test_inactive_user_rejected(self) -> None:
        user = MagicMock()
        user.is_active = False
        token = create_access_token(str(uuid.uuid4()), "admin", str(uuid.uuid4()), SECRET)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(token=token, session=_session_returning(user), settings=_settings())
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_non_uuid_subject_rejected(self) -> None:
        token = create_access_token("not-a-uuid", "admin", str(uuid.uuid4()), SECRET)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(token=token, session=_session_returning(None), settings=_settings())
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token_rejected(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(token="garbage", session=_session_returning(None), settings=_settings())
        assert exc_info.value.status_code == 401


class TestGetFileStorage:
    def test_local_backend_by_default(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        storage = get_file_storage(_settings(import_upload_dir=str(tmp_path)))
        assert isinstance(storage, LocalFileStorage)

    def test_s3_backend_requires_bucket(self) -> None:
        with pytest.raises(ValueError, match="S3_BUCKET"):
            get_file_storage(_settings(import_storage_backend="s3"))
