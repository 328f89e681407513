"""Fixtures for API tests: the real app wired to the test database and storage."""

from collections.abc import AsyncGenerator, Callable, Coroutine, Generator
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_api.core.config import Settings, get_settings
from crm_api.core.dependencies import get_async_session, get_current_user, get_file_storage, get_task_runner
from crm_api.lib.storage import LocalFileStorage
from crm_api.main import create_app
from crm_api.models.user import User


class RecordingTaskRunner:
    """Collects submitted coroutines instead of running them."""

    def __init__(self) -> None:
        self.submitted: list[tuple[str | None, Coroutine[Any, Any, Any]]] = []

    def submit_task(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> str:
        self.submitted.append((name, coro))
        return str(len(self.submitted))

    def close(self) -> None:
        for _, coro in self.submitted:
            coro.close()


@pytest.fixture
def task_runner() -> Generator[RecordingTaskRunner]:
    runner = RecordingTaskRunner()
    yield runner
    runner.close()


@pytest.fixture
def app(
    monkeypatch: pytest.MonkeyPatch,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    storage: LocalFileStorage,
    task_runner: RecordingTaskRunner,
) -> FastAPI:
    monkeypatch.setenv("DATABASE_URL", settings.database_url)
    monkeypatch.setenv("JWT_SECRET_KEY", settings.jwt_secret_key)
    application = create_app()

    async def _session() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_async_session] = _session
    application.dependency_overrides[get_settings] = lambda: settings
    application.dependency_overrides[get_file_storage] = lambda: storage
    application.dependency_overrides[get_task_runner] = lambda: task_runner
    return application


@pytest.fixture
def login_as(app: FastAPI) -> Callable[[User], None]:
    """Authenticate subsequent requests as the given user."""

    def _login(user: User) -> None:
        app.dependency_overrides[get_current_user] = lambda: user

    return _login


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://test") as http:
        yield http


@pytest.fixture
async def admin_client(app: FastAPI, admin_user: User) -> AsyncGenerator[AsyncClient]:
    app.dependency_overrides[get_current_user] = lambda: admin_user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://test") as http:
        yield http
