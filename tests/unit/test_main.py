"""Tests for the FastAPI application factory module."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from crm_api.core.config import Settings
from crm_api.lib.importer.errors import ImportStateError, ImportStructureError
from crm_api.main import create_app, lifespan


def _settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret_key="test-secret-key-not-for-production-use",
    )


class TestCreateApp:
    """Tests for create_app."""

    @pytest.fixture
    def app(self):
        with patch("crm_api.main.get_settings", return_value=_settings()):
            app = create_app()

        @app.get("/boom/state")
        async def _state() -> None:
            msg = "Only a validated import can be committed"
            raise ImportStateError(msg)

        @app.get("/boom/structure")
        async def _structure() -> None:
            msg = "The file is empty"
            raise ImportStructureError(msg)

        return app

    def test_openapi_schema(self, app) -> None:
        client = TestClient(app)
        response = client.get("/openapi.json")
        assert response.status_code == 200
        schema = response.json()
        assert schema["info"]["title"] == "CRM API"
        assert "/api/v1/imports/{import_id}/confirm" in schema["paths"]

    def test_state_error_maps_to_conflict(self, app) -> None:
        response = TestClient(app).get("/boom/state")
        assert response.status_code == 409
        assert response.json() == {"detail": "Only a validated import can be committed"}

    def test_value_error_maps_to_bad_request(self, app) -> None:
        response = TestClient(app).get("/boom/structure")
        assert response.status_code == 400
        assert response.json() == {"detail": "The file is empty"}


class TestAppLifespan:
    """Tests for lifespan management."""

    @pytest.mark.asyncio
    async def test_lifespan_init_and_dispose(self) -> None:
        with (
            patch("crm_api.main.get_settings", return_value=_settings()),
            patch("crm_api.main.setup_logging") as mock_setup_logging,
            patch("crm_api.main.init_engine") as mock_init_engine,
            patch("crm_api.main.dispose_engine", new_callable=AsyncMock) as mock_dispose,
            patch("crm_api.main.task_runner") as mock_runner,
        ):
            mock_runner.shutdown = AsyncMock()

            async with lifespan(AsyncMock()):
                mock_setup_logging.assert_called_once()
                mock_init_engine.assert_called_once()

            mock_runner.shutdown.assert_awaited_once()
            mock_dispose.assert_awaited_once()
