"""Tests for the FrameClassify API."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock, patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import httpx
import numpy as np
import pytest
from fastapi import FastAPI, status

from frameclassify.config import get_settings
from frameclassify.main import create_app
from frameclassify.ml.image_classifier import FrameClassifier
from frameclassify.ml.inference import InferencePool


def _make_session(scores: list[float]) -> MagicMock:
    model_input = MagicMock()
    model_input.name = "input_1"
    session = MagicMock()
    session.get_inputs.return_value = [model_input]
    session.run.return_value = [np.array([scores], dtype=np.float32)]
    return session


def _init_app_state(app: FastAPI, manager: MagicMock | None = None, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    env = {"FRAMECLASSIFY_REENCODE_JPEG": "false", **env_overrides}
    with patch.dict(os.environ, env):
        settings = get_settings()
    if manager is None:
        manager = MagicMock()
        manager.get_session.return_value = _make_session([0.1, 0.9, 0.3])
        manager.get_loaded_models.return_value = [settings.model_name]
    app.state.settings = settings
    app.state.inference_pool = InferencePool(settings)
    app.state.model_manager = manager
    app.state.classifier = FrameClassifier(settings, manager)


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    pool: InferencePool = app.state.inference_pool
    pool.shutdown()


def _nv21(width: int, height: int) -> bytes:
    return bytes(width * height * 3 // 2)


@pytest.fixture()
def app() -> FastAPI:
    """Create a fresh app instance with a mocked model."""
    application = create_app()
    _init_app_state(application)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["gpu"] is False
        assert data["model_loaded"] is True
        assert data["models_loaded"] == ["gray128_v1"]
        assert isinstance(data["concurrent_requests"], int)
        assert isinstance(data["queue_depth"], int)

    async def test_health_gpu_true_when_cuda(self) -> None:
        cuda_app = create_app()
        _init_app_state(cuda_app, FRAMECLASSIFY_DEVICE="cuda")
        async for ac in _make_client(cuda_app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_200_OK
            assert response.json()["gpu"] is True

    async def test_health_reports_unloaded_model(self) -> None:
        manager = MagicMock()
        manager.get_session.side_effect = RuntimeError("download failed")
        manager.get_loaded_models.return_value = []
        app = create_app()
        _init_app_state(app, manager=manager)
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_200_OK
            assert response.json()["model_loaded"] is False


class TestClassifyFrameEndpoint:
    async def test_classify_returns_sorted_results(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify-frame",
            params={"width": 64, "height": 48},
            content=_nv21(64, 48),
            headers={"Content-Type": "application/octet-stream"},
        )
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [c["label"] for c in data["classifications"]] == ["Label 1", "Label 2", "Label 0"]
        assert data["classifications"][0]["score"] == pytest.approx(0.9)
        assert data["inference_time_ms"] >= 0.0

    async def test_malformed_frame_returns_empty_list(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify-frame",
            params={"width": 64, "height": 48},
            content=b"\x00" * 10,
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["classifications"] == []

    async def test_missing_dimensions_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/classify-frame", content=_nv21(64, 48))
        assert response.status_code == 422

    async def test_oversized_frame_rejected(self) -> None:
        app = create_app()
        _init_app_state(app, FRAMECLASSIFY_MAX_FRAME_BYTES="100")
        async for ac in _make_client(app):
            response = await ac.post(
                "/api/v1/classify-frame",
                params={"width": 64, "height": 48},
                content=_nv21(64, 48),
            )
            assert response.status_code == 413

    async def test_model_load_failure_returns_503(self) -> None:
        manager = MagicMock()
        manager.get_session.side_effect = RuntimeError("download failed")
        manager.get_loaded_models.return_value = []
        app = create_app()
        _init_app_state(app, manager=manager)
        async for ac in _make_client(app):
            response = await ac.post(
                "/api/v1/classify-frame",
                params={"width": 64, "height": 48},
                content=_nv21(64, 48),
            )
            assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
            assert response.json()["detail"] == "Failed to load model: download failed"

    async def test_inference_failure_returns_500(self) -> None:
        session = _make_session([0.5])
        session.run.side_effect = RuntimeError("shape mismatch")
        manager = MagicMock()
        manager.get_session.return_value = session
        app = create_app()
        _init_app_state(app, manager=manager)
        async for ac in _make_client(app):
            response = await ac.post(
                "/api/v1/classify-frame",
                params={"width": 64, "height": 48},
                content=_nv21(64, 48),
            )
            assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
            assert "shape mismatch" in response.json()["detail"]

    async def test_queue_timeout_returns_503_and_releases_frame(self, app: FastAPI) -> None:
        pool = MagicMock()
        pool.run = AsyncMock(side_effect=TimeoutError)
        app.state.inference_pool = pool
        frame = MagicMock()
        with patch("frameclassify.api.routes.CameraFrame", return_value=frame):
            async for ac in _make_client(app):
                response = await ac.post(
                    "/api/v1/classify-frame",
                    params={"width": 64, "height": 48},
                    content=_nv21(64, 48),
                )
                assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
                assert "queue" in response.json()["detail"]
        frame.close.assert_called_once_with()


class TestModelsEndpoint:
    async def test_models_returns_list(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/models")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert "models" in data
        assert len(data["models"]) >= 2

    async def test_default_model_is_active(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/models")
        models = response.json()["models"]
        active_names = {m["name"] for m in models if m["status"] == "active"}
        assert active_names == {"gray128_v1"}

    async def test_models_report_input_shape(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/models")
        for model in response.json()["models"]:
            assert model["input_shape"] == [1, 128, 128, 1]


class TestAuthentication:
    async def test_no_auth_required_by_default(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK

    async def test_auth_required_when_api_key_set(self) -> None:
        app = create_app()
        _init_app_state(app, FRAMECLASSIFY_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health")
            assert response.status_code in (
                status.HTTP_401_UNAUTHORIZED,
                status.HTTP_403_FORBIDDEN,
            )

    async def test_auth_passes_with_correct_key(self) -> None:
        app = create_app()
        _init_app_state(app, FRAMECLASSIFY_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer test-secret-key"},
            )
            assert response.status_code == status.HTTP_200_OK

    async def test_auth_fails_with_wrong_key(self) -> None:
        app = create_app()
        _init_app_state(app, FRAMECLASSIFY_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.post(
                "/api/v1/classify-frame",
                params={"width": 64, "height": 48},
                content=_nv21(64, 48),
                headers={"Authorization": "Bearer wrong-key"},
            )
            assert response.status_code in (
                status.HTTP_401_UNAUTHORIZED,
                status.HTTP_403_FORBIDDEN,
            )
