"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from frameclassify.api.middleware import read_frame_body, verify_api_key
from frameclassify.api.schemas import (
    Classification,
    ClassifyFrameResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
)
from frameclassify.ml.frame import CameraFrame
from frameclassify.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from frameclassify.config import Settings
    from frameclassify.ml.image_classifier import ClassificationOutcome, FrameClassifier
    from frameclassify.ml.inference import InferencePool
    from frameclassify.ml.model_manager import ModelManager

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_classifier(request: Request) -> FrameClassifier:
    classifier: FrameClassifier = request.app.state.classifier
    return classifier


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


@router.post(
    "/classify-frame",
    response_model=ClassifyFrameResponse,
    responses={
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify a raw NV21 camera frame",
)
async def classify_frame(
    request: Request,
    width: Annotated[int, Query(ge=1, description="Frame width in pixels")],
    height: Annotated[int, Query(ge=1, description="Frame height in pixels")],
    body: Annotated[bytes, Depends(read_frame_body)],
) -> ClassifyFrameResponse | JSONResponse:
    """Classify one frame sent as the raw request body."""
    classifier = _get_classifier(request)
    pool = _get_inference_pool(request)

    frame = CameraFrame(width=width, height=height, data=body)
    try:
        outcome: ClassificationOutcome = await pool.run(classifier.classify, frame)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, retry later",
        ) from None
    finally:
        # No-op when classify already released it.
        frame.close()

    if not outcome.ok:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
        if not classifier.is_initialized:
            code = status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=code, content={"detail": outcome.error})

    return ClassifyFrameResponse(
        classifications=[Classification(label=r.label, score=r.score) for r in outcome.classifications],
        inference_time_ms=outcome.inference_time_ms,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model_loaded=_get_classifier(request).is_initialized,
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered models, marking the configured one as active."""
    settings = _get_settings(request)
    models = [
        ModelInfo(
            name=spec.name,
            input_shape=list(spec.input_shape),
            status="active" if spec.name == settings.model_name else "available",
            license=spec.license,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
