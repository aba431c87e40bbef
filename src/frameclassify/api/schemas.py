"""Pydantic request/response schemas for the FrameClassify API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Classification(BaseModel):
    """A single labeled score."""

    label: str
    score: float


class ClassifyFrameResponse(BaseModel):
    """Response for the frame classification endpoint."""

    classifications: list[Classification] = Field(description="Results ordered by descending score")
    inference_time_ms: float = Field(ge=0.0, description="Wall-clock duration of the model forward pass")


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(protected_namespaces=())

    status: str = "ok"
    gpu: bool
    model_loaded: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    input_shape: list[int] = Field(description="Model input tensor shape (NHWC)")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
