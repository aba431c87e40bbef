"""Environment-based configuration for FrameClassify."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FRAMECLASSIFY_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FRAMECLASSIFY_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection. The registry repo is a placeholder: set model_path
    # (FRAMECLASSIFY_MODEL_PATH) to a local .onnx file to load a real model.
    model_name: str = "gray128_v1"
    model_path: str | None = None
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency (the classifier expects frames one at a time)
    max_concurrent: int = Field(default=1, ge=1)

    # Input limits
    max_frame_bytes: int = Field(default=33_554_432, ge=1)

    # Frame decoding
    reencode_jpeg: bool = True
    jpeg_quality: int = Field(default=100, ge=1, le=100)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
