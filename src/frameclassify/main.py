"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from frameclassify.api.routes import router
from frameclassify.config import get_settings
from frameclassify.ml.image_classifier import FrameClassifier, LoggingClassifierListener
from frameclassify.ml.inference import InferencePool
from frameclassify.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the model on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FrameClassify (device=%s, model=%s, reencode_jpeg=%s)",
        settings.device,
        settings.model_name,
        settings.reencode_jpeg,
    )

    model_manager = OnnxModelManager(settings)
    app.state.model_manager = model_manager
    app.state.inference_pool = InferencePool(settings)
    # A failed load is reported by the listener and retried on the next frame.
    app.state.classifier = FrameClassifier(settings, model_manager, listener=LoggingClassifierListener())

    logger.info("FrameClassify ready")
    yield

    logger.info("Shutting down FrameClassify")
    app.state.inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("FrameClassify shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FrameClassify",
        description="Camera frame classification API backed by an ONNX model",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
