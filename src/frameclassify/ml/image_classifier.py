"""Camera frame classifier.

Wraps a fixed-input ONNX classification model. Each call converts one frame
into a (1, 128, 128, 1) tensor, runs the model, and reports labeled scores
sorted by descending score through a listener and a returned outcome.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import numpy as np

from frameclassify.ml.preprocessing import FramePreprocessor, MalformedFrameError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from onnxruntime import InferenceSession

    from frameclassify.config import Settings
    from frameclassify.ml.frame import FrameProxy
    from frameclassify.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

INPUT_WIDTH = 128
INPUT_HEIGHT = 128
INPUT_CHANNELS = 1


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    score: float


@dataclass(frozen=True)
class ClassificationOutcome:
    """Result of one classify call. ``error`` is set when no model ran."""

    classifications: list[ClassificationResult] = field(default_factory=list)
    inference_time_ms: float = 0.0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ClassifierListener(Protocol):
    """Receives classification signals."""

    def on_error(self, error: str) -> None:
        """Called when the model cannot be loaded or inference fails."""
        ...

    def on_results(self, results: list[ClassificationResult], inference_time_ms: float) -> None:
        """Called with the ranked results of one frame."""
        ...


class LoggingClassifierListener:
    """Listener that writes every signal to the log."""

    def on_error(self, error: str) -> None:
        logger.error("Classifier error: %s", error)

    def on_results(self, results: list[ClassificationResult], inference_time_ms: float) -> None:
        if results:
            top = results[0]
            logger.debug("Top result %s (%.4f) in %.1f ms", top.label, top.score, inference_time_ms)
        else:
            logger.debug("No classification results")


def parse_results(scores: Sequence[float] | np.ndarray | None) -> list[ClassificationResult]:
    """Label each score by its index and sort by descending score.

    Ties keep their original index order.
    """
    if scores is None:
        return []
    flat = np.asarray(scores, dtype=np.float32).ravel()
    if flat.size == 0:
        return []
    results = [ClassificationResult(label=f"Label {i}", score=float(s)) for i, s in enumerate(flat)]
    return sorted(results, key=lambda r: r.score, reverse=True)


class FrameClassifier:
    """Classifies camera frames with a lazily (re)loaded ONNX model.

    Not reentrant: frames are expected one at a time.
    """

    def __init__(
        self,
        settings: Settings,
        model_manager: ModelManager,
        listener: ClassifierListener | None = None,
    ) -> None:
        self._model_name = settings.model_name
        self._model_manager = model_manager
        self._listener = listener
        self._preprocessor = FramePreprocessor(
            INPUT_WIDTH,
            INPUT_HEIGHT,
            reencode_jpeg=settings.reencode_jpeg,
            jpeg_quality=settings.jpeg_quality,
        )
        self._session: InferenceSession | None = None
        self._input_name: str | None = None
        self._last_error: str | None = None
        self.setup()

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def is_initialized(self) -> bool:
        return self._session is not None

    @property
    def last_error(self) -> str | None:
        """Most recent model load error, if the model is not loaded."""
        return self._last_error

    @property
    def output_class_count(self) -> int | None:
        """Number of scores the model emits, if its output shape is static."""
        if self._session is None:
            return None
        shape = self._session.get_outputs()[0].shape
        if not shape or not isinstance(shape[-1], int):
            return None
        return int(shape[-1])

    def setup(self) -> bool:
        """Load the model. Failures go to the listener; returns whether it loaded."""
        try:
            session = self._model_manager.get_session(self._model_name)
            input_name = session.get_inputs()[0].name
        except Exception as e:
            self._session = None
            self._last_error = f"Failed to load model: {e}"
            logger.error("Failed to load model %s: %s", self._model_name, e)
            self._emit_error(self._last_error)
            return False

        self._session = session
        self._input_name = input_name
        self._last_error = None
        logger.info("Classifier ready with model %s", self._model_name)
        return True

    def classify(self, frame: FrameProxy) -> ClassificationOutcome:
        """Classify one frame. The frame is closed before this returns."""
        try:
            return self._classify(frame)
        finally:
            frame.close()

    def _classify(self, frame: FrameProxy) -> ClassificationOutcome:
        if self._session is None:
            self.setup()
        session, input_name = self._session, self._input_name
        if session is None or input_name is None:
            return ClassificationOutcome(error=self._last_error)

        try:
            tensor = self._preprocessor.preprocess(frame)
        except MalformedFrameError as e:
            logger.warning("Skipping malformed frame: %s", e)
            self._emit_results([], 0.0)
            return ClassificationOutcome()

        start = time.perf_counter()
        try:
            outputs = session.run(None, {input_name: tensor})
            inference_time_ms = (time.perf_counter() - start) * 1000.0
            results = parse_results(outputs[0] if outputs else None)
        except Exception as e:
            message = f"Inference failed: {e}"
            logger.error("Inference failed for model %s: %s", self._model_name, e)
            self._emit_error(message)
            return ClassificationOutcome(error=message)

        self._emit_results(results, inference_time_ms)
        return ClassificationOutcome(classifications=results, inference_time_ms=inference_time_ms)

    def _emit_results(self, results: list[ClassificationResult], inference_time_ms: float) -> None:
        if self._listener is None:
            return
        try:
            self._listener.on_results(results, inference_time_ms)
        except Exception:
            logger.exception("Listener failed to handle %d results", len(results))

    def _emit_error(self, message: str) -> None:
        if self._listener is None:
            return
        try:
            self._listener.on_error(message)
        except Exception:
            logger.exception("Listener failed to handle error: %s", message)
