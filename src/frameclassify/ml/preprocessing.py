"""Frame preprocessing pipeline.

Turns a raw NV21 camera buffer into the float tensor the classifier expects:
decode, optional JPEG round trip, bilinear resize, and single-channel packing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from frameclassify.ml.frame import FrameProxy

logger = logging.getLogger(__name__)

# Neutral chroma value for luma-only buffers.
_NEUTRAL_CHROMA = 128


class MalformedFrameError(ValueError):
    """Raised when a frame buffer cannot be decoded into an image."""


class FramePreprocessor:
    """Converts camera frames into fixed-shape model input tensors."""

    def __init__(
        self,
        width: int,
        height: int,
        *,
        reencode_jpeg: bool = True,
        jpeg_quality: int = 100,
    ) -> None:
        self._width = width
        self._height = height
        self._reencode_jpeg = reencode_jpeg
        self._jpeg_quality = jpeg_quality

    @property
    def input_shape(self) -> tuple[int, int, int, int]:
        return (1, self._height, self._width, 1)

    def preprocess(self, frame: FrameProxy) -> NDArray[np.float32]:
        """Decode, resize and pack a frame.

        Raises:
            MalformedFrameError: If the frame buffer is empty or cannot be decoded.
        """
        image = self.decode_frame(frame.width, frame.height, frame.data)
        resized = self.resize(image)
        return self.to_tensor(resized)

    def decode_frame(self, width: int, height: int, data: bytes) -> NDArray[np.uint8]:
        """Decode an NV21 (or luma-only) buffer into an HxWx3 BGR uint8 array.

        Args:
            width: Frame width in pixels (positive, even).
            height: Frame height in pixels (positive, even).
            data: Raw buffer. Bytes beyond the NV21 payload are ignored.

        Returns:
            HxWx3 BGR uint8 numpy array.

        Raises:
            MalformedFrameError: If the dimensions or buffer size are invalid.
        """
        if width <= 0 or height <= 0:
            raise MalformedFrameError(f"Invalid frame size {width}x{height}")
        if width % 2 or height % 2:
            raise MalformedFrameError(f"NV21 frames need even dimensions, got {width}x{height}")

        luma_size = width * height
        nv21_size = luma_size * 3 // 2
        raw = np.frombuffer(data, dtype=np.uint8)

        if raw.size >= nv21_size:
            yuv = raw[:nv21_size]
        elif raw.size >= luma_size:
            chroma = np.full(nv21_size - luma_size, _NEUTRAL_CHROMA, dtype=np.uint8)
            yuv = np.concatenate([raw[:luma_size], chroma])
        else:
            raise MalformedFrameError(f"Frame buffer too small: {raw.size} bytes for {width}x{height}")

        bgr = cv2.cvtColor(yuv.reshape(height * 3 // 2, width), cv2.COLOR_YUV2BGR_NV21)
        if self._reencode_jpeg:
            bgr = self._jpeg_round_trip(bgr)
        return bgr

    def resize(self, image: NDArray[np.uint8]) -> NDArray[np.uint8]:
        """Scale an image to the model input size with bilinear filtering."""
        if image.shape[0] == self._height and image.shape[1] == self._width:
            return image
        resized: NDArray[np.uint8] = cv2.resize(
            image,
            (self._width, self._height),
            interpolation=cv2.INTER_LINEAR,
        )
        return resized

    def to_tensor(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Pack an image into a (1, H, W, 1) float32 tensor in [0, 1].

        The packed value is the low byte of each ARGB pixel, which for a
        uint8 BGR array is channel 0 as-is. Grayscale (HxW) arrays are used
        directly.
        """
        plane = image if image.ndim == 2 else image[:, :, 0]
        if plane.shape != (self._height, self._width):
            got = f"{plane.shape[1]}x{plane.shape[0]}"
            raise MalformedFrameError(f"Expected {self._width}x{self._height} image, got {got}")
        tensor = plane.astype(np.float32) / np.float32(255.0)
        return tensor.reshape(self.input_shape)

    def _jpeg_round_trip(self, image: NDArray[np.uint8]) -> NDArray[np.uint8]:
        # Lossy. Disabled with FRAMECLASSIFY_REENCODE_JPEG=false.
        ok, encoded = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, self._jpeg_quality])
        if not ok:
            raise MalformedFrameError("JPEG encoding failed")
        decoded = cv2.imdecode(encoded, cv2.IMREAD_COLOR)
        if decoded is None:
            raise MalformedFrameError("JPEG decoding failed")
        logger.debug("Re-encoded frame through JPEG (%d bytes)", encoded.size)
        return decoded
