"""Camera frame descriptors.

A frame wraps one buffer handed over by the camera pipeline. The buffer is
released through ``close()``; the pipeline will not deliver the next frame
until the current one is closed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable


class FrameProxy(Protocol):
    """Protocol for a camera frame that must be released after use."""

    @property
    def width(self) -> int:
        """Frame width in pixels."""
        ...

    @property
    def height(self) -> int:
        """Frame height in pixels."""
        ...

    @property
    def data(self) -> bytes:
        """Raw single-plane pixel buffer (NV21 or luma only)."""
        ...

    def close(self) -> None:
        """Release the underlying camera buffer."""
        ...


@dataclass
class CameraFrame:
    """In-memory frame with an optional release hook.

    ``on_close`` runs on the first ``close()`` only.
    """

    width: int
    height: int
    data: bytes
    on_close: Callable[[], None] | None = None
    _closed: bool = field(default=False, init=False, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.on_close is not None:
            self.on_close()

    def __enter__(self) -> CameraFrame:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
