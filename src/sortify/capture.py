"""Camera access via OpenCV.

Opening and reading are blocking calls; the scan session runs them on a
worker thread.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import cv2

from sortify.errors import CaptureUnavailable

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from sortify.config import Settings

logger = logging.getLogger(__name__)


class CameraStream(Protocol):
    """An open camera producing RGB frames."""

    def read(self) -> NDArray[np.uint8]:
        """Grab the latest frame as an HxWx3 RGB array."""
        ...

    def release(self) -> None:
        """Stop the stream and free the device."""
        ...


class CaptureDevice(Protocol):
    """Something that can hand out a :class:`CameraStream`."""

    def open(self) -> CameraStream: ...


class OpenCvStream:
    def __init__(self, capture: cv2.VideoCapture) -> None:
        self._capture: cv2.VideoCapture | None = capture

    def read(self) -> NDArray[np.uint8]:
        if self._capture is None or not self._capture.isOpened():
            raise CaptureUnavailable("Camera stream is closed.")
        try:
            ok, frame = self._capture.read()
        except cv2.error as exc:
            raise CaptureUnavailable("Camera read failed.") from exc
        if not ok or frame is None:
            raise CaptureUnavailable("Camera returned no frame.")
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None


class OpenCvCamera:
    """Opens a local camera by index, asking for the configured resolution.

    The resolution is a request; the device may pick something else.
    """

    def __init__(self, index: int = 0, width: int = 1280, height: int = 720) -> None:
        self._index = index
        self._width = width
        self._height = height

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenCvCamera:
        return cls(settings.camera_index, settings.camera_width, settings.camera_height)

    def open(self) -> OpenCvStream:
        try:
            capture = cv2.VideoCapture(self._index)
        except cv2.error as exc:
            raise CaptureUnavailable() from exc
        if not capture.isOpened():
            capture.release()
            raise CaptureUnavailable()
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
        logger.info(
            "Camera %d opened at %dx%d",
            self._index,
            int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
        return OpenCvStream(capture)
