"""Capture/analysis state machine for one scanning session.

States::

    camera_active <-> camera_stopped
    (camera_active | uploaded file) -> analyzing -> result_ready | result_error
    result_ready | result_error --reset()--> camera_active

At most one scan is analyzed at a time: submitting while ``analyzing`` is
rejected with :class:`ScanInProgress`. Entering analysis releases the camera;
``reset()`` acquires it again.

Model loading failures are terminal and kept as a banner. Per-scan failures
only affect the current cycle and are cleared by ``reset()``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from sortify.errors import (
    CaptureUnavailable,
    InvalidInput,
    ModelLoadFailure,
    PersistenceFailure,
    RuntimeBootstrapFailure,
    ScanInProgress,
    SessionNotReady,
    SortifyError,
)
from sortify.ml.preprocessing import decode_image, encode_snapshot, preprocess, snapshot_data_url
from sortify.persistence import ScanRecord

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sortify.capture import CameraStream, CaptureDevice
    from sortify.config import Settings
    from sortify.ml.classifier import ClassificationResult, WasteClassifier
    from sortify.ml.model_manager import SessionRegistry
    from sortify.ml.preprocessing import ImageSource
    from sortify.ml.runtime import BootstrapPoller
    from sortify.persistence import ScanResultStore

logger = logging.getLogger(__name__)


class CaptureState(StrEnum):
    CAMERA_ACTIVE = "camera_active"
    CAMERA_STOPPED = "camera_stopped"
    ANALYZING = "analyzing"
    RESULT_READY = "result_ready"
    RESULT_ERROR = "result_error"


CAMERA_STATES = frozenset({CaptureState.CAMERA_ACTIVE, CaptureState.CAMERA_STOPPED})
ANALYSIS_ERROR_MESSAGE = "Failed to analyze the image. Try again."
UNEXPECTED_ERROR_KIND = "UnexpectedError"


def error_kind(exc: Exception) -> str:
    """Name of the declared error class, or a generic kind for anything undeclared."""
    return type(exc).__name__ if isinstance(exc, SortifyError) else UNEXPECTED_ERROR_KIND


@dataclass(frozen=True)
class UploadedFile:
    filename: str | None
    content_type: str | None
    data: bytes


@dataclass(frozen=True)
class ScanStatus:
    """Read-only view of a scan session for the presentation layer."""

    state: CaptureState
    result: ClassificationResult | None
    error: str | None
    error_kind: str | None
    camera_error: str | None
    banner: str | None
    models_ready: bool
    image: bytes | None
    upload_filename: str | None

    @property
    def busy(self) -> bool:
        return self.state is CaptureState.ANALYZING


class ScanSession:
    """Coordinates camera, uploads, the classifier, and result persistence."""

    def __init__(
        self,
        settings: Settings,
        registry: SessionRegistry,
        classifier: WasteClassifier,
        *,
        camera: CaptureDevice | None = None,
        store: ScanResultStore | None = None,
        bootstrap: BootstrapPoller | None = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._classifier = classifier
        self._camera = camera
        self._store = store
        self._bootstrap = bootstrap

        self._state = CaptureState.CAMERA_STOPPED
        self._stream: CameraStream | None = None
        # Bumped on every start/stop so a slow acquisition can tell it is stale.
        self._capture_generation = 0

        self._result: ClassificationResult | None = None
        self._image: bytes | None = None
        self._error: str | None = None
        self._error_kind: str | None = None
        self._camera_error: str | None = None
        self._banner: str | None = None
        self._upload: UploadedFile | None = None

    # -- Introspection ------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def camera_active(self) -> bool:
        return self._stream is not None

    @property
    def models_ready(self) -> bool:
        return self._banner is None and self._registry.is_ready

    def status(self) -> ScanStatus:
        return ScanStatus(
            state=self._state,
            result=self._result,
            error=self._error,
            error_kind=self._error_kind,
            camera_error=self._camera_error,
            banner=self._banner,
            models_ready=self.models_ready,
            image=self._image,
            upload_filename=self._upload.filename if self._upload is not None else None,
        )

    # -- Lifecycle ----------------------------------------------------------

    async def mount(self) -> None:
        """Bootstrap the runtime, load both models, then start the camera."""
        try:
            if self._bootstrap is not None:
                await self._bootstrap.wait()
            paths = await asyncio.to_thread(self._registry.resolve_paths)
            if not await self._registry.load_sessions(paths):
                raise ModelLoadFailure()
        except (RuntimeBootstrapFailure, ModelLoadFailure) as exc:
            self._banner = exc.message
            logger.error("Scanning disabled: %s", exc.detail)
        await self.start_capture()

    def close(self) -> None:
        """Release the camera. Call on shutdown."""
        self.stop_capture()
        self._state = CaptureState.CAMERA_STOPPED
        logger.info("Scan session closed")

    # -- Camera -------------------------------------------------------------

    async def start_capture(self) -> None:
        """Acquire the camera. Failure sets ``camera_error`` and leaves the camera stopped."""
        if self._state is CaptureState.ANALYZING:
            raise ScanInProgress()
        if self._state not in CAMERA_STATES:
            logger.debug("Ignoring camera start in state %s", self._state)
            return

        self._release_stream()
        self._state = CaptureState.CAMERA_STOPPED
        self._camera_error = None
        self._capture_generation += 1
        generation = self._capture_generation

        if self._camera is None or not self._settings.camera_enabled:
            self._camera_error = CaptureUnavailable.message
            return
        try:
            stream = await asyncio.to_thread(self._camera.open)
        except CaptureUnavailable as exc:
            if generation == self._capture_generation:
                self._camera_error = exc.detail
            logger.warning("Camera unavailable: %s", exc.detail)
            return

        if generation != self._capture_generation or self._state is not CaptureState.CAMERA_STOPPED:
            # stop_capture() or another start ran while the device was opening.
            stream.release()
            return
        self._stream = stream
        self._state = CaptureState.CAMERA_ACTIVE
        logger.info("Camera active")

    def stop_capture(self) -> None:
        """Release the camera. Idempotent; also invalidates a pending acquisition."""
        self._capture_generation += 1
        self._release_stream()
        if self._state is CaptureState.CAMERA_ACTIVE:
            self._state = CaptureState.CAMERA_STOPPED
            logger.info("Camera stopped")

    def _release_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.release()

    # -- Scans --------------------------------------------------------------

    async def submit_frame(self, source: ImageSource | None = None) -> ScanStatus:
        """Analyze ``source`` or, when omitted, the current camera frame.

        Raises:
            ScanInProgress: If a scan is already being analyzed.
            CaptureUnavailable: If no frame is given and the camera is not active.
        """
        self._guard()
        if source is None:
            stream = self._stream
            if stream is None:
                exc = CaptureUnavailable("Camera is not ready.")
                self._set_error(exc.detail, exc)
                raise exc

            async def load() -> ImageSource:
                return await asyncio.to_thread(stream.read)

        else:
            frame = source

            async def load() -> ImageSource:
                return frame

        self._upload = None
        return await self._analyze(load)

    async def submit_file(self, upload: UploadedFile) -> ScanStatus:
        """Analyze an uploaded image file.

        The upload stays referenced by the status until the next scan or
        ``reset()``.

        Raises:
            ScanInProgress: If a scan is already being analyzed.
            InvalidInput: If the file is missing, empty, too large, or not an image.
        """
        self._guard()
        try:
            self._validate_upload(upload)
        except InvalidInput as exc:
            self._set_error(exc.detail, exc)
            raise

        self._upload = upload
        max_pixels = self._settings.max_image_pixels

        async def load() -> ImageSource:
            return await asyncio.to_thread(decode_image, upload.data, max_pixels)

        return await self._analyze(load)

    async def reset(self) -> ScanStatus:
        """Clear the last result and the uploaded file, then go back to the camera."""
        self._guard()
        self._result = None
        self._image = None
        self._set_error(None)
        self._upload = None
        self._state = CaptureState.CAMERA_STOPPED
        logger.info("Scan reset")
        await self.start_capture()
        return self.status()

    def _guard(self) -> None:
        if self._state is CaptureState.ANALYZING:
            raise ScanInProgress()

    def _validate_upload(self, upload: UploadedFile) -> None:
        if not upload.data:
            raise InvalidInput("No file selected.")
        if not (upload.content_type or "").startswith("image/"):
            raise InvalidInput()
        if len(upload.data) > self._settings.max_file_size:
            raise InvalidInput("File is too large.")

    def _set_error(self, message: str | None, exc: Exception | None = None) -> None:
        self._error = message
        self._error_kind = error_kind(exc) if exc is not None else None

    async def _analyze(self, load: Callable[[], Awaitable[ImageSource]]) -> ScanStatus:
        self._state = CaptureState.ANALYZING
        self._result = None
        self._image = None
        self._set_error(None)
        logger.info("Analyzing scan")

        try:
            if self._banner is not None:
                raise SessionNotReady(self._banner)
            source = await load()
            self.stop_capture()
            self._image = await asyncio.to_thread(encode_snapshot, source)
            tensor = await asyncio.to_thread(preprocess, source)
            result = await self._classifier.classify(tensor)
        except SortifyError as exc:
            self._fail(exc)
            return self.status()
        except Exception as exc:
            logger.exception("Analysis failed")
            self._fail(exc)
            return self.status()
        finally:
            self._release_stream()

        self._result = result
        self._state = CaptureState.RESULT_READY
        logger.info("Scan result: %s / %s (%.3f)", result.category, result.subtype, result.confidence)

        if result.is_waste and self._store is not None and self._image is not None:
            await self._persist(self._store, result, self._image)
        return self.status()

    def _fail(self, exc: Exception) -> None:
        self._state = CaptureState.RESULT_ERROR
        self._set_error(exc.message if isinstance(exc, SortifyError) else ANALYSIS_ERROR_MESSAGE, exc)
        logger.warning("Scan failed (%s): %s", self._error_kind, exc)

    async def _persist(self, store: ScanResultStore, result: ClassificationResult, image: bytes) -> None:
        record = ScanRecord(
            image_url=snapshot_data_url(image),
            result=result.category,
            confidence=result.confidence,
        )
        try:
            await store.save_scan_result(record)
        except PersistenceFailure as exc:
            logger.warning("Scan result not saved: %s", exc.detail)
        except Exception:
            logger.warning("Scan result not saved", exc_info=True)
