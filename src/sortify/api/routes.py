"""API route definitions."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Request, UploadFile, status
from fastapi.responses import JSONResponse

from sortify.api.dependencies import (
    get_classifier,
    get_inference_pool,
    get_registry,
    get_scan_session,
    get_settings,
    verify_api_key,
)
from sortify.api.presenter import ClassificationPresenter, scan_response
from sortify.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    ScanResponse,
)
from sortify.config import Settings
from sortify.errors import (
    CaptureUnavailable,
    DecodeFailure,
    IncompleteModelOutput,
    InvalidInput,
    ModelLoadFailure,
    PersistenceFailure,
    RuntimeBootstrapFailure,
    ScanInProgress,
    SessionNotReady,
    SortifyError,
)
from sortify.ml.classifier import WasteClassifier
from sortify.ml.inference import InferencePool
from sortify.ml.model_manager import MODEL_REGISTRY, SessionRegistry
from sortify.ml.preprocessing import decode_image, preprocess
from sortify.scanner import ScanSession, UploadedFile

if TYPE_CHECKING:
    from fastapi import FastAPI

    from sortify.api.presenter import ResultPresenter
    from sortify.api.schemas import ClassificationOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_result_presenter: ResultPresenter[ClassificationOut] = ClassificationPresenter()

_ERROR_STATUS: dict[type[SortifyError], int] = {
    RuntimeBootstrapFailure: status.HTTP_503_SERVICE_UNAVAILABLE,
    ModelLoadFailure: status.HTTP_503_SERVICE_UNAVAILABLE,
    SessionNotReady: status.HTTP_503_SERVICE_UNAVAILABLE,
    CaptureUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    IncompleteModelOutput: status.HTTP_500_INTERNAL_SERVER_ERROR,
    InvalidInput: status.HTTP_400_BAD_REQUEST,
    DecodeFailure: status.HTTP_400_BAD_REQUEST,
    ScanInProgress: status.HTTP_409_CONFLICT,
    PersistenceFailure: status.HTTP_502_BAD_GATEWAY,
}

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}

SettingsDep = Annotated[Settings, Depends(get_settings)]
PoolDep = Annotated[InferencePool, Depends(get_inference_pool)]
RegistryDep = Annotated[SessionRegistry, Depends(get_registry)]
ClassifierDep = Annotated[WasteClassifier, Depends(get_classifier)]
ScanDep = Annotated[ScanSession, Depends(get_scan_session)]


def install_error_handlers(app: FastAPI) -> None:
    """Map declared pipeline errors and pool timeouts to JSON error responses."""

    async def handle_pipeline_error(request: Request, exc: Exception) -> JSONResponse:
        code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        detail = exc.message if isinstance(exc, SessionNotReady) else str(exc)
        return JSONResponse(status_code=code, content={"detail": detail})

    async def handle_timeout(request: Request, exc: Exception) -> JSONResponse:
        logger.warning("Inference queue full, rejecting %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Inference queue is full, try again later"},
        )

    app.add_exception_handler(SortifyError, handle_pipeline_error)
    app.add_exception_handler(TimeoutError, handle_timeout)


async def _read_upload(file: UploadFile, settings: Settings) -> UploadedFile:
    data = await file.read(settings.max_file_size + 1)
    return UploadedFile(filename=file.filename, content_type=file.content_type, data=data)


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses=_ERROR_RESPONSES,
    summary="Classify an uploaded image",
)
async def classify_image(file: UploadFile, settings: SettingsDep, classifier: ClassifierDep) -> ClassifyImageResponse:
    """Run the two-stage classifier on an uploaded image without touching the scan session."""
    upload = await _read_upload(file, settings)
    if not (upload.content_type or "").startswith("image/"):
        raise InvalidInput()
    if len(upload.data) > settings.max_file_size:
        raise InvalidInput("File is too large.")

    image = await asyncio.to_thread(decode_image, upload.data, settings.max_image_pixels)
    tensor = await asyncio.to_thread(preprocess, image)
    result = await classifier.classify(tensor)
    return ClassifyImageResponse(result=_result_presenter.present(result))


@router.get("/scan", response_model=ScanResponse, summary="Current scan session state")
async def get_scan(scan: ScanDep) -> ScanResponse:
    return scan_response(scan.status())


@router.post(
    "/scan/camera/start",
    response_model=ScanResponse,
    responses=_ERROR_RESPONSES,
    summary="Turn the camera on",
)
async def start_camera(scan: ScanDep) -> ScanResponse:
    await scan.start_capture()
    return scan_response(scan.status())


@router.post("/scan/camera/stop", response_model=ScanResponse, summary="Turn the camera off")
async def stop_camera(scan: ScanDep) -> ScanResponse:
    scan.stop_capture()
    return scan_response(scan.status())


@router.post(
    "/scan/capture",
    response_model=ScanResponse,
    responses=_ERROR_RESPONSES,
    summary="Capture a camera frame and analyze it",
)
async def capture_and_analyze(scan: ScanDep) -> ScanResponse:
    return scan_response(await scan.submit_frame())


@router.post(
    "/scan/upload",
    response_model=ScanResponse,
    responses=_ERROR_RESPONSES,
    summary="Upload a photo and analyze it",
)
async def upload_and_analyze(file: UploadFile, settings: SettingsDep, scan: ScanDep) -> ScanResponse:
    upload = await _read_upload(file, settings)
    return scan_response(await scan.submit_file(upload))


@router.post(
    "/scan/reset",
    response_model=ScanResponse,
    responses=_ERROR_RESPONSES,
    summary="Clear the result and return to the camera",
)
async def reset_scan(scan: ScanDep) -> ScanResponse:
    return scan_response(await scan.reset())


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(settings: SettingsDep, pool: PoolDep, registry: RegistryDep, scan: ScanDep) -> HealthResponse:
    """Return service health status."""
    banner = scan.status().banner
    return HealthResponse(
        status="ok" if banner is None else "degraded",
        gpu=settings.device == "cuda",
        models_loaded=registry.get_loaded_models(),
        sessions=registry.states(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        banner=banner,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List model artifacts",
)
async def list_models(registry: RegistryDep) -> ModelsResponse:
    """Return both model artifacts with their session state."""
    models = [
        ModelInfo(
            name=spec.name,
            role=role.value,
            description=spec.description,
            status=registry.state(role).value,
        )
        for role, spec in MODEL_REGISTRY.items()
    ]
    return ModelsResponse(schema_version=registry.schema.version, models=models)
