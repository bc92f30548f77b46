"""Pydantic request/response schemas for the Sortify API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ClassificationOut(BaseModel):
    """Result of one two-stage classification."""

    is_waste: bool
    category: str = Field(description="'Anorganik', 'Organik', or 'Not Waste'")
    subtype: str = Field(description="Fine-grained waste type, '-' when not waste")
    confidence: float = Field(ge=0.0, le=1.0, description="Subtype confidence, or presence probability when not waste")


class ClassifyImageResponse(BaseModel):
    """Response for the stateless classification endpoint."""

    result: ClassificationOut


class ScanResponse(BaseModel):
    """Current state of the scan session."""

    state: str = Field(description="camera_active, camera_stopped, analyzing, result_ready, or result_error")
    busy: bool = Field(description="True while a scan is being analyzed; capture and upload are disabled")
    models_ready: bool
    result: ClassificationOut | None = None
    error: str | None = Field(default=None, description="Message for the current scan cycle, cleared by reset")
    error_kind: str | None = Field(
        default=None, description="Declared error class behind `error`, e.g. DecodeFailure or IncompleteModelOutput"
    )
    camera_error: str | None = None
    banner: str | None = Field(default=None, description="Fatal model loading error; reload required")
    snapshot: str | None = Field(default=None, description="JPEG data URL of the analyzed image")
    upload_filename: str | None = Field(default=None, description="Uploaded file behind the current scan")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    sessions: dict[str, str]
    concurrent_requests: int
    queue_depth: int
    banner: str | None = None


class ModelInfo(BaseModel):
    """Information about one model artifact."""

    name: str
    role: str = Field(description="Model role: 'presence' or 'category'")
    description: str
    status: str = Field(description="Session state: 'unloaded', 'loading', or 'ready'")


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    schema_version: str
    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
