"""Result presentation boundary.

A presenter turns a classification result (and optionally the analyzed image)
into whatever the front-end renders. Nothing flows back into the pipeline.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, TypeVar

from sortify.api.schemas import ClassificationOut, ScanResponse
from sortify.ml.preprocessing import snapshot_data_url

if TYPE_CHECKING:
    from sortify.ml.classifier import ClassificationResult
    from sortify.scanner import ScanStatus

T_co = TypeVar("T_co", covariant=True)


class ResultPresenter(Protocol[T_co]):
    def present(self, result: ClassificationResult, snapshot: bytes | None = None) -> T_co: ...


def classification_out(result: ClassificationResult) -> ClassificationOut:
    return ClassificationOut(
        is_waste=result.is_waste,
        category=result.category,
        subtype=result.subtype,
        confidence=result.confidence,
    )


class ClassificationPresenter:
    """Renders a bare result for the stateless endpoint."""

    def present(self, result: ClassificationResult, snapshot: bytes | None = None) -> ClassificationOut:
        return classification_out(result)


class SnapshotPresenter:
    """Renders the analyzed image as a JPEG data URL."""

    def present(self, result: ClassificationResult, snapshot: bytes | None = None) -> str | None:
        return snapshot_data_url(snapshot) if snapshot is not None else None


def scan_response(
    status: ScanStatus,
    *,
    result_presenter: ResultPresenter[ClassificationOut] | None = None,
    snapshot_presenter: ResultPresenter[str | None] | None = None,
) -> ScanResponse:
    """Render the scan session view, with the analyzed image as a data URL."""
    result_presenter = result_presenter or ClassificationPresenter()
    snapshot_presenter = snapshot_presenter or SnapshotPresenter()
    result = status.result
    return ScanResponse(
        state=status.state.value,
        busy=status.busy,
        models_ready=status.models_ready,
        result=result_presenter.present(result, status.image) if result is not None else None,
        error=status.error,
        error_kind=status.error_kind,
        camera_error=status.camera_error,
        banner=status.banner,
        snapshot=snapshot_presenter.present(result, status.image) if result is not None else None,
        upload_filename=status.upload_filename,
    )
