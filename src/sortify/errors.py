"""Error taxonomy for the scanning pipeline.

Load-time errors (``RuntimeBootstrapFailure``, ``ModelLoadFailure``) are fatal
for a scan session. Everything else is scoped to a single scan and cleared by
a reset, except ``PersistenceFailure`` which is only ever logged.
"""

from __future__ import annotations


class SortifyError(Exception):
    """Base class for all declared pipeline errors."""

    message: str = "Unexpected error."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail or self.message


class RuntimeBootstrapFailure(SortifyError):
    """The inference runtime never became available."""

    message = "Inference runtime is unavailable. Check the installation and reload."


class ModelLoadFailure(SortifyError):
    """One or both model files could not be loaded."""

    message = "Failed to load the analysis models. Reload to try again."


class SessionNotReady(SortifyError):
    """Inference was requested before both sessions were ready."""

    message = "Analysis models are not ready yet."


class IncompleteModelOutput(SortifyError):
    """The category model returned outputs that do not match the schema."""

    message = "Model output is incomplete."


class CaptureUnavailable(SortifyError):
    """Camera permission was denied or the device is busy."""

    message = "Cannot access the camera. Make sure it is connected and permitted."


class InvalidInput(SortifyError):
    """The submitted file or frame is not usable."""

    message = "File must be an image (JPEG, PNG, ...)."


class DecodeFailure(SortifyError):
    """The image bytes could not be decoded."""

    message = "Failed to read the uploaded image."


class PersistenceFailure(SortifyError):
    """Saving a scan result failed."""

    message = "Failed to save the scan result."


class ScanInProgress(SortifyError):
    """A scan was submitted while another one is still being analyzed."""

    message = "A scan is already being analyzed."
