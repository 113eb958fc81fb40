"""Typed failures raised by the capture, encode and persist pipeline."""

from __future__ import annotations

from typing import Any, ClassVar, Final

CATEGORY_LABELS: Final[dict[str, str]] = {
    "permission": "No permission",
    "setup": "Capture setup failed",
    "recording": "Recording failed",
    "encoding": "Encoding failed",
    "storage": "Storage failed",
    "not_found": "Not found",
    "busy": "Busy",
}


class ClifError(RuntimeError):
    """Base class for pipeline failures with a user-facing category."""

    category: ClassVar[str] = "recording"

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        """Store the human-readable ``message`` and optional diagnostic ``detail``."""
        super().__init__(message)
        self.message = message
        self.detail = detail

    def context(self) -> dict[str, Any]:
        """Return error metadata useful for logging."""
        return {
            "error_type": type(self).__name__,
            "category": self.category,
            "error": self.message,
            "detail": self.detail,
        }


class PermissionDeniedError(ClifError):
    """Raised when screen-recording permission has not been granted."""

    category = "permission"


class CaptureSetupError(ClifError):
    """Raised when a capture stream cannot be configured or started."""

    category = "setup"


class DisplayNotFoundError(CaptureSetupError):
    """Raised when the requested display id does not exist."""


class SetupFailedError(CaptureSetupError):
    """Raised when the container writer or the frame source fails to start."""


class CaptureRuntimeError(ClifError):
    """Raised when a running capture fails."""

    category = "recording"


class WriteFailedError(CaptureRuntimeError):
    """Raised when frames cannot be written or the container cannot be finalised."""


class StreamFailedError(CaptureRuntimeError):
    """Raised when the frame source stops with an error mid-recording."""


class EncodingError(ClifError):
    """Base class for GIF conversion failures."""

    category = "encoding"


class EncoderUnavailableError(EncodingError):
    """Raised when the gifski binary cannot be located."""


class InputMissingError(EncodingError):
    """Raised when the video handed to the encoder does not exist."""


class NoFramesExtractedError(EncodingError):
    """Raised when sampling the video produced no still frames."""


class ConversionFailedError(EncodingError):
    """Raised when gifski exits with a nonzero status."""

    def __init__(self, stderr_text: str, *, returncode: int | None = None) -> None:
        """Keep the encoder's diagnostic output alongside its exit status."""
        super().__init__(f"GIF conversion failed: {stderr_text.strip() or 'unknown error'}")
        self.stderr_text = stderr_text
        self.returncode = returncode

    def context(self) -> dict[str, Any]:
        """Return error metadata including the encoder exit status."""
        return {**super().context(), "returncode": self.returncode}


class ConversionTimedOutError(EncodingError):
    """Raised when gifski runs longer than the configured timeout."""


class OutputMissingError(EncodingError):
    """Raised when gifski reported success but produced no usable file."""


class PersistenceError(ClifError):
    """Raised when moving media or writing metadata into the library fails."""

    category = "storage"


class NotFoundError(ClifError):
    """Raised when a requested artifact does not exist."""

    category = "not_found"


class NoRecentArtifactError(NotFoundError):
    """Raised when nothing has been saved during this process lifetime."""


class BusyError(ClifError):
    """Raised when a pipeline run is requested while another is in progress."""

    category = "busy"


class AlreadyRecordingError(BusyError):
    """Raised when a capture session is started twice."""


def describe_error(exc: BaseException) -> str:
    """Return a category-prefixed message suitable for showing to a user."""
    if isinstance(exc, ClifError):
        label = CATEGORY_LABELS.get(exc.category, "Error")
        return f"{label}: {exc.message}"
    return f"Unexpected error: {exc}"


__all__ = [
    "CATEGORY_LABELS",
    "AlreadyRecordingError",
    "BusyError",
    "CaptureRuntimeError",
    "CaptureSetupError",
    "ClifError",
    "ConversionFailedError",
    "ConversionTimedOutError",
    "DisplayNotFoundError",
    "EncoderUnavailableError",
    "EncodingError",
    "InputMissingError",
    "NoFramesExtractedError",
    "NoRecentArtifactError",
    "NotFoundError",
    "OutputMissingError",
    "PermissionDeniedError",
    "PersistenceError",
    "SetupFailedError",
    "StreamFailedError",
    "WriteFailedError",
    "describe_error",
]
