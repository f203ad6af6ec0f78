"""
Exception types raised by the detection overlay.

Every error carries a short machine-readable code that the status surface
and the HTTP API report alongside the message.
"""
from typing import Optional


class OverlayError(Exception):
    """Base class for all errors raised by the overlay."""

    error_code = "OVERLAY_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code

    def __str__(self) -> str:
        return f"{self.message} ({self.error_code})"


class ConfigurationError(OverlayError):
    """Invalid model or application configuration."""

    error_code = "CONFIGURATION_ERROR"


class ModelLoadFailure(OverlayError):
    """The inference graph or the label file could not be fetched or parsed."""

    error_code = "MODEL_LOAD_FAILED"

    def __init__(self, model_name: str, details: Optional[str] = None):
        message = f"Failed to load model '{model_name}'"
        if details:
            message += f": {details}"
        super().__init__(message)
        self.model_name = model_name
        self.details = details


class CameraAccessFailure(OverlayError):
    """The camera could not be opened (no device or permission denied)."""

    error_code = "CAMERA_ACCESS_FAILED"

    def __init__(self, source, details: Optional[str] = None):
        message = f"Failed to open camera {source!r}"
        if details:
            message += f": {details}"
        super().__init__(message)
        self.source = source


class FrameUnavailable(OverlayError):
    """No frame can be sampled yet, e.g. the camera has not produced one."""

    error_code = "FRAME_UNAVAILABLE"


class MalformedOutput(OverlayError):
    """The raw output cannot be reconciled with the configured layout or class count."""

    error_code = "MALFORMED_OUTPUT"


class InferenceFailure(OverlayError):
    """The inference engine call itself failed."""

    error_code = "INFERENCE_FAILED"
