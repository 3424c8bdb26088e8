"""Error kinds raised across the analysis pipeline."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    MODEL_LOAD = "model_load"
    INFERENCE = "inference"
    UNSUPPORTED_FILE = "unsupported_file"
    COLOR_PROFILING = "color_profiling"


class ImageLensError(Exception):
    """Base class for errors surfaced to callers.

    ``user_message`` is safe to show to an end user; the exception text may
    carry technical detail for logs.
    """

    kind: ErrorKind
    user_message: str = "Something went wrong while analyzing the image."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


class ModelLoadError(ImageLensError):
    """A capability failed to load; the gateway is unavailable until reinitialized."""

    kind = ErrorKind.MODEL_LOAD
    user_message = "Failed to load the AI models. Please try again later."

    def __init__(self, capability: str, message: str | None = None) -> None:
        self.capability = capability
        super().__init__(message or f"Failed to load {capability}")


class InferenceError(ImageLensError):
    """Detection or classification failed or timed out for one image."""

    kind = ErrorKind.INFERENCE
    user_message = "Error processing the image. Please try again with a different image."


class UnsupportedFileError(ImageLensError):
    """The uploaded payload is not a decodable image."""

    kind = ErrorKind.UNSUPPORTED_FILE
    user_message = "Please upload an image file."


class ColorProfilingError(ImageLensError):
    """Dominant color extraction failed; callers fall back to an empty palette."""

    kind = ErrorKind.COLOR_PROFILING
    user_message = "Color analysis is unavailable for this image."


class GatewayNotReadyError(RuntimeError):
    """``analyze`` was called before the gateway finished initializing."""


class InvalidTransitionError(RuntimeError):
    """A session was asked to move to a state it cannot reach."""
