from __future__ import annotations


class GenerationError(RuntimeError):
    """Base class for failures surfaced by a video generation run."""

    category = "generation_failed"
    status_code = 500

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage


class InvalidInput(GenerationError):
    category = "invalid_input"
    status_code = 400


class EncoderUnavailable(GenerationError):
    category = "encoder_unavailable"


class UpstreamIO(GenerationError):
    category = "upstream_io"
    status_code = 502


class RenderFailure(GenerationError):
    category = "render_failure"


class EncodeFailure(GenerationError):
    category = "encode_failure"


class StorageError(RuntimeError):
    """Raised by storage backends when an object cannot be read or written."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


__all__ = [
    "GenerationError",
    "InvalidInput",
    "EncoderUnavailable",
    "UpstreamIO",
    "RenderFailure",
    "EncodeFailure",
    "StorageError",
]
