"""
Error taxonomy for the canvas core.

- DecodeError: a share token or snapshot could not be decoded/validated.
  Always recovered locally (the offending state is discarded).
- UnsupportedFormatError: an export was requested for an unknown format id.
- DanglingReferenceError: an operation named a shape that no longer exists.
- GenerationError: a format generator raised while producing output.
"""


class CanvasError(Exception):
    """Base class for all canvas errors."""


class DecodeError(CanvasError):
    """Malformed or corrupt canvas state (URL token or snapshot)."""


class UnsupportedFormatError(CanvasError):
    """Raised when an export format id is not registered."""

    def __init__(self, format_id: str):
        self.format_id = format_id
        super().__init__(f"Unsupported export format: {format_id}")


class DanglingReferenceError(CanvasError):
    """Raised when a shape id does not resolve to a live shape."""

    def __init__(self, shape_id: str):
        self.shape_id = shape_id
        super().__init__(f"Shape not found: {shape_id}")


class GenerationError(CanvasError):
    """Raised when a format generator fails. Export never mutates the store, so this is retryable."""

    def __init__(self, format_id: str, message: str):
        self.format_id = format_id
        super().__init__(f"Export to {format_id} failed: {message}")
