from __future__ import annotations


class DeepZoomError(Exception):
    """Base class for every error raised by deepzoom."""


class ParseError(DeepZoomError, ValueError):
    """Malformed decimal input or a message that does not match the schema."""


class PrecisionUnderflow(DeepZoomError):
    """A magnitude the render depends on rounded to zero at the working precision."""

    def __init__(self, message: str, *, precision_bits: int) -> None:
        super().__init__(message)
        self.precision_bits = precision_bits


class ConfigurationError(DeepZoomError, ValueError):
    pass


class WorkerComputeError(DeepZoomError):
    """A strip failed inside a worker. Carries the identity of the failed strip."""

    def __init__(self, message: str, *, token: int, start_row: int, row_count: int) -> None:
        super().__init__(message)
        self.token = token
        self.start_row = start_row
        self.row_count = row_count
