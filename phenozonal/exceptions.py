"""Error taxonomy shared by every raster engine component."""

from typing import Optional, Any


class PhenoZonalError(Exception):
    """Base error. Carries the offending parameter and a process exit code."""

    kind = "PhenoZonalError"
    exit_code = 1

    def __init__(
        self,
        message: str,
        parameter: Optional[str] = None,
        value: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.parameter = parameter
        self.value = value

    def __str__(self) -> str:
        text = f"{self.kind}: {self.message}"
        if self.parameter is not None:
            text += f" (parameter: {self.parameter}"
            if self.value is not None:
                text += f"={self.value!r}"
            text += ")"
        return text


class DataUnavailable(PhenoZonalError):
    """Raised when no source data intersects the query window."""

    kind = "DataUnavailable"
    exit_code = 3


class ResourceExceeded(PhenoZonalError):
    """Raised when a reduction exceeds its limits and best effort is off."""

    kind = "ResourceExceeded"
    exit_code = 4


class GridMismatch(PhenoZonalError):
    """Raised when two layers do not share a CRS, resolution or shape."""

    kind = "GridMismatch"
    exit_code = 5


class InsufficientArea(PhenoZonalError):
    """Raised when an AOI is too small to draw samples from."""

    kind = "InsufficientArea"
    exit_code = 6


class SchemaMismatch(PhenoZonalError):
    """Raised when an exported record misses a declared column."""

    kind = "SchemaMismatch"
    exit_code = 7


class ScaleFactorMissing(PhenoZonalError):
    """Raised when a source image lacks a declared band. Recovered by skipping it."""

    kind = "ScaleFactorMissing"
    exit_code = 8


class RunCancelled(PhenoZonalError):
    """Raised when a cancellation token stops an export before it completed."""

    kind = "RunCancelled"
    exit_code = 130
