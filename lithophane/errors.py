"""Exceptions raised by the lithophane pipeline.

Every stage validates its inputs and raises one of these immediately,
so a failed generation never leaves a half-built grid or a partial file.
"""

from __future__ import annotations


class LithophaneError(Exception):
    """Base class for all lithophane generation errors."""


class InvalidDimension(LithophaneError, ValueError):
    """Grid or resample target has an unusable size."""


class InvalidScale(LithophaneError, ValueError):
    """Height scale is not a finite positive number."""


class DegenerateMesh(LithophaneError):
    """No triangle survived validation."""

    def __init__(self, message: str, dropped: int = 0):
        super().__init__(message)
        self.dropped = dropped


class IOFailure(LithophaneError, OSError):
    """Source image could not be read or the destination could not be written."""
