"""
Exception types for crown mode calculation.

Per-point data conditions (non-finite points, points below the minimum height,
NaN parameter values) never raise; they produce NaN modes. The exceptions here
signal contract violations and batch-level conditions.
"""
from __future__ import annotations


class CrownModesError(Exception):
    """Base exception for crown mode calculation errors."""
    pass


class InvalidArgumentError(CrownModesError, ValueError):
    """Raised when an argument violates a function's contract."""
    pass


class OutOfRangeError(CrownModesError, IndexError):
    """Raised when a raster is accessed outside of its extent."""
    def __init__(self, x: float, y: float, extent: str = ""):
        self.x = x
        self.y = y
        msg = f"Tried to access raster value outside of raster extent at ({x}, {y})"
        if extent:
            msg += f" (extent: {extent})"
        super().__init__(msg)


class ConfigurationError(CrownModesError):
    """Raised when configuration is invalid or missing."""
    pass


class BatchCancelledError(CrownModesError):
    """Raised when a batch is cancelled through its cancel_check callback."""
    def __init__(self, completed: int, total: int):
        self.completed = completed
        self.total = total
        super().__init__(f"Mode calculation cancelled after {completed} of {total} points")
