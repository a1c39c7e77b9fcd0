"""
Exceptions raised by the batch solver.
"""


class SolverError(Exception):
    """Base class for all batch solver errors."""


class InvalidBatch(SolverError, ValueError):
    """Empty or malformed input batch, rejected before any device interaction."""


class InvalidTimeWindow(SolverError, ValueError):
    """Time window with a non-positive or non-integer step configuration."""


class KernelFailure(SolverError, RuntimeError):
    """
    Device or runtime error during a window dispatch.

    Attributes:
        window_index: Zero-based index of the failing window (None outside a chain)
        partial: ChainResult holding the windows completed before the failure
    """

    def __init__(self, message: str, window_index=None, partial=None):
        super().__init__(message)
        self.window_index = window_index
        self.partial = partial


class LayoutMismatch(SolverError):
    """Result array whose length is not model_count * step_count."""
