"""
Sampling policy deciding which integration steps are kept in a trajectory.

Steps are counted from 1: the first executed step of a window is step 1,
so with a sample period of N the retained steps are N, 2N, 3N, ...
The trailing ``step_count % sample_period`` steps of a window are never
retained.
"""

import numpy as np


def is_integer(value) -> bool:
    """True for Python and NumPy integers (bool excluded)."""
    return isinstance(value, (int, np.integer)) and not isinstance(value, (bool, np.bool_))


def _check_period(sample_period):
    if not is_integer(sample_period) or sample_period < 1:
        raise ValueError(f"sample_period must be an integer >= 1, got {sample_period!r}")


class ResultSampler:
    """
    Integer-arithmetic sampling rules.

    All methods are static; the class only groups them.
    """

    @staticmethod
    def should_sample(time_step: int, sample_period: int) -> bool:
        """
        Whether the state after ``time_step`` (1-based) is retained.

        Args:
            time_step: 1-based step index within the window
            sample_period: Retain every Nth step (N >= 1)

        Returns:
            True iff time_step is an exact multiple of sample_period
        """
        _check_period(sample_period)
        if not is_integer(time_step) or time_step < 1:
            raise ValueError(f"time_step must be an integer >= 1, got {time_step!r}")
        return time_step % sample_period == 0

    @staticmethod
    def sampled_steps(step_count: int, sample_period: int) -> np.ndarray:
        """1-based indices of the retained steps, in increasing order."""
        _check_period(sample_period)
        return np.arange(sample_period, step_count + 1, sample_period, dtype=np.int64)

    @staticmethod
    def sample_count(step_count: int, sample_period: int) -> int:
        """Number of retained steps for a window."""
        _check_period(sample_period)
        return int(step_count // sample_period)

    @staticmethod
    def trailing_steps(step_count: int, sample_period: int) -> int:
        """Steps after the last retained one; these are dropped."""
        _check_period(sample_period)
        return int(step_count % sample_period)
