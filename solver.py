"""
Unified solver interface for batched HH windows.

Single entry point creating a BatchSolver with the selected kernel backend.
"""

import warnings
from typing import Optional

import numpy as np

from hh_batch.api import BatchSolver
from hh_batch.models import HHConstants, HHModel, TimeWindow


def Solver(backend: str = 'cpu',
           constants: Optional[HHConstants] = None,
           dtype=np.float32) -> BatchSolver:
    """
    Create a batch solver with the specified backend.

    Args:
        backend: 'cpu' (parallel Numba), 'numpy' (vectorized NumPy) or 'gpu' (CuPy)
        constants: Physical constants (defaults if None)
        dtype: Element type of the flat buffers
            - CPU backends: np.float32 or np.float64
            - GPU: only float32 supported

    Returns:
        BatchSolver instance

    Examples:
        >>> solver = Solver(backend='cpu')
        >>> models = [HHModel(str(i), -10.0, 0.0, 0.0, 1.0) for i in range(30)]
        >>> trajectories = solver.solve(models, TimeWindow(0.01, 1000, 10))
    """
    backend = backend.lower()

    if backend == 'cpu':
        from cpu_backed import NumbaKernel
        return BatchSolver(NumbaKernel(), constants, dtype)

    elif backend == 'numpy':
        from cpu_backed import VectorizedKernel
        return BatchSolver(VectorizedKernel(), constants, dtype)

    elif backend == 'gpu':
        from gpu_backed import CuPyKernel

        if np.dtype(dtype) != np.float32:
            warnings.warn(
                f"GPU backend only supports float32, ignoring dtype={dtype}",
                UserWarning
            )

        return BatchSolver(CuPyKernel(), constants, np.float32)

    else:
        raise ValueError(
            f"Unknown backend: '{backend}'. "
            f"Valid options are 'cpu', 'numpy' or 'gpu'."
        )


__all__ = [
    'Solver',
    'HHModel',
    'HHConstants',
    'TimeWindow',
]
