"""
CPU Backend - window kernels running on the host.
"""

from .numba_kernels import NumbaKernel
from .vectorized import VectorizedKernel

__all__ = [
    'NumbaKernel',
    'VectorizedKernel'
]
