"""
GPU-backed window kernel using CuPy.

Runs one CUDA thread per model for large batches.
"""

from .gpu_kernel import CuPyKernel

__all__ = ['CuPyKernel']
