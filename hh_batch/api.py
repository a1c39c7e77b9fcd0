"""
Caller-facing batch solver.
"""

import logging
import time
import warnings
from typing import Dict, List, Optional, Sequence

import numpy as np

from .chaining import ChainResult, StimulusHook, WindowChainer
from .kernels import ComputeKernelAdapter
from .marshalling import BufferMarshaller
from .models import HHConstants, Model, TimeWindow

logger = logging.getLogger(__name__)


class BatchSolver:
    """
    Solves batches of compartment models on a compute kernel.

    Holds no per-call state; one solver may serve any number of batches.
    """

    def __init__(self,
                 kernel: ComputeKernelAdapter,
                 constants: Optional[HHConstants] = None,
                 dtype=np.float32):
        """
        Initialize solver.

        Args:
            kernel: Compute kernel adapter
            constants: Physical constants (defaults if None)
            dtype: Element type of the flat buffers
        """
        self.kernel = kernel
        self.constants = constants if constants is not None else HHConstants()
        self.marshaller = BufferMarshaller(dtype)
        self.chainer = WindowChainer(kernel, self.constants, self.marshaller)

    def solve(self, batch: Sequence[Model], window: TimeWindow) -> List[List[Model]]:
        """
        Run one window.

        Args:
            batch: Non-empty sequence of models
            window: Step length, step count and sample period

        Returns:
            One trajectory per input model, in input order, each ordered by
            increasing simulated time
        """
        batch = list(batch)
        self.marshaller.model_type(batch)
        self._warn_misaligned(window)

        logger.info(f"Solver invoked with {len(batch)} models")
        start = time.perf_counter()
        trajectories = self.chainer.run_window(batch, window, partial=ChainResult(len(batch)))
        logger.info(f"Computation took {(time.perf_counter() - start) * 1000:.1f} ms")
        return trajectories

    def solve_arrays(self, batch: Sequence[Model], window: TimeWindow) -> Dict[str, np.ndarray]:
        """
        Run one window and return sampled arrays instead of model snapshots.

        Returns:
            Field name -> array of shape (window.sample_count, len(batch))

        Raises:
            InvalidBatch: If the batch is empty or malformed
            KernelFailure: If the kernel raises; window_index is 0
        """
        batch = list(batch)
        kind = self.marshaller.model_type(batch)
        self._warn_misaligned(window)

        packed = self.marshaller.pack(batch)
        results = self.chainer.dispatch(packed, window, partial=ChainResult(len(batch)))
        return self.marshaller.unpack_arrays(results, len(batch), window, kind)

    def solve_chained(self,
                      batch: Sequence[Model],
                      windows: Sequence[TimeWindow],
                      stimulus: Optional[StimulusHook] = None) -> ChainResult:
        """Run a chain of windows; see WindowChainer.run."""
        return self.chainer.run(batch, windows, stimulus=stimulus)

    def solve_horizon(self,
                      batch: Sequence[Model],
                      window: TimeWindow,
                      n_windows: int,
                      stimulus: Optional[StimulusHook] = None) -> ChainResult:
        """Run ``window`` as ``n_windows`` equal chained windows."""
        return self.chainer.run_horizon(batch, window, n_windows, stimulus=stimulus)

    @staticmethod
    def _warn_misaligned(window: TimeWindow):
        if not window.is_aligned:
            warnings.warn(
                f"sample_period {window.sample_period} does not divide step_count "
                f"{window.step_count}: the last {window.trailing_steps} step(s) are not sampled",
                UserWarning, stacklevel=3
            )


def solve(batch: Sequence[Model],
          window: TimeWindow,
          kernel: Optional[ComputeKernelAdapter] = None,
          constants: Optional[HHConstants] = None) -> List[List[Model]]:
    """
    Solve a batch for one window.

    Uses the Numba CPU kernel when no kernel is given.
    """
    if kernel is None:
        from cpu_backed import NumbaKernel
        kernel = NumbaKernel()
    return BatchSolver(kernel, constants).solve(batch, window)
