"""
Contract between the solver core and a compute kernel.
"""

from typing import Dict

import numpy as np

from .marshalling import PackedBatch
from .models import HHConstants


class ComputeKernelAdapter:
    """
    Base class for compute kernels.

    A kernel integrates every model of a packed batch for ``step_count``
    fixed steps and returns one flat array per state field in the
    time-major/model-minor output layout (see ``marshalling.output_index``),
    each of length ``model_count * step_count``. The initial state is not
    part of the output: row 0 holds the state after the first step.

    ``run`` blocks until results are available on the host. Implementations
    must be deterministic for identical inputs.
    """

    name = 'abstract'

    def run(self,
            constants: HHConstants,
            step_length: float,
            step_count: int,
            inputs: PackedBatch,
            model_count: int) -> Dict[str, np.ndarray]:
        """
        Integrate one window.

        Args:
            constants: Physical constants (per physical model, not per call)
            step_length: Time step (ms)
            step_count: Number of steps to execute
            inputs: Flat input buffers (state fields plus stimulus 'I')
            model_count: Number of models in the batch

        Returns:
            Dictionary mapping each state field to its flat result array
        """
        raise NotImplementedError

    @staticmethod
    def result_nbytes(model_count: int, step_count: int, n_fields: int = 4,
                      itemsize: int = 4) -> int:
        """Bytes needed for the result buffers of one window."""
        return n_fields * model_count * step_count * itemsize
