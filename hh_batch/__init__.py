"""
HH Batch - windowed batch integration of Hodgkin-Huxley compartments.

Packs model batches into flat kernel buffers, unpacks sampled trajectories
and chains bounded windows over long horizons.
"""

from .errors import (
    SolverError,
    InvalidBatch,
    InvalidTimeWindow,
    KernelFailure,
    LayoutMismatch
)

from .models import (
    Model,
    HHModel,
    HHConstants,
    TimeWindow
)

from .sampling import ResultSampler

from .marshalling import (
    BufferMarshaller,
    PackedBatch,
    input_index,
    output_index,
    output_position,
    as_time_major
)

from .kernels import ComputeKernelAdapter

from .chaining import (
    WindowChainer,
    ChainResult,
    plan_windows
)

from .api import BatchSolver, solve

from .utils import (
    sample_times,
    stack_trajectories,
    detect_spikes
)

from .logging_config import setup_logging

__all__ = [
    # Errors
    'SolverError',
    'InvalidBatch',
    'InvalidTimeWindow',
    'KernelFailure',
    'LayoutMismatch',

    # Models
    'Model',
    'HHModel',
    'HHConstants',
    'TimeWindow',

    # Buffers and sampling
    'ResultSampler',
    'BufferMarshaller',
    'PackedBatch',
    'input_index',
    'output_index',
    'output_position',
    'as_time_major',

    # Execution
    'ComputeKernelAdapter',
    'WindowChainer',
    'ChainResult',
    'plan_windows',
    'BatchSolver',
    'solve',

    # Utils
    'sample_times',
    'stack_trajectories',
    'detect_spikes',
    'setup_logging',
]
