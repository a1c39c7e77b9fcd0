"""
Packing of model batches into flat device buffers and unpacking of results.

Two layouts exist:

- input layout, model-major: one scalar per model, index = model position
- output layout, time-major with model minor:
  index = step_index * model_count + model_position

The kernel writes one full sweep across all models before advancing to the
next step, hence the output layout. Every read or write of either layout
goes through the index functions below.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple, Type

import numpy as np

from .errors import InvalidBatch, LayoutMismatch
from .models import Model, TimeWindow
from .sampling import ResultSampler

logger = logging.getLogger(__name__)


# Layout index functions

def input_index(model_position: int) -> int:
    """Flat index of a model in an input buffer."""
    return model_position


def output_index(step_index: int, model_position: int, model_count: int) -> int:
    """Flat index of (zero-based step, model position) in a result buffer."""
    return step_index * model_count + model_position


def output_position(flat_index: int, model_count: int) -> Tuple[int, int]:
    """Inverse of output_index: returns (zero-based step, model position)."""
    return divmod(flat_index, model_count)


def as_time_major(flat: np.ndarray, model_count: int, step_count: int) -> np.ndarray:
    """
    View a flat result buffer as a (step_count, model_count) grid.

    ``grid[s, p]`` is ``flat[output_index(s, p, model_count)]``; C order
    reshaping gives exactly that correspondence without copying.

    Raises:
        LayoutMismatch: If the buffer length is not model_count * step_count
    """
    flat = np.asarray(flat)
    expected = model_count * step_count
    if flat.ndim != 1 or flat.shape[0] != expected:
        raise LayoutMismatch(
            f"Result buffer has shape {flat.shape}, expected ({expected},) "
            f"for {model_count} models x {step_count} steps"
        )
    return flat.reshape(step_count, model_count)


@dataclass
class PackedBatch:
    """
    Flat input buffers for one dispatch, keyed by field name.

    Attributes:
        model_type: Model kind the batch was packed from
        arrays: Field name -> 1-D contiguous array of length model_count
    """
    model_type: Type[Model]
    arrays: Dict[str, np.ndarray]

    @property
    def model_count(self) -> int:
        return len(next(iter(self.arrays.values())))

    @property
    def nbytes(self) -> int:
        return sum(a.nbytes for a in self.arrays.values())

    def __getitem__(self, name: str) -> np.ndarray:
        return self.arrays[name]


class BufferMarshaller:
    """
    Converts between Model batches and flat per-field arrays.

    The marshaller holds no batch state: unpack receives the original batch
    explicitly to recover model ids.
    """

    def __init__(self, dtype=np.float32):
        """
        Args:
            dtype: Element type of the flat buffers (float32 matches the kernels)
        """
        self.dtype = np.dtype(dtype)

    @staticmethod
    def model_type(models: Sequence[Model]) -> Type[Model]:
        """
        Validate a batch and return its (single) model kind.

        Raises:
            InvalidBatch: If the batch is empty, contains non-models, or mixes kinds
        """
        if models is None or len(models) == 0:
            raise InvalidBatch("Batch must contain at least one model")
        kind = type(models[0])
        if not issubclass(kind, Model) or not kind.STATE_FIELDS:
            raise InvalidBatch(f"Unsupported model type: {kind.__name__}")
        for position, model in enumerate(models):
            if type(model) is not kind:
                raise InvalidBatch(
                    f"Batch mixes model kinds: position {position} is "
                    f"{type(model).__name__}, expected {kind.__name__}"
                )
        return kind

    def pack(self, models: Sequence[Model]) -> PackedBatch:
        """
        Pack a batch into one flat array per input field, in batch order.

        Args:
            models: Non-empty sequence of models of the same kind

        Returns:
            PackedBatch with arrays for the state fields and the stimulus
        """
        kind = self.model_type(models)
        model_count = len(models)

        arrays = {}
        for name in kind.input_fields():
            buffer = np.empty(model_count, dtype=self.dtype)
            for position, model in enumerate(models):
                buffer[input_index(position)] = getattr(model, name)
            arrays[name] = buffer

        packed = PackedBatch(kind, arrays)
        logger.debug(
            f"Packed {model_count} {kind.__name__} models into "
            f"{len(arrays)} input buffers ({packed.nbytes} bytes)"
        )
        return packed

    def unpack_arrays(self, result_arrays: Dict[str, np.ndarray],
                      model_count: int, window: TimeWindow,
                      model_type: Type[Model]) -> Dict[str, np.ndarray]:
        """
        Sampled result grids per state field.

        Rows are the steps ResultSampler.sampled_steps returns, i.e. exactly
        the 1-based steps s with ResultSampler.should_sample(s, period) true,
        shifted to the zero-based row s - 1 of the output layout.

        Returns:
            Field name -> array of shape (window.sample_count, model_count),
            row r holding the state after the r-th sampled step
        """
        rows = ResultSampler.sampled_steps(window.step_count, window.sample_period) - 1

        grids = {}
        for name in model_type.STATE_FIELDS:
            if name not in result_arrays:
                raise LayoutMismatch(f"Result arrays are missing field '{name}'")
            grid = as_time_major(result_arrays[name], model_count, window.step_count)
            grids[name] = grid[rows]
        return grids

    def unpack(self, result_arrays: Dict[str, np.ndarray],
               models: Sequence[Model], window: TimeWindow) -> List[List[Model]]:
        """
        Rebuild per-model trajectories from flat result buffers.

        Args:
            result_arrays: Field name -> flat array in output layout,
                length len(models) * window.step_count
            models: The batch that was packed for this dispatch
            window: Window the kernel was run with

        Returns:
            One trajectory per model, in batch order, each holding
            window.sample_count snapshots in increasing time. Snapshots
            carry the model's id and I = 0.
        """
        kind = self.model_type(models)
        model_count = len(models)
        grids = self.unpack_arrays(result_arrays, model_count, window, kind)

        trajectories = []
        for position, model in enumerate(models):
            columns = {name: grids[name][:, position] for name in kind.STATE_FIELDS}
            trajectory = [
                kind.from_state(model.id, {name: columns[name][r] for name in columns})
                for r in range(window.sample_count)
            ]
            trajectories.append(trajectory)
        return trajectories
