"""
Multi-window execution of long simulation horizons.

A horizon is run as a sequence of bounded windows. The last sampled snapshot
of each model in window k becomes that model's initial state in window k+1,
so the device only ever holds the result buffers of one window. Model
identity across windows is positional: position p in window k is position p
in window k+1.
"""

import logging
import time
import warnings
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from .errors import InvalidTimeWindow, KernelFailure
from .kernels import ComputeKernelAdapter
from .marshalling import BufferMarshaller, PackedBatch
from .models import HHConstants, Model, TimeWindow
from .sampling import is_integer
from .utils import sample_times, stack_trajectories

logger = logging.getLogger(__name__)

# stimulus(window_index, model_position, carried_model) -> new I, or None to keep
StimulusHook = Callable[[int, int, Model], Optional[float]]


class ChainResult:
    """
    Trajectories accumulated over the completed windows of a chain.

    Attributes:
        trajectories: One list of snapshots per model, in batch order
        windows: Windows completed so far, in execution order
    """

    def __init__(self, model_count: int):
        self.trajectories: List[List[Model]] = [[] for _ in range(model_count)]
        self.windows: List[TimeWindow] = []

    def append(self, window: TimeWindow, window_trajectories: List[List[Model]]):
        """Append one window's per-model trajectories."""
        if len(window_trajectories) != len(self.trajectories):
            raise ValueError(
                f"Window produced {len(window_trajectories)} trajectories, "
                f"chain tracks {len(self.trajectories)} models"
            )
        for trajectory, segment in zip(self.trajectories, window_trajectories):
            trajectory.extend(segment)
        self.windows.append(window)

    @property
    def model_count(self) -> int:
        return len(self.trajectories)

    @property
    def steps_completed(self) -> int:
        return sum(w.step_count for w in self.windows)

    @property
    def final_models(self) -> List[Optional[Model]]:
        """Last sampled snapshot of each model (None if nothing was sampled)."""
        return [t[-1] if t else None for t in self.trajectories]

    def sample_times(self, start_time: float = 0.0) -> np.ndarray:
        """Simulated time of every sample, concatenated over windows."""
        times = []
        elapsed = start_time
        for window in self.windows:
            times.append(sample_times(window, start_time=elapsed))
            elapsed += window.duration
        if not times:
            return np.array([])
        return np.concatenate(times)

    def to_arrays(self) -> Dict[str, np.ndarray]:
        """Field name -> array of shape (n_samples, n_models)."""
        return stack_trajectories(self.trajectories)


class WindowChainer:
    """
    Drives sequential kernel invocations, carrying state between windows.

    Windows of one chain never run concurrently. Independent chainers share
    no mutable state.
    """

    def __init__(self,
                 kernel: ComputeKernelAdapter,
                 constants: Optional[HHConstants] = None,
                 marshaller: Optional[BufferMarshaller] = None):
        """
        Args:
            kernel: Compute kernel adapter
            constants: Physical constants (defaults if None)
            marshaller: Buffer marshaller (float32 buffers if None)
        """
        self.kernel = kernel
        self.constants = constants if constants is not None else HHConstants()
        self.marshaller = marshaller if marshaller is not None else BufferMarshaller()

    def run(self,
            models: Sequence[Model],
            windows: Sequence[TimeWindow],
            stimulus: Optional[StimulusHook] = None) -> ChainResult:
        """
        Run a chain of windows.

        Every window that hands state to a successor (all but the last) must
        have a sample period dividing its step count, so that the last sampled
        snapshot is the true end-of-window state.

        Args:
            models: Initial models for window 0
            windows: Windows to run in order
            stimulus: Optional hook returning a new stimulus current for each
                carried-forward model; by default the current a model was
                dispatched with is kept

        Returns:
            ChainResult with the concatenated trajectories

        Raises:
            InvalidBatch: If the batch is empty or malformed
            InvalidTimeWindow: If a hand-off window is not aligned
            KernelFailure: If a dispatch fails; carries window_index and the
                partial ChainResult of the completed windows
            LayoutMismatch: If the kernel returns arrays of the wrong length
        """
        windows = list(windows)
        if not windows:
            raise InvalidTimeWindow("A chain needs at least one window")
        for index, window in enumerate(windows[:-1]):
            if not window.is_aligned:
                raise InvalidTimeWindow(
                    f"Window {index} hands off state but its sample_period "
                    f"{window.sample_period} does not divide step_count {window.step_count}"
                )
        if not windows[-1].is_aligned:
            warnings.warn(
                f"Last window: sample_period {windows[-1].sample_period} does not divide "
                f"step_count {windows[-1].step_count}: the last {windows[-1].trailing_steps} "
                f"step(s) are not sampled",
                UserWarning, stacklevel=2
            )

        batch = list(models)
        self.marshaller.model_type(batch)

        result = ChainResult(len(batch))
        logger.info(
            f"Chain of {len(windows)} window(s), {sum(w.step_count for w in windows)} steps, "
            f"{len(batch)} models on kernel '{self.kernel.name}'"
        )

        for index, window in enumerate(windows):
            if index > 0:
                batch = self._carry_forward(index, batch, result, stimulus)
            trajectories = self.run_window(batch, window, index=index, partial=result)
            result.append(window, trajectories)

        return result

    def run_horizon(self,
                    models: Sequence[Model],
                    window: TimeWindow,
                    n_windows: int,
                    stimulus: Optional[StimulusHook] = None) -> ChainResult:
        """Run ``window`` split into ``n_windows`` equal chained windows."""
        return self.run(models, window.split(n_windows), stimulus=stimulus)

    def run_window(self,
                   batch: Sequence[Model],
                   window: TimeWindow,
                   index: int = 0,
                   partial: Optional[ChainResult] = None) -> List[List[Model]]:
        """
        Pack, dispatch and unpack one window.

        Any exception raised by the kernel is re-raised as KernelFailure
        with the window index and the partial result attached.
        """
        packed = self.marshaller.pack(batch)
        results = self.dispatch(packed, window, index=index, partial=partial)
        return self.marshaller.unpack(results, batch, window)

    def dispatch(self,
                 packed: PackedBatch,
                 window: TimeWindow,
                 index: int = 0,
                 partial: Optional[ChainResult] = None) -> Dict[str, np.ndarray]:
        """Run the kernel on packed buffers, wrapping failures as KernelFailure."""
        model_count = packed.model_count

        start = time.perf_counter()
        try:
            results = self.kernel.run(
                self.constants, window.step_length, window.step_count,
                packed, model_count
            )
        except Exception as exc:
            logger.error(f"Kernel '{self.kernel.name}' failed in window {index}: {exc}")
            if isinstance(exc, KernelFailure):
                exc.window_index = index
                exc.partial = partial
                raise
            raise KernelFailure(
                f"Kernel '{self.kernel.name}' failed in window {index}: {exc}",
                window_index=index, partial=partial
            ) from exc
        elapsed = time.perf_counter() - start

        logger.debug(
            f"Window {index}: {window.step_count} steps x {model_count} models "
            f"took {elapsed * 1000:.1f} ms"
        )
        return results

    @staticmethod
    def _carry_forward(index: int,
                       previous_batch: Sequence[Model],
                       result: ChainResult,
                       stimulus: Optional[StimulusHook]) -> List[Model]:
        """Initial batch of window ``index`` from the last snapshots so far."""
        carried = []
        for position, (source, snapshot) in enumerate(zip(previous_batch, result.final_models)):
            field = source.STIMULUS_FIELD
            model = replace(snapshot, **{field: getattr(source, field)})
            if stimulus is not None:
                current = stimulus(index, position, model)
                if current is not None:
                    setattr(model, field, float(current))
            carried.append(model)
        return carried


def plan_windows(total_steps: int,
                 model_count: int,
                 memory_budget: int,
                 step_length: float,
                 sample_period: int = 1,
                 itemsize: int = 4,
                 n_state_fields: int = 4) -> List[TimeWindow]:
    """
    Partition a horizon into windows whose buffers fit a device budget.

    Each window needs (n_state_fields + 1) input buffers of model_count
    elements plus n_state_fields result buffers of model_count * step_count
    elements. All windows but the last have the largest step count that fits
    and is a multiple of sample_period. The last window takes the remaining
    steps; when it is not a multiple of sample_period its trailing steps are
    not sampled and WindowChainer.run warns about them.

    Args:
        total_steps: Steps in the whole horizon
        model_count: Models in the batch
        memory_budget: Device bytes available per window; floats such as 1e9
            are accepted and rounded down
        step_length: Time step (ms)
        sample_period: Retain every Nth step
        itemsize: Bytes per buffer element
        n_state_fields: State variables per model

    Returns:
        Windows covering exactly total_steps steps

    Raises:
        InvalidTimeWindow: If the budget cannot hold even one sample period, or
            an argument is not a positive number
    """
    for label, value in (('total_steps', total_steps), ('model_count', model_count)):
        if not is_integer(value) or value < 1:
            raise InvalidTimeWindow(f"{label} must be an integer >= 1, got {value!r}")
    if not is_integer(sample_period) or sample_period < 1:
        raise InvalidTimeWindow(f"sample_period must be an integer >= 1, got {sample_period!r}")
    if isinstance(memory_budget, bool) or not np.isfinite(memory_budget) or memory_budget <= 0:
        raise InvalidTimeWindow(
            f"memory_budget must be a positive number of bytes, got {memory_budget!r}"
        )
    memory_budget = int(memory_budget)

    input_bytes = (n_state_fields + 1) * model_count * itemsize
    per_step = ComputeKernelAdapter.result_nbytes(model_count, 1, n_state_fields, itemsize)
    max_steps = max(memory_budget - input_bytes, 0) // per_step
    max_steps -= max_steps % sample_period
    if max_steps < 1:
        raise InvalidTimeWindow(
            f"Memory budget of {memory_budget} bytes cannot hold {sample_period} step(s) "
            f"for {model_count} models"
        )

    windows = []
    remaining = total_steps
    while remaining > 0:
        steps = min(max_steps, remaining)
        windows.append(TimeWindow(step_length, steps, sample_period))
        remaining -= steps

    logger.debug(
        f"Planned {len(windows)} window(s) of up to {max_steps} steps "
        f"for {total_steps} steps within {memory_budget} bytes"
    )
    return windows
