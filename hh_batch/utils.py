"""
Helpers for working with sampled trajectories: time axes, array stacking
and spike detection.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

from .models import Model, TimeWindow
from .sampling import ResultSampler


def sample_times(window: TimeWindow, start_time: float = 0.0,
                 step_offset: int = 0) -> np.ndarray:
    """
    Simulated time of each retained sample of a window.

    Args:
        window: Window the samples were taken with
        start_time: Time at the beginning of the first window (ms)
        step_offset: Steps executed by earlier windows of a chain

    Returns:
        Array of length window.sample_count
    """
    steps = ResultSampler.sampled_steps(window.step_count, window.sample_period)
    return start_time + (step_offset + steps) * window.step_length


def stack_trajectories(trajectories: Sequence[Sequence[Model]],
                       fields: Optional[Sequence[str]] = None) -> Dict[str, np.ndarray]:
    """
    Convert per-model trajectories to per-field arrays.

    Args:
        trajectories: One trajectory per model, all of equal length
        fields: Fields to extract (default: the model kind's state fields)

    Returns:
        Field name -> array of shape (n_samples, n_models)
    """
    if len(trajectories) == 0:
        return {}

    lengths = {len(t) for t in trajectories}
    if len(lengths) != 1:
        raise ValueError(f"Trajectories have unequal lengths: {sorted(lengths)}")

    if fields is None:
        first = next((t[0] for t in trajectories if len(t) > 0), None)
        if first is None:
            return {}
        fields = type(first).STATE_FIELDS

    return {
        name: np.array([[getattr(s, name) for s in t] for t in trajectories]).T
        for name in fields
    }


def detect_spikes(voltage: np.ndarray, threshold: float = 50.0,
                  min_interval: Optional[int] = None):
    """
    Detect spikes using upward threshold crossing.

    Detects samples with V[i] >= threshold and V[i-1] < threshold. The
    default threshold suits potentials measured relative to rest.

    Args:
        voltage: 1-D trace, or 2-D array of shape (n_samples, n_models)
        threshold: Spike detection threshold (mV)
        min_interval: Minimum samples between spikes (refractory period)

    Returns:
        For 1-D input: array of sample indices
        For 2-D input: list of arrays, one per model
    """
    voltage = np.asarray(voltage)
    if voltage.ndim == 2:
        return [detect_spikes(voltage[:, i], threshold, min_interval)
                for i in range(voltage.shape[1])]

    crossings = (voltage[1:] >= threshold) & (voltage[:-1] < threshold)
    spike_indices = np.where(crossings)[0] + 1

    if min_interval is not None and len(spike_indices) > 0:
        filtered: List[int] = [spike_indices[0]]
        for spike_idx in spike_indices[1:]:
            if spike_idx - filtered[-1] >= min_interval:
                filtered.append(spike_idx)
        spike_indices = np.array(filtered)

    return spike_indices
