"""
Pytest fixtures and configuration for batch solver tests.

Stub kernels follow the ComputeKernelAdapter contract with trivially
predictable output, so layout and chaining can be checked exactly.
"""

import numpy as np
import pytest

from hh_batch import ComputeKernelAdapter, HHModel, TimeWindow, output_index


FIELDS = ('V', 'n', 'm', 'h')


class IndexKernel(ComputeKernelAdapter):
    """Writes the flat index itself: V[i] = i, n[i] = i + 0.5, ..."""

    name = 'index'

    def run(self, constants, step_length, step_count, inputs, model_count):
        flat = np.arange(model_count * step_count, dtype=np.float64)
        return {name: flat + 0.5 * k for k, name in enumerate(FIELDS)}


class EchoKernel(ComputeKernelAdapter):
    """Repeats the packed input state at every step."""

    name = 'echo'

    def run(self, constants, step_length, step_count, inputs, model_count):
        results = {}
        for name in FIELDS:
            flat = np.empty(model_count * step_count, dtype=inputs[name].dtype)
            for s in range(step_count):
                for p in range(model_count):
                    flat[output_index(s, p, model_count)] = inputs[name][p]
            results[name] = flat
        return results


class DriftKernel(ComputeKernelAdapter):
    """
    Deterministic float32 dynamics: V += I + 1, n halves towards 1, m += 1/8,
    h -= 1/16 per step. Records the inputs of every call.
    """

    name = 'drift'

    def __init__(self):
        self.calls = []

    def run(self, constants, step_length, step_count, inputs, model_count):
        self.calls.append({name: inputs[name].copy() for name in FIELDS + ('I',)})

        V = inputs['V'].astype(np.float32)
        n = inputs['n'].astype(np.float32)
        m = inputs['m'].astype(np.float32)
        h = inputs['h'].astype(np.float32)
        I = inputs['I'].astype(np.float32)

        rows = {name: [] for name in FIELDS}
        for _ in range(step_count):
            V = V + I + np.float32(1.0)
            n = np.float32(0.5) * (n + np.float32(1.0))
            m = m + np.float32(0.125)
            h = h - np.float32(0.0625)
            for name, value in zip(FIELDS, (V, n, m, h)):
                rows[name].append(value)

        # Stacking rows (step-major) then raveling gives the output layout
        return {name: np.stack(rows[name]).ravel() for name in FIELDS}


class FailingKernel(DriftKernel):
    """DriftKernel that raises on the call with index ``fail_on``."""

    name = 'failing'

    def __init__(self, fail_on: int, exc_type=RuntimeError):
        super().__init__()
        self.fail_on = fail_on
        self.exc_type = exc_type

    def run(self, constants, step_length, step_count, inputs, model_count):
        if len(self.calls) == self.fail_on:
            self.calls.append(None)
            raise self.exc_type("device lost")
        return super().run(constants, step_length, step_count, inputs, model_count)


class TruncatingKernel(IndexKernel):
    """Returns result buffers one element short."""

    name = 'truncating'

    def run(self, constants, step_length, step_count, inputs, model_count):
        results = super().run(constants, step_length, step_count, inputs, model_count)
        return {name: flat[:-1] for name, flat in results.items()}


@pytest.fixture
def index_kernel():
    return IndexKernel()


@pytest.fixture
def echo_kernel():
    return EchoKernel()


@pytest.fixture
def drift_kernel():
    return DriftKernel()


@pytest.fixture
def failing_kernel():
    """Factory: failing_kernel(fail_on, exc_type=RuntimeError)."""
    return FailingKernel


@pytest.fixture
def truncating_kernel():
    return TruncatingKernel()


@pytest.fixture
def resting_batch():
    """Three identical hyperpolarised compartments, (V, n, m, h, I) = (-10, 0, 0, 1, 0)."""
    return [HHModel(str(j), -10.0, 0.0, 0.0, 1.0, 0.0) for j in range(3)]


@pytest.fixture
def mixed_batch():
    """Five compartments with distinct, exactly representable states."""
    return [
        HHModel(f'cell-{j}', -10.0 + j, 0.25 * j, 0.125 * j, 1.0 - 0.0625 * j, 0.5 * j)
        for j in range(5)
    ]


@pytest.fixture
def short_window():
    return TimeWindow(step_length=0.01, step_count=10, sample_period=2)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "numerical: mark test as checking numerical properties"
    )
    config.addinivalue_line(
        "markers", "batch: mark test as checking batch layout"
    )
    config.addinivalue_line(
        "markers", "chaining: mark test as checking multi-window chaining"
    )
    config.addinivalue_line(
        "markers", "scipy: mark test as requiring scipy"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "gpu: mark test as requiring GPU/CuPy"
    )
