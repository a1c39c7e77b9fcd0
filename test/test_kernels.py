"""
Numerical tests for the window kernels.

Checks the output layout of the real kernels, agreement between backends,
accuracy against a SciPy reference, and the shape of the free response of
a compartment started at V = -10 mV with n = m = 0, h = 1 (potentials
relative to rest).
"""

import numpy as np
import pytest

# Check for optional dependencies
try:
    import cupy as cp  # noqa: F401
    from gpu_backed import CuPyKernel
    GPU_AVAILABLE = True
except ImportError:
    GPU_AVAILABLE = False

try:
    from scipy.integrate import solve_ivp
    SCIPY_AVAILABLE = True
except ImportError:
    SCIPY_AVAILABLE = False

from cpu_backed import NumbaKernel, VectorizedKernel
from cpu_backed.vectorized import derivatives
from hh_batch import (
    BatchSolver,
    BufferMarshaller,
    HHConstants,
    HHModel,
    TimeWindow,
    detect_spikes,
    output_index,
)


START_TIME = -30.0
END_TIME = 100.0
DT = 0.01
STEPS = int(round((END_TIME - START_TIME) / DT))


def reference_batch(count=30, current=0.0):
    return [HHModel(str(j), -10.0, 0.0, 0.0, 1.0, current) for j in range(count)]


def varied_batch():
    return [
        HHModel('a', -10.0, 0.0, 0.0, 1.0, 0.0),
        HHModel('b', 0.0, 0.3177, 0.0529, 0.5961, 10.0),
        HHModel('c', 5.0, 0.35, 0.1, 0.5, 0.0),
        HHModel('d', -2.0, 0.3, 0.05, 0.6, 5.0),
    ]


def run_kernel(kernel, models, step_count, dtype=np.float64):
    packed = BufferMarshaller(dtype).pack(models)
    return kernel.run(HHConstants(), DT, step_count, packed, len(models))


@pytest.mark.batch
class TestKernelLayout:
    """Real kernels write model p, step s at output_index(s, p, model_count)."""

    @pytest.mark.parametrize("kernel_cls", [NumbaKernel, VectorizedKernel])
    def test_batch_matches_individual_runs(self, kernel_cls):
        models = varied_batch()
        steps = 50
        batch_results = run_kernel(kernel_cls(), models, steps)

        for position, model in enumerate(models):
            alone = run_kernel(kernel_cls(), [model], steps)
            for name in ('V', 'n', 'm', 'h'):
                assert len(batch_results[name]) == len(models) * steps
                picked = [batch_results[name][output_index(s, position, len(models))]
                          for s in range(steps)]
                np.testing.assert_allclose(picked, alone[name], rtol=1e-12, atol=1e-12)

    @pytest.mark.parametrize("kernel_cls", [NumbaKernel, VectorizedKernel])
    def test_result_dtype_follows_inputs(self, kernel_cls):
        results = run_kernel(kernel_cls(), varied_batch(), 5, dtype=np.float32)
        assert all(a.dtype == np.float32 for a in results.values())

    def test_initial_state_not_in_output(self):
        """Row 0 is the state after the first step."""
        model = HHModel('a', -10.0, 0.0, 0.0, 1.0)
        results = run_kernel(NumbaKernel(), [model], 1)
        # dV/dt = -g_L (V - E_L) at n = m = 0
        expected = -10.0 + DT * (-0.3 * (-10.0 - 10.613))
        assert results["V"][0] == pytest.approx(expected, abs=1e-3)


@pytest.mark.numerical
class TestBackendAgreement:

    def test_numba_matches_numpy(self):
        models = varied_batch()
        numba_results = run_kernel(NumbaKernel(), models, 2000)
        numpy_results = run_kernel(VectorizedKernel(), models, 2000)
        for name in ('V', 'n', 'm', 'h'):
            np.testing.assert_allclose(numba_results[name], numpy_results[name],
                                       rtol=1e-6, atol=1e-6)

    @pytest.mark.skipif(not SCIPY_AVAILABLE, reason="SciPy not available")
    @pytest.mark.scipy
    def test_numba_matches_scipy_reference(self):
        constants = HHConstants()
        model = HHModel('a', -10.0, 0.0, 0.0, 1.0, 0.0)
        steps = 2000

        def rhs(t, y):
            return derivatives(y.reshape(4, 1), np.array([model.I]), constants).ravel()

        t_eval = DT * np.arange(1, steps + 1)
        reference = solve_ivp(rhs, (0.0, t_eval[-1]), [model.V, model.n, model.m, model.h],
                              method='DOP853', t_eval=t_eval, rtol=1e-10, atol=1e-10)
        assert reference.success

        results = run_kernel(NumbaKernel(), [model], steps)
        for row, name in enumerate(('V', 'n', 'm', 'h')):
            np.testing.assert_allclose(results[name], reference.y[row], atol=1e-2)

    @pytest.mark.skipif(not GPU_AVAILABLE, reason="GPU not available")
    @pytest.mark.gpu
    def test_gpu_matches_numba(self):
        models = varied_batch()
        steps = 200
        gpu_results = run_kernel(CuPyKernel(), models, steps, dtype=np.float32)
        cpu_results = run_kernel(NumbaKernel(), models, steps, dtype=np.float32)
        for name in ('V', 'n', 'm', 'h'):
            np.testing.assert_allclose(gpu_results[name], cpu_results[name],
                                       rtol=1e-3, atol=1e-2)


@pytest.mark.numerical
class TestFreeResponse:
    """Compartments released from V = -10 mV spike once and settle at rest."""

    @pytest.fixture(scope='class')
    def arrays(self):
        solver = BatchSolver(NumbaKernel())
        return solver.solve_arrays(reference_batch(), TimeWindow(DT, STEPS, 1))

    def test_shape(self, arrays):
        assert arrays['V'].shape == (STEPS, 30)

    def test_all_models_identical(self, arrays):
        V = arrays['V']
        assert np.all(V == V[:, :1])

    def test_single_spike(self, arrays):
        V = arrays['V'][:, 0]
        time = START_TIME + DT * np.arange(1, STEPS + 1)

        assert 75.0 < V.max() < 115.0
        spikes = detect_spikes(V, threshold=50.0)
        assert len(spikes) == 1
        assert time[spikes[0]] < -20.0

    def test_starts_below_rest(self, arrays):
        V = arrays['V'][:, 0]
        # First 1.5 ms: still negative, never below the initial -10 mV
        early = V[:150]
        assert np.all(early > -10.0)
        assert early[0] < 0.0

    def test_after_hyperpolarisation(self, arrays):
        V = arrays['V'][:, 0]
        after_peak = V[np.argmax(V):]
        assert after_peak.min() < 0.0
        assert after_peak.min() > -15.0

    def test_settles_at_rest(self, arrays):
        V = arrays['V'][:, 0]
        assert abs(V[-1]) < 1.0


@pytest.mark.numerical
@pytest.mark.chaining
class TestChainedKernel:

    def test_chained_equals_single_float64(self):
        solver = BatchSolver(NumbaKernel(), dtype=np.float64)
        window = TimeWindow(DT, STEPS, 1)

        single = solver.solve_arrays(reference_batch(5), window)
        chained = solver.solve_horizon(reference_batch(5), window, 100).to_arrays()

        for name in ('V', 'n', 'm', 'h'):
            np.testing.assert_allclose(chained[name], single[name], rtol=0, atol=1e-12)

    def test_chained_close_to_single_float32(self):
        solver = BatchSolver(NumbaKernel())
        window = TimeWindow(DT, STEPS, 10)

        single = solver.solve_arrays(reference_batch(5), window)
        chained = solver.solve_horizon(reference_batch(5), window, 100).to_arrays()

        assert chained['V'].shape == single['V'].shape == (STEPS // 10, 5)
        np.testing.assert_allclose(chained['V'], single['V'], atol=1e-2)
