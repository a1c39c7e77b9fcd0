"""
GPU window kernel using CuPy with a custom CUDA kernel.

Each CUDA thread integrates one model over the whole window and writes the
state after every step, so the result buffers hold model_count * step_count
values per field in time-major/model-minor order.
"""

import logging
from typing import Dict

import numpy as np
try:
    import cupy as cp
    CUPY_AVAILABLE = True
except ImportError:
    CUPY_AVAILABLE = False
    cp = None

from hh_batch.errors import KernelFailure
from hh_batch.kernels import ComputeKernelAdapter
from hh_batch.marshalling import PackedBatch
from hh_batch.models import HHConstants

logger = logging.getLogger(__name__)


# Argument order: constants as in HHConstants.kernel_args(), then dt, step
# count, input buffers, result buffers and the model count.
CUDA_WINDOW_KERNEL = r'''
extern "C" __global__
void integrate_hh_window(
    const float g_K, const float g_Na, const float g_L,
    const float E_K, const float E_Na, const float E_L, const float C_m,
    const float dt, const int n_steps,
    const float* V_in, const float* n_in, const float* m_in, const float* h_in,
    const float* I_in,
    float* V_out, float* n_out, float* m_out, float* h_out,
    const int model_count
) {
    int tid = blockIdx.x * blockDim.x + threadIdx.x;

    if (tid >= model_count) return;

    float V = V_in[tid];
    float n = n_in[tid];
    float m = m_in[tid];
    float h = h_in[tid];
    float I = I_in[tid];

    // Rate functions, potentials relative to rest
    auto alpha_n = [](float V) {
        float x = 10.0f - V;
        return (fabsf(x) < 1e-4f) ? 0.1f : 0.01f * x / (expf(x / 10.0f) - 1.0f);
    };
    auto beta_n = [](float V) {
        return 0.125f * expf(-V / 80.0f);
    };
    auto alpha_m = [](float V) {
        float x = 25.0f - V;
        return (fabsf(x) < 1e-4f) ? 1.0f : 0.1f * x / (expf(x / 10.0f) - 1.0f);
    };
    auto beta_m = [](float V) {
        return 4.0f * expf(-V / 18.0f);
    };
    auto alpha_h = [](float V) {
        return 0.07f * expf(-V / 20.0f);
    };
    auto beta_h = [](float V) {
        return 1.0f / (expf((30.0f - V) / 10.0f) + 1.0f);
    };

    auto compute_derivatives = [&](float V, float n, float m, float h,
                                   float* dV, float* dn, float* dm, float* dh) {
        *dn = alpha_n(V) * (1.0f - n) - beta_n(V) * n;
        *dm = alpha_m(V) * (1.0f - m) - beta_m(V) * m;
        *dh = alpha_h(V) * (1.0f - h) - beta_h(V) * h;

        float I_K = g_K * (n * n * n * n) * (V - E_K);
        float I_Na = g_Na * (m * m * m) * h * (V - E_Na);
        float I_L = g_L * (V - E_L);

        *dV = (I - I_K - I_Na - I_L) / C_m;
    };

    float dV1, dn1, dm1, dh1;
    float dV2, dn2, dm2, dh2;
    float dV3, dn3, dm3, dh3;
    float dV4, dn4, dm4, dh4;

    for (int step = 0; step < n_steps; step++) {
        compute_derivatives(V, n, m, h, &dV1, &dn1, &dm1, &dh1);
        compute_derivatives(V + 0.5f * dt * dV1, n + 0.5f * dt * dn1,
                            m + 0.5f * dt * dm1, h + 0.5f * dt * dh1,
                            &dV2, &dn2, &dm2, &dh2);
        compute_derivatives(V + 0.5f * dt * dV2, n + 0.5f * dt * dn2,
                            m + 0.5f * dt * dm2, h + 0.5f * dt * dh2,
                            &dV3, &dn3, &dm3, &dh3);
        compute_derivatives(V + dt * dV3, n + dt * dn3,
                            m + dt * dm3, h + dt * dh3,
                            &dV4, &dn4, &dm4, &dh4);

        V = V + (dt / 6.0f) * (dV1 + 2*dV2 + 2*dV3 + dV4);
        n = n + (dt / 6.0f) * (dn1 + 2*dn2 + 2*dn3 + dn4);
        m = m + (dt / 6.0f) * (dm1 + 2*dm2 + 2*dm3 + dm4);
        h = h + (dt / 6.0f) * (dh1 + 2*dh2 + 2*dh3 + dh4);

        // output_index(step, tid, model_count)
        long idx = (long)step * model_count + tid;
        V_out[idx] = V;
        n_out[idx] = n;
        m_out[idx] = m;
        h_out[idx] = h;
    }
}
'''


class CuPyKernel(ComputeKernelAdapter):
    """
    GPU kernel using a CUDA RawKernel.

    Device buffers live for one window only: they are allocated just before
    the launch and released after the results are copied back, on success
    and on failure.
    """

    name = 'cupy'

    def __init__(self, block_size: int = 256):
        """
        Compile the CUDA kernel.

        Args:
            block_size: Threads per block

        Raises:
            RuntimeError: If CuPy is not available
        """
        if not CUPY_AVAILABLE:
            raise RuntimeError(
                "CuPy is not available. Please install cupy to use GPU acceleration.\n"
                "Install with: pip install cupy-cuda11x  (or cuda12x for CUDA 12)"
            )
        self.block_size = block_size
        self._compile_kernel()

    def _compile_kernel(self):
        """Compile the custom CUDA kernel for window integration."""
        self.window_kernel = cp.RawKernel(CUDA_WINDOW_KERNEL, 'integrate_hh_window')

    def _compute_grid_size(self, model_count: int):
        """Grid and block dimensions covering model_count threads."""
        grid_size = (model_count + self.block_size - 1) // self.block_size
        return (grid_size,), (self.block_size,)

    def run(self,
            constants: HHConstants,
            step_length: float,
            step_count: int,
            inputs: PackedBatch,
            model_count: int) -> Dict[str, np.ndarray]:
        """Integrate one window; see ComputeKernelAdapter.run."""
        fields = ('V', 'n', 'm', 'h')
        device_in = {}
        device_out = {}
        try:
            for name in fields + ('I',):
                device_in[name] = cp.asarray(inputs[name], dtype=cp.float32)
            for name in fields:
                device_out[name] = cp.zeros(model_count * step_count, dtype=cp.float32)

            logger.debug(
                f"CUDA dispatch: {model_count} models x {step_count} steps, "
                f"approx. device memory {sum(a.nbytes for a in device_out.values()) / 1e6:.1f} MB"
            )

            grid_size, block_size = self._compute_grid_size(model_count)
            self.window_kernel(
                grid_size, block_size,
                (*constants.kernel_args(np.float32),
                 np.float32(step_length), np.int32(step_count),
                 *(device_in[name] for name in fields + ('I',)),
                 *(device_out[name] for name in fields),
                 np.int32(model_count))
            )
            cp.cuda.Stream.null.synchronize()

            return {name: cp.asnumpy(device_out[name]) for name in fields}
        except (cp.cuda.runtime.CUDARuntimeError, cp.cuda.driver.CUDADriverError,
                cp.cuda.memory.OutOfMemoryError, cp.cuda.compiler.CompileException) as exc:
            raise KernelFailure(f"CUDA dispatch failed: {exc}") from exc
        finally:
            device_in.clear()
            device_out.clear()
            cp.get_default_memory_pool().free_all_blocks()
